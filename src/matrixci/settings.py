from __future__ import annotations
import os

CONFIG_PATH = os.environ.get("MATRIXCI_CONFIG", ".travis.yml")
WORK_DIR = os.environ.get("MATRIXCI_WORK_DIR", ".matrixci/work")
MAX_WORKERS = int(os.environ["MATRIXCI_MAX_WORKERS"]) if os.environ.get("MATRIXCI_MAX_WORKERS") else None
STEP_TIMEOUT = float(os.environ["MATRIXCI_STEP_TIMEOUT"]) if os.environ.get("MATRIXCI_STEP_TIMEOUT") else None
