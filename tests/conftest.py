"""
Pytest configuration and fixtures.

Ensures src/ is importable and provides scripted stand-ins for the
command executor and the environment provisioner.
"""
from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import pytest

# Add src/ to Python path if not already present
repo_root = Path(__file__).parent.parent
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from matrixci.environment import EnvironmentHandle  # noqa: E402
from matrixci.errors import EnvironmentProvisioningFailure, StepLaunchFailure  # noqa: E402
from matrixci.executor import CommandResult  # noqa: E402
from matrixci.ui.console import Console  # noqa: E402

FIXTURES = Path(__file__).parent / "fixtures"


class FakeExecutor:
    """
    Commands decide their own fate:
      - "fail" / "fail:<code>"  exit non-zero
      - "launch"                cannot be started
      - "wait:<name>"           blocks until release(name)
      - anything else           exits 0
    Every command echoes itself as output.
    """

    def __init__(self):
        self.calls: List[str] = []
        self._lock = threading.Lock()
        self._gates: Dict[str, threading.Event] = {}

    def gate(self, name: str) -> threading.Event:
        with self._lock:
            return self._gates.setdefault(name, threading.Event())

    def release(self, name: str) -> None:
        self.gate(name).set()

    def execute(self, command: str, environment: EnvironmentHandle) -> CommandResult:
        with self._lock:
            self.calls.append(command)
        output = f"{command}\n".encode()
        if command == "launch":
            raise StepLaunchFailure(
                kind="command_not_found",
                message="launch could not be started",
                step=command,
                details={"hint": "install it"},
            )
        if command.startswith("wait:"):
            assert self.gate(command.split(":", 1)[1]).wait(timeout=10), f"gate never opened: {command}"
        if command == "fail":
            return CommandResult(exit_code=1, output=output)
        if command.startswith("fail:"):
            return CommandResult(exit_code=int(command.split(":", 1)[1]), output=output)
        return CommandResult(exit_code=0, output=output)


class FakeProvisioner:
    def __init__(self, fail_runtimes: Optional[set] = None, fail_release: bool = False):
        self.fail_runtimes = fail_runtimes or set()
        self.fail_release = fail_release
        self.provisioned: List[EnvironmentHandle] = []
        self.released: List[EnvironmentHandle] = []
        self._lock = threading.Lock()

    def provision(
        self,
        runtime_id: str,
        *,
        env: Optional[Mapping[str, str]] = None,
        label: Optional[str] = None,
    ) -> EnvironmentHandle:
        if runtime_id in self.fail_runtimes:
            raise EnvironmentProvisioningFailure(
                kind="toolchain_unavailable",
                message=f"no toolchain for {runtime_id}",
                details={"hint": "install it"},
            )
        handle = EnvironmentHandle(runtime_id=runtime_id, workdir=Path("/nonexistent"), env=dict(env or {}))
        with self._lock:
            self.provisioned.append(handle)
        return handle

    def release(self, handle: EnvironmentHandle) -> None:
        with self._lock:
            self.released.append(handle)
        if self.fail_release:
            raise OSError("workspace busy")


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def provisioner() -> FakeProvisioner:
    return FakeProvisioner()


@pytest.fixture
def console() -> Console:
    return Console(debug=True)
