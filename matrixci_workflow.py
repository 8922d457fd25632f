# matrixci_workflow.py
# Matrix for testing matrixci itself
from __future__ import annotations
from matrixci.dsl import matrix, job, expand


def workflow():
    return matrix(
        job(
            "lint",
            "python",
            install="python -m pip install -q ruff",
            script="ruff check src tests",
        ),
        expand("python", ["3.10", "3.12"]).jobs(
            lambda v: job(
                f"test (python {v})",
                f"python:{v}",
                install='python -m pip install -q -e ".[test]"',
                script="pytest -q",
                env={"PYTHONDONTWRITEBYTECODE": 1},
            )
        ),
        fast_finish=True,
    )
