# src/matrixci/dsl.py
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from .model import JobSpec, MatrixDefinition, Phase, Step


Commands = Union[str, Sequence[str], None]


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def steps(phase: Phase, commands: Commands) -> tuple[Step, ...]:
    """A single string is one command; None is an empty phase."""
    if commands is None:
        return ()
    if isinstance(commands, str):
        commands = [commands]
    return tuple(Step(command=str(c), phase=phase) for c in commands)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    runtime: str,
    *,
    install: Commands = None,
    before_script: Commands = None,
    script: Commands = None,
    env: Optional[Dict[str, Any]] = None,
) -> JobSpec:
    """
    job("Run tests", "rust:stable",
        before_script=["rustup component add clippy"],
        script="make test")
    """
    return JobSpec(
        name=name,
        runtime_id=runtime,
        install=steps(Phase.INSTALL, install),
        before_script=steps(Phase.BEFORE_SCRIPT, before_script),
        script=steps(Phase.SCRIPT, script),
        # force values to str for env compatibility
        env={k: str(v) for k, v in (env or {}).items()},
    )


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Expansion:
    """
    Minimal version expander.

    Example:
        expand("rust", ["stable", "nightly"]).jobs(
            lambda v: job(f"test ({v})", f"rust:{v}", script="make test")
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def jobs(self, builder: Callable[[Any], JobSpec]) -> List[JobSpec]:
        return [builder(v) for v in self.values]


def expand(key: str, values: Iterable[Any]) -> Expansion:
    return Expansion(key, values)


def matrix(*jobs: Union[JobSpec, Iterable[JobSpec]], fast_finish: bool = False) -> MatrixDefinition:
    """
    Matrix definition helper. Accepts jobs and lists of jobs (from expand()).

    Users can write:
        from matrixci.dsl import matrix, job, expand

        def workflow():
            return matrix(
                job(...),
                expand("rust", ["stable", "nightly"]).jobs(...),
                fast_finish=True,
            )

    Or define MATRIX directly:
        MATRIX = matrix(job(...), job(...))
    """
    flat: List[JobSpec] = []
    for item in jobs:
        if isinstance(item, JobSpec):
            flat.append(item)
        else:
            flat.extend(item)
    return MatrixDefinition(jobs=tuple(flat), fast_finish=fast_finish)
