# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Tuple


# Exit code reported for a step that could not be started at all.
# Real processes exit with 0..255, and signals show up as -1..-64.
LAUNCH_FAILURE = -1024


class Phase(str, Enum):
    """The three fixed stages of a job, valued by their config keys."""
    INSTALL = "install"
    BEFORE_SCRIPT = "before_script"
    SCRIPT = "script"

    @classmethod
    def ordered(cls) -> Tuple["Phase", ...]:
        return (cls.INSTALL, cls.BEFORE_SCRIPT, cls.SCRIPT)


@dataclass(frozen=True)
class Step:
    """A single command inside a phase. Never interpreted, only executed."""
    command: str
    phase: Phase


@dataclass(frozen=True)
class JobSpec:
    """
    One job of the matrix: a runtime plus three ordered phases.

    `name` is the user-facing identity but need not be unique;
    see MatrixDefinition.keyed_jobs().
    """
    name: str
    runtime_id: str
    install: Tuple[Step, ...] = ()
    before_script: Tuple[Step, ...] = ()
    script: Tuple[Step, ...] = ()
    env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        # accept lists from callers, store tuples / read-only mappings
        for phase in Phase.ordered():
            steps = tuple(getattr(self, phase.value))
            for s in steps:
                if s.phase is not phase:
                    raise ValueError(
                        f"Job '{self.name}': step {s.command!r} belongs to {s.phase.value}, "
                        f"not {phase.value}"
                    )
            object.__setattr__(self, phase.value, steps)
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    def steps_for(self, phase: Phase) -> Tuple[Step, ...]:
        return getattr(self, phase.value)

    @property
    def step_count(self) -> int:
        return sum(len(self.steps_for(p)) for p in Phase.ordered())


@dataclass(frozen=True)
class MatrixDefinition:
    """The whole declared matrix, as produced by the loader."""
    jobs: Tuple[JobSpec, ...]
    fast_finish: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "jobs", tuple(self.jobs))

    def keyed_jobs(self) -> List[Tuple[str, JobSpec]]:
        """
        Stable keys for every job, in declaration order.

        Repeated names get a " #n" suffix (n starting at 2), so two jobs
        both called "test" are keyed "test" and "test #2".
        """
        seen: Dict[str, int] = {}
        keyed: List[Tuple[str, JobSpec]] = []
        for job in self.jobs:
            n = seen.get(job.name, 0) + 1
            seen[job.name] = n
            keyed.append((job.name if n == 1 else f"{job.name} #{n}", job))
        return keyed

    def __iter__(self) -> Iterator[JobSpec]:
        return iter(self.jobs)

    def __len__(self) -> int:
        return len(self.jobs)


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class PhaseResult:
    """
    Outcome of one phase. `failed_step` is the step that stopped the phase
    and `error` the launch error when the step never started.
    """
    phase: Phase
    exit_code: int
    captured_output: bytes = b""
    failed_step: Optional[Step] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    @property
    def launch_failed(self) -> bool:
        return self.exit_code == LAUNCH_FAILURE


class JobStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    ERRORED = "errored"


@dataclass(frozen=True)
class JobOutcome:
    """
    Result of running one job. Created once by the job runner.

    `error` holds the reason for ERRORED outcomes (launch or provisioning
    failure); `duration` is wall-clock seconds.
    """
    job: JobSpec
    status: JobStatus
    failed_phase: Optional[Phase] = None
    results: Tuple[PhaseResult, ...] = ()
    error: Optional[str] = None
    duration: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "results", tuple(self.results))
        if (self.status is JobStatus.PASSED) != (self.failed_phase is None):
            raise ValueError(
                f"Job '{self.job.name}': failed_phase must be set iff status is failed/errored "
                f"(status={self.status.value}, failed_phase={self.failed_phase})"
            )
        phases = [r.phase for r in self.results]
        if len(set(phases)) != len(phases):
            raise ValueError(f"Job '{self.job.name}': duplicate phase results {phases}")

    @property
    def passed(self) -> bool:
        return self.status is JobStatus.PASSED

    @property
    def output(self) -> bytes:
        return b"".join(r.captured_output for r in self.results)


class Overall(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class MatrixResult:
    """
    Terminal value of a matrix run.

    `pending` names the jobs that were still running when a fast-finish
    result was reported; it is empty whenever `stopped_early` is False.
    """
    outcomes: Dict[str, JobOutcome]
    overall: Overall
    stopped_early: bool = False
    pending: Tuple[str, ...] = ()

    @property
    def exit_code(self) -> int:
        return 0 if self.overall is Overall.SUCCESS else 1

    def failures(self) -> Dict[str, JobOutcome]:
        return {k: o for k, o in self.outcomes.items() if not o.passed}
