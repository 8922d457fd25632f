# orchestrator.py
from __future__ import annotations

import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, as_completed, wait
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .environment import EnvironmentProvisioner
from .executor import CommandExecutor
from .model import JobOutcome, JobSpec, JobStatus, MatrixDefinition, MatrixResult, Overall, Phase
from .runner import run_job
from .ui.console import Console, get_console


@dataclass
class _Run:
    """Bookkeeping for one orchestrator run. Only touched by the caller's thread."""
    keyed: List[Tuple[str, JobSpec]]
    futures: Dict[Future, str] = field(default_factory=dict)
    outcomes: Dict[str, JobOutcome] = field(default_factory=dict)
    cancelled: threading.Event = field(default_factory=threading.Event)
    stopped_early: bool = False

    def pending_futures(self) -> List[Future]:
        return [f for f, key in self.futures.items() if key not in self.outcomes]


def aggregate(outcomes: Dict[str, JobOutcome]) -> Overall:
    """SUCCESS iff every outcome passed."""
    if all(o.status is JobStatus.PASSED for o in outcomes.values()):
        return Overall.SUCCESS
    return Overall.FAILURE


class MatrixOrchestrator:
    """
    Runs every job of a matrix concurrently and aggregates the outcomes.

    With fast finish, run() returns as soon as the first job does not pass.
    Jobs already running are left to finish in the background; call
    wait_background() to collect their outcomes.
    """

    def __init__(
        self,
        provisioner: EnvironmentProvisioner,
        executor: CommandExecutor,
        *,
        max_workers: int | None = None,
        console: Console | None = None,
    ):
        self.provisioner = provisioner
        self.executor = executor
        self.max_workers = max_workers
        self.console = console or get_console()
        self._run: Optional[_Run] = None

    # ------------------------------------------------------------------

    def _run_one(self, key: str, job: JobSpec, cancelled: threading.Event) -> JobOutcome:
        return run_job(
            job,
            self.provisioner,
            self.executor,
            key=key,
            console=self.console,
            cancelled=cancelled,
        )

    def _collect(self, run: _Run, fut: Future) -> JobOutcome:
        key = run.futures[fut]
        job = dict(run.keyed)[key]
        try:
            outcome = fut.result()
        except Exception as e:
            # run_job converts failures itself; this is a last resort
            self.console.print_exception(e)
            outcome = JobOutcome(
                job=job,
                status=JobStatus.ERRORED,
                failed_phase=Phase.INSTALL,
                error=f"{type(e).__name__}: {e}",
            )
        run.outcomes[key] = outcome
        self.console.print_job_finished(key, outcome)
        return outcome

    def _finish_fast(self, run: _Run) -> None:
        # jobs that already ended are reported, not left pending
        for fut in run.pending_futures():
            if fut.done():
                self._collect(run, fut)
        run.stopped_early = bool(run.pending_futures())

    def _result(self, run: _Run) -> MatrixResult:
        # declaration order, never arrival order
        outcomes = {key: run.outcomes[key] for key, _job in run.keyed if key in run.outcomes}
        pending = tuple(key for key, _job in run.keyed if key not in run.outcomes)
        overall = aggregate(outcomes)
        if pending and overall is Overall.SUCCESS:
            # only reachable after a timed-out wait_background()
            overall = Overall.FAILURE
        return MatrixResult(
            outcomes=outcomes,
            overall=overall,
            stopped_early=run.stopped_early,
            pending=pending,
        )

    # ------------------------------------------------------------------

    def run(self, matrix: MatrixDefinition, fast_finish: bool | None = None) -> MatrixResult:
        """
        Run all jobs and return the aggregate result.

        `fast_finish` defaults to the matrix's own setting. Job failures are
        data: this method does not raise for them.
        """
        fast_finish = matrix.fast_finish if fast_finish is None else fast_finish
        run = _Run(keyed=matrix.keyed_jobs())
        self._run = run
        if not run.keyed:
            return self._result(run)

        workers = self.max_workers or len(run.keyed)
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="matrixci-job")
        try:
            for key, job in run.keyed:
                fut = pool.submit(self._run_one, key, job, run.cancelled)
                run.futures[fut] = key

            for fut in as_completed(list(run.futures)):
                outcome = self._collect(run, fut)
                if fast_finish and not outcome.passed:
                    self._finish_fast(run)
                    break
        except BaseException:
            run.cancelled.set()
            pool.shutdown(wait=False, cancel_futures=True)
            raise

        # on fast finish, running jobs keep going for their diagnostics
        pool.shutdown(wait=not run.stopped_early)
        result = self._result(run)
        if run.stopped_early:
            self.console.print_debug(
                f"fast finish after {len(result.outcomes)}/{len(run.keyed)} job(s); "
                f"still running: {', '.join(result.pending)}"
            )
        return result

    def wait_background(self, timeout: float | None = None) -> MatrixResult:
        """
        Wait for jobs left running by a fast-finish result.

        Returns the result with every outcome collected so far. The overall
        status and `stopped_early` flag are those of the original report.
        """
        run = self._run
        if run is None:
            raise RuntimeError("wait_background() called before run()")

        deadline = None if timeout is None else time.monotonic() + timeout
        remaining = run.pending_futures()
        while remaining:
            left = None if deadline is None else max(0.0, deadline - time.monotonic())
            done, _not_done = wait(remaining, timeout=left, return_when=FIRST_COMPLETED)
            if not done:
                break
            for fut in done:
                self._collect(run, fut)
            remaining = run.pending_futures()

        return self._result(run)

    def cancel_pending(self) -> None:
        """
        Best-effort: jobs that have not provisioned yet end as ERRORED
        without running. Jobs past provisioning are unaffected.
        """
        if self._run is not None:
            self._run.cancelled.set()


def run_matrix(
    matrix: MatrixDefinition,
    provisioner: EnvironmentProvisioner,
    executor: CommandExecutor,
    *,
    fast_finish: bool | None = None,
    max_workers: int | None = None,
    console: Console | None = None,
) -> MatrixResult:
    """Functional shortcut for MatrixOrchestrator(...).run(matrix)."""
    orchestrator = MatrixOrchestrator(
        provisioner,
        executor,
        max_workers=max_workers,
        console=console,
    )
    return orchestrator.run(matrix, fast_finish=fast_finish)
