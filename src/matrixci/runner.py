# runner.py
from __future__ import annotations

import threading
import time
from typing import List, Optional, Sequence

from .environment import EnvironmentHandle, EnvironmentProvisioner, provisioned
from .errors import EnvironmentProvisioningFailure, StepExitFailure, StepLaunchFailure
from .executor import CommandExecutor
from .model import LAUNCH_FAILURE, JobOutcome, JobSpec, JobStatus, Phase, PhaseResult, Step
from .ui.console import Console, get_console


# ----------------------------------------------------------------------
# Phase executor
# ----------------------------------------------------------------------

def run_phase(
    phase: Phase,
    steps: Sequence[Step],
    environment: EnvironmentHandle,
    executor: CommandExecutor,
) -> PhaseResult:
    """
    Run the steps of one phase in order, stopping at the first failure.

    A step that cannot be launched ends the phase with LAUNCH_FAILURE and
    the launch error appended to the captured output.
    """
    chunks: List[bytes] = []
    for step in steps:
        try:
            res = executor.execute(step.command, environment)
        except (StepLaunchFailure, OSError) as e:
            if isinstance(e, StepLaunchFailure):
                chunks.append(e.output)
                message = f"{e.kind}: {e.message}"
                hint = e.details.get("hint")
            else:
                message, hint = f"launch_failed: {e}", None
            chunks.append(f"\n[matrixci] could not launch {step.command!r}: {message}\n".encode())
            if hint:
                chunks.append(f"[matrixci] hint: {hint}\n".encode())
            return PhaseResult(
                phase=phase,
                exit_code=LAUNCH_FAILURE,
                captured_output=b"".join(chunks),
                failed_step=step,
                error=message,
            )

        chunks.append(res.output)
        if res.exit_code != 0:
            return PhaseResult(
                phase=phase,
                exit_code=res.exit_code,
                captured_output=b"".join(chunks),
                failed_step=step,
            )

    return PhaseResult(phase=phase, exit_code=0, captured_output=b"".join(chunks))


# ----------------------------------------------------------------------
# Job runner
# ----------------------------------------------------------------------

def _errored(job: JobSpec, phase: Phase, results: List[PhaseResult], error: str, started: float) -> JobOutcome:
    return JobOutcome(
        job=job,
        status=JobStatus.ERRORED,
        failed_phase=phase,
        results=tuple(results),
        error=error,
        duration=time.monotonic() - started,
    )


def run_job(
    job: JobSpec,
    provisioner: EnvironmentProvisioner,
    executor: CommandExecutor,
    *,
    key: Optional[str] = None,
    console: Optional[Console] = None,
    cancelled: Optional[threading.Event] = None,
) -> JobOutcome:
    """
    Drive one job through install -> before_script -> script.

    Provisions one environment for the job and releases it on every exit
    path. Never raises: launch, exit and provisioning failures all come
    back as the outcome's status.
    """
    console = console or get_console()
    label = key or job.name
    started = time.monotonic()

    if cancelled is not None and cancelled.is_set():
        console.print_debug(f"[{label}] provisioning cancelled")
        return _errored(job, Phase.INSTALL, [], "cancelled: provisioning cancelled before start", started)

    def _release_failed(handle: EnvironmentHandle, exc: Exception) -> None:
        console.print_error(
            "Environment cleanup failed",
            f"[{label}] could not release environment {handle.id}",
            details=[str(exc)],
        )

    console.print_job_start(label, job.runtime_id)
    results: List[PhaseResult] = []
    current = Phase.INSTALL

    try:
        with provisioned(
            provisioner,
            job.runtime_id,
            env=job.env,
            label=label,
            on_release_error=_release_failed,
        ) as environment:
            console.print_debug(f"[{label}] environment {environment.id} at {environment.workdir}")
            for phase in Phase.ordered():
                current = phase
                steps = job.steps_for(phase)
                console.print_phase(label, phase, len(steps))
                result = run_phase(phase, steps, environment, executor)
                results.append(result)
                if not result.succeeded:
                    break
    except EnvironmentProvisioningFailure as e:
        e.job = label
        hint = e.details.get("hint")
        console.print_failure(label, str(e), hint=hint, is_job=True)
        return _errored(job, Phase.INSTALL, [], str(e), started)
    except Exception as e:
        # a broken executor/provisioner must not take the matrix down
        console.print_exception(e)
        return _errored(job, current, results, f"{type(e).__name__}: {e}", started)

    last = results[-1]
    if last.succeeded:
        return JobOutcome(
            job=job,
            status=JobStatus.PASSED,
            results=tuple(results),
            duration=time.monotonic() - started,
        )

    command = last.failed_step.command if last.failed_step else None
    if last.launch_failed:
        console.print_failure(label, last.error or "launch failed", is_job=True)
        return _errored(job, last.phase, results, last.error or "launch failed", started)

    failure = StepExitFailure(
        kind="step_failed",
        message=f"{last.phase.value} step exited with {last.exit_code}",
        job=label,
        step=command,
        details={"exit_code": last.exit_code},
    )
    console.print_failure(label, str(failure), exit_code=last.exit_code, is_job=True)
    return JobOutcome(
        job=job,
        status=JobStatus.FAILED,
        failed_phase=last.phase,
        results=tuple(results),
        error=str(failure),
        duration=time.monotonic() - started,
    )
