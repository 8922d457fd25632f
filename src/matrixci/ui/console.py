"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..model import JobOutcome, MatrixDefinition, MatrixResult, Phase


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        # job runners print from worker threads
        self._lock = threading.Lock()

    def _emit(self, *lines: str, file=None) -> None:
        with self._lock:
            for line in lines:
                print(line, file=file or sys.stdout)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}", "-" * len(title))

    def print_run_started(self, source: str, job_count: int, fast_finish: bool) -> None:
        """Print run start information."""
        self._emit(
            "\nRUN STARTED",
            f"Matrix: {source}",
            f"Jobs: {job_count}",
            f"Fast finish: {'on' if fast_finish else 'off'}",
            "",
        )

    def print_plan(self, matrix: "MatrixDefinition") -> None:
        """Print each job with its runtime and step counts."""
        from ..model import Phase

        lines = []
        for key, job in matrix.keyed_jobs():
            counts = ", ".join(f"{p.value}={len(job.steps_for(p))}" for p in Phase.ordered())
            lines.append(f"  {key} [{job.runtime_id}] ({counts})")
        self._emit(*lines)

    def print_job_start(self, name: str, runtime_id: str) -> None:
        """Print job start message."""
        self._emit(f"JOB STARTED: {name} [{runtime_id}]")

    def print_phase(self, job: str, phase: "Phase", step_count: int) -> None:
        """Print phase start message."""
        self._emit(f"[{job}] ▶ {phase.value} ({step_count} step(s))")

    def print_job_finished(self, key: str, outcome: "JobOutcome") -> None:
        """Print one line for a job that just finished."""
        where = f" at {outcome.failed_phase.value}" if outcome.failed_phase else ""
        self._emit(f"JOB {outcome.status.value.upper()}: {key}{where} ({outcome.duration:.1f}s)")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job or step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            is_job: If True, print "JOB FAILED", otherwise "STEP FAILED"
        """
        prefix = "JOB FAILED" if is_job else "STEP FAILED"
        lines = [f"{prefix}: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            if error_line:
                lines.append(f"Error: {error_line}")
        self._emit(*lines)

    def print_job_output(self, key: str, outcome: "JobOutcome") -> None:
        """Print the full captured output of a non-passing job."""
        text = outcome.output.decode("utf-8", errors="replace").rstrip("\n")
        lines = [f"\n--- output: {key} ---"]
        if text:
            lines.append(text)
        lines.append(f"--- end: {key} ---")
        self._emit(*lines)

    def print_results(self, result: "MatrixResult") -> None:
        """Print final results summary."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for key, outcome in result.outcomes.items():
            where = f" ({outcome.failed_phase.value})" if outcome.failed_phase else ""
            lines.append(f"  {key}: {outcome.status.value.upper()}{where}")
        for key in result.pending:
            lines.append(f"  {key}: RUNNING")
        lines.append(f"OVERALL: {result.overall.value.upper()}")
        if result.stopped_early:
            lines.append("(fast finish: reported before all jobs completed)")
        self._emit(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit(*lines, file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._emit(f"Error: {exc}", file=sys.stderr)

    def print_warning(self, message: str) -> None:
        """Print a non-fatal problem to stderr."""
        self._emit(f"WARNING: {message}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
