# cli.py
from __future__ import annotations

import sys
from pathlib import Path

import click

from matrixci import settings
from matrixci.environment import LocalWorkspaceProvisioner
from matrixci.errors import ConfigurationError
from matrixci.executor import ShellExecutor
from matrixci.loader import load_matrix
from matrixci.model import MatrixDefinition, MatrixResult
from matrixci.orchestrator import MatrixOrchestrator
from matrixci.ui.console import Console, get_console, set_console


DEFAULT_CANDIDATES = (".travis.yml", ".travis.yaml", "matrixci.yml", "matrixci_workflow.py")


def find_matrix_files() -> list[Path]:
    """
    Find matrix files in the current directory.

    Returns:
        List of Path objects for matrix files
    """
    current_dir = Path(".")
    found = [current_dir / name for name in DEFAULT_CANDIDATES if (current_dir / name).exists()]
    for path in current_dir.glob("*_workflow.py"):
        if path not in found:
            found.append(path)
    return found


def discover_matrix(config_arg: str | None) -> Path:
    """
    Discover the matrix file from argument, MATRIXCI_CONFIG or defaults.

    Raises:
        SystemExit: If no matrix file can be found or the choice is ambiguous
    """
    console = get_console()

    if config_arg:
        path = Path(config_arg)
        if not path.exists():
            console.print_error(
                "Matrix file not found",
                f"Could not find matrix file: {config_arg}",
                suggestion="Create a .travis.yml or specify a different path:\n  matrixci run --config ci.yml",
            )
            sys.exit(1)
        return path

    default = Path(settings.CONFIG_PATH)
    if default.exists():
        return default

    candidates = find_matrix_files()
    if len(candidates) == 0:
        console.print_error(
            "No matrix file found",
            "Could not find any matrix files.",
            details=["Looked for:"] + [f"  {c}" for c in DEFAULT_CANDIDATES] + ["  *_workflow.py"],
            suggestion="Specify a matrix explicitly:\n  matrixci run --config .travis.yml",
        )
        sys.exit(1)
    if len(candidates) > 1:
        console.print_error(
            "Multiple matrix files found",
            "Found multiple matrix files. Please specify which one to use:",
            details=[f"  {c}" for c in candidates],
            suggestion="Specify a matrix explicitly:\n  matrixci run --config .travis.yml",
        )
        sys.exit(1)
    return candidates[0]


def _load_or_exit(path: Path) -> MatrixDefinition:
    console = get_console()
    try:
        return load_matrix(path)
    except ConfigurationError as e:
        details = [f"{k}: {v}" for k, v in e.details.items()]
        if e.job:
            details.insert(0, f"job: {e.job}")
        console.print_error(
            "Invalid matrix",
            f"{path}: {e.message}",
            details=details or None,
        )
        sys.exit(1)


def _report(result: MatrixResult, shown: set[str]) -> None:
    console = get_console()
    for key, outcome in result.failures().items():
        if key not in shown:
            console.print_job_output(key, outcome)
            shown.add(key)
    console.print_results(result)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """matrixci: run a CI job matrix locally, one isolated workspace per job."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--config", default=None, help="Matrix file (.travis.yml, *.yml or *_workflow.py)")
@click.option(
    "--fast-finish/--no-fast-finish",
    default=None,
    help="Report as soon as one job fails (defaults to the matrix's fast_finish)",
)
@click.option(
    "--workers",
    default=lambda: settings.MAX_WORKERS,
    type=int,
    help="Max parallel jobs [env MATRIXCI_MAX_WORKERS; default: one per job]",
)
@click.option(
    "--work-dir",
    default=lambda: settings.WORK_DIR,
    help="Where job workspaces are created [env MATRIXCI_WORK_DIR; default: .matrixci/work]",
)
@click.option(
    "--step-timeout",
    default=lambda: settings.STEP_TIMEOUT,
    type=float,
    help="Per-step timeout in seconds [env MATRIXCI_STEP_TIMEOUT]",
)
@click.option(
    "--wait/--no-wait",
    default=True,
    show_default=True,
    help="After a fast-finish result, wait for running jobs and report them too",
)
@click.option("--keep-workspaces", is_flag=True, default=False, help="Do not delete job workspaces")
@click.pass_context
def run(ctx, config, fast_finish, workers, work_dir, step_timeout, wait, keep_workspaces):
    """Run every job of the matrix and exit 0 on success, 1 otherwise."""
    console = get_console()
    path = discover_matrix(config)
    matrix = _load_or_exit(path)

    effective_ff = matrix.fast_finish if fast_finish is None else fast_finish
    console.print_run_started(source=path.name, job_count=len(matrix), fast_finish=effective_ff)

    orchestrator = MatrixOrchestrator(
        LocalWorkspaceProvisioner(".", work_dir, keep=keep_workspaces),
        ShellExecutor(timeout=step_timeout),
        max_workers=workers,
        console=console,
    )

    try:
        result = orchestrator.run(matrix, fast_finish=effective_ff)
        shown: set[str] = set()
        _report(result, shown)

        if result.stopped_early:
            if wait:
                console.print_info(f"\nWaiting for {len(result.pending)} running job(s) to finish...")
                _report(orchestrator.wait_background(), shown)
            else:
                orchestrator.cancel_pending()

        sys.exit(result.exit_code)

    except KeyboardInterrupt:
        orchestrator.cancel_pending()
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.option("--config", default=None, help="Matrix file (.travis.yml, *.yml or *_workflow.py)")
def plan(config):
    """Validate the matrix and print its jobs without running anything."""
    console = get_console()
    path = discover_matrix(config)
    matrix = _load_or_exit(path)
    console.print_header(f"{path.name}: {len(matrix)} job(s), fast finish {'on' if matrix.fast_finish else 'off'}")
    console.print_plan(matrix)


if __name__ == "__main__":
    cli()
