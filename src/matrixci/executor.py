# executor.py
from __future__ import annotations

import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from .environment import EnvironmentHandle
from .errors import StepLaunchFailure, hint_for


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    output: bytes = b""


class CommandExecutor(Protocol):
    """
    Runs one command inside an environment and waits for it.

    Raise StepLaunchFailure when the command cannot be started at all.
    """

    def execute(self, command: str, environment: EnvironmentHandle) -> CommandResult:
        ...


# Shell statuses that mean "nothing was run".
_NOT_FOUND = 127
_NOT_EXECUTABLE = 126


# Words the shell runs itself; their exit status is the script's own.
_SHELL_WORDS = frozenset({
    "exit", "return", "cd", "source", ".", "eval", "exec", "test", "[", "[[",
    "true", "false", "echo", "printf", "export", "set", "unset", "if", "for",
    "while", "until", "case", "{", "(", "!",
})


def _first_word(command: str) -> str:
    try:
        parts = shlex.split(command)
    except ValueError:
        parts = command.split()
    # skip leading VAR=value assignments
    while parts and "=" in parts[0] and not parts[0].startswith("="):
        parts = parts[1:]
    return parts[0] if parts else command


def _could_not_start(tool: str, environment: EnvironmentHandle) -> bool:
    """True when a 126/127 status came from the shell failing to start `tool`."""
    if tool in _SHELL_WORDS:
        return False
    if os.sep in tool:
        path = Path(environment.workdir) / tool
        return not (path.is_file() and os.access(path, os.X_OK))
    return shutil.which(tool, path=environment.env.get("PATH")) is None


class ShellExecutor:
    """
    Runs commands through a shell in the environment's workdir.

    stdout and stderr are merged so the captured output reads in order.
    Uses bash when available (Travis-style scripts rely on `source`).
    """

    def __init__(self, *, timeout: Optional[float] = None, shell: Optional[str] = None):
        self.timeout = timeout
        self.shell = shell or shutil.which("bash")

    def execute(self, command: str, environment: EnvironmentHandle) -> CommandResult:
        try:
            proc = subprocess.run(
                command,
                shell=True,
                executable=self.shell,
                cwd=str(environment.workdir),
                env=dict(environment.env),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise StepLaunchFailure(
                kind="step_timeout",
                message=f"step exceeded {self.timeout}s",
                step=command,
                details={"timeout": self.timeout},
                output=e.output or b"",
            ) from e
        except OSError as e:
            raise StepLaunchFailure(
                kind="launch_failed",
                message=str(e),
                step=command,
                details={"cwd": str(environment.workdir)},
            ) from e

        tool = _first_word(command)
        if proc.returncode in (_NOT_FOUND, _NOT_EXECUTABLE) and _could_not_start(tool, environment):
            raise StepLaunchFailure(
                kind="command_not_found" if proc.returncode == _NOT_FOUND else "launch_failed",
                message=f"{tool} could not be started (exit={proc.returncode})",
                step=command,
                details={"tool": tool, "hint": hint_for(tool)},
                output=proc.stdout or b"",
            )

        return CommandResult(exit_code=proc.returncode, output=proc.stdout or b"")
