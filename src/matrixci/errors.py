# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(eq=False)
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - turning a failure into a job outcome
      - debugging without full tracebacks
    """
    kind: str
    message: str
    job: str = ""
    step: Optional[str] = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigurationError(CIError):
    """Malformed matrix definition. Raised before any job runs."""


class EnvironmentProvisioningFailure(CIError):
    """The isolated environment for a job could not be set up."""


@dataclass(eq=False)
class StepLaunchFailure(CIError):
    """
    A step's command could not be started (missing binary, timeout, bad cwd).

    `output` keeps whatever the step printed before it was given up on.
    """
    output: bytes = b""


class StepExitFailure(CIError):
    """A step ran and exited non-zero."""

    @property
    def exit_code(self) -> Optional[int]:
        return self.details.get("exit_code")


TOOL_HINTS = {
    "cargo": "Install Rust via rustup (https://rustup.rs) or fix PATH.",
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "rustc": "Install Rust via rustup or fix PATH.",
    "make": "Install make (e.g., apt install build-essential).",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "node": "Install Node.js or fix PATH.",
    "go": "Install Go or fix PATH.",
    "ruby": "Install Ruby or fix PATH.",
    "java": "Install a JDK or fix PATH.",
    "gcc": "Install a C compiler (e.g., apt install build-essential).",
    "g++": "Install a C++ compiler (e.g., apt install build-essential).",
    "pip3": "Install pip (e.g., apt install python3-pip).",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "python3": "Install Python 3 or fix PATH (python3).",
    "docker": "Install Docker and ensure the daemon is running.",
}


def hint_for(tool: str) -> str:
    return TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")
