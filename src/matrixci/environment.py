# environment.py
from __future__ import annotations

import os
import re
import shutil
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, Mapping, Optional, Protocol, Tuple

from .errors import EnvironmentProvisioningFailure, hint_for


# ---------------------------------------------------------------------
# Runtimes
# ---------------------------------------------------------------------
# language -> (tool probed before a job starts, env var selecting the version)
# A probe of None means the runtime needs nothing beyond a shell.

@dataclass(frozen=True)
class Runtime:
    language: str
    probe: Optional[str] = None
    version_env: Optional[str] = None


RUNTIMES: Dict[str, Runtime] = {
    "rust": Runtime("rust", probe="cargo", version_env="RUSTUP_TOOLCHAIN"),
    "python": Runtime("python", probe="python3"),
    "node_js": Runtime("node_js", probe="node"),
    "go": Runtime("go", probe="go"),
    "ruby": Runtime("ruby", probe="ruby"),
    "java": Runtime("java", probe="java"),
    "c": Runtime("c", probe="cc"),
    "cpp": Runtime("cpp", probe="c++"),
    "generic": Runtime("generic"),
    "shell": Runtime("shell"),
    "minimal": Runtime("minimal"),
}


def parse_runtime_id(runtime_id: str) -> Tuple[str, Optional[str]]:
    """'rust:nightly' -> ('rust', 'nightly'); 'shell' -> ('shell', None)."""
    language, sep, version = runtime_id.partition(":")
    return language, (version if sep and version else None)


def is_known_runtime(runtime_id: str) -> bool:
    language, _version = parse_runtime_id(runtime_id)
    return language in RUNTIMES


# ---------------------------------------------------------------------
# Provisioning interface
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class EnvironmentHandle:
    """An isolated place to run one job's steps: a working dir + environment."""
    runtime_id: str
    workdir: Path
    env: Mapping[str, str] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


class EnvironmentProvisioner(Protocol):
    def provision(
        self,
        runtime_id: str,
        *,
        env: Optional[Mapping[str, str]] = None,
        label: Optional[str] = None,
    ) -> EnvironmentHandle:
        ...

    def release(self, handle: EnvironmentHandle) -> None:
        ...


@contextmanager
def provisioned(
    provisioner: EnvironmentProvisioner,
    runtime_id: str,
    *,
    env: Optional[Mapping[str, str]] = None,
    label: Optional[str] = None,
    on_release_error: Optional[Callable[[EnvironmentHandle, Exception], None]] = None,
) -> Iterator[EnvironmentHandle]:
    """
    Acquire an environment and always release it.

    Errors raised by release() go to `on_release_error` when given so they
    never mask the job's own result; without a callback they propagate.
    """
    handle = provisioner.provision(runtime_id, env=env, label=label)
    try:
        yield handle
    finally:
        try:
            provisioner.release(handle)
        except Exception as e:
            if on_release_error is None:
                raise
            on_release_error(handle, e)


# ---------------------------------------------------------------------
# Local workspaces
# ---------------------------------------------------------------------

_SLUG_RE = re.compile(r"[^A-Za-z0-9._-]+")

DEFAULT_EXCLUDES = (".git", ".matrixci", "__pycache__", ".pytest_cache")


def _slug(text: str) -> str:
    return _SLUG_RE.sub("-", text).strip("-").lower() or "job"


class LocalWorkspaceProvisioner:
    """
    Gives every job its own copy of the source tree under `work_dir`.

    The runtime's probe tool must be on PATH, otherwise provisioning fails
    with `toolchain_unavailable`. Version selection is passed through the
    runtime's version variable (e.g. RUSTUP_TOOLCHAIN=nightly).
    """

    def __init__(
        self,
        source_dir: str | Path = ".",
        work_dir: str | Path = ".matrixci/work",
        *,
        keep: bool = False,
        base_env: Optional[Mapping[str, str]] = None,
    ):
        self.source_dir = Path(source_dir).expanduser().resolve()
        self.work_dir = Path(work_dir).expanduser()
        if not self.work_dir.is_absolute():
            self.work_dir = self.source_dir / self.work_dir
        self.keep = keep
        self.base_env = dict(os.environ if base_env is None else base_env)

    def _ignore(self, directory: str, names: list[str]) -> set[str]:
        ignored = {n for n in names if n in DEFAULT_EXCLUDES}
        work_dir = self.work_dir.resolve()
        for n in names:
            if (Path(directory) / n).resolve() == work_dir:
                ignored.add(n)
        return ignored

    def _check_toolchain(self, runtime_id: str, env: Mapping[str, str]) -> None:
        language, _version = parse_runtime_id(runtime_id)
        runtime = RUNTIMES.get(language)
        if runtime is None:
            raise EnvironmentProvisioningFailure(
                kind="toolchain_unavailable",
                message=f"unknown runtime '{runtime_id}'",
                details={"known": ", ".join(sorted(RUNTIMES))},
            )
        if runtime.probe and shutil.which(runtime.probe, path=env.get("PATH")) is None:
            raise EnvironmentProvisioningFailure(
                kind="toolchain_unavailable",
                message=f"{runtime.probe} is not available for runtime '{runtime_id}'",
                details={"tool": runtime.probe, "hint": hint_for(runtime.probe)},
            )

    def _runtime_env(self, runtime_id: str) -> Dict[str, str]:
        language, version = parse_runtime_id(runtime_id)
        out = {
            "CI": "true",
            "MATRIXCI": "true",
            "MATRIXCI_RUNTIME": runtime_id,
        }
        runtime = RUNTIMES.get(language)
        if runtime and runtime.version_env and version:
            out[runtime.version_env] = version
        return out

    def provision(
        self,
        runtime_id: str,
        *,
        env: Optional[Mapping[str, str]] = None,
        label: Optional[str] = None,
    ) -> EnvironmentHandle:
        job_env = dict(self.base_env)
        job_env.update(self._runtime_env(runtime_id))
        job_env.update(env or {})

        self._check_toolchain(runtime_id, job_env)

        handle_id = uuid.uuid4().hex[:12]
        workdir = self.work_dir / f"{_slug(label or runtime_id)}-{handle_id}"
        try:
            self.work_dir.mkdir(parents=True, exist_ok=True)
            shutil.copytree(self.source_dir, workdir, ignore=self._ignore, symlinks=True)
        except OSError as e:
            shutil.rmtree(workdir, ignore_errors=True)
            raise EnvironmentProvisioningFailure(
                kind="workspace_failed",
                message=f"could not create workspace {workdir}",
                details={"error": str(e)},
            ) from e

        return EnvironmentHandle(runtime_id=runtime_id, workdir=workdir, env=job_env, id=handle_id)

    def release(self, handle: EnvironmentHandle) -> None:
        if self.keep:
            return
        shutil.rmtree(handle.workdir, ignore_errors=False)
