# loader.py
from __future__ import annotations

import runpy
import shlex
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError, field_validator

from .dsl import job as make_job
from .environment import RUNTIMES, is_known_runtime, parse_runtime_id
from .errors import ConfigurationError
from .model import JobSpec, MatrixDefinition, Phase
from .ui.console import get_console


# ----------------------------------------------------------------------
# Document schema (Travis-style)
# ----------------------------------------------------------------------
# matrix:                 # or `jobs:`
#   fast_finish: true
#   include:
#     - name: Run tests
#       language: rust
#       rust: stable      # version is keyed by the language name
#       install: []
#       before_script: [...]
#       script: [...]
#
# Top-level language / version / phases / env are defaults for every
# included job. A top-level version list with a top-level script expands
# into one job per version.

Commands = Union[str, List[str], None]
EnvSpec = Union[Dict[str, Union[str, int, float, bool]], List[str], str, None]

# Travis keys that are accepted but not run here
IGNORED_KEYS = frozenset({
    "os", "dist", "arch", "sudo", "group", "stage", "if", "compiler",
    "cache", "addons", "services", "git", "branches", "notifications",
    "before_install", "before_cache", "after_success", "after_failure",
    "after_script", "before_deploy", "deploy", "after_deploy",
})


class JobEntry(BaseModel):
    # the version key (`rust:`, `python:`...) depends on the language
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    language: Optional[str] = None
    install: Commands = None
    before_script: Commands = None
    script: Commands = None
    env: EnvSpec = None

    @field_validator("install", "before_script", "script", mode="before")
    @classmethod
    def _commands_are_strings(cls, v: Any) -> Any:
        if isinstance(v, list):
            bad = [c for c in v if not isinstance(c, str)]
            if bad:
                raise ValueError(f"commands must be strings, got {bad!r}")
        return v

    def version_for(self, language: str) -> Any:
        return (self.model_extra or {}).get(language)

    def unknown_keys(self) -> List[str]:
        """Extra keys that are neither a runtime version key nor a known Travis key."""
        return sorted(k for k in (self.model_extra or {}) if k not in RUNTIMES and k not in IGNORED_KEYS)


class MatrixSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fast_finish: StrictBool = False
    include: List[JobEntry] = Field(default_factory=list)


class MatrixDocument(JobEntry):
    matrix: Optional[MatrixSection] = None
    jobs: Optional[MatrixSection] = None


# ----------------------------------------------------------------------
# Conversion
# ----------------------------------------------------------------------

def _parse_env(env: EnvSpec) -> Dict[str, str]:
    """Accepts {K: V}, ["K=V", ...] or "K=V K2=V2"."""
    if env is None:
        return {}
    if isinstance(env, dict):
        return {str(k): str(v).lower() if isinstance(v, bool) else str(v) for k, v in env.items()}
    if isinstance(env, str):
        try:
            items = shlex.split(env)
        except ValueError as e:
            raise ConfigurationError(
                kind="invalid_config",
                message=f"env string {env!r} cannot be split",
                details={"error": str(e)},
            ) from e
    else:
        items = list(env)
    out: Dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ConfigurationError(
                kind="invalid_config",
                message=f"env entry {item!r} is not KEY=VALUE",
            )
        out[key] = value
    return out


def _runtime_id(language: Optional[str], version: Any, where: str) -> str:
    if not language:
        raise ConfigurationError(
            kind="unknown_runtime",
            message=f"{where} has no language",
            details={"known": ", ".join(sorted(RUNTIMES))},
        )
    if version is None or version == "":
        return language
    if isinstance(version, (list, dict, bool)):
        raise ConfigurationError(
            kind="invalid_config",
            message=f"{where}: {language} version must be a single value, got {version!r}",
        )
    return f"{language}:{version}"


def _pick(entry_value: Commands, default: Commands) -> Commands:
    return default if entry_value is None else entry_value


def _entry_to_job(entry: JobEntry, defaults: JobEntry, index: int) -> JobSpec:
    where = f"job #{index + 1}" + (f" ({entry.name!r})" if entry.name else "")
    language = entry.language or defaults.language
    version = entry.version_for(language) if language else None
    if version is None and language and language == defaults.language:
        # a top-level version list is for expansion, not a per-job default
        default_version = defaults.version_for(language)
        if not isinstance(default_version, list):
            version = default_version

    env = _parse_env(defaults.env)
    env.update(_parse_env(entry.env))

    return make_job(
        entry.name if entry.name is not None else "",
        _runtime_id(language, version, where),
        install=_pick(entry.install, defaults.install),
        before_script=_pick(entry.before_script, defaults.before_script),
        script=_pick(entry.script, defaults.script),
        env=env,
    )


def _expanded_jobs(doc: MatrixDocument) -> List[JobSpec]:
    """Top-level `<language>: [v1, v2]` with a top-level script."""
    if not doc.language or doc.script is None:
        return []
    versions = doc.version_for(doc.language)
    if not isinstance(versions, list):
        versions = [versions]
    out = []
    for v in versions:
        runtime_id = _runtime_id(doc.language, v, "top level")
        out.append(
            make_job(
                doc.name or runtime_id,
                runtime_id,
                install=doc.install,
                before_script=doc.before_script,
                script=doc.script,
                env=_parse_env(doc.env),
            )
        )
    return out


def validate_matrix(matrix: MatrixDefinition) -> MatrixDefinition:
    """Reject what the orchestrator must never see."""
    if not matrix.jobs:
        raise ConfigurationError(kind="no_jobs", message="matrix declares no jobs")
    for i, j in enumerate(matrix.jobs):
        if not j.name or not j.name.strip():
            raise ConfigurationError(
                kind="empty_name",
                message=f"job #{i + 1} has an empty name",
                details={"runtime": j.runtime_id},
            )
        if not is_known_runtime(j.runtime_id):
            language, _version = parse_runtime_id(j.runtime_id)
            raise ConfigurationError(
                kind="unknown_runtime",
                message=f"unknown runtime '{j.runtime_id}'",
                job=j.name,
                details={"language": language, "known": ", ".join(sorted(RUNTIMES))},
            )
        for phase in Phase.ordered():
            for s in j.steps_for(phase):
                if not s.command.strip():
                    raise ConfigurationError(
                        kind="invalid_config",
                        message=f"empty command in {phase.value}",
                        job=j.name,
                    )
    return matrix


def _warn_unknown_keys(doc: MatrixDocument, section: MatrixSection) -> None:
    console = get_console()
    unknown = doc.unknown_keys()
    if unknown:
        console.print_warning(f"top level: ignoring unknown key(s) {', '.join(unknown)}")
    for i, entry in enumerate(section.include):
        unknown = entry.unknown_keys()
        if unknown:
            where = f"job #{i + 1}" + (f" ({entry.name!r})" if entry.name else "")
            console.print_warning(f"{where}: ignoring unknown key(s) {', '.join(unknown)}")


def parse_matrix(document: Any) -> MatrixDefinition:
    """Validate a parsed YAML/JSON document and build the MatrixDefinition."""
    if not isinstance(document, Mapping):
        raise ConfigurationError(
            kind="invalid_config",
            message=f"matrix document must be a mapping, got {type(document).__name__}",
        )
    try:
        doc = MatrixDocument.model_validate(dict(document))
    except ValidationError as e:
        raise ConfigurationError(
            kind="invalid_config",
            message="matrix document failed validation",
            details={
                ".".join(str(p) for p in err["loc"]) or "<root>": err["msg"]
                for err in e.errors()
            },
        ) from e

    if doc.matrix is not None and doc.jobs is not None:
        raise ConfigurationError(
            kind="invalid_config",
            message="use either `matrix:` or `jobs:`, not both",
        )
    section = doc.matrix or doc.jobs or MatrixSection()
    _warn_unknown_keys(doc, section)

    jobs = _expanded_jobs(doc)
    jobs.extend(_entry_to_job(entry, doc, i) for i, entry in enumerate(section.include))

    return validate_matrix(MatrixDefinition(jobs=tuple(jobs), fast_finish=section.fast_finish))


def loads(text: str) -> MatrixDefinition:
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            kind="invalid_config",
            message="matrix document is not valid YAML",
            details={"error": str(e)},
        ) from e
    return parse_matrix(document)


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def _load_python(path: Path) -> MatrixDefinition:
    """
    The file must define either:
      - workflow() -> MatrixDefinition
      - MATRIX = MatrixDefinition(...)
    """
    module_name = f"matrixci_workflow_{path.stem}"
    try:
        globals_dict = runpy.run_path(str(path), run_name=module_name)

        matrix = None
        if "workflow" in globals_dict and callable(globals_dict["workflow"]):
            matrix = globals_dict["workflow"]()
        elif "MATRIX" in globals_dict:
            matrix = globals_dict["MATRIX"]
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            kind="invalid_config",
            message=f"Failed to load workflow {path.name}",
            details={"path": str(path), "error": f"{type(e).__name__}: {e}"},
        ) from e

    if not isinstance(matrix, MatrixDefinition):
        raise ConfigurationError(
            kind="invalid_config",
            message=(
                "Workflow must return/define a MatrixDefinition. "
                "Define workflow() -> MatrixDefinition or MATRIX = matrix(...)."
            ),
            details={"path": str(path)},
        )
    return validate_matrix(matrix)


def load_matrix(path: str | Path) -> MatrixDefinition:
    """
    Load a matrix from a YAML document (.yml/.yaml) or a Python workflow
    file (.py). Raises ConfigurationError for anything malformed.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise ConfigurationError(
            kind="file_not_found",
            message=f"Matrix file not found: {wf_path}",
        )
    if wf_path.suffix == ".py":
        return _load_python(wf_path)
    if wf_path.suffix not in (".yml", ".yaml"):
        raise ConfigurationError(
            kind="invalid_config",
            message=f"Matrix file must be .yml, .yaml or .py, got: {wf_path.name}",
        )
    try:
        text = wf_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(
            kind="invalid_config",
            message=f"Could not read matrix file: {wf_path.name}",
            details={"path": str(wf_path), "error": str(e)},
        ) from e
    return loads(text)
