"""Loading and validating matrix documents."""
from __future__ import annotations

import textwrap

import pytest

from matrixci.errors import ConfigurationError
from matrixci.loader import load_matrix, loads, parse_matrix
from matrixci.model import Phase

from conftest import FIXTURES


def _yaml(text: str):
    return loads(textwrap.dedent(text))


def test_loads_travis_fixture():
    m = load_matrix(FIXTURES / "travis.yml")

    assert m.fast_finish is True
    assert [j.name for j in m.jobs] == [
        "Run tests",
        "Run CPython wrapper linter",
        "Run CPython wrapper tests",
    ]
    assert [j.runtime_id for j in m.jobs] == ["rust:stable", "rust:stable", "rust:nightly"]

    first = m.jobs[0]
    assert first.install == ()
    assert [s.command for s in first.before_script] == [
        "cargo install cargo-lichking",
        "rustup component add rustfmt",
        "rustup component add clippy",
    ]
    assert all(s.phase is Phase.BEFORE_SCRIPT for s in first.before_script)
    assert [s.command for s in first.script] == ["make test"]
    assert m.jobs[2].script[0].command == "source venv/bin/activate && make -C python test"


def test_jobs_key_is_an_alias_for_matrix():
    m = _yaml("""
        jobs:
          include:
            - name: a
              language: shell
              script: echo hi
    """)
    assert m.fast_finish is False
    assert m.jobs[0].runtime_id == "shell"
    assert [s.command for s in m.jobs[0].script] == ["echo hi"]


def test_top_level_values_are_job_defaults():
    m = _yaml("""
        language: rust
        rust: stable
        env: RUST_BACKTRACE=1 CARGO_TERM_COLOR=never
        before_script: [rustup component add clippy]
        matrix:
          include:
            - name: default
            - name: nightly
              rust: nightly
              env: {RUST_BACKTRACE: full}
              before_script: []
    """)
    default, nightly = m.jobs
    # top-level script is absent, so nothing is expanded
    assert len(m.jobs) == 2
    assert default.runtime_id == "rust:stable"
    assert dict(default.env) == {"RUST_BACKTRACE": "1", "CARGO_TERM_COLOR": "never"}
    assert [s.command for s in default.before_script] == ["rustup component add clippy"]
    assert nightly.runtime_id == "rust:nightly"
    assert nightly.env["RUST_BACKTRACE"] == "full"
    assert nightly.before_script == ()


def test_top_level_version_list_expands():
    m = _yaml("""
        language: rust
        rust: [stable, beta]
        script: cargo test
        matrix:
          fast_finish: true
          include:
            - name: lint
              rust: stable
              script: cargo clippy
    """)
    assert [(j.name, j.runtime_id) for j in m.jobs] == [
        ("rust:stable", "rust:stable"),
        ("rust:beta", "rust:beta"),
        ("lint", "rust:stable"),
    ]


def test_env_as_list():
    m = _yaml("""
        matrix:
          include:
            - name: a
              language: generic
              env: [A=1, B=two=2]
              script: env
    """)
    assert dict(m.jobs[0].env) == {"A": "1", "B": "two=2"}


@pytest.mark.parametrize(
    "document, kind",
    [
        ("matrix: {include: [{name: '', language: rust, script: x}]}", "empty_name"),
        ("matrix: {include: [{language: rust, script: x}]}", "empty_name"),
        ("matrix: {include: [{name: a, language: cobol, script: x}]}", "unknown_runtime"),
        ("matrix: {include: [{name: a, script: x}]}", "unknown_runtime"),
        ("matrix: {include: []}", "no_jobs"),
        ("{}", "no_jobs"),
        ("matrix: {fast_finish: 'yes', include: []}", "invalid_config"),
        ("matrix: {include: [{name: a, language: rust, script: [1, 2]}]}", "invalid_config"),
        ("matrix: {include: [{name: a, language: rust, script: ['  ']}]}", "invalid_config"),
        ("matrix: {include: [{name: a, language: rust, env: [NOEQUALS], script: x}]}", "invalid_config"),
        ("matrix: {include: [{name: a, language: shell, env: \"FOO='bar\", script: x}]}", "invalid_config"),
        ("matrix: {include: [], extra: 1}", "invalid_config"),
        ("matrix: {include: [{name: a, language: rust, script: x}]}\njobs: {include: []}", "invalid_config"),
        ("- just\n- a list", "invalid_config"),
        ("matrix: [unclosed", "invalid_config"),
    ],
)
def test_malformed_documents_are_rejected(document, kind):
    with pytest.raises(ConfigurationError) as excinfo:
        loads(document)
    assert excinfo.value.kind == kind


def test_validation_error_details_name_the_field():
    with pytest.raises(ConfigurationError) as excinfo:
        parse_matrix({"matrix": {"fast_finish": "nope"}})
    assert any("fast_finish" in k for k in excinfo.value.details)


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError) as excinfo:
        load_matrix(tmp_path / "nope.yml")
    assert excinfo.value.kind == "file_not_found"


def test_unsupported_extension(tmp_path):
    path = tmp_path / "matrix.toml"
    path.write_text("x = 1\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="yml"):
        load_matrix(path)


def test_python_workflow(tmp_path):
    path = tmp_path / "demo_workflow.py"
    path.write_text(
        textwrap.dedent("""
            from matrixci.dsl import matrix, job, expand

            def workflow():
                return matrix(
                    job("lint", "python", script="ruff check ."),
                    expand("rust", ["stable", "nightly"]).jobs(
                        lambda v: job(f"test ({v})", f"rust:{v}", script="cargo test")
                    ),
                    fast_finish=True,
                )
        """),
        encoding="utf-8",
    )
    m = load_matrix(path)
    assert m.fast_finish is True
    assert [j.name for j in m.jobs] == ["lint", "test (stable)", "test (nightly)"]


def test_python_workflow_constant(tmp_path):
    path = tmp_path / "const_workflow.py"
    path.write_text(
        "from matrixci.dsl import matrix, job\nMATRIX = matrix(job('a', 'shell', script='true'))\n",
        encoding="utf-8",
    )
    assert load_matrix(path).jobs[0].name == "a"


def test_python_workflow_must_define_a_matrix(tmp_path):
    path = tmp_path / "bad_workflow.py"
    path.write_text("JOBS = []\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="MatrixDefinition"):
        load_matrix(path)


def test_python_workflow_is_validated(tmp_path):
    path = tmp_path / "unknown_workflow.py"
    path.write_text(
        "from matrixci.dsl import matrix, job\nMATRIX = matrix(job('a', 'fortran', script='true'))\n",
        encoding="utf-8",
    )
    with pytest.raises(ConfigurationError) as excinfo:
        load_matrix(path)
    assert excinfo.value.kind == "unknown_runtime"


def test_file_that_is_not_utf8(tmp_path):
    path = tmp_path / ".travis.yml"
    path.write_bytes(b"\xff\xfematrix: {}\n")
    with pytest.raises(ConfigurationError) as excinfo:
        load_matrix(path)
    assert excinfo.value.kind == "invalid_config"
    assert "path" in excinfo.value.details


@pytest.mark.parametrize(
    "source",
    [
        "def workflow(:\n",
        "MATRIX = undefined_name\n",
        "def workflow():\n    raise RuntimeError('boom')\n",
        "from matrixci.model import JobSpec, Phase, Step\n"
        "MATRIX = JobSpec(name='a', runtime_id='shell', script=[Step('x', Phase.INSTALL)])\n",
    ],
)
def test_python_workflow_that_raises(tmp_path, source):
    path = tmp_path / "broken_workflow.py"
    path.write_text(source, encoding="utf-8")
    with pytest.raises(ConfigurationError) as excinfo:
        load_matrix(path)
    assert excinfo.value.kind == "invalid_config"
    assert excinfo.value.details["path"] == str(path.resolve())
    assert excinfo.value.__cause__ is not None


def test_unknown_keys_are_reported(capsys):
    m = _yaml("""
        os: linux
        language: shell
        matrix:
          include:
            - name: typo
              scirpt: make test
              script: echo ok
            - name: travis keys
              before_install: echo skipped
              script: echo ok
    """)
    assert [j.name for j in m.jobs] == ["typo", "travis keys"]
    err = capsys.readouterr().err
    assert "job #1 ('typo'): ignoring unknown key(s) scirpt" in err
    assert "before_install" not in err
    assert "top level" not in err
