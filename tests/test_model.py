from __future__ import annotations

import pytest

from matrixci.dsl import job, matrix
from matrixci.model import (
    LAUNCH_FAILURE,
    JobOutcome,
    JobSpec,
    JobStatus,
    MatrixResult,
    Overall,
    Phase,
    PhaseResult,
    Step,
)


def test_phases_run_in_fixed_order():
    assert Phase.ordered() == (Phase.INSTALL, Phase.BEFORE_SCRIPT, Phase.SCRIPT)
    assert [p.value for p in Phase.ordered()] == ["install", "before_script", "script"]


def test_jobspec_stores_tuples_and_readonly_env():
    spec = JobSpec(
        name="t",
        runtime_id="rust:stable",
        script=[Step("make test", Phase.SCRIPT)],
        env={"A": "1"},
    )
    assert spec.script == (Step("make test", Phase.SCRIPT),)
    assert spec.install == ()
    with pytest.raises(TypeError):
        spec.env["B"] = "2"


def test_jobspec_rejects_step_in_wrong_phase():
    with pytest.raises(ValueError, match="belongs to script"):
        JobSpec(name="t", runtime_id="rust", install=[Step("make", Phase.SCRIPT)])


def test_keyed_jobs_disambiguates_repeated_names():
    m = matrix(
        job("test", "rust:stable", script="a"),
        job("lint", "rust:stable", script="b"),
        job("test", "rust:nightly", script="c"),
        job("test", "rust:beta", script="d"),
    )
    keys = [k for k, _ in m.keyed_jobs()]
    assert keys == ["test", "lint", "test #2", "test #3"]


def test_outcome_failed_phase_iff_not_passed():
    spec = job("t", "rust", script="ok")
    with pytest.raises(ValueError):
        JobOutcome(job=spec, status=JobStatus.PASSED, failed_phase=Phase.SCRIPT)
    with pytest.raises(ValueError):
        JobOutcome(job=spec, status=JobStatus.FAILED)
    with pytest.raises(ValueError):
        JobOutcome(job=spec, status=JobStatus.ERRORED)


def test_outcome_rejects_duplicate_phase_results():
    spec = job("t", "rust", script="ok")
    with pytest.raises(ValueError, match="duplicate"):
        JobOutcome(
            job=spec,
            status=JobStatus.PASSED,
            results=[PhaseResult(Phase.INSTALL, 0), PhaseResult(Phase.INSTALL, 0)],
        )


def test_outcome_output_concatenates_phases():
    spec = job("t", "rust", script="ok")
    outcome = JobOutcome(
        job=spec,
        status=JobStatus.FAILED,
        failed_phase=Phase.SCRIPT,
        results=[
            PhaseResult(Phase.INSTALL, 0, b"a\n"),
            PhaseResult(Phase.BEFORE_SCRIPT, 0, b""),
            PhaseResult(Phase.SCRIPT, 2, b"boom\n"),
        ],
    )
    assert outcome.output == b"a\nboom\n"
    assert not outcome.passed


def test_launch_failure_sentinel_is_not_a_process_status():
    assert LAUNCH_FAILURE not in range(-64, 256)
    assert PhaseResult(Phase.INSTALL, LAUNCH_FAILURE).launch_failed
    assert not PhaseResult(Phase.INSTALL, 127).launch_failed


def test_matrix_result_exit_code():
    assert MatrixResult(outcomes={}, overall=Overall.SUCCESS).exit_code == 0
    assert MatrixResult(outcomes={}, overall=Overall.FAILURE).exit_code == 1
