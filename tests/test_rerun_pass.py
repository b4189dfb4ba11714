from __future__ import annotations

import pytest

from fakes import FakeGitHub, make_pull_request, make_run
from rerun_workflow.config import ActionConfig
from rerun_workflow.models import PULL_REQUEST_EVENTS, RerunAction, RerunCondition
from rerun_workflow.rerun_pass import RerunPass


def _config(**overrides: object) -> ActionConfig:
    values: dict[str, object] = {
        "token": "t",
        "workflow": "ci.yml",
        "once_label": "ci-requeue",
        "continuous_label": "ci-retry",
    }
    values.update(overrides)
    return ActionConfig(**values)  # type: ignore[arg-type]


def test_pass_reruns_failed_runs_and_consumes_once_label() -> None:
    github = FakeGitHub(
        pull_requests=[make_pull_request(42, labels=("ci-requeue",))],
        runs=[
            make_run(1, conclusion="failure"),
            make_run(2, event="pull_request_target", conclusion="failure"),
        ],
    )

    result = RerunPass(github, _config()).run(42, RerunCondition.ALWAYS)

    assert sorted(github.reruns) == [1, 2]
    assert github.removed_labels == [(42, "ci-requeue")]
    assert github.list_run_calls == [("ci.yml", PULL_REQUEST_EVENTS, "feature")]
    assert result.reruns_issued == 2
    assert result.actions == ((1, RerunAction.RERUN), (2, RerunAction.RERUN))
    assert result.labels_removed == ("ci-requeue",)
    assert result.failures == ()


def test_pass_uses_failed_jobs_endpoint_when_configured() -> None:
    github = FakeGitHub(
        pull_requests=[make_pull_request(42)],
        runs=[make_run(1, conclusion="failure")],
    )

    RerunPass(github, _config(failed_jobs_only=True)).run(42, RerunCondition.ON_FAILURE)

    assert github.reruns == []
    assert github.failed_job_reruns == [1]


def test_rerun_failure_is_recorded_and_does_not_block_labels(
    caplog: pytest.LogCaptureFixture,
) -> None:
    github = FakeGitHub(
        pull_requests=[make_pull_request(42, labels=("ci-requeue", "ci-retry"))],
        runs=[
            make_run(1, conclusion="failure"),
            make_run(2, event="pull_request_target", conclusion="failure"),
        ],
    )
    github.fail_rerun_ids.add(1)

    with caplog.at_level("INFO", logger="rerun_workflow"):
        result = RerunPass(github, _config()).run(42, RerunCondition.ALWAYS)

    assert github.reruns == [2]
    assert result.reruns_issued == 2
    assert github.removed_labels == [(42, "ci-requeue")]
    assert len(result.failures) == 1
    assert "workflow run 1" in result.failures[0]
    assert any(
        "event=workflow_rerun_failed" in record.getMessage() and record.levelname == "ERROR"
        for record in caplog.records
    )


def test_label_removal_failure_is_recorded_and_other_labels_continue() -> None:
    github = FakeGitHub(
        pull_requests=[make_pull_request(42, labels=("ci-requeue", "ci-retry"))],
        runs=[make_run(1, conclusion="success")],
    )
    github.fail_label_names.add("ci-requeue")

    result = RerunPass(github, _config()).run(42, RerunCondition.ON_FAILURE)

    assert github.reruns == []
    assert github.removed_labels == [(42, "ci-retry")]
    assert result.labels_removed == ("ci-retry",)
    assert len(result.failures) == 1
    assert "ci-requeue" in result.failures[0]


def test_active_runs_block_continuous_label_removal() -> None:
    github = FakeGitHub(
        pull_requests=[make_pull_request(7, labels=("ci-retry",))],
        runs=[make_run(1, status="in_progress", conclusion=None)],
    )

    result = RerunPass(github, _config()).run(7, RerunCondition.ON_FAILURE)

    assert result.actions == ((1, RerunAction.ALREADY_ACTIVE),)
    assert github.reruns == []
    assert github.removed_labels == []


def test_never_condition_only_cleans_up_labels() -> None:
    github = FakeGitHub(
        pull_requests=[make_pull_request(7, labels=("ci-retry",))],
        runs=[make_run(1, conclusion="failure"), make_run(2, event="pull_request_target")],
    )

    result = RerunPass(github, _config()).run(7, RerunCondition.NEVER)

    assert github.reruns == []
    assert result.actions == ((1, RerunAction.SKIPPED), (2, RerunAction.SKIPPED))
    # One run still failed, so the continuous label stays.
    assert github.removed_labels == []


def test_pass_is_idempotent_on_unchanged_state() -> None:
    github = FakeGitHub(
        pull_requests=[make_pull_request(7, labels=("ci-retry",))],
        runs=[make_run(1, status="queued", conclusion=None)],
    )
    rerun_pass = RerunPass(github, _config())

    first = rerun_pass.run(7, RerunCondition.ALWAYS)
    second = rerun_pass.run(7, RerunCondition.ALWAYS)

    assert first == second
    assert github.reruns == []
    assert github.removed_labels == []


def test_clear_control_labels_removes_applied_labels_only() -> None:
    github = FakeGitHub(pull_requests=[make_pull_request(5, labels=("ci-retry", "bug"))])

    result = RerunPass(github, _config()).clear_control_labels(5)

    assert github.removed_labels == [(5, "ci-retry")]
    assert result.condition is None
    assert result.labels_removed == ("ci-retry",)
