from __future__ import annotations

import logging
import sys

import pytest

from rerun_workflow.observability import (
    _build_event_message,
    _normalize_field_value,
    configure_logging,
    error_event,
    log_event,
    warn_event,
)


def test_configure_logging_quiet_mode_is_idempotent() -> None:
    configure_logging(verbose=False)
    logger = logging.getLogger("rerun_workflow")
    assert logger.propagate is False
    assert logger.level > logging.CRITICAL
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0], logging.NullHandler)

    configure_logging(verbose=None)
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0], logging.NullHandler)


def test_configure_logging_verbose_mode_writes_to_stderr() -> None:
    configure_logging(verbose=True)
    logger = logging.getLogger("rerun_workflow")
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    handler = logger.handlers[0]
    assert isinstance(handler, logging.StreamHandler)
    assert handler.stream is sys.stderr
    assert handler.formatter is not None
    assert "%(threadName)s" in handler.formatter._fmt

    configure_logging(verbose="high")
    assert len(logger.handlers) == 1


def test_low_mode_keeps_allowlisted_events_and_warnings(
    capsys: pytest.CaptureFixture[str],
) -> None:
    configure_logging(verbose="low")
    logger = logging.getLogger("rerun_workflow.tests")

    log_event(logger, "github_read", endpoint="pull_request")
    log_event(logger, "workflow_rerun_started", run_id=1)
    warn_event(logger, "event_unsupported", event_name="fork")

    err = capsys.readouterr().err
    assert "event=github_read" not in err
    assert "event=workflow_rerun_started run_id=1" in err
    assert "event=event_unsupported event_name=fork" in err


def test_actions_mode_formats_workflow_commands(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(verbose="actions")
    logger = logging.getLogger("rerun_workflow.tests")

    log_event(logger, "label_removed", label="ci-retry")
    warn_event(logger, "workflow_runs_not_found", pr_number=7)
    error_event(logger, "workflow_rerun_failed", error="100%\nbroken")

    lines = capsys.readouterr().err.splitlines()
    assert lines[0] == "event=label_removed label=ci-retry"
    assert lines[1] == "::warning::event=workflow_runs_not_found pr_number=7"
    assert lines[2] == '::error::event=workflow_rerun_failed error="100%25 broken"'


def test_configure_logging_rejects_unknown_mode() -> None:
    with pytest.raises(ValueError, match="Unsupported log mode"):
        configure_logging(verbose="loud")


def test_build_event_message_sorts_and_normalizes_fields() -> None:
    message = _build_event_message(
        event="pull_request_pass_completed",
        fields={
            "labels_removed": ("ci-requeue", "ci-retry"),
            "pr_number": 42,
            "ok": True,
            "note": "two words",
            "missing": None,
            "empty": (),
        },
    )

    assert message == (
        "event=pull_request_pass_completed empty=<empty> labels_removed=ci-requeue,ci-retry "
        'missing=null note="two words" ok=true pr_number=42'
    )


def test_normalize_field_value_truncates_and_quotes() -> None:
    assert _normalize_field_value("") == "<empty>"
    assert _normalize_field_value("a=b") == '"a=b"'
    assert _normalize_field_value("x" * 130).endswith("...")
    assert _normalize_field_value(object()) == "<object>"
    assert _normalize_field_value(1.5) == "1.5"
