from __future__ import annotations

import logging
from typing import assert_never

from rerun_workflow.models import RerunAction, RerunCondition, WorkflowRun
from rerun_workflow.observability import log_event, warn_event


LOGGER = logging.getLogger("rerun_workflow.rerun_policy")

_ACTIVE_STATUSES = frozenset({"queued", "in_progress"})
_TERMINAL_OK_CONCLUSIONS = frozenset({"success", "cancelled"})


def decide(run: WorkflowRun, condition: RerunCondition) -> RerunAction:
    """Decide what to do with one workflow run under ``condition``.

    Queued and in-progress runs are never re-triggered. Completed runs are
    re-run unconditionally for ``ALWAYS``, only on failure for
    ``ON_FAILURE``, and never for ``NEVER``. Statuses and conclusions outside
    the known set are reported as unsupported.
    """
    if run.status in _ACTIVE_STATUSES:
        if condition is RerunCondition.NEVER:
            return RerunAction.SKIPPED
        log_event(LOGGER, "workflow_run_already_active", run_id=run.run_id, status=run.status)
        return RerunAction.ALREADY_ACTIVE

    if run.status != "completed":
        warn_event(
            LOGGER,
            "workflow_run_status_unsupported",
            run_id=run.run_id,
            status=run.status,
        )
        return RerunAction.UNSUPPORTED

    if condition is RerunCondition.NEVER:
        return RerunAction.SKIPPED
    if condition is RerunCondition.ALWAYS:
        return RerunAction.RERUN
    if condition is RerunCondition.ON_FAILURE:
        return _decide_on_failure(run)
    assert_never(condition)


def _decide_on_failure(run: WorkflowRun) -> RerunAction:
    if run.conclusion == "failure":
        return RerunAction.RERUN
    if run.conclusion in _TERMINAL_OK_CONCLUSIONS:
        log_event(
            LOGGER,
            "workflow_run_terminal_ok",
            run_id=run.run_id,
            conclusion=run.conclusion,
        )
        return RerunAction.TERMINAL_OK
    warn_event(
        LOGGER,
        "workflow_run_conclusion_unsupported",
        run_id=run.run_id,
        conclusion=run.conclusion,
    )
    return RerunAction.UNSUPPORTED
