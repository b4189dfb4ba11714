from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
import logging

from rerun_workflow.models import PULL_REQUEST_EVENTS, PullRequest, WorkflowRun
from rerun_workflow.observability import log_event, warn_event


LOGGER = logging.getLogger("rerun_workflow.run_selector")


def select_latest_runs(
    runs: Iterable[WorkflowRun], pull_request: PullRequest
) -> tuple[WorkflowRun, ...]:
    """Pick the latest run per pull request event for the PR's current head.

    Runs for other branches or for superseded commits are ignored. The result
    holds at most one run per entry of ``PULL_REQUEST_EVENTS``, in that order.
    """
    matching = [
        run
        for run in runs
        if run.head_branch == pull_request.head_ref and run.head_sha == pull_request.head_sha
    ]
    if not matching:
        warn_event(
            LOGGER,
            "workflow_runs_not_found",
            pr_number=pull_request.number,
            head_ref=pull_request.head_ref,
            head_sha=pull_request.head_sha,
        )
        return ()

    selected: list[WorkflowRun] = []
    for event in PULL_REQUEST_EVENTS:
        latest = latest_run_for_event(matching, event)
        if latest is not None:
            selected.append(latest)

    log_event(
        LOGGER,
        "workflow_runs_selected",
        pr_number=pull_request.number,
        matching_count=len(matching),
        run_ids=tuple(run.run_id for run in selected),
    )
    return tuple(selected)


def latest_run_for_event(runs: Iterable[WorkflowRun], event: str) -> WorkflowRun | None:
    latest: WorkflowRun | None = None
    latest_updated: datetime | None = None
    for run in runs:
        if run.event != event:
            continue
        updated = _parse_timestamp(run.updated_at)
        if latest is None:
            latest, latest_updated = run, updated
            continue
        # A run without a timestamp never displaces the current pick.
        if updated is not None and (latest_updated is None or updated > latest_updated):
            latest, latest_updated = run, updated
    return latest


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed
