from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from rerun_workflow.config import ActionConfig
from rerun_workflow.models import PullRequest, WorkflowRun


@dataclass(frozen=True)
class LabelActions:
    remove: tuple[str, ...] = ()


def reconcile_labels(
    pull_request: PullRequest,
    selected_runs: Sequence[WorkflowRun],
    reruns_issued: int,
    config: ActionConfig,
) -> LabelActions:
    remove: list[str] = []

    # The once label is consumed by every pass that sees it.
    once_label = config.once_label
    if once_label is not None and once_label in pull_request.labels:
        remove.append(once_label)

    # Keep retrying until a pass issues no reruns and every run settled.
    continuous_label = config.continuous_label
    if (
        continuous_label is not None
        and continuous_label in pull_request.labels
        and reruns_issued == 0
        and all(run.is_successful_or_cancelled for run in selected_runs)
    ):
        remove.append(continuous_label)

    return LabelActions(remove=tuple(remove))


def closed_pull_request_labels(pull_request: PullRequest, config: ActionConfig) -> LabelActions:
    return LabelActions(
        remove=tuple(label for label in config.control_labels if label in pull_request.labels)
    )
