from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import logging

from rerun_workflow.config import ActionConfig
from rerun_workflow.github_gateway import GitHubGateway
from rerun_workflow.labels import LabelActions, closed_pull_request_labels, reconcile_labels
from rerun_workflow.models import (
    PULL_REQUEST_EVENTS,
    PullRequest,
    RerunAction,
    RerunCondition,
    WorkflowRun,
)
from rerun_workflow.observability import error_event, log_event
from rerun_workflow.rerun_policy import decide
from rerun_workflow.run_selector import select_latest_runs


LOGGER = logging.getLogger("rerun_workflow.rerun_pass")


@dataclass(frozen=True)
class PassResult:
    pr_number: int
    condition: RerunCondition | None
    actions: tuple[tuple[int, RerunAction], ...] = ()
    reruns_issued: int = 0
    labels_removed: tuple[str, ...] = ()
    failures: tuple[str, ...] = ()

    @property
    def run_ids(self) -> tuple[int, ...]:
        return tuple(run_id for run_id, _ in self.actions)


class RerunPass:
    """One decision pass over a single pull request.

    Steps run in order: fetch the pull request, select its latest runs,
    decide and issue reruns, then reconcile the control labels. Reruns for
    the selected runs are issued concurrently and joined before labels are
    touched so the label rules see an accurate rerun count.
    """

    def __init__(self, github: GitHubGateway, config: ActionConfig) -> None:
        self._github = github
        self._config = config

    def run(self, pr_number: int, condition: RerunCondition) -> PassResult:
        pull_request = self._github.get_pull_request(pr_number)
        log_event(
            LOGGER,
            "pull_request_pass_started",
            pr_number=pr_number,
            condition=condition.value,
            labels=pull_request.labels,
        )
        runs = self._github.list_workflow_runs(
            self._config.workflow, PULL_REQUEST_EVENTS, pull_request.head_ref
        )
        selected = select_latest_runs(runs, pull_request)

        decisions = [(run, decide(run, condition)) for run in selected]
        to_rerun = [run for run, action in decisions if action is RerunAction.RERUN]
        failures: list[str] = []
        if to_rerun:
            with ThreadPoolExecutor(
                max_workers=len(to_rerun), thread_name_prefix="rerun"
            ) as pool:
                for error in pool.map(self._trigger_rerun, to_rerun):
                    if error is not None:
                        failures.append(error)

        label_actions = reconcile_labels(pull_request, selected, len(to_rerun), self._config)
        removed, label_failures = self._remove_labels(pull_request, label_actions)
        failures.extend(label_failures)

        result = PassResult(
            pr_number=pr_number,
            condition=condition,
            actions=tuple((run.run_id, action) for run, action in decisions),
            reruns_issued=len(to_rerun),
            labels_removed=removed,
            failures=tuple(failures),
        )
        log_event(
            LOGGER,
            "pull_request_pass_completed",
            pr_number=pr_number,
            condition=condition.value,
            run_ids=result.run_ids,
            reruns_issued=result.reruns_issued,
            labels_removed=result.labels_removed,
            failure_count=len(result.failures),
        )
        return result

    def clear_control_labels(self, pr_number: int) -> PassResult:
        pull_request = self._github.get_pull_request(pr_number)
        removed, failures = self._remove_labels(
            pull_request, closed_pull_request_labels(pull_request, self._config)
        )
        log_event(
            LOGGER,
            "pull_request_labels_cleared",
            pr_number=pr_number,
            labels_removed=removed,
        )
        return PassResult(
            pr_number=pr_number,
            condition=None,
            labels_removed=removed,
            failures=tuple(failures),
        )

    def _trigger_rerun(self, run: WorkflowRun) -> str | None:
        mode = "failed_jobs" if self._config.failed_jobs_only else "full"
        log_event(
            LOGGER,
            "workflow_rerun_started",
            run_id=run.run_id,
            mode=mode,
            run_url=run.html_url,
        )
        try:
            if self._config.failed_jobs_only:
                self._github.rerun_failed_jobs(run.run_id)
            else:
                self._github.rerun_workflow(run.run_id)
        except Exception as exc:  # noqa: BLE001
            error_event(
                LOGGER,
                "workflow_rerun_failed",
                run_id=run.run_id,
                mode=mode,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return f"Re-running workflow run {run.run_id} failed: {exc}"
        log_event(LOGGER, "workflow_rerun_triggered", run_id=run.run_id, mode=mode)
        return None

    def _remove_labels(
        self, pull_request: PullRequest, label_actions: LabelActions
    ) -> tuple[tuple[str, ...], list[str]]:
        removed: list[str] = []
        failures: list[str] = []
        for label in label_actions.remove:
            try:
                self._github.remove_label(pull_request.number, label)
            except Exception as exc:  # noqa: BLE001
                error_event(
                    LOGGER,
                    "label_removal_failed",
                    pr_number=pull_request.number,
                    label=label,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                failures.append(
                    f"Removing label {label!r} from pull request {pull_request.number} "
                    f"failed: {exc}"
                )
                continue
            log_event(LOGGER, "label_removed", pr_number=pull_request.number, label=label)
            removed.append(label)
        return tuple(removed), failures
