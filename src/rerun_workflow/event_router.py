from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
import logging
from typing import cast

from rerun_workflow.config import ActionConfig
from rerun_workflow.event_context import EventContextError
from rerun_workflow.github_gateway import GitHubGateway, parse_workflow_run
from rerun_workflow.models import (
    PULL_REQUEST_EVENTS,
    EventContext,
    LabeledPullRequest,
    RerunCondition,
    WorkflowRun,
)
from rerun_workflow.observability import error_event, log_event, warn_event
from rerun_workflow.rerun_pass import PassResult, RerunPass


LOGGER = logging.getLogger("rerun_workflow.event_router")

LABEL_EVENTS = frozenset({"pull_request", "pull_request_target"})
SCAN_EVENTS = frozenset({"push", "schedule", "workflow_dispatch"})
WORKFLOW_RUN_EVENT = "workflow_run"


@dataclass(frozen=True)
class RouterResult:
    passes: tuple[PassResult, ...] = ()
    errors: tuple[str, ...] = ()

    @property
    def failures(self) -> tuple[str, ...]:
        collected: list[str] = list(self.errors)
        for result in self.passes:
            collected.extend(result.failures)
        return tuple(collected)

    @property
    def ok(self) -> bool:
        return not self.failures


class EventRouter:
    def __init__(
        self,
        github: GitHubGateway,
        config: ActionConfig,
        *,
        rerun_pass: RerunPass | None = None,
    ) -> None:
        self._github = github
        self._config = config
        self._pass = rerun_pass if rerun_pass is not None else RerunPass(github, config)

    def handle(self, context: EventContext) -> RouterResult:
        log_event(
            LOGGER,
            "event_received",
            event_name=context.event_name,
            repository=context.repository,
        )
        if context.event_name in LABEL_EVENTS:
            return self.handle_pull_request_event(context)
        if context.event_name in SCAN_EVENTS:
            return self.handle_repo_event(context)
        if context.event_name == WORKFLOW_RUN_EVENT:
            return self.handle_workflow_run_event(context)
        warn_event(LOGGER, "event_unsupported", event_name=context.event_name)
        return RouterResult()

    def handle_pull_request_event(self, context: EventContext) -> RouterResult:
        payload = context.payload
        if _as_dict(payload.get("pull_request")) is None:
            log_event(LOGGER, "event_ignored", reason="missing_pull_request")
            return RouterResult()

        action = payload.get("action")
        number = _pull_request_number(payload)
        label_obj = _as_dict(payload.get("label"))
        label = label_obj.get("name") if label_obj is not None else None

        is_once_added = (
            action == "labeled"
            and self._config.once_label is not None
            and label == self._config.once_label
        )
        is_trigger_changed = action in {"labeled", "unlabeled"} and label in set(
            self._config.trigger_labels
        )
        if is_once_added or is_trigger_changed:
            return RouterResult(passes=(self._pass.run(number, RerunCondition.ALWAYS),))
        if action == "closed":
            return RouterResult(passes=(self._pass.clear_control_labels(number),))

        log_event(
            LOGGER,
            "event_ignored",
            reason="label_not_configured",
            pr_number=number,
            action=action if isinstance(action, str) else None,
            label=label if isinstance(label, str) else None,
        )
        return RouterResult()

    def handle_repo_event(self, context: EventContext) -> RouterResult:
        _ = context
        searched = self._config.control_labels
        if not searched:
            log_event(LOGGER, "scan_skipped", reason="no_control_labels")
            return RouterResult()

        pull_requests = self._github.search_open_pull_requests_by_labels(searched)
        log_event(
            LOGGER,
            "scan_pull_requests_found",
            labels=searched,
            count=len(pull_requests),
        )

        work: list[tuple[int, RerunCondition]] = []
        for pull_request in pull_requests:
            condition = self._scan_condition(pull_request)
            if condition is not None:
                work.append((pull_request.number, condition))
        return self._run_all(work)

    def handle_workflow_run_event(self, context: EventContext) -> RouterResult:
        payload = context.payload
        if payload.get("action") != "completed":
            log_event(LOGGER, "event_ignored", reason="workflow_run_not_completed")
            return RouterResult()

        run_obj = _as_dict(payload.get("workflow_run"))
        if run_obj is None:
            raise EventContextError("workflow_run event payload is missing `workflow_run`")
        workflow_run = parse_workflow_run(run_obj)

        if workflow_run.event not in PULL_REQUEST_EVENTS:
            log_event(
                LOGGER,
                "event_ignored",
                reason="workflow_run_not_pull_request",
                run_id=workflow_run.run_id,
                run_event=workflow_run.event,
            )
            return RouterResult()
        if not workflow_run.is_successful_or_cancelled:
            log_event(
                LOGGER,
                "event_ignored",
                reason="workflow_run_not_successful",
                run_id=workflow_run.run_id,
                conclusion=workflow_run.conclusion,
            )
            return RouterResult()

        numbers = self._pull_requests_for_run(workflow_run)
        if not numbers:
            warn_event(LOGGER, "workflow_run_pull_requests_not_found", run_id=workflow_run.run_id)
            return RouterResult()
        log_event(
            LOGGER,
            "workflow_run_pull_requests_found",
            run_id=workflow_run.run_id,
            pr_numbers=numbers,
        )
        return self._run_all([(number, RerunCondition.NEVER) for number in numbers])

    def _scan_condition(self, pull_request: LabeledPullRequest) -> RerunCondition | None:
        once_label = self._config.once_label
        continuous_label = self._config.continuous_label
        if once_label is not None and once_label in pull_request.labels:
            return RerunCondition.ALWAYS
        if continuous_label is not None and continuous_label in pull_request.labels:
            return RerunCondition.ON_FAILURE
        return None

    def _pull_requests_for_run(self, workflow_run: WorkflowRun) -> tuple[int, ...]:
        if workflow_run.pull_request_numbers:
            return workflow_run.pull_request_numbers
        # Runs from forks carry no pull request references; look them up by head.
        if workflow_run.head_owner is None:
            return ()
        candidates = self._github.list_open_pull_requests_by_head(
            workflow_run.head_owner, workflow_run.head_branch
        )
        return tuple(
            candidate.number
            for candidate in candidates
            if candidate.head_sha == workflow_run.head_sha
        )

    def _run_all(self, work: list[tuple[int, RerunCondition]]) -> RouterResult:
        if not work:
            return RouterResult()

        passes: list[PassResult] = []
        errors: list[str] = []
        with ThreadPoolExecutor(
            max_workers=min(self._config.max_workers, len(work)),
            thread_name_prefix="pull-request",
        ) as pool:
            futures: list[tuple[int, Future[PassResult]]] = [
                (number, pool.submit(self._pass.run, number, condition))
                for number, condition in work
            ]
            for number, future in futures:
                try:
                    passes.append(future.result())
                except Exception as exc:  # noqa: BLE001
                    error_event(
                        LOGGER,
                        "pull_request_pass_failed",
                        pr_number=number,
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )
                    errors.append(f"Processing pull request {number} failed: {exc}")
        return RouterResult(passes=tuple(passes), errors=tuple(errors))


def _as_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    return cast(dict[str, object], value)


def _pull_request_number(payload: dict[str, object]) -> int:
    number = payload.get("number")
    if number is None:
        pull_request = _as_dict(payload.get("pull_request"))
        number = pull_request.get("number") if pull_request is not None else None
    if isinstance(number, bool) or not isinstance(number, int):
        raise EventContextError("pull_request event payload has no valid `number`")
    return number
