from __future__ import annotations

from dataclasses import dataclass
import enum
from typing import Literal


RunStatus = Literal["queued", "in_progress", "completed"]
RunConclusion = Literal["success", "failure", "cancelled"]

# Runs for a pull request are triggered by one of these events; order matters
# because selected runs are reported in this order.
PULL_REQUEST_EVENTS: tuple[str, ...] = ("pull_request", "pull_request_target")


class RerunCondition(enum.Enum):
    # Re-run unless already queued or in progress.
    ALWAYS = "always"
    # Re-run only completed runs that failed.
    ON_FAILURE = "on_failure"
    # Never re-run, only clean up labels.
    NEVER = "never"


class RerunAction(enum.Enum):
    RERUN = "rerun"
    ALREADY_ACTIVE = "already_active"
    TERMINAL_OK = "terminal_ok"
    SKIPPED = "skipped"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class PullRequest:
    number: int
    head_ref: str
    head_sha: str
    labels: tuple[str, ...]
    state: str = "open"


@dataclass(frozen=True)
class WorkflowRun:
    run_id: int
    event: str
    status: str
    conclusion: str | None
    updated_at: str | None
    head_branch: str
    head_sha: str
    head_owner: str | None = None
    pull_request_numbers: tuple[int, ...] = ()
    html_url: str = ""

    @property
    def is_successful_or_cancelled(self) -> bool:
        return self.status == "completed" and self.conclusion in {"success", "cancelled"}


@dataclass(frozen=True)
class LabeledPullRequest:
    number: int
    labels: tuple[str, ...]


@dataclass(frozen=True)
class HeadPullRequest:
    number: int
    head_sha: str


@dataclass(frozen=True)
class EventContext:
    event_name: str
    payload: dict[str, object]
    repository: str = ""
