from __future__ import annotations

from collections.abc import Mapping
import json
import logging
from pathlib import Path
from typing import cast

from rerun_workflow.models import EventContext
from rerun_workflow.observability import log_event


LOGGER = logging.getLogger("rerun_workflow.event_context")


class EventContextError(RuntimeError):
    pass


def load_event_context(environ: Mapping[str, str]) -> EventContext:
    event_name = environ.get("GITHUB_EVENT_NAME", "").strip()
    if not event_name:
        raise EventContextError("GITHUB_EVENT_NAME is not set")

    repository = environ.get("GITHUB_REPOSITORY", "").strip()
    if repository.count("/") != 1 or not all(repository.split("/")):
        raise EventContextError(f"GITHUB_REPOSITORY must look like owner/name, got {repository!r}")

    event_path = environ.get("GITHUB_EVENT_PATH", "").strip()
    payload: dict[str, object] = {}
    if event_path:
        try:
            raw = json.loads(Path(event_path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise EventContextError(f"Failed to read event payload from {event_path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise EventContextError("Event payload must be a JSON object")
        payload = cast(dict[str, object], raw)

    log_event(
        LOGGER,
        "event_context_loaded",
        event_name=event_name,
        repository=repository,
        action=payload.get("action") if isinstance(payload.get("action"), str) else None,
    )
    return EventContext(event_name=event_name, payload=payload, repository=repository)


def split_repository(context: EventContext) -> tuple[str, str]:
    owner, _, name = context.repository.partition("/")
    if not owner or not name:
        raise EventContextError(f"Invalid repository {context.repository!r}")
    return owner, name
