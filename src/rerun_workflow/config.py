from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
import logging

from rerun_workflow.observability import warn_event


LOGGER = logging.getLogger("rerun_workflow.config")
_DEFAULT_MAX_WORKERS = 4


@dataclass(frozen=True)
class ActionConfig:
    token: str = field(repr=False)
    workflow: str
    once_label: str | None = None
    continuous_label: str | None = None
    trigger_labels: tuple[str, ...] = ()
    failed_jobs_only: bool = False
    max_workers: int = _DEFAULT_MAX_WORKERS

    @property
    def control_labels(self) -> tuple[str, ...]:
        return tuple(
            label for label in (self.once_label, self.continuous_label) if label is not None
        )


class ConfigError(ValueError):
    pass


def load_config(environ: Mapping[str, str]) -> ActionConfig:
    """Build the configuration from GitHub Actions ``INPUT_*`` variables."""
    return build_config(
        token=_input(environ, "token"),
        workflow=_input(environ, "workflow"),
        once_label=_input(environ, "once-label"),
        continuous_label=_input(environ, "continuous-label"),
        trigger_labels=split_labels(_input(environ, "trigger-labels")),
        failed_jobs_only=_parse_bool(_input(environ, "failed-jobs-only"), key="failed-jobs-only"),
        max_workers=_parse_positive_int(_input(environ, "max-workers"), key="max-workers"),
    )


def build_config(
    *,
    token: str | None,
    workflow: str | None,
    once_label: str | None = None,
    continuous_label: str | None = None,
    trigger_labels: Sequence[str] = (),
    failed_jobs_only: bool = False,
    max_workers: int | None = None,
) -> ActionConfig:
    token = _require_str(token, "token")
    workflow = _require_str(workflow, "workflow")
    once_label = _optional_str(once_label)
    continuous_label = _optional_str(continuous_label)
    labels = [label.strip() for label in trigger_labels if label.strip()]

    if once_label is None and continuous_label is None and not labels:
        raise ConfigError(
            "One of `once-label`, `continuous-label` or `trigger-labels` must be specified."
        )
    if once_label is not None and once_label == continuous_label:
        raise ConfigError("`once-label` and `continuous-label` cannot have the same value.")

    for key, control_label in (("once-label", once_label), ("continuous-label", continuous_label)):
        if control_label is not None and control_label in labels:
            warn_event(
                LOGGER,
                "config_trigger_label_dropped",
                input=key,
                label=control_label,
            )
            labels = [label for label in labels if label != control_label]

    if max_workers is None:
        max_workers = _DEFAULT_MAX_WORKERS
    if max_workers < 1:
        raise ConfigError("max-workers must be >= 1")

    return ActionConfig(
        token=token,
        workflow=workflow,
        once_label=once_label,
        continuous_label=continuous_label,
        trigger_labels=tuple(dict.fromkeys(labels)),
        failed_jobs_only=failed_jobs_only,
        max_workers=max_workers,
    )


def split_labels(raw: str | None) -> tuple[str, ...]:
    if raw is None:
        return ()
    return tuple(label.strip() for label in raw.split(",") if label.strip())


def _input(environ: Mapping[str, str], name: str) -> str | None:
    # Actions exposes inputs upper-cased with spaces turned into underscores;
    # dashes are kept as-is.
    key = f"INPUT_{name.replace(' ', '_').upper()}"
    value = environ.get(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _require_str(value: str | None, key: str) -> str:
    if value is None or not value.strip():
        raise ConfigError(f"{key} is required and must be a non-empty string")
    return value.strip()


def _optional_str(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _parse_bool(value: str | None, *, key: str) -> bool:
    if value is None:
        return False
    normalized = value.lower()
    if normalized == "true":
        return True
    if normalized == "false":
        return False
    raise ConfigError(f"{key} must be 'true' or 'false', got {value!r}")


def _parse_positive_int(value: str | None, *, key: str) -> int | None:
    if value is None:
        return None
    try:
        parsed = int(value)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from exc
    if parsed < 1:
        raise ConfigError(f"{key} must be >= 1")
    return parsed
