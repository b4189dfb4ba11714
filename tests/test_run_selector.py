from __future__ import annotations

from hypothesis import given, strategies as st
import pytest

from fakes import make_pull_request, make_run
from rerun_workflow.models import PULL_REQUEST_EVENTS
from rerun_workflow.run_selector import latest_run_for_event, select_latest_runs


def test_selects_latest_run_for_same_event() -> None:
    older = make_run(1, updated_at="2024-01-01T00:00:00Z")
    newer = make_run(2, updated_at="2024-01-02T00:00:00Z")

    selected = select_latest_runs([newer, older], make_pull_request())

    assert [run.run_id for run in selected] == [2]


def test_returns_one_run_per_event_in_event_order() -> None:
    target_run = make_run(10, event="pull_request_target", updated_at="2024-01-05T00:00:00Z")
    pr_run_old = make_run(11, event="pull_request", updated_at="2024-01-01T00:00:00Z")
    pr_run_new = make_run(12, event="pull_request", updated_at="2024-01-03T00:00:00Z")

    selected = select_latest_runs([target_run, pr_run_old, pr_run_new], make_pull_request())

    assert [(run.run_id, run.event) for run in selected] == [
        (12, "pull_request"),
        (10, "pull_request_target"),
    ]


def test_excludes_runs_for_other_branch_or_commit() -> None:
    current = make_run(1, updated_at="2024-01-01T00:00:00Z")
    stale_commit = make_run(2, head_sha="old", updated_at="2024-02-01T00:00:00Z")
    other_branch = make_run(3, head_branch="main", updated_at="2024-03-01T00:00:00Z")

    selected = select_latest_runs([current, stale_commit, other_branch], make_pull_request())

    assert [run.run_id for run in selected] == [1]


def test_ignores_unrecognized_events() -> None:
    push_run = make_run(1, event="push")

    assert select_latest_runs([push_run], make_pull_request()) == ()


def test_returns_empty_and_warns_when_nothing_matches(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("WARNING", logger="rerun_workflow"):
        selected = select_latest_runs([make_run(1, head_sha="other")], make_pull_request(7))

    assert selected == ()
    assert any(
        "event=workflow_runs_not_found" in message and "pr_number=7" in message
        for message in (record.getMessage() for record in caplog.records)
    )


def test_missing_timestamp_never_displaces_dated_run() -> None:
    dated = make_run(1, updated_at="2024-01-01T00:00:00Z")
    undated = make_run(2, updated_at=None)

    assert latest_run_for_event([dated, undated], "pull_request") == dated
    assert latest_run_for_event([undated, dated], "pull_request") == dated


def test_latest_run_for_event_returns_none_without_candidates() -> None:
    assert latest_run_for_event([], "pull_request") is None
    assert latest_run_for_event([make_run(1, event="push")], "pull_request") is None


def _timestamp(minutes: int) -> str:
    day, rest = divmod(minutes, 1440)
    hour, minute = divmod(rest, 60)
    return f"2024-01-{1 + day:02d}T{hour:02d}:{minute:02d}:00Z"


_timestamps = st.integers(min_value=0, max_value=10_000).map(_timestamp)


@given(
    st.lists(
        st.tuples(
            st.sampled_from(PULL_REQUEST_EVENTS + ("push",)),
            _timestamps,
            st.booleans(),
        ),
        max_size=12,
    )
)
def test_selection_is_latest_matching_run_per_event(
    entries: list[tuple[str, str, bool]],
) -> None:
    runs = [
        make_run(
            index,
            event=event,
            updated_at=updated_at,
            head_sha="abc123" if matches else "stale",
        )
        for index, (event, updated_at, matches) in enumerate(entries)
    ]

    selected = select_latest_runs(runs, make_pull_request())

    assert len(selected) <= len(PULL_REQUEST_EVENTS)
    events = [run.event for run in selected]
    assert events == [event for event in PULL_REQUEST_EVENTS if event in events]
    for chosen in selected:
        assert chosen.head_sha == "abc123"
        same_event = [
            run for run in runs if run.event == chosen.event and run.head_sha == "abc123"
        ]
        assert chosen.updated_at == max(run.updated_at or "" for run in same_event)
