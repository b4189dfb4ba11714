from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
import json
import logging
import os
from typing import cast
from urllib.parse import quote, urlencode

from rerun_workflow.models import HeadPullRequest, LabeledPullRequest, PullRequest, WorkflowRun
from rerun_workflow.observability import log_event, warn_event
from rerun_workflow.shell import run


LOGGER = logging.getLogger("rerun_workflow.github_gateway")

PULL_REQUESTS_WITH_LABELS_QUERY = """
query pullRequestsWithLabels($owner: String!, $repo: String!, $labels: [String!]) {
  repository(owner: $owner, name: $repo) {
    pullRequests(
      labels: $labels
      states: OPEN
      first: 100
      orderBy: { field: UPDATED_AT, direction: DESC }
    ) {
      edges {
        node {
          number
          labels(first: 100) {
            edges {
              node {
                name
              }
            }
          }
        }
      }
    }
  }
}
""".strip()


class GitHubApiError(RuntimeError):
    """Unexpected or failed GitHub API response."""


class RerunTriggerError(GitHubApiError):
    pass


class LabelRemovalError(GitHubApiError):
    pass


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str
    token: str | None = field(default=None, repr=False)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def get_pull_request(self, pr_number: int) -> PullRequest:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}"
        payload_obj = _as_object_dict(self._api_json("GET", path))
        if payload_obj is None:
            raise GitHubApiError("Unexpected GitHub response: expected object for pull request")

        head = _as_object_dict(payload_obj.get("head"))
        if head is None:
            raise GitHubApiError("Unexpected GitHub response: missing pull request head")

        pull_request = PullRequest(
            number=_as_int(payload_obj.get("number"), field="number"),
            head_ref=_as_string(head.get("ref")),
            head_sha=_as_string(head.get("sha")),
            labels=_label_names(payload_obj.get("labels")),
            state=_as_string(payload_obj.get("state")) or "open",
        )
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request",
            pr_number=pull_request.number,
            head_ref=pull_request.head_ref,
            head_sha=pull_request.head_sha,
        )
        return pull_request

    def list_workflow_runs(
        self, workflow: str, events: Sequence[str], branch: str
    ) -> tuple[WorkflowRun, ...]:
        query = urlencode(
            {
                "event": " OR ".join(events),
                "branch": branch,
                "per_page": "100",
            }
        )
        path = f"/repos/{self.owner}/{self.name}/actions/workflows/{workflow}/runs?{query}"
        payload_obj = _as_object_dict(self._api_json("GET", path))
        if payload_obj is None:
            raise GitHubApiError("Unexpected GitHub response: expected object for workflow runs")
        runs_payload = payload_obj.get("workflow_runs")
        if not isinstance(runs_payload, list):
            raise GitHubApiError("Unexpected GitHub response: expected workflow_runs list")

        runs: list[WorkflowRun] = []
        for item in runs_payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            runs.append(parse_workflow_run(item_obj))

        log_event(
            LOGGER,
            "github_read",
            endpoint="workflow_runs",
            workflow=workflow,
            branch=branch,
            count=len(runs),
        )
        return tuple(runs)

    def rerun_workflow(self, run_id: int) -> None:
        self._trigger_rerun(run_id, f"/repos/{self.owner}/{self.name}/actions/runs/{run_id}/rerun")

    def rerun_failed_jobs(self, run_id: int) -> None:
        self._trigger_rerun(
            run_id,
            f"/repos/{self.owner}/{self.name}/actions/runs/{run_id}/rerun-failed-jobs",
        )

    def remove_label(self, pr_number: int, label: str) -> bool:
        """Remove ``label`` from the pull request.

        Returns False when the label was already absent, which GitHub reports
        as a 404.
        """
        path = f"/repos/{self.owner}/{self.name}/issues/{pr_number}/labels/{_quote_path(label)}"
        try:
            status_code, body = self._api_request("DELETE", path)
        except GitHubApiError as exc:
            raise LabelRemovalError(
                f"Removing label {label!r} from pull request {pr_number} failed: {exc}"
            ) from exc
        if status_code == 404:
            log_event(LOGGER, "label_already_absent", pr_number=pr_number, label=label)
            return False
        if status_code < 200 or status_code >= 300:
            raise LabelRemovalError(
                f"Removing label {label!r} from pull request {pr_number} failed "
                f"with status {status_code}: {body.strip() or '<empty>'}"
            )
        return True

    def search_open_pull_requests_by_labels(
        self, labels: Sequence[str]
    ) -> tuple[LabeledPullRequest, ...]:
        payload_obj = _as_object_dict(
            self._graphql(
                PULL_REQUESTS_WITH_LABELS_QUERY,
                owner=self.owner,
                repo=self.name,
                labels=list(labels),
            )
        )
        data = _as_object_dict(payload_obj.get("data")) if payload_obj else None
        repository = _as_object_dict(data.get("repository")) if data else None
        if repository is None:
            raise GitHubApiError("Unexpected GitHub response: missing repository in search")
        pull_requests = _as_object_dict(repository.get("pullRequests"))
        edges = pull_requests.get("edges") if pull_requests else None

        found: list[LabeledPullRequest] = []
        for edge in edges if isinstance(edges, list) else []:
            edge_obj = _as_object_dict(edge)
            node = _as_object_dict(edge_obj.get("node")) if edge_obj else None
            if node is None or node.get("number") is None:
                continue
            labels_obj = _as_object_dict(node.get("labels"))
            label_edges = labels_obj.get("edges") if labels_obj else None
            if not isinstance(label_edges, list):
                continue
            names: list[str] = []
            for label_edge in label_edges:
                label_edge_obj = _as_object_dict(label_edge)
                label_node = (
                    _as_object_dict(label_edge_obj.get("node")) if label_edge_obj else None
                )
                name = label_node.get("name") if label_node else None
                if isinstance(name, str):
                    names.append(name)
            found.append(
                LabeledPullRequest(
                    number=_as_int(node.get("number"), field="number"),
                    labels=tuple(names),
                )
            )

        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_requests_with_labels",
            labels=tuple(labels),
            count=len(found),
        )
        return tuple(found)

    def list_open_pull_requests_by_head(
        self, head_owner: str, branch: str
    ) -> tuple[HeadPullRequest, ...]:
        query = urlencode(
            {
                "state": "open",
                "head": f"{head_owner}:{branch}",
                "sort": "updated",
                "direction": "desc",
                "per_page": "100",
            }
        )
        path = f"/repos/{self.owner}/{self.name}/pulls?{query}"
        payload = self._api_json("GET", path)
        if not isinstance(payload, list):
            raise GitHubApiError(
                "Unexpected GitHub response: expected list for pull request lookup"
            )

        candidates: list[HeadPullRequest] = []
        for item in payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            head = _as_object_dict(item_obj.get("head"))
            candidates.append(
                HeadPullRequest(
                    number=_as_int(item_obj.get("number"), field="number"),
                    head_sha=_as_string(head.get("sha") if head else None),
                )
            )
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request_lookup_by_head",
            head=f"{head_owner}:{branch}",
            count=len(candidates),
        )
        return tuple(candidates)

    def _trigger_rerun(self, run_id: int, path: str) -> None:
        try:
            status_code, body = self._api_request("POST", path)
        except GitHubApiError as exc:
            raise RerunTriggerError(f"Re-running workflow run {run_id} failed: {exc}") from exc
        if status_code < 200 or status_code >= 300:
            raise RerunTriggerError(
                f"Re-running workflow run {run_id} failed with status {status_code}: "
                f"{body.strip() or '<empty>'}"
            )

    def _graphql(self, query: str, **variables: object) -> object:
        payload: dict[str, object] = {"query": query, "variables": variables}
        return self._api_json("POST", "graphql", payload=payload)

    def _api_json(self, method: str, path: str, payload: dict[str, object] | None = None) -> object:
        status_code, body = self._api_request(method, path, payload=payload)
        if status_code < 200 or status_code >= 300:
            warn_event(
                LOGGER,
                "github_request_failed",
                method=method.upper(),
                path=path,
                status_code=status_code,
                body_preview=_preview_for_log(body),
            )
            message = body.strip() or "<empty>"
            raise GitHubApiError(f"GitHub API request failed with status {status_code}: {message}")
        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            warn_event(
                LOGGER,
                "github_request_failed",
                method=method.upper(),
                path=path,
                status_code=status_code,
                body_preview=_preview_for_log(body),
            )
            raise GitHubApiError(f"GitHub {method.upper()} {path} returned invalid JSON") from exc

    def _api_request(
        self, method: str, path: str, payload: dict[str, object] | None = None
    ) -> tuple[int, str]:
        cmd = ["gh", "api", "--method", method.upper(), "--include", path]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)
        # gh exits non-zero on HTTP errors but still prints the response when
        # --include is set, so status handling happens on the parsed output.
        raw = run(cmd, input_text=stdin_payload, check=False, env=self._env())
        try:
            status_code, _headers, body = _parse_http_response(raw)
        except GitHubApiError:
            warn_event(
                LOGGER,
                "github_response_unparseable",
                method=method.upper(),
                path=path,
                raw_preview=_preview_for_log(raw),
            )
            raise
        return status_code, body

    def _env(self) -> dict[str, str] | None:
        if self.token is None:
            return None
        return {**os.environ, "GH_TOKEN": self.token}


def parse_workflow_run(item_obj: dict[str, object]) -> WorkflowRun:
    pull_requests_payload = item_obj.get("pull_requests")
    pr_numbers: list[int] = []
    if isinstance(pull_requests_payload, list):
        for raw in pull_requests_payload:
            pr_obj = _as_object_dict(raw)
            if pr_obj is not None and "number" in pr_obj:
                pr_numbers.append(_as_int(pr_obj.get("number"), field="number"))

    head_repo = _as_object_dict(item_obj.get("head_repository"))
    head_owner_obj = _as_object_dict(head_repo.get("owner")) if head_repo else None
    head_owner = _as_optional_str(head_owner_obj.get("login")) if head_owner_obj else None

    return WorkflowRun(
        run_id=_as_int(item_obj.get("id"), field="id"),
        event=_as_string(item_obj.get("event")),
        status=_as_string(item_obj.get("status")).strip().lower(),
        conclusion=_normalize_optional_lower_str(item_obj.get("conclusion")),
        updated_at=_as_optional_str(item_obj.get("updated_at")) or None,
        head_branch=_as_string(item_obj.get("head_branch")),
        head_sha=_as_string(item_obj.get("head_sha")),
        head_owner=head_owner or None,
        pull_request_numbers=tuple(pr_numbers),
        html_url=_as_string(item_obj.get("html_url")),
    )


def _label_names(labels_obj: object) -> tuple[str, ...]:
    names: list[str] = []
    if isinstance(labels_obj, list):
        for entry in labels_obj:
            entry_obj = _as_object_dict(entry)
            if entry_obj is None:
                continue
            name = entry_obj.get("name")
            if isinstance(name, str):
                names.append(name)
    return tuple(names)


def _quote_path(segment: str) -> str:
    return quote(segment, safe="")


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index

    if status_line_index < 0:
        raise GitHubApiError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise GitHubApiError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise GitHubApiError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _normalize_optional_lower_str(value: object) -> str | None:
    raw = _as_optional_str(value)
    if raw is None:
        return None
    normalized = raw.strip().lower()
    return normalized or None


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_optional_str(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise GitHubApiError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise GitHubApiError(f"Unexpected GitHub response value for {field}: {value}") from exc
    raise GitHubApiError(f"Unexpected GitHub response type for {field}")
