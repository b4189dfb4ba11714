from __future__ import annotations

import argparse
from collections.abc import Mapping
import os

from rerun_workflow.config import load_config
from rerun_workflow.event_context import load_event_context, split_repository
from rerun_workflow.event_router import EventRouter, RouterResult
from rerun_workflow.github_gateway import GitHubGateway
from rerun_workflow.observability import configure_logging


_OVERRIDE_INPUTS = (
    ("workflow", "workflow"),
    ("once_label", "once-label"),
    ("continuous_label", "continuous-label"),
    ("trigger_labels", "trigger-labels"),
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rerun-workflow",
        description=(
            "Re-run pull request workflows based on labels. Inputs are read from "
            "INPUT_* environment variables; flags override them."
        ),
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose runtime logging to stderr",
    )
    parser.add_argument(
        "--log-mode",
        choices=("low", "high", "actions"),
        help="Logging mode; defaults to `actions` under GitHub Actions",
    )
    parser.add_argument("--workflow", type=str, help="Workflow file name or ID")
    parser.add_argument("--once-label", type=str, help="Label consumed after one re-run")
    parser.add_argument("--continuous-label", type=str, help="Label kept until all runs succeed")
    parser.add_argument(
        "--trigger-labels",
        type=str,
        help="Comma-separated labels whose changes trigger a re-run",
    )
    parser.add_argument(
        "--failed-jobs-only",
        action="store_true",
        help="Re-run only failed jobs instead of the whole workflow run",
    )
    return parser


def main() -> None:
    args = build_parser().parse_args()
    configure_logging(_log_mode(args, os.environ))
    environ = _apply_overrides(args, os.environ)
    config = load_config(environ)
    context = load_event_context(environ)
    owner, name = split_repository(context)

    github = GitHubGateway(owner, name, token=config.token)
    result = EventRouter(github, config).handle(context)
    _exit_for_result(result)


def _log_mode(args: argparse.Namespace, environ: Mapping[str, str]) -> str:
    if args.log_mode:
        return str(args.log_mode)
    if environ.get("GITHUB_ACTIONS") == "true":
        return "actions"
    return "high" if args.verbose else "low"


def _apply_overrides(args: argparse.Namespace, environ: Mapping[str, str]) -> dict[str, str]:
    merged = dict(environ)
    for attr, input_name in _OVERRIDE_INPUTS:
        value = getattr(args, attr, None)
        if value is not None:
            merged[f"INPUT_{input_name.upper()}"] = str(value)
    if getattr(args, "failed_jobs_only", False):
        merged["INPUT_FAILED-JOBS-ONLY"] = "true"
    return merged


def _exit_for_result(result: RouterResult) -> None:
    failures = result.failures
    if not failures:
        return
    raise SystemExit(
        f"{len(failures)} operation(s) failed:\n" + "\n".join(f"- {item}" for item in failures)
    )
