import argparse
import json
import sys
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger


def _load_env() -> None:
    """Load environment variables from .env if present."""
    env_path = Path(".env")
    if env_path.exists():
        load_dotenv(dotenv_path=env_path)


def _load_findings(path: str) -> tuple[list, list]:
    """Read agent findings from a JSON list or a ``{"findings": [...]}`` object.

    A record that does not parse is logged and returned as a skipped item
    instead of failing the whole batch.
    """
    from reconciler.models import Finding, SkippedItem

    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("findings", [])

    findings, rejected = [], []
    for index, item in enumerate(data):
        try:
            if not isinstance(item, dict):
                raise TypeError(f"expected an object, got {type(item).__name__}")
            findings.append(Finding.from_dict(item))
        except (ValueError, TypeError) as e:
            logger.warning(f"Skipping finding #{index}: {e}")
            rejected.append(SkippedItem("finding", f"#{index}", "invalid_finding"))
    return findings, rejected


def _build_adapter(args: argparse.Namespace):
    """Create the platform adapter selected on the command line."""
    if args.platform == "github":
        from platforms.github import GitHubAdapter

        if args.pr_url:
            return GitHubAdapter.from_pr_url(args.pr_url)
        return GitHubAdapter.from_env()

    if args.platform == "ado":
        from platforms.azure_devops import AzureDevOpsAdapter

        return AzureDevOpsAdapter.from_env()

    from platforms.local import LocalAdapter

    return LocalAdapter(args.comments)


def _load_diff_files(args: argparse.Namespace, adapter) -> list:
    """Get diff files from a diff file, a git range or the platform."""
    from platforms.diff_source import GitDiffSource, parse_unified_diff

    if args.diff:
        text = Path(args.diff).read_text(encoding="utf-8")
        return parse_unified_diff(text)
    if args.range:
        base, head = args.range
        logger.info(f"Reading diff from range: {base}..{head}")
        return GitDiffSource(args.repo_path).diff_files(base, head)
    if hasattr(adapter, "list_diff_files"):
        return adapter.list_diff_files()

    logger.warning("No diff source given; finding lines will not be validated")
    return []


def main(argv: list[str] | None = None) -> None:
    """Entry point: reconcile findings against a diff and the PR's comments.

    Args:
        argv: Optional list of CLI arguments (for testing). If None, sys.argv is used.
    """

    _load_env()

    parser = argparse.ArgumentParser(
        description="Reconcile review findings with existing PR comments"
    )
    parser.add_argument("--findings", required=True, help="Path to findings JSON")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--diff", help="Path to a unified diff file")
    group.add_argument(
        "--range",
        nargs=2,
        metavar=("BASE", "HEAD"),
        help="Base and head refs to diff (base head)",
    )
    parser.add_argument(
        "--platform",
        choices=("local", "github", "ado"),
        default="local",
        help="Where existing comments are read from and the plan is applied",
    )
    parser.add_argument("--comments", help="Existing comments JSON (local platform)")
    parser.add_argument("--pr-url", help="GitHub PR URL (github platform)")
    parser.add_argument(
        "--repo-path", default=".", help="Path to git repository (default: current dir)"
    )
    parser.add_argument(
        "--apply", action="store_true", help="Apply the plan instead of a dry run"
    )
    parser.add_argument("--output", help="Write the reconciliation result JSON here")
    args = parser.parse_args(argv)

    logger.info(f"Review reconciler starting (platform={args.platform})")

    try:
        from reconciler.config import ReconcilerConfig
        from reconciler.orchestrator import (
            ReconciliationInput,
            ReconciliationOrchestrator,
        )

        findings, rejected = _load_findings(args.findings)
        adapter = _build_adapter(args)
        diff_files = _load_diff_files(args, adapter)
        comments = adapter.list_comments()

        orchestrator = ReconciliationOrchestrator(ReconcilerConfig.from_env())
        result = orchestrator.run(ReconciliationInput(findings, diff_files, comments))
        if not result.ok or result.output is None:
            raise RuntimeError(f"Reconciliation failed: {result.error_message}")
        result.output.skipped[:0] = rejected

        report_json = result.output.to_json()
        if args.output:
            Path(args.output).write_text(report_json, encoding="utf-8")
            logger.info(f"Reconciliation result written to {args.output}")
        else:
            print(report_json)

        if args.apply:
            report = adapter.apply_post_plan(result.output.plan)
            if not report.ok:
                logger.error(f"{len(report.failed)} action(s) failed to apply")
                sys.exit(1)
        else:
            logger.info("Dry run; pass --apply to post the plan")
    except Exception as e:
        logger.exception(f"Failed to run review reconciler: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
