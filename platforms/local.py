"""Local dry-run adapter: reads comments from JSON and only logs the plan."""

import json
from pathlib import Path

from loguru import logger

from platforms.base import ApplyReport
from reconciler.models import ActionType, ExistingComment, PostPlan


class LocalAdapter:
    """PlatformAdapter that never calls a remote API.

    Existing comments come from an optional JSON file holding a list of
    comment objects (``id``, ``body``, ``path``, ``line``, ``thread_id``,
    ``is_resolved``).
    """

    def __init__(self, comments_path: str | None = None) -> None:
        self.comments_path = Path(comments_path) if comments_path else None

    def list_comments(self) -> list[ExistingComment]:
        if not self.comments_path:
            return []
        if not self.comments_path.exists():
            raise FileNotFoundError(f"Comments file not found: {self.comments_path}")

        data = json.loads(self.comments_path.read_text(encoding="utf-8"))
        if isinstance(data, dict):
            data = data.get("comments", [])
        comments = [ExistingComment.from_dict(item) for item in data]
        logger.info(f"Loaded {len(comments)} existing comments from {self.comments_path}")
        return comments

    def apply_post_plan(self, plan: PostPlan) -> ApplyReport:
        report = ApplyReport()
        for i, action in enumerate(plan.actions, start=1):
            if action.action == ActionType.CREATE:
                logger.info(
                    f"[dry-run] create comment on {action.path}:{action.line or 'file'} "
                    f"({len(action.findings)} finding(s))"
                )
                report.created.append(f"local-{i}")
            elif action.action == ActionType.UPDATE:
                logger.info(
                    f"[dry-run] update comment {action.target_comment_id}, removing "
                    f"{len(action.markers_to_remove)} stale finding(s)"
                )
                report.updated.append(action.target_comment_id or "")
            elif action.action == ActionType.UPSERT_SUMMARY:
                if action.target_comment_id:
                    logger.info(f"[dry-run] update summary comment {action.target_comment_id}")
                    report.updated.append(action.target_comment_id)
                else:
                    logger.info("[dry-run] create summary comment")
                    report.created.append(f"local-{i}")
            else:
                target = action.thread_id or action.target_comment_id or ""
                logger.info(f"[dry-run] resolve thread {target}")
                report.resolved.append(target)
        return report
