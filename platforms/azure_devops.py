"""
Azure DevOps platform adapter.

Uses the pull-request threads REST API (api-version 7.1). Azure DevOps
addresses files with a leading slash (``/src/app.py``); that transform happens
only here, on the way out, and ``canonicalize`` undoes it on the way in.
"""

from __future__ import annotations

import os
from typing import Any

import requests
from loguru import logger

from platforms.base import ApplyReport, PlatformError, request_with_retry
from reconciler.models import ActionType, ExistingComment, PostAction, PostPlan

API_VERSION = "7.1"

# Thread status codes
THREAD_ACTIVE = 1
THREAD_FIXED = 2
THREAD_PENDING = 6

RESOLVED_STATUSES = {"fixed", "wontfix", "closed", "bydesign", 2, 3, 4, 5}


def to_ado_path(path: str) -> str:
    return path if path.startswith("/") else f"/{path}"


def thread_context(action: PostAction) -> dict[str, Any]:
    """Build the ``threadContext`` for a CREATE action."""
    context: dict[str, Any] = {"filePath": to_ado_path(action.path or "")}
    if action.line is not None:
        end = action.end_line or action.line
        context["rightFileStart"] = {"line": action.line, "offset": 1}
        context["rightFileEnd"] = {"line": end, "offset": 1}
    return context


class AzureDevOpsAdapter:
    """Azure DevOps implementation of the PlatformAdapter protocol."""

    def __init__(
        self,
        collection_url: str,
        project: str,
        repository_id: str,
        pr_id: int,
        token: str | None = None,
        timeout: int = 30,
        thread_status: int = THREAD_ACTIVE,
    ) -> None:
        self.token = token or os.getenv("SYSTEM_ACCESSTOKEN")
        if not self.token:
            raise ValueError("Azure DevOps token is required")

        self.base_url = (
            f"{collection_url.rstrip('/')}/{project}/_apis/git/repositories/"
            f"{repository_id}/pullRequests/{pr_id}"
        )
        self.pr_id = pr_id
        self.timeout = timeout
        self.thread_status = thread_status
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {self.token}",
                "Content-Type": "application/json",
                "User-Agent": "review-reconciler",
            }
        )

    @classmethod
    def from_env(cls) -> AzureDevOpsAdapter:
        """Build from Azure Pipelines predefined variables."""
        required = {
            "SYSTEM_COLLECTIONURI": os.getenv("SYSTEM_COLLECTIONURI"),
            "SYSTEM_TEAMPROJECT": os.getenv("SYSTEM_TEAMPROJECT"),
            "BUILD_REPOSITORY_ID": os.getenv("BUILD_REPOSITORY_ID"),
            "SYSTEM_PULLREQUEST_PULLREQUESTID": os.getenv(
                "SYSTEM_PULLREQUEST_PULLREQUESTID"
            ),
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ValueError(f"Missing Azure DevOps variables: {', '.join(missing)}")

        return cls(
            collection_url=required["SYSTEM_COLLECTIONURI"] or "",
            project=required["SYSTEM_TEAMPROJECT"] or "",
            repository_id=required["BUILD_REPOSITORY_ID"] or "",
            pr_id=int(required["SYSTEM_PULLREQUEST_PULLREQUESTID"] or 0),
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        return request_with_retry(
            self.session,
            method,
            url,
            timeout=self.timeout,
            params={"api-version": API_VERSION},
            **kwargs,
        )

    @staticmethod
    def _is_resolved(status: Any) -> bool:
        if isinstance(status, str):
            status = status.lower()
        return status in RESOLVED_STATUSES

    def list_comments(self) -> list[ExistingComment]:
        threads = self._request("GET", "/threads").json().get("value", [])

        comments = []
        for thread in threads:
            if thread.get("isDeleted"):
                continue

            context = thread.get("threadContext") or {}
            start = context.get("rightFileStart") or {}
            for comment in thread.get("comments") or []:
                if comment.get("isDeleted") or comment.get("commentType") == "system":
                    continue
                comments.append(
                    ExistingComment(
                        id=f"{thread['id']}:{comment['id']}",
                        body=comment.get("content") or "",
                        thread_id=str(thread["id"]),
                        path=context.get("filePath"),
                        line=start.get("line"),
                        is_resolved=self._is_resolved(thread.get("status")),
                    )
                )

        logger.info(f"Read {len(comments)} thread comments from PR {self.pr_id}")
        return comments

    def create_thread(self, action: PostAction) -> dict[str, Any]:
        payload = {
            "comments": [{"parentCommentId": 0, "content": action.body, "commentType": 1}],
            "status": self.thread_status,
            "threadContext": thread_context(action),
        }
        return self._request("POST", "/threads", json=payload).json()

    def create_summary_thread(self, body: str) -> dict[str, Any]:
        """Post the summary as a general thread with no file context."""
        payload = {
            "comments": [{"parentCommentId": 0, "content": body, "commentType": 1}],
            "status": self.thread_status,
        }
        return self._request("POST", "/threads", json=payload).json()

    def update_comment(self, comment_key: str, body: str) -> dict[str, Any]:
        """Edit a comment addressed as ``{thread_id}:{comment_id}``."""
        thread_id, _, comment_id = comment_key.partition(":")
        if not comment_id:
            raise PlatformError(f"Invalid Azure DevOps comment id: {comment_key}")
        return self._request(
            "PATCH", f"/threads/{thread_id}/comments/{comment_id}", json={"content": body}
        ).json()

    def resolve_thread(self, thread_id: str) -> dict[str, Any]:
        return self._request(
            "PATCH", f"/threads/{thread_id}", json={"status": THREAD_FIXED}
        ).json()

    def apply_post_plan(self, plan: PostPlan) -> ApplyReport:
        report = ApplyReport()
        for action in plan.actions:
            try:
                if action.action == ActionType.CREATE:
                    created = self.create_thread(action)
                    report.created.append(str(created.get("id")))
                elif action.action == ActionType.UPDATE:
                    self.update_comment(action.target_comment_id, action.body or "")
                    report.updated.append(action.target_comment_id)
                elif action.action == ActionType.UPSERT_SUMMARY:
                    if action.target_comment_id:
                        self.update_comment(action.target_comment_id, action.body or "")
                        report.updated.append(action.target_comment_id)
                    else:
                        created = self.create_summary_thread(action.body or "")
                        report.created.append(str(created.get("id")))
                else:
                    thread_id = action.thread_id or (
                        action.target_comment_id or ""
                    ).partition(":")[0]
                    self.resolve_thread(thread_id)
                    report.resolved.append(thread_id)
            except PlatformError as e:
                report.record_failure(action, e)

        logger.info(
            f"Applied plan to PR {self.pr_id}: {len(report.created)} created, "
            f"{len(report.updated)} updated, {len(report.resolved)} resolved, "
            f"{len(report.failed)} failed"
        )
        return report
