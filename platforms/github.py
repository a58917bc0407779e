"""
GitHub platform adapter.

Reads pull-request review comments (REST) together with their review-thread
ids and resolution state (GraphQL), and applies a PostPlan by creating review
comments, editing comment bodies and resolving review threads. The PR summary is
an issue comment, found by its header and edited in place.
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import requests
from loguru import logger

from platforms.base import ApplyReport, PlatformError, request_with_retry
from reconciler.models import (
    ActionType,
    CanonicalDiffFile,
    ExistingComment,
    FileStatus,
    PostAction,
    PostPlan,
)
from reconciler.paths import canonicalize
from reconciler.summary import is_summary_comment

REVIEW_THREADS_QUERY = """
query($owner: String!, $repo: String!, $number: Int!, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) {
      reviewThreads(first: 100, after: $cursor) {
        pageInfo { hasNextPage endCursor }
        nodes {
          id
          isResolved
          comments(first: 100) { nodes { databaseId } }
        }
      }
    }
  }
}
"""

RESOLVE_THREAD_MUTATION = """
mutation($threadId: ID!) {
  resolveReviewThread(input: {threadId: $threadId}) {
    thread { id isResolved }
  }
}
"""


def parse_github_pr_url(pr_url: str) -> tuple[str, str, int]:
    """Parse a GitHub PR URL and return (owner, repo, number).

    Raises ValueError if parsing fails.
    """
    if not pr_url:
        raise ValueError("Empty PR URL")

    m = re.search(r"github\.com/([^/]+)/([^/]+)/pull/(\d+)", pr_url)
    if m:
        return m.group(1), m.group(2), int(m.group(3))

    if re.search(r"git@github\.com:([^/]+)/([^.]+)(?:\.git)?", pr_url):
        raise ValueError(
            "PR number not found in SSH repo URL; supply PR number separately"
        )

    raise ValueError(f"Unable to parse GitHub PR URL: {pr_url}")


@dataclass(frozen=True)
class PullRequestInfo:
    """Information about a pull request."""

    number: int
    base_sha: str
    head_sha: str
    base_ref: str
    head_ref: str


class GitHubAdapter:
    """GitHub implementation of the PlatformAdapter protocol."""

    def __init__(
        self,
        owner: str,
        repo: str,
        pr_number: int,
        token: str | None = None,
        api_url: str = "https://api.github.com",
        timeout: int = 30,
    ) -> None:
        """Initialize the adapter.

        Args:
            owner: Repository owner.
            repo: Repository name.
            pr_number: Pull request number.
            token: GitHub API token. Defaults to ``GITHUB_TOKEN`` / ``GH_TOKEN``.
            api_url: REST API base URL.
            timeout: Request timeout in seconds.
        """
        self.token = token or os.getenv("GITHUB_TOKEN") or os.getenv("GH_TOKEN")
        if not self.token:
            raise ValueError("GitHub token is required")

        self.owner = owner
        self.repo = repo
        self.pr_number = pr_number
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {self.token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": "review-reconciler",
            }
        )
        self._pr_info: PullRequestInfo | None = None

    @classmethod
    def from_pr_url(cls, pr_url: str, token: str | None = None) -> GitHubAdapter:
        owner, repo, number = parse_github_pr_url(pr_url)
        return cls(owner, repo, number, token=token)

    @classmethod
    def from_env(cls) -> GitHubAdapter:
        """Build from GitHub Actions variables (``GITHUB_REPOSITORY``, ``PR_NUMBER``)."""
        repository = os.getenv("GITHUB_REPOSITORY", "")
        number = os.getenv("PR_NUMBER") or os.getenv("GITHUB_PR_NUMBER")
        if "/" not in repository or not number:
            raise ValueError("GITHUB_REPOSITORY and PR_NUMBER must be set")
        owner, repo = repository.split("/", 1)
        return cls(
            owner,
            repo,
            int(number),
            api_url=os.getenv("GITHUB_API_URL", "https://api.github.com"),
        )

    @property
    def _repo_url(self) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.repo}"

    @property
    def _graphql_url(self) -> str:
        # GitHub Enterprise serves REST under /api/v3 and GraphQL under /api/graphql.
        if self.api_url.endswith("/api/v3"):
            return self.api_url[: -len("v3")] + "graphql"
        return f"{self.api_url}/graphql"

    # --- Utility: retry/pagination/graphql ---
    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        return request_with_retry(
            self.session, method, url, timeout=self.timeout, **kwargs
        )

    def _paginate(self, url: str, params: dict | None = None) -> Iterable[Any]:
        page = 1
        while True:
            p = dict(params or {})
            p.update({"page": page, "per_page": 100})
            items = self._request("GET", url, params=p).json()

            if not items:
                break
            yield from items

            if len(items) < 100:
                break
            page += 1

    def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        data = self._request(
            "POST", self._graphql_url, json={"query": query, "variables": variables}
        ).json()
        if data.get("errors"):
            messages = "; ".join(e.get("message", "") for e in data["errors"])
            raise PlatformError(f"GraphQL error: {messages}")
        return data.get("data") or {}

    # --- Reads ---
    def get_pr_info(self) -> PullRequestInfo:
        if self._pr_info is None:
            data = self._request("GET", f"{self._repo_url}/pulls/{self.pr_number}").json()
            self._pr_info = PullRequestInfo(
                number=data["number"],
                base_sha=data["base"]["sha"],
                head_sha=data["head"]["sha"],
                base_ref=data["base"]["ref"],
                head_ref=data["head"]["ref"],
            )
        return self._pr_info

    def list_diff_files(self) -> list[CanonicalDiffFile]:
        url = f"{self._repo_url}/pulls/{self.pr_number}/files"
        return [
            CanonicalDiffFile(
                path=canonicalize(item["filename"]),
                status=FileStatus.parse(item.get("status", "modified")),
                patch=item.get("patch"),
                additions=item.get("additions", 0),
                deletions=item.get("deletions", 0),
                old_path=canonicalize(item["previous_filename"])
                if item.get("previous_filename")
                else None,
            )
            for item in self._paginate(url)
        ]

    def _review_threads(self) -> dict[int, tuple[str, bool]]:
        """Map comment database id to (thread node id, is_resolved)."""
        threads: dict[int, tuple[str, bool]] = {}
        cursor: str | None = None
        while True:
            data = self._graphql(
                REVIEW_THREADS_QUERY,
                {
                    "owner": self.owner,
                    "repo": self.repo,
                    "number": self.pr_number,
                    "cursor": cursor,
                },
            )
            pr = ((data.get("repository") or {}).get("pullRequest")) or {}
            review_threads = pr.get("reviewThreads") or {}
            for node in review_threads.get("nodes") or []:
                for comment in (node.get("comments") or {}).get("nodes") or []:
                    if comment.get("databaseId") is not None:
                        threads[comment["databaseId"]] = (
                            node["id"],
                            bool(node.get("isResolved")),
                        )

            page_info = review_threads.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                return threads
            cursor = page_info.get("endCursor")

    def list_comments(self) -> list[ExistingComment]:
        url = f"{self._repo_url}/pulls/{self.pr_number}/comments"
        threads = self._review_threads()

        comments = []
        for item in self._paginate(url):
            thread_id, is_resolved = threads.get(item["id"], (None, False))
            # Multi-line comments report the end line as `line`.
            line = item.get("start_line") or item.get("line")
            comments.append(
                ExistingComment(
                    id=str(item["id"]),
                    body=item.get("body") or "",
                    thread_id=thread_id,
                    path=item.get("path"),
                    line=line,
                    is_resolved=is_resolved,
                )
            )

        comments.extend(self._summary_comments())

        logger.info(f"Read {len(comments)} review comments from PR #{self.pr_number}")
        return comments

    def _summary_comments(self) -> list[ExistingComment]:
        """Summary comments among the PR's issue (conversation) comments."""
        url = f"{self._repo_url}/issues/{self.pr_number}/comments"
        found = []
        for item in self._paginate(url):
            comment = ExistingComment(id=str(item["id"]), body=item.get("body") or "")
            if is_summary_comment(comment):
                found.append(comment)
        return found

    # --- Writes ---
    def create_comment(self, action: PostAction) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "body": action.body,
            "commit_id": self.get_pr_info().head_sha,
            "path": action.path,
        }
        if action.line is None:
            payload["subject_type"] = "file"
        elif action.end_line is not None:
            payload.update(
                {
                    "start_line": action.line,
                    "start_side": "RIGHT",
                    "line": action.end_line,
                    "side": "RIGHT",
                }
            )
        else:
            payload.update({"line": action.line, "side": "RIGHT"})

        url = f"{self._repo_url}/pulls/{self.pr_number}/comments"
        return self._request("POST", url, json=payload).json()

    def update_comment(self, comment_id: str, body: str) -> dict[str, Any]:
        url = f"{self._repo_url}/pulls/comments/{comment_id}"
        return self._request("PATCH", url, json={"body": body}).json()

    def resolve_thread(self, thread_id: str) -> None:
        self._graphql(RESOLVE_THREAD_MUTATION, {"threadId": thread_id})

    def upsert_summary(self, action: PostAction) -> dict[str, Any]:
        """Edit the existing summary comment, or post a new one."""
        if action.target_comment_id:
            url = f"{self._repo_url}/issues/comments/{action.target_comment_id}"
            return self._request("PATCH", url, json={"body": action.body}).json()
        url = f"{self._repo_url}/issues/{self.pr_number}/comments"
        return self._request("POST", url, json={"body": action.body}).json()

    def apply_post_plan(self, plan: PostPlan) -> ApplyReport:
        report = ApplyReport()
        for action in plan.actions:
            try:
                if action.action == ActionType.CREATE:
                    created = self.create_comment(action)
                    report.created.append(str(created.get("id")))
                elif action.action == ActionType.UPDATE:
                    self.update_comment(action.target_comment_id, action.body or "")
                    report.updated.append(action.target_comment_id)
                elif action.action == ActionType.UPSERT_SUMMARY:
                    posted = self.upsert_summary(action)
                    if action.target_comment_id:
                        report.updated.append(action.target_comment_id)
                    else:
                        report.created.append(str(posted.get("id")))
                elif action.thread_id:
                    self.resolve_thread(action.thread_id)
                    report.resolved.append(action.thread_id)
                else:
                    raise PlatformError(
                        f"No review thread known for comment {action.target_comment_id}"
                    )
            except PlatformError as e:
                report.record_failure(action, e)

        logger.info(
            f"Applied plan to PR #{self.pr_number}: {len(report.created)} created, "
            f"{len(report.updated)} updated, {len(report.resolved)} resolved, "
            f"{len(report.failed)} failed"
        )
        return report
