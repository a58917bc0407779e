"""Platform adapter interface and shared HTTP plumbing."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests
from loguru import logger

from reconciler.models import ExistingComment, PostAction, PostPlan

MAX_ATTEMPTS = 4
MAX_RATE_LIMIT_SLEEP = 60


class PlatformError(RuntimeError):
    """A platform API call failed persistently or was rejected."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ApplyReport:
    """Outcome of applying a PostPlan; one failed action does not stop the rest."""

    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    resolved: list[str] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def record_failure(self, action: PostAction, error: Exception) -> None:
        logger.error(f"Failed to apply {action.action.value} action: {error}")
        self.failed.append({"action": action.to_dict(), "error": str(error)})

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": list(self.created),
            "updated": list(self.updated),
            "resolved": list(self.resolved),
            "failed": list(self.failed),
        }


class PlatformAdapter(Protocol):
    """Protocol for reading review comments and applying a post plan."""

    def list_comments(self) -> list[ExistingComment]: ...
    def apply_post_plan(self, plan: PostPlan) -> ApplyReport: ...


def _rate_limit_delay(resp: requests.Response) -> float | None:
    """Seconds to wait before retrying a rate-limited response, or None."""
    if resp.status_code == 429:
        retry_after = resp.headers.get("Retry-After")
        return float(retry_after) if retry_after and retry_after.isdigit() else 1.0

    if resp.status_code == 403 and resp.headers.get("X-RateLimit-Remaining") == "0":
        reset = int(resp.headers.get("X-RateLimit-Reset", "0") or 0)
        return float(max(1, reset - int(time.time()) + 1))

    return None


def request_with_retry(
    session: requests.Session,
    method: str,
    url: str,
    *,
    timeout: int = 30,
    max_attempts: int = MAX_ATTEMPTS,
    **kwargs: Any,
) -> requests.Response:
    """Send a request, retrying rate limits, 5xx responses and network errors.

    Authentication and authorization errors (401/403) are not retried.

    Raises:
        PlatformError: the request was rejected or kept failing
    """
    backoff = 1.0
    last_error = ""
    for attempt in range(1, max_attempts + 1):
        try:
            resp = session.request(method, url, timeout=timeout, **kwargs)
        except requests.RequestException as exc:
            last_error = str(exc)
            logger.warning(f"{method} {url} failed (attempt {attempt}): {exc}")
        else:
            delay = _rate_limit_delay(resp)
            if delay is not None:
                logger.warning(f"Rate limited on {method} {url}; retrying in {delay:.0f}s")
                time.sleep(min(delay, MAX_RATE_LIMIT_SLEEP))
                last_error = f"rate limited ({resp.status_code})"
                continue

            if resp.status_code in (401, 403):
                raise PlatformError(
                    f"Auth error on {method} {url}: {resp.status_code}", resp.status_code
                )

            if resp.status_code >= 500:
                last_error = f"{resp.status_code} {resp.text[:200]}"
                logger.warning(
                    f"Server error on {method} {url} (attempt {attempt}): {resp.status_code}"
                )
            elif not resp.ok:
                raise PlatformError(
                    f"{method} {url} returned {resp.status_code}: {resp.text[:200]}",
                    resp.status_code,
                )
            else:
                return resp

        if attempt < max_attempts:
            time.sleep(backoff)
            backoff *= 2

    raise PlatformError(f"{method} {url} failed after {max_attempts} attempts: {last_error}")
