"""Reconciler configuration."""

import os
from dataclasses import asdict, dataclass
from typing import Any

from loguru import logger

from reconciler.dedup import LINE_PROXIMITY_THRESHOLD
from reconciler.line_resolver import DEFAULT_LINE_WINDOW


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}; using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    logger.warning(f"Ignoring non-boolean {name}={raw!r}; using {default}")
    return default


@dataclass(frozen=True)
class ReconcilerConfig:
    """Tunables for a reconciliation run.

    Attributes:
        line_window: lines searched on each side of an invalid finding line
        proximity_threshold: max line distance treated as the same finding
        group_line_gap: max distance between findings rendered as one comment
        max_inline_comments: cap on new comments per run, None for no cap
        drift_warn_percent: degraded-findings share that raises a warning
        drift_fail_percent: degraded-findings share that reports failure
        drift_max_samples: invalid-line samples kept in the drift signal
        summary_comment: keep one PR-level summary comment up to date
    """

    line_window: int = DEFAULT_LINE_WINDOW
    proximity_threshold: int = LINE_PROXIMITY_THRESHOLD
    group_line_gap: int = 3
    max_inline_comments: int | None = None
    drift_warn_percent: int = 20
    drift_fail_percent: int = 50
    drift_max_samples: int = 5
    summary_comment: bool = True

    def __post_init__(self) -> None:
        if self.line_window < 0 or self.proximity_threshold < 0 or self.group_line_gap < 0:
            raise ValueError("line_window, proximity_threshold and group_line_gap must be >= 0")
        if self.max_inline_comments is not None and self.max_inline_comments < 0:
            raise ValueError("max_inline_comments must be >= 0")
        if self.drift_warn_percent > self.drift_fail_percent:
            raise ValueError("drift_warn_percent must not exceed drift_fail_percent")

    @classmethod
    def from_env(cls) -> "ReconcilerConfig":
        """Read overrides from ``REVIEW_*`` environment variables."""
        defaults = cls()
        return cls(
            line_window=_env_int("REVIEW_LINE_WINDOW", defaults.line_window),
            proximity_threshold=_env_int(
                "REVIEW_PROXIMITY_THRESHOLD", defaults.proximity_threshold
            ),
            group_line_gap=_env_int("REVIEW_GROUP_LINE_GAP", defaults.group_line_gap),
            max_inline_comments=_env_int("REVIEW_MAX_INLINE_COMMENTS", None),
            drift_warn_percent=_env_int(
                "REVIEW_DRIFT_WARN_PERCENT", defaults.drift_warn_percent
            ),
            drift_fail_percent=_env_int(
                "REVIEW_DRIFT_FAIL_PERCENT", defaults.drift_fail_percent
            ),
            summary_comment=_env_bool(
                "REVIEW_SUMMARY_COMMENT", defaults.summary_comment
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
