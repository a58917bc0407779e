"""
Cross-run deduplication.

Two keys identify a posted finding:

* the exact key ``{fingerprint}:{path}:{line}`` (line 0 for file-level);
* the proximity key ``{fingerprint}:{path}``, mapped to the sorted lines at
  which that fingerprint has been posted in that file. File-level entries
  have no line and only take part in exact matching.

Both are built only by ``dedupe_key`` and ``proximity_key`` so that seeded and
newly recorded entries always agree.
"""

import bisect
from collections.abc import Iterable

from loguru import logger

from reconciler.markers import extract_comment_markers
from reconciler.models import (
    ExistingComment,
    ExistingCommentMarker,
    PostDecision,
    ResolvedFinding,
)

LINE_PROXIMITY_THRESHOLD = 20


def dedupe_key(fingerprint: str, path: str, line: int | None) -> str:
    return f"{fingerprint}:{path}:{line or 0}"


def proximity_key(fingerprint: str, path: str) -> str:
    return f"{fingerprint}:{path}"


class DedupTracker:
    """Exact and proximity dedup state for a single run.

    Built fresh per run, seeded from existing comment markers, and only ever
    appended to afterwards.
    """

    def __init__(self, proximity_threshold: int = LINE_PROXIMITY_THRESHOLD) -> None:
        self.proximity_threshold = proximity_threshold
        self.existing_keys: set[str] = set()
        self.proximity_map: dict[str, list[int]] = {}

    def _add(self, fingerprint: str, path: str, line: int | None) -> None:
        self.existing_keys.add(dedupe_key(fingerprint, path, line))
        if not line:
            return
        lines = self.proximity_map.setdefault(proximity_key(fingerprint, path), [])
        pos = bisect.bisect_left(lines, line)
        if pos == len(lines) or lines[pos] != line:
            lines.insert(pos, line)

    def seed(self, marker: ExistingCommentMarker) -> None:
        if not marker.path:
            # Without a path the marker still counts for staleness but
            # cannot produce a key that matches a finding.
            logger.debug(f"Marker on comment {marker.comment_id} has no path; not seeded")
            return
        self._add(marker.fingerprint, marker.path, marker.line)

    def seed_from_comments(self, comments: Iterable[ExistingComment]) -> int:
        """Seed from every well-formed marker in ``comments``; returns the count."""
        seeded = 0
        for comment in comments:
            markers, _ = extract_comment_markers(comment)
            for marker in markers:
                self.seed(marker)
                seeded += 1
        logger.debug(
            f"Dedup tracker seeded with {seeded} markers "
            f"({len(self.existing_keys)} unique keys)"
        )
        return seeded

    def decide(self, rf: ResolvedFinding) -> PostDecision:
        if dedupe_key(rf.fingerprint, rf.file, rf.line) in self.existing_keys:
            return PostDecision.SKIP_EXACT

        if rf.line is None:
            return PostDecision.POST

        lines = self.proximity_map.get(proximity_key(rf.fingerprint, rf.file))
        if lines:
            target = rf.line
            # Closest recorded line sits at the insertion point or just before it.
            pos = bisect.bisect_left(lines, target)
            for candidate in lines[max(pos - 1, 0) : pos + 1]:
                if abs(candidate - target) <= self.proximity_threshold:
                    return PostDecision.SKIP_PROXIMITY

        return PostDecision.POST

    def record_posted(self, rf: ResolvedFinding) -> None:
        self._add(rf.fingerprint, rf.file, rf.line)
