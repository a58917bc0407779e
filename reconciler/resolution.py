"""Stale comment resolution."""

from collections.abc import Iterable

from loguru import logger

from reconciler.errors import MalformedMarkerError
from reconciler.markers import extract_comment_markers
from reconciler.models import ExistingComment, ResolutionOutcome


class StaleResolutionEvaluator:
    """Decide whether a comment's findings are still reported.

    A comment is resolved only when none of its markers match a finding of
    the current run. When some but not all match, the stale ones are listed
    in ``partially_resolved`` so the comment can be trimmed instead.
    """

    def evaluate(
        self, markers: Iterable[str], current_fingerprints: set[str]
    ) -> ResolutionOutcome:
        unique = list(dict.fromkeys(markers))
        if not unique:
            return ResolutionOutcome(resolved=False, partially_resolved=(), total_markers=0)

        stale = tuple(fp for fp in unique if fp not in current_fingerprints)
        if len(stale) == len(unique):
            return ResolutionOutcome(
                resolved=True, partially_resolved=(), total_markers=len(unique)
            )
        return ResolutionOutcome(
            resolved=False, partially_resolved=stale, total_markers=len(unique)
        )

    def evaluate_comment(
        self, comment: ExistingComment, current_fingerprints: set[str]
    ) -> ResolutionOutcome | None:
        """Evaluate one comment, or return None when it carries no markers.

        Raises:
            MalformedMarkerError: the comment holds an unreadable marker, which
                may belong to a finding that is still active
        """
        markers, malformed = extract_comment_markers(comment)
        if malformed:
            raise MalformedMarkerError(comment.id, malformed)
        if not markers:
            return None

        outcome = self.evaluate([m.fingerprint for m in markers], current_fingerprints)
        logger.bind(
            event="comment_resolution",
            comment_id=comment.id,
            total_markers=outcome.total_markers,
            stale_count=outcome.stale_count,
            resolved=outcome.resolved,
        ).info(
            f"Comment {comment.id}: {outcome.stale_count}/{outcome.total_markers} "
            f"markers stale (resolved={outcome.resolved})"
        )
        return outcome
