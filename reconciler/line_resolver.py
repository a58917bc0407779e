"""
Line resolution.

Agents report line numbers that drift by a few lines from the diff, or point
at lines the diff does not touch. The resolver moves each finding onto a line
the platform will accept as an inline-comment anchor, or downgrades it to a
file-level finding. Findings are never dropped here.
"""

from loguru import logger

from reconciler.diff_index import DiffPositionIndex
from reconciler.errors import AmbiguousLineError
from reconciler.models import Finding, LineResolution, ResolvedFinding

DEFAULT_LINE_WINDOW = 3


class LineResolver:
    """Snap finding lines onto valid diff positions.

    Resolution order for a finding with a line:

    1. the line itself, when the diff index marks it valid;
    2. the nearest valid line within ``window`` lines (lower line on ties);
    3. the nearest added line anywhere in the file, then the nearest valid
       context line (lower line on ties);
    4. file-level, when the index has no valid line at all.

    A file absent from the diff has no index; its findings keep their line
    unverified.
    """

    def __init__(self, window: int = DEFAULT_LINE_WINDOW) -> None:
        if window < 0:
            raise ValueError("window must be non-negative")
        self.window = window

    def resolve(
        self,
        finding: Finding,
        index: DiffPositionIndex | None,
        path: str,
        fingerprint: str,
    ) -> ResolvedFinding:
        line = finding.line
        if line is None:
            return self._build(finding, path, fingerprint, None, LineResolution.FILE_LEVEL)

        if index is None:
            return self._build(finding, path, fingerprint, line, LineResolution.UNVERIFIED)

        if index.is_empty():
            logger.debug(f"No commentable lines in {path}; line {line} downgraded")
            return self.downgrade(finding, path, fingerprint)

        if index.is_valid(line):
            return self._build(
                finding, path, fingerprint, line, LineResolution.VALID, index=index
            )

        try:
            fixed = index.nearest_valid(line, self.window)
            resolution = LineResolution.AUTO_FIXED
        except AmbiguousLineError:
            fixed = DiffPositionIndex.closest(line, index.added_lines)
            if fixed is None:
                fixed = DiffPositionIndex.closest(line, index.valid_lines)
            resolution = LineResolution.CLAMPED

        logger.debug(f"{path}:{line} not in diff, moved to line {fixed} ({resolution.value})")
        return self._build(finding, path, fingerprint, fixed, resolution, index=index)

    def downgrade(self, finding: Finding, path: str, fingerprint: str) -> ResolvedFinding:
        """Turn a line-level finding into a file-level one."""
        return ResolvedFinding(
            finding=finding,
            file=path,
            line=None,
            fingerprint=fingerprint,
            was_auto_fixed=True,
            line_resolution=LineResolution.DOWNGRADED,
            original_line=finding.line,
        )

    @staticmethod
    def _build(
        finding: Finding,
        path: str,
        fingerprint: str,
        line: int | None,
        resolution: LineResolution,
        index: DiffPositionIndex | None = None,
    ) -> ResolvedFinding:
        end_line = finding.end_line if line is not None else None
        anchored = bool(
            index is not None
            and line is not None
            and end_line is not None
            and end_line > line
            and index.is_valid(end_line)
            and index.same_hunk(line, end_line)
        )
        return ResolvedFinding(
            finding=finding,
            file=path,
            line=line,
            fingerprint=fingerprint,
            was_auto_fixed=resolution
            in (LineResolution.AUTO_FIXED, LineResolution.CLAMPED),
            line_resolution=resolution,
            end_line=end_line,
            end_line_anchored=anchored,
            original_line=finding.line,
        )
