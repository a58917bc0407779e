"""
Diff position index.

Parses the hunks of a unified-diff patch and records which new-file line
numbers a review comment may be anchored to. Added (``+``) and context (`` ``)
lines are commentable; deleted (``-``) lines exist only in the old file.
"""

import bisect
import re
from dataclasses import dataclass, field

from reconciler.errors import AmbiguousLineError, MalformedDiffError
from reconciler.models import Hunk, HunkLine, HunkLineType, LineInfo

HUNK_HEADER = re.compile(r"^@@\s+-(\d+)(?:,(\d+))?\s+\+(\d+)(?:,(\d+))?\s+@@")


@dataclass
class _HunkBuilder:
    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    next_new_line: int
    remaining_old: int
    remaining_new: int
    lines: list[HunkLine] = field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        return self.remaining_old <= 0 and self.remaining_new <= 0

    def add(self, content: str) -> None:
        self.lines.append(HunkLine(HunkLineType.ADD, content, self.next_new_line))
        self.next_new_line += 1
        self.remaining_new -= 1

    def context(self, content: str) -> None:
        self.lines.append(HunkLine(HunkLineType.CONTEXT, content, self.next_new_line))
        self.next_new_line += 1
        self.remaining_new -= 1
        self.remaining_old -= 1

    def delete(self, content: str) -> None:
        self.lines.append(HunkLine(HunkLineType.DEL, content))
        self.remaining_old -= 1

    def build(self) -> Hunk:
        return Hunk(
            old_start=self.old_start,
            old_lines=self.old_lines,
            new_start=self.new_start,
            new_lines=self.new_lines,
            lines=tuple(self.lines),
        )


def parse_hunks(patch: str | None) -> list[Hunk]:
    """Parse ``patch`` into hunks.

    Lines before the first ``@@`` header (``diff``, ``index``, ``---``, ``+++``,
    mode lines) are ignored, as is ``\\ No newline at end of file``.

    Raises:
        MalformedDiffError: a line starting with ``@@`` is not a valid header
    """
    if not patch:
        return []

    hunks: list[Hunk] = []
    current: _HunkBuilder | None = None

    for number, raw in enumerate(patch.splitlines(), start=1):
        if raw.startswith("@@"):
            match = HUNK_HEADER.match(raw)
            if not match:
                raise MalformedDiffError(
                    f"Malformed hunk header at patch line {number}: {raw[:80]!r}",
                    line_number=number,
                )
            if current:
                hunks.append(current.build())

            old_start, old_lines, new_start, new_lines = (
                int(match.group(1)),
                int(match.group(2) or 1),
                int(match.group(3)),
                int(match.group(4) or 1),
            )
            current = _HunkBuilder(
                old_start=old_start,
                old_lines=old_lines,
                new_start=new_start,
                new_lines=new_lines,
                next_new_line=new_start,
                remaining_old=old_lines,
                remaining_new=new_lines,
            )
            continue

        if current is None or raw.startswith("\\"):
            continue

        if raw.startswith("diff ") or (
            current.exhausted and raw.startswith(("--- ", "+++ "))
        ):
            # Start of the next file in a concatenated diff.
            hunks.append(current.build())
            current = None
        elif raw.startswith("+"):
            current.add(raw[1:])
        elif raw.startswith("-"):
            current.delete(raw[1:])
        elif raw.startswith(" "):
            current.context(raw[1:])
        elif raw == "" and current.remaining_new > 0:
            # Editors and some APIs strip the space from blank context lines.
            current.context("")

    if current:
        hunks.append(current.build())
    return hunks


def _compress_ranges(numbers: list[int]) -> str:
    """``[1, 2, 3, 7]`` -> ``"1-3, 7"``."""
    if not numbers:
        return "(none)"

    ranges: list[str] = []
    start = prev = numbers[0]
    for n in numbers[1:]:
        if n == prev + 1:
            prev = n
            continue
        ranges.append(f"{start}-{prev}" if start != prev else str(start))
        start = prev = n
    ranges.append(f"{start}-{prev}" if start != prev else str(start))
    return ", ".join(ranges)


class DiffPositionIndex:
    """Map of new-file line number to ``LineInfo`` for one file."""

    def __init__(
        self, lines: dict[int, LineInfo] | None = None, hunks: list[Hunk] | None = None
    ) -> None:
        self._lines: dict[int, LineInfo] = dict(lines or {})
        self.hunks: tuple[Hunk, ...] = tuple(hunks or ())
        self.valid_lines: list[int] = sorted(self._lines)
        self.added_lines: list[int] = sorted(
            n for n, info in self._lines.items() if info.is_addition
        )

    @classmethod
    def empty(cls) -> "DiffPositionIndex":
        """An index in which every line is invalid."""
        return cls()

    @classmethod
    def build(cls, patch: str | None) -> "DiffPositionIndex":
        hunks = parse_hunks(patch)
        lines: dict[int, LineInfo] = {}
        for hunk in hunks:
            for hunk_line in hunk.lines:
                if hunk_line.new_line_number is None:
                    continue
                lines[hunk_line.new_line_number] = LineInfo(
                    valid=True, is_addition=hunk_line.type == HunkLineType.ADD
                )
        return cls(lines, hunks)

    def __len__(self) -> int:
        return len(self.valid_lines)

    def is_empty(self) -> bool:
        return not self.valid_lines

    def lookup(self, line: int) -> LineInfo | None:
        return self._lines.get(line)

    def is_valid(self, line: int | None) -> bool:
        if line is None:
            return False
        info = self._lines.get(line)
        return bool(info and info.valid)

    def same_hunk(self, start: int, end: int) -> bool:
        """Whether ``start`` and ``end`` both fall inside one hunk's new range."""
        return any(
            h.new_start <= start and end < h.new_start + h.new_lines for h in self.hunks
        )

    def nearest_valid(self, line: int, window: int) -> int:
        """Nearest valid line within ``window``; ties go to the lower line.

        Raises:
            AmbiguousLineError: no valid line lies inside the window
        """
        for distance in range(1, window + 1):
            for candidate in (line - distance, line + distance):
                if candidate >= 1 and self.is_valid(candidate):
                    return candidate
        raise AmbiguousLineError(line, window)

    @staticmethod
    def closest(line: int, candidates: list[int]) -> int | None:
        """Closest value in sorted ``candidates``; ties go to the lower value."""
        if not candidates:
            return None

        pos = bisect.bisect_left(candidates, line)
        if pos == 0:
            return candidates[0]
        if pos == len(candidates):
            return candidates[-1]

        below, above = candidates[pos - 1], candidates[pos]
        return below if line - below <= above - line else above

    def describe(self) -> str:
        """Compressed summary of valid lines, e.g. ``"10-14, 20"``."""
        return _compress_ranges(self.valid_lines)
