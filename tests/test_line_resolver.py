"""Tests for LineResolver."""

from __future__ import annotations

import pytest

from reconciler.diff_index import DiffPositionIndex
from reconciler.line_resolver import LineResolver
from reconciler.models import Finding, LineResolution, Severity

# Valid lines: 10 (context), 11-12 (added), 13 (context); 30 (added)
PATCH = (
    "@@ -10,2 +10,4 @@\n"
    " ctx\n"
    "+add\n"
    "+add\n"
    " ctx\n"
    "@@ -27,0 +30,1 @@\n"
    "+add\n"
)


def _finding(line: int | None = None, end_line: int | None = None) -> Finding:
    return Finding(
        severity=Severity.WARNING,
        file="app.py",
        message="Possible None dereference",
        source_agent="semgrep",
        line=line,
        end_line=end_line,
    )


@pytest.fixture
def index() -> DiffPositionIndex:
    return DiffPositionIndex.build(PATCH)


@pytest.fixture
def resolver() -> LineResolver:
    return LineResolver(window=3)


class TestResolve:
    """Resolution order for line-level findings."""

    def test_file_level_passes_through(self, resolver, index) -> None:
        rf = resolver.resolve(_finding(), index, "app.py", "fp")

        assert rf.line is None
        assert rf.line_resolution == LineResolution.FILE_LEVEL
        assert rf.was_auto_fixed is False

    def test_valid_line_kept(self, resolver, index) -> None:
        rf = resolver.resolve(_finding(11), index, "app.py", "fp")

        assert rf.line == 11
        assert rf.line_resolution == LineResolution.VALID
        assert rf.was_auto_fixed is False

    def test_nearby_line_auto_fixed(self, resolver, index) -> None:
        rf = resolver.resolve(_finding(15), index, "app.py", "fp")

        assert rf.line == 13
        assert rf.line_resolution == LineResolution.AUTO_FIXED
        assert rf.was_auto_fixed is True
        assert rf.original_line == 15

    def test_outside_window_clamps_to_nearest_addition(self, resolver, index) -> None:
        # Line 20 is 7 lines from 13 and 10 from 30; the nearest addition is 12.
        rf = resolver.resolve(_finding(20), index, "app.py", "fp")

        assert rf.line == 12
        assert rf.line_resolution == LineResolution.CLAMPED
        assert rf.was_auto_fixed is True

    def test_clamp_tie_goes_to_lower_addition(self, resolver) -> None:
        index = DiffPositionIndex.build("@@ -1,0 +10,1 @@\n+a\n@@ -5,0 +30,1 @@\n+b\n")

        rf = resolver.resolve(_finding(20), index, "app.py", "fp")

        assert rf.line == 10

    def test_clamp_falls_back_to_context_without_additions(self, resolver) -> None:
        index = DiffPositionIndex.build("@@ -5,2 +5,1 @@\n ctx\n-gone\n")

        rf = resolver.resolve(_finding(50), index, "app.py", "fp")

        assert rf.line == 5
        assert rf.line_resolution == LineResolution.CLAMPED

    def test_empty_index_downgrades_to_file_level(self, resolver) -> None:
        rf = resolver.resolve(_finding(12), DiffPositionIndex.empty(), "app.py", "fp")

        assert rf.line is None
        assert rf.line_resolution == LineResolution.DOWNGRADED
        assert rf.was_auto_fixed is True
        assert rf.original_line == 12

    def test_file_absent_from_diff_is_unverified(self, resolver) -> None:
        rf = resolver.resolve(_finding(99), None, "other.py", "fp")

        assert rf.line == 99
        assert rf.line_resolution == LineResolution.UNVERIFIED
        assert rf.was_auto_fixed is False


class TestEndLine:
    """end_line is kept but only anchors a span when it is a valid line."""

    def test_anchored_within_hunk(self, resolver, index) -> None:
        rf = resolver.resolve(_finding(11, end_line=13), index, "app.py", "fp")

        assert rf.end_line == 13
        assert rf.end_line_anchored is True

    def test_not_anchored_across_hunks(self, resolver, index) -> None:
        rf = resolver.resolve(_finding(11, end_line=30), index, "app.py", "fp")

        assert rf.end_line == 30
        assert rf.end_line_anchored is False

    def test_not_anchored_when_invalid(self, resolver, index) -> None:
        rf = resolver.resolve(_finding(11, end_line=20), index, "app.py", "fp")

        assert rf.end_line_anchored is False


def test_negative_window_rejected() -> None:
    with pytest.raises(ValueError):
        LineResolver(window=-1)
