"""Tests for ReconciliationOrchestrator."""

from __future__ import annotations

import pytest

from reconciler.base import StageErrorCode, StageStatus
from reconciler.config import ReconcilerConfig
from reconciler.formatting import render_grouped_comment
from reconciler.markers import MARKER_PREFIX, build_marker, extract_fingerprint_markers
from reconciler.models import (
    ActionType,
    CanonicalDiffFile,
    ExistingComment,
    FileStatus,
    Finding,
    LineResolution,
    PostDecision,
    ResolvedFinding,
    Severity,
)
from reconciler.orchestrator import (
    ReconciliationInput,
    ReconciliationOrchestrator,
    group_adjacent,
)
from reconciler.summary import SUMMARY_HEADER

# src/app.py: lines 10-14 added, 15 context; lines 40-41 added
APP_PATCH = (
    "@@ -10,1 +10,6 @@\n"
    "+a\n"
    "+b\n"
    "+c\n"
    "+d\n"
    "+e\n"
    " ctx\n"
    "@@ -30,0 +40,2 @@\n"
    "+f\n"
    "+g\n"
)


def _finding(
    fp: str | None,
    file: str,
    line: int | None,
    agent: str = "semgrep",
    message: str = "Something is off",
) -> Finding:
    return Finding(
        severity=Severity.WARNING,
        file=file,
        message=message,
        source_agent=agent,
        line=line,
        fingerprint=fp,
    )


def _app_diff(path: str = "src/app.py") -> CanonicalDiffFile:
    return CanonicalDiffFile(path=path, status=FileStatus.MODIFIED, patch=APP_PATCH)


def _decisions(result) -> list[PostDecision]:
    return [d.decision for d in result.decisions]


INLINE_ONLY = ReconcilerConfig(summary_comment=False)


@pytest.fixture
def orchestrator() -> ReconciliationOrchestrator:
    return ReconciliationOrchestrator(INLINE_ONLY)


class TestDedupScenarios:
    """Within-run and cross-run dedup."""

    def test_proximity_within_run(self, orchestrator) -> None:
        findings = [
            _finding("F1", "./src/x.ts", 10),
            _finding("F1", "src/x.ts", 15),
        ]

        result = orchestrator.reconcile(findings, [], [])

        assert _decisions(result) == [PostDecision.POST, PostDecision.SKIP_PROXIMITY]
        assert len(result.plan.creates) == 1
        assert result.plan.creates[0].path == "src/x.ts"

    @pytest.mark.parametrize(
        ("second_line", "expected"),
        [
            (30, [PostDecision.POST, PostDecision.SKIP_PROXIMITY]),
            (31, [PostDecision.POST, PostDecision.POST]),
        ],
    )
    def test_proximity_boundary(self, orchestrator, second_line, expected) -> None:
        findings = [_finding("F1", "src/x.ts", 10), _finding("F1", "src/x.ts", second_line)]

        result = orchestrator.reconcile(findings, [], [])

        assert _decisions(result) == expected

    def test_path_variants_deduplicated(self, orchestrator) -> None:
        existing = ExistingComment(
            id="1", body=build_marker("F1", "src/x.ts", 10), path="/src/x.ts", line=10
        )

        result = orchestrator.reconcile(
            [_finding("F1", "a/src/x.ts", 10)], [], [existing]
        )

        assert _decisions(result) == [PostDecision.SKIP_EXACT]
        assert result.plan.is_empty()

    def test_second_run_is_idempotent(self, orchestrator) -> None:
        findings = [
            _finding(None, "src/app.py", 11, message="first issue"),
            _finding(None, "src/app.py", 12, agent="reviewer", message="second issue"),
            _finding(None, "src/app.py", 40, message="third issue"),
            _finding(None, "docs/readme.md", None, message="file level issue"),
        ]
        diff = [_app_diff()]

        first = orchestrator.reconcile(findings, diff, [])
        assert all(d == PostDecision.POST for d in _decisions(first))

        posted = [
            ExistingComment(id=str(i), body=a.body or "", path=a.path, line=a.line)
            for i, a in enumerate(first.plan.creates)
        ]
        second = ReconciliationOrchestrator(INLINE_ONLY).reconcile(findings, diff, posted)

        assert _decisions(second) == [PostDecision.SKIP_EXACT] * len(findings)
        assert second.plan.is_empty()


class TestDeletedFiles:
    def test_finding_on_deleted_file_dropped(self, orchestrator) -> None:
        diff = [CanonicalDiffFile(path="a/old.ts", status=FileStatus.DELETED)]

        result = orchestrator.reconcile([_finding("F1", "./old.ts", 3)], diff, [])

        assert result.decisions == []
        assert result.plan.is_empty()
        assert [(s.kind, s.reason) for s in result.skipped] == [("finding", "deleted_file")]
        assert result.stats.dropped == 1


class TestStaleComments:
    """Resolution and partial updates of existing comments."""

    def _grouped_body(self, fps: list[str], path: str = "src/x.ts") -> str:
        resolved = [
            ResolvedFinding(
                finding=_finding(fp, path, 10 + i, message=f"issue {fp}"),
                file=path,
                line=10 + i,
                fingerprint=fp,
            )
            for i, fp in enumerate(fps)
        ]
        return render_grouped_comment(resolved)

    def test_partial_resolution_updates_comment(self, orchestrator) -> None:
        comment = ExistingComment(
            id="c1",
            body=self._grouped_body(["F1", "F2"]),
            path="src/x.ts",
            line=10,
            thread_id="T1",
        )

        result = orchestrator.reconcile([_finding("F2", "src/x.ts", 11)], [], [comment])

        assert _decisions(result) == [PostDecision.SKIP_EXACT]
        [update] = result.plan.updates
        assert update.target_comment_id == "c1"
        assert update.markers_to_remove == ["F1"]
        assert extract_fingerprint_markers(update.body) == ["F2"]
        assert "(1):**" in update.body
        assert result.plan.resolutions == []

    def test_fully_stale_comment_resolved(self, orchestrator) -> None:
        comment = ExistingComment(
            id="c2", body=self._grouped_body(["F1", "F2", "F3"]), thread_id="T2"
        )

        result = orchestrator.reconcile([], [], [comment])

        [resolve] = result.plan.resolutions
        assert resolve.action == ActionType.RESOLVE_THREAD
        assert resolve.thread_id == "T2"
        assert resolve.target_comment_id == "c2"

    def test_already_resolved_thread_left_alone(self, orchestrator) -> None:
        comment = ExistingComment(
            id="c3", body=build_marker("F1", "x.py", 1), thread_id="T3", is_resolved=True
        )

        result = orchestrator.reconcile([], [], [comment])

        assert result.plan.is_empty()

    def test_malformed_marker_comment_skipped(self, orchestrator) -> None:
        comment = ExistingComment(
            id="c4",
            body=build_marker("F1", "x.py", 1) + f"\n{MARKER_PREFIX}F2:bad -->",
            thread_id="T4",
        )

        result = orchestrator.reconcile([], [], [comment])

        assert result.plan.is_empty()
        assert [(s.kind, s.key, s.reason) for s in result.skipped] == [
            ("comment", "c4", "malformed_marker")
        ]

    def test_comments_without_markers_ignored(self, orchestrator) -> None:
        comment = ExistingComment(id="c5", body="Human review comment", thread_id="T5")

        result = orchestrator.reconcile([], [], [comment])

        assert result.plan.is_empty()
        assert result.skipped == []

    def test_skipped_duplicates_keep_comment_active(self, orchestrator) -> None:
        comment = ExistingComment(
            id="c6", body=build_marker("F1", "src/x.ts", 10), path="src/x.ts", line=10
        )

        result = orchestrator.reconcile([_finding("F1", "src/x.ts", 14)], [], [comment])

        assert _decisions(result) == [PostDecision.SKIP_PROXIMITY]
        assert result.plan.is_empty()


class TestGrouping:
    def test_group_members_recorded_before_next_finding(self, orchestrator) -> None:
        findings = [
            _finding("A", "src/x.ts", 10),
            _finding("B", "src/x.ts", 11),
            _finding("C", "src/x.ts", 12),
            _finding("A", "src/x.ts", 25),
            _finding("B", "src/x.ts", 28),
            _finding("C", "src/x.ts", 31),
        ]

        result = orchestrator.reconcile(findings, [], [])

        assert _decisions(result) == [PostDecision.POST] * 3 + [
            PostDecision.SKIP_PROXIMITY
        ] * 3
        [create] = result.plan.creates
        assert [rf.fingerprint for rf in create.findings] == ["A", "B", "C"]
        assert create.body.startswith("**Multiple issues found in this area (3):**")
        assert create.line == 10

    def test_group_adjacent_respects_gap_and_file(self) -> None:
        def rf(file: str, line: int | None, fp: str) -> ResolvedFinding:
            return ResolvedFinding(
                finding=_finding(fp, file, line), file=file, line=line, fingerprint=fp
            )

        groups = group_adjacent(
            [rf("a.py", None, "1"), rf("a.py", 1, "2"), rf("a.py", 4, "3"), rf("a.py", 8, "4"),
             rf("b.py", 9, "5")],
            3,
        )

        assert [[r.fingerprint for r in g] for g in groups] == [["1"], ["2", "3"], ["4"], ["5"]]


class TestLineHandling:
    def test_lines_resolved_against_diff(self, orchestrator) -> None:
        findings = [
            _finding("V", "src/app.py", 12),
            _finding("N", "src/app.py", 18),
            _finding("C", "src/app.py", 24),
        ]

        result = orchestrator.reconcile(findings, [_app_diff("b/src/app.py")], [])

        by_fp = {rf.fingerprint: rf for rf in result.resolved_findings}
        assert by_fp["V"].line_resolution == LineResolution.VALID
        assert (by_fp["N"].line, by_fp["N"].line_resolution) == (15, LineResolution.AUTO_FIXED)
        assert (by_fp["C"].line, by_fp["C"].line_resolution) == (14, LineResolution.CLAMPED)
        assert result.stats.valid == 1
        assert result.stats.auto_fixed == 1
        assert result.stats.clamped == 1

    def test_malformed_diff_downgrades_only_that_file(self, orchestrator) -> None:
        diff = [
            CanonicalDiffFile(path="bad.py", status=FileStatus.MODIFIED, patch="@@ nope @@\n+x"),
            _app_diff(),
        ]
        findings = [_finding("B", "bad.py", 5), _finding("G", "src/app.py", 11)]

        result = orchestrator.reconcile(findings, diff, [])

        by_fp = {rf.fingerprint: rf for rf in result.resolved_findings}
        assert by_fp["B"].line is None
        assert by_fp["B"].line_resolution == LineResolution.DOWNGRADED
        assert by_fp["G"].line == 11
        assert ("file", "bad.py", "malformed_diff") in [
            (s.kind, s.key, s.reason) for s in result.skipped
        ]
        assert len(result.plan.creates) == 2

    def test_rename_remaps_old_path(self, orchestrator) -> None:
        diff = [
            CanonicalDiffFile(
                path="src/app.py",
                status=FileStatus.RENAMED,
                patch=APP_PATCH,
                old_path="src/legacy.py",
            )
        ]

        result = orchestrator.reconcile([_finding("R", "src/legacy.py", 11)], diff, [])

        [rf] = result.resolved_findings
        assert (rf.file, rf.line) == ("src/app.py", 11)
        assert result.stats.remapped_paths == 1

    def test_ambiguous_rename_downgraded(self, orchestrator) -> None:
        diff = [
            CanonicalDiffFile(
                path="merged.py", status=FileStatus.RENAMED, patch=APP_PATCH, old_path="one.py"
            ),
            CanonicalDiffFile(
                path="merged.py", status=FileStatus.RENAMED, patch=APP_PATCH, old_path="two.py"
            ),
        ]

        result = orchestrator.reconcile([_finding("R", "one.py", 11)], diff, [])

        [rf] = result.resolved_findings
        assert (rf.file, rf.line) == ("merged.py", None)
        assert result.stats.ambiguous_renames == 1

    def test_drift_signal_fails_when_most_findings_degraded(self, orchestrator) -> None:
        diff = [CanonicalDiffFile(path="bad.py", status=FileStatus.MODIFIED, patch="@@ x")]
        findings = [_finding("1", "bad.py", 1), _finding("2", "bad.py", 50)]

        result = orchestrator.reconcile(findings, diff, [])

        assert result.drift.level == "fail"
        assert result.drift.degradation_percent == 100.0


class TestInlineCommentLimit:
    def test_limit_skips_remaining_findings(self) -> None:
        orchestrator = ReconciliationOrchestrator(
            ReconcilerConfig(max_inline_comments=1, summary_comment=False)
        )
        existing = ExistingComment(
            id="old", body=build_marker("F2", "src/y.ts", 90), path="src/y.ts", line=90
        )
        findings = [_finding("F1", "src/x.ts", 10), _finding("F2", "src/z.ts", 50)]

        result = orchestrator.reconcile(findings, [], [existing])

        assert len(result.plan.creates) == 1
        assert _decisions(result) == [PostDecision.POST, PostDecision.SKIP_LIMIT]
        assert ("finding", "src/z.ts:50", "inline_comment_limit") in [
            (s.kind, s.key, s.reason) for s in result.skipped
        ]
        # F2 is still reported, so its old comment is not stale
        assert result.plan.resolutions == []


class TestRun:
    """The stage wrapper never raises."""

    def test_success(self, orchestrator) -> None:
        result = orchestrator.run(
            ReconciliationInput([_finding("F1", "src/x.ts", 10)], [], [])
        )

        assert result.status == StageStatus.SUCCESS
        assert result.output.plan.creates
        assert result.metrics.findings_processed == 1

    def test_partial_when_items_skipped(self, orchestrator) -> None:
        diff = [CanonicalDiffFile(path="old.ts", status=FileStatus.DELETED)]

        result = orchestrator.run(
            ReconciliationInput([_finding("F1", "old.ts", 1)], diff, [])
        )

        assert result.status == StageStatus.PARTIAL
        assert result.warnings == ["finding old.ts:1: deleted_file"]

    def test_error_is_returned_not_raised(self, orchestrator) -> None:
        result = orchestrator.run(ReconciliationInput(None, [], []))  # type: ignore[arg-type]

        assert result.status == StageStatus.ERROR
        assert result.error_code == StageErrorCode.INVALID_INPUT
        assert result.to_dict()["status"] == "error"


def _as_posted(actions) -> list[ExistingComment]:
    """Comments as the platform would list them after applying ``actions``."""
    posted = []
    for i, action in enumerate(actions):
        if action.action == ActionType.CREATE:
            posted.append(
                ExistingComment(id=str(i), body=action.body, path=action.path, line=action.line)
            )
        elif action.action == ActionType.UPSERT_SUMMARY:
            posted.append(ExistingComment(id=f"summary-{i}", body=action.body))
    return posted


class TestAgentTextWithMarkers:
    """Marker text quoted by an agent never becomes reconciliation state."""

    @pytest.mark.parametrize(
        "quoted",
        [
            build_marker("EVIL", "src/x.py", 10),
            f"{MARKER_PREFIX}broken:payload -->",
        ],
    )
    def test_second_run_plans_nothing(self, quoted) -> None:
        findings = [
            _finding("F1", "src/x.py", 10, message=f"Avoid {quoted} here"),
            _finding("F2", "src/x.py", 11, message="plain"),
            _finding("F3", "src/y.py", 40, message=quoted),
        ]

        first = ReconciliationOrchestrator().reconcile(findings, [], [])
        second = ReconciliationOrchestrator().reconcile(
            findings, [], _as_posted(first.plan.actions)
        )

        assert _decisions(second) == [PostDecision.SKIP_EXACT] * 3
        assert second.plan.is_empty()
        assert second.skipped == []

    def test_quoted_marker_does_not_hide_other_findings(self, orchestrator) -> None:
        quoted = build_marker("F9", "src/z.py", 5)
        first = orchestrator.reconcile(
            [_finding("F1", "src/x.py", 10, message=f"see {quoted}")], [], []
        )

        second = orchestrator.reconcile(
            [_finding("F9", "src/z.py", 5)], [], _as_posted(first.plan.actions)
        )

        assert _decisions(second) == [PostDecision.POST]


class TestFileLevelThenInline:
    def test_file_level_comment_does_not_hide_inline_report(self, orchestrator) -> None:
        existing = ExistingComment(
            id="c1", body=build_marker("F1", "src/x.ts", None), path="src/x.ts"
        )

        result = orchestrator.reconcile([_finding("F1", "src/x.ts", 5)], [], [existing])

        assert _decisions(result) == [PostDecision.POST]


class TestSummaryComment:
    """The PR-level summary is created once and then kept up to date."""

    def test_created_when_missing(self) -> None:
        result = ReconciliationOrchestrator().reconcile(
            [_finding("F1", "src/x.ts", 10, message="first issue")], [], []
        )

        summary = result.plan.summary
        assert result.plan.actions[-1] is summary
        assert summary.target_comment_id is None
        assert summary.body.startswith(SUMMARY_HEADER)
        assert "#### `src/x.ts`" in summary.body
        assert "(line 10) [semgrep]: first issue" in summary.body

    def test_existing_summary_updated_in_place(self) -> None:
        old = ExistingComment(id="s1", body=f"{SUMMARY_HEADER}\n\nstale text")

        result = ReconciliationOrchestrator().reconcile(
            [_finding("F1", "src/x.ts", 10)], [], [old]
        )

        assert result.plan.summary.target_comment_id == "s1"
        assert result.plan.resolutions == []
        assert result.skipped == []

    def test_up_to_date_summary_left_alone(self) -> None:
        findings = [_finding("F1", "src/x.ts", 10)]
        first = ReconciliationOrchestrator().reconcile(findings, [], [])
        current = ExistingComment(id="s1", body=first.plan.summary.body + "\n")

        second = ReconciliationOrchestrator().reconcile(findings, [], [current])

        assert second.plan.summary is None

    def test_no_findings(self) -> None:
        result = ReconciliationOrchestrator().reconcile([], [], [])

        assert "No issues found" in result.plan.summary.body

    def test_disabled(self, orchestrator) -> None:
        result = orchestrator.reconcile([_finding("F1", "src/x.ts", 10)], [], [])

        assert result.plan.summary is None
