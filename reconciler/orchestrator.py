"""
Reconciliation Orchestrator

Composes path canonicalization, line resolution, fingerprinting, dedup and
stale-comment evaluation into a single deterministic pass. The result is a
platform-agnostic PostPlan; the orchestrator itself performs no I/O.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from loguru import logger

from reconciler.base import BaseStage, StageResult
from reconciler.config import ReconcilerConfig
from reconciler.dedup import DedupTracker
from reconciler.diff_index import DiffPositionIndex
from reconciler.errors import MalformedDiffError, MalformedMarkerError
from reconciler.fingerprint import compute_fingerprint
from reconciler.formatting import remove_finding_blocks, render_comment
from reconciler.line_resolver import LineResolver
from reconciler.models import (
    ActionType,
    CanonicalDiffFile,
    DriftSignal,
    ExistingComment,
    FileStatus,
    Finding,
    FindingDecision,
    LineResolution,
    LineResolutionStats,
    LineSample,
    PostAction,
    PostDecision,
    PostPlan,
    ReconciliationResult,
    ResolvedFinding,
    SkippedItem,
)
from reconciler.paths import canonicalize, canonicalize_diff_files
from reconciler.resolution import StaleResolutionEvaluator
from reconciler.summary import find_summary_comment, render_summary


@dataclass
class ReconciliationInput:
    findings: list[Finding]
    diff_files: list[CanonicalDiffFile]
    existing_comments: list[ExistingComment] = field(default_factory=list)


def _sort_key(rf: ResolvedFinding) -> tuple[str, bool, int, str]:
    return (rf.file, rf.line is not None, rf.line or 0, rf.source_agent)


def group_adjacent(
    findings: Sequence[ResolvedFinding], max_gap: int
) -> list[list[ResolvedFinding]]:
    """Group sorted findings that sit in the same file within ``max_gap`` lines.

    File-level findings always form their own group.
    """
    groups: list[list[ResolvedFinding]] = []
    for rf in findings:
        if groups:
            prev = groups[-1][-1]
            if (
                prev.file == rf.file
                and prev.line is not None
                and rf.line is not None
                and rf.line - prev.line <= max_gap
            ):
                groups[-1].append(rf)
                continue
        groups.append([rf])
    return groups


def compute_drift_signal(
    stats: LineResolutionStats, config: ReconcilerConfig
) -> DriftSignal:
    """Summarize how many findings lost their line in this run."""
    if stats.total == 0:
        return DriftSignal("ok", 0.0, 0.0, "No findings to validate")

    degraded = stats.dropped + stats.downgraded
    degradation = degraded / stats.total * 100
    auto_fix = (stats.auto_fixed + stats.clamped) / stats.total * 100

    if degradation >= config.drift_fail_percent:
        level = "fail"
        message = (
            f"Line validation failed: {degradation:.1f}% degraded "
            f"({degraded}/{stats.total} findings) - exceeds "
            f"{config.drift_fail_percent}% threshold"
        )
    elif degradation >= config.drift_warn_percent:
        level = "warn"
        message = (
            f"Line validation warning: {degradation:.1f}% degraded "
            f"({degraded}/{stats.total} findings) - exceeds "
            f"{config.drift_warn_percent}% threshold"
        )
    elif degraded:
        level = "ok"
        message = (
            f"Line validation healthy: {degradation:.1f}% degraded "
            f"({degraded}/{stats.total})"
        )
    else:
        level = "ok"
        message = f"Line validation perfect: all {stats.total} findings valid"

    return DriftSignal(
        level=level,
        degradation_percent=round(degradation, 1),
        auto_fix_percent=round(auto_fix, 1),
        message=message,
        samples=tuple(stats.samples[: config.drift_max_samples]),
    )


class ReconciliationOrchestrator(BaseStage[ReconciliationInput, ReconciliationResult]):
    """Single-pass reconciliation of findings against a diff and prior comments."""

    def __init__(self, config: ReconcilerConfig | None = None) -> None:
        super().__init__("ReconciliationOrchestrator")
        self.config = config or ReconcilerConfig()
        self.line_resolver = LineResolver(window=self.config.line_window)
        self.evaluator = StaleResolutionEvaluator()

    def execute(
        self, input_data: ReconciliationInput
    ) -> StageResult[ReconciliationResult]:
        result = self.reconcile(
            input_data.findings, input_data.diff_files, input_data.existing_comments
        )
        metrics = self._create_metrics(
            findings_processed=len(input_data.findings),
            comments_processed=len(input_data.existing_comments),
            additional_metrics={
                "creates": len(result.plan.creates),
                "updates": len(result.plan.updates),
                "resolutions": len(result.plan.resolutions),
                "drift_level": result.drift.level if result.drift else "ok",
            },
        )

        if result.skipped:
            warnings = [f"{s.kind} {s.key}: {s.reason}" for s in result.skipped]
            return StageResult.partial(result, metrics=metrics, warnings=warnings)
        return StageResult.success(result, metrics=metrics)

    def reconcile(
        self,
        findings: Iterable[Finding],
        diff_files: Iterable[CanonicalDiffFile],
        existing_comments: Iterable[ExistingComment] = (),
    ) -> ReconciliationResult:
        findings = list(findings)
        comments = list(existing_comments)
        skipped: list[SkippedItem] = []
        stats = LineResolutionStats(total=len(findings))

        files = canonicalize_diff_files(diff_files)
        resolved = self._resolve_findings(findings, files, stats, skipped)

        tracker = DedupTracker(proximity_threshold=self.config.proximity_threshold)
        tracker.seed_from_comments(comments)

        plan = PostPlan()
        decisions = self._plan_creates(resolved, tracker, plan, skipped)

        current = {rf.fingerprint for rf in resolved}
        self._plan_stale_comments(comments, current, plan, skipped)
        if self.config.summary_comment:
            self._plan_summary(resolved, comments, plan)

        result = ReconciliationResult(
            plan=plan,
            decisions=decisions,
            skipped=skipped,
            resolved_findings=resolved,
            stats=stats,
            drift=compute_drift_signal(stats, self.config),
        )
        self._log_summary(result)
        return result

    def _build_indices(
        self, files: list[CanonicalDiffFile], skipped: list[SkippedItem]
    ) -> dict[str, DiffPositionIndex]:
        indices: dict[str, DiffPositionIndex] = {}
        for f in files:
            if f.status == FileStatus.DELETED:
                continue
            try:
                indices[f.path] = DiffPositionIndex.build(f.patch)
            except MalformedDiffError as e:
                logger.warning(f"Malformed diff for {f.path}: {e}")
                indices[f.path] = DiffPositionIndex.empty()
                skipped.append(SkippedItem("file", f.path, "malformed_diff"))
        return indices

    @staticmethod
    def _rename_map(files: list[CanonicalDiffFile]) -> tuple[dict[str, str], set[str]]:
        """Map old paths to new paths and collect the ambiguous old paths.

        A rename is ambiguous when several old paths map to the same new path.
        """
        current_paths = {f.path for f in files}
        renames: dict[str, str] = {}
        sources: dict[str, list[str]] = {}
        for f in files:
            if f.status != FileStatus.RENAMED or not f.old_path or f.old_path == f.path:
                continue
            if f.old_path in current_paths:
                continue
            renames[f.old_path] = f.path
            sources.setdefault(f.path, []).append(f.old_path)

        ambiguous = {old for olds in sources.values() if len(olds) > 1 for old in olds}
        return renames, ambiguous

    def _resolve_findings(
        self,
        findings: list[Finding],
        files: list[CanonicalDiffFile],
        stats: LineResolutionStats,
        skipped: list[SkippedItem],
    ) -> list[ResolvedFinding]:
        deleted = {f.path for f in files if f.status == FileStatus.DELETED}
        renames, ambiguous = self._rename_map(files)
        indices = self._build_indices(files, skipped)

        resolved: list[ResolvedFinding] = []
        for finding in findings:
            path = canonicalize(finding.file)

            if path in renames:
                new_path = renames[path]
                if path in ambiguous:
                    rf = self.line_resolver.downgrade(
                        finding, new_path, compute_fingerprint(finding, new_path)
                    )
                    stats.downgraded += 1
                    stats.ambiguous_renames += 1
                    stats.samples.append(LineSample(path, finding.line, "ambiguous_rename"))
                    resolved.append(rf)
                    continue
                path = new_path
                stats.remapped_paths += 1

            if path in deleted:
                stats.dropped += 1
                stats.samples.append(LineSample(path, finding.line, "deleted_file"))
                skipped.append(
                    SkippedItem("finding", f"{path}:{finding.line or 0}", "deleted_file")
                )
                continue

            rf = self.line_resolver.resolve(
                finding, indices.get(path), path, compute_fingerprint(finding, path)
            )
            stats.record(rf.line_resolution)
            if rf.line_resolution in (
                LineResolution.AUTO_FIXED,
                LineResolution.CLAMPED,
                LineResolution.DOWNGRADED,
            ):
                stats.samples.append(
                    LineSample(path, finding.line, rf.line_resolution.value, rf.line)
                )
            resolved.append(rf)

        resolved.sort(key=_sort_key)
        return resolved

    def _plan_creates(
        self,
        resolved: list[ResolvedFinding],
        tracker: DedupTracker,
        plan: PostPlan,
        skipped: list[SkippedItem],
    ) -> list[FindingDecision]:
        decisions: list[FindingDecision] = []
        cap = self.config.max_inline_comments

        for group in group_adjacent(resolved, self.config.group_line_gap):
            limit_reached = cap is not None and len(plan.actions) >= cap
            to_post: list[ResolvedFinding] = []

            for rf in group:
                decision = tracker.decide(rf)
                if decision == PostDecision.POST and limit_reached:
                    decision = PostDecision.SKIP_LIMIT
                    skipped.append(
                        SkippedItem(
                            "finding", f"{rf.file}:{rf.line or 0}", "inline_comment_limit"
                        )
                    )
                decisions.append(
                    FindingDecision(rf.fingerprint, rf.file, rf.line, decision, rf.source_agent)
                )
                if decision != PostDecision.POST:
                    logger.debug(f"{rf.file}:{rf.line or 0} skipped ({decision.value})")
                    continue
                tracker.record_posted(rf)
                to_post.append(rf)

            if to_post:
                plan.actions.append(
                    PostAction(
                        action=ActionType.CREATE,
                        findings=to_post,
                        body=render_comment(to_post),
                    )
                )

        if cap is not None and len(plan.actions) >= cap:
            logger.warning(f"Inline comment limit of {cap} reached")
        return decisions

    def _plan_stale_comments(
        self,
        comments: list[ExistingComment],
        current: set[str],
        plan: PostPlan,
        skipped: list[SkippedItem],
    ) -> None:
        for comment in comments:
            try:
                outcome = self.evaluator.evaluate_comment(comment, current)
            except MalformedMarkerError as e:
                logger.warning(f"{e}; leaving it unchanged")
                skipped.append(SkippedItem("comment", comment.id, "malformed_marker"))
                continue

            if outcome is None:
                continue

            if outcome.resolved:
                if comment.is_resolved:
                    logger.debug(f"Comment {comment.id} already resolved")
                    continue
                plan.actions.append(
                    PostAction(
                        action=ActionType.RESOLVE_THREAD,
                        target_comment_id=comment.id,
                        thread_id=comment.thread_id,
                    )
                )
            elif outcome.partially_resolved and not comment.is_resolved:
                plan.actions.append(
                    PostAction(
                        action=ActionType.UPDATE,
                        target_comment_id=comment.id,
                        thread_id=comment.thread_id,
                        markers_to_remove=list(outcome.partially_resolved),
                        body=remove_finding_blocks(comment.body, outcome.partially_resolved),
                    )
                )

    @staticmethod
    def _plan_summary(
        resolved: list[ResolvedFinding],
        comments: list[ExistingComment],
        plan: PostPlan,
    ) -> None:
        body = render_summary(resolved)
        existing = find_summary_comment(comments)
        if existing is not None and existing.body.strip() == body.strip():
            logger.debug(f"Summary comment {existing.id} is up to date")
            return

        plan.actions.append(
            PostAction(
                action=ActionType.UPSERT_SUMMARY,
                target_comment_id=existing.id if existing else None,
                thread_id=existing.thread_id if existing else None,
                body=body,
            )
        )

    @staticmethod
    def _log_summary(result: ReconciliationResult) -> None:
        plan = result.plan
        logger.info(
            f"Reconciliation planned {len(plan.creates)} new comment(s), "
            f"{len(plan.updates)} update(s), {len(plan.resolutions)} resolution(s); "
            f"{len(result.decisions_for(PostDecision.SKIP_EXACT))} exact and "
            f"{len(result.decisions_for(PostDecision.SKIP_PROXIMITY))} proximity "
            f"duplicate(s) skipped"
        )
        if result.drift and result.drift.level != "ok":
            logger.warning(result.drift.message)
