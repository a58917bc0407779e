"""
Data model shared by the reconciliation stages and the platform adapters.

Findings arrive as loosely-typed JSON from analysis agents; everything after
``Finding.from_dict`` works on the typed records defined here.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Severity(Enum):
    """Finding severity as reported by agents."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class FileStatus(Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"

    @classmethod
    def parse(cls, value: str) -> FileStatus:
        """Map platform status spellings onto the four canonical values."""
        aliases = {
            "removed": cls.DELETED,
            "delete": cls.DELETED,
            "add": cls.ADDED,
            "edit": cls.MODIFIED,
            "changed": cls.MODIFIED,
            "copied": cls.ADDED,
            "rename": cls.RENAMED,
        }
        lowered = (value or "").strip().lower()
        if lowered in aliases:
            return aliases[lowered]
        try:
            return cls(lowered)
        except ValueError:
            return cls.MODIFIED


class HunkLineType(Enum):
    CONTEXT = "context"
    ADD = "add"
    DEL = "del"


class LineResolution(Enum):
    """How a finding's posted line was obtained."""

    VALID = "valid"
    AUTO_FIXED = "auto_fixed"
    CLAMPED = "clamped"
    DOWNGRADED = "downgraded"
    UNVERIFIED = "unverified"
    FILE_LEVEL = "file_level"


class PostDecision(Enum):
    POST = "post"
    SKIP_EXACT = "skip_exact"
    SKIP_PROXIMITY = "skip_proximity"
    SKIP_LIMIT = "skip_limit"


class ActionType(Enum):
    CREATE = "create"
    UPDATE = "update"
    RESOLVE_THREAD = "resolve_thread"
    UPSERT_SUMMARY = "upsert_summary"


def _pick(data: dict[str, Any], *keys: str) -> Any:
    """Return the first present, non-None value among ``keys``."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


@dataclass
class Finding:
    """A single issue reported by an analysis agent."""

    severity: Severity
    file: str
    message: str
    source_agent: str
    line: int | None = None
    end_line: int | None = None
    suggestion: str | None = None
    rule_id: str | None = None
    fingerprint: str | None = None

    def __post_init__(self) -> None:
        if not self.file:
            raise ValueError("Finding.file is required")
        if not self.message:
            raise ValueError("Finding.message is required")
        if self.line is not None and self.line < 1:
            # Line 0 and negatives carry no position; treat as file-level.
            self.line = None
            self.end_line = None

    @property
    def is_file_level(self) -> bool:
        return self.line is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "file": self.file,
            "line": self.line,
            "end_line": self.end_line,
            "message": self.message,
            "suggestion": self.suggestion,
            "rule_id": self.rule_id,
            "source_agent": self.source_agent,
            "fingerprint": self.fingerprint,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Finding:
        """Build a Finding from agent JSON (snake_case or camelCase keys)."""
        severity = str(data.get("severity", "warning")).lower()
        try:
            sev = Severity(severity)
        except ValueError as err:
            raise ValueError(f"Unknown finding severity: {severity!r}") from err

        return cls(
            severity=sev,
            file=str(_pick(data, "file", "path") or ""),
            message=str(data.get("message") or ""),
            source_agent=str(_pick(data, "source_agent", "sourceAgent") or "unknown"),
            line=_optional_int(data.get("line")),
            end_line=_optional_int(_pick(data, "end_line", "endLine")),
            suggestion=data.get("suggestion"),
            rule_id=_pick(data, "rule_id", "ruleId"),
            fingerprint=data.get("fingerprint"),
        )


@dataclass(frozen=True)
class CanonicalDiffFile:
    """A changed file whose paths have passed through ``canonicalize``."""

    path: str
    status: FileStatus
    patch: str | None = None
    additions: int = 0
    deletions: int = 0
    old_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "status": self.status.value,
            "additions": self.additions,
            "deletions": self.deletions,
            "old_path": self.old_path,
        }


@dataclass(frozen=True)
class HunkLine:
    type: HunkLineType
    content: str
    new_line_number: int | None = None


@dataclass(frozen=True)
class Hunk:
    """A single hunk of a file change."""

    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    lines: tuple[HunkLine, ...] = ()


@dataclass(frozen=True)
class LineInfo:
    valid: bool
    is_addition: bool


@dataclass(frozen=True)
class ResolvedFinding:
    """A finding bound to a canonical path, a checked line and a fingerprint.

    Instances are frozen: the fingerprint assigned here is the one used for
    dedup keys, markers and staleness for the rest of the run.
    """

    finding: Finding
    file: str
    line: int | None
    fingerprint: str
    was_auto_fixed: bool = False
    line_resolution: LineResolution = LineResolution.VALID
    end_line: int | None = None
    end_line_anchored: bool = False
    original_line: int | None = None

    def __post_init__(self) -> None:
        if not self.fingerprint:
            raise ValueError("ResolvedFinding.fingerprint must be non-empty")

    @property
    def severity(self) -> Severity:
        return self.finding.severity

    @property
    def message(self) -> str:
        return self.finding.message

    @property
    def source_agent(self) -> str:
        return self.finding.source_agent

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "line": self.line,
            "end_line": self.end_line,
            "fingerprint": self.fingerprint,
            "severity": self.severity.value,
            "source_agent": self.source_agent,
            "rule_id": self.finding.rule_id,
            "message": self.message,
            "was_auto_fixed": self.was_auto_fixed,
            "line_resolution": self.line_resolution.value,
            "original_line": self.original_line,
        }


@dataclass
class ExistingComment:
    """A comment already present on the pull request."""

    id: str
    body: str
    thread_id: str | None = None
    path: str | None = None
    line: int | None = None
    is_resolved: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "body": self.body,
            "thread_id": self.thread_id,
            "path": self.path,
            "line": self.line,
            "is_resolved": self.is_resolved,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExistingComment:
        thread_id = _pick(data, "thread_id", "threadId")
        return cls(
            id=str(data["id"]),
            body=str(data.get("body") or ""),
            thread_id=str(thread_id) if thread_id is not None else None,
            path=data.get("path"),
            line=_optional_int(data.get("line")),
            is_resolved=bool(_pick(data, "is_resolved", "isResolved") or False),
        )


@dataclass(frozen=True)
class ExistingCommentMarker:
    fingerprint: str
    comment_id: str
    thread_id: str | None = None
    path: str | None = None
    line: int | None = None


@dataclass(frozen=True)
class ResolutionOutcome:
    """Staleness verdict for one comment's markers."""

    resolved: bool
    partially_resolved: tuple[str, ...]
    total_markers: int

    @property
    def stale_count(self) -> int:
        return self.total_markers if self.resolved else len(self.partially_resolved)

    def to_dict(self) -> dict[str, Any]:
        return {
            "resolved": self.resolved,
            "partially_resolved": list(self.partially_resolved),
            "total_markers": self.total_markers,
            "stale_count": self.stale_count,
        }


@dataclass
class PostAction:
    """One platform mutation the adapter should perform."""

    action: ActionType
    findings: list[ResolvedFinding] = field(default_factory=list)
    target_comment_id: str | None = None
    thread_id: str | None = None
    markers_to_remove: list[str] = field(default_factory=list)
    body: str | None = None

    def __post_init__(self) -> None:
        if self.action == ActionType.CREATE:
            if not self.findings:
                raise ValueError("CREATE action requires at least one finding")
            if len({rf.file for rf in self.findings}) != 1:
                raise ValueError("CREATE action findings must share one file")
        elif self.action == ActionType.UPDATE:
            if not self.target_comment_id or not self.markers_to_remove:
                raise ValueError(
                    "UPDATE action requires target_comment_id and markers_to_remove"
                )
        elif self.action == ActionType.UPSERT_SUMMARY:
            if not self.body:
                raise ValueError("UPSERT_SUMMARY action requires a body")
        elif not (self.target_comment_id or self.thread_id):
            raise ValueError("RESOLVE_THREAD action requires a comment or thread id")

    @property
    def path(self) -> str | None:
        return self.findings[0].file if self.findings else None

    @property
    def line(self) -> int | None:
        """Anchor line of a CREATE action: the lowest line in the group."""
        lines = [rf.line for rf in self.findings if rf.line is not None]
        return min(lines) if lines else None

    @property
    def end_line(self) -> int | None:
        """End line for a multi-line comment, or None for a single line."""
        if len(self.findings) != 1:
            return None
        rf = self.findings[0]
        return rf.end_line if rf.end_line_anchored else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "path": self.path,
            "line": self.line,
            "end_line": self.end_line,
            "fingerprints": [rf.fingerprint for rf in self.findings],
            "target_comment_id": self.target_comment_id,
            "thread_id": self.thread_id,
            "markers_to_remove": list(self.markers_to_remove),
            "body": self.body,
        }


@dataclass
class PostPlan:
    actions: list[PostAction] = field(default_factory=list)

    def of_type(self, action: ActionType) -> list[PostAction]:
        return [a for a in self.actions if a.action == action]

    @property
    def creates(self) -> list[PostAction]:
        return self.of_type(ActionType.CREATE)

    @property
    def updates(self) -> list[PostAction]:
        return self.of_type(ActionType.UPDATE)

    @property
    def resolutions(self) -> list[PostAction]:
        return self.of_type(ActionType.RESOLVE_THREAD)

    @property
    def summary(self) -> PostAction | None:
        found = self.of_type(ActionType.UPSERT_SUMMARY)
        return found[0] if found else None

    def is_empty(self) -> bool:
        return not self.actions

    def to_dict(self) -> dict[str, Any]:
        return {"actions": [a.to_dict() for a in self.actions]}


@dataclass(frozen=True)
class SkippedItem:
    """Something the run deliberately did not act on.

    ``kind`` is one of ``finding``, ``file`` or ``comment``.
    """

    kind: str
    key: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "key": self.key, "reason": self.reason}


@dataclass(frozen=True)
class FindingDecision:
    fingerprint: str
    file: str
    line: int | None
    decision: PostDecision
    source_agent: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "file": self.file,
            "line": self.line,
            "decision": self.decision.value,
            "source_agent": self.source_agent,
        }


@dataclass(frozen=True)
class LineSample:
    """A finding whose requested line was not a valid diff line."""

    file: str
    line: int | None
    reason: str
    resolved_line: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "line": self.line,
            "reason": self.reason,
            "resolved_line": self.resolved_line,
        }


@dataclass
class LineResolutionStats:
    total: int = 0
    valid: int = 0
    auto_fixed: int = 0
    clamped: int = 0
    downgraded: int = 0
    unverified: int = 0
    file_level: int = 0
    dropped: int = 0
    remapped_paths: int = 0
    ambiguous_renames: int = 0
    samples: list[LineSample] = field(default_factory=list)

    def record(self, resolution: LineResolution) -> None:
        counter = {
            LineResolution.VALID: "valid",
            LineResolution.AUTO_FIXED: "auto_fixed",
            LineResolution.CLAMPED: "clamped",
            LineResolution.DOWNGRADED: "downgraded",
            LineResolution.UNVERIFIED: "unverified",
            LineResolution.FILE_LEVEL: "file_level",
        }[resolution]
        setattr(self, counter, getattr(self, counter) + 1)

    def to_dict(self) -> dict[str, Any]:
        data = {
            key: getattr(self, key)
            for key in (
                "total",
                "valid",
                "auto_fixed",
                "clamped",
                "downgraded",
                "unverified",
                "file_level",
                "dropped",
                "remapped_paths",
                "ambiguous_renames",
            )
        }
        data["samples"] = [s.to_dict() for s in self.samples]
        return data


@dataclass(frozen=True)
class DriftSignal:
    """Health of line resolution across a run: ``ok``, ``warn`` or ``fail``."""

    level: str
    degradation_percent: float
    auto_fix_percent: float
    message: str
    samples: tuple[LineSample, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "degradation_percent": self.degradation_percent,
            "auto_fix_percent": self.auto_fix_percent,
            "message": self.message,
            "samples": [s.to_dict() for s in self.samples],
        }


@dataclass
class ReconciliationResult:
    plan: PostPlan
    decisions: list[FindingDecision] = field(default_factory=list)
    skipped: list[SkippedItem] = field(default_factory=list)
    resolved_findings: list[ResolvedFinding] = field(default_factory=list)
    stats: LineResolutionStats = field(default_factory=LineResolutionStats)
    drift: DriftSignal | None = None

    def decisions_for(self, decision: PostDecision) -> list[FindingDecision]:
        return [d for d in self.decisions if d.decision == decision]

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": self.plan.to_dict(),
            "decisions": [d.to_dict() for d in self.decisions],
            "skipped": [s.to_dict() for s in self.skipped],
            "stats": self.stats.to_dict(),
            "drift": self.drift.to_dict() if self.drift else None,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)
