"""
Finding reconciliation engine.

This package turns raw analysis findings plus a unified diff into a
deterministic plan of comment creations, updates and thread resolutions:
- Path canonicalization and diff position indexing
- Line resolution and fingerprinting
- Cross-run dedup and stale comment evaluation
"""

from .base import BaseStage, StageErrorCode, StageMetrics, StageResult, StageStatus
from .config import ReconcilerConfig
from .dedup import DedupTracker, dedupe_key, proximity_key
from .diff_index import DiffPositionIndex
from .errors import (
    AmbiguousLineError,
    MalformedDiffError,
    MalformedMarkerError,
    ReconcilerError,
)
from .fingerprint import compute_fingerprint
from .line_resolver import LineResolver
from .models import (
    ActionType,
    CanonicalDiffFile,
    ExistingComment,
    ExistingCommentMarker,
    FileStatus,
    Finding,
    PostAction,
    PostDecision,
    PostPlan,
    ReconciliationResult,
    ResolutionOutcome,
    ResolvedFinding,
    Severity,
)
from .orchestrator import ReconciliationInput, ReconciliationOrchestrator
from .paths import canonicalize, canonicalize_diff_files
from .resolution import StaleResolutionEvaluator

__all__ = [
    # Stage plumbing
    "BaseStage",
    "StageResult",
    "StageMetrics",
    "StageStatus",
    "StageErrorCode",
    "ReconcilerConfig",
    # Errors
    "ReconcilerError",
    "MalformedDiffError",
    "AmbiguousLineError",
    "MalformedMarkerError",
    # Data model
    "ActionType",
    "CanonicalDiffFile",
    "ExistingComment",
    "ExistingCommentMarker",
    "FileStatus",
    "Finding",
    "PostAction",
    "PostDecision",
    "PostPlan",
    "ReconciliationResult",
    "ResolutionOutcome",
    "ResolvedFinding",
    "Severity",
    # Components
    "canonicalize",
    "canonicalize_diff_files",
    "DiffPositionIndex",
    "LineResolver",
    "compute_fingerprint",
    "DedupTracker",
    "dedupe_key",
    "proximity_key",
    "StaleResolutionEvaluator",
    "ReconciliationInput",
    "ReconciliationOrchestrator",
]
