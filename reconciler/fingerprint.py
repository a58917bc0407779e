"""Stable finding fingerprints."""

import hashlib
import re

from reconciler.models import Finding

FINGERPRINT_LENGTH = 32

_WHITESPACE = re.compile(r"\s+")


def normalize_message(message: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return _WHITESPACE.sub(" ", message or "").strip().lower()


def compute_fingerprint(finding: Finding, canonical_path: str) -> str:
    """Return the fingerprint identifying ``finding`` across runs.

    An agent-supplied fingerprint is used as-is unless it is empty or
    whitespace-only. Otherwise the fingerprint is derived from the canonical
    path, the rule id (or the source agent when no rule id is set) and the
    normalized message, so line drift between runs does not change it.
    """
    supplied = finding.fingerprint
    if supplied and supplied.strip():
        return supplied

    rule = finding.rule_id or finding.source_agent
    key = f"{canonical_path}|{rule}|{normalize_message(finding.message)}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]
