"""
Sanitization of agent-supplied text before it is rendered into a comment.

Agent output is untrusted. Left raw, a message quoting a fingerprint marker
would be read back on the next run as a real marker, so every free-text field
is stripped of NUL bytes, truncated, and HTML-escaped before rendering.
"""

from dataclasses import replace

from reconciler.models import Finding

MAX_MESSAGE_LENGTH = 4000
MAX_SUGGESTION_LENGTH = 2000
MAX_RULE_ID_LENGTH = 200
MAX_AGENT_LENGTH = 200

_ELLIPSIS = "..."


def sanitize_text(text: str | None, max_length: int) -> str:
    """Return ``text`` without NUL bytes, truncated and with ``&<>`` escaped.

    Truncation happens before escaping so an entity is never cut in half.
    """
    if not text:
        return ""

    cleaned = text.replace("\0", "")
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - len(_ELLIPSIS)] + _ELLIPSIS

    return cleaned.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def sanitize_finding(finding: Finding) -> Finding:
    """Copy of ``finding`` with its displayable text fields sanitized.

    Path, lines and fingerprint are left alone: paths are canonicalized
    separately and the fingerprint must stay stable across runs.
    """
    return replace(
        finding,
        message=sanitize_text(finding.message, MAX_MESSAGE_LENGTH) or _ELLIPSIS,
        suggestion=sanitize_text(finding.suggestion, MAX_SUGGESTION_LENGTH) or None,
        rule_id=sanitize_text(finding.rule_id, MAX_RULE_ID_LENGTH) or None,
        source_agent=sanitize_text(finding.source_agent, MAX_AGENT_LENGTH) or "unknown",
    )
