"""Tests for agent text sanitization."""

from __future__ import annotations

import pytest

from reconciler.models import Finding, Severity
from reconciler.sanitize import (
    MAX_MESSAGE_LENGTH,
    MAX_RULE_ID_LENGTH,
    sanitize_finding,
    sanitize_text,
)


class TestSanitizeText:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("plain", "plain"),
            ("nul\0byte", "nulbyte"),
            ("<!-- hidden -->", "&lt;!-- hidden --&gt;"),
            ("a & b", "a &amp; b"),
            ("", ""),
            (None, ""),
        ],
    )
    def test_cleans_text(self, raw: str | None, expected: str) -> None:
        assert sanitize_text(raw, 100) == expected

    def test_truncates_before_escaping(self) -> None:
        result = sanitize_text("<" * 20, 10)

        assert result == "&lt;" * 7 + "..."

    def test_short_text_untouched_by_truncation(self) -> None:
        assert sanitize_text("x" * 10, 10) == "x" * 10


def test_sanitize_finding_limits_each_field() -> None:
    finding = Finding(
        severity=Severity.ERROR,
        file="src/app.py",
        message="m" * (MAX_MESSAGE_LENGTH + 50),
        source_agent="<agent>",
        line=4,
        suggestion="use <b>",
        rule_id="r" * 500,
        fingerprint="keep-me",
    )

    clean = sanitize_finding(finding)

    assert len(clean.message) == MAX_MESSAGE_LENGTH
    assert clean.message.endswith("...")
    assert len(clean.rule_id) == MAX_RULE_ID_LENGTH
    assert clean.suggestion == "use &lt;b&gt;"
    assert clean.source_agent == "&lt;agent&gt;"
    assert (clean.file, clean.line, clean.fingerprint) == ("src/app.py", 4, "keep-me")
    assert finding.message.startswith("mmm")


def test_message_of_only_nul_bytes_stays_renderable() -> None:
    finding = Finding(
        severity=Severity.INFO, file="a.py", message="\0\0", source_agent="lint"
    )

    assert sanitize_finding(finding).message == "..."
