"""
PR-level summary comment.

One summary comment per pull request lists every finding of the current run
by file. It is found again on later runs by its header and updated in place,
and left alone when its body would not change.
"""

from collections.abc import Iterable

from reconciler.formatting import SEVERITY_EMOJI
from reconciler.models import ExistingComment, ResolvedFinding, Severity
from reconciler.sanitize import MAX_MESSAGE_LENGTH, sanitize_finding, sanitize_text

SUMMARY_HEADER = "## AI Code Review Summary"


def render_summary(findings: list[ResolvedFinding]) -> str:
    counts = {severity: 0 for severity in Severity}
    for rf in findings:
        counts[rf.severity] += 1

    lines = [
        SUMMARY_HEADER,
        "",
        "| Severity | Count |",
        "|----------|-------|",
        f"| {SEVERITY_EMOJI[Severity.ERROR]} Errors | {counts[Severity.ERROR]} |",
        f"| {SEVERITY_EMOJI[Severity.WARNING]} Warnings | {counts[Severity.WARNING]} |",
        f"| {SEVERITY_EMOJI[Severity.INFO]} Info | {counts[Severity.INFO]} |",
        "",
    ]

    if not findings:
        lines.append("✅ No issues found!")
        return "\n".join(lines)

    lines.extend(["### Findings by File", ""])

    by_file: dict[str, list[ResolvedFinding]] = {}
    for rf in findings:
        by_file.setdefault(rf.file, []).append(rf)

    for path, file_findings in by_file.items():
        lines.extend([f"#### `{sanitize_text(path, MAX_MESSAGE_LENGTH)}`", ""])
        for rf in file_findings:
            finding = sanitize_finding(rf.finding)
            line_info = f" (line {rf.line})" if rf.line else ""
            lines.append(
                f"- {SEVERITY_EMOJI[rf.severity]}{line_info} "
                f"[{finding.source_agent}]: {finding.message}"
            )
            if finding.suggestion:
                lines.append(f"  - 💡 Suggestion: {finding.suggestion}")
        lines.append("")

    return "\n".join(lines).rstrip()


def is_summary_comment(comment: ExistingComment) -> bool:
    return comment.body.lstrip().startswith(SUMMARY_HEADER)


def find_summary_comment(comments: Iterable[ExistingComment]) -> ExistingComment | None:
    """First summary comment among ``comments``, if any."""
    return next((c for c in comments if is_summary_comment(c)), None)
