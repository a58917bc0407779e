"""
Comment body rendering.

Single findings render as one inline comment ending in their marker. Adjacent
findings render as a grouped comment in which every finding block is followed
directly by its own marker line:

    **Multiple issues found in this area (2):**

    🔴 **Line 10** 🛡 (semgrep): message
       💡 suggestion
    <!-- review-reconciler:fingerprint:v1:... -->

    🟡 **Line 12** 🤖 (reviewer): message
    <!-- review-reconciler:fingerprint:v1:... -->

Keeping each marker next to its block lets a partial resolution drop exactly
the stale blocks. Agent text is sanitized before rendering so it can never
contain a marker of its own.
"""

import re

from reconciler.markers import build_marker, scan_markers, strip_markers
from reconciler.models import LineResolution, ResolvedFinding, Severity
from reconciler.sanitize import sanitize_finding

SEVERITY_EMOJI = {
    Severity.ERROR: "🔴",
    Severity.WARNING: "🟡",
    Severity.INFO: "🔵",
}

AGENT_ICONS = {
    "local_llm": "🧠",
    "opencode": "🧑‍💻",
    "pr_agent": "🐺",
    "reviewdog": "🦊",
    "semgrep": "🛡",
    "ai_semantic_review": "🔬",
    "control_flow": "🔀",
}
DEFAULT_AGENT_ICON = "🤖"

GROUP_HEADER = re.compile(r"^\*\*Multiple issues found in this area \((\d+)\):\*\*$")

_BLOCK_STARTS = tuple(f"{emoji} **Line " for emoji in SEVERITY_EMOJI.values())


def agent_icon(agent: str) -> str:
    return AGENT_ICONS.get(agent, DEFAULT_AGENT_ICON)


def marker_for(rf: ResolvedFinding) -> str:
    return build_marker(rf.fingerprint, rf.file, rf.line)


def render_inline_comment(rf: ResolvedFinding) -> str:
    finding = sanitize_finding(rf.finding)
    emoji = SEVERITY_EMOJI[rf.severity]
    icon = agent_icon(rf.source_agent)
    parts = [f"{emoji} {icon} **{finding.source_agent}**: {finding.message}"]

    if finding.rule_id:
        parts.append(f"\n\n*Rule: `{finding.rule_id}`*")
    if finding.suggestion:
        parts.append(f"\n\n💡 **Suggestion**: {finding.suggestion}")
    if rf.line_resolution == LineResolution.DOWNGRADED and rf.original_line:
        parts.append(f"\n\n_Reported at line {rf.original_line}, outside this diff._")

    parts.append(f"\n\n{marker_for(rf)}")
    return "".join(parts)


def render_grouped_comment(findings: list[ResolvedFinding]) -> str:
    lines = [f"**Multiple issues found in this area ({len(findings)}):**", ""]
    for rf in findings:
        finding = sanitize_finding(rf.finding)
        emoji = SEVERITY_EMOJI[rf.severity]
        icon = agent_icon(rf.source_agent)
        lines.append(
            f"{emoji} **Line {rf.line}** {icon} ({finding.source_agent}): {finding.message}"
        )
        if finding.suggestion:
            lines.append(f"   💡 {finding.suggestion}")
        lines.append(marker_for(rf))
        lines.append("")
    return "\n".join(lines).strip()


def render_comment(findings: list[ResolvedFinding]) -> str:
    """Render one finding inline, several as a group."""
    if not findings:
        raise ValueError("Cannot render a comment without findings")
    if len(findings) == 1:
        return render_inline_comment(findings[0])
    return render_grouped_comment(findings)


def _remove_marker_text(body: str, fingerprints: set[str]) -> str:
    """Drop individual markers whose fingerprint is in ``fingerprints``."""
    kept = []
    for line in body.split("\n"):
        found = scan_markers(line).fingerprints
        if found and all(fp in fingerprints for fp in found):
            residue = strip_markers(line)
            if residue.strip():
                kept.append(residue.rstrip())
            continue
        kept.append(line)
    return "\n".join(kept)


def remove_finding_blocks(body: str, fingerprints: set[str] | list[str]) -> str:
    """Return ``body`` without the finding blocks of ``fingerprints``.

    Text that is not part of a removed block is kept unchanged, and the group
    header count is rewritten to the number of remaining blocks. Markers of
    removed fingerprints that are not inside a recognizable block are
    stripped on their own.
    """
    remove = set(fingerprints)
    if not remove:
        return body

    lines = body.split("\n")
    out: list[str] = []
    remaining_blocks = 0
    i = 0
    while i < len(lines):
        line = lines[i]
        if not line.startswith(_BLOCK_STARTS):
            out.append(line)
            i += 1
            continue

        # A block runs from its finding line through its marker line.
        end = i
        while end + 1 < len(lines) and not scan_markers(lines[end]).markers:
            if lines[end + 1].startswith(_BLOCK_STARTS):
                break
            end += 1
        block = lines[i : end + 1]
        block_fps = scan_markers("\n".join(block)).fingerprints

        if block_fps and all(fp in remove for fp in block_fps):
            i = end + 1
            if i < len(lines) and not lines[i].strip():
                i += 1
            continue

        out.extend(block)
        remaining_blocks += 1
        i = end + 1

    result = _remove_marker_text("\n".join(out), remove)

    header_lines = result.split("\n")
    for idx, line in enumerate(header_lines):
        if GROUP_HEADER.match(line):
            header_lines[idx] = f"**Multiple issues found in this area ({remaining_blocks}):**"
            break
    return "\n".join(header_lines).rstrip()
