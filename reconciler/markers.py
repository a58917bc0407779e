"""
Fingerprint markers embedded in posted comments.

Each posted finding carries an invisible HTML comment:

    <!-- review-reconciler:fingerprint:v1:{fingerprint}:{path}:{line} -->

Fingerprint and path are percent-encoded so a ``:`` inside them cannot shift
the fields. The markers are the only cross-run state: the next run scans them
to rebuild its dedup keys and to decide which comments went stale.

Scanning is a bounded linear pass with ``str.find``; a marker payload longer
than ``MAX_MARKER_LENGTH`` is treated as malformed rather than searched.
"""

from dataclasses import dataclass, field
from urllib.parse import quote, unquote

from reconciler.models import ExistingComment, ExistingCommentMarker
from reconciler.paths import canonicalize

MARKER_PREFIX = "<!-- review-reconciler:fingerprint:v1:"
MARKER_SUFFIX = "-->"
MAX_MARKER_LENGTH = 1024


@dataclass(frozen=True)
class ParsedMarker:
    fingerprint: str
    path: str | None = None
    line: int | None = None


@dataclass
class MarkerScan:
    markers: list[ParsedMarker] = field(default_factory=list)
    malformed: int = 0

    @property
    def fingerprints(self) -> list[str]:
        return [m.fingerprint for m in self.markers]


def build_marker(fingerprint: str, path: str | None = None, line: int | None = None) -> str:
    if not fingerprint:
        raise ValueError("Cannot build a marker for an empty fingerprint")

    payload = quote(fingerprint, safe="")
    if path is not None:
        payload += f":{quote(path, safe='/')}:{line or 0}"
    return f"{MARKER_PREFIX}{payload} {MARKER_SUFFIX}"


def _parse_payload(payload: str) -> ParsedMarker | None:
    if any(ch.isspace() for ch in payload):
        return None

    parts = payload.split(":")
    if len(parts) == 1:
        fp = unquote(parts[0])
        return ParsedMarker(fp) if fp else None

    if len(parts) != 3:
        return None

    fp, path, line = unquote(parts[0]), unquote(parts[1]), parts[2]
    if not fp or not path or not line.isdigit():
        return None
    return ParsedMarker(fp, canonicalize(path), int(line) or None)


def scan_markers(body: str | None) -> MarkerScan:
    """Find every marker in ``body``.

    Empty payloads are skipped: they carry no fingerprint and would otherwise
    match nothing and make a comment look stale. Non-empty payloads that do
    not parse are counted in ``malformed``.
    """
    scan = MarkerScan()
    if not body:
        return scan

    pos = 0
    while True:
        start = body.find(MARKER_PREFIX, pos)
        if start == -1:
            return scan

        payload_start = start + len(MARKER_PREFIX)
        end = body.find(MARKER_SUFFIX, payload_start, payload_start + MAX_MARKER_LENGTH)
        if end == -1:
            scan.malformed += 1
            pos = payload_start
            continue

        pos = end + len(MARKER_SUFFIX)
        payload = body[payload_start:end].strip()
        if not payload:
            continue

        parsed = _parse_payload(payload)
        if parsed is None:
            scan.malformed += 1
        else:
            scan.markers.append(parsed)


def extract_fingerprint_markers(body: str | None) -> list[str]:
    """Fingerprints of all well-formed markers in ``body``, in order."""
    return scan_markers(body).fingerprints


def extract_comment_markers(
    comment: ExistingComment,
) -> tuple[list[ExistingCommentMarker], int]:
    """Markers of ``comment`` with their locations, plus the malformed count.

    A single-marker comment takes its location from the platform when the
    platform reports one; grouped comments take each location from the marker
    itself, since the platform only knows the anchor of the whole group.
    """
    scan = scan_markers(comment.body)
    grouped = len(scan.markers) > 1
    platform_path = canonicalize(comment.path) if comment.path else None

    markers = []
    for parsed in scan.markers:
        if grouped and parsed.path:
            path, line = parsed.path, parsed.line
        else:
            path = platform_path or parsed.path
            line = comment.line if comment.line is not None else parsed.line

        markers.append(
            ExistingCommentMarker(
                fingerprint=parsed.fingerprint,
                comment_id=comment.id,
                thread_id=comment.thread_id,
                path=path,
                line=line,
            )
        )
    return markers, scan.malformed


def strip_markers(body: str) -> str:
    """Remove every marker from ``body``."""
    out: list[str] = []
    pos = 0
    while True:
        start = body.find(MARKER_PREFIX, pos)
        if start == -1:
            out.append(body[pos:])
            break

        end = body.find(
            MARKER_SUFFIX,
            start + len(MARKER_PREFIX),
            start + len(MARKER_PREFIX) + MAX_MARKER_LENGTH,
        )
        if end == -1:
            out.append(body[pos:])
            break

        out.append(body[pos:start])
        pos = end + len(MARKER_SUFFIX)
    return "".join(out)
