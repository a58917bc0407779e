"""Path canonicalization at the ingestion boundary.

Agents, git and the hosting platforms spell the same file differently
(``a/src/x.py``, ``./src/x.py``, ``/src/x.py``, ``src\\x.py``). Every path that
enters the engine passes through ``canonicalize`` exactly once, and every key
derived from a path is built from its canonical form.
"""

import re
from collections.abc import Iterable

from reconciler.models import CanonicalDiffFile

_REPEATED_SLASHES = re.compile(r"/{2,}")
_STRIP_PREFIXES = ("./", "/", "a/", "b/")


def canonicalize(path: str | None) -> str:
    """Return the canonical form of ``path``.

    Backslashes become ``/``, repeated slashes collapse, and leading ``./``,
    ``/`` and git ``a/`` / ``b/`` prefixes are stripped until none remain, so
    ``canonicalize(canonicalize(p)) == canonicalize(p)``. Never raises.
    """
    if not path:
        return ""

    result = _REPEATED_SLASHES.sub("/", path.strip().replace("\\", "/"))
    while True:
        for prefix in _STRIP_PREFIXES:
            # A bare "a/" or "b/" is a directory name, not a prefix.
            if result.startswith(prefix) and len(result) > len(prefix):
                result = result[len(prefix) :]
                break
        else:
            return result


def canonicalize_diff_files(files: Iterable[CanonicalDiffFile]) -> list[CanonicalDiffFile]:
    """Canonicalize ``path`` and ``old_path`` of every diff file."""
    return [
        CanonicalDiffFile(
            path=canonicalize(f.path),
            status=f.status,
            patch=f.patch,
            additions=f.additions,
            deletions=f.deletions,
            old_path=canonicalize(f.old_path) if f.old_path else None,
        )
        for f in files
    ]
