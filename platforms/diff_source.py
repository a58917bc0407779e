"""
Diff sources.

Produces CanonicalDiffFile lists either from unified-diff text (``git diff``
output, a saved ``.diff`` file) or from a local repository range via GitPython.
"""

import re
from pathlib import Path

from git import Diff, Repo
from git.exc import GitCommandError, InvalidGitRepositoryError
from loguru import logger

from reconciler.models import CanonicalDiffFile, FileStatus
from reconciler.paths import canonicalize

_DIFF_GIT = re.compile(r"^diff --git a/(.*) b/(.*)$")
_DEV_NULL = "/dev/null"


def _count_changes(patch: str) -> tuple[int, int]:
    """(additions, deletions) counted inside hunks only."""
    additions = deletions = 0
    in_hunk = False
    for line in patch.splitlines():
        if line.startswith("@@"):
            in_hunk = True
        elif in_hunk and line.startswith("+"):
            additions += 1
        elif in_hunk and line.startswith("-"):
            deletions += 1
    return additions, deletions


class _FileBuilder:
    def __init__(self, old_path: str | None = None, new_path: str | None = None) -> None:
        self.old_path = old_path
        self.new_path = new_path
        self.status = FileStatus.MODIFIED
        self.patch_lines: list[str] = []

    @property
    def has_hunks(self) -> bool:
        return bool(self.patch_lines)

    def build(self) -> CanonicalDiffFile | None:
        path = self.new_path if self.status != FileStatus.DELETED else self.old_path
        path = path or self.new_path or self.old_path
        if not path:
            return None

        patch = "\n".join(self.patch_lines)
        additions, deletions = _count_changes(patch)
        renamed = self.status == FileStatus.RENAMED and self.old_path
        return CanonicalDiffFile(
            path=canonicalize(path),
            status=self.status,
            patch=patch or None,
            additions=additions,
            deletions=deletions,
            old_path=canonicalize(self.old_path) if renamed else None,
        )


def parse_unified_diff(text: str) -> list[CanonicalDiffFile]:
    """Split a multi-file unified diff into per-file patches."""
    files: list[CanonicalDiffFile] = []
    current: _FileBuilder | None = None

    def flush() -> None:
        if current is not None:
            built = current.build()
            if built:
                files.append(built)

    lines = text.splitlines()
    for i, line in enumerate(lines):
        match = _DIFF_GIT.match(line)
        starts_plain_file = (
            line.startswith("--- ")
            and i + 1 < len(lines)
            and lines[i + 1].startswith("+++ ")
            and (current is None or current.has_hunks)
        )
        if match or starts_plain_file:
            flush()
            current = _FileBuilder(*match.groups()) if match else _FileBuilder()
            if match:
                continue

        if current is None:
            continue

        if current.has_hunks:
            current.patch_lines.append(line)
        elif line.startswith("@@"):
            current.patch_lines.append(line)
        elif line.startswith("new file mode"):
            current.status = FileStatus.ADDED
        elif line.startswith("deleted file mode"):
            current.status = FileStatus.DELETED
        elif line.startswith("rename from "):
            current.old_path = line[len("rename from ") :]
            current.status = FileStatus.RENAMED
        elif line.startswith("rename to "):
            current.new_path = line[len("rename to ") :]
            current.status = FileStatus.RENAMED
        elif line.startswith("--- "):
            old = line[4:].split("\t")[0]
            if old == _DEV_NULL:
                current.status = FileStatus.ADDED
            else:
                current.old_path = current.old_path or old
        elif line.startswith("+++ "):
            new = line[4:].split("\t")[0]
            if new == _DEV_NULL:
                current.status = FileStatus.DELETED
            else:
                current.new_path = current.new_path or new

    flush()
    logger.debug(f"Parsed {len(files)} files from unified diff")
    return files


class GitDiffSource:
    """Build diff files for ``base..head`` of a local repository."""

    def __init__(self, repo_path: str = ".") -> None:
        path = Path(repo_path).resolve()
        if not path.is_dir():
            raise ValueError(f"Repository path is not a directory: {path}")
        try:
            self.repo = Repo(path)
        except InvalidGitRepositoryError as err:
            raise InvalidGitRepositoryError(f"Invalid Git repository: {path}") from err
        logger.info(f"Git repository initialized: {path}")

    def diff_files(self, base_ref: str, head_ref: str) -> list[CanonicalDiffFile]:
        try:
            base_commit = self.repo.commit(base_ref)
            head_commit = self.repo.commit(head_ref)
            diffs = base_commit.diff(head_commit, create_patch=True)
        except GitCommandError as e:
            logger.error(f"Git command failed: {e}")
            raise

        files = [f for f in (self._to_diff_file(d) for d in diffs) if f is not None]
        logger.info(f"{base_ref}..{head_ref} has {len(files)} changed files")
        return files

    @staticmethod
    def _to_diff_file(diff: Diff) -> CanonicalDiffFile | None:
        if diff.new_file:
            status, path = FileStatus.ADDED, diff.b_path
        elif diff.deleted_file:
            status, path = FileStatus.DELETED, diff.a_path
        elif diff.renamed_file:
            status, path = FileStatus.RENAMED, diff.b_path
        else:
            status, path = FileStatus.MODIFIED, diff.b_path

        if not path:
            logger.warning("No valid file path in diff change, skipping")
            return None

        raw = diff.diff
        patch = raw.decode("utf-8", errors="ignore") if isinstance(raw, bytes) else raw or ""
        additions, deletions = _count_changes(patch)
        return CanonicalDiffFile(
            path=canonicalize(path),
            status=status,
            patch=patch or None,
            additions=additions,
            deletions=deletions,
            old_path=canonicalize(diff.rename_from or diff.a_path)
            if status == FileStatus.RENAMED
            else None,
        )
