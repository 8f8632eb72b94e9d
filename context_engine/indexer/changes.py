"""Change detection: git diff since the last indexed revision, mtime/size otherwise."""

import logging
import os
import subprocess
from collections.abc import Iterable
from pathlib import Path

from ..core.models import ChangeSet, FileMapEntry

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 30


class GitError(RuntimeError):
    pass


def _git(root: Path, *args: str) -> str:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=root,
            capture_output=True,
            encoding="utf-8",
            errors="surrogateescape",
            check=True,
            timeout=GIT_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError) as e:
        raise GitError(f"git {' '.join(args)} failed: {e}") from e
    return result.stdout


def _fields(output: str) -> list[str]:
    """Split ``-z`` output; paths arrive unquoted and verbatim."""
    return [field for field in output.split("\0") if field]


def parse_name_status(output: str) -> ChangeSet:
    """Parse ``git diff --name-status -z`` into a change set.

    Renames and copies carry two paths; the old one is reported deleted and the
    new one modified.
    """
    changes = ChangeSet(method="git")
    fields = _fields(output)
    i = 0
    while i + 1 < len(fields):
        status = fields[i]
        if status[:1] in ("R", "C"):
            if i + 2 >= len(fields):
                break
            old, new = fields[i + 1], fields[i + 2]
            if status[0] == "R":
                changes.deleted.append(old)
            changes.modified.append(new)
            i += 3
            continue
        path = fields[i + 1]
        if status == "A":
            changes.added.append(path)
        elif status == "D":
            changes.deleted.append(path)
        else:
            changes.modified.append(path)
        i += 2
    return changes


def _dedupe(paths: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(paths))


def file_signature(path: Path) -> tuple[float, int]:
    """(mtime in milliseconds, size) as recorded in the file map."""
    st = path.stat()
    return st.st_mtime_ns / 1_000_000, st.st_size


def current_head(root: Path) -> str | None:
    try:
        if _git(root, "rev-parse", "--is-inside-work-tree").strip() != "true":
            return None
        return _git(root, "rev-parse", "HEAD").strip() or None
    except GitError:
        return None


def git_changes_since(root: Path, prev_head: str | None) -> ChangeSet | None:
    """Committed, uncommitted and untracked changes since ``prev_head``.

    Returns:
        ChangeSet with ``method="git"``, or None when git is unavailable or
        the workspace is not a work tree
    """
    try:
        if _git(root, "rev-parse", "--is-inside-work-tree").strip() != "true":
            return None
    except GitError:
        return None

    changes = ChangeSet(method="git")
    try:
        changes.head = _git(root, "rev-parse", "HEAD").strip() or None
    except GitError:
        # Fresh repository without commits
        changes.head = None

    try:
        if prev_head and changes.head and prev_head != changes.head:
            # --relative keeps paths workspace-relative when the root is a subdirectory
            committed = parse_name_status(
                _git(root, "diff", "--name-status", "-z", "--relative", f"{prev_head}..HEAD")
            )
            changes.added.extend(committed.added)
            changes.modified.extend(committed.modified)
            changes.deleted.extend(committed.deleted)

        changes.modified.extend(_fields(_git(root, "ls-files", "-m", "-z")))
        changes.untracked.extend(_fields(_git(root, "ls-files", "-o", "--exclude-standard", "-z")))
    except GitError as e:
        logger.debug(f"Git change detection failed: {e}")
        return None

    changes.added = _dedupe(changes.added)
    changes.modified = _dedupe(changes.modified)
    changes.deleted = _dedupe(changes.deleted)
    changes.untracked = _dedupe(changes.untracked)
    return changes


def fs_diff(root: Path, files: Iterable[str], file_map: dict[str, FileMapEntry]) -> ChangeSet:
    """Compare each candidate's mtime and size against the file map.

    Entries in the file map that are no longer candidates are reported deleted.
    """
    changes = ChangeSet(method="fs")
    remaining = set(file_map)
    for rel in files:
        try:
            mtime_ms, size = file_signature(root / rel)
        except OSError:
            continue
        remaining.discard(rel)
        entry = file_map.get(rel)
        if entry is None:
            changes.added.append(rel)
        elif entry.mtime_ms != mtime_ms or entry.size != size:
            changes.modified.append(rel)
    changes.deleted = sorted(remaining)
    return changes


def _verify(root: Path, changes: ChangeSet, candidates: list[str], file_map: dict[str, FileMapEntry]) -> ChangeSet:
    """Keep git-reported paths that are indexable and actually differ from the file map.

    Candidates without a file map entry are added even when git is silent about
    them; that covers files whose previous run failed to embed or read.
    """
    verified = ChangeSet(head=changes.head, method="git")
    reported = changes.added + changes.untracked + changes.modified
    unmapped = [rel for rel in candidates if rel not in file_map]
    candidates = set(candidates)
    for rel in _dedupe(reported + unmapped):
        if rel not in candidates:
            continue
        entry = file_map.get(rel)
        if entry is None:
            verified.added.append(rel)
            continue
        try:
            signature = file_signature(root / rel)
        except OSError:
            continue
        if signature != (entry.mtime_ms, entry.size):
            verified.modified.append(rel)
    verified.deleted = [
        rel for rel in _dedupe(changes.deleted + list(file_map)) if rel in file_map and not os.path.exists(root / rel)
    ]
    return verified


def detect_changes(
    root: Path,
    prev_head: str | None,
    candidates: Iterable[str],
    file_map: dict[str, FileMapEntry],
) -> ChangeSet:
    """Change set for an incremental run. Never raises.

    Git is consulted when a previous revision is known; its report is checked
    against the file map. When git is unavailable or reports nothing, the
    mtime/size comparison decides.
    """
    root = Path(root)
    candidates = list(candidates)
    head = None
    if prev_head:
        changes = git_changes_since(root, prev_head)
        if changes is not None:
            head = changes.head
            verified = _verify(root, changes, candidates, file_map)
            if not verified.is_empty:
                logger.debug(
                    f"Git changes: +{len(verified.added)} ~{len(verified.modified)} -{len(verified.deleted)}"
                )
                return verified
    else:
        head = current_head(root)

    changes = fs_diff(root, candidates, file_map)
    changes.head = head
    return changes
