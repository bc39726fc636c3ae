"""Codebase context collection for a local review run.

The collector walks the work tree, honours git ignore rules, reads the files
that are most relevant to the pending changes and bounds the total amount of
text that reaches the prompt.

Relevance is an explicit ranking (see rank_path), not an accident of
traversal order:

  0. files that appear in the change set
  1. files in the same directory as a changed file
  2. everything else

Entries come back sorted by (rank, path). Reads happen on a thread pool but
results are consumed in ranking order, so the output is identical no matter
how the reads interleave.

Nothing in here is fatal. A file that cannot be read becomes an entry with
readable=False plus exactly one warning; a directory that cannot be listed
becomes a warning. The run always continues.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path, PurePosixPath
from typing import Callable, Collection, Iterable

from difflens_core.models import ChangeSet, CollectedContext, ContextEntry
from difflens_core.utils.code import is_binary_content, is_code_file
from difflens_core.utils.ignore import GITIGNORE, IgnoreMatcher

logger = logging.getLogger(__name__)

PRIORITY_CHANGED = 0
PRIORITY_NEIGHBOR = 1
PRIORITY_OTHER = 2

# Highest priority admitted for each context_scope setting.
_SCOPE_MAX_PRIORITY = {
    "changed": PRIORITY_CHANGED,
    "neighbors": PRIORITY_NEIGHBOR,
    "tree": PRIORITY_OTHER,
}

NO_CONTEXT_WARNING = "no context available"
_TRUNCATION_MARKER = "\n... [file truncated]"


def _parent(path: str) -> str:
    parent = str(PurePosixPath(path).parent)
    return "" if parent == "." else parent


def rank_path(path: str, changed_paths: Collection[str], changed_dirs: Collection[str] | None = None) -> int:
    """Return the relevance rank of a repository path; lower is more relevant.

    changed_dirs defaults to the parent directories of changed_paths; pass
    it precomputed when ranking many paths.
    """
    if path in changed_paths:
        return PRIORITY_CHANGED
    if changed_dirs is None:
        changed_dirs = {_parent(p) for p in changed_paths}
    if _parent(path) in changed_dirs:
        return PRIORITY_NEIGHBOR
    return PRIORITY_OTHER


def walk_repository(
    root: str | Path,
    matcher: IgnoreMatcher,
    on_error: Callable[[str], None] | None = None,
) -> list[str]:
    """List non-ignored files under root as sorted, root-relative POSIX paths.

    Symlinked directories are not descended into. Ignored directories are
    pruned before their contents (or their .gitignore) are looked at.
    """
    root = Path(root)
    files: list[str] = []

    def _walk_error(err: OSError) -> None:
        rel = Path(err.filename).relative_to(root).as_posix() if err.filename else str(root)
        if on_error:
            on_error(f"{rel}: inaccessible ({err.strerror or err})")

    for dirpath, dirnames, filenames in os.walk(root, topdown=True, onerror=_walk_error, followlinks=False):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir

        try:
            matcher.load_directory(root, rel_dir)
        except OSError as e:
            if on_error:
                on_error(f"{PurePosixPath(rel_dir, GITIGNORE).as_posix()}: unreadable ({e.strerror or e})")

        kept = []
        for name in sorted(dirnames):
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if os.path.islink(os.path.join(dirpath, name)):
                continue
            if not matcher.is_ignored(rel, is_dir=True):
                kept.append(name)
        dirnames[:] = kept

        for name in sorted(filenames):
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if not matcher.is_ignored(rel):
                files.append(rel)

    return sorted(files)


def read_entry(root: str | Path, path: str, priority: int = PRIORITY_OTHER) -> ContextEntry:
    """Read one file as UTF-8 text. Never raises; failures yield readable=False."""
    try:
        data = (Path(root) / path).read_bytes()
    except OSError as e:
        return ContextEntry(path=path, readable=False, reason=e.strerror or str(e), priority=priority)

    if is_binary_content(data):
        return ContextEntry(path=path, readable=False, reason="binary content", priority=priority)
    try:
        content = data.decode("utf-8")
    except UnicodeDecodeError:
        return ContextEntry(path=path, readable=False, reason="not valid UTF-8", priority=priority)
    return ContextEntry(path=path, content=content, readable=True, priority=priority)


def select_candidates(
    walked: Iterable[str],
    change_set: ChangeSet,
    scope: str = "neighbors",
) -> list[tuple[str, int]]:
    """Rank and filter candidate paths, returning (path, rank) in ranking order.

    Changed files are always candidates, even when an ignore rule matches
    them: git still reports tracked files that match .gitignore. Deleted
    files and files with binary diffs are skipped since there is nothing to
    read.
    """
    max_priority = _SCOPE_MAX_PRIORITY[scope]
    changed = [f.path for f in change_set.files if f.status != "deleted" and not f.is_binary]
    changed_set = set(changed)
    changed_dirs = {_parent(p) for p in change_set.paths}

    candidates: dict[str, int] = {}
    for path in list(changed) + list(walked):
        if path in candidates or not is_code_file(path):
            continue
        priority = rank_path(path, changed_set, changed_dirs)
        if priority <= max_priority:
            candidates[path] = priority

    return sorted(candidates.items(), key=lambda item: (item[1], item[0]))


def collect_context(root: str | Path, change_set: ChangeSet, config: dict) -> CollectedContext:
    """Collect the ranked, budgeted context entries for a change set.

    Changed files are admitted whole regardless of budget. Lower-priority
    files are cut to max_chars_per_file, then admitted while the running
    total stays within max_context_chars and fewer than max_context_files
    have been admitted. The first entry that does not fit closes the budget:
    every entry ranked after it is dropped unread.
    """
    budget = config.get("max_context_chars", 60000)
    per_file = config.get("max_chars_per_file", 20000)
    max_files = config.get("max_context_files", 25)
    max_workers = config.get("max_workers", 8)
    scope = config.get("context_scope", "neighbors")

    warnings: list[str] = []
    matcher = IgnoreMatcher.for_repository(root, config.get("exclude", []))
    walked = walk_repository(root, matcher, on_error=warnings.append)
    candidates = select_candidates(walked, change_set, scope)
    logger.debug("Context candidates: %d of %d walked file(s) in scope %r", len(candidates), len(walked), scope)

    entries: list[ContextEntry] = []
    dropped: list[str] = []
    used = 0
    admitted_files = 0
    closed = False

    # Read in chunks so that once the budget closes, the rest of the tree is
    # never read at all.
    chunk_size = max_workers * 4
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        for start in range(0, len(candidates), chunk_size):
            chunk = candidates[start : start + chunk_size]
            if closed:
                dropped.extend(path for path, _ in chunk)
                continue

            for entry in pool.map(lambda c: read_entry(root, c[0], c[1]), chunk):
                if not entry.readable:
                    entries.append(entry)
                    warnings.append(f"{entry.path}: unreadable ({entry.reason})")
                    continue

                if entry.priority == PRIORITY_CHANGED:
                    entries.append(entry)
                    used += len(entry.content)
                    continue

                if closed:
                    dropped.append(entry.path)
                    continue

                if len(entry.content) > per_file:
                    entry = replace(entry, content=entry.content[:per_file] + _TRUNCATION_MARKER)

                if admitted_files >= max_files or used + len(entry.content) > budget:
                    closed = True
                    dropped.append(entry.path)
                    continue

                entries.append(entry)
                used += len(entry.content)
                admitted_files += 1

    if dropped:
        warnings.append(
            f"context budget reached ({budget} chars, {max_files} files): "
            f"{len(dropped)} lower-priority file(s) left out"
        )
    if not any(e.readable for e in entries):
        warnings.append(NO_CONTEXT_WARNING)

    logger.debug("Collected %d context entr(ies), %d chars, %d dropped", len(entries), used, len(dropped))
    return CollectedContext(entries=tuple(entries), warnings=tuple(warnings), dropped=tuple(dropped))
