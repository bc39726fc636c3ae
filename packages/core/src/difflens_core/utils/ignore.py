"""Git ignore-rule evaluation for repository traversal.

Rules come from several sources, evaluated lowest precedence first so that
the last matching rule wins, the same way git resolves them:

  1. .git/info/exclude
  2. .gitignore files, from the repository root down to the file's own
     directory (deeper files override shallower ones)

Patterns in a nested .gitignore are anchored to the directory that holds it.
Extra ``exclude`` patterns from the difflens config are checked separately
and always win: a .gitignore negation cannot re-include a path the user
excluded explicitly.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import pathspec

logger = logging.getLogger(__name__)

GITIGNORE = ".gitignore"
ALWAYS_IGNORED_DIRS = frozenset({".git"})


class IgnoreMatcher:
    def __init__(self, extra_patterns: Iterable[str] = ()):
        # (base directory relative to the repo root, compiled rules) in
        # precedence order, lowest first.
        self._specs: list[tuple[str, pathspec.GitIgnoreSpec]] = []
        self._extra = pathspec.GitIgnoreSpec.from_lines(list(extra_patterns))

    @classmethod
    def for_repository(cls, root: str | Path, extra_patterns: Iterable[str] = ()) -> "IgnoreMatcher":
        """Create a matcher seeded with the repository-wide exclude file.

        Per-directory .gitignore files are added by the walker via load_directory
        as it descends, so ignored directories never have their rules read.
        """
        matcher = cls(extra_patterns)
        info_exclude = Path(root) / ".git" / "info" / "exclude"
        if info_exclude.is_file():
            try:
                matcher.add_patterns("", info_exclude.read_text(encoding="utf-8", errors="replace").splitlines())
            except OSError as e:
                logger.warning("Could not read %s: %s", info_exclude, e)
        return matcher

    def add_patterns(self, base_dir: str, lines: Iterable[str]) -> None:
        lines = list(lines)
        if not any(line.strip() and not line.lstrip().startswith("#") for line in lines):
            return
        self._specs.append((base_dir.strip("/"), pathspec.GitIgnoreSpec.from_lines(lines)))

    def load_directory(self, root: str | Path, rel_dir: str) -> None:
        """Read rel_dir/.gitignore if present. Raises OSError if it cannot be read."""
        ignore_file = Path(root) / rel_dir / GITIGNORE
        if not ignore_file.is_file():
            return
        text = ignore_file.read_text(encoding="utf-8", errors="replace")
        self.add_patterns(rel_dir, text.splitlines())

    def is_ignored(self, rel_path: str, is_dir: bool = False) -> bool:
        """Return True if the repository-relative POSIX path is ignored."""
        rel_path = rel_path.strip("/")
        name = rel_path.rsplit("/", 1)[-1]
        if is_dir and name in ALWAYS_IGNORED_DIRS:
            return True

        candidate = rel_path + "/" if is_dir else rel_path
        if self._extra.match_file(candidate):
            return True

        ignored = False
        for base, spec in self._specs:
            if base:
                if not rel_path.startswith(base + "/"):
                    continue
                local = candidate[len(base) + 1 :]
            else:
                local = candidate
            for pattern in spec.patterns:
                if pattern.include is None:
                    continue
                if pattern.match_file(local) is not None:
                    ignored = pattern.include
        return ignored
