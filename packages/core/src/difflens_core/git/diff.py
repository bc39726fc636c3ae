"""Pending-change extraction through the git CLI.

Only read-only git commands are run here. The diff is parsed into a
ChangeSet whose file and hunk order is exactly the order git printed, so the
same working tree always produces the same prompt.
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path

from difflens_core.errors import DiffUnavailableError, NoRepositoryError
from difflens_core.models import ChangeSet, FileDiff, Hunk

logger = logging.getLogger(__name__)

_GIT_TIMEOUT = 60

_FILE_HEADER = "diff --git "
_HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@ ?(.*)$")
_RENAME_FROM_RE = re.compile(r"^rename from (.+)$")
_RENAME_TO_RE = re.compile(r"^rename to (.+)$")

# Escapes git uses inside quoted paths, besides \ooo octal bytes.
_C_ESCAPES = {"a": "\a", "b": "\b", "f": "\f", "n": "\n", "r": "\r", "t": "\t", "v": "\v", '"': '"', "\\": "\\"}


def _unquote_path(token: str) -> str:
    """Undo git's C-style path quoting: "caf\\303\\251.py" becomes café.py."""
    if len(token) < 2 or not (token.startswith('"') and token.endswith('"')):
        return token
    body = token[1:-1]
    out = bytearray()
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            octal = body[i + 1 : i + 4]
            if len(octal) == 3 and all(c in "01234567" for c in octal):
                out.append(int(octal, 8) & 0xFF)
                i += 4
            else:
                out.extend(_C_ESCAPES.get(body[i + 1], body[i + 1]).encode("utf-8"))
                i += 2
            continue
        out.extend(ch.encode("utf-8"))
        i += 1
    return out.decode("utf-8", errors="replace")


def _strip_prefix(path: str, prefix: str) -> str:
    return path[len(prefix) :] if path.startswith(prefix) else path


def _closing_quote(text: str) -> int:
    i = 1
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == '"':
            return i
        i += 1
    return -1


def _header_paths(line: str) -> tuple[str, str]:
    """Split a `diff --git` header into (old path, new path).

    Either side may be quoted. Unquoted paths can contain " b/" themselves,
    so an unquoted header is split in the middle when both sides name the
    same file; anything else is settled by the ---/+++ or rename lines that
    follow. Returns ("", "") when the header cannot be split at all.
    """
    rest = line[len(_FILE_HEADER) :]
    if rest.startswith('"'):
        end = _closing_quote(rest)
        if end < 0:
            return "", ""
        old, new = rest[: end + 1], rest[end + 2 :]
    elif rest.endswith('"') and ' "' in rest:
        split = rest.index(' "')
        old, new = rest[:split], rest[split + 1 :]
    else:
        half = (len(rest) - 1) // 2
        old, new = rest[:half], rest[half + 1 :]
        if not (rest[half : half + 1] == " " and old[2:] == new[2:]):
            split = rest.find(" b/")
            if split < 0:
                return "", ""
            old, new = rest[:split], rest[split + 1 :]
    return _strip_prefix(_unquote_path(old), "a/"), _strip_prefix(_unquote_path(new), "b/")


def _side_path(text: str, prefix: str) -> str | None:
    """Path from a ---/+++ line, or None for /dev/null."""
    # git appends a tab after names that contain spaces.
    if text.endswith("\t"):
        text = text[:-1]
    if text == "/dev/null":
        return None
    return _strip_prefix(_unquote_path(text), prefix)


def _run_git(root: str | Path, args: list[str]) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(
            ["git", "-c", "core.quotepath=false", *args],
            cwd=str(root),
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=_GIT_TIMEOUT,
        )
    except FileNotFoundError as e:
        # Either git is not installed or root does not exist.
        if not Path(root).is_dir():
            raise NoRepositoryError(str(root), "directory does not exist") from e
        raise DiffUnavailableError("git executable not found. Install git and make sure it is on PATH.", str(root)) from e
    except PermissionError as e:
        raise DiffUnavailableError(f"Permission denied running git in {root}: {e}", str(root)) from e
    except subprocess.TimeoutExpired as e:
        raise DiffUnavailableError(f"git {' '.join(args)} timed out after {_GIT_TIMEOUT}s", str(root)) from e


def ensure_repository(root: str | Path) -> Path:
    """Return the top-level directory of the work tree containing root."""
    result = _run_git(root, ["rev-parse", "--show-toplevel"])
    if result.returncode != 0:
        raise NoRepositoryError(str(root), result.stderr.strip())
    return Path(result.stdout.strip())


def get_diff_text(root: str | Path, staged: bool = False, paths: tuple[str, ...] = ()) -> str:
    """Return unified diff text for pending changes under root.

    staged=True diffs the index against HEAD; otherwise the working tree is
    diffed against the index.
    """
    args = ["diff", "--no-color", "--no-ext-diff", "--src-prefix=a/", "--dst-prefix=b/"]
    if staged:
        args.append("--staged")
    if paths:
        args.extend(["--", *paths])

    result = _run_git(root, args)
    if result.returncode != 0:
        raise DiffUnavailableError(
            f"git diff failed with exit code {result.returncode}: {result.stderr.strip()}",
            str(root),
        )
    return result.stdout


def parse_unified_diff(diff_text: str) -> ChangeSet:
    """Parse `git diff` output into a ChangeSet."""
    files: list[FileDiff] = []
    current: dict | None = None
    hunk: dict | None = None

    def close_hunk():
        nonlocal hunk
        if current is not None and hunk is not None:
            current["hunks"].append(
                Hunk(
                    old_start=hunk["old_start"],
                    old_count=hunk["old_count"],
                    new_start=hunk["new_start"],
                    new_count=hunk["new_count"],
                    header=hunk["header"],
                    text="\n".join(hunk["lines"]) + "\n",
                )
            )
        hunk = None

    def close_file():
        nonlocal current
        close_hunk()
        if current is not None:
            files.append(
                FileDiff(
                    path=current["path"],
                    old_path=current["old_path"] if current["old_path"] != current["path"] else None,
                    status=current["status"],
                    is_binary=current["is_binary"],
                    hunks=tuple(current["hunks"]),
                    text="".join(current["lines"]),
                )
            )
        current = None

    for line in diff_text.splitlines():
        if line.startswith(_FILE_HEADER):
            close_file()
            old_path, new_path = _header_paths(line)
            current = {
                "path": new_path,
                "old_path": old_path,
                "status": "modified",
                "is_binary": False,
                "hunks": [],
                "lines": [line + "\n"],
            }
            continue

        if current is None:
            # Preamble before the first file header (e.g. warnings); not part of any file.
            continue
        current["lines"].append(line + "\n")

        hunk_match = _HUNK_HEADER_RE.match(line)
        if hunk_match:
            close_hunk()
            old_start, old_count, new_start, new_count, context = hunk_match.groups()
            hunk = {
                "old_start": int(old_start),
                "old_count": int(old_count) if old_count is not None else 1,
                "new_start": int(new_start),
                "new_count": int(new_count) if new_count is not None else 1,
                "header": context.strip(),
                "lines": [line],
            }
            continue

        if hunk is not None:
            hunk["lines"].append(line)
            continue

        if line.startswith("new file mode"):
            current["status"] = "added"
        elif line.startswith("deleted file mode"):
            current["status"] = "deleted"
        elif line.startswith("Binary files") or line == "GIT binary patch":
            current["is_binary"] = True
        elif line.startswith("--- "):
            old_path = _side_path(line[4:], "a/")
            if old_path is not None:
                current["old_path"] = old_path
        elif line.startswith("+++ "):
            new_path = _side_path(line[4:], "b/")
            if new_path is not None:
                current["path"] = new_path
        elif _RENAME_FROM_RE.match(line):
            current["status"] = "renamed"
            current["old_path"] = _unquote_path(_RENAME_FROM_RE.match(line).group(1))
        elif _RENAME_TO_RE.match(line):
            current["status"] = "renamed"
            current["path"] = _unquote_path(_RENAME_TO_RE.match(line).group(1))

    close_file()
    return ChangeSet(files=tuple(files), raw=diff_text)


def get_change_set(root: str | Path, staged: bool = False, paths: tuple[str, ...] = ()) -> ChangeSet:
    """Extract and parse the pending changes of the work tree at root.

    Call ensure_repository first; paths in the result are relative to the
    repository top level. An empty ChangeSet (nothing pending) is a valid
    result, not an error.
    """
    diff_text = get_diff_text(root, staged=staged, paths=paths)
    change_set = parse_unified_diff(diff_text)
    logger.debug(
        "Extracted %d changed file(s) (+%d/-%d)",
        len(change_set.files),
        change_set.added_lines,
        change_set.removed_lines,
    )
    return change_set
