"""Records passed between pipeline stages.

Each stage owns what it produces until it hands it to the next one, so the
records below are frozen: nothing downstream can reorder a change set or
rewrite a collected file.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field


class RunState(str, enum.Enum):
    INIT = "init"
    DIFF_EXTRACTED = "diff_extracted"
    CONTEXT_COLLECTED = "context_collected"
    PROMPT_BUILT = "prompt_built"
    REVIEW_REQUESTED = "review_requested"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class Hunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    header: str = ""
    text: str = ""

    @property
    def new_end(self) -> int:
        return self.new_start + max(self.new_count, 1) - 1


@dataclass(frozen=True)
class FileDiff:
    path: str
    old_path: str | None = None
    status: str = "modified"  # "modified" | "added" | "deleted" | "renamed"
    is_binary: bool = False
    hunks: tuple[Hunk, ...] = ()
    text: str = ""

    @property
    def lines_added(self) -> int:
        return sum(
            1 for h in self.hunks for line in h.text.splitlines() if line.startswith("+") and not line.startswith("+++")
        )

    @property
    def lines_removed(self) -> int:
        return sum(
            1 for h in self.hunks for line in h.text.splitlines() if line.startswith("-") and not line.startswith("---")
        )


@dataclass(frozen=True)
class ChangeSet:
    """Pending modifications, in the order git printed them."""

    files: tuple[FileDiff, ...] = ()
    raw: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.files

    @property
    def paths(self) -> tuple[str, ...]:
        return tuple(f.path for f in self.files)

    @property
    def text(self) -> str:
        return "".join(f.text for f in self.files) if self.files else self.raw

    @property
    def added_lines(self) -> int:
        return sum(f.lines_added for f in self.files)

    @property
    def removed_lines(self) -> int:
        return sum(f.lines_removed for f in self.files)


@dataclass(frozen=True)
class ContextEntry:
    path: str
    content: str = ""
    readable: bool = True
    reason: str | None = None
    # Lower is more relevant. See utils.context.rank_path.
    priority: int = 2


@dataclass(frozen=True)
class CollectedContext:
    entries: tuple[ContextEntry, ...] = ()
    warnings: tuple[str, ...] = ()
    dropped: tuple[str, ...] = ()

    @property
    def admitted(self) -> tuple[ContextEntry, ...]:
        return tuple(e for e in self.entries if e.readable)


@dataclass(frozen=True)
class ReviewRequest:
    instructions: str
    change_set_text: str
    context_entries_text: str
    model_name: str

    @property
    def prompt(self) -> str:
        """The full textual payload: instructions, then the diff, then context."""
        parts = [self.instructions, self.change_set_text]
        if self.context_entries_text:
            parts.append(self.context_entries_text)
        return "\n\n".join(parts) + "\n"


@dataclass
class ReviewReport:
    """Terminal artifact of a run, handed to the presentation layer."""

    text: str
    model: str
    duration_seconds: float = 0.0
    warnings: list[str] = field(default_factory=list)
    state: RunState = RunState.DONE
    changed_files: list[str] = field(default_factory=list)
    context_files: list[str] = field(default_factory=list)
    nothing_to_review: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state.value
        return data
