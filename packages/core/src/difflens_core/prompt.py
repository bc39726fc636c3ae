"""Review prompt assembly.

build_review_request is a pure function of its inputs: no clock, no
filesystem, no dict-ordering surprises. Running it twice on the same change
set, entries and config yields byte-identical prompts, which keeps reviews
reproducible and the builder easy to test.

Section order is fixed: instructions, then the diff, then context entries in
the order they were collected, each labelled with its path.
"""

from __future__ import annotations

import logging
from typing import Sequence

from difflens_core.models import ChangeSet, ContextEntry, ReviewRequest
from difflens_core.utils.context import PRIORITY_CHANGED

logger = logging.getLogger(__name__)

_FOCUS_AREAS = (
    "Potential bugs or issues",
    "Code style and best practices",
    "Performance implications",
    "Security considerations",
    "Suggestions for improvement",
)


def build_instructions(guidelines: str) -> str:
    focus = "\n".join(f"{i}. {area}" for i, area in enumerate(_FOCUS_AREAS, 1))
    return f"""You are a strict and precise senior code reviewer.
Analyze the pending changes below before they are committed.

{guidelines.strip()}

Provide a detailed code review focusing on:
{focus}

Rules:
- Focus on added lines (starting with '+') for direct problems.
- Also consider implications of removed lines (starting with '-'), e.g. deleted checks or dropped error handling.
- Use the repository files that follow the diff only as background; review the diff itself.
- Reference files by path and line number. Be concise and actionable.
- If the changes look good, say so briefly instead of inventing issues."""


def render_change_set(change_set: ChangeSet) -> str:
    text = change_set.text
    if text and not text.endswith("\n"):
        text += "\n"
    return f"## Changes\n```diff\n{text}```"


def render_entry(entry: ContextEntry) -> str:
    content = entry.content
    if content and not content.endswith("\n"):
        content += "\n"
    return f"### {entry.path}\n```\n{content}```"


def render_context(entries: Sequence[ContextEntry]) -> str:
    blocks = [render_entry(e) for e in entries if e.readable]
    if not blocks:
        return ""
    return "## Relevant files from the codebase\n\n" + "\n\n".join(blocks)


def fit_context(entries: Sequence[ContextEntry], budget: int) -> tuple[list[ContextEntry], list[str]]:
    """Drop lowest-priority readable entries until their content fits budget.

    Entries are dropped from the end of the (priority, position) ordering,
    so the least relevant go first. Changed files are never dropped, even if
    they alone exceed the budget. Returns (kept entries in input order,
    dropped paths).
    """
    readable = [e for e in entries if e.readable]
    total = sum(len(e.content) for e in readable)
    if total <= budget:
        return readable, []

    by_relevance = sorted(range(len(readable)), key=lambda i: (readable[i].priority, i))
    dropped_idx: set[int] = set()
    for i in reversed(by_relevance):
        if total <= budget:
            break
        if readable[i].priority == PRIORITY_CHANGED:
            continue
        dropped_idx.add(i)
        total -= len(readable[i].content)

    kept = [e for i, e in enumerate(readable) if i not in dropped_idx]
    dropped = [readable[i].path for i in sorted(dropped_idx)]
    return kept, dropped


def build_review_request(
    change_set: ChangeSet,
    entries: Sequence[ContextEntry],
    config: dict,
    guidelines: str,
) -> tuple[ReviewRequest, list[str]]:
    """Serialize instructions, diff and context into a ReviewRequest.

    Re-applies max_context_chars as a second check on what the collector
    admitted. Returns the request and any warnings produced while fitting.
    """
    budget = config.get("max_context_chars", 60000)
    warnings: list[str] = []

    kept, dropped = fit_context(entries, budget)
    if dropped:
        warnings.append(
            f"prompt context truncated to {budget} chars: dropped {len(dropped)} file(s) ({', '.join(dropped)})"
        )
        logger.debug("Dropped from prompt: %s", dropped)

    request = ReviewRequest(
        instructions=build_instructions(guidelines),
        change_set_text=render_change_set(change_set),
        context_entries_text=render_context(kept),
        model_name=config["model"],
    )
    return request, warnings
