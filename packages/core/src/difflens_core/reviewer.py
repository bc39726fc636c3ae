"""Core review orchestration.

One run walks a fixed sequence of states:

    INIT → DIFF_EXTRACTED → CONTEXT_COLLECTED → PROMPT_BUILT → REVIEW_REQUESTED → DONE

Any DifflensError moves the run to FAILED and is re-raised as ReviewFailed,
which records the stage the run had reached and every warning gathered so far.
An empty change set goes straight from DIFF_EXTRACTED to DONE without
collecting context or calling the endpoint.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from difflens_core.config import load_guidelines
from difflens_core.errors import ConfigError, DifflensError, ReviewFailed
from difflens_core.git.diff import ensure_repository, get_change_set
from difflens_core.models import ReviewReport, RunState
from difflens_core.prompt import build_review_request
from difflens_core.providers.base import BaseReviewer, Deadline
from difflens_core.providers.ollama import OllamaReviewer
from difflens_core.utils.context import collect_context

logger = logging.getLogger(__name__)

NOTHING_TO_REVIEW = "Nothing to review: there are no pending changes."


class _RunTracker:
    """Current state plus the warnings accumulated so far."""

    def __init__(self):
        self.state = RunState.INIT
        self.warnings: list[str] = []

    def advance(self, state: RunState) -> None:
        logger.debug("Review run: %s → %s", self.state.value, state.value)
        self.state = state

    def warn(self, messages) -> None:
        # Surfaced by the presentation layer from the report; only logged here.
        for message in messages:
            logger.debug("warning: %s", message)
            self.warnings.append(message)


def _get_reviewer(config: dict) -> BaseReviewer:
    return OllamaReviewer(
        config["ollama_url"],
        temperature=config.get("temperature"),
        max_retries=config.get("max_retries"),
        backoff_base=config.get("backoff_base"),
        backoff_max=config.get("backoff_max"),
        request_timeout=config.get("request_timeout"),
    )


def run_review(
    root: str | Path,
    config: dict,
    reviewer: BaseReviewer | None = None,
    guidelines: str | None = None,
    paths: tuple[str, ...] = (),
) -> ReviewReport:
    """Run the full review pipeline for the repository containing root.

    Returns a ReviewReport on success (including the "nothing to review"
    short-circuit). Raises ReviewFailed on any fatal error. A reviewer
    passed in by the caller is left open; one created here is closed.
    """
    run = _RunTracker()
    started = time.monotonic()
    deadline = Deadline.after(config.get("run_timeout", 600.0))
    owns_reviewer = reviewer is None

    try:
        if guidelines is None:
            try:
                guidelines = load_guidelines(config)
            except FileNotFoundError as e:
                raise ConfigError(str(e)) from e

        top = ensure_repository(root)
        change_set = get_change_set(top, staged=config.get("staged", False), paths=paths)
        run.advance(RunState.DIFF_EXTRACTED)

        if change_set.is_empty:
            logger.info("No pending changes in %s", top)
            run.advance(RunState.DONE)
            return ReviewReport(
                text=NOTHING_TO_REVIEW,
                model=config["model"],
                duration_seconds=time.monotonic() - started,
                warnings=run.warnings,
                state=run.state,
                nothing_to_review=True,
            )

        logger.info("Reviewing %d changed file(s)", len(change_set.files))
        context = collect_context(top, change_set, config)
        run.warn(context.warnings)
        run.advance(RunState.CONTEXT_COLLECTED)
        deadline.check()

        request, prompt_warnings = build_review_request(change_set, context.entries, config, guidelines)
        run.warn(prompt_warnings)
        run.advance(RunState.PROMPT_BUILT)
        logger.debug("Prompt is %d chars", len(request.prompt))

        if reviewer is None:
            reviewer = _get_reviewer(config)
        run.advance(RunState.REVIEW_REQUESTED)
        text = reviewer.review(request, deadline)
        run.advance(RunState.DONE)

    except DifflensError as e:
        failed_in = run.state
        logger.debug("Review run failed in state %s: %s", failed_in.value, e)
        run.advance(RunState.FAILED)
        raise ReviewFailed(failed_in, e, run.warnings) from e
    finally:
        if owns_reviewer and reviewer is not None:
            reviewer.close()

    return ReviewReport(
        text=text,
        model=config["model"],
        duration_seconds=time.monotonic() - started,
        warnings=run.warnings,
        state=run.state,
        changed_files=list(change_set.paths),
        context_files=[e.path for e in context.admitted],
    )
