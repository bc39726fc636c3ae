"""Error taxonomy for the review pipeline.

Fatal conditions are raised as DifflensError subclasses at the point they
occur. Non-fatal conditions (unreadable files, truncated context) are never
raised; they travel as warning strings on the report instead.
"""

from __future__ import annotations

from difflens_core.models import RunState


class DifflensError(Exception):
    """Base class for every error difflens raises on purpose."""


class ConfigError(DifflensError, ValueError):
    """Raised when a configuration value is missing or out of range."""


# ---------------------------------------------------------------------------
# Diff extraction
# ---------------------------------------------------------------------------


class NoRepositoryError(DifflensError):
    def __init__(self, root: str, detail: str = ""):
        self.root = root
        message = f"{root} is not inside a git repository"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class DiffUnavailableError(DifflensError):
    def __init__(self, message: str, root: str | None = None):
        self.root = root
        super().__init__(message)


# ---------------------------------------------------------------------------
# Inference endpoint
# ---------------------------------------------------------------------------


class ReviewClientError(DifflensError):
    """Base class for failures talking to the inference endpoint."""


class EndpointUnreachableError(ReviewClientError):
    def __init__(self, url: str, reason: str, attempts: int = 1):
        self.url = url
        self.reason = reason
        self.attempts = attempts
        super().__init__(
            f"Could not reach inference endpoint {url} after {attempts} attempt(s): {reason}. "
            "Check that Ollama is running (`ollama serve`) and that ollama_url is correct."
        )


class ModelNotFoundError(ReviewClientError):
    def __init__(self, model: str, url: str = ""):
        self.model = model
        self.url = url
        where = f" at {url}" if url else ""
        super().__init__(f"Model {model!r} is not available{where}. Pull it first with `ollama pull {model}`.")


class MalformedResponseError(ReviewClientError):
    def __init__(self, status: int, body: str, reason: str = "unexpected response"):
        self.status = status
        self.body = body
        super().__init__(f"{reason} (HTTP {status}): {body[:500]}")


class RunTimeoutError(DifflensError, TimeoutError):
    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Review run exceeded the overall timeout of {timeout:g}s")


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


class ReviewFailed(DifflensError):
    """A fatal error aborted the run.

    state is always the terminal FAILED state; failed_in is the stage the run
    had reached when the error occurred. Every warning gathered before the
    failure is carried along so the presentation layer can still show them.
    """

    def __init__(self, failed_in: RunState, cause: DifflensError, warnings: list[str]):
        self.failed_in = failed_in
        self.state = RunState.FAILED
        self.cause = cause
        self.warnings = list(warnings)
        super().__init__(str(cause))
