"""Base reviewer implementing the Template Method pattern.

Every endpoint shares the same request algorithm:
    review() → _call_with_retry() → _call_api()   ← only this differs per endpoint
             → _parse()

Subclasses implement:
  - __init__: set up the HTTP client
  - _call_api: make one raw request and return the response body, raising a
    ReviewClientError subclass on failure
  - _parse (optional): turn the body into completion text

Retry and deadline handling live here so they are defined once. Retrying is
an explicit bounded loop over a RetryState rather than recursion, so the run
deadline is checked at every attempt boundary and during every backoff wait.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

from difflens_core.errors import EndpointUnreachableError, MalformedResponseError, RunTimeoutError
from difflens_core.models import ReviewRequest

logger = logging.getLogger(__name__)

# Shared defaults; the orchestrator passes configured values.
_MAX_RETRIES = 3
_BACKOFF_BASE = 1.0
_BACKOFF_MAX = 8.0
_REQUEST_TIMEOUT = 120.0


@dataclass
class RetryState:
    """Attempt counter and next backoff delay for one request."""

    max_attempts: int
    next_delay: float
    max_delay: float
    attempt: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def record_failure(self) -> float | None:
        """Count a failed attempt. Returns the delay before the next one, or None when out of attempts."""
        self.attempt += 1
        if self.exhausted:
            return None
        delay = self.next_delay
        self.next_delay = min(self.next_delay * 2, self.max_delay)
        return delay


@dataclass(frozen=True)
class Deadline:
    """Overall run timeout as an absolute point on the monotonic clock."""

    timeout: float
    expires_at: float

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(timeout=seconds, expires_at=time.monotonic() + seconds)

    def remaining(self) -> float:
        return self.expires_at - time.monotonic()

    def check(self) -> float:
        """Return the seconds left, raising RunTimeoutError if none are."""
        left = self.remaining()
        if left <= 0:
            raise RunTimeoutError(self.timeout)
        return left


class BaseReviewer(ABC):
    MAX_RETRIES: int = _MAX_RETRIES
    BACKOFF_BASE: float = _BACKOFF_BASE
    BACKOFF_MAX: float = _BACKOFF_MAX
    REQUEST_TIMEOUT: float = _REQUEST_TIMEOUT

    def __init__(
        self,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        backoff_max: float | None = None,
        request_timeout: float | None = None,
    ):
        self.max_retries = max_retries if max_retries is not None else self.MAX_RETRIES
        self.backoff_base = backoff_base if backoff_base is not None else self.BACKOFF_BASE
        self.backoff_max = backoff_max if backoff_max is not None else self.BACKOFF_MAX
        self.request_timeout = request_timeout if request_timeout is not None else self.REQUEST_TIMEOUT

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    @property
    def endpoint(self) -> str:
        """Human-readable address of the endpoint, used in error messages."""
        return self.__class__.__name__

    def review(self, request: ReviewRequest, deadline: Deadline | None = None) -> str:
        """Send one review request and return the completion text."""
        raw = self._call_with_retry(request, deadline)
        return self._parse(raw)

    def close(self) -> None:
        """Release any connections held by the reviewer."""

    # ------------------------------------------------------------------ #
    # Abstract, implemented in each endpoint                               #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(self, request: ReviewRequest, timeout: float) -> str:
        """Make a single request and return the raw response body.

        Raise EndpointUnreachableError for failures worth retrying; any other
        ReviewClientError is surfaced immediately.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _call_with_retry(self, request: ReviewRequest, deadline: Deadline | None = None) -> str:
        """Retry _call_api on EndpointUnreachableError with exponential backoff.

        Only unreachable-endpoint failures are retried. The per-request
        timeout is capped by whatever is left of the deadline.
        """
        state = RetryState(max_attempts=self.max_retries, next_delay=self.backoff_base, max_delay=self.backoff_max)

        while True:
            timeout = self.request_timeout
            if deadline is not None:
                timeout = min(timeout, deadline.check())

            try:
                return self._call_api(request, timeout)
            except EndpointUnreachableError as e:
                delay = state.record_failure()
                if delay is None:
                    logger.error(
                        "%s unreachable after %d attempts: %s",
                        self.endpoint,
                        state.attempt,
                        e.reason,
                    )
                    raise EndpointUnreachableError(self.endpoint, e.reason, attempts=state.attempt) from e
                logger.warning(
                    "%s unreachable (attempt %d/%d): %s. Retrying in %.1fs...",
                    self.endpoint,
                    state.attempt,
                    state.max_attempts,
                    e.reason,
                    delay,
                )

            if deadline is not None:
                left = deadline.check()
                if delay >= left:
                    time.sleep(left)
                    raise RunTimeoutError(deadline.timeout)
            time.sleep(delay)

    def _parse(self, raw: str) -> str:
        """Turn the raw body into completion text. Plain-text endpoints need nothing more."""
        text = raw.strip()
        if not text:
            raise MalformedResponseError(200, raw, "empty response body")
        return text
