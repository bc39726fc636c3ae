"""Tests for the inference client: retries, error mapping and response parsing.

HTTP is served by httpx.MockTransport, so no Ollama server is needed.
"""

import json
import time

import httpx
import pytest

from difflens_core.errors import (
    ConfigError,
    EndpointUnreachableError,
    MalformedResponseError,
    ModelNotFoundError,
    RunTimeoutError,
)
from difflens_core.models import ReviewRequest
from difflens_core.providers.base import BaseReviewer, Deadline, RetryState
from difflens_core.providers.ollama import OllamaReviewer

URL = "http://ollama.test:11434"


def _request(model="codellama"):
    return ReviewRequest(
        instructions="Review this.",
        change_set_text="## Changes\n```diff\n+x\n```",
        context_entries_text="",
        model_name=model,
    )


class _Recorder:
    """MockTransport handler that replays responses and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item


def _reviewer(handler, **options):
    options.setdefault("max_retries", 3)
    options.setdefault("backoff_base", 1.0)
    return OllamaReviewer(URL, transport=httpx.MockTransport(handler), **options)


@pytest.fixture
def sleep(mocker):
    return mocker.patch("difflens_core.providers.base.time.sleep")


# ---------------------------------------------------------------------------
# RetryState / Deadline
# ---------------------------------------------------------------------------


class TestRetryState:
    def test_delays_double_up_to_cap(self):
        state = RetryState(max_attempts=5, next_delay=1.0, max_delay=3.0)
        assert [state.record_failure() for _ in range(5)] == [1.0, 2.0, 3.0, 3.0, None]
        assert state.exhausted

    def test_single_attempt_never_waits(self):
        state = RetryState(max_attempts=1, next_delay=1.0, max_delay=8.0)
        assert state.record_failure() is None


class TestDeadline:
    def test_remaining_counts_down(self):
        deadline = Deadline.after(60)
        assert 0 < deadline.remaining() <= 60
        assert deadline.check() > 0

    def test_expired_deadline_raises(self):
        deadline = Deadline(timeout=5, expires_at=time.monotonic() - 1)
        with pytest.raises(RunTimeoutError, match="5s"):
            deadline.check()


# ---------------------------------------------------------------------------
# Successful requests
# ---------------------------------------------------------------------------


class TestOllamaSuccess:
    def test_returns_completion_text(self, sleep):
        handler = _Recorder(httpx.Response(200, json={"response": "  Looks good.  ", "done": True}))
        assert _reviewer(handler).review(_request()) == "Looks good."
        sleep.assert_not_called()

    def test_payload(self):
        handler = _Recorder(httpx.Response(200, json={"response": "ok", "done": True}))
        reviewer = _reviewer(handler, temperature=0.2)
        reviewer.review(_request("llama3"))

        (sent,) = handler.requests
        assert sent.method == "POST"
        assert sent.url.path == "/api/generate"
        body = json.loads(sent.content)
        assert body["model"] == "llama3"
        assert body["stream"] is False
        assert body["prompt"] == _request("llama3").prompt
        assert body["options"] == {"temperature": 0.2}

    def test_no_options_without_temperature(self):
        handler = _Recorder(httpx.Response(200, json={"response": "ok", "done": True}))
        _reviewer(handler).review(_request())
        assert "options" not in json.loads(handler.requests[0].content)

    def test_streamed_ndjson_is_joined_until_done(self):
        lines = [
            {"response": "Line one. ", "done": False},
            {"response": "Line two.", "done": False},
            {"response": "", "done": True},
            {"response": "ignored", "done": False},
        ]
        body = "\n".join(json.dumps(line) for line in lines)
        handler = _Recorder(httpx.Response(200, text=body))
        assert _reviewer(handler).review(_request()) == "Line one. Line two."

    def test_endpoint_address(self):
        assert _reviewer(_Recorder(httpx.Response(200))).endpoint == f"{URL}/api/generate"


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestOllamaFailures:
    def test_connection_refused_retried_then_raised(self, sleep):
        handler = _Recorder(httpx.ConnectError("Connection refused"))
        with pytest.raises(EndpointUnreachableError, match="ollama serve") as exc_info:
            _reviewer(handler, max_retries=3).review(_request())

        assert len(handler.requests) == 3
        assert exc_info.value.attempts == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    def test_recovers_after_transient_failure(self, sleep):
        handler = _Recorder(
            httpx.ConnectError("Connection refused"),
            httpx.Response(503, text="loading"),
            httpx.Response(200, json={"response": "fine", "done": True}),
        )
        assert _reviewer(handler).review(_request()) == "fine"
        assert len(handler.requests) == 3
        assert sleep.call_count == 2

    def test_read_timeout_is_unreachable(self, sleep):
        handler = _Recorder(httpx.ReadTimeout("timed out"))
        with pytest.raises(EndpointUnreachableError):
            _reviewer(handler, max_retries=2).review(_request())
        assert len(handler.requests) == 2

    def test_unknown_model_not_retried(self, sleep):
        handler = _Recorder(httpx.Response(404, json={"error": "model 'nope' not found"}))
        with pytest.raises(ModelNotFoundError, match="nope") as exc_info:
            _reviewer(handler).review(_request("nope"))

        assert exc_info.value.model == "nope"
        assert len(handler.requests) == 1
        sleep.assert_not_called()

    def test_malformed_body_not_retried(self, sleep):
        handler = _Recorder(httpx.Response(200, text="<html>proxy error</html>"))
        with pytest.raises(MalformedResponseError):
            _reviewer(handler).review(_request())
        assert len(handler.requests) == 1
        sleep.assert_not_called()

    def test_json_without_response_field_is_malformed(self):
        handler = _Recorder(httpx.Response(200, json={"model": "codellama"}))
        with pytest.raises(MalformedResponseError):
            _reviewer(handler).review(_request())

    def test_inline_error_reported(self):
        handler = _Recorder(httpx.Response(200, json={"error": "out of memory"}))
        with pytest.raises(MalformedResponseError, match="out of memory"):
            _reviewer(handler).review(_request())

    def test_server_error_not_retried(self, sleep):
        handler = _Recorder(httpx.Response(500, json={"error": "boom"}))
        with pytest.raises(MalformedResponseError, match="boom") as exc_info:
            _reviewer(handler).review(_request())
        assert exc_info.value.status == 500
        assert len(handler.requests) == 1

    def test_invalid_scheme_is_config_error(self):
        with pytest.raises(ConfigError):
            OllamaReviewer("ftp://example.com").review(_request())


# ---------------------------------------------------------------------------
# Deadline during retries
# ---------------------------------------------------------------------------


class TestDeadlineDuringRetries:
    def test_expired_deadline_stops_before_first_attempt(self):
        handler = _Recorder(httpx.Response(200, json={"response": "ok", "done": True}))
        deadline = Deadline(timeout=1, expires_at=time.monotonic() - 1)
        with pytest.raises(RunTimeoutError):
            _reviewer(handler).review(_request(), deadline)
        assert handler.requests == []

    def test_backoff_longer_than_deadline_times_out(self, sleep):
        handler = _Recorder(httpx.ConnectError("Connection refused"))
        deadline = Deadline.after(5)
        with pytest.raises(RunTimeoutError):
            _reviewer(handler, max_retries=5, backoff_base=30.0).review(_request(), deadline)

        assert len(handler.requests) == 1
        (waited,) = [c.args[0] for c in sleep.call_args_list]
        assert waited <= 5


# ---------------------------------------------------------------------------
# Template method
# ---------------------------------------------------------------------------


class TestBaseReviewer:
    def test_custom_endpoint_only_implements_call_api(self):
        class EchoReviewer(BaseReviewer):
            def _call_api(self, request, timeout):
                return f"  echo: {request.model_name}\n"

        assert EchoReviewer().review(_request("m")) == "echo: m"

    def test_empty_body_is_malformed(self):
        class SilentReviewer(BaseReviewer):
            def _call_api(self, request, timeout):
                return "   "

        with pytest.raises(MalformedResponseError, match="empty"):
            SilentReviewer().review(_request())

    def test_request_timeout_capped_by_deadline(self):
        seen = []

        class TimedReviewer(BaseReviewer):
            def _call_api(self, request, timeout):
                seen.append(timeout)
                return "ok"

        TimedReviewer(request_timeout=120).review(_request(), Deadline.after(10))
        assert 0 < seen[0] <= 10


# ---------------------------------------------------------------------------
# Model listing
# ---------------------------------------------------------------------------


class TestListModels:
    def test_sorted_names(self):
        handler = _Recorder(httpx.Response(200, json={"models": [{"name": "llama3:latest"}, {"name": "codellama:7b"}]}))
        assert _reviewer(handler).list_models() == ["codellama:7b", "llama3:latest"]
        assert handler.requests[0].url.path == "/api/tags"

    def test_unexpected_shape(self):
        handler = _Recorder(httpx.Response(200, json={"models": [{"size": 1}]}))
        with pytest.raises(MalformedResponseError):
            _reviewer(handler).list_models()

    def test_unreachable(self):
        handler = _Recorder(httpx.ConnectError("Connection refused"))
        with pytest.raises(EndpointUnreachableError):
            _reviewer(handler).list_models()
