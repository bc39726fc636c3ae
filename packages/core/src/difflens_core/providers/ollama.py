from __future__ import annotations

import json
import logging

import httpx

from difflens_core.errors import ConfigError, EndpointUnreachableError, MalformedResponseError, ModelNotFoundError
from difflens_core.models import ReviewRequest
from difflens_core.providers.base import BaseReviewer

logger = logging.getLogger(__name__)

# Gateway-style statuses mean "nobody is answering yet", not "bad request".
_RETRYABLE_STATUSES = {502, 503, 504}


class OllamaReviewer(BaseReviewer):
    GENERATE_PATH = "/api/generate"
    TAGS_PATH = "/api/tags"

    def __init__(
        self,
        base_url: str,
        temperature: float | None = None,
        transport: httpx.BaseTransport | None = None,
        **retry_options,
    ):
        super().__init__(**retry_options)
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        try:
            self.client = httpx.Client(base_url=self.base_url, transport=transport)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise ConfigError(f"Invalid ollama_url {base_url!r}: {e}") from e

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}{self.GENERATE_PATH}"

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "OllamaReviewer":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _call_api(self, request: ReviewRequest, timeout: float) -> str:
        payload: dict = {"model": request.model_name, "prompt": request.prompt, "stream": False}
        if self.temperature is not None:
            payload["options"] = {"temperature": self.temperature}

        response = self._send("POST", self.GENERATE_PATH, timeout, json=payload)

        if response.status_code == 404:
            raise ModelNotFoundError(request.model_name, self.base_url)
        if response.status_code in _RETRYABLE_STATUSES:
            raise EndpointUnreachableError(self.endpoint, f"HTTP {response.status_code}")
        if not response.is_success:
            raise MalformedResponseError(response.status_code, response.text, _error_message(response.text))
        return response.text

    def _parse(self, raw: str) -> str:
        """Extract completion text from a single JSON object or NDJSON stream.

        With stream=false Ollama returns one object; some proxies still send
        the streaming form, one object per line, so both are accepted.
        """
        try:
            decoded = json.loads(raw)
            objects = [decoded] if isinstance(decoded, dict) else []
        except json.JSONDecodeError:
            objects = []
            for line in raw.splitlines():
                line = line.strip()
                if not line:
                    continue
                try:
                    item = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(item, dict):
                    objects.append(item)

        if not any("response" in o for o in objects):
            errors = [o["error"] for o in objects if "error" in o]
            reason = f"endpoint error: {errors[0]}" if errors else "response body is not an Ollama completion"
            raise MalformedResponseError(200, raw, reason)

        parts = []
        for obj in objects:
            parts.append(str(obj.get("response", "")))
            if obj.get("done"):
                break
        return "".join(parts).strip()

    def list_models(self) -> list[str]:
        """Return the names of models installed on the endpoint."""
        response = self._send("GET", self.TAGS_PATH, self.request_timeout)
        if not response.is_success:
            raise MalformedResponseError(response.status_code, response.text, _error_message(response.text))
        try:
            data = response.json()
            return sorted(m["name"] for m in data.get("models", []))
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError) as e:
            raise MalformedResponseError(response.status_code, response.text, "unexpected model list") from e

    def _send(self, method: str, path: str, timeout: float, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.client.request(method, path, timeout=timeout, **kwargs)
        except (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError) as e:
            raise EndpointUnreachableError(url, str(e) or e.__class__.__name__) from e
        except httpx.UnsupportedProtocol as e:
            raise ConfigError(f"Invalid ollama_url {self.base_url!r}: {e}") from e

        logger.debug("Response status: %s", response.status_code)
        logger.debug("Raw response: %s", response.text)
        return response


def _error_message(body: str) -> str:
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return "unexpected response"
    if isinstance(data, dict) and data.get("error"):
        return f"endpoint error: {data['error']}"
    return "unexpected response"
