"""LLM client abstractions used by classification and drafting."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urljoin

import httpx

from inbox_triage.core.config import LlmSettings
from inbox_triage.core.errors import UpstreamError


class LLMError(UpstreamError):
    """Raised when the LLM provider fails to respond as expected."""


class LLMClient(Protocol):
    """Protocol describing the minimal LLM client behaviour."""

    @property
    def provider_id(self) -> str:
        """Identifier describing the backing model/provider."""
        raise NotImplementedError

    def generate(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Return the raw text completion for ``prompt``."""
        raise NotImplementedError


@dataclass(slots=True)
class OllamaClient:
    """Thin synchronous client for the Ollama HTTP API."""

    settings: LlmSettings
    http_client: httpx.Client | None = field(default=None, repr=False)

    def generate(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Send a completion request to the Ollama server."""
        options: dict[str, object] = {}
        if temperature is not None:
            options["temperature"] = temperature
        if max_tokens is not None:
            options["num_predict"] = max_tokens
        payload: dict[str, object] = {
            "model": self.settings.model,
            "prompt": prompt,
            "stream": False,
            "options": options,
        }
        data = _post_json(
            self.http_client,
            _resolve_endpoint(self.settings.base_url, "api/generate"),
            payload,
            headers=_auth_headers(self.settings),
            timeout=self.settings.timeout_seconds,
        )
        result = data.get("response")
        if not isinstance(result, str):
            raise LLMError("LLM response missing 'response' field")
        return result

    @property
    def provider_id(self) -> str:
        """Return a human readable identifier for the configured model."""
        return f"ollama:{self.settings.model}"


@dataclass(slots=True)
class OpenAIChatClient:
    """Synchronous client for OpenAI-compatible chat completion servers."""

    settings: LlmSettings
    http_client: httpx.Client | None = field(default=None, repr=False)

    def generate(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Send a single-turn chat completion and return the message text."""
        payload: dict[str, object] = {
            "model": self.settings.model,
            "messages": [{"role": "user", "content": prompt}],
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        data = _post_json(
            self.http_client,
            _resolve_endpoint(self.settings.base_url, "v1/chat/completions"),
            payload,
            headers=_auth_headers(self.settings),
            timeout=self.settings.timeout_seconds,
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMError("LLM response missing choices[0].message.content") from exc
        if not isinstance(content, str):
            raise LLMError("LLM response content is not text")
        return content

    @property
    def provider_id(self) -> str:
        """Return a human readable identifier for the configured model."""
        return f"openai:{self.settings.model}"


def build_llm_client(
    settings: LlmSettings, *, http_client: httpx.Client | None = None
) -> LLMClient:
    """Return the client matching ``settings.provider``."""
    if settings.provider == "ollama":
        return OllamaClient(settings, http_client)
    return OpenAIChatClient(settings, http_client)


def _post_json(
    client: httpx.Client | None,
    endpoint: str,
    payload: dict[str, object],
    *,
    headers: dict[str, str],
    timeout: float,
) -> dict[str, Any]:
    try:
        if client is not None:
            response = client.post(endpoint, json=payload, headers=headers)
        else:
            response = httpx.post(
                endpoint, json=payload, headers=headers, timeout=timeout
            )
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise LLMError(f"LLM request failed: {exc}") from exc
    if response.status_code >= 400:
        raise LLMError(
            f"LLM returned HTTP {response.status_code}",
            status=response.status_code,
            detail=response.text,
        )
    try:
        data = response.json()
    except json.JSONDecodeError as exc:
        raise LLMError("LLM returned invalid JSON") from exc
    if not isinstance(data, dict):
        raise LLMError("LLM returned an unexpected payload")
    return data


def _auth_headers(settings: LlmSettings) -> dict[str, str]:
    if not settings.api_key:
        return {}
    return {"Authorization": f"Bearer {settings.api_key}"}


def _resolve_endpoint(base_url: str, path: str) -> str:
    trimmed = base_url.rstrip("/") + "/"
    return urljoin(trimmed, path)


__all__ = [
    "LLMClient",
    "LLMError",
    "OllamaClient",
    "OpenAIChatClient",
    "build_llm_client",
]
