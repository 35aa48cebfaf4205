"""Narration backends.

GenerationOrchestrator talks to any async callable of the form

    await llm(segment_kind, prompt) -> str | GeneratedContent

where segment_kind is the value of the SegmentKind being written ("scene",
"initial-scene", ...). Backends that can produce choices themselves return a
GeneratedContent; the rest return prose and let the orchestrator parse it.

HttpLLM speaks to a KoboldCpp or OpenAI-style completions server. EchoLLM
narrates the prompt back and needs no server. Transport failures from HttpLLM
are raised as LLMError whose message names the cause (connect, timeout, HTTP
status), which is what classify_error keys on.
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol

import httpx

from rpg_narrator.models import GeneratedContent

logger = logging.getLogger(__name__)


class LLM(Protocol):
    async def __call__(self, kind: str, prompt: str) -> str | GeneratedContent: ...


ProviderFormat = Literal["koboldcpp", "openai"]


class HttpLLM:
    """Narration over HTTP, one short-lived client per call.

    koboldcpp posts to /api/v1/generate and reads results[0].text; openai posts
    to /v1/completions and reads choices[0].text.

    Args:
        provider_url:    Server root; a trailing slash is dropped.
        api_key:         Sent as a bearer token when set.
        provider_format: "koboldcpp" or "openai".
        model:           Only sent in the openai format.
        timeout:         Per-call timeout in seconds.
        max_length:      Token budget for one narrative segment.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        timeout: float = 120.0,
        max_length: int = 512,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout
        self._max_length = max_length

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, prompt: str) -> tuple[str, dict]:
        if self._format == "openai":
            url = f"{self._base_url}/v1/completions"
            body: dict = {"prompt": prompt, "max_tokens": self._max_length}
            if self._model:
                body["model"] = self._model
            return url, body

        # koboldcpp (default)
        url = f"{self._base_url}/api/v1/generate"
        return url, {"prompt": prompt, "max_length": self._max_length}

    def _parse_response(self, data: dict) -> str:
        if self._format == "openai":
            choices = data.get("choices")
            if not choices or "text" not in choices[0]:
                raise LLMError("Unexpected response format from OpenAI-compatible backend")
            return choices[0]["text"]

        # koboldcpp
        results = data.get("results")
        if not results or "text" not in results[0]:
            raise LLMError("Unexpected response format from KoboldCpp backend")
        return results[0]["text"]

    async def is_available(self) -> bool:
        """True when the server answers its model endpoint. Errors become False."""
        url = (
            f"{self._base_url}/v1/models"
            if self._format == "openai"
            else f"{self._base_url}/api/v1/model"
        )
        try:
            async with httpx.AsyncClient(timeout=5) as client:
                resp = await client.get(url, headers=self._headers())
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.info("llm backend %s unavailable: %s", self._base_url, e)
            return False
        return True

    async def __call__(self, kind: str, prompt: str) -> str:
        url, body = self._build_request(prompt)
        logger.debug("llm call kind=%s url=%s prompt_len=%d", kind, url, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"LLM network error: {e}") from e

        text = self._parse_response(resp.json())
        logger.debug("llm response kind=%s len=%d", kind, len(text))
        return text


class EchoLLM:
    """Narrates the rendered prompt back; for running the API without a model server."""

    async def __call__(self, kind: str, prompt: str) -> str:
        logger.debug("EchoLLM kind=%s prompt_len=%d", kind, len(prompt))
        return prompt


class LLMError(RuntimeError):
    """Transport or protocol failure talking to a narration server."""
