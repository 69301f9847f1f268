"""Language-model gateway: HTTP connection to a text-generation backend.

The controllers receive an LLM callable matching the protocol:

    async def __call__(self, stage: str, prompt: str) -> str: ...

`stage` identifies who is calling (e.g. "chat", "group:<character id>").
The implementation may use it for logging or routing; the simplest
implementation ignores it.

Two implementations are provided:

    HttpLLM   - real HTTP client, supports KoboldCpp, OpenAI-compatible
                and Gemini backends. Selected by provider_format.
    EchoLLM   - returns the prompt back unchanged. Useful for smoke-testing
                the chat wiring without a running model.

Controllers never call an LLM directly; they go through generate(), which
normalises the provider output with clean_reply() and refuses empty text.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Literal, Protocol

import httpx

from character_realm.errors import EmptyResponseError, ProviderError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol - every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# HttpLLM - connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["koboldcpp", "openai", "gemini"]


class HttpLLM:
    """Async HTTP client for text-generation backends.

    Supported formats:
      "koboldcpp"  - POST /api/v1/generate  {"prompt": ...}
                     Response: {"results": [{"text": "..."}]}
      "openai"     - POST /v1/completions   {"model": ..., "prompt": ...}
                     Response: {"choices": [{"text": "..."}]}
      "gemini"     - POST /v1beta/models/{model}:generateContent
                     {"contents": [{"parts": [{"text": ...}]}]}
                     Response: {"candidates": [{"content": {"parts": [{"text": "..."}]}}]}

    Args:
        provider_url:    Base URL of the backend, e.g. "http://localhost:5001".
        api_key:         Bearer token (or Gemini API key), empty if not required.
        provider_format: Wire format to use. Defaults to "koboldcpp".
        model:           Model identifier, used by the openai and gemini formats.
        timeout:         HTTP timeout in seconds. Defaults to 60.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        timeout: float = 60.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            if self._format == "gemini":
                headers["x-goog-api-key"] = self._api_key
            else:
                headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, prompt: str) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "openai":
            url = f"{self._base_url}/v1/completions"
            body: dict = {"prompt": prompt}
            if self._model:
                body["model"] = self._model
            return url, body

        if self._format == "gemini":
            url = f"{self._base_url}/v1beta/models/{self._model}:generateContent"
            return url, {"contents": [{"parts": [{"text": prompt}]}]}

        # koboldcpp (default)
        url = f"{self._base_url}/api/v1/generate"
        return url, {"prompt": prompt}

    def _parse_response(self, data: Any) -> str:
        """Extract the completion text from the response body."""
        if not isinstance(data, dict):
            raise ProviderError("Unexpected response format from LLM backend")

        if self._format == "openai":
            choices = data.get("choices")
            if not choices or "text" not in choices[0]:
                raise ProviderError("Unexpected response format from OpenAI-compatible backend")
            return choices[0]["text"]

        if self._format == "gemini":
            candidates = data.get("candidates")
            if not candidates:
                raise ProviderError("Unexpected response format from Gemini backend")
            parts = candidates[0].get("content", {}).get("parts") or []
            return "".join(p.get("text", "") for p in parts)

        # koboldcpp
        results = data.get("results")
        if not results or "text" not in results[0]:
            raise ProviderError("Unexpected response format from KoboldCpp backend")
        return results[0]["text"]

    async def __call__(self, stage: str, prompt: str) -> str:
        url, body = self._build_request(prompt)
        logger.debug("llm call stage=%s url=%s prompt_len=%d", stage, url, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise ProviderError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise ProviderError(f"LLM backend timed out after {self._timeout}s") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderError("LLM backend returned a non-JSON body") from e
        text = self._parse_response(data)
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


# ---------------------------------------------------------------------------
# EchoLLM - returns the prompt unchanged; useful for smoke tests
# ---------------------------------------------------------------------------

class EchoLLM:
    """Returns the prompt text as-is. No network calls."""

    async def __call__(self, stage: str, prompt: str) -> str:
        logger.debug("EchoLLM stage=%s prompt_len=%d", stage, len(prompt))
        return prompt


def llm_from_config(config: dict) -> HttpLLM:
    """Build an HttpLLM from the `llm` section of the app config."""
    conn = config["llm"]
    return HttpLLM(
        provider_url=conn["provider_url"],
        api_key=conn.get("api_key", ""),
        provider_format=conn.get("provider_format", "koboldcpp"),
        model=conn.get("model", ""),
        timeout=float(conn.get("timeout", 60.0)),
    )


# ---------------------------------------------------------------------------
# Output normalisation
# ---------------------------------------------------------------------------

_EMPHASIS_START = re.compile(r"^\*\*?", re.MULTILINE)
_EMPHASIS_END = re.compile(r"\*\*?$", re.MULTILINE)


def clean_reply(text: str, speaker: str | None = None) -> str:
    """Normalise raw model output into a chat reply.

    Strips a leading "Assistant:" (or "<speaker>:") echo, stray * / **
    wrapping at line boundaries, and surrounding whitespace.
    """
    labels = ["Assistant"]
    if speaker:
        labels.append(speaker)
    prefix = re.compile(
        r"^\s*(?:" + "|".join(re.escape(label) for label in labels) + r")\s*:\s*",
        re.IGNORECASE,
    )
    text = prefix.sub("", text.strip(), count=1)
    text = _EMPHASIS_START.sub("", text)
    text = _EMPHASIS_END.sub("", text)
    return text.strip()


async def generate(
    llm: LLM,
    stage: str,
    prompt: str,
    speaker: str | None = None,
    max_length: int | None = None,
) -> str:
    """Call the model and return cleaned text.

    Raises ProviderError for transport failures (including anything
    unexpected an LLM implementation throws) and EmptyResponseError if
    nothing is left after cleaning.
    """
    try:
        raw = await llm(stage, prompt)
    except ProviderError:
        raise
    except Exception as e:
        raise ProviderError(f"LLM call failed: {e}") from e

    text = clean_reply(raw or "", speaker=speaker)
    if not text:
        logger.warning("empty llm response stage=%s", stage)
        raise EmptyResponseError(f"LLM returned no text for stage {stage}")
    if max_length is not None:
        text = text[:max_length]
    return text
