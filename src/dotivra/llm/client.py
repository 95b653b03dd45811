"""Text-completion clients.

Every caller in dotivra talks to the model through ``CompletionClient``:
one prompt in, one string out.  Two backends are provided:

- ``EndpointCompletionClient`` posts to the dotivra generation endpoint
  (``{prompt, model, generationConfig} → {text}``) over httpx.
- ``OpenAICompletionClient`` uses ``openai.AsyncOpenAI`` chat completions.

Usage::

    client = get_completion_client(Settings.from_env())
    text = await client.complete("Explain asyncio.", max_output_tokens=512)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
from openai import AsyncOpenAI, OpenAIError

from ..config import Settings
from ..errors import LLMRequestError
from .cancellation import CancellationToken, run_cancellable

logger = logging.getLogger("dotivra.llm")

DEFAULT_MAX_OUTPUT_TOKENS = 2048


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------

class CompletionClient(ABC):
    """Abstract base for single-prompt completion backends."""

    model: str = ""

    async def complete(
        self,
        prompt: str,
        *,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        temperature: float | None = None,
        cancel: CancellationToken | None = None,
    ) -> str:
        """Return the model's text for *prompt*.

        Parameters
        ----------
        prompt
            The fully rendered prompt.
        max_output_tokens
            Output-token budget for this call.
        temperature
            Sampling temperature; ``None`` leaves the backend default.
        cancel
            Optional token; when it fires the call raises
            ``GenerationAborted``.

        Raises
        ------
        LLMRequestError
            On transport failures or non-2xx responses.
        """
        logger.debug(
            "Completion request: %d chars, max_output_tokens=%d",
            len(prompt), max_output_tokens,
        )
        return await run_cancellable(
            self._complete(
                prompt,
                max_output_tokens=max_output_tokens,
                temperature=temperature,
            ),
            cancel,
        )

    @abstractmethod
    async def _complete(
        self,
        prompt: str,
        *,
        max_output_tokens: int,
        temperature: float | None,
    ) -> str:
        ...

    async def aclose(self) -> None:
        """Release any underlying connections."""


# ---------------------------------------------------------------------------
# Generation endpoint
# ---------------------------------------------------------------------------

class EndpointCompletionClient(CompletionClient):
    """Posts prompts to the dotivra ``/api/gemini/generate`` endpoint."""

    def __init__(
        self,
        url: str,
        *,
        model: str = "gemini-2.5-pro",
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.url = url
        self.model = model
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._headers = headers or {}

    async def _complete(
        self,
        prompt: str,
        *,
        max_output_tokens: int,
        temperature: float | None,
    ) -> str:
        generation_config: dict[str, Any] = {"maxOutputTokens": max_output_tokens}
        if temperature is not None:
            generation_config["temperature"] = temperature

        payload = {
            "prompt": prompt,
            "model": self.model,
            "generationConfig": generation_config,
        }
        try:
            resp = await self._http.post(self.url, json=payload, headers=self._headers)
        except httpx.HTTPError as exc:
            raise LLMRequestError(f"AI generation request failed: {exc}") from exc

        if resp.status_code < 200 or resp.status_code >= 300:
            detail = _error_detail(resp)
            logger.warning("Generation endpoint returned %d: %s", resp.status_code, detail)
            raise LLMRequestError(
                f"AI generation failed: {resp.status_code} {detail}".rstrip(),
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise LLMRequestError("AI generation returned a non-JSON body") from exc
        text = data.get("text") if isinstance(data, dict) else None
        return text if isinstance(text, str) else ""

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or "")
    return ""


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

class OpenAICompletionClient(CompletionClient):
    """Chat-completions backend via ``openai.AsyncOpenAI``."""

    def __init__(
        self,
        *,
        api_key: str = "",
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        if client is None and not api_key:
            raise RuntimeError(
                "No OpenAI API key found. Set OPENAI_API_KEY or pass api_key=."
            )
        self.model = model
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def _complete(
        self,
        prompt: str,
        *,
        max_output_tokens: int,
        temperature: float | None,
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_output_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        try:
            resp = await self._client.chat.completions.create(**kwargs)
        except OpenAIError as exc:
            raise LLMRequestError(f"OpenAI request failed: {exc}") from exc
        return resp.choices[0].message.content or ""

    async def aclose(self) -> None:
        await self._client.close()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def get_completion_client(
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> CompletionClient:
    """Build the completion client selected by ``settings.llm_provider``."""
    provider = settings.llm_provider.lower()
    if provider == "openai":
        model = settings.model if not settings.model.startswith("gemini") else "gpt-4o-mini"
        return OpenAICompletionClient(
            api_key=settings.openai_api_key,
            model=model,
            base_url=settings.openai_base_url,
        )
    if provider == "endpoint":
        return EndpointCompletionClient(
            settings.generate_url,
            model=settings.model,
            timeout=settings.http_timeout,
            http_client=http_client,
            headers=settings.extra_headers,
        )
    raise ValueError(f"Unknown LLM provider '{settings.llm_provider}'. Available: endpoint, openai")
