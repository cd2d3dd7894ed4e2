"""
OpenAI Provider Clients
------------------------
Hosted alternative to the local Ollama provider, selected with
PROVIDER=openai.  Uses the async OpenAI SDK so provider calls never block
the event loop.

  OpenAIEmbedder  -> embeddings.create (text-embedding-3-small by default)
  OpenAIGenerator -> chat.completions.create(stream=True)

SDK exceptions are mapped onto the engine's error taxonomy; nothing here
retries (the SDK's own retries are disabled with max_retries=0).
"""
from __future__ import annotations

import time
from typing import AsyncIterator, Optional

import openai
from loguru import logger
from openai import AsyncOpenAI

from secondbrain.errors import (
    DependencyTimeoutError,
    DependencyUnavailableError,
    InvalidResponseError,
    NotFoundError,
    RAGError,
)
from secondbrain.providers.base import EmbeddingClient, LLMClient

EMBED_MODEL = "text-embedding-3-small"
LLM_MODEL = "gpt-4o-mini"
BATCH_SIZE = 512           # OpenAI allows up to 2048; 512 keeps requests < 1 MB

_SYSTEM_MESSAGE = "You answer questions using only the context supplied in the prompt."


def _translate(exc: openai.OpenAIError, model: str) -> RAGError:
    """Map an SDK exception onto the error taxonomy."""
    logger.debug(f"[OpenAI] {type(exc).__name__}: {exc}")
    if isinstance(exc, openai.APITimeoutError):
        return DependencyTimeoutError(
            f"OpenAI request timed out (model {model!r})",
            remediation="Retry the request",
        )
    if isinstance(exc, openai.APIConnectionError):
        return DependencyUnavailableError(
            "Cannot connect to the OpenAI API",
            remediation="Check network access and OPENAI_BASE_URL",
        )
    if isinstance(exc, openai.NotFoundError):
        return NotFoundError(
            f"Model {model!r} is not available to this OpenAI account",
            remediation="Set EMBED_MODEL / LLM_MODEL to a model your key can access",
        )
    if isinstance(exc, openai.AuthenticationError):
        return DependencyUnavailableError(
            "OpenAI rejected the API key",
            remediation="Set a valid OPENAI_API_KEY",
        )
    if isinstance(exc, openai.APIStatusError) and exc.status_code >= 500:
        return DependencyUnavailableError(
            f"OpenAI server error (HTTP {exc.status_code})",
            remediation="Retry later",
        )
    return InvalidResponseError(f"OpenAI request failed: {type(exc).__name__}")


class OpenAIEmbedder(EmbeddingClient):
    """Batched embeddings via the OpenAI embeddings endpoint."""

    def __init__(
        self,
        model: str = EMBED_MODEL,
        batch_size: int = BATCH_SIZE,
        timeout: float = 60.0,
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = model
        self.batch_size = batch_size
        self._client = client or AsyncOpenAI(base_url=base_url, timeout=timeout, max_retries=0)
        self.total_tokens_used: int = 0

    async def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        # Replace empty strings with a space to avoid API errors
        safe_texts = [t if t.strip() else " " for t in texts]
        start = time.perf_counter()
        try:
            response = await self._client.embeddings.create(model=self.model, input=safe_texts)
        except openai.OpenAIError as exc:
            raise _translate(exc, self.model) from exc
        elapsed = time.perf_counter() - start

        embeddings = [item.embedding for item in sorted(response.data, key=lambda x: x.index)]
        if response.usage is not None:
            self.total_tokens_used += response.usage.total_tokens
        logger.debug(f"[OpenAI] Embedded {len(texts)} texts with {self.model} in {elapsed:.2f}s")
        return embeddings

    async def aclose(self) -> None:
        await self._client.close()


class OpenAIGenerator(LLMClient):
    """Streaming chat completion."""

    def __init__(
        self,
        model: str = LLM_MODEL,
        max_tokens: int = 1024,
        temperature: float = 0.1,
        timeout: float = 60.0,
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client or AsyncOpenAI(base_url=base_url, timeout=timeout, max_retries=0)

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": _SYSTEM_MESSAGE},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                stream=True,
            )
            async for chunk in response:
                if not chunk.choices:
                    continue
                increment = chunk.choices[0].delta.content
                if increment:
                    yield increment
        except openai.OpenAIError as exc:
            raise _translate(exc, self.model) from exc

    async def aclose(self) -> None:
        await self._client.close()
