"""
Ollama Provider Clients
------------------------
Local, free embeddings and generation through an Ollama server.

  OllamaEmbedder  -> POST {base}/api/embed     {"model", "input": [...]}
  OllamaGenerator -> POST {base}/api/generate  {"model", "prompt", "stream": true}
                     (newline-delimited JSON, one {"response": ...} per increment,
                      terminated by {"done": true})

Transport failures are translated into the engine's error taxonomy here so
callers never see httpx exceptions or raw provider bodies.
"""
from __future__ import annotations

import json
import time
from typing import AsyncIterator, NoReturn, Optional

import httpx
from loguru import logger

from secondbrain.errors import (
    DependencyTimeoutError,
    DependencyUnavailableError,
    InvalidResponseError,
    NotFoundError,
)
from secondbrain.providers.base import EmbeddingClient, LLMClient
from secondbrain.utils.helpers import truncate_text

DEFAULT_BASE = "http://localhost:11434"
EMBED_MODEL = "all-minilm"
LLM_MODEL = "llama3"
BATCH_SIZE = 64            # Ollama handles more; 64 keeps requests small


def _unreachable(base_url: str, exc: Exception) -> DependencyUnavailableError:
    logger.debug(f"[Ollama] Transport error: {exc!r}")
    return DependencyUnavailableError(
        f"Cannot connect to Ollama server at {base_url}",
        remediation="Start the server with: ollama serve",
    )


def _raise_for_status(status_code: int, body: str, model: str) -> NoReturn:
    logger.debug(f"[Ollama] HTTP {status_code}: {truncate_text(body, 500)}")
    lowered = body.lower()
    if status_code == 404 or ("model" in lowered and "not found" in lowered):
        raise NotFoundError(
            f"Model {model!r} not found on the Ollama server",
            remediation=f"Pull the model with: ollama pull {model}",
        )
    if status_code >= 500:
        raise DependencyUnavailableError(
            f"Ollama server error (HTTP {status_code}) for model {model!r}",
            remediation="Check the Ollama server logs and retry",
        )
    raise InvalidResponseError(f"Ollama rejected the request (HTTP {status_code})")


class _OllamaClientMixin:
    """Shared httpx client ownership for both Ollama clients."""

    base_url: str
    _client: httpx.AsyncClient
    _owns_client: bool

    def _init_client(
        self, base_url: str, timeout: float, client: Optional[httpx.AsyncClient]
    ) -> None:
        self.base_url = base_url.rstrip("/")
        if client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
            self._owns_client = True
        else:
            self._client = client
            self._owns_client = False

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class OllamaEmbedder(_OllamaClientMixin, EmbeddingClient):
    """Batched embeddings via /api/embed."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE,
        model: str = EMBED_MODEL,
        batch_size: int = BATCH_SIZE,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.model = model
        self.batch_size = batch_size
        self._init_client(base_url, timeout, client)

    async def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        start = time.perf_counter()
        try:
            response = await self._client.post(
                "/api/embed", json={"model": self.model, "input": texts}
            )
        except httpx.TimeoutException as exc:
            raise DependencyTimeoutError(
                f"Ollama embedding request timed out (model {self.model!r})",
                remediation="Retry, or raise REQUEST_TIMEOUT_S for large documents",
            ) from exc
        except httpx.HTTPError as exc:
            raise _unreachable(self.base_url, exc) from exc

        if response.status_code != 200:
            _raise_for_status(response.status_code, response.text, self.model)

        try:
            embeddings = response.json().get("embeddings")
        except (ValueError, AttributeError) as exc:
            raise InvalidResponseError("Invalid response from Ollama: body is not a JSON object") from exc
        if not isinstance(embeddings, list):
            raise InvalidResponseError("Invalid response from Ollama: missing embeddings array")

        elapsed = time.perf_counter() - start
        logger.debug(f"[Ollama] Embedded {len(texts)} texts with {self.model} in {elapsed:.2f}s")
        return embeddings


class OllamaGenerator(_OllamaClientMixin, LLMClient):
    """Streaming completion via /api/generate."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE,
        model: str = LLM_MODEL,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.model = model
        self._init_client(base_url, timeout, client)

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        payload = {"model": self.model, "prompt": prompt, "stream": True}
        try:
            async with self._client.stream("POST", "/api/generate", json=payload) as response:
                if response.status_code != 200:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    _raise_for_status(response.status_code, body, self.model)

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        event = json.loads(line)
                    except ValueError as exc:
                        raise InvalidResponseError("Ollama sent a malformed stream line") from exc
                    if not isinstance(event, dict):
                        raise InvalidResponseError("Ollama sent a stream line that is not a JSON object")

                    if event.get("error"):
                        _raise_for_status(500, str(event["error"]), self.model)
                    increment = event.get("response", "")
                    if not isinstance(increment, str):
                        raise InvalidResponseError("Ollama sent a non-text response increment")
                    if increment:
                        yield increment
                    if event.get("done"):
                        return
        except httpx.TimeoutException as exc:
            raise DependencyTimeoutError(
                f"Ollama generation stalled (model {self.model!r})",
                remediation="Retry, or use a smaller model",
            ) from exc
        except httpx.HTTPError as exc:
            raise _unreachable(self.base_url, exc) from exc
