"""Abstract provider interfaces for embeddings and text generation."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from secondbrain.errors import InvalidResponseError


class EmbeddingClient(ABC):
    """
    Converts texts to dense vectors.

    Implementations batch internally and preserve input order.  The vector
    dimension is whatever the configured model produces; it is only required
    to be consistent within one embed() call.
    """

    model: str
    batch_size: int

    @abstractmethod
    async def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed one batch (len(texts) <= batch_size)."""
        ...

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """
        Embed all texts, batch by batch, in order.

        Raises:
            DependencyUnavailableError, NotFoundError, InvalidResponseError
        """
        if not texts:
            return []

        vectors: list[list[float]] = []
        for i in range(0, len(texts), self.batch_size):
            batch = texts[i: i + self.batch_size]
            result = await self._embed_batch(batch)
            if len(result) != len(batch):
                raise InvalidResponseError(
                    f"Embedding provider returned {len(result)} vectors for "
                    f"{len(batch)} texts (model {self.model!r})"
                )
            vectors.extend(result)

        dimensions = {len(v) for v in vectors}
        if len(dimensions) != 1 or 0 in dimensions:
            raise InvalidResponseError(
                f"Inconsistent embedding dimensions from model {self.model!r}: "
                f"{sorted(dimensions)}"
            )
        return vectors

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single question string."""
        return (await self.embed([text]))[0]

    async def aclose(self) -> None:
        """Release network resources. No-op by default."""


class LLMClient(ABC):
    """Streams generated text for a prompt as a lazy, finite sequence of increments."""

    model: str

    @abstractmethod
    def stream(self, prompt: str) -> AsyncIterator[str]:
        """
        Return an async iterator of text increments.

        Raises (on iteration):
            DependencyUnavailableError, NotFoundError, InvalidResponseError
        """
        ...

    async def aclose(self) -> None:
        """Release network resources. No-op by default."""
