"""Fake provider clients shared by the test suite."""
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from secondbrain.providers.base import EmbeddingClient, LLMClient


class FakeEmbedder(EmbeddingClient):
    """
    Deterministic embeddings.

    Texts listed in `vectors` get that vector; anything else gets a vector
    derived from its length so distinct texts rarely collide.
    """

    def __init__(
        self,
        vectors: Optional[dict[str, list[float]]] = None,
        error: Optional[Exception] = None,
        batch_size: int = 64,
    ) -> None:
        self.model = "fake-embed"
        self.batch_size = batch_size
        self.vectors = vectors or {}
        self.error = error
        self.calls: list[list[str]] = []

    async def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return [self.vectors.get(t, [1.0, float(len(t) % 7 + 1), 0.5]) for t in texts]


class FakeLLM(LLMClient):
    """
    Streams fixed tokens.

    error:       raised once `error_after` tokens were streamed (default: before the first)
    stall_after: after this many tokens, hang until cancelled
    """

    def __init__(
        self,
        tokens: Optional[list[str]] = None,
        error: Optional[Exception] = None,
        stall_after: Optional[int] = None,
        error_after: int = 0,
    ) -> None:
        self.model = "fake-llm"
        self.tokens = tokens if tokens is not None else ["The answer", " is 42."]
        self.error = error
        self.error_after = error_after
        self.stall_after = stall_after
        self.prompts: list[str] = []

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        for i, token in enumerate(self.tokens):
            if self.error is not None and i >= self.error_after:
                raise self.error
            if self.stall_after is not None and i >= self.stall_after:
                await asyncio.sleep(3600)
            await asyncio.sleep(0)
            yield token
        if self.error is not None:
            raise self.error


def minimal_pdf(*page_texts: str) -> bytes:
    """A valid PDF with one Helvetica text line per page (empty string -> page without text)."""
    page_count = len(page_texts)
    font_id = 3
    first_page_id = 4
    objects: list[bytes] = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        (
            "<< /Type /Pages /Kids ["
            + " ".join(f"{first_page_id + 2 * i} 0 R" for i in range(page_count))
            + f"] /Count {page_count} >>"
        ).encode(),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    for i, text in enumerate(page_texts):
        content_id = first_page_id + 2 * i + 1
        escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
        content = f"BT /F1 12 Tf 20 100 Td ({escaped}) Tj ET".encode() if text else b""
        objects.append(
            (
                "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 400 144] "
                f"/Resources << /Font << /F1 {font_id} 0 R >> >> /Contents {content_id} 0 R >>"
            ).encode()
        )
        objects.append(
            b"<< /Length %d >>\nstream\n" % len(content) + content + b"\nendstream"
        )

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref_at = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_at)
    return bytes(out)
