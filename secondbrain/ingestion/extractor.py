"""
Text extraction collaborator.

The engine only needs "document -> text blob, or a failure".  Files are
read from the document's storage_ref:

  .pdf        -> PdfTextExtractor   (pypdf, page texts joined by blank lines)
  anything    -> PlainTextExtractor (UTF-8 text)

FileTextExtractor picks between the two by suffix; OCR or other formats can
be plugged in by implementing TextExtractor.
"""
from __future__ import annotations

import asyncio
import io
from abc import ABC, abstractmethod
from pathlib import Path

from loguru import logger
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from secondbrain.errors import NotFoundError, UnprocessableContentError
from secondbrain.schemas import Document

PDF_SUFFIX = ".pdf"
PAGE_SEPARATOR = "\n\n"


class TextExtractor(ABC):
    @abstractmethod
    async def extract(self, document: Document) -> str:
        """
        Return the document's raw text (may be empty).

        Raises:
            NotFoundError: the stored file is missing.
            UnprocessableContentError: the file cannot be decoded.
        """
        ...


async def _read_bytes(document: Document) -> bytes:
    path = Path(document.storage_ref)
    if not path.is_file():
        raise NotFoundError(
            f"File for document {document.id} not found at {path}",
            remediation="Re-add the document from its original location",
        )
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, path.read_bytes)
    except OSError as exc:
        raise NotFoundError(f"File for document {document.id} is unreadable: {exc}") from exc


class PlainTextExtractor(TextExtractor):
    """Reads text files from disk in a worker thread."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding

    async def extract(self, document: Document) -> str:
        raw = await _read_bytes(document)
        try:
            text = raw.decode(self.encoding)
        except UnicodeDecodeError as exc:
            raise UnprocessableContentError(
                f"Document {document.id} ({document.filename}) is not {self.encoding} text",
                remediation="Convert the file to plain text (or run OCR) before adding it",
            ) from exc

        logger.debug(f"[Extractor] {document.filename}: {len(text)} chars")
        return text


def _pdf_text(raw: bytes) -> tuple[str, int]:
    reader = PdfReader(io.BytesIO(raw))
    pages = [page.extract_text() or "" for page in reader.pages]
    return PAGE_SEPARATOR.join(pages), len(pages)


class PdfTextExtractor(TextExtractor):
    """Text layer of a PDF via pypdf; parsing runs in a worker thread."""

    async def extract(self, document: Document) -> str:
        raw = await _read_bytes(document)
        loop = asyncio.get_running_loop()
        try:
            text, pages = await loop.run_in_executor(None, _pdf_text, raw)
        except (PyPdfError, ValueError, KeyError) as exc:
            raise UnprocessableContentError(
                f"PDF parsing failed for {document.filename}: {exc}",
                remediation="Check the file is a valid, unencrypted PDF",
            ) from exc

        logger.debug(f"[Extractor] {document.filename}: {len(text)} chars from {pages} page(s)")
        return text


class FileTextExtractor(TextExtractor):
    """Chooses the PDF or plain-text extractor from the stored file's suffix."""

    def __init__(
        self,
        pdf: TextExtractor | None = None,
        text: TextExtractor | None = None,
    ) -> None:
        self.pdf = pdf if pdf is not None else PdfTextExtractor()
        self.text = text if text is not None else PlainTextExtractor()

    async def extract(self, document: Document) -> str:
        if Path(document.storage_ref).suffix.lower() == PDF_SUFFIX:
            return await self.pdf.extract(document)
        return await self.text.extract(document)
