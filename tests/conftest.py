"""
Shared test fixtures.

Provides: fake embedding / language-model clients, a memory-only store,
an engine config with logging to stderr only, and factories for text and PDF files.
"""
from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from secondbrain.config import RAGConfig
from secondbrain.storage.local_store import LocalStore

from tests.fakes import FakeEmbedder, FakeLLM, minimal_pdf


@pytest.fixture
def config(tmp_path: Path) -> RAGConfig:
    return RAGConfig(data_dir=str(tmp_path / "store"), log_file=None)


@pytest.fixture
def store() -> LocalStore:
    return LocalStore()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def write_file(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write a text file under tmp_path and return its path."""

    def _write(name: str, content: str) -> Path:
        path = tmp_path / "docs" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def write_pdf(tmp_path: Path) -> Callable[..., Path]:
    """Write a PDF with one text line per page under tmp_path and return its path."""

    def _write(name: str, *page_texts: str) -> Path:
        path = tmp_path / "docs" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(minimal_pdf(*page_texts))
        return path

    return _write
