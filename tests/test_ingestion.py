"""Unit tests for document ingestion."""
import asyncio

import pytest

from secondbrain.errors import (
    ConflictError,
    DependencyUnavailableError,
    NotFoundError,
    UnprocessableContentError,
)
from secondbrain.ingestion.coordinator import IngestionCoordinator
from secondbrain.ingestion.extractor import FileTextExtractor

from tests.fakes import FakeEmbedder


def _coordinator(store, config, embedder=None):
    return IngestionCoordinator(store, FileTextExtractor(), embedder or FakeEmbedder(), config)


def _register(store, path):
    return store.add_document(path.name, path.stat().st_size, str(path))


class TestIngest:
    @pytest.mark.asyncio
    async def test_chunks_embeds_and_persists(self, store, config, write_file):
        doc = _register(store, write_file("long.txt", "abcdefghij" * 200))
        embedder = FakeEmbedder()

        result = await _coordinator(store, config, embedder).ingest(doc.id)

        assert result.document_id == doc.id
        assert result.chunks_created == 2
        assert result.embeddings_created == 2
        assert result.model == "fake-embed"
        assert store.count_fragments(doc.id) == 2
        assert store.integrity_report().ok
        assert [len(t) for t in embedder.calls[0]] == [1500, 700]

    @pytest.mark.asyncio
    async def test_batches_follow_batch_size(self, store, config, write_file):
        config = config.model_copy(update={"chunk_size": 100, "chunk_overlap": 0})
        doc = _register(store, write_file("many.txt", "z" * 1000))
        embedder = FakeEmbedder(batch_size=4)

        result = await _coordinator(store, config, embedder).ingest(doc.id)

        assert result.chunks_created == 10
        assert [len(batch) for batch in embedder.calls] == [4, 4, 2]

    @pytest.mark.asyncio
    async def test_second_ingest_is_conflict_and_changes_nothing(self, store, config, write_file):
        doc = _register(store, write_file("a.txt", "some content " * 50))
        coordinator = _coordinator(store, config)
        await coordinator.ingest(doc.id)
        before = store.integrity_report()

        with pytest.raises(ConflictError) as exc_info:
            await coordinator.ingest(doc.id)

        assert exc_info.value.remediation
        assert store.integrity_report() == before

    @pytest.mark.asyncio
    async def test_concurrent_ingests_of_one_document(self, store, config, write_file):
        doc = _register(store, write_file("a.txt", "concurrent content " * 100))
        coordinator = _coordinator(store, config)

        results = await asyncio.gather(
            coordinator.ingest(doc.id), coordinator.ingest(doc.id), return_exceptions=True
        )

        assert sum(isinstance(r, ConflictError) for r in results) == 1
        assert store.integrity_report().fragments == 2

    @pytest.mark.asyncio
    async def test_embedding_failure_leaves_no_fragments(self, store, config, write_file):
        doc = _register(store, write_file("a.txt", "text " * 100))
        failing = FakeEmbedder(error=DependencyUnavailableError("down", remediation="ollama serve"))

        with pytest.raises(DependencyUnavailableError):
            await _coordinator(store, config, failing).ingest(doc.id)

        assert store.count_fragments() == 0
        assert not store.is_ingested(doc.id)

        # A retry once the provider is back succeeds
        result = await _coordinator(store, config).ingest(doc.id)
        assert result.chunks_created == 1

    @pytest.mark.asyncio
    async def test_unknown_document(self, store, config):
        with pytest.raises(NotFoundError):
            await _coordinator(store, config).ingest(404)

    @pytest.mark.asyncio
    async def test_missing_file(self, store, config, tmp_path):
        doc = store.add_document("gone.txt", 10, str(tmp_path / "gone.txt"))

        with pytest.raises(NotFoundError):
            await _coordinator(store, config).ingest(doc.id)

    @pytest.mark.asyncio
    async def test_blank_text_is_unprocessable(self, store, config, write_file):
        doc = _register(store, write_file("blank.txt", "   \n\n\t  "))

        with pytest.raises(UnprocessableContentError):
            await _coordinator(store, config).ingest(doc.id)
        assert not store.is_ingested(doc.id)

    @pytest.mark.asyncio
    async def test_undecodable_file_is_unprocessable(self, store, config, tmp_path):
        path = tmp_path / "binary.txt"
        path.write_bytes(b"\xff\xfe\x00\x81binary")
        doc = _register(store, path)

        with pytest.raises(UnprocessableContentError):
            await _coordinator(store, config).ingest(doc.id)


class TestPdfIngest:
    @pytest.mark.asyncio
    async def test_pdf_pages_become_fragments(self, store, config, write_pdf):
        doc = _register(store, write_pdf("plan.pdf", "Launch is on Friday.", "Venue is the roof."))
        embedder = FakeEmbedder()

        result = await _coordinator(store, config, embedder).ingest(doc.id)

        assert result.chunks_created == 1
        [fragment] = store.all_fragments()
        assert "Launch is on Friday." in fragment.text
        assert "Venue is the roof." in fragment.text
        assert fragment.text.index("Launch") < fragment.text.index("Venue")
        assert store.integrity_report().ok

    @pytest.mark.asyncio
    async def test_pdf_without_text_layer_is_unprocessable(self, store, config, write_pdf):
        doc = _register(store, write_pdf("scan.pdf", ""))

        with pytest.raises(UnprocessableContentError):
            await _coordinator(store, config).ingest(doc.id)
        assert not store.is_ingested(doc.id)

    @pytest.mark.asyncio
    async def test_corrupt_pdf_is_unprocessable(self, store, config, tmp_path):
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"this is not a pdf at all")
        doc = _register(store, path)

        with pytest.raises(UnprocessableContentError) as exc_info:
            await _coordinator(store, config).ingest(doc.id)
        assert exc_info.value.remediation
