"""Integration tests for the ingestion pipeline over in-memory stores.

Covers the join between the metadata store and the vector index: every
chunk is either indexed with a vector or left ``embedding_pending``
without one, re-ingestion replaces chunks cleanly, and the maintenance
passes repair what a failed run left behind.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from src.models.rag import ChunkStatus, DocumentDescriptor
from src.services.ingestion.chunker import TextChunker
from src.services.ingestion.ingestion_service import IngestionService, document_id_for
from src.utils.errors import (
    ExtractionError,
    InvalidConfigurationError,
    InvalidRequestError,
    ProviderUnavailableError,
)
from tests.conftest import InMemoryMetadataStore, InMemoryVectorStore

pytestmark = pytest.mark.integration


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _words(n: int, prefix: str = "w") -> str:
    return " ".join(f"{prefix}{i}" for i in range(n))


def _descriptor(text: str, source: str = "file:///doc.txt", **kw) -> DocumentDescriptor:
    return DocumentDescriptor(
        source_locator=source,
        title=kw.pop("title", "Doc"),
        text=text,
        **kw,
    )


def _assert_stores_joined(
    metadata_store: InMemoryMetadataStore, vector_store: InMemoryVectorStore
) -> None:
    """Indexed chunks have vectors; pending chunks do not; no stray vectors."""
    for chunk_id, chunk in metadata_store.chunks.items():
        if chunk.status is ChunkStatus.INDEXED:
            assert chunk_id in vector_store.vectors
        else:
            assert chunk_id not in vector_store.vectors
    assert set(vector_store.vectors) <= set(metadata_store.chunks)


# ---------------------------------------------------------------------------
# Ingest
# ---------------------------------------------------------------------------


class TestIngest:
    @pytest.mark.asyncio
    async def test_long_document_becomes_three_indexed_chunks(
        self, ingestion_service: IngestionService, metadata_store, vector_store
    ) -> None:
        result = await ingestion_service.ingest(_descriptor(_words(2400)))

        assert result.chunks_created == 3
        assert result.chunks_pending == 0
        assert result.total_tokens == 1000 + 1000 + 800
        assert [s.status for s in result.chunks] == [ChunkStatus.INDEXED] * 3

        chunks = await metadata_store.get_chunks_for_document(result.document.document_id)
        assert [c.metadata["start_token"] for c in chunks] == [0, 800, 1600]
        assert chunks[1].text.split()[0] == "w800"
        assert result.document.content_hash
        _assert_stores_joined(metadata_store, vector_store)

    @pytest.mark.asyncio
    async def test_document_id_is_deterministic(self, ingestion_service) -> None:
        result = await ingestion_service.ingest(_descriptor("hello", source="file:///x"))
        assert result.document.document_id == document_id_for("file:///x")

    @pytest.mark.asyncio
    async def test_vector_metadata(self, ingestion_service, vector_store) -> None:
        await ingestion_service.ingest(
            _descriptor("tagged words", project="hiring", tags=["cv", "2024"])
        )
        (meta,) = vector_store.metadata.values()
        assert meta["project"] == "hiring"
        assert meta["tags"] == ["cv", "2024"]
        assert meta["position"] == 0

    @pytest.mark.asyncio
    async def test_empty_text_creates_document_without_chunks(
        self, ingestion_service, metadata_store
    ) -> None:
        result = await ingestion_service.ingest(_descriptor("   \n  "))
        assert result.chunks_created == 0
        assert metadata_store.chunks == {}
        assert result.document.document_id in metadata_store.documents

    @pytest.mark.asyncio
    async def test_embedder_outage_leaves_chunks_pending(
        self, ingestion_service, embedder, metadata_store, vector_store
    ) -> None:
        embedder.fail_always = True

        result = await ingestion_service.ingest(_descriptor(_words(1500)))

        assert result.chunks_created == 2
        assert result.chunks_pending == 2
        assert vector_store.vectors == {}
        assert all(c.status is ChunkStatus.EMBEDDING_PENDING for c in metadata_store.chunks.values())
        _assert_stores_joined(metadata_store, vector_store)

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(
        self, ingestion_service, embedder, metadata_store
    ) -> None:
        embedder.fail_times = 1
        result = await ingestion_service.ingest(_descriptor("retry me"))
        assert result.chunks_pending == 0

    @pytest.mark.asyncio
    async def test_index_outage_leaves_chunk_pending(
        self, ingestion_service, vector_store, metadata_store
    ) -> None:
        vector_store.fail_upserts = 10
        result = await ingestion_service.ingest(_descriptor("index down"))
        assert result.chunks_pending == 1
        _assert_stores_joined(metadata_store, vector_store)

    @pytest.mark.asyncio
    async def test_dimension_mismatch_is_fatal(
        self, embedder, metadata_store, fast_retry
    ) -> None:
        service = IngestionService(
            chunker=TextChunker(),
            embedding_provider=embedder,
            vector_store=InMemoryVectorStore(dimension=32),
            metadata_store=metadata_store,
            retry_policy=fast_retry,
        )
        with pytest.raises(InvalidConfigurationError):
            await service.ingest(_descriptor("some words"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "descriptor",
        [
            DocumentDescriptor(source_locator=" ", title="T", text="x"),
            DocumentDescriptor(source_locator="file:///a", title=" ", text="x"),
            DocumentDescriptor(source_locator="file:///a", title="T"),
            DocumentDescriptor(source_locator="file:///a", title="T", text="x", content=b"x"),
        ],
    )
    async def test_invalid_descriptor(self, ingestion_service, descriptor) -> None:
        with pytest.raises(InvalidRequestError):
            await ingestion_service.ingest(descriptor)


# ---------------------------------------------------------------------------
# Re-ingestion
# ---------------------------------------------------------------------------


class TestReingest:
    @pytest.mark.asyncio
    async def test_changed_text_replaces_chunks(
        self, ingestion_service, metadata_store, vector_store
    ) -> None:
        first = await ingestion_service.ingest(_descriptor(_words(1500, "old")))
        old_ids = {s.chunk_id for s in first.chunks}

        second = await ingestion_service.ingest(_descriptor(_words(300, "new")))

        assert second.document.document_id == first.document.document_id
        assert second.unchanged is False
        new_ids = {s.chunk_id for s in second.chunks}
        assert old_ids.isdisjoint(new_ids)
        assert set(metadata_store.chunks) == new_ids
        assert set(vector_store.vectors) == new_ids
        assert len(metadata_store.documents) == 1

    @pytest.mark.asyncio
    async def test_unchanged_text_refreshes_metadata_only(
        self, ingestion_service, embedder, metadata_store
    ) -> None:
        first = await ingestion_service.ingest(_descriptor("same text", title="Old"))
        calls = embedder.calls

        second = await ingestion_service.ingest(
            _descriptor("same text", title="New", project="p", tags=["t"])
        )

        assert second.unchanged is True
        assert second.chunks_created == 0
        assert [s.chunk_id for s in second.chunks] == [s.chunk_id for s in first.chunks]
        assert embedder.calls == calls
        assert second.document.title == "New"
        (chunk,) = metadata_store.chunks.values()
        assert chunk.metadata["title"] == "New"
        assert chunk.metadata["tags"] == ["t"]

    @pytest.mark.asyncio
    async def test_interrupted_ingest_is_redone(
        self, ingestion_service, metadata_store, vector_store, embedder
    ) -> None:
        embedder.fail_always = True
        await ingestion_service.ingest(_descriptor("half done"))
        # The run completed with pending chunks, so the hash was written.
        doc = next(iter(metadata_store.documents.values()))
        # Simulate a crash before the hash write.
        metadata_store.documents[doc.document_id] = doc.model_copy(update={"content_hash": ""})

        embedder.fail_always = False
        result = await ingestion_service.ingest(_descriptor("half done"))

        assert result.unchanged is False
        assert result.chunks_pending == 0
        _assert_stores_joined(metadata_store, vector_store)

    @pytest.mark.asyncio
    async def test_failed_record_delete_during_replacement_recovers(
        self, ingestion_service, metadata_store, vector_store
    ) -> None:
        await ingestion_service.ingest(_descriptor("alpha beta gamma"))

        with patch.object(
            metadata_store,
            "delete_chunks_for_document",
            AsyncMock(side_effect=ProviderUnavailableError(message="db locked")),
        ):
            with pytest.raises(ProviderUnavailableError):
                await ingestion_service.ingest(_descriptor("delta epsilon"))

        # Old vectors are gone and their records are no longer indexed.
        assert vector_store.vectors == {}
        assert {c.status for c in metadata_store.chunks.values()} == {
            ChunkStatus.EMBEDDING_PENDING
        }
        _assert_stores_joined(metadata_store, vector_store)

        report = await ingestion_service.reembed_pending()
        assert report.repaired == 1
        _assert_stores_joined(metadata_store, vector_store)

        result = await ingestion_service.ingest(_descriptor("alpha beta gamma"))
        assert result.unchanged is False
        assert result.chunks_pending == 0
        assert len(metadata_store.chunks) == 1
        _assert_stores_joined(metadata_store, vector_store)

    @pytest.mark.asyncio
    async def test_concurrent_reingests_of_one_document_are_serialized(
        self, ingestion_service, metadata_store, vector_store
    ) -> None:
        versions = [_words(1500, prefix="a"), _words(1500, prefix="b")]

        results = await asyncio.gather(
            *(ingestion_service.ingest(_descriptor(versions[i % 2])) for i in range(6))
        )

        assert len({r.document.document_id for r in results}) == 1
        assert len(metadata_store.documents) == 1
        assert len(metadata_store.chunks) == 2
        prefixes = {c.text[0] for c in metadata_store.chunks.values()}
        assert len(prefixes) == 1
        assert set(vector_store.vectors) == set(metadata_store.chunks)
        assert all(c.status is ChunkStatus.INDEXED for c in metadata_store.chunks.values())
        _assert_stores_joined(metadata_store, vector_store)


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_reembed_pending_repairs(
        self, ingestion_service, embedder, metadata_store, vector_store
    ) -> None:
        embedder.fail_always = True
        await ingestion_service.ingest(_descriptor(_words(1500)))
        await ingestion_service.ingest(_descriptor("second doc", source="file:///b"))

        embedder.fail_always = False
        report = await ingestion_service.reembed_pending()

        assert (report.repaired, report.still_pending, report.documents) == (3, 0, 2)
        assert await metadata_store.list_pending_chunks() == []
        _assert_stores_joined(metadata_store, vector_store)

        again = await ingestion_service.reembed_pending()
        assert (again.repaired, again.still_pending) == (0, 0)

    @pytest.mark.asyncio
    async def test_reembed_respects_limit(self, ingestion_service, embedder) -> None:
        embedder.fail_always = True
        await ingestion_service.ingest(_descriptor(_words(1500)))
        embedder.fail_always = False

        report = await ingestion_service.reembed_pending(limit=1)
        assert report.repaired == 1

    @pytest.mark.asyncio
    async def test_reembed_still_failing(self, ingestion_service, embedder) -> None:
        embedder.fail_always = True
        await ingestion_service.ingest(_descriptor("stuck"))
        report = await ingestion_service.reembed_pending()
        assert (report.repaired, report.still_pending) == (0, 1)

    @pytest.mark.asyncio
    async def test_reconcile_deletes_only_orphans(
        self, ingestion_service, vector_store, embedder
    ) -> None:
        result = await ingestion_service.ingest(_descriptor("kept words"))
        vector_store.vectors["orphan-1"] = embedder.vector_for("x")

        report = await ingestion_service.reconcile_orphans()

        assert report.vectors_scanned == 2
        assert report.orphans_deleted == ["orphan-1"]
        assert set(vector_store.vectors) == {result.chunks[0].chunk_id}

    @pytest.mark.asyncio
    async def test_corpus_stats(self, ingestion_service, embedder) -> None:
        await ingestion_service.ingest(_descriptor(_words(1500)))
        embedder.fail_always = True
        await ingestion_service.ingest(_descriptor("pending", source="file:///p"))

        stats = await ingestion_service.get_corpus_stats()
        assert (stats.documents, stats.chunks, stats.pending_chunks, stats.vectors) == (
            2,
            3,
            1,
            2,
        )


# ---------------------------------------------------------------------------
# Files and directories
# ---------------------------------------------------------------------------


class TestFiles:
    @pytest.mark.asyncio
    async def test_ingest_file(self, ingestion_service, tmp_path: Path) -> None:
        path = tmp_path / "notes.md"
        path.write_text("# Notes\n\nCaching notes.", encoding="utf-8")

        result = await ingestion_service.ingest_file(path, project="p", tags=["t"])

        assert result.document.title == "notes"
        assert result.document.source_locator == path.resolve().as_uri()
        assert result.chunks_created == 1

    @pytest.mark.asyncio
    async def test_missing_file(self, ingestion_service, tmp_path: Path) -> None:
        with pytest.raises(InvalidRequestError):
            await ingestion_service.ingest_file(tmp_path / "absent.txt")

    @pytest.mark.asyncio
    async def test_unsupported_file(self, ingestion_service, tmp_path: Path) -> None:
        path = tmp_path / "blob.bin"
        path.write_bytes(b"\x00")
        with pytest.raises(ExtractionError):
            await ingestion_service.ingest_file(path)

    @pytest.mark.asyncio
    async def test_ingest_directory(self, ingestion_service, tmp_path: Path) -> None:
        (tmp_path / "a.txt").write_text("alpha", encoding="utf-8")
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "b.md").write_text("beta", encoding="utf-8")
        (tmp_path / "sub" / "broken.pdf").write_bytes(b"not a pdf")
        (tmp_path / "image.png").write_bytes(b"\x89PNG")

        results = await ingestion_service.ingest_directory(tmp_path)
        assert sorted(r.document.title for r in results) == ["a", "b"]

        shallow = await ingestion_service.ingest_directory(tmp_path, recursive=False)
        assert [r.document.title for r in shallow] == ["a"]
        assert shallow[0].unchanged is True

    @pytest.mark.asyncio
    async def test_ingest_directory_rejects_file(self, ingestion_service, tmp_path) -> None:
        path = tmp_path / "a.txt"
        path.write_text("x", encoding="utf-8")
        with pytest.raises(InvalidRequestError):
            await ingestion_service.ingest_directory(path)
