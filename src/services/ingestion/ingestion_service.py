"""Orchestrator for the document ingestion pipeline.

Pipeline stages: **extract -> chunk -> persist -> embed -> index**.

The :class:`IngestionService` coordinates five collaborators (extraction
service, chunker, metadata store, embedding provider, vector index)
without any of them knowing about each other.  Every public operation
runs under a per-document lock so that two ingests (or an ingest and a
repair) of the same source never interleave.

Ordering rules that keep the two stores joinable:

    * a chunk record is written (``embedding_pending``) BEFORE its vector
      is upserted, and only marked ``indexed`` afterwards;
    * when a document's content changes, its old vectors are deleted
      BEFORE its old chunk records;
    * the document's content hash is written LAST, so an interrupted
      ingest is redone in full on the next attempt.

A chunk whose embedding or upsert still fails after retries stays
``embedding_pending``; :meth:`IngestionService.reembed_pending` picks it
up later.
"""

from __future__ import annotations

import asyncio
import hashlib
import time
import uuid
from collections import defaultdict
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from src.models.rag import (
    Chunk,
    ChunkCandidate,
    ChunkEmbeddingStatus,
    ChunkStatus,
    CorpusStats,
    Document,
    DocumentDescriptor,
    IngestionResult,
    ReconcileReport,
    RepairReport,
)
from src.services.ingestion.chunker import TextChunker
from src.utils.concurrency import KeyedLock, throttled_gather
from src.utils.errors import EmbeddingPendingError, ExtractionError, InvalidRequestError
from src.utils.retry import TRANSIENT_ERRORS, RetryPolicy, call_with_retry

if TYPE_CHECKING:
    from src.interfaces.embedding_provider import IEmbeddingProvider
    from src.interfaces.metadata_store import IMetadataStore
    from src.interfaces.vector_store_provider import IVectorStoreProvider
    from src.providers.extraction.extraction_service import ExtractionService

logger = structlog.get_logger(logger_name=__name__)

_ID_NAMESPACE = uuid.NAMESPACE_URL


def document_id_for(source_locator: str) -> str:
    """Deterministic document id for a source locator."""
    return str(uuid.uuid5(_ID_NAMESPACE, f"knowchat:document:{source_locator}"))


def chunk_id_for(document_id: str, position: int, text: str) -> str:
    """Deterministic chunk id from document, position and text."""
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return str(uuid.uuid5(_ID_NAMESPACE, f"knowchat:chunk:{document_id}:{position}:{digest}"))


class IngestionService:
    """Turns documents into searchable chunks and keeps the stores consistent.

    Parameters
    ----------
    chunker:
        Splits text into overlapping token windows.
    embedding_provider:
        Generates embedding vectors for chunk text.
    vector_store:
        Stores chunk vectors for similarity search.
    metadata_store:
        System of record for documents and chunk text.
    extraction_service:
        Converts raw bytes to text; required only for descriptors that
        carry ``content`` instead of ``text``.
    retry_policy:
        Timeout and retry limits for embed / index calls.
    concurrency:
        Maximum chunks embedded and indexed in parallel per document.
    """

    def __init__(
        self,
        chunker: TextChunker,
        embedding_provider: IEmbeddingProvider,
        vector_store: IVectorStoreProvider,
        metadata_store: IMetadataStore,
        extraction_service: ExtractionService | None = None,
        retry_policy: RetryPolicy | None = None,
        concurrency: int = 4,
    ) -> None:
        self._chunker = chunker
        self._embedding_provider = embedding_provider
        self._vector_store = vector_store
        self._metadata_store = metadata_store
        self._extraction_service = extraction_service
        self._retry_policy = retry_policy or RetryPolicy()
        self._concurrency = max(1, concurrency)
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(self, descriptor: DocumentDescriptor) -> IngestionResult:
        """Ingest one document.

        Returns
        -------
        IngestionResult
            Per-chunk statuses.  Every chunk is either ``indexed`` or
            ``embedding_pending`` when this returns.

        Raises
        ------
        InvalidRequestError
            If the descriptor is malformed.
        ExtractionError
            If raw content could not be turned into text.
        InvalidConfigurationError
            If the embedding dimension does not match the index.
        """
        start = time.monotonic()
        self._validate(descriptor)
        text = await self._resolve_text(descriptor)
        content_hash = self._content_hash(text)
        document_id = document_id_for(descriptor.source_locator)

        async with self._locks.hold(document_id):
            existing = await self._metadata_store.get_document_by_source(
                descriptor.source_locator
            )

            if existing is not None and existing.content_hash == content_hash:
                return await self._refresh_metadata(existing, descriptor, start)

            if existing is not None:
                # The cleared hash marks the document mid-replacement, so an
                # interrupted replacement is redone by the next ingest.
                document = await self._metadata_store.update_document(
                    existing.model_copy(
                        update={
                            "title": descriptor.title,
                            "project": descriptor.project,
                            "tags": list(descriptor.tags),
                            "content_hash": "",
                        }
                    )
                )
                await self._remove_document_chunks(existing.document_id)
            else:
                document = await self._metadata_store.create_document(
                    Document(
                        document_id=document_id,
                        title=descriptor.title,
                        source_locator=descriptor.source_locator,
                        project=descriptor.project,
                        tags=list(descriptor.tags),
                        content_hash="",
                    )
                )

            candidates = self._chunker.chunk(text)
            chunks = [self._build_chunk(document, c) for c in candidates]
            statuses = await self._persist_and_index(chunks)

            document = await self._metadata_store.update_document(
                document.model_copy(update={"content_hash": content_hash})
            )

        pending = sum(1 for s in statuses if s.status is ChunkStatus.EMBEDDING_PENDING)
        result = IngestionResult(
            document=document,
            chunks=statuses,
            chunks_created=len(chunks),
            chunks_pending=pending,
            unchanged=False,
            total_tokens=sum(c.token_count for c in candidates),
            ingestion_time=round(time.monotonic() - start, 3),
        )
        logger.info(
            "document_ingested",
            document_id=document.document_id,
            source=document.source_locator,
            replaced=existing is not None,
            chunks=result.chunks_created,
            pending=pending,
            tokens=result.total_tokens,
            elapsed_s=result.ingestion_time,
        )
        return result

    async def ingest_file(
        self,
        file_path: str | Path,
        title: str | None = None,
        project: str | None = None,
        tags: list[str] | None = None,
    ) -> IngestionResult:
        """Read a local file and ingest it; the source locator is its ``file://`` URI."""
        path = Path(file_path).resolve()
        try:
            content = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise InvalidRequestError(message=f"Cannot read {path}: {exc}") from exc
        return await self.ingest(
            DocumentDescriptor(
                source_locator=path.as_uri(),
                title=title or path.stem,
                project=project,
                tags=tags or [],
                content=content,
                filename=path.name,
            )
        )

    async def ingest_directory(
        self,
        dir_path: str | Path,
        project: str | None = None,
        tags: list[str] | None = None,
        recursive: bool = True,
    ) -> list[IngestionResult]:
        """Ingest every supported file under *dir_path*.

        Files no extractor supports are skipped; a file that fails
        extraction is logged and skipped without stopping the batch.
        """
        root = Path(dir_path)
        if not root.is_dir():
            raise InvalidRequestError(message=f"Not a directory: {root}")
        pattern = "**/*" if recursive else "*"
        files = sorted(p for p in root.glob(pattern) if p.is_file())

        results: list[IngestionResult] = []
        for fp in files:
            if self._extraction_service is not None:
                try:
                    self._extraction_service.select(fp.name, None)
                except ExtractionError:
                    logger.debug("ingest_file_skipped", file=str(fp), reason="unsupported")
                    continue
            try:
                results.append(await self.ingest_file(fp, project=project, tags=tags))
            except ExtractionError as exc:
                logger.warning("ingest_file_failed", file=str(fp), error=str(exc))

        logger.info(
            "directory_ingested",
            directory=str(root),
            files_found=len(files),
            files_ingested=len(results),
        )
        return results

    async def reembed_pending(self, limit: int | None = None) -> RepairReport:
        """Retry embedding and indexing for every ``embedding_pending`` chunk.

        Chunks are grouped by document and each group is processed under
        that document's lock, after re-reading the records so chunks
        removed or indexed in the meantime are skipped.  Safe to re-run.
        """
        pending = await self._metadata_store.list_pending_chunks(limit=limit)
        by_document: dict[str, list[str]] = defaultdict(list)
        for chunk in pending:
            by_document[chunk.document_id].append(chunk.chunk_id)

        repaired = still_pending = 0
        for document_id, chunk_ids in by_document.items():
            async with self._locks.hold(document_id):
                current = await self._metadata_store.get_chunks(chunk_ids)
                targets = [
                    c for c in current.values() if c.status is ChunkStatus.EMBEDDING_PENDING
                ]
                outcomes = await self._gather_chunks([self._embed_and_index(c) for c in targets])
                for status in outcomes:
                    if status is ChunkStatus.INDEXED:
                        repaired += 1
                    else:
                        still_pending += 1

        report = RepairReport(
            repaired=repaired,
            still_pending=still_pending,
            documents=len(by_document),
        )
        logger.info(
            "reembed_pass_complete",
            repaired=report.repaired,
            still_pending=report.still_pending,
            documents=report.documents,
        )
        return report

    async def reconcile_orphans(self) -> ReconcileReport:
        """Delete vectors whose chunk record no longer exists."""
        # Vector ids are listed before record ids: records are always
        # written before their vectors, so a live chunk is never mistaken
        # for an orphan.
        vector_ids = await call_with_retry(
            self._vector_store.list_ids,
            policy=self._retry_policy,
            operation="list_vector_ids",
            provider_name=self._vector_store.get_provider_name(),
        )
        record_ids = await self._metadata_store.list_chunk_ids()
        orphans = sorted(set(vector_ids) - record_ids)
        if orphans:
            await call_with_retry(
                lambda: self._vector_store.delete_vectors(orphans),
                policy=self._retry_policy,
                operation="delete_orphans",
                provider_name=self._vector_store.get_provider_name(),
            )
        logger.info(
            "orphan_reconciliation_complete",
            vectors_scanned=len(vector_ids),
            orphans_deleted=len(orphans),
        )
        return ReconcileReport(vectors_scanned=len(vector_ids), orphans_deleted=orphans)

    async def get_corpus_stats(self) -> CorpusStats:
        """Counts across the metadata store and the vector index."""
        stats = await self._metadata_store.get_stats()
        vectors = await call_with_retry(
            self._vector_store.count,
            policy=self._retry_policy,
            operation="count_vectors",
            provider_name=self._vector_store.get_provider_name(),
        )
        return CorpusStats(
            documents=stats.get("documents", 0),
            chunks=stats.get("chunks", 0),
            pending_chunks=stats.get("pending_chunks", 0),
            vectors=vectors,
            query_logs=stats.get("query_logs", 0),
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(descriptor: DocumentDescriptor) -> None:
        if not descriptor.source_locator.strip():
            raise InvalidRequestError(message="source_locator must not be empty")
        if not descriptor.title.strip():
            raise InvalidRequestError(message="title must not be empty")
        if (descriptor.text is None) == (descriptor.content is None):
            raise InvalidRequestError(message="Provide exactly one of 'text' or 'content'")

    async def _resolve_text(self, descriptor: DocumentDescriptor) -> str:
        if descriptor.text is not None:
            return descriptor.text
        if self._extraction_service is None:
            raise ExtractionError(message="No extraction service configured for raw content")
        return await self._extraction_service.extract(
            descriptor.content or b"",
            filename=descriptor.filename,
            content_type=descriptor.content_type,
        )

    def _content_hash(self, text: str) -> str:
        """Hash of the text plus chunking parameters.

        Changing the chunk size or overlap therefore re-chunks a document
        even when its text is unchanged.
        """
        h = hashlib.sha256()
        h.update(
            f"{self._chunker.max_tokens}:{self._chunker.overlap_fraction}\n".encode("utf-8")
        )
        h.update(text.encode("utf-8"))
        return h.hexdigest()

    async def _refresh_metadata(
        self,
        existing: Document,
        descriptor: DocumentDescriptor,
        start: float,
    ) -> IngestionResult:
        document = existing
        changed = (
            existing.title != descriptor.title
            or existing.project != descriptor.project
            or existing.tags != list(descriptor.tags)
        )
        if changed:
            document = await self._metadata_store.update_document(
                existing.model_copy(
                    update={
                        "title": descriptor.title,
                        "project": descriptor.project,
                        "tags": list(descriptor.tags),
                    }
                )
            )
            await self._metadata_store.update_chunk_metadata(
                document.document_id,
                {
                    "title": descriptor.title,
                    "project": descriptor.project,
                    "tags": list(descriptor.tags),
                },
            )

        chunks = await self._metadata_store.get_chunks_for_document(document.document_id)
        statuses = [ChunkEmbeddingStatus(chunk_id=c.chunk_id, status=c.status) for c in chunks]
        logger.info(
            "document_unchanged",
            document_id=document.document_id,
            metadata_refreshed=changed,
            chunks=len(chunks),
        )
        return IngestionResult(
            document=document,
            chunks=statuses,
            chunks_created=0,
            chunks_pending=sum(
                1 for s in statuses if s.status is ChunkStatus.EMBEDDING_PENDING
            ),
            unchanged=True,
            total_tokens=sum(int(c.metadata.get("token_count", 0)) for c in chunks),
            ingestion_time=round(time.monotonic() - start, 3),
        )

    async def _remove_document_chunks(self, document_id: str) -> None:
        """Delete a document's vectors, then its chunk records.

        Records are demoted to ``embedding_pending`` first: if the record
        delete fails afterwards, no ``indexed`` record is left without a
        vector.
        """
        old_chunks = await self._metadata_store.get_chunks_for_document(document_id)
        if not old_chunks:
            return
        old_ids = [c.chunk_id for c in old_chunks]
        for chunk in old_chunks:
            if chunk.status is ChunkStatus.INDEXED:
                await self._metadata_store.set_chunk_status(
                    chunk.chunk_id, ChunkStatus.EMBEDDING_PENDING
                )
        await call_with_retry(
            lambda: self._vector_store.delete_vectors(old_ids),
            policy=self._retry_policy,
            operation="delete_vectors",
            provider_name=self._vector_store.get_provider_name(),
        )
        await self._metadata_store.delete_chunks_for_document(document_id)
        logger.info("document_chunks_replaced", document_id=document_id, removed=len(old_ids))

    @staticmethod
    def _build_chunk(document: Document, candidate: ChunkCandidate) -> Chunk:
        return Chunk(
            chunk_id=chunk_id_for(document.document_id, candidate.position, candidate.text),
            document_id=document.document_id,
            position=candidate.position,
            text=candidate.text,
            metadata={
                "title": document.title,
                "project": document.project,
                "tags": list(document.tags),
                "position": candidate.position,
                "token_count": candidate.token_count,
                "start_token": candidate.start_token,
                "end_token": candidate.end_token,
            },
            status=ChunkStatus.EMBEDDING_PENDING,
        )

    async def _persist_and_index(self, chunks: list[Chunk]) -> list[ChunkEmbeddingStatus]:
        async def _one(chunk: Chunk) -> ChunkStatus:
            stored = await self._metadata_store.upsert_chunk(chunk)
            return await self._embed_and_index(stored)

        outcomes = await self._gather_chunks([_one(c) for c in chunks])
        return [
            ChunkEmbeddingStatus(chunk_id=chunk.chunk_id, status=status)
            for chunk, status in zip(chunks, outcomes, strict=True)
        ]

    async def _gather_chunks(self, coros: list[Any]) -> list[ChunkStatus]:
        """Run chunk coroutines with bounded parallelism.

        All coroutines run to completion; the first non-transient failure
        (e.g. a dimension mismatch) is re-raised afterwards.
        """
        semaphore = asyncio.Semaphore(self._concurrency)
        results = await throttled_gather(coros, semaphore=semaphore, return_exceptions=True)
        for outcome in results:
            if isinstance(outcome, BaseException):
                raise outcome
        return results  # type: ignore[return-value]

    async def _embed_and_index(self, chunk: Chunk) -> ChunkStatus:
        """Embed and upsert one persisted chunk; mark it indexed on success."""
        try:
            await self._index_chunk(chunk)
        except EmbeddingPendingError as exc:
            logger.warning(
                "chunk_embedding_pending",
                chunk_id=chunk.chunk_id,
                document_id=chunk.document_id,
                provider=exc.provider_name,
                error=exc.message,
            )
            return ChunkStatus.EMBEDDING_PENDING

        await self._metadata_store.set_chunk_status(chunk.chunk_id, ChunkStatus.INDEXED)
        return ChunkStatus.INDEXED

    async def _index_chunk(self, chunk: Chunk) -> None:
        """Embed *chunk* and upsert its vector.

        Raises
        ------
        EmbeddingPendingError
            If the embedder or the index is still failing after retries.
        """
        try:
            vector = await call_with_retry(
                lambda: self._embedding_provider.embed_single(chunk.text),
                policy=self._retry_policy,
                operation="embed",
                provider_name=self._embedding_provider.get_provider_name(),
            )
            await call_with_retry(
                lambda: self._vector_store.upsert_vector(
                    chunk.chunk_id, vector, self._vector_metadata(chunk)
                ),
                policy=self._retry_policy,
                operation="upsert_vector",
                provider_name=self._vector_store.get_provider_name(),
            )
        except TRANSIENT_ERRORS as exc:
            raise EmbeddingPendingError(
                message=f"Chunk {chunk.chunk_id} not indexed: {exc.message}",
                provider_name=exc.provider_name,
            ) from exc

    @staticmethod
    def _vector_metadata(chunk: Chunk) -> dict[str, Any]:
        return {
            "document_id": chunk.document_id,
            "position": chunk.position,
            "project": chunk.metadata.get("project"),
            "tags": chunk.metadata.get("tags") or [],
        }
