"""Ingest pipeline for indexing source documents.

Orchestrates:
- Document loading
- Structure-aware chunking and categorization
- Embedding generation (skipped for chunks already in the store)
- Vector upsert into the per-category collections
- Cleanup of chunks superseded by a newer version of their document
"""
import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import structlog

from cardano_rag import config, db
from cardano_rag.config import PipelineSettings
from cardano_rag.rag.categorizer import CATEGORIES
from cardano_rag.rag.chunker import Chunk, TextChunker
from cardano_rag.rag.embedder import Embedder
from cardano_rag.rag.errors import (
    EmbeddingError,
    EmbeddingProviderUnavailable,
    VectorStoreUnavailable,
)
from cardano_rag.rag.loader import Document, DocumentLoader
from cardano_rag.rag.md_parser import MarkdownParser
from cardano_rag.rag.retrying import async_retrying
from cardano_rag.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()

EMBEDDED = "embedded"
REUSED = "reused"
FAILED = "failed"


@dataclass
class DocumentResult:
    """Outcome of ingesting one document."""

    doc_id: str
    chunks_created: int = 0
    chunks_embedded: int = 0
    chunks_reused: int = 0
    chunks_failed: int = 0
    chunks_removed: int = 0


@dataclass
class IngestStats:
    """Counters for an ingestion run."""

    documents_processed: int = 0
    documents_failed: int = 0
    documents_removed: int = 0
    chunks_created: int = 0
    chunks_embedded: int = 0
    chunks_reused: int = 0
    chunks_failed: int = 0
    chunks_removed: int = 0
    failed_documents: List[str] = field(default_factory=list)

    def add(self, result: DocumentResult) -> None:
        self.documents_processed += 1
        self.chunks_created += result.chunks_created
        self.chunks_embedded += result.chunks_embedded
        self.chunks_reused += result.chunks_reused
        self.chunks_failed += result.chunks_failed
        self.chunks_removed += result.chunks_removed

    def record_failure(self, doc_id: str) -> None:
        self.documents_failed += 1
        self.failed_documents.append(doc_id)

    @property
    def failures(self) -> int:
        return self.documents_failed + self.chunks_failed

    def summary(self) -> str:
        return (
            f"{self.documents_processed} documents processed, "
            f"{self.chunks_embedded} chunks embedded, "
            f"{self.failures} failures (see log)"
        )

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class IngestPipeline:
    """Pipeline for ingesting source documents into the vector store."""

    def __init__(
        self,
        source_dir: Path = None,
        embedder: Optional[Embedder] = None,
        vector_store: Optional[FAISSVectorStore] = None,
        chunker: Optional[TextChunker] = None,
        settings: Optional[PipelineSettings] = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            source_dir: Directory containing source documents (default from config)
            embedder: Embedder (built from settings if not provided)
            vector_store: Vector store (default index directory if not provided)
            chunker: Chunker (built from settings if not provided)
            settings: Pipeline tunables (defaults from config)
        """
        self.settings = settings or PipelineSettings()
        self.source_dir = Path(source_dir or config.SOURCE_DIR)

        self.loader = DocumentLoader(self.source_dir)
        self.chunker = chunker or TextChunker(
            chunk_size=self.settings.max_chunk_size,
            chunk_overlap=self.settings.overlap_size,
        )
        self.embedder = embedder or Embedder(
            max_attempts=self.settings.retry_count,
            max_concurrency=self.settings.embedding_concurrency,
            backoff_initial=self.settings.retry_initial_delay,
            backoff_max=self.settings.retry_max_delay,
        )
        self.vector_store = vector_store or FAISSVectorStore(
            embedding_model=self.embedder.model
        )

        logger.info(
            "ingest_pipeline_initialized",
            source_dir=str(self.source_dir),
            embedding_model=self.embedder.model,
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
        )

    async def ensure_collections(self) -> Optional[int]:
        """Create one collection per category when the dimension is known.

        Returns:
            The embedding dimension, or None if the provider could not be
            probed (collections are then created on first upsert)
        """
        try:
            dimension = await self.embedder.detect_dimension()
        except (EmbeddingProviderUnavailable, EmbeddingError) as e:
            logger.warning("collection_creation_deferred", error=str(e))
            return None

        for name in CATEGORIES:
            await self.vector_store.create_collection(name, dimension)
        return dimension

    def build_payload(self, document: Document, chunk: Chunk) -> Dict[str, Any]:
        """Payload stored next to a chunk's vector."""
        return {
            "chunk_id": chunk.chunk_id,
            "doc_id": chunk.doc_id,
            "text": chunk.text,
            "category": chunk.category,
            "chunk_index": chunk.chunk_index,
            "char_start": chunk.char_start,
            "char_end": chunk.char_end,
            "size": chunk.size,
            "overlap": chunk.overlap,
            "contains_code": chunk.contains_code,
            "mentions_technology": chunk.mentions_technology,
            "heading_context": chunk.heading_context,
            "metadata": MarkdownParser.payload_metadata(document.frontmatter),
        }

    async def _upsert(self, collection: str, chunk_id: str, vector, payload) -> None:
        retrying = async_retrying(
            "upsert",
            (VectorStoreUnavailable,),
            attempts=self.settings.retry_count,
            initial_delay=self.settings.retry_initial_delay,
            max_delay=self.settings.retry_max_delay,
        )
        async for attempt in retrying:
            with attempt:
                await self.vector_store.upsert(collection, chunk_id, vector, payload)

    async def _index_chunk(self, document: Document, chunk: Chunk) -> str:
        store = self.vector_store
        collection = chunk.category
        payload = self.build_payload(document, chunk)

        if store.contains(collection, chunk.chunk_id):
            if store.get_payload(collection, chunk.chunk_id) == payload:
                return REUSED
            vector = store.get_vector(collection, chunk.chunk_id)
            status = REUSED
        else:
            try:
                vector = await self.embedder.embed(chunk.text)
            except (EmbeddingProviderUnavailable, EmbeddingError, ValueError) as e:
                logger.error(
                    "chunk_embedding_failed",
                    doc_id=chunk.doc_id,
                    chunk_index=chunk.chunk_index,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return FAILED
            status = EMBEDDED

        try:
            await self._upsert(collection, chunk.chunk_id, vector, payload)
        except (VectorStoreUnavailable, ValueError) as e:
            logger.error(
                "chunk_upsert_failed",
                doc_id=chunk.doc_id,
                chunk_index=chunk.chunk_index,
                collection=collection,
                error=str(e),
            )
            return FAILED

        return status

    async def ingest_document(self, document: Document) -> DocumentResult:
        """Index one document and drop the chunks its previous version left behind.

        Args:
            document: Loaded document

        Returns:
            DocumentResult with per-chunk counts
        """
        previous = db.get_document(document.doc_id)
        previous_map: Dict[str, str] = previous["chunk_map"] if previous else {}

        chunks = self.chunker.chunk_document(document)
        result = DocumentResult(doc_id=document.doc_id, chunks_created=len(chunks))

        if not chunks:
            logger.warning("no_chunks_created", doc_id=document.doc_id)

        statuses = await asyncio.gather(
            *(self._index_chunk(document, chunk) for chunk in chunks)
        )

        current_map = {chunk.chunk_id: chunk.category for chunk in chunks}
        indexed_map = {}
        for chunk, status in zip(chunks, statuses):
            if status == EMBEDDED:
                result.chunks_embedded += 1
            elif status == REUSED:
                result.chunks_reused += 1
            else:
                result.chunks_failed += 1
                # The previous point for this chunk, if any, is still valid
                if previous_map.get(chunk.chunk_id) != chunk.category:
                    continue
            indexed_map[chunk.chunk_id] = chunk.category

        stale: Dict[str, List[str]] = {}
        for chunk_id, collection in previous_map.items():
            if current_map.get(chunk_id) != collection:
                stale.setdefault(collection, []).append(chunk_id)
        for collection, chunk_ids in stale.items():
            result.chunks_removed += await self.vector_store.delete(collection, chunk_ids)

        db.upsert_document(
            doc_id=document.doc_id,
            content_hash=document.content_hash,
            last_modified=document.last_modified,
            chunk_map=indexed_map,
        )

        logger.info(
            "file_ingested",
            doc_id=document.doc_id,
            chunks_created=result.chunks_created,
            chunks_embedded=result.chunks_embedded,
            chunks_reused=result.chunks_reused,
            chunks_failed=result.chunks_failed,
            chunks_removed=result.chunks_removed,
        )
        return result

    async def ingest_file(self, file_path: Path) -> DocumentResult:
        """Load and index a single file.

        Raises:
            DocumentIOError: If the file cannot be read
        """
        document = self.loader.load_file(file_path)
        return await self.ingest_document(document)

    async def remove_document(self, doc_id: str) -> int:
        """Delete every indexed chunk of a document and forget it.

        Returns:
            Number of points removed from the store
        """
        previous = db.get_document(doc_id)
        if previous is None:
            return 0

        by_collection: Dict[str, List[str]] = {}
        for chunk_id, collection in previous["chunk_map"].items():
            by_collection.setdefault(collection, []).append(chunk_id)

        removed = 0
        for collection, chunk_ids in by_collection.items():
            removed += await self.vector_store.delete(collection, chunk_ids)

        db.delete_document(doc_id)
        logger.info("document_removed", doc_id=doc_id, chunks_removed=removed)
        return removed

    async def ingest_all(
        self,
        rebuild: bool = False,
        prune: bool = False,
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
    ) -> IngestStats:
        """Ingest every document under the source directory.

        Args:
            rebuild: If True, clear existing collections and catalog first
            prune: If True, remove documents that no longer exist on disk
            progress_callback: Optional callback function(current, total, doc_id)

        Returns:
            IngestStats for the run

        Raises:
            DocumentIOError: If the source directory cannot be read
            VectorStoreUnavailable: If the store cannot be loaded or saved
        """
        logger.info("starting_ingest_all", rebuild=rebuild, prune=prune)
        started_at = datetime.now(timezone.utc)

        if rebuild:
            await self.vector_store.reset()
            db.clear_documents()
            logger.info("index_and_catalog_cleared")
        else:
            await self.vector_store.init_or_load()

        dimension = await self.ensure_collections()

        documents = list(self.loader.iter_documents())
        stats = IngestStats()
        for doc_id, _ in self.loader.skipped:
            stats.record_failure(doc_id)

        if not documents:
            logger.warning("no_documents_found", source_dir=str(self.source_dir))

        semaphore = asyncio.Semaphore(self.settings.ingest_concurrency)
        completed = 0

        async def run(document: Document) -> None:
            nonlocal completed
            async with semaphore:
                try:
                    result = await self.ingest_document(document)
                except Exception as e:
                    logger.error(
                        "file_ingestion_failed",
                        doc_id=document.doc_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    stats.record_failure(document.doc_id)
                else:
                    stats.add(result)
                completed += 1
                if progress_callback:
                    progress_callback(completed, len(documents), document.doc_id)

        await asyncio.gather(*(run(document) for document in documents))

        if prune:
            present = {d.doc_id for d in documents} | {doc_id for doc_id, _ in self.loader.skipped}
            for doc_id in db.list_document_ids():
                if doc_id not in present:
                    stats.chunks_removed += await self.remove_document(doc_id)
                    stats.documents_removed += 1

        await self.vector_store.save()

        db.insert_ingest_run(
            started_at=started_at,
            embedding_model=self.embedder.model,
            embedding_dimension=dimension,
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            source_directory=str(self.source_dir),
            stats={k: v for k, v in stats.as_dict().items() if isinstance(v, int)},
        )

        logger.info("ingest_all_completed", summary=stats.summary(), **stats.as_dict())
        return stats
