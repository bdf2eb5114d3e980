"""File watcher for automatic document reindexing.

Monitors the source directory and re-ingests created or modified documents
after a quiet period. Deleted documents are removed from the index.
"""
import asyncio
import threading
import time
from pathlib import Path
from typing import Dict, Optional

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from cardano_rag import config
from cardano_rag.rag.errors import DocumentIOError, VectorStoreUnavailable
from cardano_rag.rag.ingest import IngestPipeline

logger = structlog.get_logger()

UPSERT = "upsert"
DELETE = "delete"


class DocumentFileHandler(FileSystemEventHandler):
    """Collects file events and hands them to the event loop in batches."""

    def __init__(
        self,
        ingest_pipeline: IngestPipeline,
        debounce_seconds: float = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """Initialize the file handler.

        Args:
            ingest_pipeline: Pipeline used to (re)index and remove documents
            debounce_seconds: Quiet period before processing (default from config)
            loop: Event loop the pipeline runs on
        """
        super().__init__()
        self.ingest_pipeline = ingest_pipeline
        self.debounce_seconds = (
            config.WATCH_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        )
        self.loop = loop

        self._lock = threading.Lock()
        # Latest action per path wins
        self._pending: Dict[Path, str] = {}
        self._last_change = 0.0
        self._future = None
        self._shutdown = False
        self._running = False

        logger.info("document_file_handler_initialized", debounce_seconds=self.debounce_seconds)

    def _is_document(self, path: str) -> bool:
        extensions = self.ingest_pipeline.loader.extensions
        name = Path(path).name
        if name.startswith("."):
            return False
        return not extensions or Path(path).suffix.lower() in extensions

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory and self._is_document(event.src_path):
            logger.info("file_created", path=event.src_path)
            self._schedule(Path(event.src_path), UPSERT)

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory and self._is_document(event.src_path):
            logger.info("file_modified", path=event.src_path)
            self._schedule(Path(event.src_path), UPSERT)

    def on_deleted(self, event: FileSystemEvent):
        if not event.is_directory and self._is_document(event.src_path):
            logger.info("file_deleted", path=event.src_path)
            self._schedule(Path(event.src_path), DELETE)

    def on_moved(self, event: FileSystemEvent):
        if event.is_directory:
            return
        if self._is_document(event.src_path):
            self._schedule(Path(event.src_path), DELETE)
        if self._is_document(event.dest_path):
            self._schedule(Path(event.dest_path), UPSERT)

    def _schedule(self, path: Path, action: str) -> None:
        # Called from the observer thread
        with self._lock:
            self._pending[path] = action
            self._last_change = time.monotonic()
            if self.loop is None or self._shutdown or self._running:
                return
            self._running = True
        self._future = asyncio.run_coroutine_threadsafe(self._debounced_process(), self.loop)

    async def _debounced_process(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.debounce_seconds)
                with self._lock:
                    if self._shutdown or not self._pending:
                        self._running = False
                        return
                    quiet = time.monotonic() - self._last_change >= self.debounce_seconds
                # Changes that arrive during a batch are picked up by the next pass
                if quiet:
                    await self.flush()
        except Exception as e:
            logger.error("reindex_batch_failed", error=str(e), error_type=type(e).__name__)
            with self._lock:
                self._running = False

    async def flush(self) -> None:
        """Process every pending change now."""
        with self._lock:
            changes = dict(self._pending)
            self._pending.clear()
        if changes:
            await self.process_changes(changes)

    async def process_changes(self, changes: Dict[Path, str]) -> None:
        """Re-ingest or remove documents, then persist the store.

        Args:
            changes: Path -> "upsert" or "delete"
        """
        logger.info("reindexing_files", count=len(changes), files=[str(p) for p in changes])
        pipeline = self.ingest_pipeline

        for path, action in changes.items():
            doc_id = pipeline.loader.doc_id_for(path)
            try:
                if action == UPSERT and path.exists():
                    await pipeline.ingest_file(path)
                    logger.info("file_reindexed", doc_id=doc_id)
                else:
                    await pipeline.remove_document(doc_id)
                    logger.info("file_removed_from_index", doc_id=doc_id)
            except DocumentIOError as e:
                logger.warning("document_skipped", doc_id=doc_id, error=str(e))
            except Exception as e:
                logger.error(
                    "reindex_failed",
                    doc_id=doc_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        try:
            await pipeline.vector_store.save()
        except VectorStoreUnavailable as e:
            logger.error("index_save_failed", error=str(e))
        logger.info("reindex_batch_completed", count=len(changes))

    def shutdown(self) -> None:
        """Stop scheduling and cancel a pending batch."""
        self._shutdown = True
        if self._future is not None and not self._future.done():
            self._future.cancel()


class DocumentWatcher:
    """Watcher for the source directory."""

    def __init__(
        self,
        ingest_pipeline: Optional[IngestPipeline] = None,
        debounce_seconds: float = None,
    ):
        """Initialize the watcher.

        Args:
            ingest_pipeline: Pipeline to feed (default pipeline if not provided)
            debounce_seconds: Debounce period for file changes
        """
        self.ingest_pipeline = ingest_pipeline or IngestPipeline()
        self.debounce_seconds = debounce_seconds
        self.event_handler: Optional[DocumentFileHandler] = None
        self.observer = None
        self._started = False

    async def start(self) -> None:
        """Start watching for file changes."""
        if self._started:
            logger.warning("watcher_already_started")
            return

        await self.ingest_pipeline.vector_store.init_or_load()

        self.event_handler = DocumentFileHandler(
            ingest_pipeline=self.ingest_pipeline,
            debounce_seconds=self.debounce_seconds,
            loop=asyncio.get_running_loop(),
        )

        self.observer = Observer()
        self.observer.schedule(
            self.event_handler,
            str(self.ingest_pipeline.source_dir),
            recursive=True,
        )
        self.observer.start()
        self._started = True

        logger.info("document_watcher_started", source_dir=str(self.ingest_pipeline.source_dir))

    def stop(self) -> None:
        """Stop watching for file changes."""
        if not self._started:
            return

        if self.observer:
            self.observer.stop()
            self.observer.join(timeout=5.0)

        if self.event_handler:
            self.event_handler.shutdown()

        self._started = False
        logger.info("document_watcher_stopped")
