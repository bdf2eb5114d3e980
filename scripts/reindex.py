#!/usr/bin/env python
"""Ingest source documents into the category collections.

Usage:
    python scripts/reindex.py              # Incremental ingestion
    python scripts/reindex.py --rebuild    # Full rebuild from scratch
    python scripts/reindex.py --prune      # Also drop documents deleted from disk
    python scripts/reindex.py --verbose    # Show detailed progress
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from cardano_rag import config
from cardano_rag.logs import configure_logging
from cardano_rag.rag.errors import DocumentIOError, VectorStoreUnavailable
from cardano_rag.rag.ingest import IngestPipeline, IngestStats

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, doc_id: str):
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        name = Path(doc_id).name
        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {name[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            print()

    def finish(self, stats: IngestStats):
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Ingestion Complete!")
        print(f"{'=' * 60}\n")
        print(f"  📁 Documents processed: {stats.documents_processed}")
        print(f"  ❌ Documents failed:    {stats.documents_failed}")
        print(f"  🗑️  Documents removed:   {stats.documents_removed}")
        print(f"  📝 Chunks created:      {stats.chunks_created}")
        print(f"  🧮 Chunks embedded:     {stats.chunks_embedded}")
        print(f"  ♻️  Chunks reused:       {stats.chunks_reused}")
        print(f"  ⚠️  Chunks failed:       {stats.chunks_failed}")
        print(f"  ⏱️  Time elapsed:        {elapsed_seconds:.1f}s")

        if stats.chunks_embedded > 0 and elapsed_seconds > 0:
            rate = stats.chunks_embedded / elapsed_seconds
            print(f"  ⚡ Embedding rate:      {rate:.1f} chunks/sec")

        print(f"\n{'=' * 60}\n")
        print(f"  {stats.summary()}\n")

        if stats.failed_documents:
            print("  Failed documents:")
            for doc_id in stats.failed_documents:
                print(f"   - {doc_id}")
            print()

        if stats.documents_processed > 0:
            print(f"✅ Collections at: {config.VECTOR_INDEX_DIR}")
            print(f"✅ Catalog at: {config.DB_PATH}\n")


async def main():
    """Main entry point for reindex script."""
    parser = argparse.ArgumentParser(
        description="Ingest source documents into the vector store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/reindex.py              # Incremental ingestion
  python scripts/reindex.py --rebuild    # Full rebuild from scratch
  python scripts/reindex.py --prune      # Remove documents deleted from disk
        """,
    )

    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Rebuild collections from scratch (clears existing data)",
    )

    parser.add_argument(
        "--prune",
        action="store_true",
        help="Remove indexed documents that no longer exist on disk",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show verbose progress and debug logs",
    )

    parser.add_argument(
        "--source-dir",
        type=Path,
        default=None,
        help=f"Source directory (default: {config.SOURCE_DIR})",
    )

    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else config.LOG_LEVEL)
    progress = ProgressReporter(verbose=args.verbose)

    try:
        print("\n📋 Configuration:")
        print(f"   Source directory: {args.source_dir or config.SOURCE_DIR}")
        print(f"   Embedding model:  {config.EMBEDDING_MODEL}")
        print(f"   Chunk size:       {config.CHUNK_SIZE} chars")
        print(f"   Chunk overlap:    {config.CHUNK_OVERLAP} chars")
        print(f"   Retry attempts:   {config.RETRY_ATTEMPTS}")

        if args.rebuild:
            print("\n⚠️  Rebuild mode: Will clear existing collections and catalog!")
            print("   Press Ctrl+C within 3 seconds to cancel...")
            await asyncio.sleep(3)

        action = "Rebuilding" if args.rebuild else "Ingesting"
        progress.start(f"{action} Documents")

        pipeline = IngestPipeline(source_dir=args.source_dir)

        stats = await pipeline.ingest_all(
            rebuild=args.rebuild,
            prune=args.prune,
            progress_callback=progress.update,
        )

        progress.finish(stats)

        if stats.failures > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\n⚠️  Ingestion cancelled by user.\n")
        sys.exit(1)

    except (DocumentIOError, VectorStoreUnavailable) as e:
        print(f"\n❌ Error: {e}\n")
        sys.exit(1)

    except Exception as e:
        print(f"\n❌ Error: {e}\n")
        logger.error("reindex_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
