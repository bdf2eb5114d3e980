"""SQLite ingestion catalog.

Stores:
- The chunk ids (and their collections) last indexed for each document
- One row per ingestion run with its configuration and counts
"""
import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from cardano_rag import config

logger = structlog.get_logger()

DB_PATH = config.DB_PATH


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_connection() -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row
    """
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_database() -> None:
    """Initialize the database schema.

    Creates tables if they don't exist:
    - documents: content hash and chunk map per ingested document
    - ingest_runs: configuration and counts of each ingestion run
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                doc_id TEXT PRIMARY KEY,
                content_hash TEXT NOT NULL,
                last_modified TEXT NOT NULL,
                chunk_map_json TEXT NOT NULL,
                ingested_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS ingest_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                started_at TEXT NOT NULL,
                finished_at TEXT NOT NULL,
                embedding_model TEXT NOT NULL,
                embedding_dimension INTEGER,
                chunk_size INTEGER NOT NULL,
                chunk_overlap INTEGER NOT NULL,
                source_directory TEXT NOT NULL,
                documents_processed INTEGER NOT NULL,
                documents_failed INTEGER NOT NULL,
                chunks_created INTEGER NOT NULL,
                chunks_embedded INTEGER NOT NULL,
                chunks_failed INTEGER NOT NULL,
                stats_json TEXT
            )
        """)

        conn.commit()
        logger.info("database_initialized", db_path=str(DB_PATH))

    except Exception as e:
        conn.rollback()
        logger.error("database_init_failed", error=str(e))
        raise
    finally:
        conn.close()


def insert_ingest_run(
    started_at: datetime,
    embedding_model: str,
    embedding_dimension: Optional[int],
    chunk_size: int,
    chunk_overlap: int,
    source_directory: str,
    stats: Dict[str, int],
) -> int:
    """Record a finished ingestion run.

    Args:
        started_at: When the run began
        embedding_model: Name of the embedding model used
        embedding_dimension: Dimension of the embeddings, if known
        chunk_size: Maximum chunk size in characters
        chunk_overlap: Overlap between chunks in characters
        source_directory: Root directory that was ingested
        stats: End-of-run counters

    Returns:
        ID of the inserted row
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("""
            INSERT INTO ingest_runs (
                started_at, finished_at, embedding_model, embedding_dimension,
                chunk_size, chunk_overlap, source_directory,
                documents_processed, documents_failed, chunks_created,
                chunks_embedded, chunks_failed, stats_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            started_at.isoformat(),
            _utcnow(),
            embedding_model,
            embedding_dimension,
            chunk_size,
            chunk_overlap,
            source_directory,
            stats.get("documents_processed", 0),
            stats.get("documents_failed", 0),
            stats.get("chunks_created", 0),
            stats.get("chunks_embedded", 0),
            stats.get("chunks_failed", 0),
            json.dumps(stats),
        ))

        conn.commit()
        row_id = cursor.lastrowid
        logger.info("ingest_run_recorded", id=row_id, **stats)
        return row_id

    except Exception as e:
        conn.rollback()
        logger.error("ingest_run_insert_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_latest_ingest_run() -> Optional[Dict[str, Any]]:
    """Get the most recent ingestion run.

    Returns:
        Dictionary with run fields, or None if nothing was ingested yet
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("""
            SELECT * FROM ingest_runs
            ORDER BY id DESC
            LIMIT 1
        """)

        row = cursor.fetchone()
        if row:
            run = dict(row)
            if run["stats_json"]:
                run["stats"] = json.loads(run["stats_json"])
            return run
        return None

    except Exception as e:
        logger.error("ingest_run_retrieval_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_document(doc_id: str) -> Optional[Dict[str, Any]]:
    """Get the catalog entry of a document.

    Returns:
        Dictionary with content_hash, last_modified, ingested_at and
        chunk_map (chunk id -> collection), or None if never ingested
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("SELECT * FROM documents WHERE doc_id = ?", (doc_id,))
        row = cursor.fetchone()
        if row is None:
            return None
        document = dict(row)
        document["chunk_map"] = json.loads(document.pop("chunk_map_json"))
        return document

    except Exception as e:
        logger.error("document_retrieval_failed", doc_id=doc_id, error=str(e))
        raise
    finally:
        conn.close()


def upsert_document(
    doc_id: str,
    content_hash: str,
    last_modified: datetime,
    chunk_map: Dict[str, str],
) -> None:
    """Insert or replace the catalog entry of a document.

    Args:
        doc_id: Document identifier
        content_hash: Hash of the ingested text
        last_modified: Source file modification time
        chunk_map: Chunk id -> collection name of every indexed chunk
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("""
            INSERT OR REPLACE INTO documents (
                doc_id, content_hash, last_modified, chunk_map_json, ingested_at
            ) VALUES (?, ?, ?, ?, ?)
        """, (
            doc_id,
            content_hash,
            last_modified.isoformat(),
            json.dumps(chunk_map, sort_keys=True),
            _utcnow(),
        ))
        conn.commit()

    except Exception as e:
        conn.rollback()
        logger.error("document_upsert_failed", doc_id=doc_id, error=str(e))
        raise
    finally:
        conn.close()


def delete_document(doc_id: str) -> bool:
    """Remove a document from the catalog.

    Returns:
        True if a row was deleted
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("DELETE FROM documents WHERE doc_id = ?", (doc_id,))
        conn.commit()
        return cursor.rowcount > 0

    except Exception as e:
        conn.rollback()
        logger.error("document_delete_failed", doc_id=doc_id, error=str(e))
        raise
    finally:
        conn.close()


def list_document_ids() -> List[str]:
    """All document ids in the catalog, sorted."""
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("SELECT doc_id FROM documents ORDER BY doc_id")
        return [row["doc_id"] for row in cursor.fetchall()]

    except Exception as e:
        logger.error("document_list_failed", error=str(e))
        raise
    finally:
        conn.close()


def clear_documents() -> int:
    """Delete all documents from the catalog.

    Used when rebuilding the index from scratch.

    Returns:
        Number of documents deleted
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("SELECT COUNT(*) FROM documents")
        count = cursor.fetchone()[0]

        cursor.execute("DELETE FROM documents")
        conn.commit()

        logger.info("documents_cleared", count=count)
        return count

    except Exception as e:
        conn.rollback()
        logger.error("documents_clear_failed", error=str(e))
        raise
    finally:
        conn.close()


# Initialize database on module import if it doesn't exist
if not DB_PATH.exists():
    init_database()
    logger.info("database_auto_initialized", db_path=str(DB_PATH))
