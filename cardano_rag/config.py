"""Application configuration with sensible defaults."""
import os
from dataclasses import dataclass
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
SOURCE_DIR = Path(os.getenv("SOURCE_DIR", str(BASE_DIR / "docs")))

# Ensure data directory exists
DATA_DIR.mkdir(parents=True, exist_ok=True)

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gemma3:12b")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "mxbai-embed-large:latest")
OLLAMA_TIMEOUT = float(os.getenv("OLLAMA_TIMEOUT", "60.0"))

# Chunking (character-based to avoid tokenizer inconsistencies)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "1000"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "150"))

# Retrieval
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "5"))
DEDUP_PREFIX_CHARS = int(os.getenv("DEDUP_PREFIX_CHARS", "200"))
MAX_CONTEXT_CHARS = int(os.getenv("MAX_CONTEXT_CHARS", "4000"))

# External call policy
RETRY_ATTEMPTS = int(os.getenv("RETRY_ATTEMPTS", "3"))
RETRY_INITIAL_DELAY = float(os.getenv("RETRY_INITIAL_DELAY", "1.0"))  # seconds
RETRY_MAX_DELAY = float(os.getenv("RETRY_MAX_DELAY", "10.0"))
EMBEDDING_CONCURRENCY = int(os.getenv("EMBEDDING_CONCURRENCY", "4"))
INGEST_CONCURRENCY = int(os.getenv("INGEST_CONCURRENCY", "4"))

# Source files ("" = every file under SOURCE_DIR)
SOURCE_EXTENSIONS = tuple(
    ext.strip().lower()
    for ext in os.getenv("SOURCE_EXTENSIONS", ".md,.markdown,.mdx,.txt").split(",")
    if ext.strip()
)

# Storage
DB_PATH = DATA_DIR / "catalog.sqlite"
VECTOR_INDEX_DIR = DATA_DIR / "collections"

# Watcher
WATCH_SOURCE = os.getenv("WATCH_SOURCE", "false").lower() in ("1", "true", "yes")
WATCH_DEBOUNCE_SECONDS = float(os.getenv("WATCH_DEBOUNCE_SECONDS", "2.0"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


@dataclass(frozen=True)
class PipelineSettings:
    """Tunables shared by the ingestion and query paths."""

    max_chunk_size: int = CHUNK_SIZE
    overlap_size: int = CHUNK_OVERLAP
    top_k: int = RETRIEVAL_TOP_K
    retry_count: int = RETRY_ATTEMPTS
    retry_initial_delay: float = RETRY_INITIAL_DELAY
    retry_max_delay: float = RETRY_MAX_DELAY
    embedding_concurrency: int = EMBEDDING_CONCURRENCY
    ingest_concurrency: int = INGEST_CONCURRENCY
    dedup_prefix_chars: int = DEDUP_PREFIX_CHARS
    max_context_chars: int = MAX_CONTEXT_CHARS
