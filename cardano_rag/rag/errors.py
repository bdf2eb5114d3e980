"""Error taxonomy for the ingestion and retrieval pipeline."""
from typing import Iterable, Optional


class RAGError(Exception):
    """Base class for pipeline errors."""


class DocumentIOError(RAGError):
    """A source directory or file could not be read."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class EmbeddingProviderUnavailable(RAGError):
    """The embedding service could not be reached or is temporarily failing."""


class EmbeddingError(RAGError):
    """The embedding service answered, but not with a usable vector."""


class VectorStoreUnavailable(RAGError):
    """The vector store could not be read or written."""


class InvalidCategoryFilter(RAGError):
    """A query named a category outside the fixed category set."""

    def __init__(self, category: str, allowed: Iterable[str]):
        self.category = category
        self.allowed = tuple(allowed)
        super().__init__(
            f"Unknown category '{category}'. Expected one of: {', '.join(self.allowed)}"
        )


class GenerationUnavailable(RAGError):
    """The answer-generation model could not be reached or failed to answer."""
