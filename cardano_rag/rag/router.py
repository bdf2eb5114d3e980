"""Query routing and retrieval across category collections.

Handles:
- Choosing target collections from an explicit filter or the question text
- A single query embedding shared by every collection search
- Merging, near-duplicate removal and ranking of hits
"""
import asyncio
import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from cardano_rag import config
from cardano_rag.rag.categorizer import CATEGORIES, match_categories
from cardano_rag.rag.embedder import Embedder
from cardano_rag.rag.errors import InvalidCategoryFilter
from cardano_rag.rag.store_faiss import FAISSVectorStore, SearchHit

logger = structlog.get_logger()


@dataclass
class RetrievalResult:
    """A single retrieved chunk with metadata."""

    chunk_id: str
    text: str
    doc_id: str
    category: str
    score: float
    heading_context: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def source(self) -> str:
        """Get a formatted source string for display."""
        if self.heading_context:
            return f"{self.doc_id} > {self.heading_context}"
        return self.doc_id

    @classmethod
    def from_hit(cls, collection: str, hit: SearchHit) -> "RetrievalResult":
        payload = hit.payload
        return cls(
            chunk_id=hit.id,
            text=payload.get("text", ""),
            doc_id=payload.get("doc_id", ""),
            category=payload.get("category", collection),
            score=hit.score,
            heading_context=payload.get("heading_context") or "",
            metadata=payload.get("metadata") or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "doc_id": self.doc_id,
            "category": self.category,
            "score": self.score,
            "source": self.source,
            "heading_context": self.heading_context,
            "text": self.text,
            "metadata": self.metadata,
        }


def dedup_key(text: str, prefix_chars: int = None) -> str:
    """Hash of a text's leading characters, used to spot near-duplicates.

    Whitespace runs are collapsed first so reflowed copies still match.
    """
    if prefix_chars is None:
        prefix_chars = config.DEDUP_PREFIX_CHARS
    normalized = " ".join(text.split())
    return hashlib.sha256(normalized[:prefix_chars].encode("utf-8")).hexdigest()


class QueryRouter:
    """Routes a question to category collections and ranks the merged hits."""

    def __init__(
        self,
        embedder: Embedder,
        vector_store: FAISSVectorStore,
        top_k: int = None,
        dedup_prefix_chars: int = None,
    ):
        """Initialize the router.

        Args:
            embedder: Embedder used for the question
            vector_store: Store holding one collection per category
            top_k: Default number of results (default from config)
            dedup_prefix_chars: Leading characters compared for near-duplicates
                (default from config)
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.top_k = top_k or config.RETRIEVAL_TOP_K
        self.dedup_prefix_chars = dedup_prefix_chars or config.DEDUP_PREFIX_CHARS

    def route(self, question: str, category: Optional[str] = None) -> List[str]:
        """Pick the collections to search.

        Args:
            question: User question
            category: Optional explicit category filter

        Returns:
            Category names; every category when the question gives no hint

        Raises:
            InvalidCategoryFilter: If category is not a known category
        """
        if category is not None:
            if category not in CATEGORIES:
                raise InvalidCategoryFilter(category, CATEGORIES)
            return [category]

        guessed = match_categories(question)
        return guessed or list(CATEGORIES)

    async def retrieve(
        self,
        question: str,
        category: Optional[str] = None,
        top_k: Optional[int] = None,
    ) -> List[RetrievalResult]:
        """Retrieve the most similar chunks for a question.

        Args:
            question: User question
            category: Optional explicit category filter
            top_k: Number of results to return (overrides default)

        Returns:
            Results sorted by score (best first), at most top_k

        Raises:
            InvalidCategoryFilter: If category is not a known category
            EmbeddingProviderUnavailable: If the question cannot be embedded
            VectorStoreUnavailable: If the store cannot be searched
        """
        collections = self.route(question or "", category)

        if not question or not question.strip():
            logger.warning("empty_query_provided")
            return []

        top_k = top_k or self.top_k
        logger.info(
            "retrieval_started",
            query_length=len(question),
            collections=collections,
            top_k=top_k,
        )

        query_vector = await self.embedder.embed(question)

        per_collection = await asyncio.gather(
            *(self.vector_store.search(name, query_vector, top_k) for name in collections)
        )

        best: Dict[str, RetrievalResult] = {}
        for name, hits in zip(collections, per_collection):
            for hit in hits:
                result = RetrievalResult.from_hit(name, hit)
                key = dedup_key(result.text, self.dedup_prefix_chars)
                kept = best.get(key)
                if kept is None or (result.score, kept.chunk_id) > (kept.score, result.chunk_id):
                    best[key] = result

        results = sorted(best.values(), key=lambda r: (-r.score, r.chunk_id))[:top_k]

        logger.info(
            "retrieval_completed",
            query_length=len(question),
            candidates=sum(len(hits) for hits in per_collection),
            results_returned=len(results),
            top_score=results[0].score if results else None,
        )
        return results
