"""Query surface over the indexed knowledge base."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from cardano_rag.config import PipelineSettings
from cardano_rag.llm_client import ollama_client
from cardano_rag.rag.composer import Generator, ResponseComposer
from cardano_rag.rag.embedder import Embedder
from cardano_rag.rag.router import QueryRouter, RetrievalResult
from cardano_rag.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()


@dataclass
class QueryResponse:
    """Ranked context for a question and the documents it came from."""

    answer_context: List[RetrievalResult]
    sources: List[str]
    answer: Optional[str] = None

    @classmethod
    def from_results(cls, results: List[RetrievalResult]) -> "QueryResponse":
        sources: List[str] = []
        for result in results:
            if result.doc_id not in sources:
                sources.append(result.doc_id)
        return cls(answer_context=results, sources=sources)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "answer_context": [r.to_dict() for r in self.answer_context],
            "sources": self.sources,
        }
        if self.answer is not None:
            data["answer"] = self.answer
        return data


@dataclass
class KnowledgeBase:
    """Read-only entry point for questions."""

    router: QueryRouter
    composer: ResponseComposer
    settings: PipelineSettings = field(default_factory=PipelineSettings)

    async def query(
        self,
        question: str,
        category: Optional[str] = None,
        top_k: Optional[int] = None,
    ) -> QueryResponse:
        """Retrieve ranked context for a question.

        Raises:
            InvalidCategoryFilter: If category is not a known category
            EmbeddingProviderUnavailable: If the question cannot be embedded
        """
        results = await self.router.retrieve(question, category=category, top_k=top_k)
        response = QueryResponse.from_results(results)
        logger.info("query_answered", results=len(results), sources=len(response.sources))
        return response

    async def answer(
        self,
        question: str,
        category: Optional[str] = None,
        top_k: Optional[int] = None,
    ) -> QueryResponse:
        """Retrieve context and generate an answer from it."""
        response = await self.query(question, category=category, top_k=top_k)
        response.answer = await self.composer.compose(question, response.answer_context)
        return response

    def collections(self) -> Dict[str, Any]:
        return self.router.vector_store.get_stats()


def build_knowledge_base(
    vector_store: FAISSVectorStore,
    embedder: Optional[Embedder] = None,
    generator: Optional[Generator] = None,
    settings: Optional[PipelineSettings] = None,
) -> KnowledgeBase:
    """Wire a knowledge base from its parts."""
    settings = settings or PipelineSettings()
    embedder = embedder or Embedder(
        max_attempts=settings.retry_count,
        max_concurrency=settings.embedding_concurrency,
        backoff_initial=settings.retry_initial_delay,
        backoff_max=settings.retry_max_delay,
    )
    router = QueryRouter(
        embedder,
        vector_store,
        top_k=settings.top_k,
        dedup_prefix_chars=settings.dedup_prefix_chars,
    )
    composer = ResponseComposer(
        generator or ollama_client, max_context_chars=settings.max_context_chars
    )
    return KnowledgeBase(router=router, composer=composer, settings=settings)


# Singleton instance for convenience
_knowledge_base: Optional[KnowledgeBase] = None


async def get_knowledge_base() -> KnowledgeBase:
    """Get or create the singleton knowledge base.

    Note: This loads the collections from disk on first use
    """
    global _knowledge_base
    if _knowledge_base is None:
        store = FAISSVectorStore()
        await store.init_or_load()
        _knowledge_base = build_knowledge_base(store)
    return _knowledge_base
