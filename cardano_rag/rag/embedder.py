"""Text embedding through the Ollama embeddings endpoint.

Transient provider failures (connection problems, timeouts, HTTP 429 and
5xx) are retried with bounded exponential backoff before they surface as
EmbeddingProviderUnavailable. Anything else is an EmbeddingError.
"""
import asyncio
import math
from typing import List, Optional

import httpx
import structlog

from cardano_rag import config
from cardano_rag.llm_client import OllamaClient, ollama_client
from cardano_rag.rag.errors import EmbeddingError, EmbeddingProviderUnavailable
from cardano_rag.rag.retrying import async_retrying

logger = structlog.get_logger()

# Text used to discover the model's vector dimension
DIMENSION_PROBE = "dimension probe"


def _is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class Embedder:
    """Maps text to fixed-dimension float vectors."""

    def __init__(
        self,
        client: Optional[OllamaClient] = None,
        model: str = None,
        max_attempts: int = None,
        max_concurrency: int = None,
        backoff_initial: float = None,
        backoff_max: float = None,
    ):
        """Initialize the embedder.

        Args:
            client: Ollama client (global client if not provided)
            model: Embedding model name (default from config)
            max_attempts: Attempts per text, first call included (default from config)
            max_concurrency: Maximum in-flight requests (default from config)
            backoff_initial: First retry delay in seconds (default from config)
            backoff_max: Largest retry delay in seconds (default from config)
        """
        self.client = client or ollama_client
        self.model = model or config.EMBEDDING_MODEL
        self.max_attempts = config.RETRY_ATTEMPTS if max_attempts is None else max_attempts
        self.backoff_initial = (
            config.RETRY_INITIAL_DELAY if backoff_initial is None else backoff_initial
        )
        self.backoff_max = config.RETRY_MAX_DELAY if backoff_max is None else backoff_max
        self.max_concurrency = max_concurrency or config.EMBEDDING_CONCURRENCY
        self._semaphore = asyncio.Semaphore(self.max_concurrency)
        self.dimension: Optional[int] = None

    async def embed(self, text: str) -> List[float]:
        """Embed a single text.

        Args:
            text: Non-empty text

        Returns:
            Embedding vector

        Raises:
            ValueError: If text is empty
            EmbeddingProviderUnavailable: If the provider kept failing after all retries
            EmbeddingError: If the provider returned an unusable response
        """
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")

        retrying = async_retrying(
            "embed",
            (EmbeddingProviderUnavailable,),
            attempts=self.max_attempts,
            initial_delay=self.backoff_initial,
            max_delay=self.backoff_max,
        )
        async for attempt in retrying:
            with attempt:
                vector = await self._embed_once(text)
        return vector

    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        """Embed several texts concurrently, preserving order."""
        return list(await asyncio.gather(*(self.embed(t) for t in texts)))

    async def detect_dimension(self) -> int:
        """Probe the model once and remember its vector dimension."""
        if self.dimension is None:
            vector = await self.embed(DIMENSION_PROBE)
            self.dimension = len(vector)
            logger.info("embedding_dimension_detected", model=self.model, dimension=self.dimension)
        return self.dimension

    async def _embed_once(self, text: str) -> List[float]:
        async with self._semaphore:
            try:
                response = await self.client.embeddings(prompt=text, model=self.model)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                raise EmbeddingProviderUnavailable(
                    f"Embedding provider unreachable: {e}"
                ) from e
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if _is_transient_status(status):
                    raise EmbeddingProviderUnavailable(
                        f"Embedding provider returned HTTP {status}"
                    ) from e
                raise EmbeddingError(f"Embedding request rejected with HTTP {status}") from e

        return self._validate(response)

    def _validate(self, response) -> List[float]:
        embedding = response.get("embedding") if isinstance(response, dict) else None
        if not embedding:
            raise EmbeddingError(f"Empty embedding returned by model {self.model}")

        try:
            vector = [float(v) for v in embedding]
        except (TypeError, ValueError) as e:
            raise EmbeddingError(f"Malformed embedding returned by model {self.model}") from e

        if not all(math.isfinite(v) for v in vector):
            raise EmbeddingError(f"Non-finite values in embedding from model {self.model}")

        if self.dimension is not None and len(vector) != self.dimension:
            raise EmbeddingError(
                f"Embedding dimension {len(vector)} does not match expected {self.dimension}"
            )

        return vector
