"""Answer composition from retrieved context.

The composer only formats context and a prompt; the text itself comes from
an external generation model.
"""
from typing import List, Protocol

import httpx
import structlog

from cardano_rag import config
from cardano_rag.rag.errors import GenerationUnavailable
from cardano_rag.rag.router import RetrievalResult

logger = structlog.get_logger()

NO_CONTEXT_ANSWER = (
    "I could not find anything in the indexed documentation that answers this question."
)

TRUNCATION_MARK = "...\n"


class Generator(Protocol):
    async def generate(self, prompt: str) -> str:
        ...


class ResponseComposer:
    """Turns retrieval results into a prompt and asks a model to answer it."""

    def __init__(self, generator: Generator, max_context_chars: int = None):
        """Initialize the composer.

        Args:
            generator: Object with an async ``generate(prompt) -> str``
            max_context_chars: Maximum total characters of context (default from config)
        """
        self.generator = generator
        self.max_context_chars = max_context_chars or config.MAX_CONTEXT_CHARS

    def build_context(self, results: List[RetrievalResult]) -> str:
        """Format results as numbered source blocks for the prompt.

        Args:
            results: Ranked retrieval results

        Returns:
            Context string, empty when there are no results
        """
        if not results:
            return ""

        context_parts = []
        total_chars = 0

        for i, result in enumerate(results, 1):
            chunk_text = (
                f"[Source {i}: {result.source}]\n"
                f"{result.text.strip()}\n"
            )
            # Blocks are joined with a newline
            separator = 1 if context_parts else 0

            if total_chars + separator + len(chunk_text) > self.max_context_chars:
                remaining = self.max_context_chars - total_chars - separator
                # Only add a truncated block if there is meaningful space left
                if remaining > 200:
                    cut = remaining - len(TRUNCATION_MARK)
                    context_parts.append(chunk_text[:cut] + TRUNCATION_MARK)
                break

            context_parts.append(chunk_text)
            total_chars += separator + len(chunk_text)

        context = "\n".join(context_parts)

        logger.debug(
            "context_formatted",
            num_chunks=len(context_parts),
            total_chars=len(context),
        )
        return context

    def build_prompt(self, question: str, context: str) -> str:
        """Build the generation prompt for a question and its context."""
        context_section = ""
        if context:
            context_section = f"Context from documentation:\n{context}\n\n"

        return (
            "You are a technical assistant for Cardano and Midnight developers.\n\n"
            f"{context_section}"
            f"Question: {question}\n\n"
            "Instructions:\n"
            "- Answer using only the provided context\n"
            "- Cite sources by their [Source N] labels\n"
            "- If the context does not contain the answer, say so clearly\n"
            "- Keep code examples exactly as they appear in the context\n\n"
            "Answer:"
        )

    async def compose(self, question: str, results: List[RetrievalResult]) -> str:
        """Generate an answer grounded in the results.

        Returns:
            Generated answer, or a fixed message when nothing was retrieved

        Raises:
            GenerationUnavailable: If the generation model call failed
        """
        if not results:
            logger.info("compose_skipped_no_context")
            return NO_CONTEXT_ANSWER

        prompt = self.build_prompt(question, self.build_context(results))
        try:
            answer = await self.generator.generate(prompt)
        except httpx.HTTPError as e:
            logger.error("answer_generation_failed", error=str(e), error_type=type(e).__name__)
            raise GenerationUnavailable(f"Answer generation failed: {e}") from e

        logger.info(
            "answer_composed",
            sources=len(results),
            prompt_length=len(prompt),
            answer_length=len(answer),
        )
        return answer
