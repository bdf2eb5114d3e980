"""Structure-aware text chunking with overlap.

Character-based windows (no tokenizer dependency). Inside each window the
chunker prefers, in order: the start of a heading line, a blank line, a
sentence end, any whitespace, and finally the raw character limit. Fenced
code blocks are never split at an interior position.
"""
import hashlib
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Pattern, Sequence, Tuple

import structlog

from cardano_rag import config
from cardano_rag.rag.categorizer import categorize, mentions_technology
from cardano_rag.rag.loader import Document
from cardano_rag.rag.md_parser import MarkdownParser

logger = structlog.get_logger()

# A window never breaks in its first half
MIN_FILL_RATIO = 0.5

# Highest priority first; the break offset is the end of each match
BREAK_PATTERNS: Tuple[Tuple[str, Pattern], ...] = (
    ("heading", re.compile(r"\n(?=#{1,6}\s)")),
    ("paragraph", re.compile(r"\n[ \t]*\n")),
    ("sentence", re.compile(r"[.!?][\"')\]]*\s+")),
    ("word", re.compile(r"\s+")),
)

# Extra characters past the limit so lookaheads can see what follows it
_LOOKAHEAD = 8

Span = Tuple[int, int]


@dataclass
class TextChunk:
    """Represents a chunk of text with position information."""

    content: str
    char_start: int
    char_end: int
    chunk_index: int


@dataclass(frozen=True)
class Chunk:
    """An indexed unit of a document."""

    chunk_id: str
    doc_id: str
    text: str
    char_start: int
    char_end: int
    chunk_index: int
    overlap: int
    category: str
    contains_code: bool
    mentions_technology: bool
    heading_context: str = ""

    @property
    def size(self) -> int:
        return len(self.text)


def make_chunk_id(doc_id: str, text: str) -> str:
    """Content-addressed chunk identifier."""
    return hashlib.sha256(f"{doc_id}\x00{text}".encode("utf-8")).hexdigest()


def reassemble(chunks: Sequence) -> str:
    """Rebuild the source text from its ordered chunks.

    Works for both TextChunk and Chunk; each chunk's leading overlap with
    its predecessor is dropped.
    """
    parts = []
    previous_end = None
    for chunk in chunks:
        text = chunk.content if isinstance(chunk, TextChunk) else chunk.text
        skip = 0 if previous_end is None else previous_end - chunk.char_start
        parts.append(text[skip:])
        previous_end = chunk.char_end
    return "".join(parts)


class TextChunker:
    """Character-based text chunker with overlap support."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
        parser: Optional[MarkdownParser] = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Maximum chunk size in characters (default from config)
            chunk_overlap: Overlap between chunks in characters (default from config)
            parser: Parser used to locate code blocks and headings

        Raises:
            ValueError: If sizes are negative or the overlap is not smaller
                than the chunk size
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        self.parser = parser or MarkdownParser()

        if self.chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0:
            raise ValueError(f"Overlap must not be negative, got {self.chunk_overlap}")
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

        self._floor = max(self.chunk_overlap + 1, int(self.chunk_size * MIN_FILL_RATIO))

        logger.info(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into overlapping chunks.

        Args:
            text: Text to chunk

        Returns:
            List of TextChunk objects, empty for blank text
        """
        spans = self.split(text, self.parser.find_code_spans(text))
        return [
            TextChunk(content=text[start:end], char_start=start, char_end=end, chunk_index=i)
            for i, (start, end) in enumerate(spans)
        ]

    def chunk_document(
        self,
        document: Document,
        categorize_fn: Callable[[str], str] = categorize,
    ) -> List[Chunk]:
        """Split a document into categorized chunks.

        Args:
            document: Loaded document
            categorize_fn: Maps chunk text to a category

        Returns:
            Ordered list of Chunk objects
        """
        text = document.text
        code_spans = list(document.code_spans)
        spans = self.split(text, code_spans)

        chunks = []
        previous_end = None
        for index, (start, end) in enumerate(spans):
            chunk_text = text[start:end]
            chunks.append(
                Chunk(
                    chunk_id=make_chunk_id(document.doc_id, chunk_text),
                    doc_id=document.doc_id,
                    text=chunk_text,
                    char_start=start,
                    char_end=end,
                    chunk_index=index,
                    overlap=0 if previous_end is None else previous_end - start,
                    category=categorize_fn(chunk_text),
                    contains_code="```" in chunk_text
                    or any(cs < end and ce > start for cs, ce in code_spans),
                    mentions_technology=mentions_technology(chunk_text),
                    heading_context=self.parser.get_heading_context(
                        list(document.headings), start
                    ),
                )
            )
            previous_end = end

        if chunks:
            logger.debug(
                "document_chunked",
                doc_id=document.doc_id,
                text_length=len(text),
                chunk_count=len(chunks),
            )

        return chunks

    def split(self, text: str, code_spans: Sequence[Span] = ()) -> List[Span]:
        """Compute (start, end) offsets of every chunk."""
        if not text or not text.strip():
            return []

        text_length = len(text)

        # Handle text shorter than chunk size
        if text_length <= self.chunk_size:
            return [(0, text_length)]

        spans = []
        start = 0
        while True:
            limit = start + self.chunk_size
            if limit >= text_length:
                spans.append((start, text_length))
                break

            end = self._find_break(text, start, limit, code_spans)
            spans.append((start, end))
            if end >= text_length:
                break
            start = end - self.chunk_overlap

        spans = _fold_blank_spans(text, spans)

        logger.debug(
            "text_chunked",
            text_length=text_length,
            chunk_count=len(spans),
            max_chunk_size=max(end - start for start, end in spans),
        )

        return spans

    def _find_break(
        self, text: str, start: int, limit: int, code_spans: Sequence[Span]
    ) -> int:
        low = start + self._floor
        endpos = min(limit + _LOOKAHEAD, len(text))

        for _, pattern in BREAK_PATTERNS:
            best = None
            for match in pattern.finditer(text, start, endpos):
                position = match.end()
                if position <= low or position > limit:
                    continue
                if _inside_code(position, code_spans):
                    continue
                best = position
            if best is not None:
                return best

        enclosing = _enclosing_span(limit, code_spans)
        if enclosing is None:
            return limit

        code_start, code_end = enclosing
        if code_start - self.chunk_overlap > start:
            return code_start
        # Keep the block whole even though the chunk runs over size
        logger.debug(
            "oversized_code_chunk",
            char_start=start,
            size=code_end - start,
            chunk_size=self.chunk_size,
        )
        return code_end

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of TextChunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "overlap": self.chunk_overlap,
            }

        chunk_sizes = [c.char_end - c.char_start for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }


def _inside_code(position: int, code_spans: Sequence[Span]) -> bool:
    return any(start < position < end for start, end in code_spans)


def _enclosing_span(position: int, code_spans: Sequence[Span]) -> Optional[Span]:
    for start, end in code_spans:
        if start < position < end:
            return start, end
    return None


def _fold_blank_spans(text: str, spans: List[Span]) -> List[Span]:
    """Merge whitespace-only windows into the chunk before them.

    A whitespace run longer than the chunk size always leaves one window
    with nothing to embed. Folding it into a neighbour keeps coverage and
    overlap intact; the neighbour grows past the size limit by whitespace
    only. Leading blank windows are folded into the first chunk with text.
    """
    folded: List[Span] = []
    leading_start = None
    for start, end in spans:
        if not text[start:end].strip():
            if folded:
                folded[-1] = (folded[-1][0], end)
            elif leading_start is None:
                leading_start = start
            continue
        if leading_start is not None:
            start, leading_start = leading_start, None
        folded.append((start, end))
    return folded
