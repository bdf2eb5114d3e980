"""Markdown parsing helpers for source documents.

Handles:
- YAML frontmatter parsing
- Heading hierarchy extraction
- Fenced code block detection
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

import structlog
import yaml

logger = structlog.get_logger()

# Frontmatter keys copied into chunk payloads
FRONTMATTER_FIELDS = ("title", "domain", "category", "tags", "version", "date")


@dataclass(frozen=True)
class Heading:
    """A markdown heading with its position in the body text."""

    level: int  # 1-6 for h1-h6
    text: str
    char_position: int
    line_number: int


@dataclass(frozen=True)
class ParsedMarkdown:
    """Body text of a markdown file split from its frontmatter."""

    frontmatter: Dict[str, Any]
    body: str
    headings: List[Heading]
    code_spans: List[Tuple[int, int]]


class MarkdownParser:
    """Parser for markdown text with frontmatter support."""

    # YAML frontmatter must open the file
    FRONTMATTER_PATTERN = re.compile(r"\A---[ \t]*\n(.*?)\n---[ \t]*(?:\n|\Z)", re.DOTALL)

    HEADING_PATTERN = re.compile(r"^(#{1,6})[ \t]+(.+?)[ \t#]*$", re.MULTILINE)

    FENCE_PATTERN = re.compile(r"^[ ]{0,3}(`{3,}|~{3,})")

    def parse(self, content: str, source: str = "") -> ParsedMarkdown:
        """Split frontmatter from body and index headings and code blocks.

        Args:
            content: Full file content
            source: Identifier used in log events

        Returns:
            ParsedMarkdown for the content
        """
        frontmatter, body = self._parse_frontmatter(content, source)
        code_spans = self.find_code_spans(body)
        headings = self._extract_headings(body, code_spans)

        logger.debug(
            "markdown_parsed",
            source=source,
            has_frontmatter=bool(frontmatter),
            heading_count=len(headings),
            code_block_count=len(code_spans),
            content_length=len(body),
        )

        return ParsedMarkdown(
            frontmatter=frontmatter,
            body=body,
            headings=headings,
            code_spans=code_spans,
        )

    def _parse_frontmatter(self, content: str, source: str) -> Tuple[Dict[str, Any], str]:
        match = self.FRONTMATTER_PATTERN.match(content)
        if not match:
            return {}, content

        yaml_content = match.group(1)
        try:
            frontmatter = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            logger.warning(
                "frontmatter_parse_error",
                source=source,
                error=str(e),
                yaml_preview=yaml_content[:100],
            )
            frontmatter = None

        if not isinstance(frontmatter, dict):
            frontmatter = {}

        return frontmatter, content[match.end():]

    def find_code_spans(self, text: str) -> List[Tuple[int, int]]:
        """Locate fenced code blocks.

        Returns:
            List of (start, end) offsets; start is the opening fence line,
            end is just past the closing fence line. An unclosed fence runs
            to the end of the text.
        """
        spans = []
        open_start = None
        open_fence = ""
        position = 0

        for line in text.splitlines(keepends=True):
            match = self.FENCE_PATTERN.match(line)
            if match:
                fence = match.group(1)
                if open_start is None:
                    open_start = position
                    open_fence = fence
                elif fence[0] == open_fence[0] and len(fence) >= len(open_fence) \
                        and not line.strip()[len(fence):].strip():
                    spans.append((open_start, position + len(line)))
                    open_start = None
            position += len(line)

        if open_start is not None:
            spans.append((open_start, len(text)))

        return spans

    def _extract_headings(
        self, text: str, code_spans: List[Tuple[int, int]]
    ) -> List[Heading]:
        headings = []

        for match in self.HEADING_PATTERN.finditer(text):
            position = match.start()
            if any(start <= position < end for start, end in code_spans):
                continue

            headings.append(
                Heading(
                    level=len(match.group(1)),
                    text=match.group(2).strip(),
                    char_position=position,
                    line_number=text.count("\n", 0, position) + 1,
                )
            )

        return headings

    def get_heading_context(self, headings: List[Heading], char_position: int) -> str:
        """Get the heading breadcrumb in effect at a character position.

        Returns:
            Context string like "# Main > ## Sub > ### Detail"
        """
        context_stack: List[Heading] = []

        for heading in headings:
            if heading.char_position > char_position:
                break
            while context_stack and context_stack[-1].level >= heading.level:
                context_stack.pop()
            context_stack.append(heading)

        return " > ".join(f"{'#' * h.level} {h.text}" for h in context_stack)

    @staticmethod
    def payload_metadata(frontmatter: Dict[str, Any]) -> Dict[str, Any]:
        """Pick the frontmatter fields worth storing alongside each chunk."""
        metadata = {}
        for field in FRONTMATTER_FIELDS:
            if field not in frontmatter:
                continue
            value = frontmatter[field]
            # Convert date/datetime objects to ISO format strings
            if hasattr(value, "isoformat"):
                value = value.isoformat()
            elif isinstance(value, (list, tuple)):
                value = [str(v) for v in value]
            elif not isinstance(value, (str, int, float, bool)) and value is not None:
                value = str(value)
            metadata[field] = value
        return metadata
