"""Document discovery and loading from a source directory tree."""
import hashlib
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import structlog

from cardano_rag import config
from cardano_rag.rag.errors import DocumentIOError
from cardano_rag.rag.md_parser import Heading, MarkdownParser

logger = structlog.get_logger()


@dataclass(frozen=True)
class Document:
    """A source file as read at ingestion time."""

    doc_id: str
    path: Path
    text: str
    last_modified: datetime
    frontmatter: Dict[str, Any] = field(default_factory=dict)
    headings: Tuple[Heading, ...] = ()
    code_spans: Tuple[Tuple[int, int], ...] = ()

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.text.encode("utf-8")).hexdigest()


class DocumentLoader:
    """Lazily reads UTF-8 text documents below a root directory."""

    def __init__(
        self,
        source_dir: Path = None,
        extensions: Optional[Sequence[str]] = None,
        parser: Optional[MarkdownParser] = None,
    ):
        """Initialize the loader.

        Args:
            source_dir: Root directory to walk (default from config)
            extensions: File suffixes to load; empty means every file
                (default from config)
            parser: Markdown parser (a new one if not provided)
        """
        self.source_dir = Path(source_dir or config.SOURCE_DIR)
        if extensions is None:
            extensions = config.SOURCE_EXTENSIONS
        self.extensions = tuple(ext.lower() for ext in extensions)
        self.parser = parser or MarkdownParser()
        self.skipped: List[Tuple[str, str]] = []

    def _check_root(self) -> None:
        if not self.source_dir.exists():
            raise DocumentIOError(
                f"Source directory not found: {self.source_dir}", path=str(self.source_dir)
            )
        if not self.source_dir.is_dir():
            raise DocumentIOError(
                f"Source path is not a directory: {self.source_dir}", path=str(self.source_dir)
            )
        if not os.access(self.source_dir, os.R_OK | os.X_OK):
            raise DocumentIOError(
                f"Source directory is not readable: {self.source_dir}", path=str(self.source_dir)
            )

    def discover_files(self) -> List[Path]:
        """List candidate files in sorted order, skipping hidden directories.

        Raises:
            DocumentIOError: If the root directory cannot be read
        """
        self._check_root()

        files = []
        try:
            for dirpath, dirnames, filenames in os.walk(self.source_dir, onerror=self._walk_error):
                dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
                for filename in filenames:
                    if filename.startswith("."):
                        continue
                    path = Path(dirpath) / filename
                    if self.extensions and path.suffix.lower() not in self.extensions:
                        continue
                    files.append(path)
        except OSError as e:
            raise DocumentIOError(
                f"Failed to walk source directory: {e}", path=str(self.source_dir)
            ) from e

        files.sort()
        logger.info("source_files_discovered", count=len(files), source_dir=str(self.source_dir))
        return files

    def _walk_error(self, error: OSError) -> None:
        if Path(error.filename or "") == self.source_dir:
            raise error
        logger.warning("directory_skipped", path=error.filename, error=str(error))
        self.skipped.append((str(error.filename), str(error)))

    def iter_documents(self) -> Iterator[Document]:
        """Yield every readable document; each call starts a fresh pass.

        Raises:
            DocumentIOError: If the root directory cannot be read
        """
        self.skipped = []
        for path in self.discover_files():
            try:
                yield self.load_file(path)
            except DocumentIOError as e:
                logger.warning("document_skipped", path=str(path), error=str(e))
                self.skipped.append((self.doc_id_for(path), str(e)))

    def load_file(self, path: Path) -> Document:
        """Read and parse a single file.

        Raises:
            DocumentIOError: If the file cannot be read or is not UTF-8 text
        """
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8")
            mtime = path.stat().st_mtime
        except UnicodeDecodeError as e:
            raise DocumentIOError(f"Not UTF-8 text: {path} ({e.reason})", path=str(path)) from e
        except OSError as e:
            raise DocumentIOError(f"Cannot read {path}: {e.strerror or e}", path=str(path)) from e

        doc_id = self.doc_id_for(path)
        parsed = self.parser.parse(content, source=doc_id)

        return Document(
            doc_id=doc_id,
            path=path,
            text=parsed.body,
            last_modified=datetime.fromtimestamp(mtime, tz=timezone.utc),
            frontmatter=parsed.frontmatter,
            headings=tuple(parsed.headings),
            code_spans=tuple(parsed.code_spans),
        )

    def doc_id_for(self, path: Path) -> str:
        """Identifier for a path: relative to the root when possible."""
        try:
            return Path(path).resolve().relative_to(self.source_dir.resolve()).as_posix()
        except ValueError:
            return Path(path).as_posix()
