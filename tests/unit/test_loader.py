"""Tests for document discovery and loading."""
import pytest

from cardano_rag.rag.errors import DocumentIOError
from cardano_rag.rag.loader import DocumentLoader


def write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_documents_are_yielded_in_sorted_order(source_dir):
    write(source_dir / "b.md", "Second")
    write(source_dir / "a.md", "First")
    write(source_dir / "guides" / "c.md", "Third")

    loader = DocumentLoader(source_dir)
    doc_ids = [doc.doc_id for doc in loader.iter_documents()]

    assert doc_ids == ["a.md", "b.md", "guides/c.md"]


def test_iteration_is_restartable(source_dir):
    write(source_dir / "a.md", "First")
    loader = DocumentLoader(source_dir)

    assert [d.doc_id for d in loader.iter_documents()] == [d.doc_id for d in loader.iter_documents()]


def test_extension_filter_and_hidden_entries(source_dir):
    write(source_dir / "keep.md", "yes")
    write(source_dir / "notes.txt", "yes")
    write(source_dir / "image.png", "no")
    write(source_dir / ".hidden.md", "no")
    write(source_dir / ".git" / "config.md", "no")

    loader = DocumentLoader(source_dir, extensions=[".md", ".txt"])

    assert [d.doc_id for d in loader.iter_documents()] == ["keep.md", "notes.txt"]


def test_empty_extension_list_loads_every_file(source_dir):
    write(source_dir / "a.rst", "text")
    write(source_dir / "b.md", "text")

    loader = DocumentLoader(source_dir, extensions=[])

    assert [d.doc_id for d in loader.iter_documents()] == ["a.rst", "b.md"]


def test_document_fields(source_dir):
    write(source_dir / "guide.md", "---\ntitle: Guide\n---\n# Heading\n\nBody.\n")

    doc = DocumentLoader(source_dir).load_file(source_dir / "guide.md")

    assert doc.doc_id == "guide.md"
    assert doc.text == "# Heading\n\nBody.\n"
    assert doc.frontmatter == {"title": "Guide"}
    assert doc.headings[0].text == "Heading"
    assert doc.last_modified.tzinfo is not None
    assert len(doc.content_hash) == 64


def test_non_utf8_file_is_skipped_and_recorded(source_dir):
    write(source_dir / "good.md", "fine")
    (source_dir / "bad.md").write_bytes(b"\xff\xfe\xfa invalid")

    loader = DocumentLoader(source_dir)
    docs = list(loader.iter_documents())

    assert [d.doc_id for d in docs] == ["good.md"]
    assert [doc_id for doc_id, _ in loader.skipped] == ["bad.md"]


def test_missing_root_raises(tmp_path):
    loader = DocumentLoader(tmp_path / "missing")

    with pytest.raises(DocumentIOError):
        list(loader.iter_documents())


def test_root_that_is_a_file_raises(tmp_path):
    path = write(tmp_path / "file.md", "text")

    with pytest.raises(DocumentIOError):
        DocumentLoader(path).discover_files()


def test_load_file_missing_raises(source_dir):
    with pytest.raises(DocumentIOError):
        DocumentLoader(source_dir).load_file(source_dir / "nope.md")
