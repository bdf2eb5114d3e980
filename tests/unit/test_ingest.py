"""Tests for the ingestion pipeline and its catalog."""
import pytest

from cardano_rag import db
from cardano_rag.rag.categorizer import CATEGORIES
from cardano_rag.rag.chunker import Chunk, make_chunk_id
from cardano_rag.rag.errors import DocumentIOError
from cardano_rag.rag.ingest import FAILED, IngestPipeline, IngestStats
from cardano_rag.rag.store_faiss import FAISSVectorStore

SHORT_TEXT = "word " * 100
LONG_TEXT = "".join(chr(ord("a") + i % 26) for i in range(2500))


def total_points(store):
    return sum(store.count(name) for name in store.list_collections())


@pytest.fixture
def three_documents(source_dir):
    (source_dir / "short.md").write_text(SHORT_TEXT, encoding="utf-8")
    (source_dir / "long.md").write_text(LONG_TEXT, encoding="utf-8")
    (source_dir / "empty.md").write_text("", encoding="utf-8")
    return source_dir


@pytest.mark.asyncio
async def test_three_document_scenario(pipeline, three_documents, store):
    stats = await pipeline.ingest_all()

    assert stats.documents_processed == 3
    assert stats.documents_failed == 0
    assert stats.chunks_created == 4
    assert stats.chunks_embedded == 4
    assert total_points(store) == 4
    assert db.get_document("long.md")["chunk_map"] != {}
    assert db.get_document("empty.md")["chunk_map"] == {}


@pytest.mark.asyncio
async def test_collections_created_for_every_category(pipeline, three_documents, store):
    await pipeline.ingest_all()

    assert store.list_collections() == sorted(CATEGORIES)


@pytest.mark.asyncio
async def test_unchanged_reingestion_embeds_nothing(pipeline, three_documents, store, fake_client):
    await pipeline.ingest_all()
    calls = fake_client.calls
    counts = {name: store.count(name) for name in store.list_collections()}

    stats = await pipeline.ingest_all()

    assert stats.chunks_embedded == 0
    assert stats.chunks_reused == 4
    assert fake_client.calls == calls
    assert {name: store.count(name) for name in store.list_collections()} == counts


@pytest.mark.asyncio
async def test_fresh_pipeline_reuses_saved_vectors(
    three_documents, store, make_embedder, make_client, settings, catalog
):
    first = IngestPipeline(three_documents, make_embedder(), store, settings=settings)
    await first.ingest_all()

    client = make_client()
    reopened = FAISSVectorStore(index_dir=store.index_dir, embedding_model=store.embedding_model)
    second = IngestPipeline(three_documents, make_embedder(client), reopened, settings=settings)
    stats = await second.ingest_all()

    assert stats.chunks_embedded == 0
    # Only the dimension probe reaches the provider
    assert client.calls == 1
    assert total_points(reopened) == 4


@pytest.mark.asyncio
async def test_changed_document_replaces_its_chunks(pipeline, three_documents, store):
    await pipeline.ingest_all()
    (three_documents / "short.md").write_text("entirely new wording " * 10, encoding="utf-8")

    stats = await pipeline.ingest_all()

    assert stats.chunks_embedded == 1
    assert stats.chunks_removed == 1
    assert total_points(store) == 4


@pytest.mark.asyncio
async def test_category_change_moves_chunk(pipeline, source_dir, store):
    path = source_dir / "note.md"
    path.write_text("plain words only", encoding="utf-8")
    await pipeline.ingest_all()
    assert store.count("general") == 1

    path.write_text("plain words only about a validator", encoding="utf-8")
    await pipeline.ingest_all()

    assert store.count("general") == 0
    assert store.count("core") == 1


@pytest.mark.asyncio
async def test_prune_removes_deleted_documents(pipeline, three_documents, store):
    await pipeline.ingest_all()
    (three_documents / "long.md").unlink()

    stats = await pipeline.ingest_all(prune=True)

    assert stats.documents_removed == 1
    assert stats.chunks_removed == 3
    assert total_points(store) == 1
    assert db.get_document("long.md") is None


@pytest.mark.asyncio
async def test_without_prune_deleted_documents_stay(pipeline, three_documents, store):
    await pipeline.ingest_all()
    (three_documents / "long.md").unlink()

    await pipeline.ingest_all()

    assert total_points(store) == 4


@pytest.mark.asyncio
async def test_rebuild_embeds_everything_again(pipeline, three_documents, fake_client):
    await pipeline.ingest_all()

    stats = await pipeline.ingest_all(rebuild=True)

    assert stats.chunks_embedded == 4
    assert stats.chunks_reused == 0


@pytest.mark.asyncio
async def test_chunk_failures_are_counted_not_fatal(
    source_dir, store, make_embedder, make_client, settings, catalog
):
    (source_dir / "ok.md").write_text("a fine note", encoding="utf-8")
    (source_dir / "bad.md").write_text("this one says FAILME", encoding="utf-8")
    pipeline = IngestPipeline(
        source_dir, make_embedder(make_client(fail_on="FAILME")), store, settings=settings
    )

    stats = await pipeline.ingest_all()

    assert stats.documents_processed == 2
    assert stats.chunks_embedded == 1
    assert stats.chunks_failed == 1
    assert stats.summary() == "2 documents processed, 1 chunks embedded, 1 failures (see log)"
    assert db.get_document("bad.md")["chunk_map"] == {}


@pytest.mark.asyncio
async def test_unreadable_file_counts_as_failed_document(pipeline, source_dir):
    (source_dir / "ok.md").write_text("fine", encoding="utf-8")
    (source_dir / "binary.md").write_bytes(b"\xff\xfe\xfa")

    stats = await pipeline.ingest_all()

    assert stats.documents_processed == 1
    assert stats.documents_failed == 1
    assert stats.failed_documents == ["binary.md"]


@pytest.mark.asyncio
async def test_provider_down_defers_collections(
    source_dir, store, make_embedder, make_client, settings, catalog
):
    (source_dir / "ok.md").write_text("fine", encoding="utf-8")
    pipeline = IngestPipeline(
        source_dir, make_embedder(make_client(fail_times=100)), store, settings=settings
    )

    stats = await pipeline.ingest_all()

    assert store.list_collections() == []
    assert stats.chunks_failed == 1


@pytest.mark.asyncio
async def test_missing_source_directory_raises(tmp_path, embedder, store, settings, catalog):
    pipeline = IngestPipeline(tmp_path / "missing", embedder, store, settings=settings)

    with pytest.raises(DocumentIOError):
        await pipeline.ingest_all()


@pytest.mark.asyncio
async def test_payload_fields(pipeline, source_dir, store):
    (source_dir / "guide.md").write_text(
        "---\ntitle: Guide\ntags: [aiken]\n---\n# Guide\n\nAn Aiken validator.\n",
        encoding="utf-8",
    )
    await pipeline.ingest_all()

    chunk_id = next(iter(db.get_document("guide.md")["chunk_map"]))
    payload = store.get_payload("core", chunk_id)

    assert payload["doc_id"] == "guide.md"
    assert payload["category"] == "core"
    assert payload["heading_context"] == "# Guide"
    assert payload["mentions_technology"] is True
    assert payload["metadata"] == {"title": "Guide", "tags": ["aiken"]}


@pytest.mark.asyncio
async def test_remove_document(pipeline, three_documents, store):
    await pipeline.ingest_all()

    removed = await pipeline.remove_document("long.md")

    assert removed == 3
    assert await pipeline.remove_document("long.md") == 0


@pytest.mark.asyncio
async def test_run_is_recorded(pipeline, three_documents):
    await pipeline.ingest_all()

    run = db.get_latest_ingest_run()
    assert run["documents_processed"] == 3
    assert run["chunks_created"] == 4
    assert run["embedding_model"] == "fake-embed"
    assert run["embedding_dimension"] == 64


@pytest.mark.asyncio
async def test_progress_callback(pipeline, three_documents):
    seen = []

    await pipeline.ingest_all(progress_callback=lambda current, total, doc_id: seen.append((current, total)))

    assert sorted(seen) == [(1, 3), (2, 3), (3, 3)]


def test_stats_summary_counts_failures():
    stats = IngestStats(documents_processed=4, documents_failed=1, chunks_embedded=9, chunks_failed=2)

    assert stats.summary() == "4 documents processed, 9 chunks embedded, 3 failures (see log)"


@pytest.mark.asyncio
async def test_long_whitespace_run_indexes_every_chunk(pipeline, source_dir, store):
    (source_dir / "gap.md").write_text(
        "Intro text. " + " " * 3000 + "closing validator words.", encoding="utf-8"
    )

    stats = await pipeline.ingest_all()

    assert stats.documents_failed == 0
    assert stats.chunks_created == 2
    assert stats.chunks_embedded == 2
    assert len(db.get_document("gap.md")["chunk_map"]) == 2
    assert total_points(store) == 2


@pytest.mark.asyncio
async def test_blank_chunk_fails_alone(pipeline, source_dir):
    path = source_dir / "note.md"
    path.write_text("plain words", encoding="utf-8")
    document = pipeline.loader.load_file(path)
    blank = Chunk(
        chunk_id=make_chunk_id(document.doc_id, "   "),
        doc_id=document.doc_id,
        text="   ",
        char_start=0,
        char_end=3,
        chunk_index=0,
        overlap=0,
        category="general",
        contains_code=False,
        mentions_technology=False,
    )

    assert await pipeline._index_chunk(document, blank) == FAILED
