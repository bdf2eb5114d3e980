"""Tests for the FAISS collection store."""
import pytest

from cardano_rag.rag.errors import VectorStoreUnavailable
from cardano_rag.rag.store_faiss import FAISSVectorStore


def payload(point_id, text="text"):
    return {"chunk_id": point_id, "doc_id": "doc.md", "text": text}


@pytest.mark.asyncio
async def test_create_collection_is_idempotent(store):
    await store.create_collection("core", 3)
    await store.create_collection("core", 3)

    assert store.list_collections() == ["core"]
    assert store.dimension_of("core") == 3


@pytest.mark.asyncio
async def test_create_collection_dimension_clash(store):
    await store.create_collection("core", 3)

    with pytest.raises(ValueError):
        await store.create_collection("core", 4)


@pytest.mark.asyncio
async def test_invalid_collection_name(store):
    with pytest.raises(ValueError):
        await store.create_collection("../escape", 3)


@pytest.mark.asyncio
async def test_upsert_is_idempotent(store):
    await store.upsert("core", "a", [1.0, 0.0, 0.0], payload("a", "old"))
    await store.upsert("core", "a", [1.0, 0.0, 0.0], payload("a", "new"))

    assert store.count("core") == 1
    assert store.get_payload("core", "a")["text"] == "new"


@pytest.mark.asyncio
async def test_upsert_creates_collection_lazily(store):
    await store.upsert("security", "a", [0.0, 1.0], payload("a"))

    assert store.list_collections() == ["security"]
    assert store.dimension_of("security") == 2


@pytest.mark.asyncio
async def test_upsert_dimension_mismatch(store):
    await store.create_collection("core", 3)

    with pytest.raises(ValueError):
        await store.upsert("core", "a", [1.0, 0.0], payload("a"))


@pytest.mark.asyncio
async def test_search_orders_by_cosine_similarity(store):
    await store.upsert("core", "far", [0.0, 1.0, 0.0], payload("far"))
    await store.upsert("core", "exact", [2.0, 0.0, 0.0], payload("exact"))
    await store.upsert("core", "close", [0.9, 0.1, 0.0], payload("close"))

    hits = await store.search("core", [1.0, 0.0, 0.0], top_k=3)

    assert [h.id for h in hits] == ["exact", "close", "far"]
    assert hits[0].score == pytest.approx(1.0, abs=1e-5)
    assert hits[0].payload["chunk_id"] == "exact"
    assert hits[0].score >= hits[1].score >= hits[2].score


@pytest.mark.asyncio
async def test_search_limits_results(store):
    for i in range(5):
        await store.upsert("core", f"p{i}", [1.0, float(i), 0.0], payload(f"p{i}"))

    assert len(await store.search("core", [1.0, 0.0, 0.0], top_k=2)) == 2
    assert len(await store.search("core", [1.0, 0.0, 0.0], top_k=50)) == 5


@pytest.mark.asyncio
async def test_search_empty_and_unknown_collections(store):
    await store.create_collection("core", 3)

    assert await store.search("core", [1.0, 0.0, 0.0], top_k=5) == []
    assert await store.search("missing", [1.0, 0.0, 0.0], top_k=5) == []


@pytest.mark.asyncio
async def test_search_rejects_non_positive_top_k(store):
    with pytest.raises(ValueError):
        await store.search("core", [1.0, 0.0, 0.0], top_k=0)


@pytest.mark.asyncio
async def test_zero_vector_is_stored(store):
    await store.upsert("core", "zero", [0.0, 0.0, 0.0], payload("zero"))

    hits = await store.search("core", [1.0, 0.0, 0.0], top_k=1)
    assert [h.id for h in hits] == ["zero"]
    assert hits[0].score == pytest.approx(0.0)


@pytest.mark.asyncio
async def test_contains_get_vector_and_delete(store):
    await store.upsert("core", "a", [3.0, 4.0], payload("a"))
    await store.upsert("core", "b", [0.0, 1.0], payload("b"))

    assert store.contains("core", "a")
    assert not store.contains("security", "a")
    assert store.get_vector("core", "a") == pytest.approx([0.6, 0.8], abs=1e-6)
    assert store.get_vector("core", "missing") is None

    assert await store.delete("core", ["a", "missing"]) == 1
    assert not store.contains("core", "a")
    assert store.count("core") == 1
    assert [h.id for h in await store.search("core", [1.0, 0.0], top_k=5)] == ["b"]


@pytest.mark.asyncio
async def test_save_and_load_round_trip(store, tmp_path):
    await store.upsert("core", "a", [1.0, 0.0, 0.0], payload("a", "alpha"))
    await store.upsert("security", "b", [0.0, 1.0, 0.0], payload("b", "beta"))
    await store.save()

    reloaded = FAISSVectorStore(index_dir=store.index_dir, embedding_model=store.embedding_model)
    await reloaded.init_or_load()

    assert reloaded.list_collections() == ["core", "security"]
    assert reloaded.count("core") == 1
    hits = await reloaded.search("security", [0.0, 1.0, 0.0], top_k=1)
    assert hits[0].id == "b"
    assert hits[0].payload["text"] == "beta"
    assert reloaded.get_vector("core", "a") == pytest.approx([1.0, 0.0, 0.0])


@pytest.mark.asyncio
async def test_load_rejects_other_embedding_model(store):
    await store.upsert("core", "a", [1.0, 0.0], payload("a"))
    await store.save()

    other = FAISSVectorStore(index_dir=store.index_dir, embedding_model="other-model")
    with pytest.raises(ValueError):
        await other.load()


@pytest.mark.asyncio
async def test_init_or_load_without_files_starts_empty(store):
    await store.init_or_load()

    assert store.list_collections() == []
    assert store.get_stats()["vector_count"] == 0


@pytest.mark.asyncio
async def test_reset_removes_everything(store):
    await store.upsert("core", "a", [1.0, 0.0], payload("a"))
    await store.save()

    await store.reset()

    assert store.list_collections() == []
    assert not store.index_dir.exists()


@pytest.mark.asyncio
async def test_save_failure_raises_unavailable(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    store = FAISSVectorStore(index_dir=blocker / "collections", embedding_model="fake-embed")
    await store.upsert("core", "a", [1.0, 0.0], payload("a"))

    with pytest.raises(VectorStoreUnavailable):
        await store.save()


@pytest.mark.asyncio
async def test_load_corrupt_metadata_raises_unavailable(store):
    store.index_dir.mkdir(parents=True)
    (store.index_dir / "core.json").write_text("{not json")

    with pytest.raises(VectorStoreUnavailable):
        await store.load()


@pytest.mark.asyncio
async def test_stats(store):
    await store.upsert("core", "a", [1.0, 0.0], payload("a"))

    stats = store.get_stats()
    assert stats["collections"] == {"core": {"dimension": 2, "vector_count": 1}}
    assert stats["vector_count"] == 1
