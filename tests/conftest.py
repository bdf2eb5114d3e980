"""Pytest configuration and fixtures for unit tests."""
import hashlib
import os
import re
import tempfile

# Keep the catalog and collections out of the working tree
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="cardano-rag-tests-"))

import httpx
import pytest

from cardano_rag import db
from cardano_rag.config import PipelineSettings
from cardano_rag.rag.embedder import Embedder
from cardano_rag.rag.ingest import IngestPipeline
from cardano_rag.rag.store_faiss import FAISSVectorStore

EMBEDDING_DIMENSION = 64
EMBEDDING_MODEL = "fake-embed"

_TOKEN = re.compile(r"\w+")


def hashed_embedding(text: str, dimension: int = EMBEDDING_DIMENSION):
    """Deterministic bag-of-words vector: one hashed bucket per token."""
    vector = [0.0] * dimension
    for token in _TOKEN.findall(text.lower()):
        bucket = int(hashlib.sha256(token.encode("utf-8")).hexdigest()[:8], 16) % dimension
        vector[bucket] += 1.0
    if not any(vector):
        vector[0] = 1.0
    return vector


def connection_error() -> Exception:
    return httpx.ConnectError("connection refused")


def status_error(status_code: int) -> Exception:
    request = httpx.Request("POST", "http://ollama.test/api/embeddings")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError(f"HTTP {status_code}", request=request, response=response)


class FakeOllamaClient:
    """Stands in for OllamaClient.embeddings with failure injection."""

    def __init__(
        self,
        dimension: int = EMBEDDING_DIMENSION,
        fail_times: int = 0,
        fail_on: str = None,
        error_factory=connection_error,
        response=None,
    ):
        self.dimension = dimension
        self.fail_times = fail_times
        self.fail_on = fail_on
        self.error_factory = error_factory
        self.response = response
        self.calls = 0
        self.prompts = []

    async def embeddings(self, prompt: str, model: str = None):
        self.calls += 1
        self.prompts.append(prompt)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise self.error_factory()
        if self.fail_on and self.fail_on in prompt:
            raise self.error_factory()
        if self.response is not None:
            return self.response
        return {"embedding": hashed_embedding(prompt, self.dimension)}


class FakeGenerator:
    """Records prompts and returns a canned answer."""

    def __init__(self, answer: str = "Use a minting policy."):
        self.answer = answer
        self.prompts = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.answer


@pytest.fixture
def catalog(tmp_path, monkeypatch):
    """Fresh SQLite catalog per test."""
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "catalog.sqlite")
    db.init_database()
    return db


@pytest.fixture
def settings():
    return PipelineSettings(
        max_chunk_size=1000,
        overlap_size=100,
        top_k=5,
        retry_count=3,
        retry_initial_delay=0.0,
        retry_max_delay=0.0,
        embedding_concurrency=4,
        ingest_concurrency=2,
    )


@pytest.fixture
def fake_client():
    return FakeOllamaClient()


@pytest.fixture
def make_embedder():
    def factory(client=None, max_attempts=3):
        return Embedder(
            client=client or FakeOllamaClient(),
            model=EMBEDDING_MODEL,
            max_attempts=max_attempts,
            max_concurrency=4,
            backoff_initial=0.0,
            backoff_max=0.0,
        )

    return factory


@pytest.fixture
def embedder(make_embedder, fake_client):
    return make_embedder(fake_client)


@pytest.fixture
def store(tmp_path):
    return FAISSVectorStore(index_dir=tmp_path / "collections", embedding_model=EMBEDDING_MODEL)


@pytest.fixture
def source_dir(tmp_path):
    path = tmp_path / "docs"
    path.mkdir()
    return path


@pytest.fixture
def pipeline(source_dir, embedder, store, settings, catalog):
    return IngestPipeline(
        source_dir=source_dir,
        embedder=embedder,
        vector_store=store,
        settings=settings,
    )


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def embed_text():
    return hashed_embedding


@pytest.fixture
def make_client():
    return FakeOllamaClient


@pytest.fixture
def http_status_error():
    return status_error
