"""FAISS vector store with one named collection per category.

Handles:
- Collection creation with a fixed embedding dimension
- Idempotent upsert keyed by chunk id
- Cosine similarity search (inner product over L2-normalised vectors)
- Index and payload persistence
"""
import hashlib
import json
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import faiss
import numpy as np
import structlog

from cardano_rag import config
from cardano_rag.rag.errors import VectorStoreUnavailable

logger = structlog.get_logger()

INDEX_TYPE = "IndexIDMap2(IndexFlatIP)"

COLLECTION_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def faiss_id(point_id: str) -> int:
    """Stable 60-bit integer id for a string point id."""
    return int(hashlib.sha256(point_id.encode("utf-8")).hexdigest()[:15], 16)


def _normalize(vector) -> np.ndarray:
    array = np.asarray(vector, dtype=np.float32).reshape(1, -1)
    norm = float(np.linalg.norm(array))
    if norm > 0:
        array = array / norm
    return array


@dataclass
class SearchHit:
    """A stored point returned by a similarity search."""

    id: str
    score: float
    payload: Dict[str, Any]


@dataclass
class _Collection:
    name: str
    dimension: int
    index: Any
    payloads: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    labels: Dict[int, str] = field(default_factory=dict)

    @classmethod
    def new(cls, name: str, dimension: int) -> "_Collection":
        return cls(name=name, dimension=dimension, index=faiss.IndexIDMap2(faiss.IndexFlatIP(dimension)))


class FAISSVectorStore:
    """Local FAISS collections with payloads, persisted under an index directory."""

    def __init__(
        self,
        index_dir: Path = None,
        embedding_model: str = None,
    ):
        """Initialize the FAISS vector store.

        Args:
            index_dir: Directory holding collection files (default: VECTOR_INDEX_DIR)
            embedding_model: Embedding model name recorded with each collection
                (default from config)
        """
        self.index_dir = Path(index_dir or config.VECTOR_INDEX_DIR)
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self._collections: Dict[str, _Collection] = {}

        logger.info(
            "faiss_store_initialized",
            index_dir=str(self.index_dir),
            embedding_model=self.embedding_model,
        )

    def _index_path(self, name: str) -> Path:
        return self.index_dir / f"{name}.index"

    def _metadata_path(self, name: str) -> Path:
        return self.index_dir / f"{name}.json"

    async def create_collection(self, name: str, dimension: int) -> None:
        """Create a collection if it does not exist yet.

        Raises:
            ValueError: If the name is invalid, the dimension is not positive,
                or the collection exists with another dimension
        """
        if not COLLECTION_NAME_PATTERN.match(name or ""):
            raise ValueError(f"Invalid collection name: {name!r}")
        if dimension <= 0:
            raise ValueError(f"Dimension must be positive, got {dimension}")

        existing = self._collections.get(name)
        if existing is not None:
            if existing.dimension != dimension:
                raise ValueError(
                    f"Collection '{name}' exists with dimension {existing.dimension}, "
                    f"requested {dimension}"
                )
            return

        self._collections[name] = _Collection.new(name, dimension)
        logger.info("collection_created", collection=name, dimension=dimension, index_type=INDEX_TYPE)

    async def upsert(
        self,
        collection: str,
        point_id: str,
        vector: List[float],
        payload: Dict[str, Any],
    ) -> None:
        """Insert or overwrite a point; creates the collection on first use.

        Raises:
            ValueError: If the vector dimension does not match the collection
        """
        if not point_id:
            raise ValueError("Point id must not be empty")

        if collection not in self._collections:
            await self.create_collection(collection, len(vector))
        coll = self._collections[collection]

        array = _normalize(vector)
        if array.shape[1] != coll.dimension:
            raise ValueError(
                f"Embedding dimension mismatch: expected {coll.dimension}, "
                f"got {array.shape[1]}"
            )

        label = faiss_id(point_id)
        ids = np.array([label], dtype=np.int64)
        coll.index.remove_ids(ids)
        coll.index.add_with_ids(array, ids)
        coll.payloads[point_id] = dict(payload)
        coll.labels[label] = point_id

    async def search(
        self, collection: str, query_vector: List[float], top_k: int = None
    ) -> List[SearchHit]:
        """Search one collection for the nearest points.

        Args:
            collection: Collection name
            query_vector: Query embedding
            top_k: Maximum number of hits (default from config)

        Returns:
            Hits ordered by descending cosine similarity; empty when the
            collection is unknown or holds no points

        Raises:
            ValueError: If top_k is not positive or the dimension mismatches
        """
        if top_k is None:
            top_k = config.RETRIEVAL_TOP_K
        if top_k <= 0:
            raise ValueError(f"top_k must be positive, got {top_k}")

        coll = self._collections.get(collection)
        if coll is None or coll.index.ntotal == 0:
            logger.debug("search_skipped_empty_collection", collection=collection)
            return []

        query = _normalize(query_vector)
        if query.shape[1] != coll.dimension:
            raise ValueError(
                f"Query dimension mismatch: expected {coll.dimension}, "
                f"got {query.shape[1]}"
            )

        scores, labels = coll.index.search(query, min(top_k, coll.index.ntotal))

        hits = []
        for score, label in zip(scores[0].tolist(), labels[0].tolist()):
            if label == -1:
                continue
            point_id = coll.labels.get(label)
            if point_id is None:
                logger.warning("vector_id_without_payload", collection=collection, label=label)
                continue
            hits.append(SearchHit(id=point_id, score=float(score), payload=dict(coll.payloads[point_id])))

        logger.debug(
            "vector_search_completed",
            collection=collection,
            top_k=top_k,
            results_found=len(hits),
        )
        return hits

    def contains(self, collection: str, point_id: str) -> bool:
        coll = self._collections.get(collection)
        return coll is not None and point_id in coll.payloads

    def get_vector(self, collection: str, point_id: str) -> Optional[List[float]]:
        """Stored (normalised) vector for a point, or None."""
        if not self.contains(collection, point_id):
            return None
        coll = self._collections[collection]
        return coll.index.reconstruct(faiss_id(point_id)).tolist()

    def get_payload(self, collection: str, point_id: str) -> Optional[Dict[str, Any]]:
        coll = self._collections.get(collection)
        if coll is None or point_id not in coll.payloads:
            return None
        return dict(coll.payloads[point_id])

    async def delete(self, collection: str, point_ids: Iterable[str]) -> int:
        """Remove points from a collection.

        Returns:
            Number of points removed
        """
        coll = self._collections.get(collection)
        if coll is None:
            return 0

        present = [pid for pid in point_ids if pid in coll.payloads]
        if not present:
            return 0

        labels = [faiss_id(pid) for pid in present]
        removed = coll.index.remove_ids(np.array(labels, dtype=np.int64))
        for pid, label in zip(present, labels):
            coll.payloads.pop(pid, None)
            coll.labels.pop(label, None)

        logger.info("points_deleted", collection=collection, count=int(removed))
        return int(removed)

    def count(self, collection: str) -> int:
        coll = self._collections.get(collection)
        return coll.index.ntotal if coll is not None else 0

    def list_collections(self) -> List[str]:
        return sorted(self._collections)

    def dimension_of(self, collection: str) -> Optional[int]:
        coll = self._collections.get(collection)
        return coll.dimension if coll is not None else None

    async def save(self) -> None:
        """Write every collection to disk.

        Raises:
            VectorStoreUnavailable: If the files cannot be written
        """
        try:
            self.index_dir.mkdir(parents=True, exist_ok=True)
            for name, coll in self._collections.items():
                faiss.write_index(coll.index, str(self._index_path(name)))
                metadata = {
                    "collection": name,
                    "dimension": coll.dimension,
                    "embedding_model": self.embedding_model,
                    "index_type": INDEX_TYPE,
                    "vector_count": coll.index.ntotal,
                    "payloads": coll.payloads,
                }
                tmp_path = self._metadata_path(name).with_suffix(".json.tmp")
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(metadata, f)
                tmp_path.replace(self._metadata_path(name))
        except (OSError, RuntimeError) as e:
            logger.error("faiss_index_save_failed", index_dir=str(self.index_dir), error=str(e))
            raise VectorStoreUnavailable(f"Failed to save vector index: {e}") from e

        logger.info(
            "faiss_index_saved",
            index_dir=str(self.index_dir),
            collections=self.list_collections(),
            vector_count=sum(c.index.ntotal for c in self._collections.values()),
        )

    async def load(self) -> None:
        """Load every collection found in the index directory.

        Raises:
            ValueError: If the collections were built with another embedding model
            VectorStoreUnavailable: If the files cannot be read
        """
        collections = {}
        try:
            for metadata_path in sorted(self.index_dir.glob("*.json")):
                name = metadata_path.stem
                with open(metadata_path, "r", encoding="utf-8") as f:
                    metadata = json.load(f)

                stored_model = metadata.get("embedding_model")
                if stored_model and stored_model != self.embedding_model:
                    raise ValueError(
                        f"Collection '{name}' was built with {stored_model}, "
                        f"but the current model is {self.embedding_model}. "
                        "Please rebuild the index."
                    )

                index = faiss.read_index(str(self._index_path(name)))
                payloads = metadata.get("payloads", {})
                collections[name] = _Collection(
                    name=name,
                    dimension=int(metadata.get("dimension", index.d)),
                    index=index,
                    payloads=payloads,
                    labels={faiss_id(pid): pid for pid in payloads},
                )
        except (OSError, RuntimeError, json.JSONDecodeError) as e:
            logger.error("faiss_index_load_failed", index_dir=str(self.index_dir), error=str(e))
            raise VectorStoreUnavailable(f"Failed to load vector index: {e}") from e

        self._collections = collections
        logger.info(
            "faiss_index_loaded",
            collections=self.list_collections(),
            vector_count=sum(c.index.ntotal for c in collections.values()),
        )

    async def init_or_load(self) -> None:
        """Load existing collections from disk, or start empty."""
        if self.index_dir.exists() and any(self.index_dir.glob("*.json")):
            logger.info("existing_index_detected", path=str(self.index_dir))
            await self.load()
        else:
            logger.info("no_index_found_initializing_new", path=str(self.index_dir))
            self._collections = {}

    async def reset(self) -> None:
        """Drop every collection in memory and on disk (for reindexing)."""
        logger.warning("rebuilding_index", index_dir=str(self.index_dir))
        self._collections = {}
        if self.index_dir.exists():
            try:
                shutil.rmtree(self.index_dir)
            except OSError as e:
                raise VectorStoreUnavailable(f"Failed to delete vector index: {e}") from e
            logger.info("deleted_existing_index", path=str(self.index_dir))

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the vector store.

        Returns:
            Dictionary with store statistics
        """
        return {
            "initialized": bool(self._collections),
            "embedding_model": self.embedding_model,
            "index_type": INDEX_TYPE,
            "index_exists_on_disk": self.index_dir.exists() and any(self.index_dir.glob("*.index")),
            "collections": {
                name: {"dimension": coll.dimension, "vector_count": coll.index.ntotal}
                for name, coll in sorted(self._collections.items())
            },
            "vector_count": sum(c.index.ntotal for c in self._collections.values()),
        }
