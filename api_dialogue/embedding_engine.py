"""
Embedding providers and vector similarity search for tool matching.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import faiss
import numpy as np
from loguru import logger

from .errors import EmbeddingUnavailable
from .models import ToolDescriptor


def serialize_tool(tool: ToolDescriptor) -> str:
    """Text that represents a tool for embedding."""
    parts = [
        tool.name,
        tool.description or "",
        tool.endpoint.method,
        tool.endpoint.path,
        " ".join(tool.tags),
        " ".join(field.name for field in tool.input_schema),
    ]
    return " ".join(part for part in parts if part)[:4096]


class EmbeddingProvider(ABC):
    """Maps text to a fixed-length vector."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        ...

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """
        Raises:
            EmbeddingUnavailable: If the provider cannot serve the request
        """

    def embed_many(self, texts: List[str]) -> List[List[float]]:
        return [self.embed(text) for text in texts]


class VectorStore(ABC):
    """Approximate nearest-neighbour lookup keyed by id."""

    @abstractmethod
    def upsert(self, item_id: str, vector: List[float], metadata: Optional[Dict[str, Any]] = None) -> None:
        ...

    @abstractmethod
    def query(self, vector: List[float], k: int) -> List[Tuple[str, Dict[str, Any], float]]:
        """Return up to ``k`` ``(id, metadata, distance)`` tuples, closest first."""

    @abstractmethod
    def clear(self) -> None:
        ...


def distance_to_similarity(distance: float) -> float:
    return max(0.0, min(1.0, 1.0 - float(distance)))


class FaissVectorStore(VectorStore):
    """In-process vector store on a FAISS inner-product index.

    Vectors are L2-normalised so the inner product is the cosine
    similarity; distances are reported as ``1 - cosine``.
    """

    def __init__(self, dimension: int):
        self.dimension = dimension
        self.index: Optional[faiss.Index] = None
        self.ids: List[str] = []
        self.metadata: Dict[str, Dict[str, Any]] = {}
        self._vectors: Dict[str, np.ndarray] = {}
        self._dirty = False

    def _normalize(self, vector: List[float]) -> np.ndarray:
        array = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        if array.shape[1] != self.dimension:
            raise ValueError(f"Expected vector of dimension {self.dimension}, got {array.shape[1]}")
        faiss.normalize_L2(array)
        return array

    def upsert(self, item_id: str, vector: List[float], metadata: Optional[Dict[str, Any]] = None) -> None:
        if item_id not in self._vectors:
            self.ids.append(item_id)
        self._vectors[item_id] = self._normalize(vector)
        self.metadata[item_id] = dict(metadata or {})
        self._dirty = True

    def _rebuild(self) -> None:
        self.index = faiss.IndexFlatIP(self.dimension)
        if self.ids:
            self.index.add(np.vstack([self._vectors[item_id] for item_id in self.ids]))
        self._dirty = False
        logger.debug(f"Rebuilt FAISS index with {self.index.ntotal} vectors")

    def query(self, vector: List[float], k: int) -> List[Tuple[str, Dict[str, Any], float]]:
        if not self.ids or k <= 0:
            return []
        if self._dirty or self.index is None:
            self._rebuild()

        similarities, indices = self.index.search(self._normalize(vector), min(k, len(self.ids)))
        results = []
        for similarity, idx in zip(similarities[0], indices[0]):
            if 0 <= idx < len(self.ids):
                item_id = self.ids[idx]
                results.append((item_id, self.metadata[item_id], 1.0 - float(similarity)))
        return results

    def clear(self) -> None:
        self.index = None
        self.ids = []
        self.metadata = {}
        self._vectors = {}
        self._dirty = False

    def __len__(self):
        return len(self.ids)


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """Local embeddings from a sentence-transformers model."""

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2", cache_size_limit: int = 100):
        from sentence_transformers import SentenceTransformer

        logger.info(f"Loading embedding model: {model_name}")
        self.model_name = model_name
        self.model = SentenceTransformer(model_name)
        self.model.eval()
        self._dimension = self.model.get_sentence_embedding_dimension()

        self.query_cache: Dict[str, List[float]] = {}
        self.cache_size_limit = cache_size_limit
        logger.info(f"Embedding dimension: {self._dimension}")

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> List[float]:
        if text in self.query_cache:
            return self.query_cache[text]
        try:
            vector = self.model.encode([text])[0].astype("float32").tolist()
        except Exception as e:
            raise EmbeddingUnavailable(f"sentence-transformers encode failed: {e}") from e

        if len(self.query_cache) < self.cache_size_limit:
            self.query_cache[text] = vector
        return vector

    def embed_many(self, texts: List[str]) -> List[List[float]]:
        logger.info(f"Generating embeddings for {len(texts)} texts")
        try:
            embeddings = self.model.encode(texts, show_progress_bar=False)
        except Exception as e:
            raise EmbeddingUnavailable(f"sentence-transformers encode failed: {e}") from e
        return [row.astype("float32").tolist() for row in embeddings]
