"""
OpenAI-based embedding provider.
"""

import os
import time
from typing import Dict, List, Optional
from loguru import logger
from openai import OpenAI

from .embedding_engine import EmbeddingProvider
from .errors import EmbeddingUnavailable


MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embeddings from the OpenAI API with a bounded query cache."""

    def __init__(self, model_name: str = "text-embedding-3-small", api_key: Optional[str] = None,
                 client: Optional[OpenAI] = None, cache_size_limit: int = 100):
        """
        Initialize the provider.

        Args:
            model_name: OpenAI embedding model name
            api_key: API key; falls back to OPENAI_API_KEY
            client: Preconfigured client, mainly for tests
            cache_size_limit: Maximum number of cached query embeddings
        """
        if client is None:
            api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise EmbeddingUnavailable("OPENAI_API_KEY not found in environment variables")
            client = OpenAI(api_key=api_key)

        self.client = client
        self.model_name = model_name
        self._dimension = MODEL_DIMENSIONS.get(model_name, 1536)

        self.query_cache: Dict[str, List[float]] = {}
        self.cache_size_limit = cache_size_limit

        self.last_timing: Dict[str, float] = {}
        self.total_tokens_used = 0
        logger.info(f"Initialized OpenAI embedding provider with model: {model_name} (dimension {self._dimension})")

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> List[float]:
        if text in self.query_cache:
            logger.debug(f"Using cached embedding for: '{text[:40]}'")
            return self.query_cache[text]

        vector = self.embed_many([text])[0]
        if len(self.query_cache) < self.cache_size_limit:
            self.query_cache[text] = vector
        return vector

    def embed_many(self, texts: List[str], batch_size: int = 2048) -> List[List[float]]:
        all_embeddings: List[List[float]] = []
        start_time = time.time()

        for i in range(0, len(texts), batch_size):
            batch = texts[i:i + batch_size]
            try:
                response = self.client.embeddings.create(input=batch, model=self.model_name)
            except Exception as e:
                logger.error(f"OpenAI embedding error: {e}")
                raise EmbeddingUnavailable(f"OpenAI embeddings request failed: {e}") from e

            all_embeddings.extend(list(item.embedding) for item in response.data)
            usage = getattr(response, "usage", None)
            if usage is not None:
                self.total_tokens_used += getattr(usage, "total_tokens", 0) or 0

        self.last_timing = {"embedding_time": time.time() - start_time, "timestamp": time.time()}
        return all_embeddings
