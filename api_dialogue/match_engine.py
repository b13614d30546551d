"""
Multi-signal ranking of tools against a natural-language query.
"""

import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from loguru import logger

from .embedding_engine import (
    EmbeddingProvider,
    FaissVectorStore,
    VectorStore,
    distance_to_similarity,
    serialize_tool,
)
from .errors import EmbeddingUnavailable, MatchNotFound
from .models import ScoreBreakdown, ScoredTool, ToolDescriptor
from .tool_index import ToolIndex, path_tokens, tokenize


SIGNAL_WEIGHTS = {
    "semantic": 0.4,
    "keyword": 0.3,
    "intent": 0.2,
    "path": 0.1,
}
NEUTRAL_SEMANTIC_SCORE = 0.5
NEUTRAL_INTENT_SCORE = 0.5

INTENT_PATTERNS = {
    "read": r"\b(get|fetch|retrieve|find|search|list|show|display|read|view|lookup)\b",
    "create": r"\b(create|add|insert|post|new|make|register)\b",
    "update": r"\b(update|modify|change|edit|patch|put|rename|set)\b",
    "delete": r"\b(delete|remove|destroy|clear|erase|drop)\b",
}
INTENT_METHODS = {
    "create": ("POST", "PUT"),
    "read": ("GET", "HEAD"),
    "update": ("PUT", "PATCH"),
    "delete": ("DELETE",),
}


class IntentClassifier(ABC):
    """Maps a query to one of create, read, update, delete or other."""

    @abstractmethod
    def classify(self, query: str) -> str:
        ...


class RegexIntentClassifier(IntentClassifier):
    """Verb-vocabulary classifier; the earliest verb in the query decides."""

    def __init__(self, patterns: Optional[Dict[str, str]] = None):
        self.patterns = {intent: re.compile(pattern) for intent, pattern in (patterns or INTENT_PATTERNS).items()}

    def classify(self, query: str) -> str:
        lowered = (query or "").lower()
        best_intent = "other"
        best_position = len(lowered) + 1
        for intent, pattern in self.patterns.items():
            match = pattern.search(lowered)
            if match and match.start() < best_position:
                best_intent = intent
                best_position = match.start()
        return best_intent


def intent_score(intent: str, tool: ToolDescriptor) -> float:
    if intent not in INTENT_METHODS:
        return NEUTRAL_INTENT_SCORE
    return 1.0 if tool.endpoint.method in INTENT_METHODS[intent] else 0.0


def keyword_score(query_tokens: List[str], keywords) -> float:
    """Fraction of query tokens found in, or contained by, the tool's keywords."""
    if not query_tokens:
        return 0.0
    matches = 0
    for token in query_tokens:
        if token in keywords or any(token in keyword for keyword in keywords):
            matches += 1
    return matches / len(query_tokens)


def path_score(query_tokens: List[str], path: str) -> float:
    """Fraction of query tokens matching a token of the endpoint path."""
    if not query_tokens:
        return 0.0
    tokens = path_tokens(path)
    if not tokens:
        return 0.0
    matches = 0
    for token in query_tokens:
        if any(token in part or (len(part) > 2 and part in token) for part in tokens):
            matches += 1
    return matches / len(query_tokens)


class MatchEngine:
    """Ranks tools by a fixed weighted sum of four signals.

    The semantic signal needs an embedding provider; without one, or when
    the provider fails, it is held at a neutral 0.5 for every tool.
    """

    def __init__(self, index: ToolIndex,
                 embedding_provider: Optional[EmbeddingProvider] = None,
                 vector_store: Optional[VectorStore] = None,
                 intent_classifier: Optional[IntentClassifier] = None):
        self.index = index
        self.embedding_provider = embedding_provider
        self.vector_store = vector_store
        self.intent_classifier = intent_classifier or RegexIntentClassifier()
        self.semantic_enabled = False

        if self.embedding_provider is not None:
            self.index_embeddings()

    def index_embeddings(self) -> None:
        """Replace the vector store contents with one embedding per tool."""
        tools = list(self.index)
        if not tools:
            return
        try:
            vectors = self.embedding_provider.embed_many([serialize_tool(tool) for tool in tools])
        except EmbeddingUnavailable as e:
            logger.warning(f"Embeddings unavailable, semantic scoring disabled: {e}")
            self.semantic_enabled = False
            return

        if self.vector_store is None:
            self.vector_store = FaissVectorStore(len(vectors[0]))
        else:
            self.vector_store.clear()
        for tool, vector in zip(tools, vectors):
            self.vector_store.upsert(tool.name, vector, {"method": tool.endpoint.method, "path": tool.endpoint.path})

        self.semantic_enabled = True
        logger.info(f"Stored embeddings for {len(tools)} tools")

    def semantic_scores(self, query: str) -> Optional[Dict[str, float]]:
        """Similarity per tool name, or None when the neutral score applies."""
        if not self.semantic_enabled:
            return None
        try:
            vector = self.embedding_provider.embed(query)
        except EmbeddingUnavailable as e:
            logger.warning(f"Query embedding failed, using neutral semantic score: {e}")
            return None

        results = self.vector_store.query(vector, len(self.index))
        return {item_id: distance_to_similarity(distance) for item_id, _, distance in results}

    def score_tools(self, query: str, tools: Optional[List[ToolDescriptor]] = None) -> List[ScoredTool]:
        """Score and rank ``tools`` (default: every indexed tool), best first."""
        candidates = list(self.index) if tools is None else list(tools)
        query_tokens = tokenize(query)
        intent = self.intent_classifier.classify(query)
        semantic = self.semantic_scores(query) if candidates else None

        scored = []
        for tool in candidates:
            breakdown = ScoreBreakdown(
                semantic=(NEUTRAL_SEMANTIC_SCORE if semantic is None
                          else semantic.get(tool.name, NEUTRAL_SEMANTIC_SCORE)),
                keyword=keyword_score(query_tokens, self.index.keywords_for(tool)),
                intent=intent_score(intent, tool),
                path=path_score(query_tokens, tool.endpoint.path),
            )
            total = sum(getattr(breakdown, signal) * weight for signal, weight in SIGNAL_WEIGHTS.items())
            scored.append(ScoredTool(tool, max(0.0, min(1.0, total)), breakdown))

        # Stable sort: ties keep compile order.
        scored.sort(key=lambda item: (-item.score, self.index.order_of(item.tool)))
        logger.debug(f"Scored {len(scored)} tools for '{query}' (intent: {intent})")
        return scored

    def find_best_match(self, query: str, tools: Optional[List[ToolDescriptor]] = None) -> Optional[ScoredTool]:
        """
        Best-scoring tool for a query.

        A low score is still returned; the caller decides whether it is good
        enough.

        Returns:
            The top ScoredTool, or None when there are no candidates
        """
        try:
            return self.require_best_match(query, tools)
        except MatchNotFound:
            return None

    def require_best_match(self, query: str, tools: Optional[List[ToolDescriptor]] = None) -> ScoredTool:
        scored = self.score_tools(query, tools)
        if not scored:
            raise MatchNotFound(f"No tools available to match '{query}'")
        best = scored[0]
        logger.info(f"Matched tool '{best.tool.name}' with score {best.score:.3f} {best.breakdown.to_dict()}")
        return best

    def find_similar(self, query: str, tools: Optional[List[ToolDescriptor]] = None, k: int = 3) -> List[ScoredTool]:
        return self.score_tools(query, tools)[:max(k, 0)]
