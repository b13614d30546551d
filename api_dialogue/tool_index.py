"""
In-memory lookup structures over a compiled tool set.
"""

import re
from typing import Dict, List, Optional, Set
from loguru import logger

from .models import ToolDescriptor


STOP_WORDS = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all", "can", "with",
    "from", "this", "that", "into", "has", "have", "was", "were", "will",
    "its", "our", "your", "their", "please", "want", "would", "could",
    "should", "about", "some", "any", "via", "using", "use", "available",
    "description", "returns", "return", "named", "called",
})


def tokenize(text: str) -> List[str]:
    """Lowercase tokens split on non-alphanumerics, minus short words and stop words."""
    tokens = re.split(r"[^a-z0-9]+", (text or "").lower())
    return [token for token in tokens if len(token) > 2 and token not in STOP_WORDS]


def path_tokens(path: str) -> List[str]:
    """Tokens of an endpoint path, skipping empty segments and {param} placeholders."""
    tokens: List[str] = []
    for segment in (path or "").split("/"):
        if not segment or re.fullmatch(r"\{[^}]*\}", segment):
            continue
        tokens.extend(token for token in re.split(r"[^a-z0-9]+", segment.lower()) if token)
    return tokens


class ToolIndex:
    """Exact-name and inverted keyword indexes, built once per tool set.

    Read-only after ``build``; safe to share between conversations.
    """

    def __init__(self):
        self.tools: List[ToolDescriptor] = []
        self.by_name: Dict[str, ToolDescriptor] = {}
        self.by_keyword: Dict[str, List[ToolDescriptor]] = {}
        self._keywords: Dict[str, Set[str]] = {}
        self._order: Dict[str, int] = {}

    @classmethod
    def build(cls, tools: List[ToolDescriptor]) -> "ToolIndex":
        index = cls()
        for position, tool in enumerate(tools):
            index.tools.append(tool)
            index._order[tool.name] = position
            index.by_name[tool.name.lower()] = tool

            keywords = set(tokenize(" ".join([tool.name, tool.description or ""] + list(tool.tags))))
            index._keywords[tool.name] = keywords
            for keyword in sorted(keywords):
                index.by_keyword.setdefault(keyword, []).append(tool)

        logger.info(f"Indexed {len(index.tools)} tools under {len(index.by_keyword)} keywords")
        return index

    def get(self, name: str) -> Optional[ToolDescriptor]:
        if not name:
            return None
        return self.by_name.get(name.lower())

    def keywords_for(self, tool: ToolDescriptor) -> Set[str]:
        keywords = self._keywords.get(tool.name)
        if keywords is None:
            keywords = set(tokenize(" ".join([tool.name, tool.description or ""] + list(tool.tags))))
        return keywords

    def order_of(self, tool: ToolDescriptor) -> int:
        return self._order.get(tool.name, len(self._order))

    def candidates_for(self, query: str) -> List[ToolDescriptor]:
        """Tools sharing at least one keyword with the query, in compile order."""
        seen: Dict[str, ToolDescriptor] = {}
        for token in tokenize(query):
            for tool in self.by_keyword.get(token, []):
                seen[tool.name] = tool
        return sorted(seen.values(), key=self.order_of)

    def __len__(self):
        return len(self.tools)

    def __iter__(self):
        return iter(self.tools)
