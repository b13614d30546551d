"""
Persistence for conversation transcripts and slot-filling state.
"""

import json
import threading
from abc import ABC, abstractmethod
from contextlib import nullcontext
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, ContextManager, Dict, List, Optional
from loguru import logger

from .models import ConversationRecord, ToolDescriptor, utcnow


ToolLookup = Callable[[str], Optional[ToolDescriptor]]


class ConversationStore(ABC):
    """Save, load, list and evict conversations by id."""

    @abstractmethod
    def save(self, record: ConversationRecord) -> None:
        ...

    @abstractmethod
    def load(self, conversation_id: str) -> Optional[ConversationRecord]:
        ...

    @abstractmethod
    def delete(self, conversation_id: str) -> bool:
        ...

    @abstractmethod
    def ids(self) -> List[str]:
        ...

    def list(self) -> List[Dict[str, Any]]:
        """Summaries ``{id, lastActivity, messageCount}``, most recent first."""
        records = [record for record in (self.load(conversation_id) for conversation_id in self.ids())
                   if record is not None]
        records.sort(key=lambda record: record.last_activity, reverse=True)
        return [record.summary() for record in records]

    def evict_idle(self, timeout_seconds: float,
                   lock_for: Optional[Callable[[str], ContextManager]] = None) -> List[str]:
        """Delete conversations idle longer than ``timeout_seconds``.

        Each record is re-read and deleted while holding ``lock_for(id)``, so a
        turn that is saving the conversation finishes first and keeps it alive.
        """
        cutoff = utcnow() - timedelta(seconds=timeout_seconds)
        evicted = []
        for conversation_id in self.ids():
            with (lock_for(conversation_id) if lock_for else nullcontext()):
                record = self.load(conversation_id)
                if record is not None and record.last_activity < cutoff:
                    self.delete(conversation_id)
                    evicted.append(conversation_id)
        if evicted:
            logger.info(f"Evicted {len(evicted)} idle conversations")
        return evicted


class InMemoryConversationStore(ConversationStore):
    """Keeps records in a dict; contents are lost with the process."""

    def __init__(self):
        self._records: Dict[str, ConversationRecord] = {}
        self._lock = threading.Lock()

    def save(self, record: ConversationRecord) -> None:
        with self._lock:
            self._records[record.id] = record

    def load(self, conversation_id: str) -> Optional[ConversationRecord]:
        with self._lock:
            return self._records.get(conversation_id)

    def delete(self, conversation_id: str) -> bool:
        with self._lock:
            return self._records.pop(conversation_id, None) is not None

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._records)


class JsonFileConversationStore(ConversationStore):
    """One JSON file per conversation under ``directory``.

    The current tool is stored by name and re-attached through
    ``tool_lookup`` on load; a tool that no longer exists leaves the
    conversation without an active tool.
    """

    def __init__(self, directory: str, tool_lookup: ToolLookup):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.tool_lookup = tool_lookup
        self._lock = threading.Lock()
        logger.info(f"Storing conversations in {self.directory}")

    def _path(self, conversation_id: str) -> Path:
        safe_id = "".join(char for char in conversation_id if char.isalnum() or char in "-_")
        return self.directory / f"{safe_id}.json"

    def save(self, record: ConversationRecord) -> None:
        path = self._path(record.id)
        temp_path = path.with_suffix(".json.tmp")
        with self._lock:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, indent=2, default=str)
            temp_path.replace(path)

    def load(self, conversation_id: str) -> Optional[ConversationRecord]:
        path = self._path(conversation_id)
        with self._lock:
            if not path.exists():
                return None
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        return ConversationRecord.from_dict(data, self.tool_lookup)

    def delete(self, conversation_id: str) -> bool:
        path = self._path(conversation_id)
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
            return True

    def ids(self) -> List[str]:
        with self._lock:
            return sorted(path.stem for path in self.directory.glob("*.json"))
