"""
Conversational API caller

Compiles OpenAPI/Swagger documents into tools, matches natural-language
requests to them and collects parameters over a dialogue before calling the API.
"""

from .config import AppConfig
from .errors import (
    ApiDialogueError,
    CompileError,
    ConversationNotFound,
    EmbeddingUnavailable,
    ExecutionError,
    MatchNotFound,
    RefResolutionError,
    SpecLoadError,
    ValidationError,
)
from .models import ChatResponse, ConversationRecord, ConversationState, DialoguePhase, ToolDescriptor
from .schema_resolver import SchemaResolver
from .spec_compiler import SpecCompiler, compile_spec
from .spec_loader import load_spec
from .tool_index import ToolIndex
from .match_engine import MatchEngine, RegexIntentClassifier
from .slot_filling import SlotFillingEngine
from .command_synthesizer import CommandSynthesizer
from .conversation_store import InMemoryConversationStore, JsonFileConversationStore
from .conversation_engine import ConversationEngine

__version__ = "1.0.0"

__all__ = [
    "AppConfig",
    "ApiDialogueError",
    "CompileError",
    "ConversationNotFound",
    "EmbeddingUnavailable",
    "ExecutionError",
    "MatchNotFound",
    "RefResolutionError",
    "SpecLoadError",
    "ValidationError",
    "ChatResponse",
    "ConversationRecord",
    "ConversationState",
    "DialoguePhase",
    "ToolDescriptor",
    "SchemaResolver",
    "SpecCompiler",
    "compile_spec",
    "load_spec",
    "ToolIndex",
    "MatchEngine",
    "RegexIntentClassifier",
    "SlotFillingEngine",
    "CommandSynthesizer",
    "InMemoryConversationStore",
    "JsonFileConversationStore",
    "ConversationEngine",
]
