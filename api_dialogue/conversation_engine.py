"""
Conversation orchestration: matching, slot filling and execution per turn.
"""

import json
import threading
from typing import Any, Dict, List, Optional
from loguru import logger

from .command_synthesizer import CommandSynthesizer
from .config import AppConfig
from .conversation_store import ConversationStore, InMemoryConversationStore, JsonFileConversationStore
from .embedding_engine import EmbeddingProvider, SentenceTransformerEmbeddingProvider
from .errors import ApiDialogueError, ConversationNotFound
from .match_engine import IntentClassifier, MatchEngine
from .models import ChatResponse, ConversationRecord, ScoredTool, ToolDescriptor
from .parameter_extractor import ParameterExtractor, PatternParameterExtractor
from .slot_filling import SlotFillingEngine, SlotFillingResult
from .spec_compiler import compile_spec
from .spec_loader import load_spec
from .tool_index import ToolIndex
from .transport import RequestsTransport, Transport


MAX_LISTED_OPERATIONS = 20
MAX_RESULT_CHARS = 2000


def create_embedding_provider(config: AppConfig) -> Optional[EmbeddingProvider]:
    """Embedding provider for the configured backend, or None to score without embeddings."""
    if config.embedding_backend == "none":
        return None
    try:
        if config.embedding_backend == "openai":
            from .openai_embedding_engine import OpenAIEmbeddingProvider
            return OpenAIEmbeddingProvider(config.embedding_model or "text-embedding-3-small",
                                           api_key=config.openai_api_key)
        return SentenceTransformerEmbeddingProvider(config.embedding_model or "sentence-transformers/all-MiniLM-L6-v2")
    except Exception as e:
        logger.warning(f"Failed to initialize {config.embedding_backend} embeddings: {e}")
        return None


def create_parameter_extractor(config: AppConfig) -> ParameterExtractor:
    if config.parameter_extractor == "openai":
        try:
            from .openai_parameter_extractor import OpenAIParameterExtractor
            logger.info("Using OpenAI for parameter extraction")
            return OpenAIParameterExtractor(config.openai_model, api_key=config.openai_api_key)
        except ValueError as e:
            logger.warning(f"Failed to initialize OpenAI extractor: {e}")
    return PatternParameterExtractor()


def _format_body(body: Any) -> str:
    if body is None:
        return ""
    text = body if isinstance(body, str) else json.dumps(body, indent=2, default=str)
    if len(text) > MAX_RESULT_CHARS:
        text = text[:MAX_RESULT_CHARS] + "\n..."
    return text


class ConversationEngine:
    """
    Context object for one loaded API: its tools, matcher, dialogue engine,
    synthesizer, transport and conversation store.

    Turns for the same conversation run one at a time; different
    conversations may be processed from different threads.
    """

    def __init__(self, tools: List[ToolDescriptor],
                 config: Optional[AppConfig] = None,
                 embedding_provider: Optional[EmbeddingProvider] = None,
                 intent_classifier: Optional[IntentClassifier] = None,
                 extractor: Optional[ParameterExtractor] = None,
                 transport: Optional[Transport] = None,
                 store: Optional[ConversationStore] = None):
        self.config = config or AppConfig()
        self.tools = list(tools)
        self.index = ToolIndex.build(self.tools)
        self.matcher = MatchEngine(self.index, embedding_provider, intent_classifier=intent_classifier)
        self.slot_engine = SlotFillingEngine(extractor)
        self.synthesizer = CommandSynthesizer(self.config.api_auth_token)
        self.transport = transport or RequestsTransport(self.config.request_timeout)

        if store is None:
            if self.config.conversations_dir:
                store = JsonFileConversationStore(self.config.conversations_dir, self.index.get)
            else:
                store = InMemoryConversationStore()
        self.store = store

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        logger.info(f"Conversation engine ready with {len(self.tools)} tools")

    @classmethod
    def from_config(cls, source: str, config: Optional[AppConfig] = None, **kwargs) -> "ConversationEngine":
        """
        Load and compile a document, then wire components from configuration.

        Args:
            source: Path or http(s) URL of an OpenAPI/Swagger document
            config: Settings; read from the environment when omitted

        Raises:
            SpecLoadError: If the document cannot be read or parsed
        """
        config = config or AppConfig.from_env()
        document = load_spec(source, timeout=config.request_timeout)
        tools = compile_spec(document, config.base_url_override)

        if "embedding_provider" not in kwargs:
            kwargs["embedding_provider"] = create_embedding_provider(config)
        if "extractor" not in kwargs:
            kwargs["extractor"] = create_parameter_extractor(config)
        return cls(tools, config, **kwargs)

    def _lock_for(self, conversation_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(conversation_id)
            if lock is None:
                lock = self._locks[conversation_id] = threading.Lock()
            return lock

    def start_conversation(self) -> ConversationRecord:
        record = ConversationRecord()
        record.add_message(
            "assistant",
            f"Hello! I can help you with {len(self.tools)} API operations. What would you like to do?",
        )
        self.store.save(record)
        logger.info(f"Started conversation {record.id}")
        return record

    def get_conversation(self, conversation_id: str) -> ConversationRecord:
        record = self.store.load(conversation_id)
        if record is None:
            raise ConversationNotFound(conversation_id)
        return record

    def list_conversations(self) -> List[Dict[str, Any]]:
        return self.store.list()

    def delete_conversation(self, conversation_id: str) -> bool:
        with self._lock_for(conversation_id):
            deleted = self.store.delete(conversation_id)
        with self._locks_guard:
            self._locks.pop(conversation_id, None)
        return deleted

    def evict_idle_conversations(self) -> List[str]:
        evicted = self.store.evict_idle(self.config.conversation_timeout, self._lock_for)
        with self._locks_guard:
            for conversation_id in evicted:
                self._locks.pop(conversation_id, None)
        return evicted

    def process_message(self, conversation_id: str, text: str) -> ChatResponse:
        """
        Handle one user turn and persist the updated conversation.

        Args:
            conversation_id: Id returned by ``start_conversation``
            text: The user's message

        Returns:
            ChatResponse with the assistant message and any clarification,
            request or execution result

        Raises:
            ConversationNotFound: If the id is unknown
        """
        with self._lock_for(conversation_id):
            record = self.get_conversation(conversation_id)
            record.add_message("user", text)
            active_tool = record.state.current_tool

            try:
                if record.state.current_tool is None:
                    response = self._handle_new_request(record, text)
                else:
                    response = self._handle_reply(record, text)
            except ApiDialogueError as e:
                logger.error(f"Turn failed for conversation {conversation_id}: {e}")
                response = ChatResponse(conversation_id, f"Something went wrong: {e}", errors=[str(e)])

            tool = response.tool_match.tool if response.tool_match else record.state.current_tool
            if tool is None and response.request is not None:
                tool = active_tool
            record.add_message("assistant", response.message, self._message_metadata(response, tool))
            self.store.save(record)
            return response

    def _handle_new_request(self, record: ConversationRecord, text: str) -> ChatResponse:
        scored = self.matcher.find_best_match(text)
        if scored is None or scored.score < self.config.min_confidence:
            if scored is not None:
                logger.info(f"Best match {scored.tool.name} ({scored.score:.3f}) is below "
                            f"threshold {self.config.min_confidence}")
            return ChatResponse(record.id, self._no_match_message(text))

        result = self.slot_engine.begin(record.state, scored.tool, text)
        return self._respond(record, result, scored)

    def _handle_reply(self, record: ConversationRecord, text: str) -> ChatResponse:
        result = self.slot_engine.handle_reply(record.state, text)
        return self._respond(record, result)

    def _respond(self, record: ConversationRecord, result: SlotFillingResult,
                 scored: Optional[ScoredTool] = None) -> ChatResponse:
        state = record.state
        if result.action == SlotFillingResult.EXECUTE:
            return self._execute(record, scored)
        if result.action == SlotFillingResult.CANCELLED:
            return ChatResponse(record.id, result.message)
        return ChatResponse(
            record.id,
            result.message,
            needs_clarification=True,
            clarification=result.clarification,
            tool_match=scored,
            parameters=dict(state.collected_parameters),
            errors=result.errors,
        )

    def _execute(self, record: ConversationRecord, scored: Optional[ScoredTool]) -> ChatResponse:
        state = record.state
        tool = state.current_tool
        parameters = dict(state.collected_parameters)

        request = self.synthesizer.synthesize(tool, parameters)
        logger.info(f"Executing {tool.name}: {self.synthesizer.to_curl_string(request)}")
        result = self.synthesizer.execute(request, self.transport)

        body = _format_body(result.body)
        if result.success:
            self.slot_engine.mark_executed(state)
            message = f"Successfully executed {tool.name} (HTTP {result.status_code})."
            if body:
                message += f"\n\n{body}"
            return ChatResponse(record.id, message, tool_match=scored, parameters=parameters,
                                request=request, execution=result)

        self.slot_engine.mark_failed(state)
        message = f"The call to {tool.name} failed: {result.error}"
        if body:
            message += f"\n\n{body}"
        message += '\n\nSay "retry" to try again, change a field, or "cancel" to stop.'
        return ChatResponse(record.id, message, tool_match=scored, parameters=parameters,
                            request=request, execution=result, errors=[result.error])

    def _no_match_message(self, text: str) -> str:
        message = ("I couldn't find a suitable API for your request with sufficient confidence. "
                   "Could you please be more specific about what you'd like to do?")
        if not self.tools:
            return message + "\n\nNo operations are loaded."

        related = self.index.candidates_for(text)
        if related:
            listed = related
            message += "\n\nOperations related to your request:"
        else:
            listed = self.tools
            message += "\n\nAvailable operations include:"
        for tool in listed[:MAX_LISTED_OPERATIONS]:
            message += f"\n- {tool.name}: {tool.description}"
        if len(listed) > MAX_LISTED_OPERATIONS:
            message += f"\n... and {len(listed) - MAX_LISTED_OPERATIONS} more"
        return message

    def _message_metadata(self, response: ChatResponse, tool: Optional[ToolDescriptor]) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"needsClarification": response.needs_clarification}
        if tool is not None:
            metadata["toolUsed"] = tool.name
        if response.tool_match is not None:
            metadata["confidence"] = response.tool_match.score
        if response.parameters:
            metadata["parameters"] = response.parameters
        if response.request is not None:
            metadata["command"] = self.synthesizer.to_curl_string(response.request)
        if response.execution is not None:
            metadata["success"] = response.execution.success
        return metadata
