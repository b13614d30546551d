"""
Data model shared by the compiler, matcher, dialogue engine and synthesizer.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


PARAMETER_LOCATIONS = ("path", "query", "header", "body")
MESSAGE_ROLES = ("user", "assistant", "system")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        return datetime.fromisoformat(value)
    return utcnow()


class FieldSchema:
    """One property of a tool's input schema."""

    def __init__(self, name: str, schema: Dict[str, Any], required: bool = False,
                 location: str = "body"):
        if location not in PARAMETER_LOCATIONS:
            raise ValueError(f"Unknown parameter location: {location}")
        self.name = name
        self.schema = dict(schema or {})
        self.required = required
        self.location = location

    @property
    def type(self) -> str:
        return self.schema.get("type") or "string"

    @property
    def description(self) -> str:
        return self.schema.get("description") or ""

    @property
    def enum(self) -> Optional[List[Any]]:
        values = self.schema.get("enum")
        if not values and self.type == "array":
            values = (self.schema.get("items") or {}).get("enum")
        return list(values) if values else None

    @property
    def examples(self) -> List[Any]:
        examples = self.schema.get("examples")
        if isinstance(examples, list):
            return list(examples)
        if "example" in self.schema:
            return [self.schema["example"]]
        return []

    @property
    def is_suggestable(self) -> bool:
        """Optional fields worth offering to the user once required ones are in."""
        return bool(
            self.examples
            or self.enum
            or self.description
            or self.type in ("object", "array")
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "schema": self.schema,
            "required": self.required,
            "location": self.location,
        }

    def __repr__(self):
        return f"FieldSchema(name='{self.name}', type='{self.type}', required={self.required}, location='{self.location}')"


class InputSchema:
    """Ordered map of field name to FieldSchema."""

    def __init__(self, fields: Optional[List[FieldSchema]] = None):
        self.properties: Dict[str, FieldSchema] = {}
        for field in fields or []:
            self.properties[field.name] = field

    @property
    def required(self) -> List[str]:
        return [name for name, field in self.properties.items() if field.required]

    @property
    def optional(self) -> List[str]:
        return [name for name, field in self.properties.items() if not field.required]

    def get(self, name: str) -> Optional[FieldSchema]:
        return self.properties.get(name)

    def lookup(self, name: str) -> Optional[str]:
        """Resolve a user-supplied key to the declared field name, ignoring case."""
        if name in self.properties:
            return name
        lowered = name.lower()
        for declared in self.properties:
            if declared.lower() == lowered:
                return declared
        return None

    def __contains__(self, name: str) -> bool:
        return name in self.properties

    def __iter__(self):
        return iter(self.properties.values())

    def __len__(self):
        return len(self.properties)

    def to_json_schema(self) -> Dict[str, Any]:
        """Render as a plain JSON Schema object."""
        result: Dict[str, Any] = {
            "type": "object",
            "properties": {name: dict(field.schema) for name, field in self.properties.items()},
            "additionalProperties": False,
        }
        if self.required:
            result["required"] = self.required
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {"fields": [field.to_dict() for field in self.properties.values()]}



class Endpoint:
    """HTTP coordinates of a tool."""

    def __init__(self, method: str, path: str, base_url: str = ""):
        self.method = method.upper()
        self.path = path
        self.base_url = base_url

    def to_dict(self) -> Dict[str, str]:
        return {"method": self.method, "path": self.path, "baseUrl": self.base_url}

    def __repr__(self):
        return f"Endpoint({self.method} {self.base_url}{self.path})"


class ToolAnnotations:
    """Descriptive hints attached to a compiled tool."""

    def __init__(self, method: str, path: str, tags: Optional[List[str]] = None,
                 deprecated: bool = False, title: str = "",
                 read_only_hint: bool = False, open_world_hint: bool = False):
        self.method = method.upper()
        self.path = path
        self.tags = list(tags or [])
        self.deprecated = deprecated
        self.title = title
        self.read_only_hint = read_only_hint
        self.open_world_hint = open_world_hint

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "path": self.path,
            "tags": self.tags,
            "deprecated": self.deprecated,
            "title": self.title,
            "readOnlyHint": self.read_only_hint,
            "openWorldHint": self.open_world_hint,
        }


class ToolDescriptor:
    """A compiled API operation. Immutable once constructed."""

    def __init__(self, name: str, description: str, input_schema: InputSchema,
                 endpoint: Endpoint, security: Optional[List[Dict[str, List[str]]]] = None,
                 annotations: Optional[ToolAnnotations] = None):
        self.name = name
        self.description = description
        self.input_schema = input_schema
        self.endpoint = endpoint
        self.security = [dict(item) for item in (security or [])]
        self.annotations = annotations or ToolAnnotations(endpoint.method, endpoint.path)
        self._frozen = True

    def __setattr__(self, key, value):
        if getattr(self, "_frozen", False):
            raise AttributeError(f"ToolDescriptor '{self.name}' is immutable")
        super().__setattr__(key, value)

    @property
    def tags(self) -> List[str]:
        return self.annotations.tags

    def path_parameters(self) -> List[str]:
        return [field.name for field in self.input_schema if field.location == "path"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema.to_json_schema(),
            "fields": self.input_schema.to_dict()["fields"],
            "endpoint": self.endpoint.to_dict(),
            "security": self.security,
            "annotations": self.annotations.to_dict(),
        }

    def __repr__(self):
        return f"ToolDescriptor(name='{self.name}', endpoint={self.endpoint!r})"


class ScoreBreakdown:
    """Per-signal scores, each in [0, 1]."""

    def __init__(self, semantic: float = 0.0, keyword: float = 0.0,
                 intent: float = 0.0, path: float = 0.0):
        self.semantic = semantic
        self.keyword = keyword
        self.intent = intent
        self.path = path

    def to_dict(self) -> Dict[str, float]:
        return {
            "semantic": self.semantic,
            "keyword": self.keyword,
            "intent": self.intent,
            "path": self.path,
        }


class ScoredTool:
    """A ranked candidate for one match query."""

    def __init__(self, tool: ToolDescriptor, score: float, breakdown: ScoreBreakdown):
        self.tool = tool
        self.score = score
        self.breakdown = breakdown

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool": self.tool.name,
            "score": self.score,
            "breakdown": self.breakdown.to_dict(),
        }

    def __repr__(self):
        return f"ScoredTool(tool='{self.tool.name}', score={self.score:.3f})"


class ConversationMessage:
    """Append-only transcript entry."""

    def __init__(self, role: str, content: str, metadata: Optional[Dict[str, Any]] = None,
                 message_id: Optional[str] = None, timestamp: Optional[datetime] = None):
        if role not in MESSAGE_ROLES:
            raise ValueError(f"Unknown message role: {role}")
        self.id = message_id or str(uuid.uuid4())
        self.role = role
        self.content = content
        self.timestamp = timestamp or utcnow()
        self.metadata = metadata

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationMessage":
        return cls(data["role"], data["content"], data.get("metadata"),
                   message_id=data.get("id"), timestamp=_parse_timestamp(data.get("timestamp")))


class DialoguePhase(str, Enum):
    NO_TOOL = "no_tool"
    TOOL_MATCHED = "tool_matched"
    COLLECTING = "collecting_parameters"
    READY = "ready"
    EXECUTED = "executed"
    CANCELLED = "cancelled"


class ConversationState:
    """Slot-filling state of one conversation.

    ``missing_required`` and ``suggested_optional`` are derived from the
    current tool and the collected parameters every time they are read.
    """

    def __init__(self):
        self.current_tool: Optional[ToolDescriptor] = None
        self.collected_parameters: Dict[str, Any] = {}
        self.phase = DialoguePhase.NO_TOOL
        self.optional_suggested = False
        self.last_activity = utcnow()

    @property
    def missing_required(self) -> List[str]:
        if self.current_tool is None:
            return []
        return [name for name in self.current_tool.input_schema.required
                if name not in self.collected_parameters]

    @property
    def suggested_optional(self) -> List[str]:
        if self.current_tool is None:
            return []
        return [field.name for field in self.current_tool.input_schema
                if not field.required and field.name not in self.collected_parameters
                and field.is_suggestable]

    def touch(self) -> None:
        self.last_activity = utcnow()

    def reset(self) -> None:
        self.current_tool = None
        self.collected_parameters = {}
        self.phase = DialoguePhase.NO_TOOL
        self.optional_suggested = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentTool": self.current_tool.name if self.current_tool else None,
            "collectedParameters": dict(self.collected_parameters),
            "missingRequired": self.missing_required,
            "suggestedOptional": self.suggested_optional,
            "phase": self.phase.value,
            "optionalSuggested": self.optional_suggested,
            "lastActivity": self.last_activity.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  tool_lookup: Callable[[str], Optional[ToolDescriptor]]) -> "ConversationState":
        state = cls()
        tool_name = data.get("currentTool")
        tool = tool_lookup(tool_name) if tool_name else None
        if tool is not None:
            state.current_tool = tool
            state.collected_parameters = {
                key: value for key, value in (data.get("collectedParameters") or {}).items()
                if key in tool.input_schema
            }
            state.phase = DialoguePhase(data.get("phase", DialoguePhase.COLLECTING.value))
            state.optional_suggested = bool(data.get("optionalSuggested", False))
        state.last_activity = _parse_timestamp(data.get("lastActivity"))
        return state


class ConversationRecord:
    """Transcript plus slot-filling state, the unit the store persists."""

    def __init__(self, conversation_id: Optional[str] = None):
        self.id = conversation_id or str(uuid.uuid4())
        self.messages: List[ConversationMessage] = []
        self.state = ConversationState()
        self.started_at = utcnow()

    def add_message(self, role: str, content: str,
                    metadata: Optional[Dict[str, Any]] = None) -> ConversationMessage:
        message = ConversationMessage(role, content, metadata)
        self.messages.append(message)
        self.state.touch()
        return message

    @property
    def last_activity(self) -> datetime:
        return self.state.last_activity

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "lastActivity": self.last_activity.isoformat(),
            "messageCount": len(self.messages),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "startedAt": self.started_at.isoformat(),
            "messages": [message.to_dict() for message in self.messages],
            "state": self.state.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  tool_lookup: Callable[[str], Optional[ToolDescriptor]]) -> "ConversationRecord":
        record = cls(data["id"])
        record.started_at = _parse_timestamp(data.get("startedAt"))
        record.messages = [ConversationMessage.from_dict(item) for item in data.get("messages", [])]
        record.state = ConversationState.from_dict(data.get("state") or {}, tool_lookup)
        return record


class ClarificationType:
    MISSING_REQUIRED = "missing_required"
    SUGGEST_OPTIONAL = "suggest_optional"
    CONFIRMATION = "confirmation"


class MissingField:
    """A field the user is being asked about."""

    def __init__(self, name: str, description: str, required: bool,
                 possible_values: Optional[List[Any]] = None,
                 examples: Optional[List[Any]] = None):
        self.name = name
        self.description = description
        self.required = required
        self.possible_values = possible_values
        self.examples = examples

    @classmethod
    def from_field(cls, field: FieldSchema) -> "MissingField":
        return cls(field.name, field.description or field.name, field.required,
                   possible_values=field.enum, examples=field.examples or None)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "type": "required" if self.required else "optional",
        }
        if self.possible_values:
            data["possibleValues"] = self.possible_values
        if self.examples:
            data["examples"] = self.examples
        return data


class ClarificationRequest:
    def __init__(self, type: str, message: str, fields: Optional[List[MissingField]] = None):
        self.type = type
        self.message = message
        self.fields = list(fields or [])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "message": self.message,
            "fields": [field.to_dict() for field in self.fields],
        }


class HttpRequest:
    """A synthesized HTTP call, ready for a transport."""

    def __init__(self, method: str, url: str, headers: Dict[str, str], body: Any = None):
        self.method = method
        self.url = url
        self.headers = headers
        self.body = body

    def to_dict(self) -> Dict[str, Any]:
        data = {"method": self.method, "url": self.url, "headers": dict(self.headers)}
        if self.body is not None:
            data["body"] = self.body
        return data

    def __repr__(self):
        return f"HttpRequest({self.method} {self.url})"


class ExecutionResult:
    def __init__(self, success: bool, status_code: Optional[int] = None,
                 body: Any = None, error: Optional[str] = None):
        self.success = success
        self.status_code = status_code
        self.body = body
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success, "statusCode": self.status_code}
        if self.success:
            data["body"] = self.body
        else:
            data["error"] = self.error
            if self.body is not None:
                data["body"] = self.body
        return data


class ChatResponse:
    """What the engine returns for one user turn."""

    def __init__(self, conversation_id: str, message: str, needs_clarification: bool = False,
                 clarification: Optional[ClarificationRequest] = None,
                 tool_match: Optional[ScoredTool] = None,
                 parameters: Optional[Dict[str, Any]] = None,
                 request: Optional[HttpRequest] = None,
                 execution: Optional[ExecutionResult] = None,
                 errors: Optional[List[str]] = None):
        self.conversation_id = conversation_id
        self.message = message
        self.needs_clarification = needs_clarification
        self.clarification = clarification
        self.tool_match = tool_match
        self.parameters = parameters
        self.request = request
        self.execution = execution
        self.errors = list(errors or [])

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "conversationId": self.conversation_id,
            "message": self.message,
            "needsClarification": self.needs_clarification,
        }
        if self.clarification is not None:
            data["clarificationRequest"] = self.clarification.to_dict()
        if self.tool_match is not None:
            data["toolMatch"] = dict(self.tool_match.to_dict(), parameters=self.parameters or {})
        if self.request is not None:
            data["request"] = self.request.to_dict()
        if self.execution is not None:
            data["executionResult"] = self.execution.to_dict()
        if self.errors:
            data["errors"] = self.errors
        return data
