"""
Parameter extraction from user utterances, reply parsing and value validation.
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from loguru import logger

from .errors import ValidationError
from .models import FieldSchema, InputSchema, ToolDescriptor


PLACEHOLDER_VALUES = frozenset({"string", "", "unknown", "n/a", "tbd", "none", "null"})

FILLER_WORDS = frozenset({
    "a", "an", "the", "of", "for", "to", "with", "and", "is", "be", "as", "by", "in", "on",
})

# A colon followed by "//" belongs to a URL, not a key/value separator.
KEY_VALUE_PATTERN = re.compile(
    r"([A-Za-z_][\w.\-]*)\s*(?:=|:(?!//))\s*"
    r"(\"(?:[^\"\\]|\\.)*\"|'[^']*'|.+?)"
    r"\s*(?=,\s*[A-Za-z_][\w.\-]*\s*(?:=|:(?!//))|;|$)"
)
EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
URL_PATTERN = re.compile(r"https?://[^\s,]+")
QUOTED_PATTERN = re.compile(r"\"([^\"]+)\"|'([^']+)'")
NAMED_PATTERN = re.compile(r"\b(?:named|called)\s+(\"[^\"]+\"|'[^']+'|[^\s,.;]+)", re.IGNORECASE)
NUMBER_PATTERN = re.compile(r"(?<![\w.])(\d+)(?![\w.])")

TRUE_VALUES = frozenset({"true", "yes", "y", "1", "on"})
FALSE_VALUES = frozenset({"false", "no", "n", "0", "off"})


def is_placeholder(value: Any) -> bool:
    """True for schema-example sentinels that must never be sent as real arguments."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() in PLACEHOLDER_VALUES
    return False


def sanitize_parameters(parameters: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in parameters.items() if not is_placeholder(value)}


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _known_keys(values: Dict[str, Any], schema: InputSchema) -> Dict[str, Any]:
    known = {}
    for key, value in values.items():
        declared = schema.lookup(str(key))
        if declared is not None:
            known[declared] = value
    return known


def parse_json_reply(utterance: str, schema: InputSchema) -> Dict[str, Any]:
    text = utterance.strip()
    if not text.startswith("{"):
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return {}
    if not isinstance(data, dict):
        return {}
    return _known_keys(data, schema)


def parse_key_value_reply(utterance: str, schema: InputSchema) -> Dict[str, Any]:
    """``key=value`` or ``key: value`` pairs separated by commas."""
    pairs = {}
    for match in KEY_VALUE_PATTERN.finditer(utterance):
        pairs[match.group(1)] = _unquote(match.group(2))
    return _known_keys(pairs, schema)


def parse_reply(utterance: str, schema: InputSchema, missing: List[str]) -> Dict[str, Any]:
    """
    Parse a clarification reply.

    Tries a JSON object, then key/value pairs, then, when exactly one field
    is still missing, takes the whole utterance as that field's value. Only
    keys that name declared fields count.

    Args:
        utterance: Raw user reply
        schema: Input schema of the current tool
        missing: Required fields still missing

    Returns:
        Declared field name to raw value; empty when nothing was understood
    """
    parsed = parse_json_reply(utterance, schema)
    if parsed:
        logger.debug(f"Parsed JSON reply: {parsed}")
        return parsed

    parsed = parse_key_value_reply(utterance, schema)
    if parsed:
        logger.debug(f"Parsed key/value reply: {parsed}")
        return parsed

    text = _unquote(utterance)
    if len(missing) == 1 and text:
        return {missing[0]: text}
    return {}


def coerce_value(field: FieldSchema, value: Any) -> Any:
    """Convert a raw value to the field's declared type.

    Raises:
        ValidationError: If the value cannot represent the declared type
    """
    if isinstance(value, str):
        value = value.strip()

    field_type = field.type
    if field_type == "integer":
        if isinstance(value, bool):
            raise ValidationError(field.name, f"expected an integer, got '{value}'")
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and re.fullmatch(r"[-+]?\d+", value):
            return int(value)
        raise ValidationError(field.name, f"expected an integer, got '{value}'")

    if field_type == "number":
        if isinstance(value, bool):
            raise ValidationError(field.name, f"expected a number, got '{value}'")
        if isinstance(value, (int, float)):
            return value
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValidationError(field.name, f"expected a number, got '{value}'")

    if field_type == "boolean":
        if isinstance(value, bool):
            return value
        lowered = str(value).lower()
        if lowered in TRUE_VALUES:
            return True
        if lowered in FALSE_VALUES:
            return False
        raise ValidationError(field.name, f"expected true or false, got '{value}'")

    if field_type == "array":
        if isinstance(value, str):
            items = [_unquote(item) for item in value.split(",")]
            items = [item for item in items if item]
        elif isinstance(value, (list, tuple)):
            items = list(value)
        else:
            items = [value]
        item_field = FieldSchema(field.name, field.schema.get("items") or {})
        return [coerce_value(item_field, item) for item in items]

    if field_type == "object":
        if isinstance(value, dict):
            return value
        if isinstance(value, str):
            try:
                data = json.loads(value)
            except json.JSONDecodeError:
                data = None
            if isinstance(data, dict):
                return data
        raise ValidationError(field.name, "expected a JSON object")

    if isinstance(value, (dict, list)):
        return value
    return value if isinstance(value, str) else str(value)


def _match_enum(field: FieldSchema, value: Any, allowed: List[Any]) -> Any:
    lowered = str(value).lower()
    for candidate in allowed:
        if str(candidate).lower() == lowered:
            return candidate
    options = ", ".join(str(candidate) for candidate in allowed)
    raise ValidationError(field.name, f"'{value}' is not one of: {options}")


def validate_value(field: FieldSchema, value: Any) -> Any:
    """Coerce ``value`` and check it against the field's enum.

    Enum matching ignores case and returns the declared spelling.

    Raises:
        ValidationError: If coercion fails or the value is not allowed
    """
    value = coerce_value(field, value)
    allowed = field.enum
    if not allowed:
        return value
    if field.type == "array":
        return [_match_enum(field, item, allowed) for item in value]
    return _match_enum(field, value, allowed)


class ParameterExtractor(ABC):
    """Pulls parameter values for a tool out of free text."""

    @abstractmethod
    def extract(self, utterance: str, tool: ToolDescriptor) -> Dict[str, Any]:
        """Return declared field name to raw value for anything found."""


class PatternParameterExtractor(ParameterExtractor):
    """Regex extraction keyed on the tool's declared parameter names."""

    def extract(self, utterance: str, tool: ToolDescriptor) -> Dict[str, Any]:
        schema = tool.input_schema
        if not utterance or not len(schema):
            return {}

        variables = parse_json_reply(utterance, schema) or parse_key_value_reply(utterance, schema)

        for field in schema:
            if field.name in variables:
                continue
            value = self._extract_field(utterance, field)
            if value is not None:
                variables[field.name] = value
                logger.debug(f"Extracted {field.name}: {value}")

        self._extract_named(utterance, schema, variables)
        self._extract_quoted(utterance, schema, variables)
        self._extract_single_id(utterance, tool, variables)

        return sanitize_parameters(variables)

    def _extract_field(self, utterance: str, field: FieldSchema) -> Optional[str]:
        lowered_name = field.name.lower()
        if "email" in lowered_name:
            match = EMAIL_PATTERN.search(utterance)
            if match:
                return match.group(0)
        if "url" in lowered_name:
            matches = URL_PATTERN.findall(utterance)
            if matches:
                return ", ".join(matches) if field.type == "array" else matches[0]

        # "<param> <value>", "<param> is <value>"
        pattern = re.compile(
            rf"\b{re.escape(field.name)}\s+(?:is\s+|of\s+|=\s*)?(\"[^\"]+\"|'[^']+'|[^\s,;]+)",
            re.IGNORECASE,
        )
        match = pattern.search(utterance)
        if match:
            value = _unquote(match.group(1)).rstrip(".")
            if value and value.lower() not in FILLER_WORDS:
                return value
        return None

    def _extract_named(self, utterance: str, schema: InputSchema, variables: Dict[str, Any]) -> None:
        declared = schema.lookup("name")
        if declared is None or declared in variables:
            return
        match = NAMED_PATTERN.search(utterance)
        if match:
            variables[declared] = _unquote(match.group(1))

    def _extract_quoted(self, utterance: str, schema: InputSchema, variables: Dict[str, Any]) -> None:
        quoted = [first or second for first, second in QUOTED_PATTERN.findall(utterance)]
        quoted = [value for value in quoted if value not in variables.values()]
        if len(quoted) != 1:
            return
        for field in schema:
            if field.required and field.type == "string" and field.name not in variables:
                variables[field.name] = quoted[0]
                return

    def _extract_single_id(self, utterance: str, tool: ToolDescriptor, variables: Dict[str, Any]) -> None:
        path_params = tool.path_parameters()
        if len(path_params) != 1 or path_params[0] in variables:
            return
        name = path_params[0]
        if not (name.lower() == "id" or name.lower().endswith("id")):
            return
        numbers = NUMBER_PATTERN.findall(utterance)
        if len(numbers) == 1:
            variables[name] = numbers[0]
