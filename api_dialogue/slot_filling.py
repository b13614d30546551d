"""
Slot-filling state machine that collects call parameters across turns.
"""

import re
from typing import Any, Dict, List, Optional
from loguru import logger

from .errors import ValidationError
from .models import (
    ClarificationRequest,
    ClarificationType,
    ConversationState,
    DialoguePhase,
    MissingField,
    ToolDescriptor,
)
from .parameter_extractor import (
    ParameterExtractor,
    PatternParameterExtractor,
    is_placeholder,
    parse_reply,
    validate_value,
)


CANCEL_PATTERN = re.compile(
    r"^\s*(cancel|abort|stop|nevermind|never mind|forget it|quit)\b", re.IGNORECASE
)
EXECUTE_PATTERN = re.compile(
    r"^\s*(execute|proceed|go ahead|do it|submit|yes|confirm|skip|run it|run|retry)\b", re.IGNORECASE
)


def is_cancellation(utterance: str) -> bool:
    return bool(CANCEL_PATTERN.match(utterance or ""))


def is_execution_intent(utterance: str) -> bool:
    return bool(EXECUTE_PATTERN.match(utterance or ""))


def _format_value(value: Any) -> str:
    if isinstance(value, list):
        return ", ".join(str(item) for item in value)
    return str(value)


class SlotFillingResult:
    """Outcome of one turn: ask something, execute, or stop."""

    CLARIFY = "clarify"
    EXECUTE = "execute"
    CANCELLED = "cancelled"

    def __init__(self, action: str, message: str = "",
                 clarification: Optional[ClarificationRequest] = None,
                 errors: Optional[List[str]] = None):
        self.action = action
        self.message = message
        self.clarification = clarification
        self.errors = list(errors or [])

    @property
    def needs_clarification(self) -> bool:
        return self.action == self.CLARIFY

    def __repr__(self):
        return f"SlotFillingResult(action='{self.action}', errors={self.errors})"


class SlotFillingEngine:
    """
    Drives one conversation's state through
    NO_TOOL -> TOOL_MATCHED -> COLLECTING -> READY -> EXECUTED, with
    CANCELLED reachable from any non-terminal phase.

    The engine never calls the API itself. An EXECUTE result tells the
    caller to synthesize the request and report back through
    ``mark_executed`` or ``mark_failed``.
    """

    def __init__(self, extractor: Optional[ParameterExtractor] = None):
        self.extractor = extractor or PatternParameterExtractor()

    def begin(self, state: ConversationState, tool: ToolDescriptor, utterance: str) -> SlotFillingResult:
        """Attach a freshly matched tool and seed parameters from the utterance."""
        state.reset()
        state.current_tool = tool
        state.phase = DialoguePhase.TOOL_MATCHED
        state.touch()

        extracted = self.extractor.extract(utterance, tool)
        logger.debug(f"Seed parameters for {tool.name}: {extracted}")
        errors = self._merge(state, extracted)
        return self._advance(state, errors)

    def handle_reply(self, state: ConversationState, utterance: str) -> SlotFillingResult:
        """Process a user turn while a tool is active."""
        if state.current_tool is None:
            raise ValueError("No active tool in conversation state")
        state.touch()

        if is_cancellation(utterance):
            return self.cancel(state)

        execute_phrase = is_execution_intent(utterance)
        if execute_phrase and not state.missing_required:
            state.phase = DialoguePhase.READY
            return SlotFillingResult(SlotFillingResult.EXECUTE)

        # While collecting, "yes" or "submit" may be the value being asked for.
        tool = state.current_tool
        values = parse_reply(utterance, tool.input_schema, state.missing_required)
        if not values:
            values = self.extractor.extract(utterance, tool)

        if not values:
            if state.phase == DialoguePhase.READY:
                return self._confirm(state)
            if execute_phrase:
                return self._ask_missing(state, ["Some required information is still missing."])
            return self._ask_missing(state, ["I couldn't find a value in that reply."])

        errors = self._merge(state, values)
        return self._advance(state, errors)

    def cancel(self, state: ConversationState) -> SlotFillingResult:
        tool_name = state.current_tool.name if state.current_tool else None
        state.reset()
        state.phase = DialoguePhase.CANCELLED
        logger.info(f"Cancelled slot filling for {tool_name}")
        return SlotFillingResult(SlotFillingResult.CANCELLED, "Operation cancelled. How else can I help you?")

    def mark_executed(self, state: ConversationState) -> None:
        """Record a successful call and clear the state for the next request."""
        if state.phase != DialoguePhase.READY or state.missing_required:
            raise ValueError(f"Cannot execute from phase {state.phase.value}")
        state.phase = DialoguePhase.EXECUTED
        state.reset()

    def mark_failed(self, state: ConversationState) -> None:
        """A failed call keeps the collected parameters for a retry."""
        state.phase = DialoguePhase.READY

    def _merge(self, state: ConversationState, values: Dict[str, Any]) -> List[str]:
        schema = state.current_tool.input_schema
        errors = []
        for key, value in values.items():
            declared = schema.lookup(str(key))
            if declared is None or is_placeholder(value):
                continue
            try:
                state.collected_parameters[declared] = validate_value(schema.get(declared), value)
            except ValidationError as e:
                logger.info(f"Rejected value for {e.field}: {e.message}")
                errors.append(str(e))
        return errors

    def _advance(self, state: ConversationState, errors: List[str]) -> SlotFillingResult:
        if state.missing_required:
            return self._ask_missing(state, errors)

        state.phase = DialoguePhase.READY
        if not state.optional_suggested and state.suggested_optional:
            state.optional_suggested = True
            return self._suggest_optional(state, errors)
        if errors:
            return self._confirm(state, errors)
        return SlotFillingResult(SlotFillingResult.EXECUTE)

    def _header(self, state: ConversationState) -> str:
        tool = state.current_tool
        message = f"I'll help you with {tool.name}"
        if tool.description:
            message += f" - {tool.description.strip().rstrip('.')}"
        message += "."

        if state.collected_parameters:
            message += "\n\nInformation I have:"
            for key, value in state.collected_parameters.items():
                message += f"\n- {key}: {_format_value(value)}"
        return message

    def _ask_missing(self, state: ConversationState, errors: Optional[List[str]] = None) -> SlotFillingResult:
        state.phase = DialoguePhase.COLLECTING
        field = state.current_tool.input_schema.get(state.missing_required[0])
        missing = MissingField.from_field(field)

        message = self._header(state)
        if errors:
            message += "\n\n" + "\n".join(errors)
        message += f"\n\nPlease provide {field.name}: {missing.description}"
        if missing.possible_values:
            message += f" (Options: {', '.join(str(value) for value in missing.possible_values)})"
        elif missing.examples:
            message += f" (Example: {missing.examples[0]})"
        message += '\nYou can provide several fields at once, like "name: Fluffy, status: available".'

        clarification = ClarificationRequest(ClarificationType.MISSING_REQUIRED, message, [missing])
        return SlotFillingResult(SlotFillingResult.CLARIFY, message, clarification, errors)

    def _suggest_optional(self, state: ConversationState, errors: List[str]) -> SlotFillingResult:
        schema = state.current_tool.input_schema
        fields = [MissingField.from_field(schema.get(name)) for name in state.suggested_optional]

        message = self._header(state)
        if errors:
            message += "\n\n" + "\n".join(errors)
        message += "\n\nI have all the required information. Optional fields you might want to add:"
        for position, field in enumerate(fields, 1):
            message += f"\n{position}. {field.name}: {field.description}"
        message += '\n\nTell me what you would like to add, or say "execute" to proceed.'

        clarification = ClarificationRequest(ClarificationType.SUGGEST_OPTIONAL, message, fields)
        return SlotFillingResult(SlotFillingResult.CLARIFY, message, clarification, errors)

    def _confirm(self, state: ConversationState, errors: Optional[List[str]] = None) -> SlotFillingResult:
        message = self._header(state)
        if errors:
            message += "\n\n" + "\n".join(errors)
        message += '\n\nSay "execute" to run it, add more fields, or "cancel" to stop.'
        clarification = ClarificationRequest(ClarificationType.CONFIRMATION, message)
        return SlotFillingResult(SlotFillingResult.CLARIFY, message, clarification, errors)
