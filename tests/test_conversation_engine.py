"""End-to-end tests for the conversation engine against a recorded transport."""

import json
import threading
from datetime import timedelta

import pytest

from api_dialogue.config import AppConfig
from api_dialogue.conversation_engine import ConversationEngine, create_parameter_extractor
from api_dialogue.errors import ConversationNotFound
from api_dialogue.models import ClarificationType, DialoguePhase, utcnow
from api_dialogue.parameter_extractor import PatternParameterExtractor
from api_dialogue.transport import TransportResponse

from conftest import RecordingTransport


BASE = "https://petstore.example.com/v1"


class TestConversationLifecycle:
    """Tests for starting, listing and deleting conversations."""

    def test_welcome_message(self, engine):
        record = engine.start_conversation()
        assert len(record.messages) == 1
        assert record.messages[0].role == "assistant"
        assert "5 API operations" in record.messages[0].content

    def test_unknown_conversation(self, engine):
        with pytest.raises(ConversationNotFound):
            engine.process_message("missing", "hello")
        with pytest.raises(ConversationNotFound):
            engine.get_conversation("missing")

    def test_list_and_delete(self, engine):
        first = engine.start_conversation()
        second = engine.start_conversation()
        ids = {summary["id"] for summary in engine.list_conversations()}
        assert ids == {first.id, second.id}

        assert engine.delete_conversation(first.id)
        assert not engine.delete_conversation(first.id)
        with pytest.raises(ConversationNotFound):
            engine.get_conversation(first.id)


class TestMatching:
    """Tests for the first turn of a request."""

    def test_no_match_lists_operations(self, engine, transport):
        conversation_id = engine.start_conversation().id
        response = engine.process_message(conversation_id, "xyzzy frobnicate")

        assert not response.needs_clarification
        assert response.tool_match is None
        assert "Available operations include" in response.message
        assert "- listPets: List all pets" in response.message
        assert transport.requests == []
        assert engine.get_conversation(conversation_id).state.phase == DialoguePhase.NO_TOOL

    def test_threshold_comes_from_config(self, petstore_tools, transport):
        engine = ConversationEngine(petstore_tools, AppConfig(min_confidence=0.95), transport=transport)
        conversation_id = engine.start_conversation().id
        response = engine.process_message(conversation_id, "delete pet 7")
        assert response.tool_match is None
        assert transport.requests == []

    def test_no_match_suggests_related_operations(self, petstore_tools, transport):
        engine = ConversationEngine(petstore_tools, AppConfig(min_confidence=0.95), transport=transport)
        conversation_id = engine.start_conversation().id
        response = engine.process_message(conversation_id, "delete something")
        assert response.tool_match is None
        assert "Operations related to your request:" in response.message
        assert "- deletePet" in response.message
        assert "- listPets" not in response.message

    def test_complete_request_executes_immediately(self, engine, transport):
        conversation_id = engine.start_conversation().id
        response = engine.process_message(conversation_id, "delete pet 7")

        assert response.execution.success
        assert response.tool_match.tool.name == "deletePet"
        assert [(request.method, request.url) for request in transport.requests] == [
            ("DELETE", f"{BASE}/pets/7")]
        assert "Successfully executed deletePet" in response.message
        assert engine.get_conversation(conversation_id).state.current_tool is None


class TestSlotFillingFlow:
    """Tests for multi-turn parameter collection."""

    def test_add_pet(self, engine, transport):
        conversation_id = engine.start_conversation().id

        response = engine.process_message(conversation_id, "add a new pet named Leo")
        assert response.needs_clarification
        assert response.tool_match.tool.name == "addPet"
        assert response.clarification.type == ClarificationType.MISSING_REQUIRED
        assert [field.name for field in response.clarification.fields] == ["photoUrls"]
        assert response.parameters == {"name": "Leo"}

        response = engine.process_message(conversation_id, "http://img.example.com/leo.png")
        assert response.needs_clarification
        assert response.clarification.type == ClarificationType.SUGGEST_OPTIONAL
        assert engine.get_conversation(conversation_id).state.phase == DialoguePhase.READY
        assert transport.requests == []

        response = engine.process_message(conversation_id, "execute")
        assert response.execution.success
        assert len(transport.requests) == 1
        request = transport.requests[0]
        assert request.method == "POST"
        assert request.url == f"{BASE}/pets"
        assert request.body == {"name": "Leo", "photoUrls": ["http://img.example.com/leo.png"]}

        state = engine.get_conversation(conversation_id).state
        assert state.current_tool is None
        assert state.collected_parameters == {}

    def test_cancel(self, engine, transport):
        conversation_id = engine.start_conversation().id
        engine.process_message(conversation_id, "add a new pet named Leo")
        response = engine.process_message(conversation_id, "cancel")

        assert "cancelled" in response.message.lower()
        assert not response.needs_clarification
        state = engine.get_conversation(conversation_id).state
        assert state.current_tool is None
        assert state.collected_parameters == {}
        assert transport.requests == []

    def test_new_request_after_cancel(self, engine, transport):
        conversation_id = engine.start_conversation().id
        engine.process_message(conversation_id, "add a new pet named Leo")
        engine.process_message(conversation_id, "cancel")
        response = engine.process_message(conversation_id, "delete pet 7")
        assert response.execution.success

    def test_validation_errors_are_reported(self, engine):
        conversation_id = engine.start_conversation().id
        engine.process_message(conversation_id, "add a new pet named Leo")
        response = engine.process_message(conversation_id, "status=lost")
        assert response.needs_clarification
        assert response.errors
        assert "not one of" in response.message


class TestExecutionFailures:
    """Tests for failed calls and retries."""

    def test_failure_keeps_state_for_retry(self, petstore_tools):
        transport = RecordingTransport([TransportResponse(500, {}, {"message": "boom"})])
        engine = ConversationEngine(petstore_tools, AppConfig(), transport=transport)
        conversation_id = engine.start_conversation().id

        response = engine.process_message(conversation_id, "delete pet 7")
        assert not response.execution.success
        assert response.errors == ["HTTP 500"]
        assert "retry" in response.message
        state = engine.get_conversation(conversation_id).state
        assert state.phase == DialoguePhase.READY
        assert state.collected_parameters == {"id": 7}

        response = engine.process_message(conversation_id, "retry")
        assert response.execution.success
        assert len(transport.requests) == 2

    def test_transport_error_is_a_failed_result(self, petstore_tools, failing_transport_error):
        transport = RecordingTransport([failing_transport_error])
        engine = ConversationEngine(petstore_tools, AppConfig(), transport=transport)
        conversation_id = engine.start_conversation().id

        response = engine.process_message(conversation_id, "delete pet 7")
        assert not response.execution.success
        assert "connection refused" in response.message


class TestTranscript:
    """Tests for the stored transcript."""

    def test_messages_and_metadata(self, engine):
        conversation_id = engine.start_conversation().id
        engine.process_message(conversation_id, "delete pet 7")

        messages = engine.get_conversation(conversation_id).messages
        assert [message.role for message in messages] == ["assistant", "user", "assistant"]
        assert messages[1].content == "delete pet 7"
        metadata = messages[2].metadata
        assert metadata["toolUsed"] == "deletePet"
        assert metadata["success"] is True
        assert metadata["needsClarification"] is False
        assert metadata["parameters"] == {"id": 7}
        assert metadata["command"].startswith("curl -X DELETE")

    def test_tool_recorded_for_replies(self, engine):
        conversation_id = engine.start_conversation().id
        engine.process_message(conversation_id, "add a new pet named Leo")
        engine.process_message(conversation_id, "photoUrls: a.png")
        engine.process_message(conversation_id, "execute")

        metadata = engine.get_conversation(conversation_id).messages[-1].metadata
        assert metadata["toolUsed"] == "addPet"
        assert metadata["success"] is True

    def test_response_serialization(self, engine):
        conversation_id = engine.start_conversation().id
        data = engine.process_message(conversation_id, "add a new pet named Leo").to_dict()
        assert data["conversationId"] == conversation_id
        assert data["needsClarification"] is True
        assert data["clarificationRequest"]["type"] == "missing_required"
        assert data["toolMatch"]["tool"] == "addPet"
        assert data["toolMatch"]["parameters"] == {"name": "Leo"}


class TestPersistence:
    """Tests for file-backed conversations."""

    def test_conversation_resumes_in_new_engine(self, petstore_tools, tmp_path):
        config = AppConfig(conversations_dir=str(tmp_path))
        first = ConversationEngine(petstore_tools, config, transport=RecordingTransport())
        conversation_id = first.start_conversation().id
        first.process_message(conversation_id, "add a new pet named Leo")

        transport = RecordingTransport()
        second = ConversationEngine(petstore_tools, config, transport=transport)
        second.process_message(conversation_id, "photoUrls: a.png")
        second.process_message(conversation_id, "execute")
        assert transport.requests[0].body == {"name": "Leo", "photoUrls": ["a.png"]}

    def test_evict_idle_conversations(self, petstore_tools):
        engine = ConversationEngine(petstore_tools, AppConfig(conversation_timeout=0), transport=RecordingTransport())
        record = engine.start_conversation()
        record.state.last_activity = utcnow() - timedelta(seconds=5)
        engine.store.save(record)
        assert engine.evict_idle_conversations() == [record.id]
        assert engine.list_conversations() == []

    def test_eviction_waits_for_an_active_turn(self, petstore_tools):
        engine = ConversationEngine(petstore_tools, AppConfig(conversation_timeout=60), transport=RecordingTransport())
        record = engine.start_conversation()
        record.state.last_activity = utcnow() - timedelta(minutes=5)
        engine.store.save(record)

        evicted = []
        with engine._lock_for(record.id):
            worker = threading.Thread(target=lambda: evicted.extend(engine.evict_idle_conversations()))
            worker.start()
            worker.join(timeout=0.2)
            assert worker.is_alive()
            # The turn holding the lock touches and saves the conversation.
            record.state.touch()
            engine.store.save(record)
        worker.join(timeout=5)

        assert evicted == []
        assert engine.get_conversation(record.id).id == record.id


class TestConcurrency:
    """Tests for turns from several threads."""

    def test_parallel_conversations(self, engine, transport):
        ids = [engine.start_conversation().id for _ in range(5)]
        threads = [
            threading.Thread(target=engine.process_message, args=(conversation_id, f"delete pet {number}"))
            for number, conversation_id in enumerate(ids, 1)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(request.url for request in transport.requests) == [
            f"{BASE}/pets/{number}" for number in range(1, 6)]


class TestFactories:
    """Tests for configuration-driven wiring."""

    def test_openai_extractor_without_key_falls_back(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        extractor = create_parameter_extractor(AppConfig(parameter_extractor="openai"))
        assert isinstance(extractor, PatternParameterExtractor)

    def test_from_config(self, tmp_path, petstore_document):
        spec_file = tmp_path / "petstore.json"
        spec_file.write_text(json.dumps(petstore_document))
        engine = ConversationEngine.from_config(
            str(spec_file), AppConfig(base_url_override="http://localhost:8080/"),
            transport=RecordingTransport())
        assert len(engine.tools) == 5
        assert engine.tools[0].endpoint.base_url == "http://localhost:8080"
        assert engine.matcher.semantic_enabled is False
