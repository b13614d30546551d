"""Pytest configuration and fixtures."""

import copy
import zlib

import pytest

from api_dialogue.config import AppConfig
from api_dialogue.conversation_engine import ConversationEngine
from api_dialogue.embedding_engine import EmbeddingProvider
from api_dialogue.errors import EmbeddingUnavailable, ExecutionError
from api_dialogue.spec_compiler import compile_spec
from api_dialogue.transport import Transport, TransportResponse
from api_dialogue.tool_index import tokenize


PETSTORE = {
    "openapi": "3.0.3",
    "info": {"title": "Petstore", "version": "1.0.0"},
    "servers": [{"url": "https://petstore.example.com/v1"}],
    "paths": {
        "/pets": {
            "get": {
                "operationId": "listPets",
                "summary": "List all pets",
                "tags": ["pets"],
                "parameters": [
                    {
                        "name": "limit",
                        "in": "query",
                        "description": "How many items to return",
                        "schema": {"type": "integer"},
                    },
                    {
                        "name": "status",
                        "in": "query",
                        "description": "Status values to filter by",
                        "schema": {"type": "string", "enum": ["available", "pending", "sold"]},
                    },
                ],
            },
            "post": {
                "operationId": "addPet",
                "summary": "Add a new pet to the store",
                "tags": ["pets"],
                "security": [{"petstore_auth": ["write:pets"]}],
                "requestBody": {
                    "required": True,
                    "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Pet"}}},
                },
            },
        },
        "/pets/{id}": {
            "parameters": [
                {
                    "name": "id",
                    "in": "path",
                    "required": True,
                    "description": "ID of the pet",
                    "schema": {"type": "integer", "format": "int64"},
                }
            ],
            "get": {
                "operationId": "getPetById",
                "summary": "Find a pet by ID",
                "tags": ["pets"],
            },
            "put": {
                "operationId": "updatePet",
                "summary": "Update an existing pet",
                "tags": ["pets"],
                "requestBody": {
                    "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Pet"}}},
                },
            },
            "delete": {
                "operationId": "deletePet",
                "summary": "Delete a pet",
                "tags": ["pets"],
                "parameters": [{"name": "api_key", "in": "header", "schema": {"type": "string"}}],
            },
        },
    },
    "components": {
        "schemas": {
            "Pet": {
                "type": "object",
                "required": ["name", "photoUrls"],
                "properties": {
                    "id": {"type": "integer", "format": "int64"},
                    "name": {"type": "string", "example": "doggie"},
                    "category": {"$ref": "#/components/schemas/Category"},
                    "photoUrls": {"type": "array", "items": {"type": "string"}},
                    "tags": {"type": "array", "items": {"$ref": "#/components/schemas/Tag"}},
                    "status": {
                        "type": "string",
                        "description": "pet status in the store",
                        "enum": ["available", "pending", "sold"],
                    },
                },
            },
            "Category": {
                "type": "object",
                "properties": {"id": {"type": "integer"}, "name": {"type": "string"}},
            },
            "Tag": {
                "type": "object",
                "properties": {"id": {"type": "integer"}, "name": {"type": "string"}},
            },
        }
    },
}


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic hashed bag-of-words vectors."""

    def __init__(self, dimension: int = 64, fail: bool = False):
        self._dimension = dimension
        self.fail = fail
        self.calls = 0

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text):
        self.calls += 1
        if self.fail:
            raise EmbeddingUnavailable("fake provider is offline")
        vector = [0.0] * self._dimension
        for token in tokenize(text):
            vector[zlib.crc32(token.encode("utf-8")) % self._dimension] += 1.0
        if not any(vector):
            vector[0] = 1.0
        return vector


class RecordingTransport(Transport):
    """Returns queued responses and records every request."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.requests = []

    def send(self, request):
        self.requests.append(request)
        if self.responses:
            response = self.responses.pop(0)
        else:
            response = TransportResponse(200, {"Content-Type": "application/json"}, {"ok": True})
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def petstore_document():
    return copy.deepcopy(PETSTORE)


@pytest.fixture
def petstore_tools(petstore_document):
    return compile_spec(petstore_document)


@pytest.fixture
def tools_by_name(petstore_tools):
    return {tool.name: tool for tool in petstore_tools}


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def engine(petstore_tools, transport):
    return ConversationEngine(petstore_tools, AppConfig(), transport=transport)


@pytest.fixture
def failing_transport_error():
    return ExecutionError("Request failed: connection refused")
