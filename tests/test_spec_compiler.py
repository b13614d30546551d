"""Unit tests for compiling documents into tool descriptors."""

import pytest

from api_dialogue.spec_compiler import SpecCompiler, compile_spec, tool_name_for


class TestToolName:
    """Tests for tool naming."""

    def test_operation_id_wins(self):
        assert tool_name_for("GET", "/pets/{id}", "getPet") == "getPet"

    def test_generated_name(self):
        assert tool_name_for("GET", "/pets/{id}") == "GET__pets__id_"

    def test_blank_operation_id_is_ignored(self):
        assert tool_name_for("post", "/pets", "  ") == "POST__pets"


class TestPetstore:
    """Tests against the shared petstore document."""

    def test_compile_order_and_names(self, petstore_tools):
        assert [tool.name for tool in petstore_tools] == [
            "listPets", "addPet", "getPetById", "updatePet", "deletePet",
        ]

    def test_base_url_from_servers(self, petstore_tools):
        assert all(tool.endpoint.base_url == "https://petstore.example.com/v1" for tool in petstore_tools)

    def test_body_properties_merged_at_top_level(self, tools_by_name):
        schema = tools_by_name["addPet"].input_schema
        assert list(schema.properties) == ["id", "name", "category", "photoUrls", "tags", "status"]
        assert schema.required == ["name", "photoUrls"]
        assert schema.get("category").type == "object"
        assert all(field.location == "body" for field in schema)

    def test_path_level_parameters_are_inherited(self, tools_by_name):
        for name in ("getPetById", "updatePet", "deletePet"):
            field = tools_by_name[name].input_schema.get("id")
            assert field.required
            assert field.location == "path"
            assert field.type == "integer"

    def test_body_property_does_not_shadow_parameter(self, tools_by_name):
        schema = tools_by_name["updatePet"].input_schema
        assert schema.get("id").location == "path"
        assert schema.get("name").location == "body"

    def test_query_and_header_locations(self, tools_by_name):
        assert tools_by_name["listPets"].input_schema.get("status").location == "query"
        assert tools_by_name["listPets"].input_schema.get("status").enum == ["available", "pending", "sold"]
        assert tools_by_name["deletePet"].input_schema.get("api_key").location == "header"

    def test_annotations(self, tools_by_name):
        assert tools_by_name["listPets"].annotations.read_only_hint is True
        assert tools_by_name["addPet"].annotations.read_only_hint is False
        assert tools_by_name["addPet"].tags == ["pets"]

    def test_security(self, tools_by_name):
        assert tools_by_name["addPet"].security == [{"petstore_auth": ["write:pets"]}]
        assert tools_by_name["listPets"].security == []

    def test_descriptor_is_immutable(self, tools_by_name):
        with pytest.raises(AttributeError):
            tools_by_name["addPet"].name = "other"


class TestEdgeCases:
    """Tests for unusual and malformed documents."""

    def test_generated_name_and_required_path_parameter(self):
        document = {
            "openapi": "3.0.0",
            "paths": {
                "/pets/{id}": {
                    "get": {
                        "parameters": [{"name": "id", "in": "path", "required": False, "schema": {"type": "string"}}],
                    }
                }
            },
        }
        tools = compile_spec(document)
        assert tools[0].name == "GET__pets__id_"
        assert tools[0].input_schema.required == ["id"]

    def test_undeclared_placeholder_becomes_required(self):
        tools = compile_spec({"paths": {"/things/{thingId}": {"get": {"operationId": "getThing"}}}})
        field = tools[0].input_schema.get("thingId")
        assert field.required and field.location == "path"

    def test_malformed_operations_are_skipped(self):
        document = {
            "paths": {
                "/broken": {"get": "not an operation", "post": {"operationId": "ok"}},
                "/bad-item": ["nope"],
                "/bad-params": {"get": {"operationId": "badParams", "parameters": "oops"}},
            }
        }
        compiler = SpecCompiler(document)
        tools = compiler.compile()
        assert [tool.name for tool in tools] == ["ok"]
        assert len(compiler.skipped) == 3

    @pytest.mark.parametrize("document", [None, "text", [], {}, {"paths": "nope"}])
    def test_compile_never_raises(self, document):
        assert compile_spec(document) == []

    @pytest.mark.parametrize("document,base_url", [
        ({"servers": [{"url": "https://x.example", "variables": ["region"]}]}, "https://x.example"),
        ({"servers": [{"url": "https://{region}.example", "variables": {"region": "eu"}}]},
         "https://{region}.example"),
        ({"swagger": "2.0", "basePath": 5}, "5"),
        ({"swagger": "2.0", "host": "api.example.com", "basePath": "/v2", "schemes": "https"},
         "https://api.example.com/v2"),
    ])
    def test_malformed_server_metadata(self, document, base_url):
        document["paths"] = {"/ping": {"get": {"operationId": "ping"}}}
        tools = compile_spec(document)
        assert [tool.name for tool in tools] == ["ping"]
        assert tools[0].endpoint.base_url == base_url

    def test_duplicate_names_last_wins(self):
        document = {
            "paths": {
                "/a": {"get": {"operationId": "dup", "summary": "first"}},
                "/b": {"get": {"operationId": "other"}},
                "/c": {"get": {"operationId": "dup", "summary": "second"}},
            }
        }
        tools = compile_spec(document)
        assert [tool.name for tool in tools] == ["dup", "other"]
        assert tools[0].endpoint.path == "/c"
        assert tools[0].description == "second"

    def test_non_object_body_is_nested(self):
        document = {
            "paths": {
                "/tags": {
                    "post": {
                        "operationId": "setTags",
                        "requestBody": {
                            "required": True,
                            "content": {"application/json": {"schema": {"type": "array", "items": {"type": "string"}}}},
                        },
                    }
                }
            }
        }
        schema = compile_spec(document)[0].input_schema
        assert list(schema.properties) == ["body"]
        assert schema.get("body").required
        assert schema.get("body").type == "array"

    def test_server_variables(self):
        document = {
            "servers": [{"url": "https://{region}.api.example.com", "variables": {"region": {"default": "eu"}}}],
            "paths": {"/x": {"get": {"operationId": "x"}}},
        }
        assert compile_spec(document)[0].endpoint.base_url == "https://eu.api.example.com"

    def test_base_url_override(self, petstore_document):
        tools = compile_spec(petstore_document, base_url_override="http://localhost:8080/")
        assert tools[0].endpoint.base_url == "http://localhost:8080"

    def test_document_level_security(self):
        document = {
            "security": [{"api_key": []}],
            "paths": {"/x": {"get": {"operationId": "x"}, "post": {"operationId": "y", "security": []}}},
        }
        tools = compile_spec(document)
        assert tools[0].security == [{"api_key": []}]
        assert tools[1].security == []


class TestSwagger2:
    """Tests for Swagger 2.0 documents."""

    DOCUMENT = {
        "swagger": "2.0",
        "host": "api.example.com",
        "basePath": "/v2",
        "schemes": ["http"],
        "definitions": {
            "User": {
                "type": "object",
                "required": ["username"],
                "properties": {"username": {"type": "string"}, "email": {"type": "string"}},
            }
        },
        "paths": {
            "/users": {
                "post": {
                    "operationId": "createUser",
                    "parameters": [
                        {"name": "user", "in": "body", "required": True, "schema": {"$ref": "#/definitions/User"}}
                    ],
                }
            },
            "/upload": {
                "post": {
                    "operationId": "upload",
                    "parameters": [
                        {"name": "file", "in": "formData", "type": "string", "required": True},
                        {"name": "note", "in": "formData", "type": "string"},
                    ],
                }
            },
        },
    }

    def test_base_url(self):
        assert compile_spec(self.DOCUMENT)[0].endpoint.base_url == "http://api.example.com/v2"

    def test_body_parameter(self):
        schema = compile_spec(self.DOCUMENT)[0].input_schema
        assert list(schema.properties) == ["username", "email"]
        assert schema.required == ["username"]

    def test_form_data(self):
        schema = compile_spec(self.DOCUMENT)[1].input_schema
        assert schema.required == ["file"]
        assert schema.optional == ["note"]
