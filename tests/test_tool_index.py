"""Unit tests for the tool index."""

from api_dialogue.tool_index import ToolIndex, path_tokens, tokenize


class TestTokenize:
    """Tests for query and keyword tokenization."""

    def test_drops_short_and_stop_words(self):
        assert tokenize("Get the pet by ID") == ["get", "pet"]

    def test_splits_on_non_alphanumerics(self):
        assert tokenize("list_all-orders/v2") == ["list", "orders"]

    def test_empty(self):
        assert tokenize("") == []
        assert tokenize(None) == []


class TestPathTokens:
    """Tests for endpoint path tokens."""

    def test_skips_placeholders_and_empty_segments(self):
        assert path_tokens("/pets/{id}/photos/") == ["pets", "photos"]

    def test_splits_segments(self):
        assert path_tokens("/user-accounts/{accountId}") == ["user", "accounts"]


class TestToolIndex:
    """Tests for name and keyword lookups."""

    def test_lookup_by_name_ignores_case(self, petstore_tools):
        index = ToolIndex.build(petstore_tools)
        assert index.get("ADDPET").name == "addPet"
        assert index.get("missing") is None
        assert index.get("") is None

    def test_keywords(self, petstore_tools):
        index = ToolIndex.build(petstore_tools)
        add_pet = index.get("addPet")
        assert {"addpet", "add", "new", "pet", "store", "pets"} == index.keywords_for(add_pet)
        assert add_pet in index.by_keyword["store"]

    def test_compile_order(self, petstore_tools):
        index = ToolIndex.build(petstore_tools)
        assert [index.order_of(tool) for tool in index] == list(range(len(petstore_tools)))
        assert len(index) == 5

    def test_candidates_for(self, petstore_tools):
        index = ToolIndex.build(petstore_tools)
        assert [tool.name for tool in index.candidates_for("delete something")] == ["deletePet"]
        assert index.candidates_for("nothing relevant") == []
