"""Tests for mcplink.schema: tool input schemas and descriptors."""

import pytest
from pydantic import ValidationError

from mcplink.catalog import ToolDescriptor
from mcplink.schema import ArrayItems, InputSchema, describe_tool, tool_model


SEARCH = ToolDescriptor.from_dict({
    "name": "search-docs",
    "description": "Search the documentation",
    "inputSchema": {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Search terms"},
            "limit": {"type": "integer", "default": 10},
            "mode": {"type": "string", "enum": ["fast", "exact"]},
            "tags": {"type": "array", "items": {"type": "string"}},
            "filters": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "field": {"type": "string", "description": "Field name"},
                        "value": {"type": ["string", "null"]},
                    },
                    "required": ["field"],
                },
            },
        },
        "required": ["query"],
    },
})


class TestInputSchema:
    def test_declaration_order_kept(self):
        assert SEARCH.input_schema.names == ["query", "limit", "mode", "tags", "filters"]

    def test_required_is_a_set(self):
        schema = InputSchema.from_json_schema({
            "properties": {"a": {}, "b": {}},
            "required": ["b", "a"],
        })
        assert schema.required == frozenset({"a", "b"})
        assert schema.required_names == ["a", "b"]

    def test_undeclared_required_listed_last(self):
        schema = InputSchema.from_json_schema({
            "properties": {"a": {}},
            "required": ["z", "a"],
        })
        assert schema.required_names == ["a", "z"]

    def test_defaults(self):
        limit = SEARCH.input_schema.get("limit")
        assert limit.has_default
        assert limit.default == 10
        assert not SEARCH.input_schema.get("query").has_default

    def test_missing_type_defaults_to_string(self):
        schema = InputSchema.from_json_schema({"properties": {"x": {}}})
        assert schema.get("x").type == "string"

    def test_not_a_dict(self):
        assert InputSchema.from_json_schema(None).properties == ()

    def test_frozen(self):
        with pytest.raises(ValidationError):
            SEARCH.input_schema.required = frozenset()


class TestArrayItems:
    def test_object_items_normalized(self):
        assert SEARCH.input_schema.get("filters").items.to_dict() == {
            "type": "object",
            "properties": {
                "field": {"type": "string", "description": "Field name"},
                "value": {"type": "string", "description": ""},
            },
            "required": ["field"],
        }

    def test_scalar_items(self):
        assert SEARCH.input_schema.get("tags").items.to_dict() == {
            "type": "string", "properties": {}, "required": [],
        }

    def test_missing_items(self):
        assert ArrayItems.from_json_schema(None).to_dict() == {
            "type": "string", "properties": {}, "required": [],
        }

    def test_non_array_has_no_items(self):
        assert SEARCH.input_schema.get("query").items is None


class TestDescribeTool:
    def test_shape(self):
        described = describe_tool(SEARCH)
        assert described["name"] == "search-docs"
        assert described["description"] == "Search the documentation"
        params = {p["name"]: p for p in described["parameters"]}
        assert [p["name"] for p in described["parameters"]] == ["query", "limit", "mode", "tags", "filters"]
        assert params["query"] == {
            "name": "query", "type": "string", "description": "Search terms", "required": True,
        }
        assert params["limit"]["default"] == 10
        assert params["limit"]["required"] is False
        assert params["mode"]["enum"] == ["fast", "exact"]
        assert params["filters"]["items"]["required"] == ["field"]


class TestToolModel:
    def test_fields_and_doc(self):
        model = tool_model(SEARCH)
        assert model.__name__ == "SearchDocs"
        assert model.__doc__ == "Search the documentation"
        assert set(model.model_fields) == {"query", "limit", "mode", "tags", "filters"}
        assert model.model_fields["query"].is_required()
        assert model.model_fields["limit"].default == 10

    def test_validates(self):
        model = tool_model(SEARCH)
        instance = model(query="json", mode="fast", tags=["a"])
        assert instance.limit == 10
        with pytest.raises(ValidationError):
            model(limit=3)
        with pytest.raises(ValidationError):
            model(query="x", mode="slow")

    def test_explicit_name(self):
        assert tool_model(SEARCH, "Finder").__name__ == "Finder"
