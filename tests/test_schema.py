"""
Unit tests for OpenAPI -> JSON Schema translation.

Tests cover:
- Dialect normalization (integer -> number, nullable folding, stripped keywords)
- Recursion into properties, items and compositions
- Cycle breaking by node identity, including indirect cycles via $ref
- Graceful degradation for unresolved references and unexpected nodes
"""

import logging

from aap_mcp.schema import generic_object, resolve_pointer, translate_schema


class TestNormalization:
    """Tests for the dialect-level rewrites."""

    def test_integer_becomes_number(self):
        assert translate_schema({"type": "integer", "format": "int64"}) == {
            "type": "number",
            "format": "int64",
        }

    def test_integer_inside_type_list(self):
        assert translate_schema({"type": ["integer", "string"]})["type"] == ["number", "string"]

    def test_nullable_is_folded_into_type(self):
        schema = translate_schema({"type": "string", "nullable": True})
        assert schema == {"type": ["string", "null"]}

    def test_nullable_integer(self):
        assert translate_schema({"type": "integer", "nullable": True})["type"] == ["number", "null"]

    def test_nullable_false_leaves_type_alone(self):
        assert translate_schema({"type": "string", "nullable": False}) == {"type": "string"}

    def test_openapi_only_keywords_are_stripped(self):
        schema = translate_schema(
            {"type": "string", "example": "x", "readOnly": True, "xml": {"name": "n"}, "deprecated": True}
        )
        assert schema == {"type": "string"}

    def test_boolean_schema_passes_through(self):
        assert translate_schema(True) is True
        assert translate_schema(False) is False

    def test_input_is_not_mutated(self):
        node = {"type": "integer", "nullable": True, "properties": {"a": {"type": "integer"}}}
        translate_schema(node)
        assert node == {"type": "integer", "nullable": True, "properties": {"a": {"type": "integer"}}}


class TestRecursion:
    """Tests for recursive translation of child schemas."""

    def test_properties_and_items(self):
        schema = translate_schema(
            {
                "type": "object",
                "required": ["ids"],
                "properties": {
                    "ids": {"type": "array", "items": {"type": "integer"}},
                    "name": {"type": "string", "nullable": True},
                },
            }
        )
        assert schema["required"] == ["ids"]
        assert schema["properties"]["ids"]["items"] == {"type": "number"}
        assert schema["properties"]["name"]["type"] == ["string", "null"]

    def test_compositions_and_additional_properties(self):
        schema = translate_schema(
            {
                "oneOf": [{"type": "integer"}, {"type": "string"}],
                "additionalProperties": {"type": "integer"},
            }
        )
        assert schema["oneOf"] == [{"type": "number"}, {"type": "string"}]
        assert schema["additionalProperties"] == {"type": "number"}

    def test_local_ref_is_resolved(self):
        document = {"components": {"schemas": {"Job": {"type": "object", "properties": {"id": {"type": "integer"}}}}}}
        schema = translate_schema({"$ref": "#/components/schemas/Job"}, document)
        assert schema == {"type": "object", "properties": {"id": {"type": "number"}}}


class TestCycles:
    """Cycle breaking: translation must terminate for every cyclic input."""

    def test_self_reference_by_identity(self):
        node = {"type": "object", "properties": {}}
        node["properties"]["self"] = node

        schema = translate_schema(node)

        assert schema["properties"]["self"] == generic_object()

    def test_longer_cycle(self):
        a = {"type": "object", "properties": {}}
        b = {"type": "object", "properties": {"a": a}}
        c = {"type": "array", "items": b}
        a["properties"]["c"] = c

        schema = translate_schema(a)

        assert schema["properties"]["c"]["items"]["properties"]["a"] == generic_object()

    def test_cycle_through_refs(self):
        document = {
            "components": {
                "schemas": {
                    "Group": {
                        "type": "object",
                        "properties": {"children": {"type": "array", "items": {"$ref": "#/components/schemas/Group"}}},
                    }
                }
            }
        }
        schema = translate_schema({"$ref": "#/components/schemas/Group"}, document)
        assert schema["properties"]["children"]["items"] == generic_object()

    def test_shared_sibling_is_not_a_cycle(self):
        """The same node used by two siblings is expanded both times."""
        address = {"type": "object", "properties": {"city": {"type": "string"}}}
        node = {"type": "object", "properties": {"home": address, "work": address}}

        schema = translate_schema(node)

        assert schema["properties"]["home"] == address
        assert schema["properties"]["work"] == address

    def test_cycle_is_logged(self, caplog):
        node = {"type": "object", "title": "Loop", "properties": {}}
        node["properties"]["again"] = node
        with caplog.at_level(logging.WARNING, logger="aap_mcp.schema"):
            translate_schema(node)
        assert "Cycle detected" in caplog.text


class TestDegradation:
    """Anomalies degrade to a generic object instead of raising."""

    def test_external_ref(self, caplog):
        with caplog.at_level(logging.WARNING, logger="aap_mcp.schema"):
            schema = translate_schema({"$ref": "other.yaml#/Thing"}, {})
        assert schema == generic_object()
        assert "Unresolved $ref" in caplog.text

    def test_missing_local_ref(self):
        assert translate_schema({"$ref": "#/components/schemas/Nope"}, {"components": {}}) == generic_object()

    def test_ref_without_document(self):
        assert translate_schema({"$ref": "#/components/schemas/Job"}) == generic_object()

    def test_ref_loop_between_aliases(self):
        document = {"a": {"$ref": "#/b"}, "b": {"$ref": "#/a"}}
        assert translate_schema({"$ref": "#/a"}, document) == generic_object()

    def test_unexpected_node_type(self):
        assert translate_schema("string") == generic_object()
        assert translate_schema(None) == generic_object()


class TestResolvePointer:
    def test_escaped_tokens(self):
        document = {"paths": {"/jobs/{id}": {"get": {"operationId": "read"}}}}
        assert resolve_pointer(document, "#/paths/~1jobs~1{id}/get") == {"operationId": "read"}

    def test_list_index(self):
        assert resolve_pointer({"items": ["a", "b"]}, "#/items/1") == "b"

    def test_not_local(self):
        assert resolve_pointer({"a": 1}, "https://example.com/schema.json#/a") is None
