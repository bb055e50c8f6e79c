"""
Translate OpenAPI schema objects into plain JSON Schema.

OpenAPI 3.0 schemas are almost JSON Schema, with a few dialect-specific
keywords (``nullable``, ``example``, ``xml``, ...) that MCP clients do not
understand. ``translate_schema`` strips those, folds ``nullable`` into the
``type`` field and normalizes ``integer`` to ``number``.

Backend documents routinely contain recursive models (a group that has
child groups, a job that references its parent job). Translation tracks the
identity of the nodes currently being expanded; revisiting one of them
returns a generic ``{"type": "object"}`` instead of recursing forever. The
node is released once its subtree is done, so the same model reused in a
sibling property is expanded normally.

Translation never raises: unresolvable references and unexpected node types
degrade to a generic object and a warning in the log.
"""

import logging
from typing import Any

logger = logging.getLogger(__name__)

# OpenAPI-only keywords with no JSON Schema meaning.
_OPENAPI_ONLY_KEYS = frozenset(
    {
        "nullable",
        "example",
        "xml",
        "externalDocs",
        "deprecated",
        "readOnly",
        "writeOnly",
        "discriminator",
    }
)

# Keywords holding a list of subschemas.
_COMPOSITION_KEYS = ("allOf", "anyOf", "oneOf")


def generic_object() -> dict[str, Any]:
    return {"type": "object"}


def resolve_pointer(document: Any, ref: str) -> Any | None:
    """
    Resolve a local JSON pointer reference (``#/components/schemas/Job``).

    Returns None for external references (anything not starting with ``#/``)
    and for pointers that do not lead anywhere in ``document``.
    """
    if document is None or not isinstance(ref, str) or not ref.startswith("#/"):
        return None

    target = document
    for token in ref[2:].split("/"):
        token = token.replace("~1", "/").replace("~0", "~")
        if isinstance(target, dict):
            if token not in target:
                return None
            target = target[token]
        elif isinstance(target, list):
            try:
                target = target[int(token)]
            except (ValueError, IndexError):
                return None
        else:
            return None
    return target


def _dereference(node: dict[str, Any], document: Any) -> Any | None:
    """Follow a chain of ``$ref`` nodes. Returns None when the chain breaks or loops."""
    followed: set[str] = set()
    while isinstance(node, dict) and "$ref" in node:
        ref = node["$ref"]
        if not isinstance(ref, str) or ref in followed:
            return None
        followed.add(ref)
        node = resolve_pointer(document, ref)
        if node is None:
            return None
    return node


def _fold_type(schema: dict[str, Any], nullable: bool) -> None:
    schema_type = schema.get("type")

    if schema_type == "integer":
        schema_type = "number"
    elif isinstance(schema_type, list):
        schema_type = ["number" if t == "integer" else t for t in schema_type]

    if nullable:
        if isinstance(schema_type, list):
            if "null" not in schema_type:
                schema_type = [*schema_type, "null"]
        elif isinstance(schema_type, str):
            schema_type = [schema_type, "null"]
        elif schema_type is None:
            schema_type = "null"

    if schema_type is not None:
        schema["type"] = schema_type


def translate_schema(
    node: Any,
    document: dict[str, Any] | None = None,
    seen: set[int] | None = None,
) -> dict[str, Any] | bool:
    """
    Convert one OpenAPI schema node into a JSON Schema node.

    Args:
        node: The schema node (a mapping, a ``$ref`` mapping or a boolean)
        document: The API document owning the node, used to resolve local
                  ``$ref`` pointers. Without it every reference is unresolved.
        seen: Identities of the nodes on the current expansion path. Callers
              normally leave this out; it is threaded through the recursion.

    Returns:
        A new JSON Schema mapping, or the boolean schema unchanged.
    """
    if isinstance(node, bool):
        return node
    if not isinstance(node, dict):
        logger.warning("Unexpected schema node of type %s, using a generic object", type(node).__name__)
        return generic_object()

    if seen is None:
        seen = set()

    if "$ref" in node:
        ref = node["$ref"]
        resolved = _dereference(node, document)
        if resolved is None:
            logger.warning("Unresolved $ref '%s', using a generic object", ref)
            return generic_object()
        if isinstance(resolved, bool):
            return resolved
        if not isinstance(resolved, dict):
            logger.warning("$ref '%s' does not point to a schema, using a generic object", ref)
            return generic_object()
        node = resolved

    if id(node) in seen:
        title = node.get("title")
        logger.warning(
            "Cycle detected in schema%s, returning a generic object to break recursion",
            f' "{title}"' if title else "",
        )
        return generic_object()

    seen.add(id(node))
    try:
        schema = {key: value for key, value in node.items() if key not in _OPENAPI_ONLY_KEYS}
        _fold_type(schema, bool(node.get("nullable")))

        properties = schema.get("properties")
        if isinstance(properties, dict):
            schema["properties"] = {
                name: translate_schema(child, document, seen)
                for name, child in properties.items()
                if isinstance(child, (dict, bool))
            }

        items = schema.get("items")
        if isinstance(items, dict):
            schema["items"] = translate_schema(items, document, seen)

        additional = schema.get("additionalProperties")
        if isinstance(additional, dict):
            schema["additionalProperties"] = translate_schema(additional, document, seen)

        for key in _COMPOSITION_KEYS:
            variants = schema.get(key)
            if isinstance(variants, list):
                schema[key] = [translate_schema(variant, document, seen) for variant in variants]

        if isinstance(schema.get("not"), dict):
            schema["not"] = translate_schema(schema["not"], document, seen)

        return schema
    finally:
        seen.discard(id(node))
