"""
Extract tool definitions from an OpenAPI 3 document.

Each (path, HTTP method) pair carrying an operation becomes one
``ToolDefinition``:

- Inclusion is controlled by the ``x-mcp`` extension. It may be set on the
  operation, on the path item or on the document; the most specific valid
  value wins and ``default_include`` applies when none is set.
- The tool name is the operationId, or a name synthesized from the method
  and path (``get /users/{id}`` -> ``getUsersById``), sanitized to
  ``[A-Za-z0-9_-]`` and suffixed with ``_1``, ``_2``... on collision.
- Path-item parameters and operation parameters are merged by
  (name, location); the operation-level declaration replaces the path-item
  one in place.
- The input schema has one property per parameter plus a ``requestBody``
  property when the operation declares a body.

Gaps in the description (no operationId, no description, no summary, a
renamed tool) are attached to the tool as ``ToolLogEntry`` diagnostics.
Deprecated operations are extracted and flagged; dropping them is the
catalog builder's decision.
"""

import logging
import re
from typing import Any

from aap_mcp.models import ToolDefinition, ToolLogEntry, ToolParameter
from aap_mcp.schema import resolve_pointer, translate_schema

logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")

INCLUDE_EXTENSION = "x-mcp"
REQUEST_BODY_PROPERTY = "requestBody"
JSON_CONTENT_TYPE = "application/json"

_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "off"})


# ---------------------------------------------------------------------------
# Inclusion policy
# ---------------------------------------------------------------------------
# Each precedence level is its own decision: "include", "exclude" or None
# (no opinion, ask the next level).


def normalize_boolean(value: Any) -> bool | None:
    """Normalize a boolean-like extension value; None when it is not boolean-like."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_STRINGS:
            return True
        if normalized in _FALSE_STRINGS:
            return False
    return None


def inclusion_flag(container: dict[str, Any], level: str) -> bool | None:
    """
    Read the ``x-mcp`` flag at one level (operation, path or document).

    An absent flag and an invalid one both return None. The invalid case is
    logged so the document author can fix it.
    """
    if INCLUDE_EXTENSION not in container:
        return None

    raw = container[INCLUDE_EXTENSION]
    value = normalize_boolean(raw)
    if value is None:
        logger.warning(
            "Invalid %s value %r at %s level, expected a boolean or 'true'/'false'; ignoring it",
            INCLUDE_EXTENSION,
            raw,
            level,
        )
    return value


def should_include_operation(
    api: dict[str, Any],
    path_item: dict[str, Any],
    operation: dict[str, Any],
    default_include: bool = True,
) -> bool:
    """
    Apply operation > path > document > default precedence.

    Evaluation cannot fail: every level is a mapping (non-mapping path items
    and operations are skipped before this is called) and
    ``normalize_boolean`` accepts any value, so a flag of the wrong type
    falls through to the next level and ends at ``default_include``.
    """
    for level, container in (("operation", operation), ("path", path_item), ("document", api)):
        decision = inclusion_flag(container, level)
        if decision is not None:
            return decision
    return default_include


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------


def title_case(segment: str) -> str:
    """Title-case one path segment: ``job_templates`` -> ``JobTemplates``, ``{id}`` -> ``Id``."""
    text = segment.lower()
    text = re.sub(r"[-_/](.)", lambda match: match.group(1).upper(), text)
    text = text.removeprefix("{").removesuffix("}")
    return text[:1].upper() + text[1:]


def generate_operation_id(method: str, path: str) -> str:
    """
    Synthesize a name from the method and path.

    Static segments and non-trailing path parameters are title-cased and
    appended as they are; a trailing path parameter becomes ``By<Param>``:

        get /users/{userId}/posts -> getUsersUseridPosts
        get /things/{id}          -> getThingsById
    """
    parts = [part for part in path.split("/") if part]
    name = method.lower()
    for index, part in enumerate(parts):
        is_parameter = part.startswith("{") and part.endswith("}")
        if is_parameter and index == len(parts) - 1:
            name += "By" + title_case(part)
        else:
            name += title_case(part)
    return name


def sanitize_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9_-]", "_", name.replace(".", "_"))


def unique_name(candidate: str, used: set[str]) -> str:
    """Append ``_1``, ``_2``... until ``candidate`` is not in ``used``."""
    if candidate not in used:
        return candidate
    counter = 1
    while f"{candidate}_{counter}" in used:
        counter += 1
    return f"{candidate}_{counter}"


# ---------------------------------------------------------------------------
# Parameters and input schema
# ---------------------------------------------------------------------------


def _resolve(node: Any, api: dict[str, Any]) -> Any:
    if isinstance(node, dict) and "$ref" in node:
        resolved = resolve_pointer(api, node["$ref"])
        if resolved is None:
            logger.warning("Unresolved $ref '%s' in operation, skipping it", node["$ref"])
        return resolved
    return node


def merge_parameters(
    path_parameters: list[Any] | None,
    operation_parameters: list[Any] | None,
    api: dict[str, Any],
) -> list[dict[str, Any]]:
    """
    Merge path-item and operation parameters by (name, location).

    Path-item parameters come first; an operation parameter with the same
    identity replaces the earlier one at its position instead of being
    appended.
    """
    merged: list[dict[str, Any]] = []
    positions: dict[tuple[str, str], int] = {}

    for raw in [*(path_parameters or []), *(operation_parameters or [])]:
        parameter = _resolve(raw, api)
        if not isinstance(parameter, dict) or not parameter.get("name"):
            continue
        key = (parameter["name"], parameter.get("in", ""))
        if key in positions:
            merged[positions[key]] = parameter
        else:
            positions[key] = len(merged)
            merged.append(parameter)
    return merged


def _parameter_schema(parameter: dict[str, Any]) -> Any | None:
    if "schema" in parameter:
        return parameter["schema"]
    # OpenAPI 3 allows a single media type entry instead of a schema
    content = parameter.get("content")
    if isinstance(content, dict):
        for media in content.values():
            if isinstance(media, dict) and "schema" in media:
                return media["schema"]
    return None


def _is_json(content_type: str) -> bool:
    return content_type == JSON_CONTENT_TYPE or content_type.endswith("+json")


def _pick_body_content(content: dict[str, Any]) -> tuple[str, Any] | None:
    """Prefer a JSON media type with a schema; otherwise the first declared one."""
    for content_type, media in content.items():
        if _is_json(content_type) and isinstance(media, dict) and "schema" in media:
            return content_type, media["schema"]
    if content:
        first = next(iter(content))
        return first, None
    return None


def build_input_schema(
    operation: dict[str, Any],
    parameters: list[dict[str, Any]],
    api: dict[str, Any],
) -> tuple[dict[str, Any], str | None]:
    """
    Build the tool input schema from merged parameters and the request body.

    Returns:
        (input schema, request body content type or None)
    """
    properties: dict[str, Any] = {}
    required: list[str] = []

    for parameter in parameters:
        raw_schema = _parameter_schema(parameter)
        if raw_schema is None:
            continue
        schema = translate_schema(raw_schema, api)
        if isinstance(schema, dict):
            description = parameter.get("description") or schema.get("description")
            if description:
                schema["description"] = description
        properties[parameter["name"]] = schema
        if parameter.get("required"):
            required.append(parameter["name"])

    content_type = None
    request_body = _resolve(operation.get("requestBody"), api)
    if isinstance(request_body, dict) and isinstance(request_body.get("content"), dict):
        picked = _pick_body_content(request_body["content"])
        if picked is not None:
            content_type, raw_body_schema = picked
            if raw_body_schema is not None:
                body_schema = translate_schema(raw_body_schema, api)
                if isinstance(body_schema, dict):
                    body_schema["description"] = (
                        request_body.get("description")
                        or body_schema.get("description")
                        or "The JSON request body."
                    )
            else:
                body_schema = {
                    "type": "string",
                    "description": request_body.get("description")
                    or f"Request body (content type: {content_type})",
                }
            properties[REQUEST_BODY_PROPERTY] = body_schema
            if request_body.get("required"):
                required.append(REQUEST_BODY_PROPERTY)

    input_schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        input_schema["required"] = required
    return input_schema, content_type


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def _text(value: Any) -> str | None:
    """Coerce a documentation field to text; YAML loads ``operationId: 123`` as an int."""
    if value is None or isinstance(value, str):
        return value
    return str(value)


def _extract_operation(
    api: dict[str, Any],
    path: str,
    method: str,
    path_item: dict[str, Any],
    operation: dict[str, Any],
    used_names: set[str],
) -> ToolDefinition:
    logs: list[ToolLogEntry] = []
    operation_id = _text(operation.get("operationId"))
    if not operation_id:
        logs.append(ToolLogEntry("WARN", "no operationId key available"))

    base_name = operation_id or generate_operation_id(method, path)
    name = unique_name(sanitize_name(base_name), used_names)
    if name != base_name:
        logs.append(ToolLogEntry("WARN", f"name was transformed from {base_name}"))

    operation_description = _text(operation.get("description"))
    summary = _text(operation.get("summary"))
    if not operation_description:
        logs.append(ToolLogEntry("WARN", "no description in OpenAPI schema"))
    if not summary:
        logs.append(ToolLogEntry("INFO", "no summary in OpenAPI schema"))

    description = operation_description or summary or f"Executes {method.upper()} {path}"

    parameters = merge_parameters(path_item.get("parameters"), operation.get("parameters"), api)
    input_schema, content_type = build_input_schema(operation, parameters, api)

    deprecated = operation.get("deprecated") is True
    if deprecated:
        logs.append(ToolLogEntry("INFO", "operation is deprecated"))

    for entry in logs:
        logger.debug("Extraction diagnostic for %s: [%s] %s", name, entry.severity, entry.msg)

    return ToolDefinition(
        name=name,
        description=description,
        input_schema=input_schema,
        method=method,
        path_template=path,
        parameters=tuple(ToolParameter(name=str(p["name"]), location=p.get("in", "")) for p in parameters),
        operation_id=base_name,
        request_body_content_type=content_type,
        deprecated=deprecated,
        logs=tuple(logs),
    )


def extract_tools(api: dict[str, Any], default_include: bool = True) -> list[ToolDefinition]:
    """
    Extract one tool per included operation of an OpenAPI 3 document.

    A malformed operation is logged and skipped; the other operations of the
    document are still extracted.

    Args:
        api: The (normalized) API document
        default_include: Whether operations without any ``x-mcp`` flag are included

    Returns:
        Tool definitions in document order (paths, then methods)
    """
    tools: list[ToolDefinition] = []
    used_names: set[str] = set()

    paths = api.get("paths")
    if not isinstance(paths, dict):
        return tools

    for path, path_item in paths.items():
        if not isinstance(path_item, dict):
            logger.warning("Path item %s is not an object, skipping it", path)
            continue

        for method in HTTP_METHODS:
            operation = path_item.get(method)
            if not isinstance(operation, dict):
                continue
            if not should_include_operation(api, path_item, operation, default_include):
                continue

            try:
                tool = _extract_operation(api, path, method, path_item, operation, used_names)
            except (AttributeError, KeyError, TypeError, ValueError) as error:
                logger.warning("Skipping malformed operation %s %s: %r", method.upper(), path, error)
                continue
            used_names.add(tool.name)
            tools.append(tool)

    return tools
