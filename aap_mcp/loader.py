"""
Load backend API description documents.

Each configured backend is read from its local file when ``local_path`` is
set, otherwise fetched from its URL (the well-known location under the
platform base URL unless overridden). Failures raise ``DocumentLoadError``;
the catalog builder logs them and carries on without that backend.

The controller still publishes a Swagger 2.0 schema. ``normalize_document``
upgrades the parts of Swagger 2.0 the extractor relies on (body and form
parameters, inline parameter types) so every backend reaches the extractor
as OpenAPI 3.
"""

import json
import logging
from collections.abc import Iterable
from typing import Any

import httpx
import yaml

from aap_mcp.config import ServiceConfig
from aap_mcp.extract import HTTP_METHODS
from aap_mcp.reformat import REFORMATTERS
from aap_mcp.schema import resolve_pointer

logger = logging.getLogger(__name__)

CONTROLLER_SCHEMA_URL = "https://s3.amazonaws.com/awx-public-ci-files/release_4.6/schema.json"

# Keywords that Swagger 2.0 puts directly on a non-body parameter.
_SWAGGER_SCHEMA_KEYS = (
    "type",
    "format",
    "items",
    "enum",
    "default",
    "minimum",
    "maximum",
    "exclusiveMinimum",
    "exclusiveMaximum",
    "minLength",
    "maxLength",
    "pattern",
    "minItems",
    "maxItems",
    "uniqueItems",
    "multipleOf",
)


class DocumentLoadError(Exception):
    """Raised when a backend document cannot be read, fetched or parsed."""


def default_service_urls(base_url: str) -> dict[str, str]:
    """Well-known API document locations for every supported backend."""
    base_url = base_url.rstrip("/")
    return {
        "eda": f"{base_url}/api/eda/v1/openapi.json",
        "gateway": f"{base_url}/api/gateway/v1/docs/schema/",
        "galaxy": f"{base_url}/api/galaxy/v3/openapi.json",
        "controller": CONTROLLER_SCHEMA_URL,
    }


def enabled_services(services: Iterable[ServiceConfig]) -> list[ServiceConfig]:
    """Keep enabled services that name a supported backend."""
    selected = []
    for service in services:
        if not service.enabled:
            logger.info("Service %s is disabled, skipping it", service.name)
            continue
        if service.name not in REFORMATTERS:
            logger.warning("Unknown service %s in configuration, skipping it", service.name)
            continue
        selected.append(service)
    return selected


def service_url(service: ServiceConfig, base_url: str) -> str:
    return service.url or default_service_urls(base_url)[service.name]


def _read_local_document(service: ServiceConfig) -> Any:
    path = service.local_path
    logger.info("Loading API document for %s from local file %s", service.name, path)
    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(text)
        return json.loads(text)
    except (OSError, ValueError, yaml.YAMLError) as error:
        raise DocumentLoadError(f"cannot load {path}: {error}") from error


def _fetch_document(url: str, client: httpx.Client) -> Any:
    logger.info("Fetching API document from %s", url)
    try:
        response = client.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as error:
        raise DocumentLoadError(f"cannot fetch {url}: {error}") from error

    if not response.is_success:
        raise DocumentLoadError(f"HTTP {response.status_code}: {response.reason_phrase} ({url})")

    try:
        return response.json()
    except ValueError as error:
        raise DocumentLoadError(f"invalid JSON from {url}: {error}") from error


def load_api_document(service: ServiceConfig, base_url: str, client: httpx.Client) -> dict[str, Any]:
    """
    Load and normalize the API document of one backend.

    Args:
        service: The backend entry; ``local_path`` wins over ``url``
        base_url: Platform base URL for the default document location
        client: HTTP client used when the document is fetched

    Returns:
        The document as an OpenAPI 3 mapping

    Raises:
        DocumentLoadError: If reading, fetching or parsing fails
    """
    if service.local_path:
        document = _read_local_document(service)
    else:
        document = _fetch_document(service_url(service, base_url), client)

    if not isinstance(document, dict):
        raise DocumentLoadError(f"API document for {service.name} is not a JSON object")

    logger.info("Loaded API document for %s", service.name)
    try:
        return normalize_document(document)
    except (AttributeError, KeyError, TypeError) as error:
        raise DocumentLoadError(f"malformed API document for {service.name}: {error!r}") from error


# ---------------------------------------------------------------------------
# Swagger 2.0 -> OpenAPI 3
# ---------------------------------------------------------------------------


def normalize_document(document: dict[str, Any]) -> dict[str, Any]:
    """Return an OpenAPI 3 view of ``document``; OpenAPI 3 input is returned as is."""
    if str(document.get("swagger", "")).startswith("2"):
        return upgrade_swagger2(document)
    return document


def _resolve_parameter(parameter: Any, document: dict[str, Any]) -> Any:
    if isinstance(parameter, dict) and "$ref" in parameter:
        return resolve_pointer(document, parameter["$ref"]) or parameter
    return parameter


def _upgrade_parameter(parameter: dict[str, Any]) -> dict[str, Any]:
    if "schema" in parameter:
        return parameter
    upgraded = {k: v for k, v in parameter.items() if k not in _SWAGGER_SCHEMA_KEYS}
    schema = {k: parameter[k] for k in _SWAGGER_SCHEMA_KEYS if k in parameter}
    upgraded["schema"] = schema or {"type": "string"}
    return upgraded


def _body_from_parameters(
    body: dict[str, Any] | None,
    form: list[dict[str, Any]],
    consumes: list[str],
) -> dict[str, Any] | None:
    if body is not None:
        content_types = [ct for ct in consumes if "json" in ct] or ["application/json"]
        return {
            "description": body.get("description", ""),
            "required": bool(body.get("required")),
            "content": {ct: {"schema": body.get("schema", {})} for ct in content_types},
        }

    if form:
        content_type = next(
            (ct for ct in consumes if ct.startswith("multipart/")),
            "application/x-www-form-urlencoded",
        )
        schema = {
            "type": "object",
            "properties": {p["name"]: _upgrade_parameter(p)["schema"] for p in form},
        }
        required = [p["name"] for p in form if p.get("required")]
        if required:
            schema["required"] = required
        return {
            "required": bool(required),
            "content": {content_type: {"schema": schema}},
        }

    return None


def _upgrade_operation(
    operation: dict[str, Any],
    inherited: list[dict[str, Any]],
    consumes: list[str],
    document: dict[str, Any],
) -> dict[str, Any]:
    upgraded = dict(operation)
    parameters = []
    body = None
    form = []

    declared = [_resolve_parameter(p, document) for p in operation.get("parameters") or []]
    for parameter in [*inherited, *declared]:
        if not isinstance(parameter, dict):
            continue
        location = parameter.get("in")
        if location == "body":
            body = parameter
        elif location == "formData":
            if parameter.get("name"):
                form.append(parameter)
        else:
            parameters.append(_upgrade_parameter(parameter))

    upgraded["parameters"] = parameters
    request_body = _body_from_parameters(body, form, operation.get("consumes", consumes))
    if request_body is not None:
        upgraded["requestBody"] = request_body
    return upgraded


def upgrade_swagger2(document: dict[str, Any]) -> dict[str, Any]:
    """
    Upgrade the operation-level parts of a Swagger 2.0 document to OpenAPI 3.

    Top-level ``definitions`` and ``parameters`` are kept in place so their
    ``#/definitions/...`` and ``#/parameters/...`` pointers keep resolving.
    """
    upgraded = dict(document)
    upgraded["openapi"] = "3.0.0"
    consumes = document.get("consumes", [])

    paths = {}
    for path, path_item in (document.get("paths") or {}).items():
        if not isinstance(path_item, dict):
            continue
        new_item = dict(path_item)

        shared = [_resolve_parameter(p, document) for p in path_item.get("parameters") or []]
        shared = [p for p in shared if isinstance(p, dict)]
        # Body and form parameters move into each operation's requestBody.
        inherited = [p for p in shared if p.get("in") in ("body", "formData")]
        new_item["parameters"] = [_upgrade_parameter(p) for p in shared if p not in inherited]

        for method in HTTP_METHODS:
            operation = path_item.get(method)
            if isinstance(operation, dict):
                new_item[method] = _upgrade_operation(operation, inherited, consumes, document)
        paths[path] = new_item

    upgraded["paths"] = paths
    return upgraded
