"""
Build the tool catalog from every configured backend.

The catalog is built once, before the server accepts callers:

1. Load each enabled backend's API document (a failure is logged and that
   backend contributes no tools)
2. Extract raw tools from the document
3. Run the backend's reformatter over every tool, discarding vetoes
4. Drop deprecated tools. This happens after reformatting and for every
   backend alike, even though the controller schema does not report
   deprecation yet: the flag is only ever trusted to remove tools, never
   to keep them.
5. Deduplicate by name (first backend wins), measure each tool and sort by
   size, largest first. Python's sort is stable, so equal sizes keep their
   extraction order and exports are deterministic.

The resulting ``ToolCatalog`` is immutable. Reloading means building a new
catalog, never patching an existing one.
"""

import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import replace
from types import MappingProxyType

import httpx

from aap_mcp.config import ServiceConfig, Settings
from aap_mcp.extract import extract_tools
from aap_mcp.loader import DocumentLoadError, enabled_services, load_api_document
from aap_mcp.models import ToolDefinition
from aap_mcp.reformat import REFORMATTERS

logger = logging.getLogger(__name__)


class ToolCatalog:
    """Ordered, read-only set of tool definitions with a name index."""

    def __init__(self, tools: Iterable[ToolDefinition] = ()):
        self._tools = tuple(tools)
        index: dict[str, ToolDefinition] = {}
        for tool in self._tools:
            if tool.name in index:
                raise ValueError(f"duplicate tool name in catalog: {tool.name}")
            index[tool.name] = tool
        self._index = MappingProxyType(index)

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def get(self, name: str) -> ToolDefinition | None:
        return self._index.get(name)

    def names(self) -> list[str]:
        return [tool.name for tool in self._tools]

    def by_service(self) -> dict[str, list[ToolDefinition]]:
        groups: dict[str, list[ToolDefinition]] = {}
        for tool in self._tools:
            groups.setdefault(tool.service or "unknown", []).append(tool)
        return groups


def _service_tools(service: ServiceConfig, document: dict) -> list[ToolDefinition]:
    reformatter = REFORMATTERS[service.name]
    kept = []
    vetoed = deprecated = 0

    for tool in extract_tools(document):
        result = reformatter.reformat(replace(tool, service=service.name))
        if result is None:
            vetoed += 1
            continue
        if result.deprecated:
            deprecated += 1
            continue
        kept.append(result)

    logger.info(
        "Extracted tools for %s",
        service.name,
        extra={
            "log_data": {
                "service": service.name,
                "tools": len(kept),
                "vetoed": vetoed,
                "deprecated": deprecated,
            }
        },
    )
    return kept


def build_catalog(
    services: Sequence[ServiceConfig],
    base_url: str,
    client: httpx.Client,
) -> ToolCatalog:
    """
    Build the catalog from the configured backends.

    Args:
        services: Backend entries from the configuration
        base_url: Platform base URL for default document locations
        client: HTTP client for fetching remote documents

    Returns:
        The immutable, size-sorted catalog
    """
    collected: list[ToolDefinition] = []

    for service in enabled_services(services):
        try:
            document = load_api_document(service, base_url, client)
        except DocumentLoadError as error:
            logger.error("Error loading API document for %s: %s", service.name, error)
            continue

        try:
            collected.extend(_service_tools(service, document))
        except (AttributeError, KeyError, TypeError, ValueError):
            logger.exception("Error generating tools for %s", service.name)

    unique: dict[str, ToolDefinition] = {}
    for tool in collected:
        if tool.name in unique:
            logger.warning(
                "Duplicate tool name %s from %s, keeping the one from %s",
                tool.name,
                tool.service,
                unique[tool.name].service,
            )
            continue
        unique[tool.name] = replace(tool, size=tool.compute_size())

    tools = sorted(unique.values(), key=lambda tool: tool.size, reverse=True)
    logger.info("Tool catalog built with %d tools", len(tools))
    return ToolCatalog(tools)


def load_catalog(settings: Settings) -> ToolCatalog:
    """Build the catalog with an HTTP client configured from ``settings``."""
    with httpx.Client(
        verify=not settings.ignore_certificate_errors,
        timeout=settings.request_timeout,
        follow_redirects=True,
    ) as client:
        return build_catalog(settings.services, settings.base_url, client)
