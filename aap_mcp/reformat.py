"""
Per-backend reformatting of extracted tools.

Every backend publishes its API description with its own conventions, so
each one gets a reformatter implementing the same contract:

    reformat(tool) -> ToolDefinition | None

A reformatter may namespace the tool name, rewrite the path template so it
is reachable through the platform's base URL, trim the description to its
first paragraph, or veto the tool entirely by returning None. Reformatters
are pure: they derive new frozen definitions and never touch shared state,
so vetoes are idempotent.

The strategy table ``REFORMATTERS`` is keyed by backend identifier.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import replace

from aap_mcp.models import ToolDefinition


def first_paragraph(text: str) -> str:
    return text.strip().split("\n\n")[0]


class ToolReformatter(ABC):
    """Base strategy. ``service`` is the backend identifier it handles."""

    service: str = ""

    @abstractmethod
    def reformat(self, tool: ToolDefinition) -> ToolDefinition | None:
        """Return the reformatted tool, or None to veto it."""


class EdaReformatter(ToolReformatter):
    """Event-Driven Ansible: namespace and mount under /api/eda/v1."""

    service = "eda"

    def reformat(self, tool: ToolDefinition) -> ToolDefinition | None:
        return replace(
            tool,
            name=f"eda.{tool.name}",
            path_template=f"/api/eda/v1{tool.path_template}",
        )


class GatewayReformatter(ToolReformatter):
    """Platform gateway: namespace, short descriptions, hide legacy endpoints."""

    service = "gateway"

    def reformat(self, tool: ToolDefinition) -> ToolDefinition | None:
        description = first_paragraph(tool.description)
        if "Legacy" in description:
            return None
        return replace(tool, name=f"gateway.{tool.name}", description=description)


class GalaxyReformatter(ToolReformatter):
    """Automation hub: only the public v3 API, without the UI-only endpoints."""

    service = "galaxy"

    def reformat(self, tool: ToolDefinition) -> ToolDefinition | None:
        if tool.path_template.startswith("/api/galaxy/_ui"):
            return None
        if not tool.name.startswith("api_galaxy_v3"):
            return None
        name = re.sub(r"^(api_galaxy_v3_|api_galaxy_|)(.+)", r"galaxy.\2", tool.name)
        return replace(tool, name=name)


class ControllerReformatter(ToolReformatter):
    """Automation controller: the published schema uses /api/v2, the platform routes /api/controller/v2."""

    service = "controller"

    def reformat(self, tool: ToolDefinition) -> ToolDefinition | None:
        return replace(
            tool,
            name=re.sub(r"api_(.+)", r"controller.\1", tool.name, count=1),
            path_template=tool.path_template.replace("/api/v2", "/api/controller/v2", 1),
            description=first_paragraph(tool.description),
        )


REFORMATTERS: dict[str, ToolReformatter] = {
    reformatter.service: reformatter
    for reformatter in (
        EdaReformatter(),
        GatewayReformatter(),
        GalaxyReformatter(),
        ControllerReformatter(),
    )
}
