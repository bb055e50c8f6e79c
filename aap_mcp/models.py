"""Tool definitions produced by extraction and shared read-only by every session."""

import json
from dataclasses import dataclass
from typing import Any, Literal

Severity = Literal["INFO", "WARN", "ERR"]


@dataclass(frozen=True)
class ToolLogEntry:
    """A diagnostic recorded while extracting a tool (missing docs, renamed, ...)."""

    severity: Severity
    msg: str


@dataclass(frozen=True)
class ToolParameter:
    """Where a named argument goes when the tool is dispatched ("path", "query", ...)."""

    name: str
    location: str


@dataclass(frozen=True)
class ToolDefinition:
    """
    One invocable backend operation.

    Instances are frozen: reformatters derive new definitions with
    ``dataclasses.replace`` instead of mutating, so the path template and
    method of a catalog entry never change after the catalog is built.

    Attributes:
        name: Unique tool name within the catalog (e.g. "controller.jobs_list")
        description: Human readable description shown to callers
        input_schema: JSON Schema object describing the accepted arguments
        method: Lower-case HTTP method ("get", "post", ...)
        path_template: Backend path with ``{param}`` placeholders
        parameters: Arguments that map onto the request (name + location)
        operation_id: The operation identifier the name was derived from
        request_body_content_type: Content type of the declared body, if any
        deprecated: Whether the API description marks the operation deprecated
        service: Owning backend identifier, set at catalog build time
        logs: Extraction diagnostics
        size: Serialized length of name + description + input schema
    """

    name: str
    description: str
    input_schema: dict[str, Any]
    method: str
    path_template: str
    parameters: tuple[ToolParameter, ...] = ()
    operation_id: str = ""
    request_body_content_type: str | None = None
    deprecated: bool = False
    service: str | None = None
    logs: tuple[ToolLogEntry, ...] = ()
    size: int = 0

    def listing(self) -> dict[str, Any]:
        """The {name, description, inputSchema} triple returned to callers."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }

    def compute_size(self) -> int:
        """Byte length of the compact JSON listing, used to order the catalog."""
        serialized = json.dumps(self.listing(), separators=(",", ":"), ensure_ascii=False)
        return len(serialized.encode("utf-8"))
