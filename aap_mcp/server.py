"""
MCP server exposing the platform's REST APIs as tools, using FastMCP.

This module creates and runs the MCP server with:
- One tool per catalog entry (built from the backends' API documents)
- Session bootstrap: the caller's Bearer token is validated against the
  platform's identity endpoint when the session is opened
- Tier-based authorization: the session's access tier decides which tools
  are visible/callable
- A health endpoint reporting the catalog size
- Structured JSON logging for every access decision
- Streamable HTTP transport

Architecture:
    Two layers sit in front of the tools:

    1. SessionGateMiddleware (ASGI, in front of the transport)
       - rewrites /mcp/<tier> and /<tier>/mcp to /mcp, remembering <tier>
         as the session's tier override
       - on "initialize" without Mcp-Session-Id, validates the credential
         before the transport sees the request (HTTP 401 on failure), then
         registers the session under the id the transport assigns
       - on DELETE, or when the transport no longer knows a session id,
         closes the session; on lifespan shutdown closes every session
    2. GatewayMiddleware (FastMCP hooks)
       - tools/list: filters the tool list by the session's tier
       - tools/call: rejects unknown tools and tools outside the tier

    This is "defense in depth": even if a client skips tools/list and guesses
    a tool name, the tools/call check blocks it.

Running the server:
    python -m aap_mcp.server

    This builds the catalog, then serves on http://0.0.0.0:3000 with:
    - MCP endpoint at /mcp (also /mcp/<tier> and /<tier>/mcp)
    - Health check at /api/v1/health
"""

import json
import logging
import re
import uuid
from typing import Any, Sequence

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.server.dependencies import get_http_request
from fastmcp.server.middleware import CallNext, Middleware, MiddlewareContext
from fastmcp.tools import Tool, ToolResult
from mcp.types import CallToolRequestParams, ListToolsRequest, TextContent
from starlette.datastructures import Headers
from starlette.middleware import Middleware as ASGIMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from aap_mcp.catalog import load_catalog
from aap_mcp.config import settings
from aap_mcp.dispatch import DispatchError
from aap_mcp.gateway import MissingCredentialError, ToolAccessError, ToolGateway, UnknownToolError
from aap_mcp.identity import IdentityError
from aap_mcp.logging_config import configure_logging
from aap_mcp.models import ToolDefinition

logger = logging.getLogger("aap-mcp")

MCP_PATH = "/mcp"
SESSION_HEADER = "mcp-session-id"

# JSON-RPC error code for a refused session bootstrap.
AUTHENTICATION_FAILED = -32001

_TIER_ROUTE = re.compile(r"^/(?:mcp/(?P<suffix>[^/]+)|(?P<prefix>[^/]+)/mcp)/?$")


def _current_session_id() -> str | None:
    """
    Session id of the MCP request being handled.

    Returns None if no HTTP request is available (e.g., stdio transport).
    """
    try:
        return get_http_request().headers.get(SESSION_HEADER)
    except RuntimeError:
        return None


# ---------------------------------------------------------------------------
# Catalog tools
# ---------------------------------------------------------------------------


class BackendTool(Tool):
    """A catalog entry registered with FastMCP; calls go through the gateway."""

    def __init__(self, definition: ToolDefinition, gateway: ToolGateway):
        super().__init__(
            name=definition.name,
            description=definition.description,
            parameters=definition.input_schema,
            tags={definition.service} if definition.service else set(),
        )
        self._definition = definition
        self._gateway = gateway

    def __repr__(self) -> str:
        return (
            f"BackendTool(name={self.name!r}, method={self._definition.method}, "
            f"path={self._definition.path_template})"
        )

    async def run(self, arguments: dict[str, Any]) -> ToolResult:
        session_id = _current_session_id()
        try:
            result = await self._gateway.call_tool(session_id, self.name, arguments)
        except DispatchError as error:
            raise ToolError(f"Tool execution failed: {error.message}") from error
        except (UnknownToolError, ToolAccessError, MissingCredentialError) as error:
            raise ToolError(str(error)) from error

        return ToolResult(content=[TextContent(type="text", text=result.as_text())])


# ---------------------------------------------------------------------------
# Tier-based authorization middleware
# ---------------------------------------------------------------------------


class GatewayMiddleware(Middleware):
    """
    Tier-based authorization for MCP tool requests.

    - tools/list responses are filtered to the tools of the session's tier
    - tools/call requests are rejected for unknown tools and tools outside
      the session's tier

    The tier is resolved from the session registered at bootstrap; requests
    without a known session get the anonymous tier.
    """

    def __init__(self, gateway: ToolGateway):
        self.gateway = gateway

    async def on_list_tools(
        self,
        context: MiddlewareContext[ListToolsRequest],
        call_next: CallNext[ListToolsRequest, Sequence[Tool]],
    ) -> Sequence[Tool]:
        request_id = str(uuid.uuid4())[:8]
        session_id = _current_session_id()

        all_tools = await call_next(context)
        tier = self.gateway.resolve_tier(session_id)
        authorized_tools = [tool for tool in all_tools if tier.allows(tool.name)]

        logger.info(
            "Tool list filtered by tier",
            extra={
                "log_data": {
                    "request_id": request_id,
                    "session_id": session_id,
                    "tier": tier.name,
                    "total_tools": len(all_tools),
                    "authorized_tools": len(authorized_tools),
                    "decision": "filtered",
                }
            },
        )
        return authorized_tools

    async def on_call_tool(
        self,
        context: MiddlewareContext[CallToolRequestParams],
        call_next: CallNext[CallToolRequestParams, ToolResult],
    ) -> ToolResult:
        """
        Reject calls to tools the session may not use.

        ToolError is raised for rejected calls; FastMCP converts it into a
        tool result with isError set.
        """
        request_id = str(uuid.uuid4())[:8]
        session_id = _current_session_id()
        tool_name = context.message.name

        try:
            self.gateway.get_tool(session_id, tool_name)
        except UnknownToolError as error:
            logger.warning(
                "Tool call denied: unknown tool",
                extra={
                    "log_data": {
                        "request_id": request_id,
                        "session_id": session_id,
                        "tool": tool_name,
                        "decision": "denied",
                        "reason": "unknown_tool",
                    }
                },
            )
            raise ToolError(str(error)) from error
        except ToolAccessError as error:
            logger.warning(
                "Tool call denied: outside tier",
                extra={
                    "log_data": {
                        "request_id": request_id,
                        "session_id": session_id,
                        "tool": tool_name,
                        "tier": error.tier,
                        "decision": "denied",
                        "reason": "outside_tier",
                    }
                },
            )
            raise ToolError(str(error)) from error

        logger.info(
            "Tool call authorized",
            extra={
                "log_data": {
                    "request_id": request_id,
                    "session_id": session_id,
                    "tool": tool_name,
                    "decision": "allowed",
                }
            },
        )
        return await call_next(context)


# ---------------------------------------------------------------------------
# Session bootstrap (ASGI)
# ---------------------------------------------------------------------------


def _is_initialize(payload: Any) -> bool:
    if isinstance(payload, list):
        return any(_is_initialize(item) for item in payload)
    return isinstance(payload, dict) and payload.get("method") == "initialize"


def _request_id(payload: Any) -> Any:
    if isinstance(payload, dict):
        return payload.get("id")
    return None


async def _read_body(receive: Receive) -> bytes:
    chunks = []
    more_body = True
    while more_body:
        message = await receive()
        chunks.append(message.get("body", b""))
        more_body = message.get("more_body", False)
    return b"".join(chunks)


def _replay(body: bytes, receive: Receive) -> Receive:
    """A receive channel that yields the already-read body once, then defers to ``receive``."""
    replayed = False

    async def replay() -> Message:
        nonlocal replayed
        if not replayed:
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


class SessionGateMiddleware:
    """ASGI middleware tying the transport's session lifecycle to the gateway."""

    def __init__(self, app: ASGIApp, gateway: ToolGateway, mcp_path: str = MCP_PATH) -> None:
        self.app = app
        self.gateway = gateway
        self.mcp_path = mcp_path

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await self.app(scope, receive, self._on_shutdown(send))
            return
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        tier_override = None
        match = _TIER_ROUTE.match(scope.get("path", ""))
        if match and scope["path"].rstrip("/") != self.mcp_path:
            tier_override = match.group("suffix") or match.group("prefix")
            scope = dict(scope, path=self.mcp_path, raw_path=self.mcp_path.encode())

        if scope["path"].rstrip("/") != self.mcp_path:
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        session_id = headers.get(SESSION_HEADER)
        method = scope.get("method", "")

        if session_id is not None:
            await self.app(scope, receive, self._track_session(session_id, method, send))
            return

        if method != "POST":
            await self.app(scope, receive, send)
            return

        body = await _read_body(receive)
        try:
            payload = json.loads(body) if body else None
        except ValueError:
            payload = None

        if _is_initialize(payload):
            try:
                pending = await self.gateway.begin_session(
                    headers.get("authorization"),
                    tier_override=tier_override,
                    user_agent=headers.get("user-agent"),
                )
            except IdentityError as error:
                logger.warning(
                    "Session bootstrap rejected",
                    extra={
                        "log_data": {
                            "decision": "rejected",
                            "reason": "authentication_failed",
                            "detail": error.message,
                        }
                    },
                )
                response = JSONResponse(
                    {
                        "jsonrpc": "2.0",
                        "error": {
                            "code": AUTHENTICATION_FAILED,
                            "message": f"Token validation failed: {error.message}",
                        },
                        "id": _request_id(payload),
                    },
                    status_code=error.status_code,
                )
                await response(scope, receive, send)
                return
            send = self._activate_on_response(pending, send)

        await self.app(scope, _replay(body, receive), send)

    def _activate_on_response(self, pending, send: Send) -> Send:
        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start" and message["status"] < 400:
                session_id = Headers(raw=message.get("headers", [])).get(SESSION_HEADER)
                if session_id:
                    self.gateway.activate_session(session_id, pending)
            await send(message)

        return send_wrapper

    def _track_session(self, session_id: str, method: str, send: Send) -> Send:
        """Close the session after a successful DELETE, or when the transport no longer knows it."""

        async def send_wrapper(message: Message) -> None:
            await send(message)
            if message["type"] != "http.response.start":
                return
            status = message["status"]
            if (method == "DELETE" and status < 400) or status == 404:
                self.gateway.close_session(session_id)

        return send_wrapper

    def _on_shutdown(self, send: Send) -> Send:
        async def send_wrapper(message: Message) -> None:
            if message["type"] == "lifespan.shutdown.complete":
                await self.gateway.shutdown()
            await send(message)

        return send_wrapper


# ---------------------------------------------------------------------------
# Server assembly
# ---------------------------------------------------------------------------


def create_server(gateway: ToolGateway) -> FastMCP:
    """Create the FastMCP server with every catalog tool and the health route."""
    mcp = FastMCP(
        name="aap-mcp",
        instructions=(
            "Gateway to the automation platform's REST APIs. Each tool performs "
            "one API operation with the caller's credentials; the visible tools "
            "depend on the caller's access tier."
        ),
        middleware=[GatewayMiddleware(gateway)],
    )

    for definition in gateway.catalog:
        mcp.add_tool(BackendTool(definition, gateway))

    # Plain HTTP endpoint, no authentication: used by health checks, exposes no data.
    @mcp.custom_route("/api/v1/health", methods=["GET"])
    async def health_check(request: Request) -> Response:
        return JSONResponse({"status": "ok", "tools": len(gateway.catalog)})

    return mcp


def http_middleware(gateway: ToolGateway) -> list[ASGIMiddleware]:
    return [ASGIMiddleware(SessionGateMiddleware, gateway=gateway)]


def create_app(gateway: ToolGateway):
    """The ASGI app: FastMCP's streamable HTTP app behind the session gate."""
    mcp = create_server(gateway)
    return mcp.http_app(transport="streamable-http", middleware=http_middleware(gateway))


def main() -> None:
    configure_logging(settings.log_level)

    catalog = load_catalog(settings)
    gateway = ToolGateway.from_settings(settings, catalog)

    for tier, names in gateway.tiers.missing_tools(catalog).items():
        logger.warning(
            "Tier %s lists tools missing from the catalog",
            tier,
            extra={"log_data": {"tier": tier, "missing_tools": names}},
        )
    for service, tools in catalog.by_service().items():
        logger.info("Serving %d tools from %s", len(tools), service)

    logger.info(
        "Starting MCP server on %s:%d (transport=streamable-http, tools=%d)",
        settings.host,
        settings.port,
        len(catalog),
    )
    create_server(gateway).run(
        transport="streamable-http",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        middleware=http_middleware(gateway),
    )


if __name__ == "__main__":
    main()
