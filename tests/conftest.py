"""
Shared test fixtures for the gateway test suite.

Pytest fixtures are reusable setup functions that tests can request by name.
Most of them here are "factory fixtures": instead of a fixed value they
return a function that tests call with the parameters they care about.

Key fixtures:
- make_tool: builds ToolDefinition objects with sensible defaults
- make_api: builds a minimal OpenAPI 3 document around a "paths" mapping
- platform: an in-memory stand-in for the platform (identity endpoint and a
  few backend routes), served through httpx.MockTransport
- make_gateway: a ToolGateway wired to the in-memory platform

Testing approach:
- Unit tests (test_schema, test_extract, test_reformat, ...) call the pure
  functions directly.
- HTTP-facing components (identity, dispatch, loader) talk to
  httpx.MockTransport handlers, so no network is needed.
- test_server.py drives the full ASGI app in memory, the same way a real
  MCP client would over HTTP.
"""

import httpx
import pytest

from aap_mcp.catalog import ToolCatalog
from aap_mcp.dispatch import Dispatcher
from aap_mcp.gateway import ToolGateway
from aap_mcp.identity import IdentityResolver
from aap_mcp.models import ToolDefinition, ToolParameter
from aap_mcp.sessions import SessionStore
from aap_mcp.tiers import AccessTierResolver

BASE_URL = "https://aap.test"

# Credentials known to the in-memory identity endpoint.
USER_TOKEN = "user-token"
ADMIN_TOKEN = "admin-token"
AUDITOR_TOKEN = "auditor-token"

TEST_CATEGORIES = {
    "anonymous": ["eda.activations_list"],
    "user": ["controller.jobs_list", "eda.activations_list"],
    "admin": ["controller.jobs_list", "controller.jobs_cancel_create", "eda.activations_list"],
}


# ---------------------------------------------------------------------------
# Tool and document factories
# ---------------------------------------------------------------------------
@pytest.fixture
def make_tool():
    """
    Factory fixture for ToolDefinition objects.

    Usage in tests:
        def test_something(make_tool):
            tool = make_tool(name="controller.jobs_list", path="/api/controller/v2/jobs/")
    """

    def _make_tool(
        name: str = "controller.jobs_list",
        method: str = "get",
        path: str = "/api/controller/v2/jobs/",
        parameters: list[tuple[str, str]] | None = None,
        description: str = "List jobs",
        input_schema: dict | None = None,
        service: str | None = "controller",
        deprecated: bool = False,
    ) -> ToolDefinition:
        return ToolDefinition(
            name=name,
            description=description,
            input_schema=input_schema or {"type": "object", "properties": {}},
            method=method,
            path_template=path,
            parameters=tuple(ToolParameter(n, loc) for n, loc in (parameters or [])),
            operation_id=name,
            deprecated=deprecated,
            service=service,
        )

    return _make_tool


@pytest.fixture
def make_api():
    """
    Factory fixture for minimal OpenAPI 3 documents.

    Usage in tests:
        api = make_api({"/things/{id}": {"get": {"operationId": "things_read"}}})
    """

    def _make_api(paths: dict, **extra) -> dict:
        document = {
            "openapi": "3.0.3",
            "info": {"title": "test", "version": "1"},
            "paths": paths,
        }
        document.update(extra)
        return document

    return _make_api


@pytest.fixture
def catalog(make_tool):
    """The catalog used by the gateway and server tests."""
    return ToolCatalog(
        [
            make_tool(
                name="controller.jobs_list",
                path="/api/controller/v2/jobs/",
                parameters=[("page_size", "query"), ("status", "query")],
                input_schema={
                    "type": "object",
                    "properties": {
                        "page_size": {"type": "number"},
                        "status": {"type": "string"},
                    },
                },
            ),
            make_tool(
                name="controller.jobs_cancel_create",
                method="post",
                path="/api/controller/v2/jobs/{id}/cancel/",
                parameters=[("id", "path")],
                description="Cancel a job",
                input_schema={
                    "type": "object",
                    "properties": {"id": {"type": "string"}},
                    "required": ["id"],
                },
            ),
            make_tool(
                name="eda.activations_list",
                path="/api/eda/v1/activations/",
                description="List rulebook activations",
                service="eda",
            ),
        ]
    )


# ---------------------------------------------------------------------------
# In-memory platform
# ---------------------------------------------------------------------------
class FakePlatform:
    """
    Stand-in for the platform's HTTP APIs.

    Serves the identity endpoint for the known tokens and a handful of
    backend routes; records every request so tests can assert on what the
    gateway actually sent.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.identities = {
            USER_TOKEN: {"username": "alice", "is_superuser": False, "is_platform_auditor": False},
            ADMIN_TOKEN: {"username": "root", "is_superuser": True, "is_platform_auditor": False},
            AUDITOR_TOKEN: {"username": "audit", "is_superuser": False, "is_platform_auditor": True},
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        token = request.headers.get("authorization", "").removeprefix("Bearer ")

        if path == "/api/gateway/v1/me/":
            if token not in self.identities:
                return httpx.Response(401, json={"detail": "Invalid token."})
            return httpx.Response(200, json={"count": 1, "results": [self.identities[token]]})

        if path == "/api/controller/v2/jobs/":
            return httpx.Response(200, json={"count": 1, "results": [{"id": 7, "status": "running"}]})
        if path == "/api/controller/v2/jobs/7/cancel/":
            return httpx.Response(202, text="cancel requested", headers={"content-type": "text/plain"})
        if path == "/api/eda/v1/activations/":
            return httpx.Response(200, json={"count": 0, "results": []})

        return httpx.Response(404, json={"detail": "Not found."})

    @property
    def backend_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path != "/api/gateway/v1/me/"]


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
async def make_gateway(platform, catalog):
    """
    Factory fixture for a ToolGateway talking to the in-memory platform.

    Usage in tests:
        gateway = make_gateway(fallback_credential="service-token")
    """
    clients = []

    def _make_gateway(
        categories: dict | None = None,
        fallback_credential: str | None = None,
        recorder=None,
        tool_catalog: ToolCatalog | None = None,
    ) -> ToolGateway:
        client = httpx.AsyncClient(transport=httpx.MockTransport(platform.handler))
        clients.append(client)
        return ToolGateway(
            catalog=tool_catalog if tool_catalog is not None else catalog,
            tiers=AccessTierResolver(categories or TEST_CATEGORIES),
            sessions=SessionStore(),
            identity=IdentityResolver(BASE_URL, client),
            dispatcher=Dispatcher(BASE_URL, client, recorder=recorder),
            fallback_credential=fallback_credential,
            client=client,
        )

    yield _make_gateway

    for client in clients:
        if not client.is_closed:
            await client.aclose()


class RecordingAuditRecorder:
    """Audit recorder that keeps entries in memory."""

    def __init__(self):
        self.entries = []

    def record(self, entry) -> None:
        self.entries.append(entry)


@pytest.fixture
def audit_recorder():
    return RecordingAuditRecorder()
