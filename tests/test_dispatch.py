"""
Unit tests for request dispatch.

Tests cover:
- URL building from path templates and query parameters
- Request headers and JSON bodies
- Response classification (JSON vs text)
- Error handling for non-success statuses and network errors
- Audit recording
"""

import json

import httpx
import pytest

from aap_mcp.dispatch import DispatchError, Dispatcher, build_path
from tests.conftest import BASE_URL, USER_TOKEN


@pytest.fixture
async def dispatcher(platform, audit_recorder):
    async with httpx.AsyncClient(transport=httpx.MockTransport(platform.handler)) as client:
        yield Dispatcher(BASE_URL, client, recorder=audit_recorder)


class TestBuildPath:
    def test_path_and_query(self, make_tool):
        tool = make_tool(
            path="/api/controller/v2/jobs/{id}/",
            parameters=[("id", "path"), ("page_size", "query")],
        )
        assert build_path(tool, {"id": 42, "page_size": 10}) == "/api/controller/v2/jobs/42/?page_size=10"

    def test_all_placeholders_are_substituted(self, make_tool):
        tool = make_tool(
            path="/api/controller/v2/inventories/{inventory_id}/hosts/{id}/",
            parameters=[("inventory_id", "path"), ("id", "path")],
        )
        path = build_path(tool, {"inventory_id": 3, "id": "web-1"})
        assert path == "/api/controller/v2/inventories/3/hosts/web-1/"
        assert "{" not in path

    def test_missing_path_argument_keeps_placeholder(self, make_tool):
        tool = make_tool(path="/api/controller/v2/jobs/{id}/", parameters=[("id", "path")])
        assert build_path(tool, {}) == "/api/controller/v2/jobs/{id}/"

    def test_path_argument_is_encoded(self, make_tool):
        tool = make_tool(path="/api/galaxy/v3/collections/{name}/", parameters=[("name", "path")])
        assert build_path(tool, {"name": "a/b c"}) == "/api/galaxy/v3/collections/a%2Fb%20c/"

    def test_query_values(self, make_tool):
        tool = make_tool(parameters=[("enabled", "query"), ("id__in", "query"), ("search", "query")])

        path = build_path(tool, {"enabled": True, "id__in": [1, 2], "search": None})

        assert path == "/api/controller/v2/jobs/?enabled=true&id__in=1&id__in=2"

    def test_unknown_arguments_are_ignored(self, make_tool):
        tool = make_tool(parameters=[("status", "query")])
        assert build_path(tool, {"status": "failed", "extra": "x"}) == "/api/controller/v2/jobs/?status=failed"


class TestDispatch:
    async def test_json_response(self, dispatcher, make_tool, platform):
        tool = make_tool(parameters=[("status", "query")])

        result = await dispatcher.dispatch(tool, {"status": "running"}, USER_TOKEN)

        assert result.status_code == 200
        assert result.structured is True
        assert result.body["count"] == 1
        assert json.loads(result.as_text()) == result.body

        [request] = platform.requests
        assert request.method == "GET"
        assert request.headers["authorization"] == f"Bearer {USER_TOKEN}"
        assert request.headers["accept"] == "application/json"
        assert "content-type" not in request.headers

    async def test_text_response(self, dispatcher, make_tool):
        tool = make_tool(method="post", path="/api/controller/v2/jobs/{id}/cancel/", parameters=[("id", "path")])

        result = await dispatcher.dispatch(tool, {"id": 7}, USER_TOKEN)

        assert result.status_code == 202
        assert result.structured is False
        assert result.as_text() == "cancel requested"

    async def test_json_body(self, dispatcher, make_tool, platform):
        tool = make_tool(method="post", path="/api/controller/v2/jobs/{id}/cancel/", parameters=[("id", "path")])

        await dispatcher.dispatch(tool, {"id": 7, "requestBody": {"reason": "stuck"}}, USER_TOKEN)

        [request] = platform.requests
        assert request.headers["content-type"] == "application/json"
        assert json.loads(request.content) == {"reason": "stuck"}

    async def test_body_is_ignored_for_get(self, dispatcher, make_tool, platform):
        await dispatcher.dispatch(make_tool(), {"requestBody": {"x": 1}}, USER_TOKEN)

        [request] = platform.requests
        assert request.content == b""

    async def test_non_success_status(self, dispatcher, make_tool):
        tool = make_tool(path="/api/controller/v2/nothing/")

        with pytest.raises(DispatchError) as exc_info:
            await dispatcher.dispatch(tool, {}, USER_TOKEN)

        error = exc_info.value
        assert error.status_code == 404
        assert error.body == {"detail": "Not found."}
        assert error.message == 'HTTP 404: {"detail": "Not found."}'

    async def test_network_error(self, make_tool, audit_recorder):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            dispatcher = Dispatcher(BASE_URL, client, recorder=audit_recorder)
            with pytest.raises(DispatchError, match="ConnectError: connection refused") as exc_info:
                await dispatcher.dispatch(make_tool(), {}, USER_TOKEN)

        assert exc_info.value.status_code == 0
        [entry] = audit_recorder.entries
        assert entry.status_code == 0
        assert entry.response == {"error": "connection refused"}

    async def test_invalid_json_falls_back_to_text(self, make_tool):
        def handler(request):
            return httpx.Response(200, text="{oops", headers={"content-type": "application/json"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await Dispatcher(BASE_URL, client).dispatch(make_tool(), {}, USER_TOKEN)

        assert result.structured is False
        assert result.body == "{oops"


class TestAudit:
    async def test_every_attempt_is_recorded(self, dispatcher, make_tool, audit_recorder):
        await dispatcher.dispatch(make_tool(), {}, USER_TOKEN, user_agent="agent/1.0")
        with pytest.raises(DispatchError):
            await dispatcher.dispatch(make_tool(path="/missing/"), {}, USER_TOKEN)

        first, second = audit_recorder.entries
        assert first.tool == "controller.jobs_list"
        assert first.service == "controller"
        assert first.url == "https://aap.test/api/controller/v2/jobs/"
        assert first.method == "GET"
        assert first.user_agent == "agent/1.0"
        assert first.status_code == 200
        assert first.timestamp.endswith("+00:00")
        assert second.status_code == 404
        assert second.user_agent == "unknown"

    async def test_recorder_failure_does_not_change_result(self, platform, make_tool, caplog):
        class BrokenRecorder:
            def record(self, entry):
                raise RuntimeError("audit store down")

        async with httpx.AsyncClient(transport=httpx.MockTransport(platform.handler)) as client:
            result = await Dispatcher(BASE_URL, client, recorder=BrokenRecorder()).dispatch(
                make_tool(), {}, USER_TOKEN
            )

        assert result.status_code == 200
        assert "Failed to record tool access" in caplog.text
