"""
Dispatch tool invocations as HTTP calls against the platform.

A tool definition carries everything needed to rebuild the backend request:

    path template   /api/controller/v2/jobs/{id}/
    parameters      id (path), page_size (query)
    arguments       {"id": 42, "page_size": 10}
    ->              GET {base_url}/api/controller/v2/jobs/42/?page_size=10

Path arguments replace their ``{name}`` placeholder. A missing path argument
leaves the placeholder in place and the call still goes out; the backend
rejects it. Arguments are not validated against the input schema, which is
advisory for the caller.

The caller's credential travels as ``Authorization: Bearer <token>`` and
every request asks for JSON. For POST, PUT, PATCH and DELETE a
``requestBody`` argument is serialized as the JSON body.

Non-success statuses raise ``DispatchError`` with the status and the
classified body. Nothing is retried.
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote, urlencode

import httpx

from aap_mcp.audit import AuditEntry, AuditRecorder
from aap_mcp.extract import REQUEST_BODY_PROPERTY
from aap_mcp.models import ToolDefinition

logger = logging.getLogger(__name__)

BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class DispatchError(Exception):
    """
    Raised when a dispatched call fails.

    Attributes:
        message: Error description
        status_code: HTTP status of the backend response, 0 for network errors
        body: The classified response body, if any
    """

    def __init__(self, message: str, status_code: int = 0, body: Any = None):
        self.message = message
        self.status_code = status_code
        self.body = body
        super().__init__(message)


@dataclass(frozen=True)
class InvocationResult:
    url: str
    method: str
    status_code: int
    body: Any
    structured: bool
    elapsed: float

    def as_text(self) -> str:
        """The payload handed back to the caller: pretty JSON, or the raw text."""
        if self.structured:
            return json.dumps(self.body, indent=2)
        return self.body


def _query_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return [_query_value(item) for item in value]
    return value


def build_path(tool: ToolDefinition, arguments: dict[str, Any]) -> str:
    """Substitute path arguments and append query arguments."""
    path = tool.path_template

    for parameter in tool.parameters:
        if parameter.location != "path":
            continue
        value = arguments.get(parameter.name)
        if value is not None:
            path = path.replace(f"{{{parameter.name}}}", quote(str(value), safe=""))

    query = [
        (parameter.name, _query_value(arguments[parameter.name]))
        for parameter in tool.parameters
        if parameter.location == "query" and arguments.get(parameter.name) is not None
    ]
    if query:
        path += "?" + urlencode(query, doseq=True)
    return path


def classify_response(response: httpx.Response) -> tuple[Any, bool]:
    """Return (body, structured): parsed JSON for JSON responses, text otherwise."""
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type or "+json" in content_type:
        try:
            return response.json(), True
        except ValueError:
            logger.warning("Response declared %s but is not valid JSON", content_type)
    return response.text, False


class Dispatcher:
    """Builds and executes backend requests for tool invocations."""

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient,
        recorder: AuditRecorder | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._recorder = recorder

    def build_request(self, tool: ToolDefinition, arguments: dict[str, Any], credential: str) -> httpx.Request:
        method = tool.method.upper()
        headers = {
            "Authorization": f"Bearer {credential}",
            "Accept": "application/json",
        }
        content = None
        body = arguments.get(REQUEST_BODY_PROPERTY)
        if method in BODY_METHODS and body is not None:
            headers["Content-Type"] = "application/json"
            content = json.dumps(body)

        url = self._base_url + build_path(tool, arguments)
        return self._client.build_request(method, url, headers=headers, content=content)

    async def dispatch(
        self,
        tool: ToolDefinition,
        arguments: dict[str, Any],
        credential: str,
        user_agent: str = "unknown",
    ) -> InvocationResult:
        """
        Execute ``tool`` with ``arguments`` on behalf of ``credential``.

        Raises:
            DispatchError: On network errors and non-success statuses
        """
        request = self.build_request(tool, arguments, credential)
        url = str(request.url)
        logger.info(
            "Calling backend",
            extra={"log_data": {"tool": tool.name, "method": request.method, "url": url}},
        )

        started = time.perf_counter()
        try:
            response = await self._client.send(request)
        except httpx.HTTPError as error:
            self._record(tool, url, request.method, user_agent, {"error": str(error)}, 0)
            raise DispatchError(f"{type(error).__name__}: {error}") from error
        elapsed = time.perf_counter() - started

        body, structured = classify_response(response)
        self._record(tool, url, request.method, user_agent, body, response.status_code)

        if not response.is_success:
            detail = json.dumps(body) if structured else body
            raise DispatchError(f"HTTP {response.status_code}: {detail}", response.status_code, body)

        return InvocationResult(
            url=url,
            method=request.method,
            status_code=response.status_code,
            body=body,
            structured=structured,
            elapsed=elapsed,
        )

    def _record(self, tool, url, method, user_agent, response, status_code) -> None:
        if self._recorder is None:
            return
        entry = AuditEntry(
            tool=tool.name,
            service=tool.service,
            url=url,
            method=method,
            user_agent=user_agent,
            response=response,
            status_code=status_code,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        try:
            self._recorder.record(entry)
        except Exception:
            # The audit trail must never change the caller-visible result.
            logger.exception("Failed to record tool access for %s", tool.name)
