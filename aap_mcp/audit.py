"""
Audit side channel for dispatched tool calls.

When ``record_api_queries`` is enabled, every dispatch attempt (success or
failure) is handed to an ``AuditRecorder``. Recording is best effort: the
dispatcher swallows recorder failures so they never change what the caller
sees. Persisting and querying the records is left to the log pipeline.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Protocol

audit_logger = logging.getLogger("aap_mcp.audit")


@dataclass(frozen=True)
class AuditEntry:
    tool: str
    service: str | None
    url: str
    method: str
    user_agent: str
    response: Any
    status_code: int
    timestamp: str


class AuditRecorder(Protocol):
    def record(self, entry: AuditEntry) -> None: ...


class LogAuditRecorder:
    """Writes each entry as a structured line on the ``aap_mcp.audit`` logger."""

    def record(self, entry: AuditEntry) -> None:
        audit_logger.info("Tool access recorded", extra={"log_data": asdict(entry)})
