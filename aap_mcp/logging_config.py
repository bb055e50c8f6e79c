"""
Structured JSON logging for the gateway.

Every log line is a single JSON object so the cluster's logging agent can
index the fields (tool, session, tier, status, ...) without regex parsing.
Structured fields are attached with the ``log_data`` extra:

    logger.info("Tool call dispatched", extra={"log_data": {"tool": name}})
"""

import json
import logging
import sys


class JSONLogFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Example output:

        {"timestamp": "2026-02-06 10:30:00,120", "level": "INFO", "logger": "aap_mcp.server",
         "message": "Tool list filtered by tier", "session_id": "6f1c...", "tier": "user"}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "log_data"):
            log_entry.update(record.log_data)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        # default=str keeps non-JSON payloads (paths, enums) from breaking the line
        return json.dumps(log_entry, default=str)


def configure_logging(level: str = "info") -> None:
    """Install the JSON formatter on the root logger, writing to stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONLogFormatter())

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[handler],
        force=True,
    )
