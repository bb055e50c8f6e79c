"""
Process-wide registry of caller sessions.

A session moves through ``UNINITIALIZED -> INITIALIZING -> ACTIVE -> CLOSED``:

- ``INITIALIZING``: the caller sent a bootstrap request; its credential is
  being validated. The pending session is not registered yet.
- ``ACTIVE``: validation succeeded and the transport assigned a session id;
  the session is registered under that id with its credential, role flags,
  tier override and user agent.
- ``CLOSED``: explicit termination, transport close or process shutdown.
  The entry is removed; closing again is a no-op.

The store owns the side table that transports would otherwise carry as
ad-hoc attributes (tier override, user agent). Access goes through a lock,
so independent sessions can open and close concurrently.
"""

import enum
import logging
import threading
from dataclasses import dataclass, replace

from aap_mcp.identity import RoleFlags

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass
class CallerSession:
    session_id: str | None = None
    credential: str | None = None
    roles: RoleFlags | None = None
    tier_override: str | None = None
    user_agent: str = "unknown"
    state: SessionState = SessionState.UNINITIALIZED


class SessionStore:
    """Map of session id -> ``CallerSession`` with an explicit lifecycle."""

    def __init__(self):
        self._sessions: dict[str, CallerSession] = {}
        self._lock = threading.Lock()

    def activate(self, session_id: str, pending: CallerSession) -> CallerSession:
        """
        Register a validated session under the id the transport assigned.

        Raises:
            ValueError: If ``session_id`` is already registered
        """
        session = replace(pending, session_id=session_id, state=SessionState.ACTIVE)
        with self._lock:
            if session_id in self._sessions:
                raise ValueError(f"session {session_id} is already registered")
            self._sessions[session_id] = session

        logger.info(
            "Session activated",
            extra={
                "log_data": {
                    "session_id": session_id,
                    "authenticated": session.credential is not None,
                    "is_superuser": bool(session.roles and session.roles.is_superuser),
                    "is_platform_auditor": bool(session.roles and session.roles.is_platform_auditor),
                    "tier_override": session.tier_override,
                }
            },
        )
        return session

    def get(self, session_id: str | None) -> CallerSession | None:
        if session_id is None:
            return None
        with self._lock:
            return self._sessions.get(session_id)

    def close(self, session_id: str) -> bool:
        """Remove a session. Returns False when it was not registered (already closed)."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.state = SessionState.CLOSED
        logger.info("Session closed", extra={"log_data": {"session_id": session_id}})
        return True

    def close_all(self) -> int:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.state = SessionState.CLOSED
        return len(sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions
