"""
Transport-agnostic facade over the catalog, sessions, tiers and dispatcher.

The MCP server adapter only talks to ``ToolGateway``:

    begin_session     validate the credential of a bootstrap request
    activate_session  register it under the id the transport assigned
    list_tools        the catalog filtered by the session's tier
    call_tool         check the tier, then dispatch with the session's credential
    close_session     explicit termination or transport close
    shutdown          process shutdown: close every session and the HTTP client

Tier checks happen on both listing and calling, so a caller guessing the
name of a tool outside its tier is still rejected. The two refusals stay
distinct: a name missing from the catalog raises ``UnknownToolError``, a
name outside the tier raises ``ToolAccessError``.
"""

import logging
from typing import Any

import httpx

from aap_mcp.audit import LogAuditRecorder
from aap_mcp.catalog import ToolCatalog
from aap_mcp.config import Settings
from aap_mcp.dispatch import Dispatcher, InvocationResult
from aap_mcp.identity import IdentityResolver, extract_bearer_token
from aap_mcp.models import ToolDefinition
from aap_mcp.sessions import CallerSession, SessionState, SessionStore
from aap_mcp.tiers import AccessTier, AccessTierResolver, filter_tools

logger = logging.getLogger(__name__)


class UnknownToolError(Exception):
    """Raised when a caller names a tool that is not in the catalog."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class ToolAccessError(Exception):
    """Raised when a tool exists but is outside the caller's tier."""

    def __init__(self, name: str, tier: str):
        self.name = name
        self.tier = tier
        super().__init__(f"Access denied: tool '{name}' is not available in tier '{tier}'")


class MissingCredentialError(Exception):
    """Raised when a call has neither a session credential nor a fallback token."""

    def __init__(self):
        super().__init__(
            "No Bearer token available. Provide an Authorization header when "
            "opening the session or configure a fallback token."
        )


class ToolGateway:
    """
    Entry point of the MCP adapter into the core.

    Owns the session registry and the shared async HTTP client, and combines
    the catalog, the tier resolver, the identity resolver and the dispatcher
    behind session-scoped operations.

    Attributes:
        catalog: The immutable tool catalog
        tiers: Resolves a session to its access tier
        sessions: Registry of active sessions
    """

    def __init__(
        self,
        catalog: ToolCatalog,
        tiers: AccessTierResolver,
        sessions: SessionStore,
        identity: IdentityResolver,
        dispatcher: Dispatcher,
        fallback_credential: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.catalog = catalog
        self.tiers = tiers
        self.sessions = sessions
        self._identity = identity
        self._dispatcher = dispatcher
        self._fallback_credential = fallback_credential
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings, catalog: ToolCatalog) -> "ToolGateway":
        """Wire a gateway with one shared async client configured from ``settings``."""
        if settings.ignore_certificate_errors:
            logger.warning("TLS certificate verification is disabled for backend calls")

        client = httpx.AsyncClient(
            verify=not settings.ignore_certificate_errors,
            timeout=settings.request_timeout,
        )
        recorder = LogAuditRecorder() if settings.record_api_queries else None
        return cls(
            catalog=catalog,
            tiers=AccessTierResolver(settings.categories),
            sessions=SessionStore(),
            identity=IdentityResolver(settings.base_url, client),
            dispatcher=Dispatcher(settings.base_url, client, recorder=recorder),
            fallback_credential=settings.fallback_bearer_token,
            client=client,
        )

    # --- Session lifecycle ---

    async def begin_session(
        self,
        authorization: str | None,
        tier_override: str | None = None,
        user_agent: str | None = None,
    ) -> CallerSession:
        """
        Validate the credential of a session bootstrap request.

        The returned session is pending: it is not registered until
        ``activate_session`` is called with the transport's session id.

        Raises:
            IdentityError: If a credential was presented and failed validation
        """
        pending = CallerSession(
            tier_override=tier_override,
            user_agent=user_agent or "unknown",
            state=SessionState.INITIALIZING,
        )
        credential = extract_bearer_token(authorization)
        if credential is None:
            logger.warning("No bearer token provided for new session")
            return pending

        pending.roles = await self._identity.resolve(credential)
        pending.credential = credential
        return pending

    def activate_session(self, session_id: str, pending: CallerSession) -> CallerSession:
        return self.sessions.activate(session_id, pending)

    def close_session(self, session_id: str) -> bool:
        return self.sessions.close(session_id)

    async def shutdown(self) -> None:
        closed = self.sessions.close_all()
        logger.info("Gateway shut down, closed %d sessions", closed)
        if self._client is not None:
            await self._client.aclose()

    # --- Tool access ---

    def resolve_tier(self, session_id: str | None) -> AccessTier:
        return self.tiers.resolve(self.sessions.get(session_id))

    def list_tools(self, session_id: str | None) -> list[ToolDefinition]:
        return filter_tools(self.catalog, self.resolve_tier(session_id))

    def get_tool(self, session_id: str | None, name: str) -> ToolDefinition:
        """
        Look up a tool the session may call.

        Raises:
            UnknownToolError: If the catalog has no tool ``name``
            ToolAccessError: If the tool is outside the session's tier
        """
        tool = self.catalog.get(name)
        if tool is None:
            raise UnknownToolError(name)
        tier = self.resolve_tier(session_id)
        if not tier.allows(name):
            raise ToolAccessError(name, tier.name)
        return tool

    async def call_tool(
        self,
        session_id: str | None,
        name: str,
        arguments: dict[str, Any] | None = None,
    ) -> InvocationResult:
        """
        Dispatch ``name`` with the credential of the session.

        Sessions opened without a credential fall back to the configured
        fallback token.

        Raises:
            UnknownToolError, ToolAccessError: As for ``get_tool``
            MissingCredentialError: If no credential is available
            DispatchError: If the backend call fails
        """
        tool = self.get_tool(session_id, name)
        session = self.sessions.get(session_id)

        credential = session.credential if session is not None else None
        if credential is None:
            credential = self._fallback_credential
            if credential is not None:
                logger.info("Using fallback bearer token for %s", name)
        if credential is None:
            raise MissingCredentialError()

        user_agent = session.user_agent if session is not None else "unknown"
        return await self._dispatcher.dispatch(tool, arguments or {}, credential, user_agent)
