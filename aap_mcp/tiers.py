"""
Access tiers and tier resolution.

An access tier is a named allow-list of tool names, configured in the
``categories`` section of the configuration:

    categories:
      anonymous: []
      user: [controller.jobs_list]
      admin: [controller.jobs_list, controller.jobs_cancel_create]

This is the central registry for visibility: a caller only sees (and may
only call) the tools named by their tier.

Resolution, first match wins:
1. Tier override: a session opened on ``/mcp/<tier>`` (or ``/<tier>/mcp``)
   gets that tier regardless of its role flags. This is an escape hatch for
   operators pointing an agent at a reduced tool set, not a security
   boundary: the backend still enforces its own permissions with the
   caller's credential. An unknown override name resolves to ``anonymous``.
2. No session or no role flags (no credential presented): ``anonymous``.
3. Superuser: ``admin`` when configured.
4. Everyone else: ``user`` when configured, else ``anonymous``.

Allow-lists are not validated against the catalog. A name that does not
exist in the catalog simply never matches; ``missing_tools`` reports such
names so they can be logged at startup.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from aap_mcp.identity import RoleFlags
from aap_mcp.models import ToolDefinition
from aap_mcp.sessions import CallerSession

logger = logging.getLogger(__name__)

ANONYMOUS_TIER = "anonymous"
USER_TIER = "user"
ADMIN_TIER = "admin"


@dataclass(frozen=True)
class AccessTier:
    name: str
    tools: frozenset[str]

    def allows(self, tool_name: str) -> bool:
        return tool_name in self.tools


class AccessTierResolver:
    """Maps a session (and an optional override) to an ``AccessTier``."""

    def __init__(self, categories: Mapping[str, Sequence[str]]):
        self._tiers = {
            name.lower(): AccessTier(name=name.lower(), tools=frozenset(tools))
            for name, tools in categories.items()
        }
        self._lowest = self._tiers.get(ANONYMOUS_TIER) or AccessTier(ANONYMOUS_TIER, frozenset())

    @property
    def lowest(self) -> AccessTier:
        return self._lowest

    def tier(self, name: str) -> AccessTier | None:
        return self._tiers.get(name.lower())

    def names(self) -> list[str]:
        return list(self._tiers)

    def from_override(self, override: str | None) -> AccessTier | None:
        """Decision 1: an explicit override. None when no override is given."""
        if not override:
            return None
        tier = self.tier(override)
        if tier is None:
            logger.warning("Unknown tier override %s, defaulting to %s", override, ANONYMOUS_TIER)
            return self._lowest
        return tier

    def from_roles(self, roles: RoleFlags | None) -> AccessTier:
        """Decisions 2-4: role flags of the session (None when unauthenticated)."""
        if roles is None:
            return self._lowest
        if roles.is_superuser and ADMIN_TIER in self._tiers:
            return self._tiers[ADMIN_TIER]
        return self._tiers.get(USER_TIER, self._lowest)

    def resolve(self, session: CallerSession | None, override: str | None = None) -> AccessTier:
        """Resolve the tier of ``session``; ``override`` defaults to the one stored on the session."""
        if override is None and session is not None:
            override = session.tier_override
        tier = self.from_override(override)
        if tier is not None:
            return tier
        return self.from_roles(session.roles if session is not None else None)

    def missing_tools(self, catalog: Iterable[ToolDefinition]) -> dict[str, list[str]]:
        """Tier name -> allow-listed names absent from ``catalog``."""
        known = {tool.name for tool in catalog}
        missing = {}
        for name, tier in self._tiers.items():
            absent = sorted(tier.tools - known)
            if absent:
                missing[name] = absent
        return missing


def filter_tools(catalog: Iterable[ToolDefinition], tier: AccessTier) -> list[ToolDefinition]:
    """The tools of ``catalog`` visible in ``tier``, in catalog order."""
    return [tool for tool in catalog if tier.allows(tool.name)]
