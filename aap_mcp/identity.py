"""
Caller identity resolution.

This module handles the Authentication (AuthN) layer:
- Extracts Bearer tokens from the HTTP Authorization header
- Exchanges the token for the caller's role flags at the platform's
  identity endpoint (``/api/gateway/v1/me/``)
- Validates the shape of the identity response

Security concepts:
- **Fail closed**: an unreachable endpoint, a non-success status or a
  malformed response all raise ``IdentityError``; the session bootstrap
  turns that into a refused session, never into an anonymous one.
- **Evaluated once**: role flags are resolved when a session is opened and
  are not refreshed afterwards. Revoking a user's privileges takes effect
  on their next session.

Identity response (only the first record is used):
    {
        "results": [
            {"username": "alice", "is_superuser": true, "is_platform_auditor": false}
        ]
    }
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

IDENTITY_PATH = "/api/gateway/v1/me/"


class IdentityError(Exception):
    """
    Raised when a credential cannot be validated.

    Attributes:
        message: Human-readable error description
        status_code: HTTP status code returned to the caller (401)
    """

    def __init__(self, message: str, status_code: int = 401):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class RoleFlags:
    """
    Role flags of a validated caller.

    Attributes:
        is_superuser: Elevated privilege; maps the session to the highest tier
        is_platform_auditor: Read-only platform auditor
    """

    is_superuser: bool = False
    is_platform_auditor: bool = False


def extract_bearer_token(authorization_header: str | None) -> str | None:
    """
    Return the token of a "Bearer <token>" header, or None.

    The scheme is matched case-insensitively (RFC 6750). A missing header or
    another scheme means the caller did not present a credential; whether
    that is acceptable is the caller's decision.
    """
    if not authorization_header:
        return None
    parts = authorization_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        return None
    return parts[1].strip()


def parse_identity(payload: Any) -> RoleFlags:
    """
    Extract role flags from an identity endpoint response.

    Raises:
        IdentityError: If the payload holds no identity record
    """
    results = payload.get("results") if isinstance(payload, dict) else None
    if not isinstance(results, list) or not results:
        raise IdentityError("Invalid response format from identity endpoint")

    record = results[0]
    if not isinstance(record, dict):
        raise IdentityError("Invalid identity record from identity endpoint")

    return RoleFlags(
        is_superuser=bool(record.get("is_superuser", False)),
        is_platform_auditor=bool(record.get("is_platform_auditor", False)),
    )


class IdentityResolver:
    """Resolves a bearer credential into role flags via the identity endpoint."""

    def __init__(self, base_url: str, client: httpx.AsyncClient):
        self._url = base_url.rstrip("/") + IDENTITY_PATH
        self._client = client

    async def resolve(self, credential: str) -> RoleFlags:
        """
        Validate ``credential`` and return the caller's role flags.

        Raises:
            IdentityError: If the endpoint is unreachable, rejects the
                           credential or answers with a malformed payload
        """
        try:
            response = await self._client.get(
                self._url,
                headers={
                    "Authorization": f"Bearer {credential}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as error:
            raise IdentityError(f"Identity endpoint unreachable: {error}") from error

        if not response.is_success:
            raise IdentityError(
                f"Authentication failed: {response.status_code} {response.reason_phrase}"
            )

        try:
            payload = response.json()
        except ValueError as error:
            raise IdentityError("Invalid response format from identity endpoint") from error

        roles = parse_identity(payload)
        logger.info(
            "Credential validated",
            extra={
                "log_data": {
                    "is_superuser": roles.is_superuser,
                    "is_platform_auditor": roles.is_platform_auditor,
                }
            },
        )
        return roles
