"""
Application configuration loaded from environment variables and ``aap-mcp.yaml``.

Uses pydantic-settings to define typed configuration. Sources, highest
priority first:

1. Keyword arguments passed to ``Settings(...)`` (tests, scripts)
2. Environment variables with the ``MCP_`` prefix (``MCP_BASE_URL``, ``MCP_PORT``, ...)
3. A ``.env`` file in the working directory
4. The YAML file named by ``MCP_CONFIG_FILE`` (default ``aap-mcp.yaml``)
5. The defaults declared below

The YAML file is where the structured settings usually live:

    base_url: https://aap.example.com
    record_api_queries: true
    services:
      - name: controller
        local_path: data/controller-schema.json
      - name: eda
      - name: galaxy
        enabled: false
    categories:
      anonymous: []
      user: [controller.jobs_list, eda.activation_list]
      admin: [controller.jobs_list, controller.jobs_cancel_create, eda.activation_list]
"""

import os
from pathlib import Path

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    YamlConfigSettingsSource,
)

from aap_mcp.tiers import ANONYMOUS_TIER

DEFAULT_CONFIG_FILE = "aap-mcp.yaml"


class ServiceConfig(BaseModel):
    """
    One backend service whose API description is turned into tools.

    Attributes:
        name: Backend identifier ("eda", "gateway", "galaxy", "controller").
              Unknown names are skipped at catalog build time.
        url: Where to fetch the API document. Defaults to the well-known
             location for the backend under ``base_url``.
        local_path: A local copy of the document. Takes precedence over ``url``.
        enabled: Disabled services contribute no tools.
    """

    name: str
    url: str | None = None
    local_path: Path | None = None
    enabled: bool = True


class Settings(BaseSettings):
    """
    Server configuration with environment variable bindings.

    Each field maps to an environment variable with the MCP_ prefix, e.g.
    ``base_url`` reads from MCP_BASE_URL. List and mapping fields
    (``services``, ``categories``) are JSON-encoded when set from the
    environment, but are normally written in the YAML file.
    """

    # --- Server settings ---

    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "info"

    # --- Platform settings ---

    # Base URL of the platform. Backend documents, the identity endpoint and
    # every dispatched tool call are resolved against it.
    base_url: str = "https://localhost"

    # Credential used to dispatch calls for sessions opened without an
    # Authorization header. The unprefixed name is kept for existing deployments.
    fallback_bearer_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "fallback_bearer_token",
            "MCP_FALLBACK_BEARER_TOKEN",
            "BEARER_TOKEN_OAUTH2_AUTHENTICATION",
        ),
    )

    # Hand every dispatch attempt to the audit recorder.
    record_api_queries: bool = False

    # Disable TLS verification for all outbound calls (development only).
    ignore_certificate_errors: bool = False

    # Timeout in seconds for document fetches, identity checks and tool calls.
    request_timeout: float = 30.0

    # --- Catalog settings ---

    services: list[ServiceConfig] = Field(default_factory=list)

    # Named access tiers: tier name -> tool names visible in that tier.
    categories: dict[str, list[str]] = Field(default_factory=lambda: {ANONYMOUS_TIER: []})

    model_config = {
        "env_prefix": "MCP_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        # The YAML file is shared with other tooling and may carry extra keys.
        "extra": "ignore",
    }

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("categories")
    @classmethod
    def _require_anonymous_tier(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        tiers = {name.lower(): list(tools) for name, tools in value.items()}
        if ANONYMOUS_TIER not in tiers:
            raise ValueError(f"categories must define the '{ANONYMOUS_TIER}' tier")
        return tiers

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        yaml_file = os.environ.get("MCP_CONFIG_FILE", DEFAULT_CONFIG_FILE)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file),
            file_secret_settings,
        )


# Singleton instance: import this from other modules.
settings = Settings()
