"""Configuration settings for the Revisium memory MCP server.

This module provides Pydantic Settings for configuration management with:
- Environment variable support (REVISIUM_ prefix)
- CLI argument override support
- Type validation and defaults
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MemorySettings(BaseSettings):
    """Configuration settings for the Revisium memory MCP server.

    Settings are loaded from environment variables with the REVISIUM_ prefix.
    CLI arguments can override these settings when provided.

    Attributes:
        url: Revisium base URL (default: http://localhost:9222)
        username: Login username (optional)
        password: Login password (optional)
        token: Access token, takes precedence over username/password (optional)
        org: Organization, resolved from the logged-in user when unset
        project: Active project (default: memory)
        branch: Active branch (default: master)
        auto_commit: Commit immediately after store/delete (default: False)
        auto_start: Launch a local standalone backend when needed (default: True)
        log_level: Logging level (default: INFO)

    Example:
        >>> settings = MemorySettings()
        >>> print(settings.url)
        http://localhost:9222

        >>> # Override via environment
        >>> # REVISIUM_URL=https://cloud.revisium.io
        >>> settings = MemorySettings()
        >>> print(settings.url)
        https://cloud.revisium.io
    """

    model_config = SettingsConfigDict(
        env_prefix="REVISIUM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Connection
    url: str = Field(
        default="http://localhost:9222",
        description="Revisium base URL",
    )
    username: Optional[str] = Field(default=None, description="Login username")
    password: Optional[str] = Field(default=None, description="Login password")
    token: Optional[str] = Field(
        default=None,
        description="Access token (takes precedence over username/password)",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Revisium API request timeout in seconds",
    )

    # Identity
    org: Optional[str] = Field(
        default=None,
        description="Organization (default: resolved from the logged-in user)",
    )
    project: str = Field(default="memory", description="Active project name")
    branch: str = Field(default="master", description="Active branch name")

    # Behaviour
    auto_commit: bool = Field(
        default=False,
        description="Commit immediately after store/delete operations",
    )

    # Standalone backend
    auto_start: bool = Field(
        default=True,
        description="Start a local Revisium standalone if the URL is loopback and it is not running",
    )
    standalone_auth: bool = Field(
        default=False,
        description="Start the standalone backend with authentication enabled",
    )
    standalone_data_dir: Optional[str] = Field(
        default=None,
        description="Data directory for the standalone backend",
    )
    standalone_pg_port: Optional[int] = Field(
        default=None,
        ge=1,
        le=65535,
        description="Embedded PostgreSQL port for the standalone backend",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
