"""Configuration for accesscore.

Pydantic-validated settings for reaching the remote authority and for
logging. Consumers either build ``AccessConfig`` directly or load it from
the environment with :func:`load_access_config_from_env`, which is the only
place environment variables are read.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AccessConfig(BaseModel):
    """Settings for the authority client and the editing engine.

    Environment variables:
        ACCESS_API_URL           base URL of the authority (e.g. https://portal.example.com)
        ACCESS_TIMEOUT_SECONDS   per-request timeout
        ACCESS_DEFAULT_LANG      language for tree and scope lookups
        ACCESS_TOKEN             bearer token sent with every request
        ACCESS_PAGE_SIZE         page size for paged listings (systems, users)
        TENANT_ID                default X-Tenant-Id header
        LOG_LEVEL                logging level
        LOG_JSON                 JSON log format (true/false)
    """

    base_url: str = Field(
        default="http://localhost:8080",
        description="Base URL of the authorization service",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Per-request timeout in seconds",
    )
    default_lang: str = Field(
        default="en",
        description="Language for system trees and scope value names",
    )
    bearer_token: Optional[str] = Field(
        default=None,
        description="Bearer token for the Authorization header",
    )
    tenant_id: Optional[str] = Field(
        default=None,
        description="Default tenant sent as X-Tenant-Id",
    )
    page_size: int = Field(
        default=500,
        gt=0,
        description="Page size for paged listings (systems fallback, users directory)",
    )

    # Logging
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON log format (default: plain text)",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL; strip trailing slashes."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Base URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("default_lang")
    @classmethod
    def validate_lang(cls, v: str) -> str:
        """Normalize ``"en-US"`` to ``"en"``."""
        return (v or "en").split("-")[0].lower()

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Convert string to LogLevel enum."""
        if isinstance(v, LogLevel):
            return v
        if isinstance(v, str):
            try:
                return LogLevel[v.upper()]
            except KeyError:
                raise ValueError(f"Invalid log level: {v}. Must be one of {[e.value for e in LogLevel]}")
        raise ValueError(f"Log level must be string or LogLevel enum, got {type(v)}")

    model_config = {
        "extra": "forbid",
    }


def load_access_config_from_env() -> AccessConfig:
    """Load configuration from environment variables.

    Returns:
        AccessConfig instance with values from environment or defaults.
    """
    import os

    return AccessConfig(
        base_url=os.getenv("ACCESS_API_URL", "http://localhost:8080"),
        timeout_seconds=float(os.getenv("ACCESS_TIMEOUT_SECONDS", "30")),
        default_lang=os.getenv("ACCESS_DEFAULT_LANG", "en"),
        bearer_token=os.getenv("ACCESS_TOKEN") or None,
        tenant_id=os.getenv("TENANT_ID") or None,
        page_size=int(os.getenv("ACCESS_PAGE_SIZE", "500")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=os.getenv("LOG_JSON", "false").lower() in ("true", "1", "yes"),
    )


__all__ = [
    "AccessConfig",
    "LogLevel",
    "load_access_config_from_env",
]
