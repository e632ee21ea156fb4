"""Configuration for the access engine.

``AccessEngineConfig`` is a Pydantic-validated model holding every setting
the engine reads: logging, the Redis event channel, inheritance defaults and
super-admin protection.

Code inside the package never reads ``os.environ``;
``load_config_from_env()`` is the single place that does.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .permissions.constants import InheritanceMode


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


_TRUTHY = ("true", "1", "yes", "on")


class AccessEngineConfig(BaseModel):
    """Settings for one :class:`~contextaccess.engine.AccessEngine` instance."""

    # Logging
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON log format (default: plain text)",
    )

    # Events
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for role events (e.g., redis://localhost:6379/0). None disables publishing.",
    )
    event_channel_prefix: str = Field(
        default="contextaccess:events",
        description="Channel prefix; events go to {prefix}:{tenant_id}:{event_type}",
    )

    # Role resolution
    default_inheritance_mode: InheritanceMode = Field(
        default=InheritanceMode.ADDITIVE,
        description="Mode used when a role's inheritance metadata names none",
    )
    super_admin_priority: int = Field(
        default=1000,
        description="Roles at or above this priority cannot be deleted",
    )

    # Service identification
    service_name: Optional[str] = Field(
        default=None,
        description="Service name attached to log output",
    )

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("Redis URL must start with redis://, rediss://, or unix://")
        return v

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

    @field_validator("default_inheritance_mode", mode="before")
    @classmethod
    def validate_inheritance_mode(cls, v: str | InheritanceMode) -> InheritanceMode:
        if isinstance(v, InheritanceMode):
            return v
        try:
            return InheritanceMode(str(v).lower())
        except ValueError:
            raise ValueError(
                f"Invalid inheritance mode: {v}. Must be one of {[m.value for m in InheritanceMode]}"
            )

    model_config = {
        "use_enum_values": True,
        "extra": "forbid",
    }


def load_config_from_env() -> AccessEngineConfig:
    """Load engine configuration from environment variables.

    Environment variables:
    - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - LOG_JSON: Use JSON log format (true/false, default: false)
    - REDIS_URL: Redis URL for role events
    - ACCESS_EVENT_CHANNEL_PREFIX: Event channel prefix
    - ACCESS_DEFAULT_INHERITANCE_MODE: additive | restrictive | override
    - ACCESS_SUPER_ADMIN_PRIORITY: Priority protected from deletion
    - SERVICE_NAME: Service name for log output

    Returns:
        AccessEngineConfig with values from the environment or defaults.
    """
    import os

    return AccessEngineConfig(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=os.getenv("LOG_JSON", "false").lower() in _TRUTHY,
        redis_url=os.getenv("REDIS_URL") or None,
        event_channel_prefix=os.getenv("ACCESS_EVENT_CHANNEL_PREFIX", "contextaccess:events"),
        default_inheritance_mode=os.getenv("ACCESS_DEFAULT_INHERITANCE_MODE", "additive"),
        super_admin_priority=int(os.getenv("ACCESS_SUPER_ADMIN_PRIORITY", "1000")),
        service_name=os.getenv("SERVICE_NAME"),
    )


__all__ = [
    "AccessEngineConfig",
    "LogLevel",
    "load_config_from_env",
]
