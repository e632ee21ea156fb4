"""Logging utilities for the access engine.

This module provides:
- Logging configuration from AccessEngineConfig
- Bounded previews of permission maps and restriction sets
- JSON or plain-text formatting with tenant/user/role context
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from pydantic import BaseModel

from .config import AccessEngineConfig, LogLevel

# Record attributes set by the logging module itself
_RESERVED_ATTRS = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "message", "pathname", "process", "processName", "relativeCreated",
        "thread", "threadName", "exc_info", "exc_text", "stack_info",
        "taskName",
    }
)

_CONTEXT_FIELDS = ("tenant_id", "user_id", "role_id")


def safe_preview(value: Any, limit: int = 240) -> str:
    """Single-line, length-bounded preview of a value for logging.

    Pydantic models are dumped first, so a ``RestrictionSet`` previews as
    its wire form.

    Args:
        value: The value to preview (any type)
        limit: Maximum length of the preview (default: 240)
    """
    if value is None:
        return ""
    if isinstance(value, BaseModel):
        value = value.model_dump(by_alias=True, exclude_none=True)

    if isinstance(value, str):
        s = value
    elif isinstance(value, (dict, list, tuple)):
        try:
            s = json.dumps(value, default=str, ensure_ascii=False, sort_keys=isinstance(value, dict))
        except (TypeError, ValueError):
            s = str(value)
    else:
        s = str(value)

    s = " ".join(s.split())
    if len(s) > limit:
        return s[: limit - 1] + "…"
    return s


class AccessLogFormatter(logging.Formatter):
    """Formatter adding tenant/user/role context, as JSON or plain text."""

    def __init__(self, json_format: bool = True, service_name: Optional[str] = None, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.json_format = json_format
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service_name:
            log_data["service"] = self.service_name

        context = {f: getattr(record, f) for f in _CONTEXT_FIELDS if getattr(record, f, None)}
        log_data.update(context)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key in _CONTEXT_FIELDS or key in log_data:
                continue
            log_data[key] = safe_preview(value)

        if self.json_format:
            return json.dumps(log_data, default=str, ensure_ascii=False)

        parts = [f"[{log_data['timestamp']}]", log_data["level"], log_data["logger"]]
        parts.extend(f"{k}={v}" for k, v in context.items())
        line = " ".join(parts) + f": {log_data['message']}"
        if "exception" in log_data:
            line += "\n" + log_data["exception"]
        return line


class AccessLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds tenant_id, user_id and role_id to records.

    Usage:
        logger = get_access_logger(__name__, tenant_id="t1")
        logger.info("Role deleted", role=role)
    """

    def __init__(
        self,
        logger: logging.Logger,
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ):
        super().__init__(logger, {})
        self.tenant_id = tenant_id
        self.user_id = user_id

    def process(self, msg: str, kwargs: Any) -> tuple[str, Any]:
        tenant_id = kwargs.pop("tenant_id", self.tenant_id)
        user_id = kwargs.pop("user_id", self.user_id)
        role_id = kwargs.pop("role_id", None)

        # A Role (or anything with tenant_id/role_id) fills in missing context
        role = kwargs.pop("role", None)
        if role is not None:
            tenant_id = tenant_id or getattr(role, "tenant_id", None)
            role_id = role_id or getattr(role, "role_id", None)

        extra = dict(kwargs.get("extra") or {})
        if tenant_id:
            extra["tenant_id"] = tenant_id
        if user_id:
            extra["user_id"] = user_id
        if role_id:
            extra["role_id"] = role_id
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(config: Optional[AccessEngineConfig] = None, json_format: Optional[bool] = None) -> None:
    """Configure the root logger from engine configuration.

    Args:
        config: Engine configuration (if None, loads from environment)
        json_format: Overrides ``config.log_json`` when given
    """
    if config is None:
        from .config import load_config_from_env

        config = load_config_from_env()

    level_map = {
        LogLevel.DEBUG: logging.DEBUG,
        LogLevel.INFO: logging.INFO,
        LogLevel.WARNING: logging.WARNING,
        LogLevel.ERROR: logging.ERROR,
        LogLevel.CRITICAL: logging.CRITICAL,
    }
    log_level = level_map.get(config.log_level, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        AccessLogFormatter(
            json_format=config.log_json if json_format is None else json_format,
            service_name=config.service_name,
        )
    )
    root_logger.addHandler(console_handler)


def get_access_logger(
    name: str,
    tenant_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> AccessLoggerAdapter:
    """Get a logger adapter bound to a tenant and/or user.

    Example:
        logger = get_access_logger(__name__, tenant_id=tenant_id)
        logger.warning("Parent role missing", role_id=parent_id)
    """
    return AccessLoggerAdapter(logging.getLogger(name), tenant_id=tenant_id, user_id=user_id)


__all__ = [
    "AccessLogFormatter",
    "AccessLoggerAdapter",
    "get_access_logger",
    "safe_preview",
    "setup_logging",
]
