"""Centralized logging utilities for aclgraph.

This module provides:
- Logging configuration from AclConfig
- Safe preview utilities for logged identifiers and permission lists
- Structured logging with principal/operation context
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from .config import AclConfig, LogLevel

# LogRecord attributes that are not user-supplied extras
_RECORD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName", "principal", "operation",
}


def safe_preview(value: Any, limit: int = 240) -> str:
    """Create a safe, length-bounded preview of a value for logging.

    Args:
        value: The value to preview (any type)
        limit: Maximum length of the preview (default: 240)

    Returns:
        A single-line, truncated string representation
    """
    if value is None:
        return ""

    if isinstance(value, str):
        s = value
    elif isinstance(value, (dict, list, tuple, set, frozenset)):
        if isinstance(value, (set, frozenset)):
            value = sorted(value, key=str)
        try:
            s = json.dumps(value, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            s = str(value)
    else:
        s = str(value)

    s = " ".join(s.split())

    if len(s) > limit:
        return s[: limit - 1] + "…"

    return s


class AclFormatter(logging.Formatter):
    """Formatter that includes principal/operation context.

    Outputs JSON (one object per line) or plain text.
    """

    def __init__(
        self,
        json_format: bool = True,
        *args: Any,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.json_format = json_format

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record."""
        principal = getattr(record, "principal", None)
        operation = getattr(record, "operation", None)

        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if operation:
            log_data["operation"] = operation
        if principal:
            log_data["principal"] = principal

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                log_data[key] = safe_preview(value)

        if self.json_format:
            return json.dumps(log_data, default=str, ensure_ascii=False)

        parts = [
            f"[{log_data['timestamp']}]",
            log_data["level"],
            log_data["logger"],
        ]
        if operation:
            parts.append(f"op={operation}")
        if principal:
            parts.append(f"principal={principal}")
        parts.append(f": {log_data['message']}")
        text = " ".join(parts)
        if "exception" in log_data:
            text += "\n" + log_data["exception"]
        return text


class AclLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds principal and operation to log records.

    Usage:
        logger = get_acl_logger(__name__)
        logger.info("Checking access", principal="u1", operation="has_all_permissions")
    """

    def __init__(
        self,
        logger: logging.Logger,
        principal: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(logger, {})
        self.principal = principal
        self.operation = operation

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Move principal/operation keyword arguments into ``extra``."""
        principal = kwargs.pop("principal", self.principal)
        operation = kwargs.pop("operation", self.operation)

        extra = dict(kwargs.get("extra") or {})
        if principal:
            extra["principal"] = principal
        if operation:
            extra["operation"] = operation
        kwargs["extra"] = extra

        return msg, kwargs


def setup_logging(
    config: Optional[AclConfig] = None,
    json_format: Optional[bool] = None,
) -> None:
    """Configure the root logger.

    Args:
        config: AclConfig instance (if None, loads from environment)
        json_format: Override ``config.log_json``
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

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        AclFormatter(json_format=config.log_json if json_format is None else json_format)
    )
    root_logger.addHandler(console_handler)


def get_acl_logger(
    name: str,
    principal: Optional[str] = None,
    operation: Optional[str] = None,
) -> AclLoggerAdapter:
    """Get a logger adapter carrying principal/operation context.

    Example:
        logger = get_acl_logger(__name__, operation="grant")
        logger.debug("Granting", principal="u1")
    """
    return AclLoggerAdapter(logging.getLogger(name), principal=principal, operation=operation)


__all__ = [
    "AclFormatter",
    "AclLoggerAdapter",
    "get_acl_logger",
    "safe_preview",
    "setup_logging",
]
