"""
Secure Logging Utilities for ZeroSync

Client-supplied values (addresses, calldata, relay responses) end up in log
lines. This module neutralizes log injection before they do and offers a
structured audit logger for the API layer.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from zerosync.config.settings import settings

# Characters that can be used for log injection
LOG_INJECTION_CHARS = {
    "\n": "\\n",
    "\r": "\\r",
    "\x00": "\\x00",
    "\x1b": "\\x1b",  # ANSI escape
    "\t": "\\t",
}

MAX_LOGGED_LENGTH = 200


def sanitize_for_log(value: Any, max_length: int = MAX_LOGGED_LENGTH) -> str:
    """
    Sanitize a value before logging to prevent log injection.

    Args:
        value: Value to sanitize (string, dict, list, or other)
        max_length: Strings longer than this are truncated

    Returns:
        Safe string representation
    """
    if value is None:
        return "null"

    if isinstance(value, (bool, int, float)):
        return str(value)

    if isinstance(value, str):
        result = value
        for char, replacement in LOG_INJECTION_CHARS.items():
            result = result.replace(char, replacement)
        if len(result) > max_length:
            result = result[:max_length] + "...[truncated]"
        return result

    if isinstance(value, dict):
        return json.dumps({str(k): sanitize_for_log(v, max_length) for k, v in value.items()}, ensure_ascii=True)

    if isinstance(value, (list, tuple)):
        return json.dumps([sanitize_for_log(item, max_length) for item in value], ensure_ascii=True)

    return sanitize_for_log(str(value), max_length)


def short_hash(value: str, length: int = 10) -> str:
    """Abbreviated hash for log lines (0x1234abcd...)."""
    if len(value) <= length:
        return value
    return value[:length] + "..."


class AuditLogger:
    """
    Structured JSON audit trail for state-changing API calls.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.name = name

    def audit(self, action: str, resource: str, success: bool = True, **kwargs: Any) -> None:
        """
        Log an audit event.

        Args:
            action: Action performed (e.g., "submit", "trigger")
            resource: Resource affected (e.g., "transaction", "batch")
            success: Whether the action succeeded
            **kwargs: Additional context, sanitized before logging
        """
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "type": "audit",
            "action": sanitize_for_log(action),
            "resource": sanitize_for_log(resource),
            "success": success,
            "logger": self.name,
        }
        if kwargs:
            log_entry["details"] = {k: sanitize_for_log(v) for k, v in kwargs.items()}

        self.logger.info(json.dumps(log_entry, ensure_ascii=True))


def get_audit_logger() -> AuditLogger:
    """Get the audit logger of the API layer."""
    return AuditLogger("zerosync.audit")


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """
    Configure root logging once for the server and the CLI.

    Args:
        level: Log level name. Defaults to settings.LOG_LEVEL
        fmt: Log format. Defaults to settings.LOG_FORMAT
    """
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format=fmt or settings.LOG_FORMAT,
    )
