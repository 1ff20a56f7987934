# FedGate - SAML Federated Authentication Test Backend
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Structured Logging

JSON-structured logging for:
- Request tracing
- Error tracking
- Audit trails of login, logout and user provisioning

Features:
- Correlation IDs (request_id)
- Sensitive data masking (tokens, cookies, SAML payloads)
- Multiple output formats (JSON, human-readable)
"""

import json
import logging
import sys
import traceback
from contextvars import ContextVar
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

# ============================================================
# CONTEXT VARIABLES
# ============================================================

# Set by RequestContextMiddleware for every request
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

# Set once a SAML flow knows which local user it is acting for
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)


def bind_user(user_id: int) -> None:
    """Tag the rest of this request's log records with a local user id."""
    user_id_var.set(str(user_id))


def get_request_context() -> dict[str, str | None]:
    """Get current request context."""
    return {
        "request_id": request_id_var.get(),
        "user_id": user_id_var.get(),
    }


# ============================================================
# SENSITIVE DATA MASKING
# ============================================================

# Fields that should be masked in logs
SENSITIVE_FIELDS = {
    "password",
    "secret",
    "token",
    "authorization",
    "cookie",
    "credential",
    "private_key",
    "access_token",
    "refresh_token",
    "jwt",
    "bearer",
    "samlrequest",
    "samlresponse",
}


def mask_sensitive_data(data: Any, depth: int = 0, max_depth: int = 10) -> Any:
    """
    Recursively mask sensitive data in dictionaries and lists.

    Args:
        data: Data to mask
        depth: Current recursion depth
        max_depth: Maximum recursion depth

    Returns:
        Data with sensitive fields masked
    """
    if depth > max_depth:
        return "[MAX_DEPTH_EXCEEDED]"

    if isinstance(data, dict):
        masked = {}
        for key, value in data.items():
            key_lower = str(key).lower()
            if any(s in key_lower for s in SENSITIVE_FIELDS):
                masked[key] = "[REDACTED]"
            else:
                masked[key] = mask_sensitive_data(value, depth + 1, max_depth)
        return masked

    elif isinstance(data, list):
        return [mask_sensitive_data(item, depth + 1, max_depth) for item in data]

    elif isinstance(data, str):
        # Signed session tokens are JWTs
        if len(data) > 20 and data.startswith(("Bearer ", "eyJ")):
            return f"{data[:8]}...[REDACTED]"
        return data

    return data


# ============================================================
# LOG RECORD STRUCTURE
# ============================================================


@dataclass
class StructuredLogRecord:
    """Structured log record for JSON output."""

    timestamp: str
    level: str
    logger: str
    message: str

    # Context
    request_id: str | None = None
    user_id: str | None = None

    # Location
    module: str | None = None
    function: str | None = None
    line: int | None = None

    # Error info
    error_type: str | None = None
    error_message: str | None = None
    stack_trace: str | None = None

    # Extra data
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != {}}

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str, ensure_ascii=False)


# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED_ATTRS = {
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "exc_info",
    "exc_text",
    "thread",
    "threadName",
    "message",
    "taskName",
}


# ============================================================
# JSON FORMATTER
# ============================================================


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Outputs logs as single-line JSON for easy parsing by log aggregators.
    """

    def __init__(self, mask_sensitive: bool = True):
        super().__init__()
        self.mask_sensitive = mask_sensitive

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        ctx = get_request_context()

        log_record = StructuredLogRecord(
            timestamp=datetime.now(UTC).isoformat(),
            level=record.levelname,
            logger=record.name,
            message=record.getMessage(),
            request_id=ctx.get("request_id"),
            user_id=ctx.get("user_id"),
            module=record.module,
            function=record.funcName,
            line=record.lineno,
        )

        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            if exc_type is not None:
                log_record.error_type = exc_type.__name__
                log_record.error_message = str(exc_value)
                log_record.stack_trace = "".join(
                    traceback.format_exception(exc_type, exc_value, exc_tb)
                )

        extra_fields = {
            key: value for key, value in record.__dict__.items() if key not in _RESERVED_ATTRS
        }
        if extra_fields:
            if self.mask_sensitive:
                extra_fields = mask_sensitive_data(extra_fields)
            log_record.extra = extra_fields

        return log_record.to_json()


# ============================================================
# HUMAN-READABLE FORMATTER
# ============================================================


class HumanFormatter(logging.Formatter):
    """
    Human-readable formatter with color support.

    Includes request context inline for easy debugging.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for human reading."""
        ctx = get_request_context()

        ctx_parts = []
        if ctx.get("request_id"):
            ctx_parts.append(f"req={ctx['request_id'][:8]}")
        if ctx.get("user_id"):
            ctx_parts.append(f"user={ctx['user_id']}")
        ctx_str = f"[{' '.join(ctx_parts)}] " if ctx_parts else ""

        timestamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

        level = record.levelname
        if self.use_colors and level in self.COLORS:
            level = f"{self.COLORS[level]}{level}{self.RESET}"

        line = f"{timestamp} {level:8} {record.name}:{record.lineno} {ctx_str}{record.getMessage()}"

        if record.exc_info:
            exc_text = "".join(traceback.format_exception(*record.exc_info))
            line = f"{line}\n{exc_text}"

        return line


# ============================================================
# LOGGING CONFIGURATION
# ============================================================


def configure_logging(
    level: str = "INFO",
    format: str = "json",  # "json" or "human"
    mask_sensitive: bool = True,
    use_colors: bool = True,
):
    """
    Configure logging for FedGate.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Output format ("json" for production, "human" for development)
        mask_sensitive: Whether to mask sensitive data
        use_colors: Whether to use colors (only for human format)
    """
    if format == "json":
        formatter: logging.Formatter = JSONFormatter(mask_sensitive=mask_sensitive)
    else:
        formatter = HumanFormatter(use_colors=use_colors)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Set levels for noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("xmlsec").setLevel(logging.WARNING)

    return root_logger


# ============================================================
# AUDIT LOGGING
# ============================================================


class AuditLogger:
    """
    Specialized logger for audit events.

    Audit events are always logged at INFO level with specific structure.
    """

    def __init__(self, name: str = "audit"):
        self._logger = logging.getLogger(name)

    def log(
        self,
        action: str,
        resource_type: str,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
        success: bool = True,
    ):
        """
        Log an audit event.

        Args:
            action: Action performed (e.g., "login", "logout", "create")
            resource_type: Type of resource (e.g., "user", "saml")
            resource_id: ID of the resource
            details: Additional details
            success: Whether the action succeeded
        """
        ctx = get_request_context()

        self._logger.info(
            f"AUDIT: {action} {resource_type}",
            extra={
                "audit_event": True,
                "action": action,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "success": success,
                "details": mask_sensitive_data(details) if details else None,
                "user_id": ctx.get("user_id"),
                "request_id": ctx.get("request_id"),
            },
        )

    def create(self, resource_type: str, resource_id: str, details: dict | None = None):
        """Log a create event."""
        self.log("create", resource_type, resource_id, details)

    def login(self, user_id: str, success: bool = True, details: dict | None = None):
        """Log a federated login."""
        self.log("login", "user", user_id, details, success)

    def logout(self, user_id: str, initiator: str, success: bool = True, details: dict | None = None):
        """Log a federated logout. ``initiator`` is "sp" or "idp"."""
        self.log("logout", "user", user_id, {"initiator": initiator, **(details or {})}, success)


# Global audit logger instance
audit_logger = AuditLogger()


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    # Context
    "bind_user",
    "get_request_context",
    "request_id_var",
    "user_id_var",
    # Logging
    "configure_logging",
    "JSONFormatter",
    "HumanFormatter",
    "mask_sensitive_data",
    # Audit
    "AuditLogger",
    "audit_logger",
]
