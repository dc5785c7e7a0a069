"""Structured logging configuration with JSON output and sensitive field redaction."""

from __future__ import annotations

import json
import logging
import re
from datetime import UTC, datetime
from typing import Any

# Fields whose values should be redacted in log output
SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"token", re.IGNORECASE),
    re.compile(r"authorization", re.IGNORECASE),
    re.compile(r"api[_-]?key", re.IGNORECASE),
    re.compile(r"card[_-]?number", re.IGNORECASE),
    re.compile(r"^cbu$", re.IGNORECASE),
]

REDACTED = "***REDACTED***"

# Free-text patterns: (regex, keep-prefix group)
_TEXT_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"(Authorization:\s*Bearer\s+)\S+", re.IGNORECASE),
    re.compile(r"(password[\s=:]+)\S+", re.IGNORECASE),
    re.compile(r"(access_token[\s=:]+)[^\s&]+", re.IGNORECASE),
    re.compile(r"(token[\s=:]+)[^\s&]+", re.IGNORECASE),
]

# MercadoPago credentials look like APP_USR-<digits>-... or TEST-<digits>-...
_GATEWAY_CREDENTIAL = re.compile(r"\b(?:APP_USR|TEST)-\d{6,}[\w-]*")

# CBU / CVU bank account numbers: 22 digits, last four kept
_BANK_ACCOUNT = re.compile(r"\b\d{18}(\d{4})\b")


def is_sensitive_key(key: str) -> bool:
    """Check if a key name matches any sensitive pattern."""
    return any(p.search(key) for p in SENSITIVE_PATTERNS)


def redact_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively redact sensitive fields from a dictionary."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if is_sensitive_key(key):
            result[key] = REDACTED
        elif isinstance(value, dict):
            result[key] = redact_dict(value)
        elif isinstance(value, list):
            result[key] = [redact_dict(item) if isinstance(item, dict) else item for item in value]
        else:
            result[key] = value
    return result


def redact_string(text: str) -> str:
    """Redact known sensitive patterns from freeform log text."""
    for pattern in _TEXT_PATTERNS:
        text = pattern.sub(r"\1" + REDACTED, text)
    text = _GATEWAY_CREDENTIAL.sub(REDACTED, text)
    return _BANK_ACCOUNT.sub(r"******************\1", text)


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter with sensitive field redaction."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_string(record.getMessage()),
        }

        for key in ("correlation_id", "purchase_id"):
            value = getattr(record, key, None)
            if value:
                log_entry[key] = value

        log_entry["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": redact_string(str(record.exc_info[1])),
            }

        # Extra fields passed via logger.info(..., extra={...})
        extras = {
            k: v
            for k, v in record.__dict__.items()
            if k not in _STANDARD_RECORD_KEYS
            and k not in ("message", "correlation_id", "purchase_id")
        }
        if extras:
            log_entry["extra"] = redact_dict(extras)

        return json.dumps(log_entry, default=str)


_STANDARD_RECORD_KEYS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
)


class RedactingFormatter(logging.Formatter):
    """Standard text formatter with sensitive field redaction."""

    def __init__(self, fmt: str | None = None, datefmt: str | None = None) -> None:
        super().__init__(
            fmt=fmt or "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt=datefmt or "%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        return redact_string(super().format(record))


class CorrelationFilter(logging.Filter):
    """Stamps correlation_id and purchase_id from contextvars onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        from rafflio.core.context import get_correlation_id, get_purchase_id

        record.correlation_id = get_correlation_id()
        record.purchase_id = get_purchase_id()
        return True


def setup_logging(level: str = "INFO", log_format: str = "text") -> None:
    """Configure application-wide logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: "json" for structured JSON output, "text" for human-readable.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(RedactingFormatter())
    handler.addFilter(CorrelationFilter())
    root.addHandler(handler)

    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("watchfiles").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
