"""
Logging configuration for the billing service.

Production emits one JSON object per line. Development uses a readable line
with the correlation ids appended. Both paths scrub processor keys, webhook
secrets and bearer tokens before anything is written.
"""

import json
import logging
import re
import sys
from datetime import UTC, datetime

# Patterns that may contain secrets or credentials, redacted before any log output
_SENSITIVE_PATTERNS = [
    (re.compile(r"(Authorization:\s*Bearer\s+)\S+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Stripe-Signature:\s*)\S+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r'(api[_-]?key["\s:=]+)[^\s&"\']+', re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r'(secret["\s:=]+)[^\s&"\']+', re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"\b(?:sk|rk)_(?:live|test)_[A-Za-z0-9]{8,}"), "[REDACTED_API_KEY]"),
    (re.compile(r"\bwhsec_[A-Za-z0-9]{8,}"), "[REDACTED_SECRET]"),
    (re.compile(r"\bre_[A-Za-z0-9]{16,}"), "[REDACTED_API_KEY]"),
]

# Request fields emitted by the HTTP middleware
_REQUEST_KEYS = ("request_id", "method", "path", "status_code", "duration_ms")

# Correlation ids passed via `extra=`, emitted as top-level JSON fields
CORRELATION_KEYS = ("user_id", "event_id", "event_type", "record_id", "payout_id", "task")


def redact(value: str) -> str:
    """Apply every sensitive-data pattern to *value*."""
    for pattern, replacement in _SENSITIVE_PATTERNS:
        value = pattern.sub(replacement, value)
    return value


def _redact_any(value):
    return redact(value) if isinstance(value, str) else value


class SensitiveDataFilter(logging.Filter):
    """Redacts tokens, API keys and secrets from messages, arguments and extras."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(_redact_any(a) for a in record.args)
        elif isinstance(record.args, dict):
            record.args = {k: _redact_any(v) for k, v in record.args.items()}
        for key in CORRELATION_KEYS:
            if hasattr(record, key):
                setattr(record, key, _redact_any(getattr(record, key)))
        return True


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _REQUEST_KEYS + CORRELATION_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = redact(self.formatException(record.exc_info))

        # Non-serializable extras fall back to str()
        return json.dumps(entry, default=str)


class ContextFormatter(logging.Formatter):
    """Human-readable format with correlation ids appended as ``key=value``."""

    def __init__(self):
        super().__init__(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = " ".join(
            f"{key}={getattr(record, key)}"
            for key in CORRELATION_KEYS
            if getattr(record, key, None) is not None
        )
        return f"{line} [{context}]" if context else line


def setup_logging(json_output: bool = False, level: str = "INFO") -> None:
    """
    Configure the root logger.

    Args:
        json_output: JSON lines (production) instead of the readable format.
        level: Log level name.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else ContextFormatter())
    handler.addFilter(SensitiveDataFilter())
    root.addHandler(handler)

    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)
