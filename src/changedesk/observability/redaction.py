"""Redaction helpers for safe logging.

Customer data reaches us inside upstream booking payloads and error bodies.
Anything that goes to a log line passes through these helpers first.
"""

import re
from typing import Any

_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

_REDACTED = "[REDACTED]"

# Upstream error bodies can be whole HTML pages
MAX_BODY_CHARS = 300


def redact_string(value: str) -> str:
    """Redact phone numbers and e-mail addresses from a string."""
    result = _PHONE_PATTERN.sub(_REDACTED, value)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def truncate(value: str, limit: int = MAX_BODY_CHARS) -> str:
    """Cut a string to `limit` characters, marking the cut."""
    if len(value) <= limit:
        return value
    return value[:limit] + "...[truncated]"


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return truncate(redact_string(value))
    if isinstance(value, dict):
        # Structure only, never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}
