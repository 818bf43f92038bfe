"""Credential redaction for log output.

Every backend request carries a bearer credential supplied by the auth
layer.  httpx exceptions and request reprs can echo it back, so the
entry points attach ``LogRedactionFilter`` to the root handlers once at
startup::

    from backfill_monitor.log_redaction import apply_global_log_redaction
    apply_global_log_redaction()
"""
from __future__ import annotations

import logging
import re

_SENSITIVE_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    # Authorization / Bearer headers
    (
        "auth_header",
        re.compile(r"(?:Authorization\s*[:=]\s*)?Bearer\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE),
    ),
    # JSON Web Tokens (header.payload.signature)
    ("jwt", re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+")),
    # key=value style secrets in URLs or messages
    (
        "token_param",
        re.compile(
            r"(?:access[_-]?token|api[_-]?key|apikey|token|secret|password)\s*[:=]\s*[\"']?[^\s&'\"]+[\"']?",
            re.IGNORECASE,
        ),
    ),
    # Email addresses (operator accounts)
    (
        "email",
        re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    ),
]

_REPLACEMENT = "***REDACTED***"


def redact_secrets(msg: str, replacement: str = _REPLACEMENT) -> str:
    """Return *msg* with all recognised secret patterns replaced."""
    if not msg:
        return msg
    result = msg
    for _name, pattern in _SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


class LogRedactionFilter(logging.Filter):
    """Logging filter that redacts credentials from message and args."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        if record.msg and isinstance(record.msg, str):
            record.msg = redact_secrets(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: redact_secrets(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    redact_secrets(v) if isinstance(v, str) else v
                    for v in record.args
                )
        return True


def apply_log_redaction(logger: logging.Logger) -> None:
    """Attach :class:`LogRedactionFilter` to every handler of *logger*."""
    filt = LogRedactionFilter()
    for handler in logger.handlers:
        if not any(isinstance(f, LogRedactionFilter) for f in handler.filters):
            handler.addFilter(filt)


def apply_global_log_redaction() -> None:
    """Attach :class:`LogRedactionFilter` to the **root** logger's handlers."""
    apply_log_redaction(logging.getLogger())
