"""Logging setup for Knowledge Chat.

Request-scoped fields (user, chat session, request id) live in contextvars
and are copied onto every record by ``ChatContextFilter``. Both formatters
read them from the record. Bearer tokens and JWTs are scrubbed from
messages because user access tokens are forwarded to the completion
function and can surface in collaborator error text.
"""

import json
import logging
import re
import sys
from contextvars import ContextVar
from typing import Dict, Optional

CONTEXT_FIELDS = ("user_id", "session_id", "request_id")

_context: Dict[str, ContextVar] = {
    name: ContextVar(name, default=None) for name in CONTEXT_FIELDS
}

_BEARER_RE = re.compile(r"(Bearer\s+)[A-Za-z0-9\-_.~+/]+=*", re.IGNORECASE)
_JWT_RE = re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+")

REDACTED = "[redacted]"


def set_log_context(
    user_id: Optional[str] = None,
    session_id: Optional[str] = None,
    request_id: Optional[str] = None,
):
    """Set contextual logging fields for the current async context."""
    for name, value in (
        ("user_id", user_id),
        ("session_id", session_id),
        ("request_id", request_id),
    ):
        if value is not None:
            _context[name].set(value)


def clear_log_context():
    for var in _context.values():
        var.set(None)


def redact_secrets(text: str) -> str:
    """Mask bearer credentials and JWTs in a log message."""
    text = _BEARER_RE.sub(lambda m: m.group(1) + REDACTED, text)
    return _JWT_RE.sub(REDACTED, text)


class ChatContextFilter(logging.Filter):
    """Attach the current chat context to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, var in _context.items():
            if getattr(record, name, None) is None:
                setattr(record, name, var.get())
        return True


def _record_context(record: logging.LogRecord) -> Dict[str, str]:
    return {
        name: getattr(record, name)
        for name in CONTEXT_FIELDS
        if getattr(record, name, None)
    }


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_secrets(record.getMessage()),
            **_record_context(record),
        }
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = redact_secrets(self.formatException(record.exc_info))
        return json.dumps(log_entry)


class HumanReadableFormatter(logging.Formatter):
    """Single-line development output with a trailing context block."""

    _LABELS = {"user_id": "user", "session_id": "chat", "request_id": "req"}

    def format(self, record: logging.LogRecord) -> str:
        line = (
            f"[{self.formatTime(record, self.datefmt)}] {record.levelname:8s} "
            f"{record.name}: {redact_secrets(record.getMessage())}"
        )
        context = _record_context(record)
        if context:
            line += " [" + ", ".join(
                f"{self._LABELS[name]}={value}" for name, value in context.items()
            ) + "]"
        if record.exc_info and record.exc_info[1]:
            line += "\n" + redact_secrets(self.formatException(record.exc_info))
        return line


def configure_logging(environment: str = "development", log_level: str = "INFO"):
    """Install a single stdout handler on the root logger.

    Production gets JSON lines; every other environment gets the
    human-readable format.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ChatContextFilter())
    if environment == "production":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(HumanReadableFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    root_logger.addHandler(handler)

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
