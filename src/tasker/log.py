"""
Logging configuration and structured event helpers.

All modules use the standard library logger (``logging.getLogger(__name__)``).
Structured fields travel in ``extra`` and are rendered as ``key=value`` pairs
by the formatter installed here.

Standard usage:
    logger = logging.getLogger(__name__)
    log_event(logger, "todo_created", todo_id=str(todo["id"]), priority="high")
"""
from __future__ import annotations

import logging
from typing import Any, Dict

# Attributes present on every LogRecord; anything else came in through ``extra``.
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class KeyValueFormatter(logging.Formatter):
    """Formatter that appends structured ``extra`` fields to the message."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        fields: Dict[str, Any] = {
            k: v for k, v in vars(record).items() if k not in _RESERVED and not k.startswith("_")
        }
        if not fields:
            return base
        rendered = " ".join(f"{k}={v}" for k, v in sorted(fields.items()))
        return f"{base} {rendered}"


# PUBLIC_INTERFACE
def configure_logging(level: str = "INFO") -> None:
    """Install a key=value stream handler on the root logger (idempotent)."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in root.handlers:
        if isinstance(handler.formatter, KeyValueFormatter):
            return
    handler = logging.StreamHandler()
    handler.setFormatter(KeyValueFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)


# PUBLIC_INTERFACE
def log_event(logger: logging.Logger, event: str, message: str = "", **fields: Any) -> None:
    """Log a business event at INFO with its fields attached as ``extra``."""
    extra = {"event": event}
    extra.update({k: ("" if v is None else str(v)) for k, v in fields.items()})
    logger.info(message or event, extra=extra)
