"""Structured logging for the reconciliation engine.

Two formatters:
- JSONFormatter: one JSON object per line, for log shippers
- TextFormatter: human-readable lines for local runs

Both include the instance currently being reconciled, taken from
``instance_id_var`` which ``reconcile_interfaces`` sets for its task.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

from netattach.config import settings

SERVICE_NAME = "netattach"

instance_id_var: ContextVar[str | None] = ContextVar("instance_id", default=None)

# Attributes every LogRecord carries; anything else was passed via extra=
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> dict:
    return {
        key: value for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "logger": record.name,
            "message": record.getMessage(),
        }
        instance_id = instance_id_var.get()
        if instance_id:
            payload["instance_id"] = instance_id
        extra = _extra_fields(record)
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable format with the instance ID when one is set."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-8s %(name)s%(instance)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        instance_id = instance_id_var.get()
        record.instance = f" [{instance_id}]" if instance_id else ""
        return super().format(record)


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    """Install the configured formatter on the root logger.

    Defaults come from ``settings.log_level`` and ``settings.log_format``.
    Calling it again replaces the handler instead of stacking a new one.
    """
    level = (level or settings.log_level).upper()
    log_format = (log_format or settings.log_format).lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if log_format == "json" else TextFormatter())
    handler._netattach = True

    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, "_netattach", False):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
