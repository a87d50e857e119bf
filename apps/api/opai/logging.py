from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from opai.context import get_correlation_id, get_log_context, get_tenant_id
from opai.core.config import get_settings


_BASE_RECORD_KEYS = set(logging.makeLogRecord({}).__dict__.keys())

# Structured fields copied from ``extra=`` into the JSON "fields" object.
_FIELD_KEYS = (
    "method",
    "path",
    "status_code",
    "duration_ms",
    "lead_id",
    "account_id",
    "contact_id",
    "deal_id",
    "quote_ids",
    "quote_code",
    "installation_name",
    "outcome",
    "event_name",
    "error",
)
_MAX_ERROR_LENGTH = 500

_default_record_factory = logging.getLogRecordFactory()


def _context_record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _default_record_factory(*args, **kwargs)
    record.correlation_id = get_correlation_id()
    record.tenant_id = get_tenant_id()
    return record


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line: envelope keys at the top, structured extras under "fields"."""

    def __init__(self, service: str | None = None) -> None:
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        context = get_log_context()
        fields = {
            key: record.__dict__[key]
            for key in _FIELD_KEYS
            if key in record.__dict__ and key not in _BASE_RECORD_KEYS
        }
        if "lead_id" not in fields and context["lead_id"]:
            fields["lead_id"] = context["lead_id"]
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:_MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or context["correlation_id"],
            "tenant_id": getattr(record, "tenant_id", None) or context["tenant_id"],
            "fields": fields,
        }
        if self.service:
            payload["service"] = self.service
        return json.dumps(payload, default=str)


def configure_logging() -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_opai_configured", False):
        return

    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter(service=settings.app_name))

    root_logger.handlers.clear()
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_context_record_factory)
    root_logger.addHandler(handler)
    root_logger._opai_configured = True  # type: ignore[attr-defined]
