"""Structured JSON logging.

One JSON object per line (CloudWatch/Datadog friendly):
- timestamp, level, message, module, func, line
- request_id, user_id, auth_channel from context variables, when set
- every ``extra={...}`` field, sanitized; sensitive keys are redacted
"""

import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

from bndy_api.context import auth_channel_var, request_id_var, user_id_var
from bndy_api.utils.sanitize import REDACTED, is_sensitive_key, sanitize_exc, sanitize_obj, sanitize_str

_CONTEXT_FIELDS: tuple[tuple[str, ContextVar[str]], ...] = (
    ("request_id", request_id_var),
    ("user_id", user_id_var),
    ("auth_channel", auth_channel_var),
)

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render a LogRecord as a single JSON line with request context."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": sanitize_str(record.getMessage()),
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }

        for field, var in _CONTEXT_FIELDS:
            value = var.get()
            if value:
                log_data[field] = value

        if record.exc_info:
            log_data["exc_info"] = sanitize_exc(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS:
                continue
            log_data[key] = REDACTED if is_sensitive_key(key) else sanitize_obj(value)

        return json.dumps(log_data, default=str)


def configure_json_logging(log_level: str = "INFO") -> None:
    """Replace the root logger's handlers with a single JSON stream handler.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)
