"""Structured logging for the export pipeline.

Production emits one JSON document per record; development keeps the plain
text format. Outbound requests carry credentials in headers, query strings and
token responses, so everything passed through ``extra`` or ``details`` is
redacted by key before it is written.
"""

import json
import logging
import os
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = frozenset(
    {
        "authorization",
        "proxy-authorization",
        "x-api-key",
        "api_key",
        "apikey",
        "access_token",
        "refresh_token",
        "client_secret",
        "clientsecret",
        "password",
        "secret",
        "token",
    }
)

# Attributes every LogRecord has; anything else arrived via ``extra=``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

# httpx logs full request URLs at INFO, including api_key query parameters
_QUIET_LIBRARIES = ("httpx", "httpcore")


def redact(value: Any) -> Any:
    """Copy of ``value`` with sensitive keys masked at any depth."""
    if isinstance(value, Mapping):
        return {
            key: REDACTED if str(key).lower() in SENSITIVE_KEYS else redact(item) for key, item in value.items()
        }
    if isinstance(value, list | tuple):
        return [redact(item) for item in value]
    return value


class JSONFormatter(logging.Formatter):
    """Single-line JSON formatter for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS}
        if extra:
            entry["extra"] = redact(extra)
        return json.dumps(entry, default=str)


def _json_logging_requested() -> bool:
    return bool(os.environ.get("PRODUCTION")) or os.environ.get("ENVIRONMENT", "").lower() == "production"


def setup_structured_logging(level: str | None = None) -> None:
    """Configure the root logger.

    ``level`` falls back to ``LOG_LEVEL`` and then ``INFO``.
    """
    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    handler = logging.StreamHandler()
    if _json_logging_requested():
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level_name)

    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging configured at {level_name}")


class StructuredLogger:
    """Writes one JSON document per dispatch attempt or OAuth operation."""

    def __init__(self, logger_name: str):
        self.logger = logging.getLogger(logger_name)

    def _emit(self, data: dict[str, Any], ok: bool) -> None:
        data = {"timestamp": datetime.now(UTC).isoformat(), **data}
        self.logger.log(logging.INFO if ok else logging.ERROR, json.dumps(data, default=str))

    def log_dispatch_attempt(
        self,
        integration_id: str,
        attempt: int,
        mode: str,
        status: int | None = None,
        error: str | None = None,
        duration_ms: float | None = None,
        will_retry: bool = False,
    ) -> None:
        """Record one outbound attempt. Headers and bodies are never passed in."""
        data: dict[str, Any] = {
            "type": "dispatch_attempt",
            "integration_id": integration_id,
            "attempt": attempt,
            "mode": mode,
            "will_retry": will_retry,
        }
        if status is not None:
            data["status"] = status
        if error:
            data["error"] = error
        if duration_ms is not None:
            data["duration_ms"] = round(duration_ms, 2)

        failed = error is not None or (status is not None and status >= 400)
        self._emit(data, ok=not failed or will_retry)

    def log_oauth_operation(
        self,
        operation: str,
        success: bool,
        details: Mapping[str, Any] | None = None,
        error: str | None = None,
        duration_ms: float | None = None,
    ) -> None:
        data: dict[str, Any] = {"type": "oauth_operation", "operation": operation, "success": success}
        if details:
            data["details"] = redact(details)
        if error:
            data["error"] = error
        if duration_ms is not None:
            data["duration_ms"] = round(duration_ms, 2)
        self._emit(data, ok=success)


dispatch_structured_logger = StructuredLogger("creative_export.dispatch")
oauth_structured_logger = StructuredLogger("creative_export.oauth")
