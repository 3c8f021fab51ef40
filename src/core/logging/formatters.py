"""Log formatters for JSON and console output."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

from core.logging.context import get_log_context
from core.utils.json_serializers import json_serializer


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    Sanitizes URLs to remove sensitive tokens before logging.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Jobs and queues
        "job_id",
        "job_name",
        "queue",
        "attempt",
        "max_attempts",
        "delay_seconds",
        "duration_ms",
        # Registry
        "package",
        "package_count",
        "version",
        "seq",
        "last_seq",
        # HTTP
        "http_status",
        "http_method",
        "http_url",
        "api_endpoint",
        # Errors
        "error_category",
        "error_message",
        "error_type",
        "error",
        # Processing counts
        "records_processed",
        "records_succeeded",
        "records_failed",
        "records_skipped",
        "records_deduplicated",
        "batch_size",
        # Backfill
        "offset",
        "total",
        "status",
        "rate",
        # Delivery
        "template",
        "integration_id",
        "period",
        # Resilience
        "circuit_state",
        "rate_limiter",
        "wait_seconds",
        "operation",
    ]

    # Keep numeric fields numeric so aggregations work downstream
    NUMERIC_FIELDS = {
        "duration_ms": float,
        "delay_seconds": float,
        "wait_seconds": float,
        "rate": float,
        "attempt": int,
        "max_attempts": int,
        "http_status": int,
        "package_count": int,
        "records_processed": int,
        "records_succeeded": int,
        "records_failed": int,
        "records_skipped": int,
        "records_deduplicated": int,
        "batch_size": int,
        "offset": int,
        "total": int,
    }

    URL_FIELDS = ["http_url", "url", "api_endpoint"]

    SENSITIVE_PARAMS_PATTERN = re.compile(
        r"([?&])(token|key|secret|password|auth|api_key)=[^&]*",
        re.IGNORECASE,
    )

    def _sanitize_url(self, url: str) -> str:
        return self.SENSITIVE_PARAMS_PATTERN.sub(r"\1\2=[REDACTED]", url)

    def _sanitize_value(self, key: str, value: Any) -> Any:
        if key in self.URL_FIELDS and isinstance(value, str):
            return self._sanitize_url(value)
        return value

    def _ensure_type(self, field: str, value: Any) -> Any:
        if field not in self.NUMERIC_FIELDS or value is None:
            return value
        try:
            return self.NUMERIC_FIELDS[field](value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _base_log_entry(record: logging.LogRecord) -> dict[str, Any]:
        return {
            "ts": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

    @staticmethod
    def _inject_context(log_entry: dict[str, Any], log_context: dict[str, str]) -> None:
        for field, value in log_context.items():
            if value:
                log_entry[field] = value

    def _inject_extra_fields(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = self._sanitize_value(field, self._ensure_type(field, value))

    def _inject_exception(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        if not record.exc_info:
            return

        exc_type, exc_value, _ = record.exc_info
        log_entry["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
            "stacktrace": self.formatException(record.exc_info),
        }

    def format(self, record: logging.LogRecord) -> str:
        log_entry = self._base_log_entry(record)
        self._inject_context(log_entry, get_log_context())

        if record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        # Explicit extras override context values
        self._inject_extra_fields(log_entry, record)
        self._inject_exception(log_entry, record)

        return json.dumps(log_entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter with color-coded log levels.

    Colors are auto-disabled when output is not a TTY (pipes, files).
    """

    COLORS = {
        logging.DEBUG: "\033[36m",  # Cyan
        logging.INFO: "\033[32m",  # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _format_level_name(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno, "") if self._use_colors else ""
        if not color:
            return record.levelname
        return f"{color}{record.levelname}{self.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        log_context = get_log_context()

        parts = [datetime.now().strftime("%Y-%m-%d %H:%M:%S"), self._format_level_name(record)]
        if log_context["stage"]:
            parts.append(f"[{log_context['stage']}]")
        prefix = " - ".join(parts)

        job_id = getattr(record, "job_id", None) or log_context.get("job_id")
        message = record.getMessage()
        if job_id:
            message = f"[{job_id}] {message}"

        output = f"{prefix} - {message}"
        if record.exc_info:
            output = f"{output}\n{self.formatException(record.exc_info)}"
        return output
