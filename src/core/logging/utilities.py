"""Logging utility functions."""

import logging
from typing import Any

# Reserved LogRecord attribute names that cannot be used in extra dict
_RESERVED_LOG_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "asctime",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with its error category and a truncated message.

    Example:
        try:
            await client.send(...)
        except Exception as e:
            log_exception(logger, e, "Email send failed", job_id=job.id)
    """
    if kwargs.get("error_category") is None and hasattr(exc, "category"):
        cat = exc.category
        kwargs["error_category"] = cat.value if hasattr(cat, "value") else str(cat)

    error_msg = str(exc)
    if len(error_msg) > 500:
        error_msg = error_msg[:500] + "..."
    kwargs["error_message"] = error_msg
    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}

    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=extra)
    else:
        logger.log(level, msg, extra=extra)


def format_cycle_output(
    cycle_count: int,
    succeeded: int,
    failed: int,
    skipped: int = 0,
    deduplicated: int = 0,
    since_last: dict[str, int] | None = None,
    interval_seconds: int = 30,
) -> str:
    """
    Format standardized cycle output for workers.

    Example:
        >>> format_cycle_output(1, 1200, 34, 50, 100)
        'Cycle 1: processed=1284 (succeeded=1200, failed=34, skipped=50, deduped=100)'
        >>> format_cycle_output(5, 1200, 0, since_last={"succeeded": 240}, interval_seconds=30)
        'Cycle 5: +240 this cycle | total: 1200 succeeded | 8.0 jobs/s'
    """
    if since_last is not None:
        delta_total = (
            since_last.get("succeeded", 0)
            + since_last.get("failed", 0)
            + since_last.get("skipped", 0)
        )
        rate = delta_total / interval_seconds if interval_seconds > 0 else 0

        total_parts = [f"{succeeded} succeeded"]
        if failed > 0:
            total_parts.append(f"{failed} failed")
        if skipped > 0:
            total_parts.append(f"{skipped} skipped")
        if deduplicated > 0:
            total_parts.append(f"{deduplicated} deduped")

        return (
            f"Cycle {cycle_count}: +{delta_total} this cycle | "
            f"total: {', '.join(total_parts)} | {rate:.1f} jobs/s"
        )

    parts = [f"succeeded={succeeded}", f"failed={failed}"]
    if skipped > 0:
        parts.append(f"skipped={skipped}")
    if deduplicated > 0:
        parts.append(f"deduped={deduplicated}")

    total = succeeded + failed + skipped + deduplicated
    return f"Cycle {cycle_count}: processed={total} ({', '.join(parts)})"


_BANNER_FIELDS: list[tuple[str, str]] = [
    ("instance_id", "Instance:     {}"),
    ("queue", "Queue:        {}"),
    ("concurrency", "Concurrency:  {}"),
    ("rate_limit", "Rate limit:   {}"),
    ("health_port", "Health:       http://localhost:{}"),
]


def log_startup_banner(
    logger: logging.Logger,
    worker_name: str,
    **kwargs: Any,
) -> None:
    """
    Log startup banner with worker configuration.

    Example:
        log_startup_banner(
            logger,
            worker_name="Sync Worker",
            instance_id="sync-0",
            queue="sync",
            concurrency=5,
        )
    """
    separator = "=" * 50
    lines = ["", separator, worker_name, separator]

    for field_name, fmt in _BANNER_FIELDS:
        value = kwargs.get(field_name)
        if value:
            lines.append(fmt.format(value))

    lines.append(separator)
    logger.info("\n".join(lines))
