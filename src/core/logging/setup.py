"""Logging setup and configuration."""

import logging
import shutil
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

DEFAULT_LOG_DIR = Path("logs")
DEFAULT_ROTATION_WHEN = "midnight"
DEFAULT_ROTATION_INTERVAL = 1
DEFAULT_BACKUP_COUNT = 7
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

NOISY_LOGGERS = [
    "aiohttp",
    "aiohttp.access",
    "aiokafka",
    "asyncpg",
    "urllib3",
]


class ArchivingTimedRotatingFileHandler(TimedRotatingFileHandler):
    """
    TimedRotatingFileHandler that moves rotated files into an archive folder.

        logs/sync/2026-01-05/sync_0105_1430.log                       (current)
        logs/sync/2026-01-05/archive/sync_0105_1430.log.2026-01-05    (rotated)
    """

    def __init__(
        self,
        filename,
        when="midnight",
        interval=1,
        backupCount=0,
        encoding=None,
        archive_dir=None,
    ):
        super().__init__(filename, when, interval, backupCount, encoding)
        self.archive_dir = Path(archive_dir) if archive_dir else Path(self.baseFilename).parent / "archive"
        self.archive_dir.mkdir(parents=True, exist_ok=True)

    def doRollover(self):
        super().doRollover()

        log_path = Path(self.baseFilename)
        for rotated_file in log_path.parent.glob(f"{log_path.name}.*"):
            try:
                shutil.move(str(rotated_file), str(self.archive_dir / rotated_file.name))
            except OSError as e:
                # stderr, not the logger: we are inside a handler
                print(f"Warning: Failed to archive {rotated_file}: {e}", file=sys.stderr)


def get_log_file_path(
    log_dir: Path,
    stage: str | None = None,
    instance_id: str | None = None,
) -> Path:
    """
    Build a log file path: {log_dir}/{stage}/{YYYY-MM-DD}/{stage}_{MMDD}_{HHMM}[_{instance}].log
    """
    now = datetime.now()
    stage_name = stage or "registry_sync"
    base_name = f"{stage_name}_{now:%m%d}_{now:%H%M}"
    filename = f"{base_name}_{instance_id}.log" if instance_id else f"{base_name}.log"
    return log_dir / stage_name / now.strftime("%Y-%m-%d") / filename


def setup_logging(
    name: str = "registry_sync",
    stage: str | None = None,
    log_dir: Path | None = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    rotation_when: str = DEFAULT_ROTATION_WHEN,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    worker_id: str | None = None,
    instance_id: str | None = None,
    log_to_stdout: bool = False,
) -> logging.Logger:
    """
    Configure root logging with a console handler and a rotating JSON file handler.

    Args:
        name: Logger name to return
        stage: Worker stage (changes, sync, email, ...); used for file layout and context
        log_dir: Directory for log files (default: ./logs)
        json_format: Use JSON format for file logs
        console_level: Console handler level
        file_level: File handler level
        rotation_when: TimedRotatingFileHandler ``when`` value
        backup_count: Number of rotated files to keep
        suppress_noisy: Quiet aiohttp/aiokafka/asyncpg loggers
        worker_id: Worker identifier for context
        instance_id: Appended to the file name when several workers share a stage
        log_to_stdout: Send everything to stdout only, no file handler
            (containerized deployments)

    Returns:
        Configured logger instance
    """
    log_dir = log_dir or DEFAULT_LOG_DIR

    if worker_id:
        set_log_context(worker_id=worker_id)
    if stage:
        set_log_context(stage=stage)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()

    log_file: Path | None = None
    if log_to_stdout:
        console_handler.setLevel(min(console_level, file_level))
        root_logger.addHandler(console_handler)
    else:
        console_handler.setLevel(console_level)

        log_file = get_log_file_path(log_dir, stage=stage, instance_id=instance_id)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        if json_format:
            file_formatter: logging.Formatter = JSONFormatter()
        else:
            file_formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
            )

        file_handler = ArchivingTimedRotatingFileHandler(
            log_file,
            when=rotation_when,
            interval=DEFAULT_ROTATION_INTERVAL,
            backupCount=backup_count,
            encoding="utf-8",
            archive_dir=log_file.parent / "archive",
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(file_formatter)

        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    if log_file is None:
        logger.debug("Logging initialized: stdout-only mode")
    else:
        logger.debug("Logging initialized: file=%s, json=%s", log_file, json_format)

    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
