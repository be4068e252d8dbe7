"""
Centralized logging configuration for the report service.

Provides structured logging with run_id and stage tagging so that the
interleaved output of concurrent report runs can be told apart.
"""

import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional


LOG_FILE_NAME = "pdfworker.log"
LOG_RETENTION_DAYS = 14


class RunLogger:
    """
    Structured logger for one report run.

    Adds contextual information like run_id and stage to all log messages.
    """

    def __init__(
        self,
        name: str,
        run_id: Optional[str] = None,
        stage: Optional[str] = None,
    ):
        """
        Initialize run logger.

        Args:
            name: Logger name (usually __name__)
            run_id: Optional run identifier for correlation
            stage: Optional stage name (e.g., "capture", "toc")
        """
        self.logger = logging.getLogger(name)
        self.run_id = run_id
        self.stage = stage

    def bind(self, stage: str) -> "RunLogger":
        """Return a logger for the same run tagged with another stage."""
        return RunLogger(self.logger.name, self.run_id, stage)

    def _format_message(self, message: str) -> str:
        """Add contextual prefix to message."""
        prefix_parts = []
        if self.run_id:
            prefix_parts.append(f"[run:{self.run_id[:8]}]")
        if self.stage:
            prefix_parts.append(f"[{self.stage}]")

        if prefix_parts:
            return f"{' '.join(prefix_parts)} {message}"
        return message

    def debug(self, message: str, **kwargs):
        self.logger.debug(self._format_message(message), **kwargs)

    def info(self, message: str, **kwargs):
        self.logger.info(self._format_message(message), **kwargs)

    def warning(self, message: str, **kwargs):
        self.logger.warning(self._format_message(message), **kwargs)

    def error(self, message: str, **kwargs):
        self.logger.error(self._format_message(message), **kwargs)

    def exception(self, message: str, **kwargs):
        """Log exception with traceback."""
        self.logger.exception(self._format_message(message), **kwargs)


def _build_formatter(format: str) -> logging.Formatter:
    if format == "json":
        # JSON format for production (parseable by log aggregators)
        return logging.Formatter(
            '{"time": "%(asctime)s", "level": "%(levelname)s", "name": "%(name)s", "message": "%(message)s"}'
        )
    return logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )


def setup_logging(
    level: str = "INFO",
    format: str = "simple",
    log_dir: Optional[Path] = None,
) -> None:
    """
    Configure global logging settings.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        format: Log format ("simple" or "json")
        log_dir: When given, also write a daily rotated log file there
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Remove existing handlers
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(log_level)
    console.setFormatter(_build_formatter("simple"))
    root_logger.addHandler(console)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            when="midnight",
            backupCount=LOG_RETENTION_DAYS,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(_build_formatter(format))
        root_logger.addHandler(file_handler)

    root_logger.setLevel(log_level)


def get_logger(
    name: str,
    run_id: Optional[str] = None,
    stage: Optional[str] = None,
) -> RunLogger:
    """
    Get a run logger instance.

    Args:
        name: Logger name (usually __name__)
        run_id: Optional run identifier
        stage: Optional stage name

    Returns:
        RunLogger instance
    """
    return RunLogger(name, run_id, stage)
