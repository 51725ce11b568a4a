"""
Logging utilities for the homepage fetcher.
"""

import json
import logging
import logging.handlers
import os
import platform
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import psutil

from .config import LoggingConfig


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        # Add exception info if present
        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        # Add extra fields
        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, ensure_ascii=False)


class OutcomeLogAdapter(logging.LoggerAdapter):
    """Logger adapter that writes the one-line-per-domain outcome log."""

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Merge adapter context into the record's extra fields."""
        extra = kwargs.setdefault('extra', {})
        extra_fields = dict(self.extra)
        extra_fields.update(extra.get('extra_fields', {}))
        extra['extra_fields'] = extra_fields
        return msg, kwargs

    def log_outcome(self, outcome):
        """
        Log a finished job.

        Args:
            outcome: JobOutcome from the worker pool
        """
        fields = {
            'event_type': 'job_outcome',
            'outcome': outcome.kind.value,
            'sequence': outcome.sequence,
            'worker': outcome.worker_id,
            'domain': outcome.domain,
            'duration': round(outcome.duration, 6),
            'size': outcome.size,
            'error': outcome.error,
        }
        self.info(format_outcome(outcome), extra={'extra_fields': fields})


def format_outcome(outcome) -> str:
    """Render a job outcome as an operator log line."""
    if outcome.kind.value == 'ok':
        return (f"[ OK] {outcome.sequence} {outcome.domain} "
                f"dur: {outcome.duration:.3f}s, size: {outcome.size}")
    if outcome.kind.value == 'skipped':
        return f"[NOK] {outcome.sequence} {outcome.domain} exists"
    return (f"[NOK] {outcome.sequence} {outcome.domain} "
            f"dur: {outcome.duration:.3f}s err: {outcome.error}")


class PerformanceFilter(logging.Filter):
    """Filter to suppress noisy library logs."""

    def __init__(self, suppress_modules: Optional[list] = None):
        super().__init__()
        self.suppress_modules = suppress_modules or [
            'aiohttp.access',
            'aiohttp.client',
        ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter out noisy log records."""
        return not any(record.name.startswith(module) for module in self.suppress_modules)


def setup_logging(config: LoggingConfig,
                  enable_json: Optional[bool] = None,
                  enable_performance_filtering: bool = True) -> logging.Logger:
    """
    Setup logging for the fetcher.

    Args:
        config: Logging configuration
        enable_json: Override ``config.json``
        enable_performance_filtering: Enable filtering of noisy logs

    Returns:
        Configured root logger
    """
    if enable_json is None:
        enable_json = config.json

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))

    # Clear existing handlers
    root_logger.handlers.clear()

    if enable_json:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(config.format)

    # Console handler; stdin carries the input, so logs go to stderr
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    if enable_performance_filtering:
        console_handler.addFilter(PerformanceFilter())
    root_logger.addHandler(console_handler)

    if config.file:
        log_file = Path(config.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        # File handler with rotation
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=50 * 1024 * 1024,  # 50MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        if enable_performance_filtering:
            file_handler.addFilter(PerformanceFilter())
        root_logger.addHandler(file_handler)

    # Configure third-party loggers
    third_party_loggers = {
        'aiohttp': logging.WARNING,
        'asyncio': logging.WARNING,
    }

    for logger_name, level in third_party_loggers.items():
        logging.getLogger(logger_name).setLevel(level)

    root_logger.debug("Logging system initialized")
    root_logger.debug(f"Log file: {config.file or '-'}")
    root_logger.debug(f"Log level: {config.level}")
    root_logger.debug(f"JSON formatting: {enable_json}")

    return root_logger


def get_outcome_logger(name: str, **extra_context) -> OutcomeLogAdapter:
    """
    Get an outcome logger with additional context.

    Args:
        name: Logger name
        **extra_context: Additional context fields to include in all log messages

    Returns:
        OutcomeLogAdapter instance
    """
    return OutcomeLogAdapter(logging.getLogger(name), extra_context)


def log_system_info():
    """Log system and environment information."""
    logger = logging.getLogger(__name__)

    logger.info("=== SYSTEM INFORMATION ===")
    logger.info(f"Platform: {platform.platform()}")
    logger.info(f"Python version: {sys.version.split()[0]}")
    logger.info(f"CPU cores: {psutil.cpu_count()}")
    logger.info(f"Memory: {psutil.virtual_memory().total / 1024**3:.1f} GB")

    # One socket and one file per busy worker
    if hasattr(psutil, "RLIMIT_NOFILE"):
        soft_limit, _ = psutil.Process().rlimit(psutil.RLIMIT_NOFILE)
        logger.info(f"Open files limit: {soft_limit}")

    for var in ('PATH', 'HOME', 'USER'):
        logger.debug(f"ENV {var}: {os.environ.get(var, 'Not set')}")

