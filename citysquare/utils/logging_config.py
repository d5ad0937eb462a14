"""
Centralized logging configuration for the CitySquare crawler.

Console output is color-coded; file output rotates daily with a separate
error log. JSON structured output is available for log shipping.
"""

import json
import logging
import logging.handlers
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class StructuredFormatter(logging.Formatter):
    """Formats records as single-line JSON."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }
        if hasattr(record, 'extra_data'):
            log_entry['extra'] = record.extra_data
        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


class ColoredConsoleFormatter(logging.Formatter):
    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        formatted = (
            f"{color}[{self.formatTime(record, '%H:%M:%S')}] {record.levelname:8} "
            f"[{record.name:32}] {record.getMessage()}{self.RESET}"
        )
        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"
        return formatted


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
    enable_file_logging: bool = True,
    enable_structured_logging: bool = False
) -> None:
    """
    Configure root logging for the crawler process.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files (defaults to 'logs')
        enable_file_logging: Whether to write logs to files
        enable_structured_logging: Whether to use JSON structured logging
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    if enable_structured_logging:
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler.setFormatter(ColoredConsoleFormatter())
    root_logger.addHandler(console_handler)

    if enable_file_logging:
        log_path = Path(log_dir) if log_dir else Path.cwd() / "logs"
        log_path.mkdir(parents=True, exist_ok=True)

        daily_handler = logging.handlers.TimedRotatingFileHandler(
            log_path / "citysquare.log",
            when='midnight',
            backupCount=7,
            encoding='utf-8'
        )
        daily_handler.setLevel(logging.DEBUG)
        if enable_structured_logging:
            daily_handler.setFormatter(StructuredFormatter())
        else:
            daily_handler.setFormatter(logging.Formatter(
                '%(asctime)s | %(levelname)-8s | %(name)-32s | %(message)s'
            ))
        root_logger.addHandler(daily_handler)

        error_handler = logging.FileHandler(log_path / "errors.log", encoding='utf-8')
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(name)-32s | %(funcName)s:%(lineno)d | %(message)s'
        ))
        root_logger.addHandler(error_handler)

    configure_crawler_loggers(log_level)


def configure_crawler_loggers(log_level: str) -> None:
    """Pin levels for noisy third-party loggers and the crawler components."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    # Per-call request logs from the HTTP stacks are too chatty at INFO
    for name in ('aiohttp.access', 'httpx', 'httpcore', 'google_genai', 'aiosqlite'):
        logging.getLogger(name).setLevel(logging.WARNING)

    # Stage funnel counts are always useful when debugging a category
    logging.getLogger('citysquare.pipeline.crawler').setLevel(min(level, logging.INFO))
    logging.getLogger('citysquare.pipeline.scheduler').setLevel(min(level, logging.INFO))
    logging.getLogger('citysquare.services.ai_service').setLevel(level)


class PerformanceTracker:
    """Context manager that logs how long an operation took."""

    def __init__(self, operation_name: str, logger: Optional[logging.Logger] = None):
        self.operation_name = operation_name
        self.logger = logger or logging.getLogger(__name__)
        self.start_time: Optional[float] = None
        self.duration_ms: float = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.debug(f"⏱️ Starting: {self.operation_name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.duration_ms = (time.perf_counter() - self.start_time) * 1000
            if exc_type:
                self.logger.error(f"💥 Failed: {self.operation_name} ({self.duration_ms:.1f}ms) - {exc_val}")
            else:
                self.logger.info(f"✅ Completed: {self.operation_name} ({self.duration_ms:.1f}ms)")
        return False


def log_stage_metrics(
    logger: logging.Logger,
    stage: str,
    input_count: int,
    output_count: int,
    duration_ms: float,
    **extra_data
):
    """Log one funnel stage of a crawler run with structured extras."""
    metrics = {
        'stage': stage,
        'input_count': input_count,
        'output_count': output_count,
        'duration_ms': duration_ms,
        'reduction_rate': (input_count - output_count) / input_count if input_count > 0 else 0,
        **extra_data
    }
    logger.info(
        f"📊 {stage}: {input_count} → {output_count} ({duration_ms:.1f}ms)",
        extra={'extra_data': metrics}
    )
