"""
Paper Trails Logging Configuration
==================================

Logging for ingestion runs. Every component logs through
``get_logger_for_component``, which tags records with the component and,
where known, the feed source and host being processed. Those tags appear as
a ``[source]`` prefix on the console and as fields in the JSON log file.

The file log always uses one JSON object per line so scheduled (CI) runs can
be inspected after the fact; the console is colored text unless structured
output is requested.
"""

import logging
import logging.handlers
import sys
import json
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, Optional


ROOT_LOGGER = "papertrails"

# Context attached by component loggers, promoted to top-level JSON fields
CONTEXT_FIELDS = ("component", "source", "host")

# Attributes every LogRecord carries; anything else arrived through ``extra``
_STANDARD_ATTRIBUTES = set(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}

# Chatty third-party loggers kept at WARNING
_QUIET_LOGGERS = ("aiohttp", "asyncio", "feedparser", "urllib3", "charset_normalizer")


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRIBUTES
        }
        for key in CONTEXT_FIELDS:
            if key in extra:
                log_data[key] = extra.pop(key)
        if extra:
            log_data["extra"] = extra

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """Colored, single-line console output with the feed source as prefix."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:8}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        component = getattr(record, "component", None) or record.name
        source = getattr(record, "source", None)
        prefix = f"[{source}] " if source else ""

        formatted = f"[{timestamp}] {level} {component} - {prefix}{record.getMessage()}"
        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)
        return formatted


class LoggerAdapter(logging.LoggerAdapter):
    """Adapter whose context is merged with, not replaced by, per-call extras."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger_for_component(
    component_name: str,
    source: Optional[str] = None,
    host: Optional[str] = None,
) -> LoggerAdapter:
    """Get a logger adapter with component-specific context.

    Args:
        component_name: Name of the component (e.g., 'orchestrator', 'throttle')
        source: Feed source being processed (optional)
        host: Host being contacted (optional)

    Returns:
        Logger adapter under the ``papertrails`` hierarchy
    """
    context: Dict[str, Any] = {"component": component_name}
    if source:
        context["source"] = source
    if host:
        context["host"] = host

    return LoggerAdapter(logging.getLogger(f"{ROOT_LOGGER}.{component_name}"), context)


def configure_application_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = "logs/papertrails.log",
    enable_console: bool = True,
    structured_logging: bool = False,
    max_file_size_mb: int = 10,
    backup_count: int = 5,
) -> logging.Logger:
    """Configure the ``papertrails`` logger hierarchy.

    Calling it again replaces the previous handlers, so the CLI can switch
    to debug output after settings are loaded.

    Args:
        log_level: Level name for the application loggers
        log_file: Rotating JSON log file; falsy disables file logging
        enable_console: Log to stdout
        structured_logging: JSON instead of colored text on the console
        max_file_size_mb: Size at which the log file rotates
        backup_count: Rotated files kept

    Returns:
        The configured root application logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, log_level.upper()))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        if structured_logging:
            console_handler.setFormatter(StructuredFormatter())
        else:
            console_handler.setFormatter(ColoredConsoleFormatter(use_color=sys.stdout.isatty()))
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(StructuredFormatter())
        logger.addHandler(file_handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger


class PerformanceLogger:
    """Times a block and logs its duration on exit."""

    def __init__(self, logger: logging.Logger, operation: str, **kwargs):
        """Initialize performance logger.

        Args:
            logger: Logger or adapter to report through
            operation: Operation being timed
            **kwargs: Additional context for the log records
        """
        self.logger = logger
        self.operation = operation
        self.context = kwargs
        self._started: Optional[float] = None

    def __enter__(self) -> "PerformanceLogger":
        self._started = time.perf_counter()
        self.logger.debug(f"Starting {self.operation}", extra=self.context)
        return self

    @property
    def elapsed(self) -> float:
        """Seconds since the block was entered."""
        if self._started is None:
            return 0.0
        return time.perf_counter() - self._started

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        duration = self.elapsed
        context = {**self.context, "duration_seconds": round(duration, 3)}

        if exc_type:
            self.logger.error(
                f"Failed {self.operation} after {duration:.3f}s ({exc_type.__name__})",
                extra=context,
            )
        else:
            self.logger.info(f"Completed {self.operation} in {duration:.3f}s", extra=context)
