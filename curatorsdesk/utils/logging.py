"""
Curator's Desk Logging Configuration
====================================

Logging setup shared by the CLI, the scheduler service and the ingestion
components. Files always receive JSON lines; the console gets a colored
human-readable format unless structured output is requested.

Components log through ``get_logger_for_component``, which returns an adapter
carrying ``component`` and, once bound, ``user_id``/``source_id``. Those fields
travel as record attributes, so the JSON formatter emits them under ``extra``
and the console formatter shows the source being synced.
"""

import json
import logging
import logging.handlers
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from ..config.settings import LoggingSettings

ROOT_LOGGER_NAME = "curatorsdesk"

# Attributes every LogRecord has; anything else came in through ``extra``.
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}

_NOISY_LIBRARIES = ("aiohttp", "asyncio", "feedparser", "charset_normalizer")


def _record_context(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line; bound context is nested under ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        context = _record_context(record)
        if context:
            entry["extra"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """Short colored lines for interactive runs."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        clock = time.strftime("%H:%M:%S", time.localtime(record.created))
        source_id = getattr(record, "source_id", None)
        where = f"{record.name}[{source_id}]" if source_id else record.name

        line = f"{color}{clock} {record.levelname:<8}{self.RESET} {where}: {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: str = "INFO",
    log_file: Optional[str] = None,
    console: bool = True,
    structured: bool = False,
    max_file_size: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """(Re)configure ``name`` with a console and/or rotating file handler.

    Existing handlers are replaced, so calling this twice does not duplicate
    output.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level.upper())
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if console:
        stream = logging.StreamHandler(sys.stdout)
        stream.setFormatter(StructuredFormatter() if structured else ColoredConsoleFormatter())
        logger.addHandler(stream)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            path, maxBytes=max_file_size, backupCount=backup_count, encoding="utf-8"
        )
        rotating.setFormatter(StructuredFormatter())
        logger.addHandler(rotating)

    return logger


class LoggerAdapter(logging.LoggerAdapter):
    """Adapter whose bound context is merged into each call's ``extra``."""

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> tuple:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def bind(self, **context: Any) -> "LoggerAdapter":
        """Copy of this adapter with ``context`` added; ``None`` values are ignored."""
        extra = dict(self.extra)
        extra.update((key, value) for key, value in context.items() if value is not None)
        return LoggerAdapter(self.logger, extra)


def get_logger_for_component(
    component_name: str,
    user_id: Optional[str] = None,
    source_id: Optional[str] = None,
) -> LoggerAdapter:
    """Logger named ``curatorsdesk.<component_name>`` with component context."""
    adapter = LoggerAdapter(
        logging.getLogger(f"{ROOT_LOGGER_NAME}.{component_name}"),
        {"component": component_name},
    )
    return adapter.bind(user_id=user_id, source_id=source_id)


def configure_application_logging(
    logging_settings: "LoggingSettings",
    level: Optional[str] = None,
    console: Optional[bool] = None,
) -> logging.Logger:
    """Configure the ``curatorsdesk`` logger tree from the logging settings.

    Args:
        logging_settings: The ``logging`` section of the application settings
        level: Overrides ``logging_settings.level`` (e.g. DEBUG for --debug)
        console: Overrides ``logging_settings.console_logging``
    """
    logger = setup_logger(
        name=ROOT_LOGGER_NAME,
        level=level or logging_settings.level.value,
        log_file=logging_settings.file_path,
        console=logging_settings.console_logging if console is None else console,
        structured=logging_settings.structured_logging,
        max_file_size=logging_settings.max_file_size_mb * 1024 * 1024,
        backup_count=logging_settings.backup_count,
    )

    for library in _NOISY_LIBRARIES:
        logging.getLogger(library).setLevel(logging.WARNING)

    return logger


class PerformanceLogger:
    """Times the enclosed block and logs the outcome with its duration.

    Usage:
        with PerformanceLogger(logger, "batch_sync", source_count=5) as perf:
            ...
        perf.duration  # seconds
    """

    def __init__(self, logger, operation: str, **context: Any):
        self.logger = logger
        self.operation = operation
        self.context = context
        self.duration: Optional[float] = None
        self._started: Optional[float] = None

    def __enter__(self) -> "PerformanceLogger":
        self._started = time.perf_counter()
        self.logger.debug(f"Starting {self.operation}", extra=self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.duration = time.perf_counter() - self._started
        extra = {**self.context, "duration_seconds": round(self.duration, 3)}

        if exc_type is None:
            self.logger.info(f"Finished {self.operation} in {self.duration:.3f}s", extra=extra)
        else:
            self.logger.warning(
                f"{self.operation} aborted after {self.duration:.3f}s: {exc_type.__name__}",
                extra=extra,
            )
