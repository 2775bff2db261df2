from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog
from structlog.typing import EventDict, Processor

from backend.app.config import AppSettings

ROOT_LOGGER_NAME = "subfeed"
TELEMETRY_LOGGER_NAME = "subfeed.telemetry"
LOG_FILE_NAME = "subfeed.log"
TELEMETRY_LOG_FILE_NAME = "subfeed-telemetry.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 5

# google-auth refreshes through requests/urllib3, which log every connection at DEBUG.
_QUIET_LIBRARY_LOGGERS: tuple[str, ...] = ("urllib3", "google.auth")


def configure_application_logging(settings: AppSettings) -> Path:
    """
    Route every `subfeed.*` logger through structlog.

    Console output is human-readable at the configured level; the main log file and the
    telemetry file receive JSON lines. Safe to call more than once.
    """
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    log_path = settings.log_dir / LOG_FILE_NAME
    telemetry_path = settings.log_dir / TELEMETRY_LOG_FILE_NAME

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console = logging.StreamHandler(stream=sys.stdout)
    console.setLevel(resolve_log_level(settings.log_level))
    console.setFormatter(
        _formatter(structlog.dev.ConsoleRenderer(colors=_is_tty(sys.stdout)))
    )

    _install(
        ROOT_LOGGER_NAME,
        logging.DEBUG,
        console,
        _json_file_handler(log_path, logging.DEBUG),
    )
    _install(
        TELEMETRY_LOGGER_NAME,
        logging.INFO,
        _json_file_handler(telemetry_path, logging.INFO),
    )

    for name in _QUIET_LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(ROOT_LOGGER_NAME).info(
        "logging configured console_level=%s path=%s telemetry_path=%s",
        settings.log_level.upper(),
        log_path,
        telemetry_path,
    )
    return log_path


def resolve_log_level(raw_level: str) -> int:
    level = logging.getLevelName(raw_level.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _install(logger_name: str, level: int, *handlers: logging.Handler) -> None:
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    for handler in handlers:
        logger.addHandler(handler)


def _json_file_handler(path: Path, level: int) -> logging.Handler:
    handler = RotatingFileHandler(
        path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(
        _formatter(
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
            enrich=(_add_thread_metadata,),
        )
    )
    return handler


def _formatter(
    *processors: Processor,
    enrich: tuple[Processor, ...] = (),
) -> structlog.stdlib.ProcessorFormatter:
    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            # Enrichers read `_record`, which remove_processors_meta drops.
            *enrich,
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *processors,
        ],
    )


def _add_thread_metadata(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    # Lanes run on named threads; keep the name so interleaved lines can be told apart.
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict["module"] = record.module
        event_dict["lineno"] = record.lineno
        event_dict["thread_name"] = record.threadName
    return event_dict


def _is_tty(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    if not callable(isatty):
        return False
    try:
        return bool(isatty())
    except ValueError:
        # Closed stream.
        return False
