"""
Structured logging setup for curve replay
JSON lines for batch runs, console rendering for local analysis
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import structlog
from structlog.typing import EventDict, Processor

from curve_replay.core.config import LogConfig


def add_timestamp(logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add ISO timestamp to log events"""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def add_log_level(logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add log level to event dict"""
    event_dict["level"] = method_name
    return event_dict


def _renderer(format: str) -> Processor:
    if format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stdout.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def _attach_file_handler(output_file: str, level: int) -> None:
    log_path = Path(output_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    # setup_logging may run more than once per process (tests, notebooks)
    for handler in logging.root.handlers:
        if isinstance(handler, logging.FileHandler) and \
                Path(handler.baseFilename) == log_path.resolve():
            handler.setLevel(level)
            return

    file_handler = logging.FileHandler(log_path)
    file_handler.setLevel(level)
    logging.root.addHandler(file_handler)


def setup_logging(
    level: str = "INFO",
    format: str = "json",
    output_file: Optional[str] = None
) -> None:
    """
    Configure structured logging for replay runs

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        format: Output format ("json" or "console")
        output_file: Optional file path that receives a copy of every line
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )
    logging.root.setLevel(numeric_level)

    if output_file:
        _attach_file_handler(output_file, numeric_level)

    processors: List[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        add_log_level,
        add_timestamp,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _renderer(format),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def setup_logging_from_config(log_config: LogConfig) -> None:
    """Configure logging from the `logging` section of the YAML config"""
    setup_logging(
        level=log_config.level,
        format=log_config.format,
        output_file=log_config.output_file
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance

    Args:
        name: Logger name (usually __name__)

    Returns:
        structlog logger; bind `curve=` / `signature=` for per-curve context
    """
    return structlog.get_logger(name)
