"""Logging configuration module."""

import logging
import sys
from typing import cast

import structlog
from structlog import dev, processors, stdlib
from structlog.stdlib import BoundLogger


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structured logging to stderr.

    Standard output is reserved for extracted records, so every log line,
    including ones from web3 and requests, goes to stderr.

    Args:
        level: Log level name
        json_logs: Render JSON lines instead of the console format
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    shared_processors = [
        stdlib.add_logger_name,
        stdlib.add_log_level,
        stdlib.PositionalArgumentsFormatter(),
        processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S.%f"),
    ]

    structlog.configure(
        processors=[
            stdlib.filter_by_level,
            *shared_processors,
            stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=stdlib.LoggerFactory(),
        wrapper_class=stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        stdlib.ProcessorFormatter(
            processors=[
                stdlib.ProcessorFormatter.remove_processors_meta,
                processors.dict_tracebacks if json_logs else processors.format_exc_info,
                processors.JSONRenderer() if json_logs else dev.ConsoleRenderer(colors=False),
            ],
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    # Clear existing handlers to prevent duplicates
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)


def get_logger(name: str = "solcmeta") -> BoundLogger:
    return cast(BoundLogger, structlog.get_logger(name))
