"""
structlog configuration for the polycopy CLI.

Log lines go to stderr so that command output on stdout (position tables,
trade listings) stays pipeable. Every line carries the running command.
"""
import logging
import sys
from typing import Optional

import structlog

from polycopy import __version__

# Chatty per-request loggers, kept at WARNING unless running at DEBUG.
NOISY_LOGGERS = ("httpx", "httpcore", "websockets", "web3", "urllib3", "aiosqlite")


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
    command: Optional[str] = None,
) -> structlog.stdlib.BoundLogger:
    """Configure structlog over stdlib logging.

    Args:
        level: Log level name; unknown names fall back to INFO.
        json_output: Render JSON lines instead of the console format.
        log_file: Also append plain lines to this file.
        command: CLI command name bound to every log line.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setLevel(log_level)

    logging.basicConfig(format="%(message)s", level=log_level, handlers=handlers, force=True)

    library_level = log_level if log_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty() and not log_file,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(app="polycopy", version=__version__)
    if command:
        structlog.contextvars.bind_contextvars(command=command)

    return structlog.get_logger("polycopy")
