"""
Structured Logging with Rich.

Provides consistent, colorful logging across the checker, the API and the CLI.
"""

import logging
from contextvars import ContextVar, Token
from functools import lru_cache

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(level: str = "INFO") -> None:
    """
    Configure root logger with Rich handler.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    console = Console(stderr=True)

    logging.basicConfig(
        level=level,
        format="%(name)s | %(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=console,
                rich_tracebacks=True,
                tracebacks_show_locals=False,
                show_time=True,
                show_path=False,
            )
        ],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


@lru_cache(maxsize=128)
def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for the given module name.

    Args:
        name: Module name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


_log_context: ContextVar[dict[str, str | int | float]] = ContextVar("log_context", default={})
_base_factory = logging.getLogRecordFactory()


def _context_record_factory(*args, **kwargs) -> logging.LogRecord:  # type: ignore[no-untyped-def]
    record = _base_factory(*args, **kwargs)
    for key, value in _log_context.get().items():
        setattr(record, key, value)
    return record


logging.setLogRecordFactory(_context_record_factory)


class LogContext:
    """
    Context manager that stamps extra attributes on every log record.

    The context lives in a ContextVar, so concurrent asyncio tasks each see
    only their own attributes.

    Usage:
        with LogContext(logger, job_id="job_1a2b", citation_id="cit_004"):
            logger.info("Running Tier 2 panel")
    """

    def __init__(self, logger: logging.Logger, **context: str | int | float) -> None:
        self.logger = logger
        self.context = context
        self._token: Token | None = None

    def __enter__(self) -> "LogContext":
        self._token = _log_context.set({**_log_context.get(), **self.context})
        return self

    def __exit__(self, *args: object) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None
