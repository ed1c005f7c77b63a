"""
Logging utilities for Matrix Python agents.

Every agent logs through structlog with its codename attached. Loops that
run repeated cycles wrap each one in ``cycle_context`` so that all lines
emitted during the cycle, from any agent, carry the same cycle id.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import Processor

# Request lines from these are noise at INFO; one per symbol per cycle
NOISY_LOGGERS = ("httpx", "httpcore")


class AgentLogger:
    """Agent-specific logger; every event carries ``agent=<codename>``."""

    def __init__(self, agent_name: str):
        self.agent_name = agent_name
        self.logger = structlog.get_logger(agent_name)

    def _emit(self, level: str, message: str, context: dict[str, Any]) -> None:
        getattr(self.logger, level)(message, agent=self.agent_name, **context)

    def info(self, message: str, **context: Any) -> None:
        self._emit("info", message, context)

    def warning(self, message: str, **context: Any) -> None:
        self._emit("warning", message, context)

    def error(self, message: str, **context: Any) -> None:
        self._emit("error", message, context)

    def debug(self, message: str, **context: Any) -> None:
        self._emit("debug", message, context)

    def exception(self, message: str, **context: Any) -> None:
        """Log at error level with the active traceback."""
        self._emit("exception", message, context)


@contextmanager
def cycle_context(loop: str, cycle: int) -> Iterator[None]:
    """Bind ``loop`` and ``cycle`` to every log line emitted inside the block."""
    with structlog.contextvars.bound_contextvars(loop=loop, cycle=cycle):
        yield


def configure_logging(
    level: str = "INFO",
    json_format: bool = False,
) -> None:
    """Configure structured logging to stderr.

    Stdout stays free for command output. Unknown level names fall back
    to INFO.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_format:
        renderer: list[Processor] = [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]

    structlog.configure(
        processors=shared_processors + renderer,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        # Reconfigured by the CLI after import
        cache_logger_on_first_use=False,
    )


configure_logging()
