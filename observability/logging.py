"""Logging configuration for the command line and the scheduler.

Everything goes through structlog bound to the standard library, so records
from APScheduler and motor end up in the same stream as the application's
own ``snake_case`` events.
"""

from __future__ import annotations

import json
import logging
import sys
from functools import partial

import structlog

get_logger = structlog.get_logger

# Third-party loggers that are too chatty at DEBUG.
_QUIET_LOGGERS = ("pymongo", "apscheduler.executors", "asyncio")


def configure_logging(debug: bool = False, *, json_output: bool = True) -> None:
    """Configure stdlib logging and structlog.

    ``debug`` lowers the level to ``DEBUG`` (one event per written document).
    ``json_output`` renders JSON lines; otherwise structlog's console renderer
    is used.
    """

    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))

    renderer = (
        structlog.processors.JSONRenderer(serializer=partial(json.dumps, ensure_ascii=False, default=str))
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
