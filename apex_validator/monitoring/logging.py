"""
Log output for the validator.

Every module logs through structlog with snake_case event names. Events are
rendered to JSON by structlog and emitted through a single stdout handler
on the root stdlib logger, so web3 and aiohttp records share the stream.
"""
import logging
import sys
from typing import Any, Callable, List

import structlog
from pythonjsonlogger import jsonlogger

from apex_validator.config import Settings

# Libraries that log each RPC round trip
QUIET_LOGGERS = ("web3", "urllib3", "aiohttp")

Processor = Callable[[Any, str, dict[str, Any]], dict[str, Any]]


def app_context_processor(app_name: str, app_env: str) -> Processor:
    """Build a processor stamping the deployment name and environment on every event."""

    def add_app_context(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        event_dict["app_name"] = app_name
        event_dict["app_env"] = app_env
        return event_dict

    return add_app_context


def _event_processors(settings: Settings) -> List[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        app_context_processor(settings.app_name, settings.app_env),
        structlog.processors.JSONRenderer(),
    ]


def _stdout_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
        )
    )
    return handler


def setup_logging(settings: Settings) -> None:
    """
    Route structlog and stdlib logging to JSON on stdout.

    Called once by the worker before any client is built. Replaces handlers
    already installed on the root logger.

    Args:
        settings: Source of the log level and the app context fields
    """
    structlog.configure(
        processors=_event_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.addHandler(_stdout_handler())
    root.setLevel(settings.log_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
        quiet_loggers=list(QUIET_LOGGERS),
    )
