"""
Structured logging configuration.

structlog builds the event dictionary (request context, app context,
timestamp, exception text) and hands it to stdlib logging as `extra`
fields; python-json-logger renders the record as a single flat JSON object:

    {"level": "INFO", "logger": "...", "event": "callback_reconciled",
     "order_id": "1000123", "app_name": "coingate-merchant", ...}
"""
import logging
import sys
from typing import Any, Callable, Dict, Optional

import structlog
from pythonjsonlogger import jsonlogger

from coingate_merchant.config import Settings, get_settings

EventDict = Dict[str, Any]

# Record attributes written by the formatter, and their JSON keys
JSON_FIELDS = "%(levelname)s %(name)s %(message)s"
JSON_RENAMES = {"levelname": "level", "name": "logger", "message": "event"}

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def app_context_processor(settings: Settings) -> Callable[[Any, str, EventDict], EventDict]:
    """Build a processor stamping every event with the application identity."""
    app_name = settings.app_name
    app_env = settings.app_env

    def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("app_name", app_name)
        event_dict.setdefault("app_env", app_env)
        return event_dict

    return add_app_context


def build_json_handler(stream: Any = None) -> logging.Handler:
    """Stream handler rendering records and their extra fields as JSON."""
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(jsonlogger.JsonFormatter(JSON_FIELDS, rename_fields=JSON_RENAMES))
    return handler


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog on top of a JSON stdlib root handler.

    The structlog chain ends in `render_to_log_kwargs`, so the event dict
    reaches the JSON formatter as record attributes instead of a pre-rendered
    string.
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            app_context_processor(settings),
            structlog.stdlib.render_to_log_kwargs,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(build_json_handler())

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        sandbox_mode=settings.coingate_sandbox_mode,
    )


def get_logger(name: str) -> Any:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
