"""
Structured logging for the indexing client.

Every line carries a correlation id scoped to one submission
(``process_and_index`` call or API request) plus the app and index names,
so the batches of one digest can be followed across retries.
"""
import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Optional
from datetime import datetime, timezone
import structlog
from structlog.stdlib import LoggerFactory
from pythonjsonlogger import jsonlogger

from digest_index.core.config import settings

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# SDK loggers that log every HTTP request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "urllib3", "pinecone")

_configured = False


def generate_uuid() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    """Current submission's correlation id, created on first use."""
    correlation_id = correlation_id_var.get()
    if correlation_id is None:
        correlation_id = generate_uuid()
        correlation_id_var.set(correlation_id)
    return correlation_id


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Start a new submission scope; a fresh id is generated when none is given."""
    if correlation_id is None:
        correlation_id = generate_uuid()
    correlation_id_var.set(correlation_id)
    return correlation_id


def add_correlation_id(logger, method_name, event_dict):
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


def add_app_context(logger, method_name, event_dict):
    event_dict["app_name"] = settings.APP_NAME
    event_dict["app_version"] = settings.APP_VERSION
    event_dict["index_name"] = settings.PINECONE_INDEX_NAME
    return event_dict


def setup_logging(force: bool = False):
    """
    Configure stdlib logging and structlog once per process.

    JSON output is rendered by python-json-logger for stdlib records and by
    structlog's JSONRenderer for our own events. SDK request logs are held at
    WARNING unless LOG_LEVEL is DEBUG.
    """
    global _configured
    if _configured and not force:
        return

    level = getattr(logging, settings.LOG_LEVEL.upper())
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
        force=force,
    )

    if settings.LOG_FORMAT == "json":
        json_formatter = jsonlogger.JsonFormatter(
            fmt="%(timestamp)s %(level)s %(name)s %(message)s",
            rename_fields={"timestamp": "@timestamp", "level": "log.level"},
        )

        for handler in logging.root.handlers:
            handler.setFormatter(json_formatter)

    sdk_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(sdk_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_correlation_id,
            add_app_context,
            structlog.processors.CallsiteParameterAdder(
                parameters=[
                    structlog.processors.CallsiteParameter.FILENAME,
                    structlog.processors.CallsiteParameter.LINENO,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                ]
            ),
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer() if settings.LOG_FORMAT == "json"
            else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def get_utc_timestamp() -> str:
    """ISO-8601 UTC timestamp, used for created_at and last_check fields."""
    return datetime.now(timezone.utc).isoformat()


def get_utc_datetime() -> datetime:
    return datetime.now(timezone.utc)


setup_logging()
