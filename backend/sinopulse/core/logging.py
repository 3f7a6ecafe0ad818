"""structlog setup for the comparison service.

Every log line, whether from sinopulse, uvicorn or botocore, goes through one
ProcessorFormatter so production output is one JSON object per line:

    {"event": "artifact_cache_hit", "service": "sinopulse-backend",
     "correlation_id": "...", "key": "sino-pulse/v1/en/gdp.json", ...}

Background write-backs inherit the correlation id of the request that
scheduled them (contextvars are copied into asyncio tasks).
"""

import logging
import logging.config

import structlog
from asgi_correlation_id.context import correlation_id

SERVICE_NAME = "sinopulse-backend"

# Chatty third-party loggers and the level they are capped at
QUIET_LOGGERS: dict[str, str] = {
    "uvicorn.access": "WARNING",
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "botocore": "WARNING",
    "boto3": "WARNING",
    "s3transfer": "WARNING",
    "anthropic": "WARNING",
}


def add_correlation_id(logger, method, event_dict):
    """Attach the X-Request-ID of the current request, when there is one."""
    cid = correlation_id.get(None)
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def add_service_name(logger, method, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def drop_color_message(logger, method, event_dict):
    """uvicorn logs every message twice, once with ANSI colors under color_message."""
    event_dict.pop("color_message", None)
    return event_dict


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_name,
        add_correlation_id,
        drop_color_message,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Route structlog and stdlib logging through a single renderer.

    Must run before the first ``structlog.get_logger()`` call is used:
    loggers are cached on first use.

    Args:
        log_level: Root log level name
        json_logs: JSONRenderer when True, ConsoleRenderer for local development
    """
    shared = _shared_processors()
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structured": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "processors": [structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
                    "foreign_pre_chain": shared,
                },
            },
            "handlers": {
                "stdout": {
                    "class": "logging.StreamHandler",
                    "formatter": "structured",
                    "stream": "ext://sys.stdout",
                },
            },
            "root": {"handlers": ["stdout"], "level": log_level.upper()},
            "loggers": {name: {"level": level} for name, level in QUIET_LOGGERS.items()},
        }
    )

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
