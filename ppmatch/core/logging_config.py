"""
PPMatch - Structured Logging Configuration
==========================================

structlog rendering for the whole process:
- JSON output for log aggregation, console output for development
- Request correlation IDs bound per HTTP request
- PP record context bound during ingestion
- stdlib loggers (logging.getLogger(__name__)) rendered through the same chain

Usage:
    # At application startup
    from ppmatch.core.logging_config import configure_logging
    configure_logging(json_output=True)

    # In library modules
    logger = logging.getLogger(__name__)

Environment Variables:
    LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    LOG_FORMAT: json, console (default: json in production, console in dev)
"""

import logging
import logging.config
import os
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

import structlog
from structlog.types import EventDict, WrappedLogger


# =============================================================================
# CONTEXT VARIABLES
# =============================================================================

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# PP record being ingested
record_id_var: ContextVar[Optional[str]] = ContextVar("record_id", default=None)


def set_request_id(request_id: str) -> None:
    """Set request ID in context."""
    request_id_var.set(request_id)


def generate_request_id() -> str:
    """Generate a short request ID."""
    return str(uuid.uuid4())[:8]


def bind_record(record_id: Optional[str]) -> None:
    """Bind PP record ID to the current context."""
    record_id_var.set(record_id)


# =============================================================================
# CUSTOM PROCESSORS
# =============================================================================

def add_request_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict
) -> EventDict:
    """Add request and record context from context variables."""
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    record_id = record_id_var.get()
    if record_id:
        event_dict["record_id"] = record_id

    return event_dict


def add_service_info(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict
) -> EventDict:
    event_dict["service"] = "ppmatch"
    event_dict["version"] = os.getenv("APP_VERSION", "1.0.0")
    return event_dict


def add_timestamp_iso(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict
) -> EventDict:
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def rename_event_key(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict
) -> EventDict:
    """Rename 'event' to 'message' for common log formats."""
    if "event" in event_dict:
        event_dict["message"] = event_dict.pop("event")
    return event_dict


# =============================================================================
# CONFIGURATION
# =============================================================================

def _resolve_json_output(json_output: Optional[bool]) -> bool:
    if json_output is not None:
        return json_output
    log_format = os.getenv("LOG_FORMAT", "").lower()
    if log_format in ("json", "console"):
        return log_format == "json"
    env = os.getenv("ENVIRONMENT", "development").lower()
    return env in ("production", "prod", "staging")


def configure_logging(
    json_output: Optional[bool] = None,
    log_level: Optional[str] = None,
) -> None:
    """
    Configure structured logging for the process.

    Args:
        json_output: If True, output JSON. If None, auto-detect from environment.
        log_level: Log level. Defaults to LOG_LEVEL env var.
    """
    log_level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    json_output = _resolve_json_output(json_output)

    shared_processors = [
        add_timestamp_iso,
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        add_request_context,
        add_service_info,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        shared_processors.extend([
            rename_event_key,
            structlog.processors.format_exc_info,
        ])
        final_processor = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        final_processor = structlog.dev.ConsoleRenderer(
            colors=False,
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level, logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # stdlib -> ProcessorFormatter -> same output format
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structlog": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    final_processor,
                ],
                "foreign_pre_chain": shared_processors,
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": "structlog",
            },
        },
        "loggers": {
            "": {
                "handlers": ["default"],
                "level": log_level,
                "propagate": True,
            },
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
            "openai": {"level": "WARNING"},
            "anthropic": {"level": "WARNING"},
            "uvicorn.access": {"level": "WARNING"},
        },
    })

    structlog.get_logger("logging_config").info(
        "Logging configured",
        format="json" if json_output else "console",
        level=log_level,
    )


# =============================================================================
# FASTAPI MIDDLEWARE
# =============================================================================

class RequestLoggingMiddleware:
    """
    ASGI middleware adding request correlation and request logs.

    Usage:
        app.add_middleware(RequestLoggingMiddleware)
    """

    def __init__(self, app):
        self.app = app
        self.logger = structlog.get_logger("request")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        set_request_id(generate_request_id())
        method = scope.get("method", "UNKNOWN")
        path = scope.get("path", "/")
        start_time = time.perf_counter()
        status_code = 500

        self.logger.info("Request started", method=method, path=path)

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 500)
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            self.logger.exception("Request failed", method=method, path=path, error=str(e))
            raise
        finally:
            duration_ms = int((time.perf_counter() - start_time) * 1000)
            log_method = self.logger.info if status_code < 400 else self.logger.warning
            log_method(
                "Request completed",
                method=method,
                path=path,
                status_code=status_code,
                duration_ms=duration_ms,
            )
            request_id_var.set(None)
            record_id_var.set(None)


def get_logger(name: str = None):
    """Get a structured logger instance."""
    return structlog.get_logger(name)
