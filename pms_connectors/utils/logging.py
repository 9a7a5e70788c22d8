"""
Secure Logging Utilities for PMS Connectors
Provides structlog-based logging with automatic PII redaction and correlation IDs
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from functools import wraps
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import structlog

from .pii_redactor import get_default_redactor

# Context variable for correlation ID
correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_RESERVED_KEYS = {"event", "level", "timestamp", "logger", "exc_info", "correlation_id"}


def with_correlation_id(value: Optional[str] = None) -> str:
    """Set or generate correlation ID for request tracking"""
    correlation_id.set(value or str(uuid.uuid4()))
    return correlation_id.get()


def add_correlation_id(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """structlog processor that stamps the current correlation ID"""
    current = correlation_id.get()
    if current and "correlation_id" not in event_dict:
        event_dict["correlation_id"] = current
    return event_dict


def redact_event_dict(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """structlog processor that masks PII in every field except the reserved ones"""
    redactor = get_default_redactor()
    for key, value in list(event_dict.items()):
        if key in _RESERVED_KEYS:
            continue
        event_dict[key] = redactor.redact_value(key, value)
    return event_dict


def configure_logging(json_logs: bool = True, level: str = "INFO") -> None:
    """
    Configure structlog for the process

    Args:
        json_logs: Render JSON lines when True, console output otherwise
        level: Minimum log level name
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            add_correlation_id,
            redact_event_dict,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )


class SafeLogger:
    """
    Thin adapter over a structlog bound logger.

    Keeps call sites uniform: ``logger.info("event_name", key=value)``.
    """

    def __init__(self, logger: Any):
        self._logger = logger

    def bind(self, **kwargs) -> "SafeLogger":
        return SafeLogger(self._logger.bind(**kwargs))

    def debug(self, event: str, **kwargs) -> None:
        self._logger.debug(event, **kwargs)

    def info(self, event: str, **kwargs) -> None:
        self._logger.info(event, **kwargs)

    def warning(self, event: str, **kwargs) -> None:
        self._logger.warning(event, **kwargs)

    def error(self, event: str, **kwargs) -> None:
        self._logger.error(event, **kwargs)

    def exception(self, event: str, **kwargs) -> None:
        kwargs.setdefault("exc_info", True)
        self._logger.error(event, **kwargs)

    warn = warning


def get_safe_logger(name: Optional[str] = None) -> SafeLogger:
    """Get a SafeLogger wrapping ``structlog.get_logger(name)``"""
    logger = structlog.get_logger(name) if name else structlog.get_logger()
    return SafeLogger(logger)


def log_performance(operation: str):
    """
    Decorator to log duration of async adapter or engine operations

    Usage:
        @log_performance("get_reservation")
        async def get_reservation(self, ...):
            ...
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            start_time = time.monotonic()
            error = None
            try:
                return await func(self, *args, **kwargs)
            except Exception as e:
                error = e
                raise
            finally:
                duration_ms = round((time.monotonic() - start_time) * 1000, 2)
                logger = getattr(self, "logger", None)
                if logger is not None:
                    if error is not None:
                        logger.warning(
                            "operation_failed",
                            operation=operation,
                            duration_ms=duration_ms,
                            error=str(error),
                            error_type=type(error).__name__,
                        )
                    else:
                        logger.debug("operation_completed", operation=operation, duration_ms=duration_ms)

        return wrapper

    return decorator


SENSITIVE_QUERY_PARAMS = {
    "api_key",
    "apikey",
    "key",
    "token",
    "secret",
    "password",
    "pwd",
    "auth",
    "authorization",
    "client_secret",
    "client_id",
    "access_token",
    "accesstoken",
    "clienttoken",
    "refresh_token",
    "code",
    "session",
    "sid",
}


def sanitize_url(url: str) -> str:
    """
    Sanitize URL for logging by removing sensitive query parameters

    Args:
        url: URL to sanitize

    Returns:
        Sanitized URL safe for logging
    """
    parsed = urlparse(url)
    query_params = parse_qs(parsed.query)

    sanitized_params = {}
    for param, values in query_params.items():
        if param.lower() in SENSITIVE_QUERY_PARAMS:
            sanitized_params[param] = ["<REDACTED>"]
        else:
            sanitized_params[param] = values

    return urlunparse(
        (
            parsed.scheme,
            parsed.netloc,
            parsed.path,
            parsed.params,
            urlencode(sanitized_params, doseq=True),
            parsed.fragment,
        )
    )
