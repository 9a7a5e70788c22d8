"""
Utility modules for PMS connectors
"""

from .logging import (
    SafeLogger,
    configure_logging,
    correlation_id,
    get_safe_logger,
    log_performance,
    sanitize_url,
    with_correlation_id,
)
from .pii_redactor import PIIRedactor, get_default_redactor, redact_pii

__all__ = [
    "SafeLogger",
    "configure_logging",
    "correlation_id",
    "get_safe_logger",
    "log_performance",
    "sanitize_url",
    "with_correlation_id",
    "PIIRedactor",
    "get_default_redactor",
    "redact_pii",
]
