"""
Chargeback Defense Sync Engine

Drives PMS adapters for the chargeback-defense platform:
- per-integration sync jobs with health tracking and a circuit breaker
- reservation matching for incoming chargebacks
- evidence collection into content-addressed storage
"""

from .config import SyncSettings, get_settings
from .hub import IntegrationHub

__all__ = ["IntegrationHub", "SyncSettings", "get_settings"]
