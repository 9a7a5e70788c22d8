"""
AutoClerk PMS Connector

API-key authenticated PMS with registration cards, signatures and ID scans
available as documents, used as the reference adapter for evidence collection.
"""

from .connector import AutoClerkConnector

__all__ = ["AutoClerkConnector"]
