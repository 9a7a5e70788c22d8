"""
Mews PMS Connector
"""

from .connector import MewsConnector

__all__ = ["MewsConnector"]
