"""
Oracle OPERA Cloud PMS Connector

Enterprise PMS reached through the Oracle Hospitality Integration Platform.
"""

from .connector import OperaCloudConnector

__all__ = ["OperaCloudConnector"]
