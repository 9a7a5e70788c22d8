from .connector import CloudbedsConnector

__all__ = ["CloudbedsConnector"]
