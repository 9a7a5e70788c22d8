"""
protel PMS Connector

On-premise protel installations expose no push or webhook channel, so this
adapter is polled on the slowest sync tier.
"""

from .connector import ProtelConnector

__all__ = ["ProtelConnector"]
