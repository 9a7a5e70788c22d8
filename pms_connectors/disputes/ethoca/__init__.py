"""
Ethoca Dispute Network Connector

Mastercard's collaborative alert service.
"""

from .connector import EthocaConnector

__all__ = ["EthocaConnector"]
