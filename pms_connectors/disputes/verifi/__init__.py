"""
Verifi Dispute Network Connector

Visa's pre-dispute alert service (CDRN alerts and disputes).
"""

from .connector import VerifiConnector

__all__ = ["VerifiConnector"]
