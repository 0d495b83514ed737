"""
External Services

Clients for the freight persistence API and the accounting collaborator.
"""

from .freight_api_client import FreightApiClient
from .accounting_client import AccountingClient

__all__ = [
    "FreightApiClient",
    "AccountingClient",
]
