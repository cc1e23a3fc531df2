"""
Source connectors.

One connector per provider; each exposes probe() and fetch() and hides its
auth, base URL and pagination. The orchestrator never branches on provider
identity.
"""

from .base import (
    Connector,
    ConnectorAPIError,
    ConnectorAuthError,
    ConnectorConfigError,
    ConnectorConnectionError,
    ConnectorError,
    ConnectorPayloadError,
)
from .brex import BrexConnector
from .privatbank import PrivatBankConnector
from .stripe import StripeConnector

__all__ = [
    "BrexConnector",
    "Connector",
    "ConnectorAPIError",
    "ConnectorAuthError",
    "ConnectorConfigError",
    "ConnectorConnectionError",
    "ConnectorError",
    "ConnectorPayloadError",
    "PrivatBankConnector",
    "StripeConnector",
]
