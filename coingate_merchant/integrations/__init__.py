"""External integrations: the CoinGate order API."""
from .coingate_client import (
    CoinGateClient,
    CoinGateClientProvider,
    CoinGateError,
    CoinGateErrorType,
)

__all__ = ["CoinGateClient", "CoinGateClientProvider", "CoinGateError", "CoinGateErrorType"]
