"""CoinGate payment bridge: remote order creation and callback reconciliation."""

__version__ = "0.1.0"
