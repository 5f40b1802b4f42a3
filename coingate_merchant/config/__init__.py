"""Configuration package for the CoinGate payment bridge."""
from .settings import ConfigurationError, Settings, get_settings

__all__ = ["ConfigurationError", "Settings", "get_settings"]
