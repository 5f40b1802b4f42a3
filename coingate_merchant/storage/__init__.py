"""Order storage adapters."""
from .memory import InMemoryOrderStore

__all__ = ["InMemoryOrderStore"]
