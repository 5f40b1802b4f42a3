"""Core payment bridge logic."""
from .callback_reconciler import CallbackReconciler, ReconciliationOutcome, ReconciliationResult
from .locks import OrderLockRegistry
from .order_initiator import OrderInitiator
from .store import SettingsStoreInfo, StoreUrlBuilder
from .tokens import generate_token, tokens_match

__all__ = [
    "CallbackReconciler",
    "OrderInitiator",
    "OrderLockRegistry",
    "ReconciliationOutcome",
    "ReconciliationResult",
    "SettingsStoreInfo",
    "StoreUrlBuilder",
    "generate_token",
    "tokens_match",
]
