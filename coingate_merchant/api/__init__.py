"""FastAPI application and routes."""
from .main import create_app
from .schemas import CallbackResponse, HealthCheckResponse, PaymentRedirectResponse

__all__ = [
    "create_app",
    "CallbackResponse",
    "HealthCheckResponse",
    "PaymentRedirectResponse",
]
