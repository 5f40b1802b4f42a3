"""
Pydantic schemas for API request/response models.
"""
from typing import Optional

from pydantic import BaseModel, Field


class PaymentRedirectResponse(BaseModel):
    """Response schema for a created CoinGate order."""

    order_id: str = Field(..., description="Local order increment id")
    remote_order_id: int = Field(..., description="CoinGate order ID")
    payment_url: str = Field(..., description="Hosted payment page the buyer is sent to")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_id": "1000123",
                    "remote_order_id": 8842,
                    "payment_url": "https://pay-sandbox.coingate.com/invoice/4949cf0a",
                }
            ]
        }
    }


class CallbackResponse(BaseModel):
    """Acknowledgement returned to CoinGate for every callback."""

    status: str = Field(default="ok", description="Always 'ok' once the callback is logged")
    outcome: str = Field(..., description="Reconciliation outcome")
    order_id: Optional[str] = Field(default=None, description="Local order affected")


class HealthCheckResponse(BaseModel):
    """Response schema for health check."""

    status: str = Field(..., description="Overall health status")
    sandbox_mode: bool = Field(..., description="Whether CoinGate sandbox is used")
