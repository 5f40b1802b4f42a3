"""
API routes for CoinGate checkout redirects and payment callbacks.
"""
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from coingate_merchant.core.callback_reconciler import CallbackReconciler
from coingate_merchant.core.order_initiator import OrderInitiator
from coingate_merchant.storage.memory import InMemoryOrderStore

from .schemas import CallbackResponse, HealthCheckResponse, PaymentRedirectResponse

logger = structlog.get_logger(__name__)

payment_router = APIRouter(prefix="/coingate/payment", tags=["payment"])
monitoring_router = APIRouter(tags=["monitoring"])


def get_store(request: Request) -> InMemoryOrderStore:
    return request.app.state.store


def get_initiator(request: Request) -> OrderInitiator:
    return request.app.state.initiator


def get_reconciler(request: Request) -> CallbackReconciler:
    return request.app.state.reconciler


def _parse_remote_order_id(value: Optional[str]) -> Optional[int]:
    """CoinGate order ids are positive integers; anything else is unusable."""
    if value is None or not value.strip().isdecimal():
        return None
    remote_order_id = int(value)
    return remote_order_id if remote_order_id > 0 else None


@payment_router.post(
    "/redirect/{increment_id}",
    response_model=PaymentRedirectResponse,
    summary="Create CoinGate order",
    description="Create the CoinGate order for a placed order and return the payment URL",
)
async def redirect_to_payment(
    increment_id: str,
    store: InMemoryOrderStore = Depends(get_store),
    initiator: OrderInitiator = Depends(get_initiator),
) -> Dict[str, Any]:
    """Create the remote order; the buyer is redirected to its payment_url."""
    order = await store.get(increment_id)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

    remote_order = await initiator.initiate(order)
    if remote_order is None or not remote_order.payment_url:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment method is unavailable",
        )

    return {
        "order_id": order.increment_id,
        "remote_order_id": remote_order.id,
        "payment_url": remote_order.payment_url,
    }


@payment_router.post(
    "/callback",
    response_model=CallbackResponse,
    summary="CoinGate callback endpoint",
    description="Handle CoinGate payment status notifications",
)
async def payment_callback(
    id: Optional[str] = Form(default=None, description="CoinGate order ID"),
    order_id: Optional[str] = Form(default=None, description="Local order increment id"),
    callback_status: Optional[str] = Form(default=None, alias="status"),
    form_token: Optional[str] = Form(default=None, alias="token"),
    token: Optional[str] = Query(default=None),
    store: InMemoryOrderStore = Depends(get_store),
    reconciler: CallbackReconciler = Depends(get_reconciler),
) -> Dict[str, Any]:
    """
    Handle a CoinGate callback.

    Always acknowledges: failures are logged by the reconciler and CoinGate
    must not retry a notification that has already been recorded.
    """
    logger.info(
        "api_callback_received",
        remote_order_id=id,
        order_id=order_id,
        status=callback_status,
    )

    remote_order_id = _parse_remote_order_id(id)
    if remote_order_id is None or not order_id:
        logger.critical(
            "api_callback_invalid_payload",
            remote_order_id=id,
            order_id=order_id,
        )
        return {"status": "ok", "outcome": "invalid_callback", "order_id": order_id}

    order = await store.get(order_id)
    if order is None:
        logger.critical("api_callback_unknown_order", order_id=order_id, remote_order_id=id)
        return {"status": "ok", "outcome": "unknown_order", "order_id": order_id}

    result = await reconciler.reconcile(order, remote_order_id, token or form_token)
    return {"status": "ok", "outcome": result.outcome.value, "order_id": result.order_id}


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
)
async def health(request: Request) -> Dict[str, Any]:
    """Liveness endpoint."""
    settings = request.app.state.settings
    return {"status": "healthy", "sandbox_mode": settings.coingate_sandbox_mode}


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
