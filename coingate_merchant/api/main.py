"""
Main FastAPI application.

Wires the CoinGate bridge together:
- Settings and structured logging
- Lazily built, shared CoinGate client
- Order initiator and callback reconciler
- Request ID tracking
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, Response

from coingate_merchant import __version__
from coingate_merchant.config import Settings, get_settings
from coingate_merchant.core.callback_reconciler import CallbackReconciler
from coingate_merchant.core.order_initiator import OrderInitiator
from coingate_merchant.core.store import SettingsStoreInfo, StoreUrlBuilder
from coingate_merchant.integrations.coingate_client import CoinGateClientProvider
from coingate_merchant.monitoring.logging import setup_logging
from coingate_merchant.storage.memory import InMemoryOrderStore

from .routes import monitoring_router, payment_router

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[InMemoryOrderStore] = None,
    client_provider: Optional[CoinGateClientProvider] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Optional settings (defaults to get_settings())
        store: Order storage (defaults to an empty in-memory store)
        client_provider: CoinGate client provider (defaults to one built from settings)
        configure_logging: Install the JSON structlog configuration

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()
    if configure_logging:
        setup_logging(settings)

    store = store or InMemoryOrderStore(canceled_status=settings.order_canceled_status)
    client_provider = client_provider or CoinGateClientProvider(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            env=settings.app_env,
            sandbox_mode=settings.coingate_sandbox_mode,
        )
        yield
        logger.info("application_shutdown")
        await client_provider.aclose()

    app = FastAPI(
        title="CoinGate Merchant Bridge",
        description="Creates CoinGate orders for local sales and reconciles payment callbacks.",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.store = store
    app.state.client_provider = client_provider
    app.state.initiator = OrderInitiator(
        client_provider=client_provider,
        payment_repository=store,
        url_builder=StoreUrlBuilder(settings.store_base_url),
        store_info=SettingsStoreInfo(settings),
        settings=settings,
    )
    app.state.reconciler = CallbackReconciler(
        client_provider=client_provider,
        order_repository=store,
        order_management=store,
        settings=settings,
    )

    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
        """Bind a request ID to the log context and echo it in the response."""
        request_id = str(uuid.uuid4())
        start_time = time.time()

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=time.time() - start_time,
            )
            return response
        finally:
            structlog.contextvars.clear_contextvars()

    app.include_router(payment_router)
    app.include_router(monitoring_router)

    return app


def main() -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "coingate_merchant.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
