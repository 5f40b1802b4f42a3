"""
Pytest configuration and fixtures.
"""
from decimal import Decimal
from typing import Any, Callable
from unittest.mock import AsyncMock

import pytest

from coingate_merchant.config import Settings
from coingate_merchant.domain.models import Order, OrderItem, RemoteOrder
from coingate_merchant.domain.states import OrderState
from coingate_merchant.integrations.coingate_client import CoinGateClient, CoinGateClientProvider
from coingate_merchant.storage.memory import InMemoryOrderStore


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast isolated tests")
    config.addinivalue_line("markers", "integration: tests wiring several components")
    config.addinivalue_line("markers", "race: concurrent delivery tests")


def make_remote_order(status: str = "paid", **overrides: Any) -> RemoteOrder:
    """Build a CoinGate order snapshot."""
    fields = {
        "id": 8842,
        "status": status,
        "order_id": "1000123",
        "price_amount": "49.50",
        "price_currency": "USD",
        "receive_currency": "EUR",
        "payment_url": "https://pay-sandbox.coingate.com/invoice/4949cf0a",
    }
    fields.update(overrides)
    return RemoteOrder(**fields)


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        coingate_api_auth_token="test-auth-token",
        coingate_sandbox_mode=True,
        coingate_receive_currency="EUR",
        coingate_max_retries=3,
        coingate_retry_backoff=0,
        store_base_url="https://shop.example.com",
        store_title="Example Shop",
        app_name="coingate-merchant-test",
        app_env="test",
        log_level="DEBUG",
    )


@pytest.fixture
def sample_order() -> Order:
    """Order #1000123: 49.50 USD, two lines."""
    return Order(
        increment_id="1000123",
        grand_total=Decimal("49.50"),
        currency_code="USD",
        items=[
            OrderItem(name="Widget", qty_ordered=Decimal("2.0000")),
            OrderItem(name="Gadget", qty_ordered=Decimal("1.0000")),
        ],
        state=OrderState.PENDING_PAYMENT,
        status="pending_payment",
    )


@pytest.fixture
def store(sample_order: Order) -> InMemoryOrderStore:
    """In-memory store seeded with the sample order."""
    order_store = InMemoryOrderStore()
    order_store.add(sample_order)
    return order_store


@pytest.fixture
def mock_client() -> AsyncMock:
    """CoinGate client double."""
    return AsyncMock(spec=CoinGateClient)


@pytest.fixture
def client_provider(test_settings: Settings, mock_client: AsyncMock) -> CoinGateClientProvider:
    """Provider handing out the client double."""
    return CoinGateClientProvider(test_settings, client_factory=lambda settings: mock_client)


@pytest.fixture
def remote_order_factory() -> Callable[..., RemoteOrder]:
    """Factory for CoinGate order snapshots."""
    return make_remote_order
