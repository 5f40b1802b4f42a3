"""
Unit tests for the in-memory order store.
"""
from decimal import Decimal

import pytest

from coingate_merchant.domain.models import Order
from coingate_merchant.domain.states import OrderState
from coingate_merchant.storage.memory import InMemoryOrderStore


def pending_order(increment_id: str) -> Order:
    return Order(
        increment_id=increment_id,
        grand_total=Decimal("10.00"),
        currency_code="USD",
        state=OrderState.PENDING_PAYMENT,
        status="pending_payment",
    )


class TestInMemoryOrderStore:
    """Test suite for InMemoryOrderStore."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_returns_copy(self, store: InMemoryOrderStore) -> None:
        copy = await store.get("1000123")
        copy.state = OrderState.CANCELED

        assert (await store.get("1000123")).state is OrderState.PENDING_PAYMENT

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_compare_and_set_rejects_wrong_expected_state(
        self, store: InMemoryOrderStore
    ) -> None:
        applied = await store.compare_and_set_state(
            "1000123", expected=OrderState.NEW, state=OrderState.PROCESSING, status="processing"
        )

        assert not applied
        assert not store.state_writes

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_is_guarded(self, store: InMemoryOrderStore) -> None:
        assert await store.cancel("1000123")
        assert not await store.cancel("1000123")
        assert not await store.cancel("unknown")
        assert len(store.state_writes) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_state_write_history_is_bounded(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(InMemoryOrderStore, "STATE_WRITE_HISTORY", 2)
        store = InMemoryOrderStore()
        for increment_id in ("1", "2", "3"):
            store.add(pending_order(increment_id))
            await store.cancel(increment_id)

        assert [write[0] for write in store.state_writes] == ["2", "3"]
