"""
Unit and race tests for callback reconciliation.
"""
import asyncio
from typing import Callable
from unittest.mock import AsyncMock

import pytest
from structlog.testing import capture_logs

from coingate_merchant.config import Settings
from coingate_merchant.core.callback_reconciler import CallbackReconciler, ReconciliationOutcome
from coingate_merchant.core.tokens import generate_token
from coingate_merchant.domain.models import ORDER_TOKEN_KEY, Order, RemoteOrder
from coingate_merchant.domain.states import OrderState
from coingate_merchant.integrations.coingate_client import (
    CoinGateClientProvider,
    CoinGateError,
    CoinGateErrorType,
)
from coingate_merchant.storage.memory import InMemoryOrderStore

TOKEN = "f" * 32


@pytest.fixture
def order(sample_order: Order, store: InMemoryOrderStore) -> Order:
    """Sample order carrying a stored correlation token."""
    sample_order.payment.set_additional_information(ORDER_TOKEN_KEY, TOKEN)
    store.add(sample_order)
    return sample_order


@pytest.fixture
def reconciler(
    test_settings: Settings,
    client_provider: CoinGateClientProvider,
    store: InMemoryOrderStore,
) -> CallbackReconciler:
    return CallbackReconciler(
        client_provider=client_provider,
        order_repository=store,
        order_management=store,
        settings=test_settings,
    )


class TestCallbackReconciler:
    """Test suite for CallbackReconciler."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_paid_moves_order_to_processing(
        self,
        reconciler: CallbackReconciler,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
        remote_order_factory: Callable[..., RemoteOrder],
    ) -> None:
        mock_client.get_order.return_value = remote_order_factory("paid")

        result = await reconciler.reconcile(order, 8842, TOKEN)

        assert result.outcome is ReconciliationOutcome.PROCESSING
        assert result.changed
        mock_client.get_order.assert_awaited_once_with(8842)
        stored = await store.get("1000123")
        assert stored.state is OrderState.PROCESSING
        assert stored.status == "processing"
        assert order.state is OrderState.PROCESSING

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_duplicate_paid_callback_is_noop(
        self,
        reconciler: CallbackReconciler,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
        remote_order_factory: Callable[..., RemoteOrder],
    ) -> None:
        mock_client.get_order.return_value = remote_order_factory("paid")

        first = await reconciler.reconcile(order, 8842, TOKEN)
        second = await reconciler.reconcile(await store.get("1000123"), 8842, TOKEN)

        assert first.outcome is ReconciliationOutcome.PROCESSING
        assert second.outcome is ReconciliationOutcome.ALREADY_FINAL
        assert len(store.state_writes) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("remote_status", ["invalid", "expired", "canceled", "refunded"])
    async def test_negative_status_cancels_order(
        self,
        reconciler: CallbackReconciler,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
        remote_order_factory: Callable[..., RemoteOrder],
        remote_status: str,
    ) -> None:
        mock_client.get_order.return_value = remote_order_factory(remote_status)

        result = await reconciler.reconcile(order, 8842, TOKEN)

        assert result.outcome is ReconciliationOutcome.CANCELED
        assert result.remote_status == remote_status
        stored = await store.get("1000123")
        assert stored.state is OrderState.CANCELED
        assert stored.status == "canceled"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_targets_order_id_reported_by_coingate(
        self,
        test_settings: Settings,
        client_provider: CoinGateClientProvider,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
        remote_order_factory: Callable[..., RemoteOrder],
    ) -> None:
        management = AsyncMock()
        management.cancel.return_value = True
        reconciler = CallbackReconciler(
            client_provider=client_provider,
            order_repository=store,
            order_management=management,
            settings=test_settings,
        )
        mock_client.get_order.return_value = remote_order_factory("expired", order_id="1000999")

        with capture_logs() as logs:
            result = await reconciler.reconcile(order, 8842, TOKEN)

        management.cancel.assert_awaited_once_with("1000999")
        assert result.outcome is ReconciliationOutcome.CANCELED
        assert result.order_id == "1000999"
        assert any(entry["event"] == "callback_order_id_differs" for entry in logs)
        assert order.state is OrderState.PENDING_PAYMENT

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("remote_status", ["new", "pending", "confirming", "PAID"])
    async def test_non_terminal_status_changes_nothing(
        self,
        reconciler: CallbackReconciler,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
        remote_order_factory: Callable[..., RemoteOrder],
        remote_status: str,
    ) -> None:
        mock_client.get_order.return_value = remote_order_factory(remote_status)

        with capture_logs() as logs:
            result = await reconciler.reconcile(order, 8842, TOKEN)

        assert result.outcome is ReconciliationOutcome.NO_CHANGE
        assert not store.state_writes
        assert not [entry for entry in logs if entry["log_level"] in ("error", "critical")]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_remote_order_is_logged_not_raised(
        self,
        reconciler: CallbackReconciler,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
    ) -> None:
        mock_client.get_order.return_value = None

        with capture_logs() as logs:
            result = await reconciler.reconcile(order, 1, TOKEN)

        assert result.outcome is ReconciliationOutcome.NOT_FOUND
        assert not store.state_writes
        assert any(
            entry["event"] == "callback_remote_order_missing" and entry["log_level"] == "critical"
            for entry in logs
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_remote_failure_is_reported(
        self,
        reconciler: CallbackReconciler,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
    ) -> None:
        mock_client.get_order.side_effect = CoinGateError(
            "Service unavailable", CoinGateErrorType.TRANSIENT, status_code=503
        )

        result = await reconciler.reconcile(order, 8842, TOKEN)

        assert result.outcome is ReconciliationOutcome.REMOTE_ERROR
        assert result.detail == "Service unavailable"
        assert not store.state_writes

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_repository_failure_is_reported(
        self,
        test_settings: Settings,
        client_provider: CoinGateClientProvider,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
        remote_order_factory: Callable[..., RemoteOrder],
    ) -> None:
        repository = AsyncMock()
        repository.compare_and_set_state.side_effect = RuntimeError("database is locked")
        reconciler = CallbackReconciler(
            client_provider=client_provider,
            order_repository=repository,
            order_management=store,
            settings=test_settings,
        )
        mock_client.get_order.return_value = remote_order_factory("paid")

        with capture_logs() as logs:
            result = await reconciler.reconcile(order, 8842, TOKEN)

        assert result.outcome is ReconciliationOutcome.FAILED
        assert any(entry["event"] == "callback_reconciliation_failed" for entry in logs)

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, "", "0" * 32])
    async def test_bad_callback_token_never_reaches_coingate(
        self,
        reconciler: CallbackReconciler,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
        token: str,
    ) -> None:
        result = await reconciler.reconcile(order, 8842, token)

        assert result.outcome is ReconciliationOutcome.TOKEN_MISMATCH
        mock_client.get_order.assert_not_awaited()
        assert not store.state_writes

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_token_optional_when_verification_disabled(
        self,
        test_settings: Settings,
        client_provider: CoinGateClientProvider,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
        remote_order_factory: Callable[..., RemoteOrder],
    ) -> None:
        settings = test_settings.model_copy(update={"coingate_verify_callback_token": False})
        reconciler = CallbackReconciler(
            client_provider=client_provider,
            order_repository=store,
            order_management=store,
            settings=settings,
        )
        mock_client.get_order.return_value = remote_order_factory("paid")

        result = await reconciler.reconcile(order, 8842)

        assert result.outcome is ReconciliationOutcome.PROCESSING

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_remote_token_must_match_stored_token(
        self,
        reconciler: CallbackReconciler,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
        remote_order_factory: Callable[..., RemoteOrder],
    ) -> None:
        mock_client.get_order.return_value = remote_order_factory("paid", token=generate_token())

        result = await reconciler.reconcile(order, 8842, TOKEN)

        assert result.outcome is ReconciliationOutcome.TOKEN_MISMATCH
        assert not store.state_writes

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_canceled_order_is_not_revived_by_late_payment(
        self,
        reconciler: CallbackReconciler,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
        remote_order_factory: Callable[..., RemoteOrder],
    ) -> None:
        mock_client.get_order.return_value = remote_order_factory("expired")
        await reconciler.reconcile(order, 8842, TOKEN)

        mock_client.get_order.return_value = remote_order_factory("paid")
        result = await reconciler.reconcile(await store.get("1000123"), 8842, TOKEN)

        assert result.outcome is ReconciliationOutcome.ALREADY_FINAL
        stored = await store.get("1000123")
        assert stored.state is OrderState.CANCELED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_custom_processing_status(
        self,
        test_settings: Settings,
        client_provider: CoinGateClientProvider,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
        remote_order_factory: Callable[..., RemoteOrder],
    ) -> None:
        settings = test_settings.model_copy(update={"order_processing_status": "crypto_paid"})
        reconciler = CallbackReconciler(
            client_provider=client_provider,
            order_repository=store,
            order_management=store,
            settings=settings,
        )
        mock_client.get_order.return_value = remote_order_factory("paid")

        await reconciler.reconcile(order, 8842, TOKEN)

        stored = await store.get("1000123")
        assert stored.status == "crypto_paid"


class TestConcurrentCallbacks:
    """Duplicate deliveries racing each other."""

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_paid_callbacks_apply_once(
        self,
        reconciler: CallbackReconciler,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
        remote_order_factory: Callable[..., RemoteOrder],
    ) -> None:
        async def slow_lookup(remote_order_id: int) -> RemoteOrder:
            await asyncio.sleep(0)
            return remote_order_factory("paid")

        mock_client.get_order.side_effect = slow_lookup

        # Each delivery loads its own copy, as separate requests would
        copies = [await store.get("1000123") for _ in range(10)]
        results = await asyncio.gather(
            *(reconciler.reconcile(copy, 8842, TOKEN) for copy in copies)
        )

        outcomes = [result.outcome for result in results]
        assert outcomes.count(ReconciliationOutcome.PROCESSING) == 1
        assert outcomes.count(ReconciliationOutcome.ALREADY_FINAL) == 9
        assert len(store.state_writes) == 1
        assert len(reconciler.locks) == 0

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_paid_and_expired_race_has_single_winner(
        self,
        reconciler: CallbackReconciler,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
        remote_order_factory: Callable[..., RemoteOrder],
    ) -> None:
        snapshots = iter([remote_order_factory("paid"), remote_order_factory("expired")])

        async def lookup(remote_order_id: int) -> RemoteOrder:
            await asyncio.sleep(0)
            return next(snapshots)

        mock_client.get_order.side_effect = lookup

        copies = [await store.get("1000123") for _ in range(2)]
        results = await asyncio.gather(
            *(reconciler.reconcile(copy, 8842, TOKEN) for copy in copies)
        )

        assert sum(1 for result in results if result.changed) == 1
        assert len(store.state_writes) == 1
        stored = await store.get("1000123")
        assert stored.state is OrderState.PROCESSING


class TestStaleOrderCopies:
    """The caller's order copy may lag behind the stored order."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_paid_applies_when_stored_order_moved_between_pending_states(
        self,
        reconciler: CallbackReconciler,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
        remote_order_factory: Callable[..., RemoteOrder],
    ) -> None:
        stale = await store.get("1000123")
        stale.state = OrderState.NEW
        mock_client.get_order.return_value = remote_order_factory("paid")

        result = await reconciler.reconcile(stale, 8842, TOKEN)

        assert result.outcome is ReconciliationOutcome.PROCESSING
        stored = await store.get("1000123")
        assert stored.state is OrderState.PROCESSING
        assert list(store.state_writes) == [
            ("1000123", OrderState.PENDING_PAYMENT, OrderState.PROCESSING)
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stale_pending_copy_of_final_order_is_not_revived(
        self,
        reconciler: CallbackReconciler,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
        remote_order_factory: Callable[..., RemoteOrder],
    ) -> None:
        stale = await store.get("1000123")
        await store.cancel("1000123")
        mock_client.get_order.return_value = remote_order_factory("paid")

        result = await reconciler.reconcile(stale, 8842, TOKEN)

        assert result.outcome is ReconciliationOutcome.ALREADY_FINAL
        assert (await store.get("1000123")).state is OrderState.CANCELED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_state_that_keeps_moving_is_reported_as_failure(
        self,
        test_settings: Settings,
        client_provider: CoinGateClientProvider,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
        remote_order_factory: Callable[..., RemoteOrder],
    ) -> None:
        repository = AsyncMock()
        repository.compare_and_set_state.return_value = False
        repository.get.return_value = await store.get("1000123")
        reconciler = CallbackReconciler(
            client_provider=client_provider,
            order_repository=repository,
            order_management=store,
            settings=test_settings,
        )
        mock_client.get_order.return_value = remote_order_factory("paid")

        with capture_logs() as logs:
            result = await reconciler.reconcile(order, 8842, TOKEN)

        assert result.outcome is ReconciliationOutcome.FAILED
        assert repository.compare_and_set_state.await_count == CallbackReconciler.MAX_STATE_WRITE_ATTEMPTS
        assert any(
            entry["event"] == "callback_reconciliation_failed" and entry["log_level"] == "critical"
            for entry in logs
        )


class TestEchoedOrderCancellation:
    """Cancels of an order other than the callback's own."""

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_callbacks_echoing_same_order_cancel_it_once(
        self,
        reconciler: CallbackReconciler,
        order: Order,
        store: InMemoryOrderStore,
        mock_client: AsyncMock,
        remote_order_factory: Callable[..., RemoteOrder],
    ) -> None:
        second = Order(
            increment_id="1000124",
            grand_total=order.grand_total,
            currency_code="USD",
            state=OrderState.PENDING_PAYMENT,
            status="pending_payment",
        )
        second.payment.set_additional_information(ORDER_TOKEN_KEY, TOKEN)
        echoed = Order(
            increment_id="1000999",
            grand_total=order.grand_total,
            currency_code="USD",
            state=OrderState.PENDING_PAYMENT,
            status="pending_payment",
        )
        store.add(second)
        store.add(echoed)

        async def lookup(remote_order_id: int) -> RemoteOrder:
            await asyncio.sleep(0)
            return remote_order_factory("expired", order_id="1000999")

        mock_client.get_order.side_effect = lookup

        results = await asyncio.gather(
            reconciler.reconcile(await store.get("1000123"), 8842, TOKEN),
            reconciler.reconcile(await store.get("1000124"), 8842, TOKEN),
        )

        outcomes = sorted(result.outcome.value for result in results)
        assert outcomes == ["already_final", "canceled"]
        assert list(store.state_writes) == [
            ("1000999", OrderState.PENDING_PAYMENT, OrderState.CANCELED)
        ]
        assert (await store.get("1000123")).state is OrderState.PENDING_PAYMENT
        assert (await store.get("1000124")).state is OrderState.PENDING_PAYMENT
