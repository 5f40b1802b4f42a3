"""
Callback reconciliation: apply a CoinGate status to the local order.

CoinGate is the source of truth for payment status; the local order state is
a projection of it. A callback only tells us *which* remote order changed, so
the reconciler always re-fetches the order and then applies at most one
guarded transition:

    paid                                  -> processing
    invalid / expired / canceled / refunded -> canceled
    anything else                         -> no change

Duplicate and concurrent deliveries are safe: reconciliation is serialized
per order within the process, and the state write is a compare-and-set
against the persisted state.
"""
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog

from coingate_merchant.config import Settings, get_settings
from coingate_merchant.core.interfaces import OrderManagement, OrderRepository
from coingate_merchant.core.locks import OrderLockRegistry
from coingate_merchant.core.tokens import tokens_match
from coingate_merchant.domain.models import Order, RemoteOrder
from coingate_merchant.domain.states import (
    OrderState,
    OrderStatusConfig,
    can_transition,
    target_state,
)
from coingate_merchant.integrations.coingate_client import CoinGateClientProvider, CoinGateError
from coingate_merchant.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class ReconciliationOutcome(str, Enum):
    """What a single reconciliation did."""

    PROCESSING = "processing"
    CANCELED = "canceled"
    NO_CHANGE = "no_change"
    ALREADY_FINAL = "already_final"
    NOT_FOUND = "not_found"
    TOKEN_MISMATCH = "token_mismatch"
    REMOTE_ERROR = "remote_error"
    FAILED = "failed"


@dataclass(frozen=True)
class ReconciliationResult:
    """Typed result returned to the notification endpoint."""

    outcome: ReconciliationOutcome
    order_id: str
    remote_order_id: int
    remote_status: Optional[str] = None
    detail: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.outcome in (ReconciliationOutcome.PROCESSING, ReconciliationOutcome.CANCELED)


class CallbackReconciler:
    """Validates CoinGate callbacks and maps remote status onto local orders."""

    # Bound on compare-and-set retries when the stored state moves underneath us
    MAX_STATE_WRITE_ATTEMPTS = 3

    def __init__(
        self,
        client_provider: CoinGateClientProvider,
        order_repository: OrderRepository,
        order_management: OrderManagement,
        status_config: Optional[OrderStatusConfig] = None,
        settings: Optional[Settings] = None,
        locks: Optional[OrderLockRegistry] = None,
    ) -> None:
        """
        Initialize callback reconciler.

        Args:
            client_provider: Source of the shared CoinGate client
            order_repository: Loads orders and performs guarded state writes
            order_management: Cancels orders
            status_config: Default display status per state
            settings: Optional settings (defaults to get_settings())
            locks: Optional per-order lock registry
        """
        self.settings = settings or get_settings()
        self.client_provider = client_provider
        self.order_repository = order_repository
        self.order_management = order_management
        self.status_config = status_config or OrderStatusConfig({
            OrderState.PROCESSING: self.settings.order_processing_status,
            OrderState.CANCELED: self.settings.order_canceled_status,
        })
        self.locks = locks or OrderLockRegistry()

    async def reconcile(
        self,
        order: Order,
        remote_order_id: int,
        token: Optional[str] = None,
    ) -> ReconciliationResult:
        """
        Reconcile `order` with the current state of CoinGate order `remote_order_id`.

        Never raises: every failure is logged at critical and reported as an
        outcome so the notification endpoint can always acknowledge.

        Args:
            order: Local order resolved from the callback
            remote_order_id: CoinGate order ID from the callback
            token: Correlation token from the callback URL

        Returns:
            ReconciliationResult: What happened
        """
        start_time = time.time()
        log = logger.bind(order_id=order.increment_id, remote_order_id=remote_order_id)

        try:
            async with self.locks.hold(order.increment_id):
                result = await self._reconcile(order, remote_order_id, token)
        except CoinGateError as e:
            log.critical(
                "callback_remote_lookup_failed",
                error_type=e.error_type.value,
                status_code=e.status_code,
                error=str(e),
            )
            result = self._result(order, remote_order_id, ReconciliationOutcome.REMOTE_ERROR, detail=str(e))
        except Exception as e:
            log.critical("callback_reconciliation_failed", error=str(e), exc_info=True)
            result = self._result(order, remote_order_id, ReconciliationOutcome.FAILED, detail=str(e))

        metrics.record_callback(result.outcome.value, time.time() - start_time)
        log.info(
            "callback_reconciled",
            outcome=result.outcome.value,
            remote_status=result.remote_status,
        )
        return result

    async def _reconcile(
        self, order: Order, remote_order_id: int, token: Optional[str]
    ) -> ReconciliationResult:
        stored_token = order.payment.order_token

        if self.settings.coingate_verify_callback_token or token is not None:
            if not tokens_match(stored_token, token):
                logger.critical(
                    "callback_token_mismatch",
                    order_id=order.increment_id,
                    remote_order_id=remote_order_id,
                    token_present=token is not None,
                )
                return self._result(order, remote_order_id, ReconciliationOutcome.TOKEN_MISMATCH)

        client = self.client_provider.get_client()
        remote_order = await client.get_order(remote_order_id)

        if remote_order is None:
            logger.critical(
                "callback_remote_order_missing",
                order_id=order.increment_id,
                remote_order_id=remote_order_id,
                error=f"CoinGate Order #{remote_order_id} does not exist",
            )
            return self._result(order, remote_order_id, ReconciliationOutcome.NOT_FOUND)

        if remote_order.token and stored_token and not tokens_match(stored_token, remote_order.token):
            logger.critical(
                "callback_remote_token_mismatch",
                order_id=order.increment_id,
                remote_order_id=remote_order_id,
            )
            return self._result(
                order, remote_order_id, ReconciliationOutcome.TOKEN_MISMATCH, remote_order.status
            )

        target = target_state(remote_order.status)
        if target is OrderState.PROCESSING:
            return await self._mark_processing(order, remote_order)
        if target is OrderState.CANCELED:
            return await self._cancel(order, remote_order)

        logger.info(
            "callback_status_not_terminal",
            order_id=order.increment_id,
            remote_order_id=remote_order_id,
            remote_status=remote_order.status,
        )
        return self._result(order, remote_order_id, ReconciliationOutcome.NO_CHANGE, remote_order.status)

    async def _mark_processing(self, order: Order, remote_order: RemoteOrder) -> ReconciliationResult:
        status = self.status_config.get_state_default_status(OrderState.PROCESSING)
        current = order.state

        # The caller's copy may be stale: another writer can still move the
        # order between pending states, so re-read and retry while pending.
        for _ in range(self.MAX_STATE_WRITE_ATTEMPTS):
            if not can_transition(current, OrderState.PROCESSING):
                order.state = current
                return self._already_final(order, remote_order)

            applied = await self.order_repository.compare_and_set_state(
                order.increment_id,
                expected=current,
                state=OrderState.PROCESSING,
                status=status,
            )
            if applied:
                break

            stored = await self.order_repository.get(order.increment_id)
            if stored is None:
                raise LookupError(f"Order {order.increment_id} disappeared during reconciliation")
            logger.info(
                "order_state_changed_concurrently",
                order_id=order.increment_id,
                expected_state=current.value,
                stored_state=stored.state.value,
            )
            current = stored.state
        else:
            raise RuntimeError(
                f"Order {order.increment_id} kept changing state; processing transition not applied"
            )

        order.state = OrderState.PROCESSING
        order.status = status
        logger.info(
            "order_marked_processing",
            order_id=order.increment_id,
            remote_order_id=remote_order.id,
            status=status,
        )
        return self._result(order, remote_order.id, ReconciliationOutcome.PROCESSING, remote_order.status)

    async def _cancel(self, order: Order, remote_order: RemoteOrder) -> ReconciliationResult:
        # The order id CoinGate echoes back decides which order is canceled.
        # When it differs from the callback's order, only the callback's lock
        # is held; OrderManagement.cancel must itself be a guarded, atomic
        # pending -> canceled write. A second lock is not taken here: two
        # callbacks echoing each other's orders would deadlock.
        cancel_id = remote_order.order_id or order.increment_id
        if cancel_id != order.increment_id:
            logger.warning(
                "callback_order_id_differs",
                order_id=order.increment_id,
                remote_order_reference=cancel_id,
                remote_order_id=remote_order.id,
            )
        elif not can_transition(order.state, OrderState.CANCELED):
            return self._already_final(order, remote_order)

        canceled = await self.order_management.cancel(cancel_id)
        if not canceled:
            return self._already_final(order, remote_order, cancel_id)

        if cancel_id == order.increment_id:
            order.state = OrderState.CANCELED
            order.status = self.status_config.get_state_default_status(OrderState.CANCELED)
        logger.info(
            "order_canceled",
            order_id=cancel_id,
            remote_order_id=remote_order.id,
            remote_status=remote_order.status,
        )
        return ReconciliationResult(
            outcome=ReconciliationOutcome.CANCELED,
            order_id=cancel_id,
            remote_order_id=remote_order.id,
            remote_status=remote_order.status,
        )

    @staticmethod
    def _already_final(
        order: Order, remote_order: RemoteOrder, order_id: Optional[str] = None
    ) -> ReconciliationResult:
        logger.info(
            "callback_transition_skipped",
            order_id=order_id or order.increment_id,
            remote_order_id=remote_order.id,
            remote_status=remote_order.status,
            current_state=order.state.value,
        )
        return ReconciliationResult(
            outcome=ReconciliationOutcome.ALREADY_FINAL,
            order_id=order_id or order.increment_id,
            remote_order_id=remote_order.id,
            remote_status=remote_order.status,
        )

    @staticmethod
    def _result(
        order: Order,
        remote_order_id: int,
        outcome: ReconciliationOutcome,
        remote_status: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> ReconciliationResult:
        return ReconciliationResult(
            outcome=outcome,
            order_id=order.increment_id,
            remote_order_id=remote_order_id,
            remote_status=remote_status,
            detail=detail,
        )
