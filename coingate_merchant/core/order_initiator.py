"""
Order initiation: turn a local order into a CoinGate order.

Flow:
1. Reuse or generate the payment's correlation token
2. Persist the token before any remote call
3. Build the order creation request
4. Submit it to CoinGate
5. Return the remote order (its payment_url is the buyer redirect)

Failures never propagate: they are logged at critical and the caller gets
None, which checkout shows as "payment method unavailable".
"""
from typing import Any, Dict, Optional

import structlog

from coingate_merchant.config import ConfigurationError, Settings, get_settings
from coingate_merchant.core.formatting import build_description, format_price
from coingate_merchant.core.interfaces import PaymentRepository, StoreInfo, UrlBuilder
from coingate_merchant.core.tokens import generate_token
from coingate_merchant.domain.models import ORDER_TOKEN_KEY, Order, RemoteOrder
from coingate_merchant.integrations.coingate_client import CoinGateClientProvider, CoinGateError
from coingate_merchant.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

CALLBACK_ROUTE = "coingate/payment/callback"
CANCEL_ROUTE = "coingate/payment/cancelOrder"
SUCCESS_ROUTE = "checkout/onepage/success"


class OrderInitiator:
    """Creates the CoinGate order for a local sale."""

    def __init__(
        self,
        client_provider: CoinGateClientProvider,
        payment_repository: PaymentRepository,
        url_builder: UrlBuilder,
        store_info: StoreInfo,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize order initiator.

        Args:
            client_provider: Source of the shared CoinGate client
            payment_repository: Persists the payment carrying the token
            url_builder: Builds callback/cancel/success URLs
            store_info: Provides the website name used as order title
            settings: Optional settings (defaults to get_settings())
        """
        self.settings = settings or get_settings()
        self.client_provider = client_provider
        self.payment_repository = payment_repository
        self.url_builder = url_builder
        self.store_info = store_info

    async def _ensure_token(self, order: Order) -> str:
        """Return the payment's token, generating and persisting one if needed."""
        payment = order.payment
        token = payment.get_additional_information(ORDER_TOKEN_KEY)
        if token:
            return token

        token = generate_token()
        payment.set_additional_information(ORDER_TOKEN_KEY, token)
        await self.payment_repository.save(payment)
        logger.info("coingate_order_token_stored", order_id=order.increment_id)
        return token

    def build_request(self, order: Order, token: str) -> Dict[str, Any]:
        """
        Assemble the CoinGate order creation fields.

        Raises:
            ConfigurationError: If a required store setting is missing
        """
        return {
            "order_id": order.increment_id,
            "price_amount": format_price(order.grand_total),
            "price_currency": order.currency_code,
            "receive_currency": self.settings.require_receive_currency(),
            "callback_url": self.url_builder.get_url(CALLBACK_ROUTE, {"token": token}),
            "cancel_url": self.url_builder.get_url(CANCEL_ROUTE),
            "success_url": self.url_builder.get_url(SUCCESS_ROUTE),
            "title": self.store_info.get_website_name(),
            "description": build_description(order.get_all_items()),
            "token": token,
        }

    async def initiate(self, order: Order) -> Optional[RemoteOrder]:
        """
        Create the CoinGate order for `order`.

        Args:
            order: Local order awaiting payment

        Returns:
            Optional[RemoteOrder]: Created remote order, or None on any failure
        """
        try:
            token = await self._ensure_token(order)
            params = self.build_request(order, token)
            client = self.client_provider.get_client()
        except ConfigurationError as e:
            logger.critical(
                "coingate_configuration_error",
                order_id=order.increment_id,
                error=str(e),
            )
            metrics.record_order_initiation("configuration_error")
            return None
        except Exception as e:
            logger.critical(
                "coingate_order_preparation_failed",
                order_id=order.increment_id,
                error=str(e),
                exc_info=True,
            )
            metrics.record_order_initiation("failed")
            return None

        try:
            remote_order = await client.create_order(params)
        except CoinGateError as e:
            logger.critical(
                "coingate_order_creation_failed",
                order_id=order.increment_id,
                error_type=e.error_type.value,
                status_code=e.status_code,
                error=str(e),
            )
            metrics.record_order_initiation("remote_error")
            return None
        except Exception as e:
            logger.critical(
                "coingate_order_creation_failed",
                order_id=order.increment_id,
                error=str(e),
                exc_info=True,
            )
            metrics.record_order_initiation("failed")
            return None

        metrics.record_order_initiation("created")
        logger.info(
            "coingate_order_initiated",
            order_id=order.increment_id,
            remote_order_id=remote_order.id,
            payment_url=remote_order.payment_url,
        )
        return remote_order
