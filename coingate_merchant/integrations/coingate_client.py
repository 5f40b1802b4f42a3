"""
CoinGate API client with retry logic and error classification.

Implements:
- Bounded request timeout
- Exponential backoff for transient lookup errors
- Retry of order creation only when the request never reached CoinGate
- Lazily constructed, shared client through CoinGateClientProvider
"""
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from coingate_merchant.config import Settings, get_settings
from coingate_merchant.config.settings import LIVE_API_URL, SANDBOX_API_URL
from coingate_merchant.domain.models import RemoteOrder
from coingate_merchant.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class CoinGateErrorType(Enum):
    """Classification of CoinGate errors for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these
    RATE_LIMIT = "rate_limit"  # Retry with longer backoff


class CoinGateError(Exception):
    """Base exception for CoinGate-related errors."""

    def __init__(
        self,
        message: str,
        error_type: CoinGateErrorType,
        status_code: Optional[int] = None,
        reason: Optional[str] = None,
        request_sent: bool = True,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize CoinGate error.

        Args:
            message: Error message
            error_type: Classification of error
            status_code: HTTP status returned by CoinGate, if any
            reason: CoinGate error reason (e.g. OrderIsNotValid)
            request_sent: False when the request never reached CoinGate
            original_error: Original transport exception
        """
        super().__init__(message)
        self.error_type = error_type
        self.status_code = status_code
        self.reason = reason
        self.request_sent = request_sent
        self.original_error = original_error


def _is_retryable_lookup(error: BaseException) -> bool:
    return isinstance(error, CoinGateError) and error.error_type in (
        CoinGateErrorType.TRANSIENT,
        CoinGateErrorType.RATE_LIMIT,
    )


def _is_retryable_create(error: BaseException) -> bool:
    # Creating an order is not idempotent on CoinGate's side: only retry
    # when the request provably never left this process.
    return isinstance(error, CoinGateError) and not error.request_sent


class CoinGateClient:
    """
    Async wrapper for the CoinGate v2 order API.

    Features:
    - Token authentication and sandbox/live endpoint selection
    - Error classification (transient, permanent, rate limit)
    - Bounded retries with exponential backoff
    """

    def __init__(
        self,
        api_auth_token: str,
        sandbox: bool = True,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_backoff: float = 0.5,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize CoinGate client.

        Args:
            api_auth_token: CoinGate API auth token
            sandbox: Use the sandbox environment
            timeout: Request timeout in seconds
            max_retries: Max attempts for retryable calls
            retry_backoff: Backoff multiplier in seconds
            base_url: Override the API endpoint
            transport: Optional httpx transport (used by tests)
        """
        self.sandbox = sandbox
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        if base_url is None:
            base_url = SANDBOX_API_URL if sandbox else LIVE_API_URL
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Token {api_auth_token}",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

        logger.info(
            "coingate_client_initialized",
            base_url=self.base_url,
            sandbox=sandbox,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "CoinGateClient":
        """Build a client from resolved settings."""
        return cls(
            api_auth_token=settings.require_api_auth_token(),
            sandbox=settings.coingate_sandbox_mode,
            timeout=settings.coingate_request_timeout,
            max_retries=settings.coingate_max_retries,
            retry_backoff=settings.coingate_retry_backoff,
            base_url=settings.coingate_api_base_url,
        )

    @staticmethod
    def _classify_status(status_code: int) -> CoinGateErrorType:
        """
        Classify an HTTP error status for retry logic.

        Args:
            status_code: HTTP status code

        Returns:
            CoinGateErrorType: Error classification
        """
        if status_code == 429:
            return CoinGateErrorType.RATE_LIMIT
        elif status_code >= 500:
            return CoinGateErrorType.TRANSIENT
        else:
            return CoinGateErrorType.PERMANENT

    def _retrying(self, predicate: Callable[[BaseException], bool]) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception(predicate),
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_backoff, min=0, max=8),
            reraise=True,
        )

    async def _request(
        self, operation: str, method: str, path: str, data: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        """
        Send a request and translate transport/HTTP failures into CoinGateError.

        Raises:
            CoinGateError: On transport failure or a non-2xx response other than 404
        """
        start_time = time.time()
        try:
            response = await self._http.request(method, path, data=data)
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            self._record_failure(operation, CoinGateErrorType.TRANSIENT, start_time)
            raise CoinGateError(
                f"Could not connect to CoinGate: {e}",
                CoinGateErrorType.TRANSIENT,
                request_sent=False,
                original_error=e,
            )
        except httpx.HTTPError as e:
            self._record_failure(operation, CoinGateErrorType.TRANSIENT, start_time)
            raise CoinGateError(
                f"CoinGate request failed: {e}",
                CoinGateErrorType.TRANSIENT,
                original_error=e,
            )

        if response.status_code == 404 or response.is_success:
            metrics.record_api_call(operation, str(response.status_code), time.time() - start_time)
            return response

        error_type = self._classify_status(response.status_code)
        message, reason = self._error_details(response)
        self._record_failure(operation, error_type, start_time, str(response.status_code))

        logger.error(
            "coingate_api_error",
            operation=operation,
            error_type=error_type.value,
            status_code=response.status_code,
            reason=reason,
            error_message=message,
        )

        raise CoinGateError(
            message,
            error_type,
            status_code=response.status_code,
            reason=reason,
        )

    @staticmethod
    def _error_details(response: httpx.Response) -> Tuple[str, Optional[str]]:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}", None
        if not isinstance(body, dict):
            return str(body), None
        return body.get("message") or f"HTTP {response.status_code}", body.get("reason")

    @staticmethod
    def _record_failure(
        operation: str, error_type: CoinGateErrorType, start_time: float, status: str = "error"
    ) -> None:
        metrics.record_api_call(operation, status, time.time() - start_time)
        metrics.record_api_error(error_type.value)

    async def create_order(self, params: Dict[str, Any]) -> RemoteOrder:
        """
        Create a CoinGate order.

        Args:
            params: Order creation fields (order_id, price_amount, ...)

        Returns:
            RemoteOrder: Created order, including the buyer payment_url

        Raises:
            CoinGateError: If creation fails
        """
        logger.info(
            "creating_coingate_order",
            order_id=params.get("order_id"),
            price_amount=params.get("price_amount"),
            price_currency=params.get("price_currency"),
        )

        async for attempt in self._retrying(_is_retryable_create):
            with attempt:
                response = await self._request("create_order", "POST", "/orders", data=params)

        if response.status_code == 404:
            raise CoinGateError(
                "CoinGate orders endpoint not found",
                CoinGateErrorType.PERMANENT,
                status_code=404,
            )

        remote_order = RemoteOrder.model_validate(response.json())

        logger.info(
            "coingate_order_created",
            remote_order_id=remote_order.id,
            order_id=remote_order.order_id,
            status=remote_order.status,
        )

        return remote_order

    async def get_order(self, remote_order_id: int) -> Optional[RemoteOrder]:
        """
        Retrieve a CoinGate order by ID.

        Args:
            remote_order_id: CoinGate order ID

        Returns:
            Optional[RemoteOrder]: The order, or None if CoinGate does not know it

        Raises:
            CoinGateError: If retrieval fails
        """
        logger.info("retrieving_coingate_order", remote_order_id=remote_order_id)

        async for attempt in self._retrying(_is_retryable_lookup):
            with attempt:
                response = await self._request(
                    "get_order", "GET", f"/orders/{remote_order_id}"
                )

        if response.status_code == 404:
            logger.warning("coingate_order_not_found", remote_order_id=remote_order_id)
            return None

        return RemoteOrder.model_validate(response.json())

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._http.aclose()

    async def __aenter__(self) -> "CoinGateClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


class CoinGateClientProvider:
    """
    Lazily builds and memoizes one CoinGateClient per provider.

    Configuration is resolved when the client is first needed, never at
    import time. Construction is guarded by a lock so a provider shared
    between concurrent requests builds exactly one client; the client is
    immutable afterwards.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client_factory: Optional[Callable[[Settings], CoinGateClient]] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client_factory = client_factory or CoinGateClient.from_settings
        self._client: Optional[CoinGateClient] = None
        self._lock = threading.Lock()

    def get_client(self) -> CoinGateClient:
        """
        Return the shared client, building it on first use.

        Raises:
            ConfigurationError: If the API token is not configured
        """
        if self._client is None:
            with self._lock:
                if self._client is None:
                    self._client = self._client_factory(self.settings)
        return self._client

    async def aclose(self) -> None:
        """Close the client if one was built."""
        with self._lock:
            client, self._client = self._client, None
        if client is not None:
            await client.aclose()
