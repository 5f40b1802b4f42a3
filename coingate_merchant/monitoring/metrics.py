"""
Prometheus metrics for the CoinGate payment bridge.

Tracks:
- CoinGate API calls by operation and status
- CoinGate API errors by type
- Order initiation results
- Callback reconciliation outcomes and duration
"""
from prometheus_client import Counter, Histogram

# CoinGate API metrics
coingate_api_requests_total = Counter(
    "coingate_api_requests_total",
    "Total CoinGate API requests",
    ["operation", "status"],  # operation: create_order, get_order
)

coingate_api_errors_total = Counter(
    "coingate_api_errors_total",
    "Total CoinGate API errors",
    ["error_type"],  # transient, permanent, rate_limit
)

coingate_api_duration_seconds = Histogram(
    "coingate_api_duration_seconds",
    "CoinGate API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

# Order initiation metrics
order_initiations_total = Counter(
    "coingate_order_initiations_total",
    "Total order initiation attempts",
    ["result"],  # created, configuration_error, remote_error, failed
)

# Callback metrics
callbacks_reconciled_total = Counter(
    "coingate_callbacks_reconciled_total",
    "Total callback reconciliations",
    ["outcome"],
)

callback_reconciliation_duration_seconds = Histogram(
    "coingate_callback_reconciliation_duration_seconds",
    "Callback reconciliation duration in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_api_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record CoinGate API call."""
        coingate_api_requests_total.labels(operation=operation, status=status).inc()
        coingate_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_api_error(error_type: str) -> None:
        """Record CoinGate API error."""
        coingate_api_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def record_order_initiation(result: str) -> None:
        """Record an order initiation result."""
        order_initiations_total.labels(result=result).inc()

    @staticmethod
    def record_callback(outcome: str, duration_seconds: float) -> None:
        """Record callback reconciliation."""
        callbacks_reconciled_total.labels(outcome=outcome).inc()
        callback_reconciliation_duration_seconds.observe(duration_seconds)


# Export singleton instance
metrics = MetricsCollector()
