"""
Prometheus metrics for the parking lot backend.

Tracks:
- Payment operations by outcome
- Ledger amounts moved
- Stripe API calls, errors and circuit breaker state
- Reservation lifecycle
- Lock acquisition
"""
from prometheus_client import Counter, Gauge, Histogram

# Payment metrics
payment_operations_total = Counter(
    "payment_operations_total",
    "Total payment operations",
    ["operation", "outcome"],
)

payment_operation_duration_seconds = Histogram(
    "payment_operation_duration_seconds",
    "Payment operation duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

ledger_amount_minor_units = Histogram(
    "ledger_amount_minor_units",
    "Absolute amounts written to customer balance ledgers, in minor units",
    ["kind"],  # credit, debit, refund
    buckets=(100, 500, 1000, 2500, 5000, 10000, 50000, 100000),
)

# Stripe API metrics
stripe_api_requests_total = Counter(
    "stripe_api_requests_total",
    "Total Stripe API requests",
    ["operation", "status"],
)

stripe_api_errors_total = Counter(
    "stripe_api_errors_total",
    "Total Stripe API errors",
    ["error_type"],  # transient, permanent, rate_limit
)

stripe_api_duration_seconds = Histogram(
    "stripe_api_duration_seconds",
    "Stripe API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

stripe_circuit_breaker_state = Gauge(
    "stripe_circuit_breaker_state",
    "Stripe circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Reservation metrics
reservations_total = Counter(
    "reservations_total",
    "Reservation operations",
    ["operation", "outcome"],
)

# Lock metrics
lock_acquisitions_total = Counter(
    "lock_acquisitions_total",
    "Total keyed lock acquisitions",
    ["backend", "status"],  # backend: redis, local
)

lock_hold_duration_seconds = Histogram(
    "lock_hold_duration_seconds",
    "Keyed lock hold duration in seconds",
    buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0),
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_payment_operation(operation: str, outcome: str, duration_seconds: float) -> None:
        """Record a payment operation and its duration."""
        payment_operations_total.labels(operation=operation, outcome=outcome).inc()
        payment_operation_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_ledger_entry(kind: str, amount_minor: int) -> None:
        """Record an amount written to a customer ledger."""
        ledger_amount_minor_units.labels(kind=kind).observe(abs(amount_minor))

    @staticmethod
    def record_stripe_api_call(
        operation: str, status: str, duration_seconds: float
    ) -> None:
        """Record Stripe API call."""
        stripe_api_requests_total.labels(operation=operation, status=status).inc()
        stripe_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_stripe_api_error(error_type: str) -> None:
        """Record Stripe API error."""
        stripe_api_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        stripe_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_reservation(operation: str, outcome: str) -> None:
        reservations_total.labels(operation=operation, outcome=outcome).inc()

    @staticmethod
    def record_lock(backend: str, status: str, held_seconds: float | None = None) -> None:
        lock_acquisitions_total.labels(backend=backend, status=status).inc()
        if held_seconds is not None:
            lock_hold_duration_seconds.observe(held_seconds)


metrics = MetricsCollector()
