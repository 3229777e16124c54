"""
Stripe API gateway with error classification and a circuit breaker.

Implements:
- A per-instance ``stripe.StripeClient`` carrying its own credentials
- Exponential backoff for transient errors on read-only calls
- Circuit breaker pattern
- Idempotency keys on ledger writes
"""
import asyncio
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TypeVar

import stripe
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from parking_lot.config import Settings, get_settings
from parking_lot.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RESOURCE_MISSING = "resource_missing"


class StripeErrorType(Enum):
    """Classification of Stripe errors for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these
    RATE_LIMIT = "rate_limit"  # Retry with longer backoff


class StripeError(Exception):
    """Base exception for Stripe-related errors."""

    def __init__(
        self,
        message: str,
        error_type: StripeErrorType,
        code: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize Stripe error.

        Args:
            message: Error message
            error_type: Classification of error
            code: Stripe error code (e.g. ``resource_missing``)
            original_error: Original Stripe exception
        """
        super().__init__(message)
        self.error_type = error_type
        self.code = code
        self.original_error = original_error

    @property
    def is_resource_missing(self) -> bool:
        return self.code == RESOURCE_MISSING


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, StripeError) and error.error_type != StripeErrorType.PERMANENT


# Only reads are retried; writes rely on idempotency keys instead.
read_retry = retry(
    retry=retry_if_exception(_is_retryable),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    reraise=True,
)


class CircuitBreaker:
    """
    Circuit breaker for Stripe API calls.

    Prevents cascading failures by temporarily stopping requests
    when error rate exceeds threshold.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Execute function with circuit breaker protection.

        Raises:
            StripeError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time
                and time.time() - self.last_failure_time > self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
                logger.info("circuit_breaker_half_open")
            else:
                raise StripeError(
                    "Circuit breaker is open",
                    StripeErrorType.TRANSIENT,
                )

        try:
            result = func(*args, **kwargs)
        except stripe.InvalidRequestError:
            # The API answered; a bad request says nothing about its health.
            self.on_success()
            raise
        except Exception:
            self.on_failure()
            raise
        self.on_success()
        return result

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.failure_count >= self.failure_threshold:
            self._set_state("open")
            logger.warning(
                "circuit_breaker_opened",
                failure_count=self.failure_count,
            )

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)


class StripeGateway:
    """
    Thin async wrapper over the Stripe API surface the backend uses.

    Every call goes through one ``stripe.StripeClient`` built from settings,
    so credentials never live in module-level state. Blocking SDK calls run
    in a worker thread.
    """

    def __init__(
        self,
        client: Optional[stripe.StripeClient] = None,
        settings: Optional[Settings] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        """
        Initialize the gateway.

        Args:
            client: Preconfigured Stripe client (built from settings if omitted)
            settings: Application settings
            circuit_breaker: Optional circuit breaker
        """
        self.settings = settings or get_settings()
        self._client = client or stripe.StripeClient(
            self.settings.stripe_secret_key,
            stripe_version=self.settings.stripe_api_version,
            max_network_retries=self.settings.stripe_max_network_retries,
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker()

        logger.info(
            "stripe_gateway_initialized",
            api_version=self.settings.stripe_api_version,
            test_mode=self.settings.is_test_mode,
        )

    @staticmethod
    def _classify_error(error: stripe.StripeError) -> StripeErrorType:
        """
        Classify Stripe error for retry logic.

        Args:
            error: Stripe error

        Returns:
            StripeErrorType: Error classification
        """
        if isinstance(error, stripe.RateLimitError):
            return StripeErrorType.RATE_LIMIT
        elif isinstance(error, (stripe.APIConnectionError, stripe.APIError)):
            return StripeErrorType.TRANSIENT
        elif isinstance(
            error,
            (
                stripe.CardError,
                stripe.InvalidRequestError,
                stripe.AuthenticationError,
                stripe.PermissionError,
                stripe.IdempotencyError,
            ),
        ):
            return StripeErrorType.PERMANENT
        else:
            # Unknown errors are treated as transient
            return StripeErrorType.TRANSIENT

    def _to_gateway_error(self, operation: str, error: stripe.StripeError) -> StripeError:
        error_type = self._classify_error(error)
        code = getattr(error, "code", None)
        message = getattr(error, "user_message", None) or str(error)

        logger.error(
            "stripe_api_error",
            operation=operation,
            error_type=error_type.value,
            error_code=code,
            error_message=str(error),
        )
        metrics.record_stripe_api_error(error_type.value)

        return StripeError(
            message=message,
            error_type=error_type,
            code=code,
            original_error=error,
        )

    async def _call(self, operation: str, func: Callable[[], T]) -> T:
        start_time = time.time()
        try:
            result = await asyncio.to_thread(self.circuit_breaker.call, func)
        except stripe.StripeError as e:
            metrics.record_stripe_api_call(operation, "error", time.time() - start_time)
            raise self._to_gateway_error(operation, e) from e
        metrics.record_stripe_api_call(operation, "success", time.time() - start_time)
        return result

    # Customers

    @read_retry
    async def find_customer(self, email: str) -> Optional[stripe.Customer]:
        """Return the first customer registered under ``email``, if any."""
        customers = await self._call(
            "customer_list",
            lambda: self._client.customers.list(params={"email": email, "limit": 1}),
        )
        return customers.data[0] if customers.data else None

    async def create_customer(self, email: str) -> stripe.Customer:
        logger.info("creating_customer", email=email)
        return await self._call(
            "customer_create",
            lambda: self._client.customers.create(
                params={"email": email},
                options={"idempotency_key": f"customer:{email}"},
            ),
        )

    async def get_or_create_customer(self, email: str) -> stripe.Customer:
        customer = await self.find_customer(email)
        if customer is None:
            customer = await self.create_customer(email)
        return customer

    @read_retry
    async def retrieve_customer(self, customer_id: str) -> stripe.Customer:
        return await self._call(
            "customer_retrieve", lambda: self._client.customers.retrieve(customer_id)
        )

    # Payment intents

    async def create_payment_intent(
        self,
        customer_id: str,
        amount_minor: int,
        currency: str,
        receipt_email: Optional[str] = None,
    ) -> stripe.PaymentIntent:
        """
        Create a PaymentIntent with automatic payment methods.

        Args:
            customer_id: Stripe customer ID
            amount_minor: Amount in minor currency units
            currency: Currency code
            receipt_email: Where Stripe sends the receipt

        Returns:
            stripe.PaymentIntent: Created payment intent
        """
        logger.info(
            "creating_payment_intent",
            customer_id=customer_id,
            amount_minor=amount_minor,
            currency=currency,
        )
        params: Dict[str, Any] = {
            "amount": amount_minor,
            "currency": currency.lower(),
            "customer": customer_id,
            "automatic_payment_methods": {"enabled": True},
        }
        if receipt_email:
            params["receipt_email"] = receipt_email

        payment_intent = await self._call(
            "payment_intent_create",
            lambda: self._client.payment_intents.create(params=params),
        )
        logger.info(
            "payment_intent_created",
            payment_intent_id=payment_intent.id,
            status=payment_intent.status,
        )
        return payment_intent

    @read_retry
    async def retrieve_payment_intent(self, payment_intent_id: str) -> stripe.PaymentIntent:
        logger.info("retrieving_payment_intent", payment_intent_id=payment_intent_id)
        return await self._call(
            "payment_intent_retrieve",
            lambda: self._client.payment_intents.retrieve(payment_intent_id),
        )

    # Charges

    @read_retry
    async def retrieve_charge(self, charge_id: str) -> stripe.Charge:
        return await self._call(
            "charge_retrieve", lambda: self._client.charges.retrieve(charge_id)
        )

    async def update_charge(
        self,
        charge_id: str,
        metadata: Optional[Dict[str, str]] = None,
        description: Optional[str] = None,
    ) -> stripe.Charge:
        params: Dict[str, Any] = {}
        if metadata:
            params["metadata"] = metadata
        if description is not None:
            params["description"] = description
        return await self._call(
            "charge_update",
            lambda: self._client.charges.update(charge_id, params=params),
        )

    @read_retry
    async def list_charges(self, customer_id: str) -> List[stripe.Charge]:
        return await self._call(
            "charge_list",
            lambda: list(
                self._client.charges.list(
                    params={"customer": customer_id, "limit": 100}
                ).auto_paging_iter()
            ),
        )

    # Customer balance ledger

    async def create_balance_transaction(
        self,
        customer_id: str,
        amount_minor: int,
        currency: str,
        description: str,
        metadata: Optional[Dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> stripe.CustomerBalanceTransaction:
        """
        Append an entry to a customer's balance ledger.

        Positive amounts add funds, negative amounts spend them.
        """
        params: Dict[str, Any] = {
            "amount": amount_minor,
            "currency": currency.lower(),
            "description": description,
        }
        if metadata:
            params["metadata"] = metadata
        options: Dict[str, Any] = {}
        if idempotency_key:
            options["idempotency_key"] = idempotency_key

        transaction = await self._call(
            "balance_transaction_create",
            lambda: self._client.customers.balance_transactions.create(
                customer_id, params=params, options=options
            ),
        )
        logger.info(
            "balance_transaction_created",
            customer_id=customer_id,
            transaction_id=transaction.id,
            amount_minor=amount_minor,
        )
        return transaction

    @read_retry
    async def list_balance_transactions(
        self, customer_id: str
    ) -> List[stripe.CustomerBalanceTransaction]:
        return await self._call(
            "balance_transaction_list",
            lambda: list(
                self._client.customers.balance_transactions.list(
                    customer_id, params={"limit": 100}
                ).auto_paging_iter()
            ),
        )

    @read_retry
    async def retrieve_balance_transaction(
        self, customer_id: str, transaction_id: str
    ) -> stripe.CustomerBalanceTransaction:
        return await self._call(
            "balance_transaction_retrieve",
            lambda: self._client.customers.balance_transactions.retrieve(
                customer_id, transaction_id
            ),
        )

    # Refunds

    async def create_refund(
        self, charge_id: str, idempotency_key: Optional[str] = None
    ) -> stripe.Refund:
        """
        Refund a charge in full.

        Args:
            charge_id: Stripe charge ID
            idempotency_key: Optional idempotency key

        Returns:
            stripe.Refund: Created refund
        """
        logger.info("creating_refund", charge_id=charge_id)
        options: Dict[str, Any] = {}
        if idempotency_key:
            options["idempotency_key"] = idempotency_key

        refund = await self._call(
            "refund_create",
            lambda: self._client.refunds.create(
                params={"charge": charge_id}, options=options
            ),
        )
        logger.info("refund_created", refund_id=refund.id, status=refund.status)
        return refund

    async def ping(self) -> None:
        """Cheapest authenticated call, used by health checks."""
        await self._call(
            "ping", lambda: self._client.customers.list(params={"limit": 1})
        )
