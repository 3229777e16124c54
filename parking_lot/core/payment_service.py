"""
Payment orchestration on top of the provider's customer balance ledger.

Funds flow:
1. A card payment is taken through a PaymentIntent
2. When it succeeds, the charged amount is credited to the customer's
   balance and the charge is tagged with the crediting ledger entry
3. Parking is paid by debiting the balance
4. Refunds reverse the ledger entry and, for card payments, the charge

Ledger entries are linked through metadata (``balance_transaction_id`` on
charges, ``refund_of`` on refund entries) and every reversal is written with
a provider idempotency key, so repeated calls cannot move funds twice.
"""
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import structlog

from parking_lot.config import Settings, get_settings
from parking_lot.core.exceptions import (
    CustomerNotFoundError,
    PaymentError,
    PaymentValidationError,
)
from parking_lot.core.locking import KeyedLock
from parking_lot.integrations.email_client import EmailClient
from parking_lot.integrations.stripe_client import StripeError, StripeGateway
from parking_lot.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

MINIMUM_PAYMENT_AMOUNT = Decimal("2")

# Result strings
SUCCESS = "success"
INSUFFICIENT_BALANCE = "insufficient-balance"
PAYMENT_ERROR_STATUS = "payment-error"
CHARGE_NOT_FOUND = "The charge with the specified ID does not exist."
CHARGE_ALREADY_REFUNDED = "This charge has already been refunded."
INVALID_BALANCE_TRANSACTION_ID = "Invalid balance transaction ID."
INVALID_TRANSACTION_ID = "Invalid transaction ID."
TRANSACTION_ALREADY_REFUNDED = "A refund has already been issued for this transaction."
TRANSACTION_IS_REFUND = "This transaction is a refund."
TRANSACTION_NOT_FOUND = "The balance transaction with the specified ID does not exist."
PARKING_PAYMENT_NOT_REFUNDABLE = "Parking payments cannot be refunded."

# Ledger markers
BALANCE_TRANSACTION_KEY = "balance_transaction_id"
REFUND_OF_KEY = "refund_of"
REFUND_DESCRIPTION_PREFIX = "Refund for transaction:"
REFUNDED_CHARGE_DESCRIPTION = "refunded"
PARKING_PAYMENT_DESCRIPTION = "Payment for parking spot"
PARKING_PAYMENT_KIND = "parking_payment"
REFERENCE_KEY = "reference"

PAYMENT_INTENT_STATUSES = {
    "succeeded": "payment_successful",
    "processing": "payment_processing",
    "requires_action": "payment_requires_action",
    "canceled": "payment_canceled",
    "requires_capture": "payment_requires_capture",
    "requires_confirmation": "payment_requires_confirmation",
    "requires_payment_method": "payment_requires_payment_method",
}


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount to integer minor units."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_major_units(amount_minor: int) -> Decimal:
    """Convert integer minor units to a major-unit amount."""
    return (Decimal(amount_minor) / 100).quantize(Decimal("0.01"))


def _as_amount(value: Any) -> Decimal:
    if value is None:
        raise PaymentValidationError("Amount is required.")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise PaymentValidationError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise PaymentValidationError(f"Invalid amount: {value!r}")
    return amount


def _metadata(stripe_object: Any) -> Dict[str, Any]:
    return getattr(stripe_object, "metadata", None) or {}


def _object_id(value: Any) -> Optional[str]:
    """IDs of expandable fields arrive either as strings or as expanded objects."""
    if value is None or isinstance(value, str):
        return value
    return getattr(value, "id", None)


def _is_refund_entry(transaction: Any) -> bool:
    if _metadata(transaction).get(REFUND_OF_KEY):
        return True
    description = getattr(transaction, "description", None) or ""
    return REFUND_DESCRIPTION_PREFIX in description


def _refunds_transaction(entry: Any, transaction_id: str) -> bool:
    if _metadata(entry).get(REFUND_OF_KEY) == transaction_id:
        return True
    description = getattr(entry, "description", None) or ""
    # Provider ids are word characters; "txn_1" must not match "txn_12".
    pattern = rf"{re.escape(REFUND_DESCRIPTION_PREFIX)}\s*{re.escape(transaction_id)}(?!\w)"
    return re.search(pattern, description) is not None


def _is_parking_payment(transaction: Any) -> bool:
    return _metadata(transaction).get("kind") == PARKING_PAYMENT_KIND


def _is_refunded_charge(charge: Any) -> bool:
    return (
        getattr(charge, "description", None) == REFUNDED_CHARGE_DESCRIPTION
        or _metadata(charge).get("refunded") == "true"
    )


@dataclass
class TransactionRecord:
    """One row of a customer's transaction history."""

    id: str
    object: str
    amount: Decimal
    currency: str
    description: Optional[str]
    created: datetime
    status: Optional[str] = None

    @classmethod
    def from_stripe(cls, stripe_object: Any) -> "TransactionRecord":
        return cls(
            id=stripe_object.id,
            object=stripe_object.object,
            amount=to_major_units(stripe_object.amount),
            currency=stripe_object.currency,
            description=getattr(stripe_object, "description", None),
            created=datetime.fromtimestamp(stripe_object.created, tz=timezone.utc),
            status=getattr(stripe_object, "status", None) if stripe_object.object == "charge" else None,
        )


class PaymentService:
    """
    Payment operations for parking customers.

    Customers are identified by email; their balance lives only at the
    provider.
    """

    def __init__(
        self,
        gateway: Optional[StripeGateway] = None,
        email_client: Optional[EmailClient] = None,
        locks: Optional[KeyedLock] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the payment service.

        Args:
            gateway: Stripe gateway
            email_client: Notification mailer
            locks: Keyed lock registry serializing per-customer ledger writes
            settings: Application settings
        """
        self.settings = settings or get_settings()
        self.gateway = gateway or StripeGateway(settings=self.settings)
        self.email_client = email_client or EmailClient(settings=self.settings)
        self.locks = locks or KeyedLock(settings=self.settings)
        self.currency = self.settings.stripe_currency

        logger.info("payment_service_initialized", currency=self.currency)

    @staticmethod
    def _validate_payment_details(email: Optional[str], amount: Any) -> Decimal:
        """
        Validate payment intent parameters.

        Raises:
            PaymentValidationError: If validation fails
        """
        if not email or not email.strip():
            raise PaymentValidationError("User email is required.")

        value = _as_amount(amount)
        if value < MINIMUM_PAYMENT_AMOUNT:
            raise PaymentValidationError(
                f"Amount must be at least {MINIMUM_PAYMENT_AMOUNT}."
            )
        return value

    async def _require_customer(self, email: str) -> Any:
        customer = await self.gateway.find_customer(email)
        if customer is None:
            raise CustomerNotFoundError(email)
        return customer

    async def create_payment_intent(self, email: Optional[str], amount: Any) -> Dict[str, str]:
        """
        Start a card payment that tops up the customer's balance.

        Args:
            email: Customer email
            amount: Amount in major units, at least 2

        Returns:
            Dict[str, str]: ``client_secret`` and ``payment_intent_id``

        Raises:
            PaymentValidationError: If input validation fails
            PaymentError: If the provider call fails
        """
        start_time = time.time()
        value = self._validate_payment_details(email, amount)

        try:
            customer = await self.gateway.get_or_create_customer(email)
            payment_intent = await self.gateway.create_payment_intent(
                customer_id=customer.id,
                amount_minor=to_minor_units(value),
                currency=self.currency,
                receipt_email=customer.email or email,
            )
        except StripeError as e:
            logger.error("payment_intent_creation_failed", email=email, error=str(e))
            metrics.record_payment_operation(
                "create_payment_intent", "error", time.time() - start_time
            )
            raise PaymentError("Error processing payment.") from e

        metrics.record_payment_operation(
            "create_payment_intent", "created", time.time() - start_time
        )
        return {
            "client_secret": payment_intent.client_secret,
            "payment_intent_id": payment_intent.id,
        }

    async def handle_payment_result(self, payment_intent_id: str) -> str:
        """
        Resolve a payment intent and credit the balance when it succeeded.

        Returns the intent status for every status. Provider failures
        return ``payment-error`` rather than raising.
        """
        start_time = time.time()
        try:
            payment_intent = await self.gateway.retrieve_payment_intent(payment_intent_id)
            payment_status = payment_intent.status

            logger.info(
                PAYMENT_INTENT_STATUSES.get(payment_status, "payment_status_unknown"),
                payment_intent_id=payment_intent_id,
                status=payment_status,
                amount=str(to_major_units(payment_intent.amount)),
            )

            if payment_status == "succeeded":
                await self._credit_succeeded_intent(payment_intent)

        except StripeError as e:
            logger.error(
                "payment_result_failed", payment_intent_id=payment_intent_id, error=str(e)
            )
            metrics.record_payment_operation(
                "handle_payment_result", "error", time.time() - start_time
            )
            return PAYMENT_ERROR_STATUS

        metrics.record_payment_operation(
            "handle_payment_result", payment_status, time.time() - start_time
        )
        return payment_status

    async def _credit_succeeded_intent(self, payment_intent: Any) -> None:
        charge_id = _object_id(payment_intent.latest_charge)
        customer_id = _object_id(payment_intent.customer)
        if not charge_id or not customer_id:
            logger.error(
                "succeeded_intent_incomplete",
                payment_intent_id=payment_intent.id,
                charge_id=charge_id,
                customer_id=customer_id,
            )
            return

        charge = await self.gateway.retrieve_charge(charge_id)
        if _metadata(charge).get(BALANCE_TRANSACTION_KEY):
            logger.info(
                "payment_already_credited",
                payment_intent_id=payment_intent.id,
                balance_transaction_id=_metadata(charge)[BALANCE_TRANSACTION_KEY],
            )
            return

        customer = await self.gateway.retrieve_customer(customer_id)
        amount_minor = payment_intent.amount
        amount = to_major_units(amount_minor)

        transaction = await self.gateway.create_balance_transaction(
            customer_id=customer.id,
            amount_minor=amount_minor,
            currency=payment_intent.currency,
            description=f"Funds added {amount}",
            metadata={"payment_intent_id": payment_intent.id, "charge_id": charge.id},
            idempotency_key=f"credit:{payment_intent.id}",
        )
        await self.gateway.update_charge(
            charge.id, metadata={BALANCE_TRANSACTION_KEY: transaction.id}
        )
        metrics.record_ledger_entry("credit", amount_minor)

        if customer.email:
            await self.email_client.send_confirmation_email(
                customer.email, amount, payment_intent.currency
            )

    async def retrieve_customer_balance(self, email: str) -> Decimal:
        """
        Current balance of the customer, in major units.

        Raises:
            CustomerNotFoundError: If no customer matches the email
            PaymentError: If the provider call fails
        """
        try:
            customer = await self._require_customer(email)
        except StripeError as e:
            raise PaymentError("Error retrieving customer balance.") from e
        return to_major_units(customer.balance or 0)

    async def get_transactions_history(self, email: str) -> List[TransactionRecord]:
        """
        Balance ledger entries and card charges, newest first.

        Raises:
            CustomerNotFoundError: If no customer matches the email
            PaymentError: If the provider call fails
        """
        try:
            customer = await self._require_customer(email)
            ledger = await self.gateway.list_balance_transactions(customer.id)
            charges = await self.gateway.list_charges(customer.id)
        except StripeError as e:
            raise PaymentError("Error retrieving customer transactions.") from e

        records = [TransactionRecord.from_stripe(entry) for entry in ledger]
        records.extend(TransactionRecord.from_stripe(charge) for charge in charges)
        records.sort(key=lambda record: record.created, reverse=True)
        return records

    async def pay_for_parking_spot(
        self, email: str, amount: Any, reference: Optional[str] = None
    ) -> str:
        """
        Debit the customer's balance for a parking spot.

        Args:
            email: Customer email
            amount: Amount in major units
            reference: Optional caller reference (e.g. a reservation id); a
                reference already debited in the ledger is not debited again

        Returns:
            str: ``success`` or ``insufficient-balance``

        Raises:
            PaymentValidationError: If the amount is not positive
            CustomerNotFoundError: If no customer matches the email
            PaymentError: If the provider call fails
        """
        start_time = time.time()
        value = _as_amount(amount)
        if value <= 0:
            raise PaymentValidationError("Amount must be positive.")

        async with self.locks.hold(f"customer:{email}"):
            try:
                customer = await self._require_customer(email)

                if reference:
                    # Provider idempotency keys expire; the ledger itself is the record.
                    ledger = await self.gateway.list_balance_transactions(customer.id)
                    existing = next(
                        (
                            entry
                            for entry in ledger
                            if _is_parking_payment(entry)
                            and _metadata(entry).get(REFERENCE_KEY) == reference
                        ),
                        None,
                    )
                    if existing is not None:
                        logger.info(
                            "parking_payment_already_recorded",
                            email=email,
                            reference=reference,
                            transaction_id=existing.id,
                            amount_minor=existing.amount,
                        )
                        metrics.record_payment_operation(
                            "pay_for_parking_spot", "already_paid", time.time() - start_time
                        )
                        return SUCCESS

                balance = to_major_units(customer.balance or 0)

                if balance - value < 0:
                    logger.info(
                        "parking_payment_insufficient_balance",
                        email=email,
                        balance=str(balance),
                        amount=str(value),
                    )
                    metrics.record_payment_operation(
                        "pay_for_parking_spot", INSUFFICIENT_BALANCE, time.time() - start_time
                    )
                    return INSUFFICIENT_BALANCE

                amount_minor = to_minor_units(value)
                metadata = {"kind": PARKING_PAYMENT_KIND}
                if reference:
                    metadata[REFERENCE_KEY] = reference
                await self.gateway.create_balance_transaction(
                    customer_id=customer.id,
                    amount_minor=-amount_minor,
                    currency=self.currency,
                    description=PARKING_PAYMENT_DESCRIPTION,
                    metadata=metadata,
                    idempotency_key=(
                        f"parking:{reference}:{amount_minor}" if reference else None
                    ),
                )
            except StripeError as e:
                logger.error("parking_payment_failed", email=email, error=str(e))
                raise PaymentError(
                    "Error creating customer balance transaction for parking spot."
                ) from e

        metrics.record_ledger_entry("debit", amount_minor)
        metrics.record_payment_operation(
            "pay_for_parking_spot", SUCCESS, time.time() - start_time
        )
        logger.info("parking_payment_succeeded", email=email, amount=str(value))
        return SUCCESS

    async def create_card_payment_refund(self, charge_id: str, email: str) -> str:
        """
        Refund a card payment and reverse the balance credit it produced.

        Returns:
            str: The provider refund status, or a message explaining why
            nothing was refunded

        Raises:
            PaymentError: If the provider fails outside the checked cases
        """
        start_time = time.time()
        try:
            try:
                charge = await self.gateway.retrieve_charge(charge_id)
            except StripeError as e:
                if e.is_resource_missing:
                    return CHARGE_NOT_FOUND
                raise

            if _is_refunded_charge(charge):
                return CHARGE_ALREADY_REFUNDED

            balance_transaction_id = str(
                _metadata(charge).get(BALANCE_TRANSACTION_KEY) or ""
            ).strip()
            if not balance_transaction_id:
                return INVALID_BALANCE_TRANSACTION_ID

            response = await self.refund_customer_balance_transaction(
                balance_transaction_id, email
            )
            # A reversal left behind by an interrupted earlier attempt still lets
            # the charge refund complete.
            if response not in (SUCCESS, TRANSACTION_ALREADY_REFUNDED):
                return f"Error refunding the associated balance transaction: {response}"

            refund = await self.gateway.create_refund(
                charge.id, idempotency_key=f"charge-refund:{charge.id}"
            )
            await self.gateway.update_charge(
                charge.id,
                metadata={"refunded": "true"},
                description=REFUNDED_CHARGE_DESCRIPTION,
            )
        except StripeError as e:
            logger.error("card_refund_failed", charge_id=charge_id, error=str(e))
            raise PaymentError(str(e)) from e

        logger.info(
            "card_refund_created",
            charge_id=charge_id,
            refund_id=refund.id,
            status=refund.status,
        )
        metrics.record_payment_operation(
            "create_card_payment_refund", refund.status, time.time() - start_time
        )
        return refund.status

    async def refund_customer_balance_transaction(
        self,
        transaction_id: Optional[str],
        email: str,
        allow_parking_payments: bool = True,
    ) -> str:
        """
        Reverse one ledger entry with an entry of the negated amount.

        Args:
            transaction_id: Ledger entry to reverse
            email: Customer email
            allow_parking_payments: Whether parking debits may be reversed;
                customer-initiated refunds pass False

        Returns:
            str: ``success`` or a message explaining why nothing was refunded
        """
        if not transaction_id or not transaction_id.strip():
            return INVALID_TRANSACTION_ID
        transaction_id = transaction_id.strip()

        async with self.locks.hold(f"customer:{email}"):
            try:
                customer = await self.gateway.find_customer(email)
                if customer is None:
                    return f"No customer found with email: {email}"

                ledger = await self.gateway.list_balance_transactions(customer.id)
                if any(_refunds_transaction(entry, transaction_id) for entry in ledger):
                    return TRANSACTION_ALREADY_REFUNDED

                try:
                    transaction = await self.gateway.retrieve_balance_transaction(
                        customer.id, transaction_id
                    )
                except StripeError as e:
                    if e.is_resource_missing:
                        return TRANSACTION_NOT_FOUND
                    raise

                if _is_refund_entry(transaction):
                    return TRANSACTION_IS_REFUND
                if not allow_parking_payments and _is_parking_payment(transaction):
                    return PARKING_PAYMENT_NOT_REFUNDABLE

                await self.gateway.create_balance_transaction(
                    customer_id=customer.id,
                    amount_minor=-transaction.amount,
                    currency=transaction.currency,
                    description=f"{REFUND_DESCRIPTION_PREFIX} {transaction_id}",
                    metadata={REFUND_OF_KEY: transaction_id},
                    idempotency_key=f"refund:{transaction_id}",
                )
            except StripeError as e:
                logger.error(
                    "balance_refund_failed", transaction_id=transaction_id, error=str(e)
                )
                return f"Error refunding customer balance transaction: {e}"

        metrics.record_ledger_entry("refund", transaction.amount)
        logger.info(
            "balance_transaction_refunded",
            transaction_id=transaction_id,
            amount_minor=-transaction.amount,
        )
        return SUCCESS
