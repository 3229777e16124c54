"""
Pytest configuration and fixtures.
"""
import asyncio
import itertools
import os
from types import SimpleNamespace
from typing import Any, AsyncGenerator, Dict, List, Optional
from unittest.mock import AsyncMock

# Settings are read on first import of the application; keep them local.
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_fake_key_for_testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("APP_ENV", "test")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from parking_lot.config import Settings, get_settings
from parking_lot.core.locking import KeyedLock
from parking_lot.core.payment_service import PaymentService
from parking_lot.core.records import CarService, ParkingSpotService, UserService
from parking_lot.core.reservations import ReservationManager
from parking_lot.database.models import Base
from parking_lot.integrations.email_client import EmailClient
from parking_lot.integrations.stripe_client import StripeError, StripeErrorType


def _missing(kind: str, object_id: str) -> StripeError:
    return StripeError(
        f"No such {kind}: '{object_id}'",
        StripeErrorType.PERMANENT,
        code="resource_missing",
    )


class FakeStripeGateway:
    """
    In-memory stand-in for ``StripeGateway``.

    Keeps customers, payment intents, charges, refunds and the per-customer
    balance ledger, honoring idempotency keys on writes the way the API does.
    """

    def __init__(self) -> None:
        self.customers: Dict[str, SimpleNamespace] = {}
        self.payment_intents: Dict[str, SimpleNamespace] = {}
        self.charges: Dict[str, SimpleNamespace] = {}
        self.ledger: Dict[str, List[SimpleNamespace]] = {}
        self.refunds: List[SimpleNamespace] = []
        self._idempotent: Dict[str, Any] = {}
        self._ids = itertools.count(1)
        self._clock = itertools.count(1_700_000_000, 60)

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids):06d}"

    def _replay(self, key: Optional[str], params: Dict[str, Any]) -> Optional[Any]:
        """Return the stored result for a key; a key reused with other params is refused."""
        if not key or key not in self._idempotent:
            return None
        stored_params, result = self._idempotent[key]
        if stored_params != params:
            raise StripeError(
                "Keys for idempotent requests can only be used with the same "
                "parameters they were first used with.",
                StripeErrorType.PERMANENT,
                code="idempotency_key_in_use",
            )
        return result

    def _remember(self, key: Optional[str], params: Dict[str, Any], result: Any) -> Any:
        if key:
            self._idempotent[key] = (params, result)
        return result

    # Customers

    async def find_customer(self, email: str) -> Optional[SimpleNamespace]:
        await asyncio.sleep(0)
        for customer in self.customers.values():
            if customer.email == email:
                return customer
        return None

    async def create_customer(self, email: str) -> SimpleNamespace:
        customer = SimpleNamespace(id=self._new_id("cus"), email=email, balance=0)
        self.customers[customer.id] = customer
        self.ledger[customer.id] = []
        return customer

    async def get_or_create_customer(self, email: str) -> SimpleNamespace:
        customer = await self.find_customer(email)
        if customer is None:
            customer = await self.create_customer(email)
        return customer

    async def retrieve_customer(self, customer_id: str) -> SimpleNamespace:
        if customer_id not in self.customers:
            raise _missing("customer", customer_id)
        return self.customers[customer_id]

    # Payment intents

    async def create_payment_intent(
        self,
        customer_id: str,
        amount_minor: int,
        currency: str,
        receipt_email: Optional[str] = None,
    ) -> SimpleNamespace:
        intent_id = self._new_id("pi")
        intent = SimpleNamespace(
            id=intent_id,
            client_secret=f"{intent_id}_secret_test",
            amount=amount_minor,
            currency=currency,
            customer=customer_id,
            receipt_email=receipt_email,
            status="requires_payment_method",
            latest_charge=None,
        )
        self.payment_intents[intent_id] = intent
        return intent

    async def retrieve_payment_intent(self, payment_intent_id: str) -> SimpleNamespace:
        if payment_intent_id not in self.payment_intents:
            raise _missing("payment_intent", payment_intent_id)
        return self.payment_intents[payment_intent_id]

    def complete_payment_intent(self, payment_intent_id: str) -> SimpleNamespace:
        """Simulate the customer confirming the intent with a card."""
        intent = self.payment_intents[payment_intent_id]
        charge = SimpleNamespace(
            id=self._new_id("ch"),
            object="charge",
            amount=intent.amount,
            currency=intent.currency,
            customer=intent.customer,
            description=None,
            metadata={},
            status="succeeded",
            created=next(self._clock),
        )
        self.charges[charge.id] = charge
        intent.status = "succeeded"
        intent.latest_charge = charge.id
        return charge

    # Charges

    async def retrieve_charge(self, charge_id: str) -> SimpleNamespace:
        if charge_id not in self.charges:
            raise _missing("charge", charge_id)
        return self.charges[charge_id]

    async def update_charge(
        self,
        charge_id: str,
        metadata: Optional[Dict[str, str]] = None,
        description: Optional[str] = None,
    ) -> SimpleNamespace:
        charge = await self.retrieve_charge(charge_id)
        if metadata:
            charge.metadata = {**charge.metadata, **metadata}
        if description is not None:
            charge.description = description
        return charge

    async def list_charges(self, customer_id: str) -> List[SimpleNamespace]:
        return [c for c in self.charges.values() if c.customer == customer_id]

    # Customer balance ledger

    def add_ledger_entry(
        self,
        customer_id: str,
        amount_minor: int,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
        currency: str = "ron",
    ) -> SimpleNamespace:
        entry = SimpleNamespace(
            id=self._new_id("cbtxn"),
            object="customer_balance_transaction",
            amount=amount_minor,
            currency=currency,
            customer=customer_id,
            description=description,
            metadata=dict(metadata or {}),
            created=next(self._clock),
        )
        self.ledger[customer_id].append(entry)
        self.customers[customer_id].balance += amount_minor
        return entry

    async def create_balance_transaction(
        self,
        customer_id: str,
        amount_minor: int,
        currency: str,
        description: str,
        metadata: Optional[Dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> SimpleNamespace:
        params = {
            "customer": customer_id,
            "amount": amount_minor,
            "currency": currency,
            "description": description,
            "metadata": metadata or {},
        }
        replayed = self._replay(idempotency_key, params)
        if replayed is not None:
            return replayed
        entry = self.add_ledger_entry(
            customer_id, amount_minor, description, metadata, currency=currency
        )
        return self._remember(idempotency_key, params, entry)

    async def list_balance_transactions(self, customer_id: str) -> List[SimpleNamespace]:
        return list(reversed(self.ledger.get(customer_id, [])))

    async def retrieve_balance_transaction(
        self, customer_id: str, transaction_id: str
    ) -> SimpleNamespace:
        for entry in self.ledger.get(customer_id, []):
            if entry.id == transaction_id:
                return entry
        raise _missing("customer balance transaction", transaction_id)

    # Refunds

    async def create_refund(
        self, charge_id: str, idempotency_key: Optional[str] = None
    ) -> SimpleNamespace:
        params = {"charge": charge_id}
        replayed = self._replay(idempotency_key, params)
        if replayed is not None:
            return replayed
        charge = await self.retrieve_charge(charge_id)
        refund = SimpleNamespace(
            id=self._new_id("re"), charge=charge.id, amount=charge.amount, status="succeeded"
        )
        self.refunds.append(refund)
        return self._remember(idempotency_key, params, refund)

    async def ping(self) -> None:
        return None


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        stripe_secret_key="sk_test_fake_key_for_testing",
        database_url="sqlite+aiosqlite:///:memory:",
        jwt_secret="test-jwt-secret",
        redis_url=None,
        redis_lock_timeout=2,
        smtp_host=None,
        app_name="parking-lot-test",
        app_env="test",
        log_level="DEBUG",
    )


@pytest.fixture
def fake_gateway() -> FakeStripeGateway:
    return FakeStripeGateway()


@pytest.fixture
def email_client() -> AsyncMock:
    client = AsyncMock(spec=EmailClient)
    client.send_confirmation_email.return_value = True
    return client


@pytest.fixture
def locks(test_settings: Settings) -> KeyedLock:
    return KeyedLock(settings=test_settings)


@pytest.fixture
def payment_service(
    fake_gateway: FakeStripeGateway,
    email_client: AsyncMock,
    locks: KeyedLock,
    test_settings: Settings,
) -> PaymentService:
    return PaymentService(
        gateway=fake_gateway,
        email_client=email_client,
        locks=locks,
        settings=test_settings,
    )


@pytest.fixture
def reservation_manager(locks: KeyedLock, test_settings: Settings) -> ReservationManager:
    return ReservationManager(locks=locks, settings=test_settings)


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], Any]:
    """In-memory SQLite database shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    await engine.dispose()


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def owner(test_db: AsyncSession) -> Any:
    return await UserService().create_user("owner@example.com", "owner", "owner-password", test_db)


@pytest_asyncio.fixture
async def stranger(test_db: AsyncSession) -> Any:
    return await UserService().create_user(
        "stranger@example.com", "stranger", "stranger-password", test_db
    )


@pytest_asyncio.fixture
async def car(test_db: AsyncSession, owner: Any) -> Any:
    return await CarService().add_car(owner, "CJ 12 ABC", test_db, brand="Dacia", model="Logan")


@pytest_asyncio.fixture
async def spot(test_db: AsyncSession) -> Any:
    return await ParkingSpotService().create_spot("A1", test_db, location="Level 1")


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    payment_service: PaymentService,
    reservation_manager: ReservationManager,
) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client wired to the in-memory database and fake gateway."""
    from parking_lot.api.dependencies import (
        get_health_check,
        get_payment_service,
        get_reservation_manager,
    )
    from parking_lot.api.main import app
    from parking_lot.database.connection import get_db

    async def override_get_db() -> AsyncGenerator[AsyncSession, Any]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    health_check = AsyncMock()
    health_check.check_all.return_value = {"status": "healthy", "checks": {}}
    health_check.readiness.return_value = {"status": "healthy", "checks": {}}
    health_check.liveness.return_value = {"status": "alive", "message": "Application is running"}

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_service] = lambda: payment_service
    app.dependency_overrides[get_reservation_manager] = lambda: reservation_manager
    app.dependency_overrides[get_health_check] = lambda: health_check

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Any:
    yield
    get_settings.cache_clear()
