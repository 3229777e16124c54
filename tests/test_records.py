"""
Unit tests for user, car and parking spot records.
"""
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from parking_lot.core.exceptions import (
    AuthorizationError,
    DuplicateRecordError,
    InvalidRecordError,
    NotFoundError,
)
from parking_lot.core.records import (
    CarService,
    ParkingSpotService,
    UserService,
    hash_password,
    normalize_plate,
    verify_password,
)


class TestPasswords:
    @pytest.mark.unit
    def test_hash_and_verify(self) -> None:
        password_hash = hash_password("correct horse")

        assert password_hash != "correct horse"
        assert verify_password("correct horse", password_hash)
        assert not verify_password("wrong horse", password_hash)

    @pytest.mark.unit
    def test_verify_malformed_hash(self) -> None:
        assert not verify_password("anything", "not-a-bcrypt-hash")


class TestUserService:
    """Test suite for UserService."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_and_authenticate(self, test_db: AsyncSession) -> None:
        users = UserService()
        user = await users.create_user(" Driver@Example.com ", "driver", "secret-pass", test_db)

        assert user.email == "driver@example.com"
        assert user.password_hash != "secret-pass"
        assert (await users.authenticate("driver@example.com", "secret-pass", test_db)) is not None
        assert await users.authenticate("driver@example.com", "wrong-pass", test_db) is None
        assert await users.authenticate("ghost@example.com", "secret-pass", test_db) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_duplicate_email(self, test_db: AsyncSession, owner: Any) -> None:
        with pytest.raises(DuplicateRecordError):
            await UserService().create_user("OWNER@example.com", "again", "password-2", test_db)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_email(self, test_db: AsyncSession) -> None:
        with pytest.raises(InvalidRecordError):
            await UserService().create_user("not-an-email", "x", "password-1", test_db)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_password_too_long(self, test_db: AsyncSession) -> None:
        with pytest.raises(InvalidRecordError, match="72 bytes"):
            await UserService().create_user("long@example.com", "x", "p" * 73, test_db)


class TestCarService:
    """Test suite for CarService."""

    @pytest.mark.unit
    def test_normalize_plate(self) -> None:
        assert normalize_plate(" cj 12\tabc ") == "CJ12ABC"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_add_and_list(self, test_db: AsyncSession, owner: Any, stranger: Any) -> None:
        cars = CarService()
        await cars.add_car(owner, "cj 12 abc", test_db, brand="Dacia")
        await cars.add_car(stranger, "B 99 XYZ", test_db)

        assert [c.plate for c in await cars.list_cars(test_db)] == ["B99XYZ", "CJ12ABC"]
        assert [c.plate for c in await cars.list_user_cars(owner.email, test_db)] == ["CJ12ABC"]
        assert (await cars.get_car("CJ12abc", test_db)).brand == "Dacia"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_duplicate_plate(self, test_db: AsyncSession, stranger: Any, car: Any) -> None:
        with pytest.raises(DuplicateRecordError):
            await CarService().add_car(stranger, "CJ12ABC", test_db)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_blank_plate(self, test_db: AsyncSession, owner: Any) -> None:
        with pytest.raises(InvalidRecordError):
            await CarService().add_car(owner, "   ", test_db)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delete_car(
        self, test_db: AsyncSession, owner: Any, stranger: Any, car: Any
    ) -> None:
        cars = CarService()

        with pytest.raises(AuthorizationError):
            await cars.delete_car(stranger, car.plate, test_db)
        with pytest.raises(NotFoundError):
            await cars.delete_car(owner, "NOPE", test_db)

        await cars.delete_car(owner, car.plate, test_db)
        assert await cars.get_car(car.plate, test_db) is None


class TestParkingSpotService:
    """Test suite for ParkingSpotService."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_and_list(self, test_db: AsyncSession) -> None:
        spots = ParkingSpotService()
        first = await spots.create_spot("A1", test_db, price_per_hour=Decimal("4.50"))
        await spots.create_spot("A2", test_db, status="unavailable")

        listed = await spots.list_spots(test_db)
        assert [s.name for s in listed] == ["A1", "A2"]
        assert (await spots.get_spot(first.id, test_db)).price_per_hour == Decimal("4.50")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_spot(self, test_db: AsyncSession) -> None:
        spots = ParkingSpotService()
        with pytest.raises(InvalidRecordError):
            await spots.create_spot("A1", test_db, status="broken")
        with pytest.raises(InvalidRecordError):
            await spots.create_spot("A1", test_db, price_per_hour=Decimal("-1"))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_set_spot_status(self, test_db: AsyncSession, spot: Any) -> None:
        spots = ParkingSpotService()

        updated = await spots.set_spot_status(spot.id, "unavailable", test_db)
        assert updated.status == "unavailable"

        with pytest.raises(NotFoundError):
            await spots.set_spot_status(999, "available", test_db)
        with pytest.raises(InvalidRecordError):
            await spots.set_spot_status(spot.id, "reserved", test_db)
