"""
Record accessors for users, cars and parking spots.

Plain CRUD over the relational store; every method takes the request's
``AsyncSession`` and commits its own writes.
"""
from decimal import Decimal
from typing import List, Optional

import bcrypt
import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from parking_lot.core.exceptions import (
    AuthorizationError,
    DuplicateRecordError,
    InvalidRecordError,
    NotFoundError,
)
from parking_lot.database.models import Car, ParkingSpot, User

logger = structlog.get_logger(__name__)

SPOT_STATUSES = ("available", "unavailable")
# bcrypt only looks at the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_plate(plate: str) -> str:
    return "".join(plate.split()).upper()


class UserService:
    """Registered users."""

    async def get_user(self, email: str, db: AsyncSession) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == normalize_email(email)))
        return result.scalar_one_or_none()

    async def create_user(
        self, email: str, username: str, password: str, db: AsyncSession
    ) -> User:
        """
        Register a user.

        Raises:
            InvalidRecordError: If the email or password is unusable
            DuplicateRecordError: If the email is already registered
        """
        email = normalize_email(email)
        if "@" not in email:
            raise InvalidRecordError("A valid email is required")
        if not password or len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise InvalidRecordError(
                f"Password must be between 1 and {MAX_PASSWORD_BYTES} bytes"
            )
        if await self.get_user(email, db) is not None:
            raise DuplicateRecordError(f"User with email {email} already exists")

        user = User(email=email, username=username, password_hash=hash_password(password))
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise DuplicateRecordError(f"User with email {email} already exists")

        logger.info("user_created", email=email)
        return user

    async def authenticate(self, email: str, password: str, db: AsyncSession) -> Optional[User]:
        """Return the user when the password matches, None otherwise."""
        user = await self.get_user(email, db)
        if user is None or not verify_password(password, user.password_hash):
            logger.info("authentication_failed", email=normalize_email(email))
            return None
        return user


class CarService:
    """Cars keyed by license plate."""

    async def list_cars(self, db: AsyncSession) -> List[Car]:
        result = await db.execute(select(Car).order_by(Car.plate))
        return list(result.scalars().all())

    async def list_user_cars(self, email: str, db: AsyncSession) -> List[Car]:
        result = await db.execute(
            select(Car).where(Car.owner_email == normalize_email(email)).order_by(Car.plate)
        )
        return list(result.scalars().all())

    async def get_car(self, plate: str, db: AsyncSession) -> Optional[Car]:
        return await db.get(Car, normalize_plate(plate))

    async def add_car(
        self,
        owner: User,
        plate: str,
        db: AsyncSession,
        brand: Optional[str] = None,
        model: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Car:
        """
        Register a car for ``owner``.

        Raises:
            InvalidRecordError: If the plate is blank
            DuplicateRecordError: If the plate is already registered
        """
        plate = normalize_plate(plate)
        if not plate:
            raise InvalidRecordError("Plate is required")
        if await self.get_car(plate, db) is not None:
            raise DuplicateRecordError(f"Car with plate {plate} already exists")

        car = Car(plate=plate, brand=brand, model=model, color=color, owner_email=owner.email)
        db.add(car)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise DuplicateRecordError(f"Car with plate {plate} already exists")

        logger.info("car_added", plate=plate, owner=owner.email)
        return car

    async def delete_car(self, owner: User, plate: str, db: AsyncSession) -> None:
        """
        Remove one of the owner's cars.

        Raises:
            NotFoundError: If the plate is unknown
            AuthorizationError: If the car belongs to someone else
        """
        car = await self.get_car(plate, db)
        if car is None:
            raise NotFoundError("Car not found")
        if car.owner_email != owner.email:
            raise AuthorizationError("You are not authorized to delete this car")

        await db.delete(car)
        await db.commit()
        logger.info("car_deleted", plate=car.plate, owner=owner.email)


class ParkingSpotService:
    """Parking spots and their availability."""

    async def list_spots(self, db: AsyncSession) -> List[ParkingSpot]:
        result = await db.execute(select(ParkingSpot).order_by(ParkingSpot.id))
        return list(result.scalars().all())

    async def get_spot(self, spot_id: int, db: AsyncSession) -> Optional[ParkingSpot]:
        return await db.get(ParkingSpot, spot_id)

    async def create_spot(
        self,
        name: str,
        db: AsyncSession,
        location: Optional[str] = None,
        price_per_hour: Decimal = Decimal("0"),
        status: str = "available",
    ) -> ParkingSpot:
        if status not in SPOT_STATUSES:
            raise InvalidRecordError(f"Status must be one of: {', '.join(SPOT_STATUSES)}")
        if price_per_hour < 0:
            raise InvalidRecordError("Price per hour cannot be negative")

        spot = ParkingSpot(
            name=name, location=location, price_per_hour=price_per_hour, status=status
        )
        db.add(spot)
        await db.commit()
        logger.info("parking_spot_created", spot_id=spot.id, name=name)
        return spot

    async def set_spot_status(self, spot_id: int, status: str, db: AsyncSession) -> ParkingSpot:
        """
        Change a spot's availability status.

        Raises:
            InvalidRecordError: If the status is unknown
            NotFoundError: If the spot does not exist
        """
        if status not in SPOT_STATUSES:
            raise InvalidRecordError(f"Status must be one of: {', '.join(SPOT_STATUSES)}")
        spot = await self.get_spot(spot_id, db)
        if spot is None:
            raise NotFoundError("Spot not found")

        spot.status = status
        await db.commit()
        logger.info("parking_spot_status_changed", spot_id=spot_id, status=status)
        return spot
