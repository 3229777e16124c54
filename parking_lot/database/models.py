"""SQLAlchemy database models for the parking lot backend."""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the storage convention for all columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(value: datetime) -> datetime:
    """Normalize an aware or naive datetime to naive UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class User(Base):
    """
    Application users.

    The email doubles as the key of the user's customer record at the
    payment provider.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    cars: Mapped[List["Car"]] = relationship(back_populates="owner", lazy="selectin")

    def __repr__(self) -> str:
        """String representation of User."""
        return f"<User(email={self.email}, username={self.username})>"


class Car(Base):
    """Cars registered by users, keyed by license plate."""

    __tablename__ = "cars"

    plate: Mapped[str] = mapped_column(String(20), primary_key=True)
    brand: Mapped[str | None] = mapped_column(String(100), nullable=True)
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    color: Mapped[str | None] = mapped_column(String(50), nullable=True)
    owner_email: Mapped[str] = mapped_column(
        String(255), ForeignKey("users.email", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    owner: Mapped[User] = relationship(back_populates="cars", lazy="selectin")

    def __repr__(self) -> str:
        """String representation of Car."""
        return f"<Car(plate={self.plate}, owner={self.owner_email})>"


class ParkingSpot(Base):
    """Parking spots with their availability status."""

    __tablename__ = "parking_spots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    price_per_hour: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0")
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="available")

    __table_args__ = (
        CheckConstraint("price_per_hour >= 0", name="non_negative_price"),
        CheckConstraint("status IN ('available', 'unavailable')", name="valid_spot_status"),
    )

    def __repr__(self) -> str:
        """String representation of ParkingSpot."""
        return f"<ParkingSpot(id={self.id}, name={self.name}, status={self.status})>"


class Reservation(Base):
    """
    Reservations of a parking spot for a car over a time window.

    Cancellation deletes the row; ``active`` is the only stored status.
    """

    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    car_plate: Mapped[str] = mapped_column(
        String(20), ForeignKey("cars.plate", ondelete="CASCADE"), nullable=False, index=True
    )
    spot_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("parking_spots.id", ondelete="CASCADE"), nullable=False
    )
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    car: Mapped[Car] = relationship(lazy="selectin")
    spot: Mapped[ParkingSpot] = relationship(lazy="selectin")

    __table_args__ = (
        CheckConstraint("cost >= 0", name="non_negative_cost"),
        CheckConstraint("end_time > start_time", name="valid_window"),
        CheckConstraint("status IN ('active')", name="valid_reservation_status"),
        Index("idx_reservations_spot_status", "spot_id", "status"),
    )

    def __repr__(self) -> str:
        """String representation of Reservation."""
        return (
            f"<Reservation(id={self.id}, spot={self.spot_id}, car={self.car_plate}, "
            f"status={self.status})>"
        )
