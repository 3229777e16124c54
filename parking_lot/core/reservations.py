"""
Reservation management.

A reservation ties a car to a parking spot for a time window at a cost.
Reservations are created ``active`` and cancelled by deleting them; no other
transition exists. At most one active reservation may cover any instant of a
spot's timeline.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from parking_lot.config import Settings, get_settings
from parking_lot.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    ReservationError,
    SpotUnavailableError,
)
from parking_lot.core.locking import KeyedLock
from parking_lot.core.records import normalize_plate
from parking_lot.database.models import (
    Car,
    ParkingSpot,
    Reservation,
    User,
    as_utc_naive,
    utcnow,
)
from parking_lot.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

ACTIVE = "active"


class ReservationManager:
    """Creates, deletes and queries reservations."""

    def __init__(
        self, locks: Optional[KeyedLock] = None, settings: Optional[Settings] = None
    ) -> None:
        self.settings = settings or get_settings()
        self.locks = locks or KeyedLock(settings=self.settings)

    async def create_reservation(
        self,
        user: User,
        spot_id: int,
        start_time: datetime,
        end_time: datetime,
        cost: Decimal,
        car_plate: str,
        db: AsyncSession,
    ) -> Reservation:
        """
        Reserve a spot for one of the user's cars.

        Args:
            user: Authenticated user
            spot_id: Spot to reserve
            start_time: Window start
            end_time: Window end, after ``start_time``
            cost: Reservation cost in major units
            car_plate: Plate of a car owned by ``user``
            db: Database session

        Returns:
            Reservation: The persisted reservation

        Raises:
            ReservationError: If the window or cost is invalid
            NotFoundError: If the spot or car does not exist
            AuthorizationError: If the car belongs to someone else
            SpotUnavailableError: If the spot is closed or already reserved
                for an overlapping window
        """
        start = as_utc_naive(start_time)
        end = as_utc_naive(end_time)
        if start >= end:
            raise ReservationError("Reservation must end after it starts")
        if cost < 0:
            raise ReservationError("Reservation cost cannot be negative")

        async with self.locks.hold(f"spot:{spot_id}"):
            spot = await db.get(ParkingSpot, spot_id)
            if spot is None:
                metrics.record_reservation("create", "spot_not_found")
                raise NotFoundError("Spot could not be reserved. Spot not found")
            if spot.status != "available":
                metrics.record_reservation("create", "spot_unavailable")
                raise SpotUnavailableError("Spot could not be reserved. Spot is unavailable")

            car = await db.get(Car, normalize_plate(car_plate))
            if car is None:
                raise NotFoundError("Car not found")
            if car.owner_email != user.email:
                raise AuthorizationError("You are not authorized to reserve with this car")

            overlapping = await db.execute(
                select(Reservation.id)
                .where(
                    Reservation.spot_id == spot_id,
                    Reservation.status == ACTIVE,
                    Reservation.start_time < end,
                    Reservation.end_time > start,
                )
                .limit(1)
            )
            if overlapping.scalar_one_or_none() is not None:
                metrics.record_reservation("create", "conflict")
                raise SpotUnavailableError(
                    "Spot could not be reserved. Spot already has an active reservation"
                )

            reservation = Reservation(
                car_plate=car.plate,
                spot_id=spot.id,
                start_time=start,
                end_time=end,
                cost=cost,
                status=ACTIVE,
            )
            db.add(reservation)
            await db.commit()

        metrics.record_reservation("create", "created")
        logger.info(
            "reservation_created",
            reservation_id=reservation.id,
            spot_id=spot_id,
            car_plate=car.plate,
            user=user.email,
        )
        return reservation

    async def delete_reservation(
        self, user: User, reservation_id: int, db: AsyncSession
    ) -> None:
        """
        Cancel a reservation by deleting it.

        Raises:
            NotFoundError: If the reservation does not exist
            AuthorizationError: If the user does not own the reserved car
        """
        reservation = await db.get(Reservation, reservation_id)
        if reservation is None:
            metrics.record_reservation("delete", "not_found")
            raise NotFoundError("Reservation not found")

        car = await db.get(Car, reservation.car_plate)
        if car is None or car.owner_email != user.email:
            metrics.record_reservation("delete", "unauthorized")
            logger.warning(
                "reservation_delete_unauthorized",
                reservation_id=reservation_id,
                user=user.email,
            )
            raise AuthorizationError("You are not authorized to delete this reservation")

        await db.delete(reservation)
        await db.commit()
        metrics.record_reservation("delete", "deleted")
        logger.info("reservation_deleted", reservation_id=reservation_id, user=user.email)

    async def get_reservation(self, reservation_id: int, db: AsyncSession) -> Optional[Reservation]:
        return await db.get(Reservation, reservation_id)

    async def list_reservations(self, db: AsyncSession) -> List[Reservation]:
        result = await db.execute(select(Reservation).order_by(Reservation.start_time))
        return list(result.scalars().all())

    async def get_spot_reservation(
        self, spot_id: int, db: AsyncSession, now: Optional[datetime] = None
    ) -> Optional[Reservation]:
        """The spot's current reservation, or its next upcoming one."""
        current = as_utc_naive(now) if now else utcnow()
        result = await db.execute(
            select(Reservation)
            .where(
                Reservation.spot_id == spot_id,
                Reservation.status == ACTIVE,
                Reservation.end_time > current,
            )
            .order_by(Reservation.start_time)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_user_reservations(self, email: str, db: AsyncSession) -> List[Reservation]:
        result = await db.execute(
            select(Reservation)
            .join(Car, Reservation.car_plate == Car.plate)
            .where(Car.owner_email == email)
            .order_by(Reservation.start_time.desc())
        )
        return list(result.scalars().all())

    async def list_active_user_reservations(
        self, email: str, db: AsyncSession, now: Optional[datetime] = None
    ) -> List[Reservation]:
        """Active reservations of the user that have not ended yet."""
        current = as_utc_naive(now) if now else utcnow()
        result = await db.execute(
            select(Reservation)
            .join(Car, Reservation.car_plate == Car.plate)
            .where(
                Car.owner_email == email,
                Reservation.status == ACTIVE,
                Reservation.end_time > current,
            )
            .order_by(Reservation.start_time)
        )
        return list(result.scalars().all())
