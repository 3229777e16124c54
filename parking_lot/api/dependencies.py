"""Service providers for route dependencies; override them in tests."""
from functools import lru_cache

from parking_lot.core.locking import KeyedLock
from parking_lot.core.payment_service import PaymentService
from parking_lot.core.records import CarService, ParkingSpotService, UserService
from parking_lot.core.reservations import ReservationManager
from parking_lot.monitoring.health import HealthCheck


@lru_cache()
def get_locks() -> KeyedLock:
    return KeyedLock()


@lru_cache()
def get_payment_service() -> PaymentService:
    return PaymentService(locks=get_locks())


@lru_cache()
def get_reservation_manager() -> ReservationManager:
    return ReservationManager(locks=get_locks())


@lru_cache()
def get_health_check() -> HealthCheck:
    return HealthCheck()


def get_user_service() -> UserService:
    return UserService()


def get_car_service() -> CarService:
    return CarService()


def get_spot_service() -> ParkingSpotService:
    return ParkingSpotService()
