"""Core business logic: records, reservations and payments."""
from .exceptions import (
    AuthorizationError,
    CustomerNotFoundError,
    DuplicateRecordError,
    InvalidRecordError,
    LockTimeoutError,
    NotFoundError,
    ParkingLotError,
    PaymentError,
    PaymentValidationError,
    ReservationError,
    SpotUnavailableError,
)
from .locking import KeyedLock
from .payment_service import PaymentService, TransactionRecord
from .records import CarService, ParkingSpotService, UserService
from .reservations import ReservationManager

__all__ = [
    "AuthorizationError",
    "CarService",
    "CustomerNotFoundError",
    "DuplicateRecordError",
    "InvalidRecordError",
    "KeyedLock",
    "LockTimeoutError",
    "NotFoundError",
    "ParkingLotError",
    "ParkingSpotService",
    "PaymentError",
    "PaymentService",
    "PaymentValidationError",
    "ReservationError",
    "ReservationManager",
    "SpotUnavailableError",
    "TransactionRecord",
    "UserService",
]
