"""Domain exceptions raised by the core services."""


class ParkingLotError(Exception):
    """Base exception for the backend's business rules."""


class NotFoundError(ParkingLotError):
    """Raised when a referenced record does not exist."""


class DuplicateRecordError(ParkingLotError):
    """Raised when creating a record whose key is already taken."""


class AuthorizationError(ParkingLotError):
    """Raised when a user acts on a record they do not own."""


class ReservationError(ParkingLotError):
    """Raised when reservation input is invalid."""


class SpotUnavailableError(ReservationError):
    """Raised when a spot already holds an overlapping active reservation."""


class LockTimeoutError(ParkingLotError):
    """Raised when a keyed lock cannot be acquired in time."""


class PaymentError(ParkingLotError):
    """Base exception for payment processing errors."""


class PaymentValidationError(PaymentError):
    """Raised when payment input validation fails."""


class CustomerNotFoundError(PaymentError):
    """Raised when no provider customer matches an email."""

    def __init__(self, email: str):
        super().__init__(f"No customer found with email: {email}")
        self.email = email


class InvalidRecordError(ParkingLotError):
    """Raised when record input fails validation."""
