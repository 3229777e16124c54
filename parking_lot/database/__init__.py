"""Database package for the parking lot backend."""
from .connection import close_db, get_db, get_session_factory, init_db
from .models import Base, Car, ParkingSpot, Reservation, User

__all__ = [
    "Base",
    "Car",
    "ParkingSpot",
    "Reservation",
    "User",
    "close_db",
    "get_db",
    "get_session_factory",
    "init_db",
]
