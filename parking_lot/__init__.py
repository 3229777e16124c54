"""Parking lot management backend: cars, spots, reservations and payments."""

__version__ = "1.0.0"
