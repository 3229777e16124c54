"""Configuration package for the parking lot backend."""
from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
