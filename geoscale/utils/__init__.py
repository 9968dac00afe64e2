"""Utility modules for the GeoScale heat map engine."""

from .config import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
