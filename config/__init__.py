"""Configuration package for order reconciliation."""
from .settings import get_settings, Settings

__all__ = ["Settings", "get_settings"]
