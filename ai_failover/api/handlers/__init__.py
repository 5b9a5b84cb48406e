"""API handlers for the status service."""

from .health import HealthHandler

__all__ = ["HealthHandler"]
