"""HTTP routes."""

from .health import health_routes
from .operations import operation_routes

__all__ = ["health_routes", "operation_routes"]
