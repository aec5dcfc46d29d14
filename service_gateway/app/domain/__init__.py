"""
Domain utilities for the Gateway Service.

Request forwarding, the user-details aggregate and authentication sit here,
between the FastAPI routes and the backend adapters.
"""

from .aggregator import UserDetailsAggregator
from .auth_middleware import AuthMiddleware
from .forwarder import RequestForwarder, status_for

__all__ = [
    "AuthMiddleware",
    "RequestForwarder",
    "UserDetailsAggregator",
    "status_for",
]
