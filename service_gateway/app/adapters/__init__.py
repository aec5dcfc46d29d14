"""
Adapters package for the Gateway Service.

Contains the HTTP client used to reach the users and orders backends. The
adapter encapsulates:

- Base URLs and request shapes
- Decoding of the envelope protocol
- Classifying responses into breaker successes and transport failures

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .backend_client import BackendClient, ForwardSpec, service_unavailable_fallback

__all__ = [
    "BackendClient",
    "ForwardSpec",
    "service_unavailable_fallback",
]
