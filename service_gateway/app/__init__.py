"""
API Gateway Service package for the Orderly platform.

The gateway fronts client requests, enforcing:
- Authentication: local bearer token verification
- Rate limiting: general and strict (register/login) fixed windows
- Circuit-breaking for the users and orders backends

Structure:
- app.main: FastAPI app, routes, and dependency wiring.
- app.adapters: HTTP client for the backends.
- app.domain: Forwarder, user-details aggregator, auth middleware.
- app.ratelimit: Fixed-window limiter, stores and request adapter.
"""
