"""
Shared utilities for the Orderly platform.

This package aggregates common building blocks consumed by all services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- envelope: The success/error response envelope
- errors: Canonical error types and responses
- auth: Token issuing and verification
- circuit_breaker: Resilient backend call protection
- storage: Repository abstraction for entity stores
- base_service: FastAPI service skeleton

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service_* packages into shared/.
"""
