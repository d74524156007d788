"""
Shared utilities for the Veo proxy.

This package aggregates common building blocks consumed by services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with secret redaction
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Bounded retry with jittered delay
- base_service: FastAPI service skeleton

Do not import from service packages into shared/.
"""
