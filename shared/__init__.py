"""
Shared utilities for the Eligibility engine.

This package aggregates common building blocks consumed by the service:

- config: Engine and cache configuration via pydantic-settings
- logging: Structured logging with evaluation correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service_* packages into shared/.
"""
