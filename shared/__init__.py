"""
Shared utilities for the Salesforce Access Layer.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Backoff calculation and retry errors
- circuit_breaker: Resilient external call protection

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service packages into shared/.
"""
