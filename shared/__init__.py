"""
Shared utilities for the FRED web proxy.

This package aggregates common building blocks consumed by the service:

- config: Process configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Backoff helper for upstream calls
- circuit_breaker: Resilient external call protection
"""
