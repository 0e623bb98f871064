"""
Shared utilities for the Optics Orders service.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request and branch-scope correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Async retry helper
- circuit_breaker: Protection for calls to optional infrastructure
- base_service: FastAPI service shell with health, metrics and error mapping
- test_helpers: Order test data and in-process stacks for the test suites

Apart from test_helpers, nothing in shared/ imports from service_* packages.
"""
