"""
Shared utilities for the project-management API.

This package aggregates common building blocks consumed by all services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation and redaction
- metrics: Prometheus metrics helpers
- retry: Backoff delay calculation
- errors: Canonical error types and responses
- base_service: FastAPI service skeleton
"""
