"""
Shared utilities for the crypto price bot.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with Telegram update correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- circuit_breaker: Cooldown after upstream rate limiting
- base_service: FastAPI app skeleton with health and metrics routes

Do not import from service_* packages into shared/.
"""
