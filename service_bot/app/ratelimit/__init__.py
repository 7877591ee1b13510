"""
Rate limiting package for the bot.

Holds the single-process request gateway that serializes, paces and retries
outbound calls so free-tier upstream APIs do not answer with HTTP 429.
"""

from .gateway import (
    ALERT_CHECKER_OPTIONS,
    DEFAULT_OPTIONS,
    GatewayOptions,
    RateLimitedGateway,
    compute_backoff_delay,
    is_rate_limit_error,
)

__all__ = [
    "ALERT_CHECKER_OPTIONS",
    "DEFAULT_OPTIONS",
    "GatewayOptions",
    "RateLimitedGateway",
    "compute_backoff_delay",
    "is_rate_limit_error",
]
