"""
Shared error handling for the crypto price bot.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class BotException(Exception):
    """Base exception for bot services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(BotException):
    """Validation-related errors (bad command arguments, malformed updates)."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ConfigurationError(BotException):
    """Invalid configuration or options."""

    status_code = 500

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class ServiceError(BotException):
    """Service-related errors."""

    status_code = 503

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)


class UpstreamError(BotException):
    """Non rate-limit failure from an upstream API."""

    status_code = 502

    def __init__(
        self,
        service: str,
        message: str = "Upstream service error",
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.service = service
        self.upstream_status = status_code
        details = dict(details or {})
        if status_code is not None:
            details.setdefault("status_code", status_code)
        super().__init__("UPSTREAM_ERROR", f"{service}: {message}", details)


class RateLimitExceeded(BotException):
    """Every attempt in the retry budget was answered with a rate-limit signal."""

    status_code = 503

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        last_error: Optional[BaseException] = None,
        attempts: int = 0,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.last_error = last_error
        self.attempts = attempts
        details = dict(details or {})
        details.setdefault("attempts", attempts)
        if last_error is not None:
            details.setdefault("last_error", str(last_error))
        super().__init__("RATE_LIMIT_EXCEEDED", message, details)
