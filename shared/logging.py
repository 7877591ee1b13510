"""
Shared logging configuration for the crypto price bot.
"""

import sys
import structlog
import logging
import time
from typing import Any, Dict, Optional
from contextvars import ContextVar

# Context variables for correlating log lines with a Telegram update
update_id_var: ContextVar[Optional[int]] = ContextVar('update_id', default=None)
chat_id_var: ContextVar[Optional[int]] = ContextVar('chat_id', default=None)
user_var: ContextVar[Optional[str]] = ContextVar('user', default=None)


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured logging for a service."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_update_context,
            add_timestamp,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to log events."""
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        event_dict["service"] = logger_name.split(".")[0]

    return event_dict


def add_update_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add the Telegram update being handled to log events."""
    update_id = update_id_var.get()
    if update_id is not None:
        event_dict["update_id"] = update_id

    chat_id = chat_id_var.get()
    if chat_id is not None:
        event_dict["chat_id"] = chat_id

    user = user_var.get()
    if user:
        event_dict["user"] = user

    return event_dict


def add_timestamp(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add high-precision timestamp to log events."""
    event_dict["timestamp"] = time.time()
    return event_dict


def set_update_context(update_id: Optional[int] = None,
                       chat_id: Optional[int] = None,
                       user: Optional[str] = None):
    """Set update context in logging."""
    if update_id is not None:
        update_id_var.set(update_id)
    if chat_id is not None:
        chat_id_var.set(chat_id)
    if user:
        user_var.set(user)


def clear_context():
    """Clear all context variables."""
    update_id_var.set(None)
    chat_id_var.set(None)
    user_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
