"""
Domain layer for the bot service.

Command parsing and reply formatting are plain functions; the webhook
handler and alert checker orchestrate adapters and own no transport code.
"""

from .alert_checker import AlertChecker
from .webhook_handler import MessageContext, WebhookHandler

__all__ = [
    "AlertChecker",
    "MessageContext",
    "WebhookHandler",
]
