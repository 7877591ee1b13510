"""
Shared configuration management for the crypto price bot.
"""

from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_MENTION_MEMBERS = [
    "KiNGViNU7",
    "Xeron888",
    "RemindMeOfThis",
    "austrianbae250",
    "ferno_x",
    "Ananthu_VB",
    "Oxshahid13",
    "unknownking7",
    "BeastIncarnate7",
]


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="BOT_",
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Telegram
    telegram_bot_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("BOT_TELEGRAM_BOT_TOKEN", "TELEGRAM_BOT_TOKEN"),
    )
    telegram_api_url: str = Field(default="https://api.telegram.org")
    webhook_url: Optional[str] = Field(default=None)

    # Upstream APIs
    coingecko_api_url: str = Field(default="https://api.coingecko.com/api/v3")
    coingecko_api_key: Optional[str] = Field(default=None)
    ai_api_url: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    ai_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("BOT_AI_API_KEY", "GEMINI_API_KEY"),
    )
    ai_model: str = Field(default="gemini-1.5-flash")

    # Storage
    firebase_service_account: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("BOT_FIREBASE_SERVICE_ACCOUNT", "FIREBASE_SERVICE_ACCOUNT"),
    )
    redis_url: str = Field(default="redis://localhost:6379/0")
    coin_cache_ttl_seconds: int = Field(default=300)

    # Upstream request gateway
    request_min_interval: float = Field(default=2.0)
    request_max_retries: int = Field(default=5)
    request_base_delay: float = Field(default=2.0)
    request_max_delay: float = Field(default=30.0)
    request_timeout: Optional[float] = Field(default=15.0)

    # Alert checker
    alert_cooldown_seconds: float = Field(default=30 * 60)

    # @all mentions
    mention_group_id: int = Field(default=-1001354282618)
    mention_members: List[str] = Field(default_factory=lambda: list(DEFAULT_MENTION_MEMBERS))


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)
