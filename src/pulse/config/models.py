"""Pydantic models for Pulse configuration.

This module defines the configuration schema using Pydantic v2.
All configuration validation happens through these models.

Classes:
    RedisConfig: Shared store connection and channel
    DatabaseConfig: Durable store (events, users) connection
    BusConfig: Event bus worker pool and listener settings
    RolloutConfig: Progressive feature rollout settings
    IdentityConfig: Identity correlation detector settings
    DiscordConfig: Discord webhook notifier settings
    PulseConfig: Top-level configuration combining all sections
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from pulse.observability.logging import LoggingConfig


class RedisConfig(BaseModel, frozen=True):
    """Shared key-value store configuration.

    Attributes:
        url: Redis connection URL.
        channel: Publish/subscribe channel carrying broadcast events.
        socket_timeout: Read/write timeout in seconds.
        connect_timeout: Connection timeout in seconds.
        max_connections: Connection pool size.
    """

    url: str = "redis://localhost:6379/0"
    channel: str = Field(default="events", min_length=1)
    socket_timeout: float = Field(default=3.0, gt=0)
    connect_timeout: float = Field(default=5.0, gt=0)
    max_connections: int = Field(default=50, ge=1)


class DatabaseConfig(BaseModel, frozen=True):
    """Durable store configuration.

    Attributes:
        url: SQLAlchemy async database URL. None means the SQLite file
             ~/.pulse/data/pulse.db.
        echo: Whether SQLAlchemy echoes SQL statements.
    """

    url: str | None = None
    echo: bool = False


class BusConfig(BaseModel, frozen=True):
    """Event bus configuration.

    Attributes:
        worker_count: Number of concurrent handler workers per process.
        queue_size: Bound of the dispatch queue; publishers wait when full.
        listener_backoff_seconds: Sleep after a channel receive error.
        skip_own_broadcasts: Drop channel echoes of events this process
            published (they were already dispatched locally).
    """

    worker_count: int = Field(default=8, ge=1)
    queue_size: int = Field(default=1000, ge=1)
    listener_backoff_seconds: float = Field(default=1.0, ge=0.0)
    skip_own_broadcasts: bool = True


class RolloutConfig(BaseModel, frozen=True):
    """Progressive feature rollout configuration.

    Attributes:
        interval_seconds: Seconds between scheduled rollout ticks.
        batch_size: Users fetched per page when expanding to everyone.
        admin_staff_level: Staff level treated as admin (always enrolled).
        random_seed: Seed for membership sampling; None for OS entropy.
    """

    interval_seconds: int = Field(default=1800, ge=1)
    batch_size: int = Field(default=1000, ge=1)
    admin_staff_level: int = Field(default=4, ge=0)
    random_seed: int | None = None


class IdentityConfig(BaseModel, frozen=True):
    """Identity correlation detector configuration.

    Attributes:
        dedupe_email_matches: Suppress repeat email-match notifications for
            pairs that were already reported for the same reason. Off by
            default, so every email check reports.
    """

    dedupe_email_matches: bool = False


class DiscordConfig(BaseModel, frozen=True):
    """Discord webhook notifier configuration.

    Attributes:
        enabled: Whether the notifier subscribes to the bus.
        registrations_webhook_url: Webhook for new-user announcements.
        security_webhook_url: Webhook for alt-account alerts.
        profile_base_url: Base URL of public profiles (embed links).
        footer_text: Footer shown on every embed.
        timeout_seconds: HTTP timeout per webhook call.
        max_attempts: Attempts per webhook call, including the first.
    """

    enabled: bool = False
    registrations_webhook_url: str | None = None
    security_webhook_url: str | None = None
    profile_base_url: str = "https://haze.bio"
    footer_text: str = "haze.bio"
    timeout_seconds: float = Field(default=5.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)

    @field_validator("profile_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalise the base URL so profile links join cleanly."""
        return v.rstrip("/")


class PulseConfig(BaseModel, frozen=True):
    """Top-level Pulse configuration.

    Validates against config.yaml in ~/.pulse/.
    """

    redis: RedisConfig = Field(default_factory=RedisConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    bus: BusConfig = Field(default_factory=BusConfig)
    rollout: RolloutConfig = Field(default_factory=RolloutConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def get_default_config() -> PulseConfig:
    """Get the default Pulse configuration."""
    return PulseConfig()


def get_config_dir() -> Path:
    """Get the Pulse configuration directory path (~/.pulse/)."""
    return Path.home() / ".pulse"
