"""Configuration module for Pulse.

Configuration is stored in ~/.pulse/config.yaml; secrets are usually
supplied through PULSE_* environment variables or a .env file.

Usage:
    from pulse.config import load_config

    config = load_config()
    interval = config.rollout.interval_seconds
"""

from pulse.config.loader import (
    create_default_config,
    ensure_config_dir,
    load_config,
    resolve_database_url,
)
from pulse.config.models import (
    BusConfig,
    DatabaseConfig,
    DiscordConfig,
    IdentityConfig,
    PulseConfig,
    RedisConfig,
    RolloutConfig,
    get_config_dir,
    get_default_config,
)

__all__ = [
    # Models
    "PulseConfig",
    "RedisConfig",
    "DatabaseConfig",
    "BusConfig",
    "RolloutConfig",
    "IdentityConfig",
    "DiscordConfig",
    # Loader functions
    "load_config",
    "create_default_config",
    "ensure_config_dir",
    "resolve_database_url",
    # Model helpers
    "get_config_dir",
    "get_default_config",
]
