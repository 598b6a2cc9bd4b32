"""Configuration loading for Pulse.

Functions:
    load_config: Load configuration from ~/.pulse/config.yaml plus env overrides
    create_default_config: Write a default config.yaml
    ensure_config_dir: Ensure ~/.pulse/ directory exists
    resolve_database_url: Database URL, defaulting to the SQLite file
"""

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError
import yaml

# Load .env file from current directory and ~/.pulse/
load_dotenv()
load_dotenv(Path.home() / ".pulse" / ".env")

from pulse.config.models import PulseConfig, get_config_dir, get_default_config  # noqa: E402
from pulse.core.errors import ConfigError  # noqa: E402

# Environment variable -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "PULSE_REDIS_URL": ("redis", "url"),
    "PULSE_DATABASE_URL": ("database", "url"),
    "PULSE_DISCORD_REGISTRATIONS_WEBHOOK": ("discord", "registrations_webhook_url"),
    "PULSE_DISCORD_SECURITY_WEBHOOK": ("discord", "security_webhook_url"),
    "PULSE_ROLLOUT_SEED": ("rollout", "random_seed"),
}


def ensure_config_dir() -> Path:
    """Ensure the configuration directory and its subdirectories exist."""
    config_dir = get_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "data").mkdir(exist_ok=True)
    (config_dir / "logs").mkdir(exist_ok=True)
    return config_dir


def create_default_config(
    config_dir: Path | None = None,
    *,
    overwrite: bool = False,
) -> Path:
    """Create a default config.yaml.

    Args:
        config_dir: Directory to create the file in. Defaults to ~/.pulse/
        overwrite: If True, overwrite an existing file.

    Returns:
        Path to the written config file.

    Raises:
        ConfigError: If the file exists and overwrite=False.
    """
    if config_dir is None:
        config_dir = ensure_config_dir()
    else:
        config_dir.mkdir(parents=True, exist_ok=True)

    config_path = config_dir / "config.yaml"
    if config_path.exists() and not overwrite:
        raise ConfigError(
            f"Configuration file already exists: {config_path}",
            config_file=str(config_path),
        )

    with config_path.open("w") as f:
        yaml.dump(
            get_default_config().model_dump(mode="json"),
            f,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )

    return config_path


def _apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """Overlay PULSE_* environment variables onto the raw config mapping."""
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.environ.get(env_name, "").strip()
        if not value:
            continue
        section_dict = config_dict.setdefault(section, {})
        if not isinstance(section_dict, dict):
            raise ConfigError(
                f"Configuration section '{section}' must be a mapping",
                config_key=section,
            )
        section_dict[key] = value
    return config_dict


def load_config(config_path: Path | None = None) -> PulseConfig:
    """Load configuration from YAML file and environment.

    A missing file is not an error: defaults are used and environment
    overrides still apply, so a worker can be configured purely from env.

    Args:
        config_path: Path to config file. Defaults to ~/.pulse/config.yaml.

    Returns:
        Validated PulseConfig instance.

    Raises:
        ConfigError: If the file is malformed or fails validation.
    """
    if config_path is None:
        config_path = get_config_dir() / "config.yaml"

    config_dict: dict[str, Any] = {}
    if config_path.exists():
        try:
            with config_path.open() as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(
                f"Failed to parse configuration file: {e}",
                config_file=str(config_path),
                details={"yaml_error": str(e)},
            ) from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(
                "Configuration file must contain a mapping",
                config_file=str(config_path),
            )
        config_dict = loaded or {}

    config_dict = _apply_env_overrides(config_dict)

    try:
        return PulseConfig.model_validate(config_dict)
    except PydanticValidationError as e:
        error_messages = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            error_messages.append(f"  - {loc}: {error['msg']}")

        raise ConfigError(
            "Configuration validation failed:\n" + "\n".join(error_messages),
            config_file=str(config_path),
            details={"validation_errors": e.errors()},
        ) from e


def resolve_database_url(config: PulseConfig) -> str:
    """Return the configured database URL or the default SQLite file URL."""
    if config.database.url:
        return config.database.url
    db_path = ensure_config_dir() / "data" / "pulse.db"
    return f"sqlite+aiosqlite:///{db_path}"
