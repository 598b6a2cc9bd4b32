"""Security utilities for Pulse.

Masking helpers used by the logging pipeline and error reporting so that
webhook URLs, connection passwords and tokens never reach log output.
"""

import re
from typing import Any

# Field names whose values should never be logged
SENSITIVE_FIELD_NAMES = frozenset(
    {
        "password",
        "secret",
        "token",
        "credential",
        "auth",
        "private",
        "webhook",
        "authorization",
        "api_key",
    }
)

# Value prefixes that indicate secrets
SENSITIVE_PREFIXES = (
    "bearer ",
    "bot ",
    "token ",
    "https://discord.com/api/webhooks/",
    "https://discordapp.com/api/webhooks/",
)

# user:password@ section of a connection URL
_URL_CREDENTIALS = re.compile(r"(?P<scheme>[a-z][a-z0-9+.-]*://)(?P<userinfo>[^@/\s]+)@")


def mask_secret(secret: str, visible_chars: int = 4) -> str:
    """Mask a secret for safe logging/display.

    Args:
        secret: The secret to mask.
        visible_chars: Number of trailing characters to keep.

    Returns:
        Masked string like "...abcd", or "<empty>" if empty.

    Example:
        >>> mask_secret("https://discord.com/api/webhooks/1/abcdefgh")
        '...efgh'
    """
    if not secret:
        return "<empty>"

    if len(secret) <= visible_chars + 4:
        return "*" * len(secret)

    return f"...{secret[-visible_chars:]}"


def mask_url_credentials(url: str) -> str:
    """Replace the userinfo section of a connection URL with ***.

    Example:
        >>> mask_url_credentials("redis://:hunter2@cache:6379/0")
        'redis://***@cache:6379/0'
    """
    return _URL_CREDENTIALS.sub(r"\g<scheme>***@", url)


def is_sensitive_field(field_name: str) -> bool:
    """Check if a field name indicates sensitive data."""
    if not field_name:
        return False

    field_lower = field_name.lower()
    return any(sensitive in field_lower for sensitive in SENSITIVE_FIELD_NAMES)


def is_sensitive_value(value: Any) -> bool:
    """Check if a value looks like sensitive data (token, webhook URL)."""
    if not isinstance(value, str):
        return False

    value_lower = value.lower()
    return any(value_lower.startswith(prefix) for prefix in SENSITIVE_PREFIXES)


def sanitize_for_logging(data: dict[str, Any]) -> dict[str, Any]:
    """Create a copy of data with sensitive values masked.

    Args:
        data: Dictionary that might contain sensitive data.

    Returns:
        New dictionary with sensitive values masked; nested dicts are
        processed recursively.
    """
    result: dict[str, Any] = {}
    for key, value in data.items():
        if is_sensitive_field(key):
            result[key] = "<REDACTED>"
        elif isinstance(value, str) and is_sensitive_value(value):
            result[key] = mask_secret(value)
        elif isinstance(value, str) and "://" in value:
            result[key] = mask_url_credentials(value)
        elif isinstance(value, dict):
            result[key] = sanitize_for_logging(value)
        else:
            result[key] = value
    return result
