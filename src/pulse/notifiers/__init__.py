"""Pulse downstream notifiers - bus subscribers that deliver messages."""

from pulse.notifiers.discord import (
    DiscordNotifier,
    alt_account_embed,
    confidence_label,
    ordinal_suffix,
    registration_embed,
)

__all__ = [
    "DiscordNotifier",
    "alt_account_embed",
    "confidence_label",
    "ordinal_suffix",
    "registration_embed",
]
