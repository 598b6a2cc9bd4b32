"""Pulse domain events and their payload models."""

from pulse.events.base import Event, EventType, to_event_data
from pulse.events.payloads import (
    AltAccountData,
    AltAccountInstance,
    DetectionSource,
    DiscordLinkedData,
    MatchReason,
    RedeemCodeData,
    UserDeletedData,
    UserLoginData,
    UserRegistrationData,
)

__all__ = [
    "Event",
    "EventType",
    "to_event_data",
    "AltAccountData",
    "AltAccountInstance",
    "DetectionSource",
    "DiscordLinkedData",
    "MatchReason",
    "RedeemCodeData",
    "UserDeletedData",
    "UserLoginData",
    "UserRegistrationData",
]
