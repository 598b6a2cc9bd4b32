"""Typed payload models for each event type.

Publishers may pass these instead of raw mappings; the bus flattens them to
the canonical JSON mapping with to_event_data(). Handlers parse event.data
back with model_validate().
"""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class MatchReason(StrEnum):
    """Why two accounts were correlated."""

    IP = "ip_match"
    EMAIL = "email_match"


class DetectionSource(StrEnum):
    """Which action triggered an alt-account detection."""

    REGISTRATION = "registration"
    LOGIN = "login"
    EMAIL_VERIFICATION = "email_verification"
    MANUAL = "manual"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UserRegistrationData(BaseModel, frozen=True):
    """Payload of user.registered."""

    uid: int
    username: str


class UserLoginData(BaseModel, frozen=True):
    """Payload of user.logged_in."""

    uid: int
    username: str
    ip_address: str | None = None
    user_agent: str | None = None
    login_time: datetime = Field(default_factory=_utcnow)


class UserDeletedData(BaseModel, frozen=True):
    """Payload of user.deleted."""

    uid: int
    username: str
    deleted_by: int | None = None
    reason: str | None = None


class DiscordLinkedData(BaseModel, frozen=True):
    """Payload of user.discord_linked."""

    uid: int
    username: str
    discord_id: str
    discord_username: str
    linked_at: datetime = Field(default_factory=_utcnow)


class RedeemCodeData(BaseModel, frozen=True):
    """Payload of redeem.code_used."""

    uid: int
    username: str
    code: str
    product_name: str
    redeemed_at: datetime = Field(default_factory=_utcnow)


class AltAccountInstance(BaseModel, frozen=True):
    """One account matched against the subject of a detection.

    Attributes:
        uid: The matched account's identifier.
        username: The matched account's username.
        match_reason: Which identity signal matched.
        last_seen: Free-form last-seen hint, when known.
        shared_ips: Addresses shared with the subject, when known.
    """

    uid: int
    username: str
    match_reason: MatchReason
    last_seen: str | None = None
    shared_ips: list[str] = Field(default_factory=list)


class AltAccountData(BaseModel, frozen=True):
    """Payload of user.alt_account_detected.

    Attributes:
        uid: Subject user identifier.
        username: Subject username.
        ip_address: Address that triggered the detection (empty for email).
        alt_accounts: Matched accounts with per-match reason.
        detection_source: Action that triggered the detection.
        detection_time: When the detector ran.
        confidence: Heuristic score in [0, 1]; informational only.
        notes: Free-text note for the notifier.
    """

    uid: int
    username: str
    ip_address: str = ""
    alt_accounts: list[AltAccountInstance] = Field(default_factory=list)
    detection_source: DetectionSource
    detection_time: datetime = Field(default_factory=_utcnow)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    notes: str = ""
