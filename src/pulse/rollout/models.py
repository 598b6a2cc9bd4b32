"""Rollout data models.

An Experiment is stored as JSON in the experiments:active hash, keyed by its
feature key. Membership lives in a separate set per experiment.
"""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator, model_validator


class Experiment(BaseModel, frozen=True):
    """A feature rolled out linearly between start_date and end_date.

    Attributes:
        name: Display name.
        feature_key: Unique key clients check for (e.g. "profile_music_v2").
        description: Free-text description.
        start_date: When initial members are admitted.
        end_date: When the feature becomes available to everyone.
        initial_user_count: Members at start_date, admins included.
    """

    name: str = Field(min_length=1)
    feature_key: str = Field(min_length=1, pattern=r"^\S+$")
    description: str = ""
    start_date: datetime
    end_date: datetime
    initial_user_count: int = Field(default=0, ge=0)

    @field_validator("start_date", "end_date")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Treat naive datetimes as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)

    @model_validator(mode="after")
    def check_window(self) -> "Experiment":
        if self.start_date >= self.end_date:
            msg = "start_date must be before end_date"
            raise ValueError(msg)
        return self

    def has_started(self, now: datetime) -> bool:
        return now >= self.start_date

    def is_active(self, now: datetime) -> bool:
        """True strictly inside the rollout window."""
        return self.start_date < now < self.end_date

    def is_completed(self, now: datetime) -> bool:
        return now > self.end_date

    def progress(self, now: datetime) -> float:
        """Fraction of the window elapsed at now, clamped to [0, 1]."""
        total = (self.end_date - self.start_date).total_seconds()
        elapsed = (now - self.start_date).total_seconds()
        return min(max(elapsed / total, 0.0), 1.0)

    def target_count(self, now: datetime, total_users: int) -> int:
        """Members the linear ramp calls for at now, truncated toward zero."""
        initial = self.initial_user_count
        return int(initial + self.progress(now) * (total_users - initial))


class ExperimentOutcome(StrEnum):
    """What a rollout tick did with one experiment."""

    PENDING = "pending"
    ADVANCED = "advanced"
    UNCHANGED = "unchanged"
    COMPLETED = "completed"
    FAILED = "failed"


class RolloutSummary(BaseModel, frozen=True):
    """Result of one process_experiments() tick.

    Attributes:
        outcomes: Outcome per feature key.
        added: Members added per feature key (only keys that gained members).
        errors: Error message per failed feature key.
    """

    outcomes: dict[str, ExperimentOutcome] = Field(default_factory=dict)
    added: dict[str, int] = Field(default_factory=dict)
    errors: dict[str, str] = Field(default_factory=dict)

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def failed(self) -> list[str]:
        failed = ExperimentOutcome.FAILED
        return [key for key, outcome in self.outcomes.items() if outcome is failed]

    @property
    def total_added(self) -> int:
        return sum(self.added.values())
