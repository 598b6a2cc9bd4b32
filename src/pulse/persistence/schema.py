"""Database schema definitions using SQLAlchemy Core.

Tables:
    events: every published event, with best-effort processed bookkeeping
    users:  the slice of the platform's user records the detector and the
            rollout engine read (identity, email, staff level)
"""

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    false,
    text,
)

metadata = MetaData()

events_table = Table(
    "events",
    metadata,
    Column("id", String(36), primary_key=True),
    # dot.notation.past_tense, e.g. "user.alt_account_detected"
    Column("event_type", String(50), nullable=False),
    Column("payload", JSON, nullable=False),
    Column(
        "created_at",
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=text("CURRENT_TIMESTAMP"),
    ),
    Column("processed", Boolean, nullable=False, default=False, server_default=false()),
    Column("processed_at", DateTime(timezone=True), nullable=True),
    Index("ix_events_event_type", "event_type"),
    Index("ix_events_created_at", "created_at"),
    Index("ix_events_processed_type", "processed", "event_type"),
)

users_table = Table(
    "users",
    metadata,
    Column("uid", Integer, primary_key=True, autoincrement=True),
    Column("username", String(64), nullable=False, unique=True),
    # Only verified addresses are stored here
    Column("email", String(255), nullable=True),
    Column("staff_level", Integer, nullable=True),
    Column(
        "created_at",
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=text("CURRENT_TIMESTAMP"),
    ),
    Index("ix_users_email", "email"),
    Index("ix_users_staff_level", "staff_level"),
)
