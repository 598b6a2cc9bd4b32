"""User directory backed by the users table.

The rollout engine needs id listings (admins, everyone else, paged scans
and a count); the identity detector needs user records by id and by
verified email. Both depend on the UserDirectory protocol so tests and
other deployments can supply their own source of users.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from pulse.core.errors import PersistenceError
from pulse.core.types import UserId
from pulse.persistence.schema import metadata, users_table

DEFAULT_ADMIN_STAFF_LEVEL = 4


@dataclass(frozen=True, slots=True)
class UserRecord:
    """The fields of a platform user this package reads.

    Attributes:
        uid: User identifier.
        username: Public username.
        email: Verified email address, if any.
        staff_level: Staff level; None or below the admin level for regular users.
        created_at: Registration time, when known.
    """

    uid: UserId
    username: str
    email: str | None = None
    staff_level: int | None = None
    created_at: datetime | None = None

    def is_admin(self, admin_staff_level: int = DEFAULT_ADMIN_STAFF_LEVEL) -> bool:
        """Return True if the user holds the admin staff level."""
        return self.staff_level == admin_staff_level


class UserDirectory(Protocol):
    """Read access to the platform's users."""

    async def list_admin_ids(self) -> list[UserId]: ...

    async def list_non_admin_ids(self) -> list[UserId]: ...

    async def list_ids(self, offset: int, limit: int) -> list[UserId]: ...

    async def count(self) -> int: ...

    async def get(self, uid: UserId) -> UserRecord | None: ...

    async def get_many(self, uids: Iterable[UserId]) -> list[UserRecord]: ...

    async def find_by_email(self, email: str, *, exclude_uid: UserId) -> list[UserRecord]: ...


def _record_from_row(row: Any) -> UserRecord:
    return UserRecord(
        uid=row["uid"],
        username=row["username"],
        email=row["email"],
        staff_level=row["staff_level"],
        created_at=row["created_at"],
    )


class SqlUserDirectory:
    """UserDirectory over the users table.

    Usage:
        directory = SqlUserDirectory(engine=engine)
        await directory.initialize()
        admins = await directory.list_admin_ids()
    """

    def __init__(
        self,
        database_url: str | None = None,
        *,
        engine: AsyncEngine | None = None,
        admin_staff_level: int = DEFAULT_ADMIN_STAFF_LEVEL,
    ) -> None:
        if database_url is None and engine is None:
            msg = "SqlUserDirectory requires a database_url or an engine"
            raise ValueError(msg)
        self._database_url = database_url
        self._engine: AsyncEngine | None = engine
        self._owns_engine = engine is None
        self._admin_staff_level = admin_staff_level

    async def initialize(self) -> None:
        """Create the engine (if needed) and the tables. Idempotent."""
        if self._engine is None:
            assert self._database_url is not None
            self._engine = create_async_engine(self._database_url, echo=False)

        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def _fetch(self, query: Any, operation: str) -> Sequence[Any]:
        if self._engine is None:
            raise PersistenceError(
                "SqlUserDirectory not initialized. Call initialize() first.",
                operation=operation,
            )
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(query)
                return result.mappings().all()
        except Exception as e:
            raise PersistenceError(
                f"Failed to {operation}: {e}",
                operation="select",
                table="users",
            ) from e

    async def list_admin_ids(self) -> list[UserId]:
        rows = await self._fetch(
            select(users_table.c.uid)
            .where(users_table.c.staff_level == self._admin_staff_level)
            .order_by(users_table.c.uid),
            "list admin ids",
        )
        return [row["uid"] for row in rows]

    async def list_non_admin_ids(self) -> list[UserId]:
        rows = await self._fetch(
            select(users_table.c.uid)
            .where(
                or_(
                    users_table.c.staff_level.is_(None),
                    users_table.c.staff_level != self._admin_staff_level,
                )
            )
            .order_by(users_table.c.uid),
            "list non-admin ids",
        )
        return [row["uid"] for row in rows]

    async def list_ids(self, offset: int, limit: int) -> list[UserId]:
        """Page through all user ids in uid order."""
        rows = await self._fetch(
            select(users_table.c.uid).order_by(users_table.c.uid).offset(offset).limit(limit),
            "list ids",
        )
        return [row["uid"] for row in rows]

    async def count(self) -> int:
        rows = await self._fetch(
            select(func.count().label("total")).select_from(users_table), "count users"
        )
        return int(rows[0]["total"])

    async def get(self, uid: UserId) -> UserRecord | None:
        rows = await self._fetch(
            select(users_table).where(users_table.c.uid == uid), "get user"
        )
        return _record_from_row(rows[0]) if rows else None

    async def get_many(self, uids: Iterable[UserId]) -> list[UserRecord]:
        uid_list = list(uids)
        if not uid_list:
            return []
        rows = await self._fetch(
            select(users_table).where(users_table.c.uid.in_(uid_list)).order_by(users_table.c.uid),
            "get users",
        )
        return [_record_from_row(row) for row in rows]

    async def find_by_email(self, email: str, *, exclude_uid: UserId) -> list[UserRecord]:
        """Users other than exclude_uid whose verified email equals email exactly."""
        rows = await self._fetch(
            select(users_table)
            .where(users_table.c.email == email)
            .where(users_table.c.uid != exclude_uid)
            .order_by(users_table.c.uid),
            "find users by email",
        )
        return [_record_from_row(row) for row in rows]

    async def add(
        self,
        username: str,
        *,
        uid: UserId | None = None,
        email: str | None = None,
        staff_level: int | None = None,
    ) -> UserRecord:
        """Insert a user and return its record.

        The platform's account service owns user creation; this exists for
        seeding and local tooling.
        """
        if self._engine is None:
            raise PersistenceError(
                "SqlUserDirectory not initialized. Call initialize() first.",
                operation="add",
            )
        values: dict[str, Any] = {
            "username": username,
            "email": email,
            "staff_level": staff_level,
        }
        if uid is not None:
            values["uid"] = uid
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(users_table.insert().values(**values))
                new_uid = uid if uid is not None else result.inserted_primary_key[0]
        except Exception as e:
            raise PersistenceError(
                f"Failed to add user: {e}",
                operation="insert",
                table="users",
                details={"username": username},
            ) from e
        return UserRecord(uid=new_uid, username=username, email=email, staff_level=staff_level)

    async def close(self) -> None:
        """Dispose the engine if this directory created it."""
        if self._engine is not None and self._owns_engine:
            await self._engine.dispose()
            self._engine = None
