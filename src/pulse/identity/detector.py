"""Identity correlation ("alt account") detector.

Correlates accounts that share a network address or a verified email and
publishes user.alt_account_detected through the event bus. The correlation
graph lives in the shared store:

- user:<uid>:ips and ip:<address>:users link users and addresses both ways.
- alt_account:<a>:<b> holds the first detection time of a pair, written for
  both (a, b) and (b, a).
- alt_accounts:<uid> is the set of uids correlated with a user.
- alt_account:<a>:<b>:notified:<reason> marks a pair as reported for one
  match reason. Markers are claimed with SET NX before anything is
  published, so concurrent detectors cannot both report the same pair; a
  claim is released again if recording the pair or the publish fails.

Registration always reports. Login reports only when the address changed
and at least one co-resident pair is unreported, and then reports the whole
group. Email reports go out on every check regardless of earlier reports;
setting identity.dedupe_email_matches deduplicates them like logins.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any, Protocol

from pydantic import BaseModel

from pulse.config.models import IdentityConfig
from pulse.core.errors import PulseError
from pulse.core.types import Result, UserId
from pulse.events.base import Event, EventType
from pulse.events.payloads import (
    AltAccountData,
    AltAccountInstance,
    DetectionSource,
    MatchReason,
)
from pulse.identity.scoring import EMAIL_MATCH_CONFIDENCE, score_confidence
from pulse.observability.logging import get_logger
from pulse.persistence.users import UserDirectory, UserRecord
from pulse.store import keys
from pulse.store.protocol import SharedStore

log = get_logger(__name__)

EMAIL_MATCH_NOTES = "Multiple accounts sharing the same email address"

Detection = Result[AltAccountData | None, PulseError]
"""The published payload, or None when nothing was reported."""


class EventPublisher(Protocol):
    """The part of EventBus the detector needs."""

    async def publish(
        self, event_type: EventType, payload: Mapping[str, Any] | BaseModel
    ) -> Result[Event, PulseError]: ...


def _parse_uids(members: set[str], *, exclude: UserId) -> list[UserId]:
    uids: list[UserId] = []
    for member in members:
        try:
            uid = int(member)
        except ValueError:
            continue
        if uid > 0 and uid != exclude:
            uids.append(uid)
    return sorted(uids)


class IdentityCorrelationDetector:
    """Detects accounts likely owned by the same person.

    Usage:
        detector = IdentityCorrelationDetector(store, users, bus)
        result = await detector.check_registration(user, "203.0.113.7")
        if result.is_ok and result.value is not None:
            ...  # an alt_account_detected event was published
    """

    def __init__(
        self,
        store: SharedStore,
        users: UserDirectory,
        publisher: EventPublisher,
        config: IdentityConfig | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._users = users
        self._publisher = publisher
        self._config = config or IdentityConfig()
        self._clock = clock or (lambda: datetime.now(UTC))

    async def check_registration(self, user: UserRecord, ip_address: str) -> Detection:
        """Record the new user's address and report every co-resident account."""
        try:
            await self._record_address(user.uid, ip_address)
            await self._store.set(keys.user_current_ip(user.uid), ip_address)
            alts = await self._co_residents(user.uid, ip_address)
        except PulseError as e:
            log.error("identity.registration.check_failed", uid=user.uid, error=str(e))
            return Result.err(e)

        if not alts:
            return Result.ok(None)

        return await self.notify(
            user,
            alts,
            ip_address=ip_address,
            source=DetectionSource.REGISTRATION,
            reason=MatchReason.IP,
            dedupe=False,
        )

    async def check_login(self, user: UserRecord, ip_address: str) -> Detection:
        """Record the login address; report only on an address change.

        The current address is swapped with a single GETSET, so two logins
        racing on the same user see distinct previous values.
        """
        try:
            await self._record_address(user.uid, ip_address)
            previous = await self._store.getset(keys.user_current_ip(user.uid), ip_address)
            if previous == ip_address:
                log.debug("identity.login.address_unchanged", uid=user.uid)
                return Result.ok(None)
            alts = await self._co_residents(user.uid, ip_address)
        except PulseError as e:
            log.error("identity.login.check_failed", uid=user.uid, error=str(e))
            return Result.err(e)

        if not alts:
            return Result.ok(None)

        return await self.notify(
            user,
            alts,
            ip_address=ip_address,
            source=DetectionSource.LOGIN,
            reason=MatchReason.IP,
            dedupe=True,
        )

    async def check_email(self, user: UserRecord) -> Detection:
        """Report accounts sharing the user's verified email (exact match)."""
        if not user.email:
            return Result.ok(None)

        try:
            alts = await self._users.find_by_email(user.email, exclude_uid=user.uid)
        except PulseError as e:
            log.error("identity.email.check_failed", uid=user.uid, error=str(e))
            return Result.err(e)

        if not alts:
            return Result.ok(None)

        return await self.notify(
            user,
            alts,
            source=DetectionSource.EMAIL_VERIFICATION,
            reason=MatchReason.EMAIL,
            dedupe=self._config.dedupe_email_matches,
        )

    async def get_alt_accounts(self, uid: UserId) -> Result[list[UserRecord], PulseError]:
        """User records of every account correlated with uid."""
        try:
            members = await self._store.smembers(keys.alt_accounts(uid))
            alt_uids = _parse_uids(members, exclude=uid)
            records = await self._users.get_many(alt_uids) if alt_uids else []
        except PulseError as e:
            log.error("identity.alts.lookup_failed", uid=uid, error=str(e))
            return Result.err(e)
        return Result.ok(records)

    async def notify(
        self,
        user: UserRecord,
        alts: Sequence[UserRecord],
        *,
        ip_address: str = "",
        source: DetectionSource = DetectionSource.MANUAL,
        reason: MatchReason = MatchReason.IP,
        dedupe: bool = False,
    ) -> Detection:
        """Record the pairs and publish one alt_account_detected event.

        Args:
            user: Subject of the detection.
            alts: Accounts matched against the subject.
            ip_address: Shared address, empty for email matches.
            source: Action that triggered the detection.
            reason: Match reason recorded for every pair.
            dedupe: Skip when every pair was already reported for reason.

        Returns:
            Result containing the published payload, None if deduplicated.
        """
        alts = [alt for alt in alts if alt.uid != user.uid]
        if not alts:
            return Result.ok(None)

        now = self._clock()
        claimed: list[UserId] = []
        try:
            await self._claim(user.uid, alts, reason, now, claimed)
            if dedupe and not claimed:
                log.debug(
                    "identity.detection.deduplicated",
                    uid=user.uid,
                    reason=reason.value,
                    matches=len(alts),
                )
                return Result.ok(None)
            await self._record_pairs(user.uid, alts, now)
        except PulseError as e:
            await self._release(user.uid, claimed, reason)
            log.error("identity.detection.record_failed", uid=user.uid, error=str(e))
            return Result.err(e)

        payload = self._build_payload(user, alts, ip_address, source, reason, now)
        published = await self._publisher.publish(EventType.ALT_ACCOUNT_DETECTED, payload)
        if published.is_err:
            await self._release(user.uid, claimed, reason)
            log.error(
                "identity.detection.publish_failed",
                uid=user.uid,
                error=str(published.error),
            )
            return Result.err(published.error)

        log.info(
            "identity.alt_account.detected",
            uid=user.uid,
            source=source.value,
            reason=reason.value,
            matches=[alt.uid for alt in alts],
            confidence=payload.confidence,
        )
        return Result.ok(payload)

    async def _record_address(self, uid: UserId, ip_address: str) -> None:
        await self._store.sadd(keys.user_ips(uid), ip_address)
        await self._store.sadd(keys.ip_users(ip_address), uid)

    async def _co_residents(self, uid: UserId, ip_address: str) -> list[UserRecord]:
        members = await self._store.smembers(keys.ip_users(ip_address))
        others = _parse_uids(members, exclude=uid)
        if not others:
            return []
        return await self._users.get_many(others)

    async def _claim(
        self,
        uid: UserId,
        alts: Sequence[UserRecord],
        reason: MatchReason,
        now: datetime,
        claimed: list[UserId],
    ) -> None:
        """Set the notified markers, appending each alt whose marker was newly set."""
        stamp = now.isoformat()
        for alt in alts:
            if await self._store.set(
                keys.alt_notified(uid, alt.uid, reason.value), stamp, nx=True
            ):
                claimed.append(alt.uid)
            await self._store.set(keys.alt_notified(alt.uid, uid, reason.value), stamp, nx=True)

    async def _release(self, uid: UserId, claimed: Sequence[UserId], reason: MatchReason) -> None:
        marker_keys = [
            key
            for alt_uid in claimed
            for key in (
                keys.alt_notified(uid, alt_uid, reason.value),
                keys.alt_notified(alt_uid, uid, reason.value),
            )
        ]
        if not marker_keys:
            return
        try:
            await self._store.delete(*marker_keys)
        except PulseError as e:
            log.warning("identity.claims.release_failed", uid=uid, error=str(e))

    async def _record_pairs(
        self, uid: UserId, alts: Sequence[UserRecord], now: datetime
    ) -> None:
        stamp = now.isoformat()
        for alt in alts:
            # First detection time is kept
            await self._store.set(keys.alt_pair(uid, alt.uid), stamp, nx=True)
            await self._store.set(keys.alt_pair(alt.uid, uid), stamp, nx=True)
            await self._store.sadd(keys.alt_accounts(uid), alt.uid)
            await self._store.sadd(keys.alt_accounts(alt.uid), uid)

    def _build_payload(
        self,
        user: UserRecord,
        alts: Sequence[UserRecord],
        ip_address: str,
        source: DetectionSource,
        reason: MatchReason,
        now: datetime,
    ) -> AltAccountData:
        if reason is MatchReason.EMAIL:
            confidence = EMAIL_MATCH_CONFIDENCE
            notes = EMAIL_MATCH_NOTES
        else:
            confidence = score_confidence(
                len(alts), registration=source is DetectionSource.REGISTRATION
            )
            notes = f"Detected during {source.value} with shared IP address"

        shared_ips = [ip_address] if ip_address else []
        return AltAccountData(
            uid=user.uid,
            username=user.username,
            ip_address=ip_address,
            alt_accounts=[
                AltAccountInstance(
                    uid=alt.uid,
                    username=alt.username,
                    match_reason=reason,
                    shared_ips=shared_ips,
                )
                for alt in alts
            ],
            detection_source=source,
            detection_time=now,
            confidence=confidence,
            notes=notes,
        )
