"""Progressive feature rollout engine.

Admits a growing population of users into each experiment. At start_date the
experiment gets its initial members: every admin, then a random sample of
regular users. Each tick raises membership toward a target that grows
linearly from initial_user_count to the whole user base at end_date. After
end_date everyone is enrolled. Members are never removed by the engine.

Membership writes are single SADD commands on the experiment's set, so two
processes running a tick at the same time can at worst overshoot the target
slightly; they never lose or duplicate members.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime
import random

from pydantic import ValidationError as PydanticValidationError

from pulse.config.models import RolloutConfig
from pulse.core.errors import PulseError, StoreError, ValidationError
from pulse.core.types import Result, UserId
from pulse.observability.logging import get_logger
from pulse.persistence.users import UserDirectory
from pulse.rollout.models import Experiment, ExperimentOutcome, RolloutSummary
from pulse.store import keys
from pulse.store.protocol import SharedStore

log = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def _validation_error(e: PydanticValidationError) -> ValidationError:
    first = e.errors()[0] if e.errors() else {}
    loc = first.get("loc", ())
    return ValidationError(
        f"Invalid experiment: {first.get('msg', str(e))}",
        field=".".join(str(part) for part in loc) or None,
        details={"error_count": e.error_count()},
    )


class RolloutEngine:
    """Creates experiments and advances their membership over time.

    Randomness and time are injected so ticks are reproducible in tests.

    Usage:
        engine = RolloutEngine(store, users, RolloutConfig(), rng=random.Random(7))
        await engine.create_experiment(
            "Profile music", "profile_music", "New player", start, end, 100
        )
        summary = (await engine.process_experiments()).unwrap()
    """

    def __init__(
        self,
        store: SharedStore,
        users: UserDirectory,
        config: RolloutConfig | None = None,
        *,
        rng: random.Random | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._users = users
        self._config = config or RolloutConfig()
        self._rng = rng or random.Random(self._config.random_seed)
        self._clock = clock or utc_now

    # -- definitions ---------------------------------------------------------

    async def create_experiment(
        self,
        name: str,
        feature_key: str,
        description: str,
        start_date: datetime,
        end_date: datetime,
        initial_user_count: int,
    ) -> Result[Experiment, PulseError]:
        """Store an experiment definition, replacing any with the same key.

        If the window has already started, initial members are assigned
        right away; a failure there is logged and left to the next tick.
        """
        try:
            experiment = Experiment(
                name=name,
                feature_key=feature_key,
                description=description,
                start_date=start_date,
                end_date=end_date,
                initial_user_count=initial_user_count,
            )
        except PydanticValidationError as e:
            error = _validation_error(e)
            log.warning("rollout.experiment.rejected", feature_key=feature_key, error=str(error))
            return Result.err(error)

        try:
            await self._store.hset(
                keys.ACTIVE_EXPERIMENTS, feature_key, experiment.model_dump_json()
            )
        except StoreError as e:
            log.error("rollout.experiment.save_failed", feature_key=feature_key, error=str(e))
            return Result.err(e)

        if experiment.has_started(self._clock()):
            try:
                added = await self._assign_initial(experiment)
            except PulseError as e:
                log.warning(
                    "rollout.initial_assignment.failed",
                    feature_key=feature_key,
                    error=str(e),
                )
            else:
                log.info(
                    "rollout.initial_assignment.completed", feature_key=feature_key, added=added
                )

        log.info("rollout.experiment.created", feature_key=feature_key, name=name)
        return Result.ok(experiment)

    async def delete_experiment(self, feature_key: str) -> Result[bool, PulseError]:
        """Remove the definition, then the membership set.

        Returns:
            Result containing True if a definition was removed.
        """
        try:
            removed = await self._store.hdel(keys.ACTIVE_EXPERIMENTS, feature_key)
        except StoreError as e:
            log.error("rollout.experiment.delete_failed", feature_key=feature_key, error=str(e))
            return Result.err(e)

        try:
            await self._store.delete(keys.experiment_users(feature_key))
        except StoreError as e:
            log.warning(
                "rollout.members.delete_failed", feature_key=feature_key, error=str(e)
            )

        log.info("rollout.experiment.deleted", feature_key=feature_key, existed=bool(removed))
        return Result.ok(bool(removed))

    async def experiment_exists(self, feature_key: str) -> Result[bool, PulseError]:
        try:
            return Result.ok(await self._store.hexists(keys.ACTIVE_EXPERIMENTS, feature_key))
        except StoreError as e:
            return Result.err(e)

    async def get_experiment(self, feature_key: str) -> Result[Experiment | None, PulseError]:
        try:
            raw = await self._store.hget(keys.ACTIVE_EXPERIMENTS, feature_key)
        except StoreError as e:
            return Result.err(e)
        if raw is None:
            return Result.ok(None)
        try:
            return Result.ok(Experiment.model_validate_json(raw))
        except PydanticValidationError as e:
            return Result.err(_validation_error(e))

    async def list_experiments(self) -> Result[list[Experiment], PulseError]:
        """All stored experiments in feature-key order. Unreadable entries are skipped."""
        try:
            raw = await self._store.hgetall(keys.ACTIVE_EXPERIMENTS)
        except StoreError as e:
            return Result.err(e)
        return Result.ok([exp for _, exp in self._decode_all(raw)])

    async def member_count(self, feature_key: str) -> Result[int, PulseError]:
        try:
            return Result.ok(await self._store.scard(keys.experiment_users(feature_key)))
        except StoreError as e:
            return Result.err(e)

    async def get_user_experimental_features(self, uid: UserId) -> Result[list[str], PulseError]:
        """Feature keys of the running experiments the user is enrolled in.

        Experiments that have not started or have ended are not reported.
        """
        try:
            raw = await self._store.hgetall(keys.ACTIVE_EXPERIMENTS)
        except StoreError as e:
            log.error("rollout.features.lookup_failed", uid=uid, error=str(e))
            return Result.err(e)

        now = self._clock()
        features: list[str] = []
        for feature_key, experiment in self._decode_all(raw):
            if not experiment.is_active(now):
                continue
            try:
                member = await self._store.sismember(keys.experiment_users(feature_key), uid)
            except StoreError as e:
                log.warning(
                    "rollout.membership.check_failed",
                    uid=uid,
                    feature_key=feature_key,
                    error=str(e),
                )
                continue
            if member:
                features.append(feature_key)
        return Result.ok(features)

    # -- ticks ---------------------------------------------------------------

    async def process_experiments(self) -> Result[RolloutSummary, PulseError]:
        """Advance every stored experiment once.

        A failure on one experiment is logged and recorded in the summary;
        the others are still processed.
        """
        try:
            raw = await self._store.hgetall(keys.ACTIVE_EXPERIMENTS)
        except StoreError as e:
            log.error("rollout.tick.failed", error=str(e))
            return Result.err(e)

        now = self._clock()
        outcomes: dict[str, ExperimentOutcome] = {}
        added: dict[str, int] = {}
        errors: dict[str, str] = {}

        for feature_key in sorted(raw):
            try:
                experiment = Experiment.model_validate_json(raw[feature_key])
            except PydanticValidationError as e:
                log.warning(
                    "rollout.experiment.decode_failed", feature_key=feature_key, error=str(e)
                )
                outcomes[feature_key] = ExperimentOutcome.FAILED
                errors[feature_key] = str(_validation_error(e))
                continue

            try:
                outcome, count = await self._advance(experiment, now)
            except PulseError as e:
                log.warning(
                    "rollout.experiment.advance_failed", feature_key=feature_key, error=str(e)
                )
                outcomes[feature_key] = ExperimentOutcome.FAILED
                errors[feature_key] = str(e)
                continue

            outcomes[feature_key] = outcome
            if count:
                added[feature_key] = count

        summary = RolloutSummary(outcomes=outcomes, added=added, errors=errors)
        log.info(
            "rollout.tick.completed",
            experiments=summary.processed,
            added=summary.total_added,
            failed=len(summary.failed),
        )
        return Result.ok(summary)

    async def _advance(
        self, experiment: Experiment, now: datetime
    ) -> tuple[ExperimentOutcome, int]:
        feature_key = experiment.feature_key

        if experiment.is_completed(now):
            count = await self._expand_to_all(feature_key)
            return ExperimentOutcome.COMPLETED, count

        if not experiment.has_started(now):
            return ExperimentOutcome.PENDING, 0

        total_users = await self._users.count()
        current = await self._store.scard(keys.experiment_users(feature_key))
        target = experiment.target_count(now, total_users)
        if target <= current:
            return ExperimentOutcome.UNCHANGED, 0

        log.info(
            "rollout.experiment.advancing",
            feature_key=feature_key,
            current=current,
            target=target,
            progress=round(experiment.progress(now) * 100, 2),
        )
        count = await self._assign_additional(feature_key, target - current)
        return ExperimentOutcome.ADVANCED, count

    async def _admin_ids(self, feature_key: str) -> list[UserId]:
        # A failed admin lookup does not block regular users
        try:
            return await self._users.list_admin_ids()
        except PulseError as e:
            log.warning("rollout.admins.lookup_failed", feature_key=feature_key, error=str(e))
            return []

    async def _add_members(self, feature_key: str, uids: Iterable[UserId]) -> int:
        members = list(uids)
        if not members:
            return 0
        return await self._store.sadd(keys.experiment_users(feature_key), *members)

    async def _assign_initial(self, experiment: Experiment) -> int:
        """Enroll all admins, then sample regular users up to the initial count."""
        feature_key = experiment.feature_key
        admins = await self._admin_ids(feature_key)
        regulars = await self._users.list_non_admin_ids()

        added = await self._add_members(feature_key, admins)
        needed = experiment.initial_user_count - len(admins)
        if needed <= 0:
            log.info(
                "rollout.initial_assignment.admins_only",
                feature_key=feature_key,
                admins=len(admins),
            )
            return added

        sample = self._rng.sample(regulars, min(needed, len(regulars)))
        added += await self._add_members(feature_key, sample)
        log.info(
            "rollout.users.assigned",
            feature_key=feature_key,
            admins=len(admins),
            regular=len(sample),
        )
        return added

    async def _assign_additional(self, feature_key: str, count: int) -> int:
        """Add up to count members: missing admins first, then sampled regular users."""
        members_key = keys.experiment_users(feature_key)
        members = await self._store.smembers(members_key)

        missing_admins = [
            uid for uid in await self._admin_ids(feature_key) if str(uid) not in members
        ]
        added = await self._add_members(feature_key, missing_admins)
        remaining = count - len(missing_admins)
        if remaining <= 0:
            return added

        eligible = [
            uid for uid in await self._users.list_non_admin_ids() if str(uid) not in members
        ]
        sample = self._rng.sample(eligible, min(remaining, len(eligible)))
        added += await self._add_members(feature_key, sample)
        log.info(
            "rollout.users.assigned",
            feature_key=feature_key,
            admins=len(missing_admins),
            regular=len(sample),
        )
        return added

    async def _expand_to_all(self, feature_key: str) -> int:
        """Enroll every user, admins first, paging through the directory."""
        added = await self._add_members(feature_key, await self._admin_ids(feature_key))

        batch_size = self._config.batch_size
        offset = 0
        while True:
            batch = await self._users.list_ids(offset, batch_size)
            if not batch:
                break
            added += await self._add_members(feature_key, batch)
            offset += len(batch)
            if len(batch) < batch_size:
                break

        if added:
            log.info(
                "rollout.experiment.expanded", feature_key=feature_key, added=added, scanned=offset
            )
        return added

    def _decode_all(self, raw: dict[str, str]) -> list[tuple[str, Experiment]]:
        decoded: list[tuple[str, Experiment]] = []
        for feature_key in sorted(raw):
            try:
                decoded.append((feature_key, Experiment.model_validate_json(raw[feature_key])))
            except PydanticValidationError as e:
                log.warning(
                    "rollout.experiment.decode_failed", feature_key=feature_key, error=str(e)
                )
        return decoded
