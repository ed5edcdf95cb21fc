"""Session state machine: one in-flight study session per user.

Idle -> InProgress -> Completing -> Completed | Idle (failed settlement)
InProgress -> Idle (cancel / reset)

Every transition is a read-modify-write of the user's record under that
user's lock. Ledger I/O never happens here.
"""
import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from studybot.core.config import Settings
from studybot.core.errors import (
    AddressConflict,
    InvalidDuration,
    NoActiveSession,
    SessionAlreadyActive,
    WalletNotLinked,
)
from studybot.schemas.badge import BadgeTier
from studybot.schemas.session import (
    SessionDescriptor,
    SessionHistoryEntry,
    SessionOutcome,
    SessionState,
    SessionStatus,
    UserRecord,
)
from studybot.schemas.settlement import SettlementOutcome
from studybot.services.messages import session_kind
from studybot.services.store import UserStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def descriptor_for(record: UserRecord) -> SessionDescriptor:
    session = record.session
    return SessionDescriptor(
        user_id=record.user_id,
        address=record.address,
        generation=session.generation,
        start_time=session.start_time,
        duration_minutes=session.duration_minutes,
    )


class SessionStateMachine:
    def __init__(
        self,
        store: UserStore,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, user_id: str) -> asyncio.Lock:
        """Single-writer lock for one user's record."""
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    async def get(self, user_id: str) -> UserRecord | None:
        return await self._store.get(user_id)

    async def link_address(self, user_id: str, address: str) -> UserRecord:
        """Attach a ledger address; creates the record on first contact."""
        async with self.lock(user_id):
            record = await self._store.get(user_id) or UserRecord(user_id=user_id)
            if record.address and record.address.lower() != address.lower():
                raise AddressConflict(user_id)
            record.address = address
            await self._store.save(user_id, record)
        return record

    # ---------- transitions ----------

    async def start(self, user_id: str, duration_minutes: int) -> SessionDescriptor:
        if duration_minutes not in self._settings.duration_options:
            raise InvalidDuration(f"{duration_minutes} not in {self._settings.duration_options}")

        async with self.lock(user_id):
            record = await self._store.get(user_id)
            if record is None or not record.address:
                raise WalletNotLinked(user_id)

            now = self._clock()
            self._expire_if_stale(record, now)
            if record.session is not None and record.session.is_active:
                raise SessionAlreadyActive(f"user {user_id} is {record.status.value}")

            record.session_generation += 1
            record.session = SessionState(
                status=SessionStatus.IN_PROGRESS,
                start_time=now,
                duration_minutes=duration_minutes,
                generation=record.session_generation,
            )
            await self._store.save(user_id, record)

        logger.info(
            "Session %s started for %s (%s min)", record.session_generation, user_id, duration_minutes
        )
        return descriptor_for(record)

    async def cancel(self, user_id: str) -> int:
        """Cancel the running session; returns its generation."""
        async with self.lock(user_id):
            record = await self._store.get(user_id)
            if record is None or record.status != SessionStatus.IN_PROGRESS:
                raise NoActiveSession(user_id)
            generation = record.session.generation
            self._close(record, SessionOutcome.CANCELLED, SessionStatus.IDLE)
            await self._store.save(user_id, record)

        logger.info("Session %s cancelled for %s", generation, user_id)
        return generation

    async def reset(self, user_id: str) -> int | None:
        """Clear a running or stale session. Returns the cleared generation, if any."""
        async with self.lock(user_id):
            record = await self._store.get(user_id)
            if record is None or record.session is None:
                return None
            generation = record.session.generation
            if not self._expire_if_stale(record, self._clock()):
                if record.status != SessionStatus.IN_PROGRESS:
                    return None
                self._close(record, SessionOutcome.CANCELLED, SessionStatus.IDLE)
            await self._store.save(user_id, record)

        logger.info("Session %s reset for %s", generation, user_id)
        return generation

    async def mark_completing(self, user_id: str, generation: int) -> SessionDescriptor | None:
        """Deadline reached. No-op unless this generation is still InProgress."""
        async with self.lock(user_id):
            record = await self._store.get(user_id)
            if (
                record is None
                or record.status != SessionStatus.IN_PROGRESS
                or record.session.generation != generation
            ):
                logger.debug("Ignoring elapsed event for %s generation %s", user_id, generation)
                return None
            record.session.status = SessionStatus.COMPLETING
            await self._store.save(user_id, record)
        return descriptor_for(record)

    async def finalize(
        self,
        user_id: str,
        generation: int,
        outcome: SettlementOutcome,
        tx_hash: str | None = None,
    ) -> UserRecord | None:
        async with self.lock(user_id):
            record = await self._store.get(user_id)
            if (
                record is None
                or record.status != SessionStatus.COMPLETING
                or record.session.generation != generation
            ):
                logger.warning(
                    "Finalize(%s) for %s generation %s found no completing session",
                    outcome.value, user_id, generation,
                )
                return None
            if outcome == SettlementOutcome.SUCCESS:
                record.completed_session_count += 1
                self._close(record, SessionOutcome.COMPLETED, SessionStatus.COMPLETED, tx_hash=tx_hash)
            else:
                self._close(record, SessionOutcome.FAILED, SessionStatus.IDLE)
            await self._store.save(user_id, record)

        logger.info(
            "Session %s for %s finalized: %s (completed=%s)",
            generation, user_id, outcome.value, record.completed_session_count,
        )
        return record

    async def remember_badge(self, user_id: str, tier: BadgeTier) -> None:
        """Cache an issued tier on the user record."""
        async with self.lock(user_id):
            record = await self._store.get(user_id)
            if record is None or tier in record.badges_issued:
                return
            record.badges_issued.add(tier)
            await self._store.save(user_id, record)

    # ---------- helpers ----------

    def _close(
        self,
        record: UserRecord,
        outcome: SessionOutcome,
        status: SessionStatus,
        tx_hash: str | None = None,
    ) -> None:
        session = record.session
        display = self._settings.display_minutes(session.duration_minutes)
        record.history.append(
            SessionHistoryEntry(
                generation=session.generation,
                started_at=session.start_time,
                ended_at=self._clock(),
                duration_minutes=session.duration_minutes,
                display_minutes=display,
                kind=session_kind(display),
                outcome=outcome,
                tx_hash=tx_hash,
            )
        )
        if status == SessionStatus.IDLE:
            record.session = SessionState(status=SessionStatus.IDLE, generation=session.generation)
        else:
            session.status = status

    def _expire_if_stale(self, record: UserRecord, now: datetime) -> bool:
        """Reset a session whose timers were lost (e.g. process restart)."""
        session = record.session
        if session is None or not session.is_active or session.deadline is None:
            return False
        if session.status == SessionStatus.IN_PROGRESS:
            grace = timedelta(minutes=self._settings.stale_grace_minutes)
        else:
            grace = timedelta(minutes=self._settings.settlement_stale_minutes)
        if now <= session.deadline + grace:
            return False
        logger.warning(
            "Session %s for %s is stale (%s since %s), resetting",
            session.generation, record.user_id, session.status.value, session.deadline.isoformat(),
        )
        self._close(record, SessionOutcome.EXPIRED, SessionStatus.IDLE)
        return True
