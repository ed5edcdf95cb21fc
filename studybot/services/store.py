"""User store: the key-value record store the session core reads and writes.

Three implementations share the ``UserStore`` protocol:

* ``SqlUserStore`` persists records with async SQLAlchemy (``users`` and
  ``session_history`` tables).
* ``InMemoryUserStore`` keeps deep copies in a dict (dev and tests).
* ``CachedUserStore`` wraps a backing store as a read-through /
  write-through cache. Entries younger than ``ttl_seconds`` are served
  without touching the backend. If a backend read fails, a cached entry of
  any age is served instead. If a backend write fails, the entry is dropped
  and the error propagates, so a write that did not persist is never read
  back.
"""
import json
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from studybot.core.errors import UserStoreError
from studybot.models.history import SessionHistory
from studybot.models.user import User
from studybot.schemas.badge import BadgeTier
from studybot.schemas.session import (
    SessionHistoryEntry,
    SessionOutcome,
    SessionState,
    SessionStatus,
    UserRecord,
)

logger = logging.getLogger(__name__)


class UserStore(Protocol):
    async def get(self, user_id: str) -> UserRecord | None: ...

    async def save(self, user_id: str, record: UserRecord) -> None: ...


class InMemoryUserStore:
    """Dict-backed store. Records are copied in and out."""

    def __init__(self) -> None:
        self._records: dict[str, UserRecord] = {}

    async def get(self, user_id: str) -> UserRecord | None:
        record = self._records.get(user_id)
        return record.model_copy(deep=True) if record else None

    async def save(self, user_id: str, record: UserRecord) -> None:
        self._records[user_id] = record.model_copy(deep=True)


def _utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_record(row: User) -> UserRecord:
    session = None
    if row.session_status:
        session = SessionState(
            status=SessionStatus(row.session_status),
            start_time=_utc(row.session_started_at),
            duration_minutes=row.session_duration,
            generation=row.session_generation or 0,
        )
    history = [
        SessionHistoryEntry(
            generation=h.generation,
            started_at=_utc(h.started_at),
            ended_at=_utc(h.ended_at),
            duration_minutes=h.duration_minutes,
            display_minutes=h.display_minutes,
            kind=h.kind,
            outcome=SessionOutcome(h.outcome),
            tx_hash=h.tx_hash,
        )
        for h in row.history
    ]
    return UserRecord(
        user_id=row.user_id,
        address=row.address,
        session=session,
        completed_session_count=row.completed_sessions or 0,
        badges_issued={BadgeTier(t) for t in json.loads(row.badges_json or "[]")},
        session_generation=row.session_generation or 0,
        history=history,
    )


def _apply(row: User, record: UserRecord) -> None:
    row.address = record.address
    if record.session is None:
        row.session_status = None
        row.session_started_at = None
        row.session_duration = None
    else:
        row.session_status = record.session.status.value
        row.session_started_at = record.session.start_time
        row.session_duration = record.session.duration_minutes
    row.session_generation = record.session_generation
    row.completed_sessions = record.completed_session_count
    row.badges_json = json.dumps(sorted(t.value for t in record.badges_issued))


class SqlUserStore:
    """UserRecord persistence on the ``users`` / ``session_history`` tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    async def _load(db: AsyncSession, user_id: str) -> User | None:
        result = await db.execute(
            select(User).options(selectinload(User.history)).where(User.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get(self, user_id: str) -> UserRecord | None:
        try:
            async with self._session_factory() as db:
                row = await self._load(db, user_id)
                return _to_record(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise UserStoreError(f"failed to read user {user_id}: {exc}") from exc

    async def save(self, user_id: str, record: UserRecord) -> None:
        try:
            async with self._session_factory() as db:
                row = await self._load(db, user_id)
                if row is None:
                    row = User(user_id=user_id, badges_json="[]")
                    db.add(row)
                    known: set[int] = set()
                else:
                    known = {h.generation for h in row.history}
                _apply(row, record)

                # history is append-only, one entry per generation
                for entry in record.history:
                    if entry.generation in known:
                        continue
                    db.add(
                        SessionHistory(
                            user_id=user_id,
                            generation=entry.generation,
                            started_at=entry.started_at,
                            ended_at=entry.ended_at,
                            duration_minutes=entry.duration_minutes,
                            display_minutes=entry.display_minutes,
                            kind=entry.kind,
                            outcome=entry.outcome.value,
                            tx_hash=entry.tx_hash,
                        )
                    )
                await db.commit()
        except SQLAlchemyError as exc:
            raise UserStoreError(f"failed to save user {user_id}: {exc}") from exc


class CachedUserStore:
    """Two-tier read-through / write-through cache in front of a backing store."""

    def __init__(
        self,
        backend: UserStore,
        ttl_seconds: float = 30.0,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[UserRecord, float]] = OrderedDict()

    def _remember(self, user_id: str, record: UserRecord) -> None:
        self._entries[user_id] = (record.model_copy(deep=True), self._clock())
        self._entries.move_to_end(user_id)
        while len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted user %s from cache", evicted)

    def invalidate(self, user_id: str) -> None:
        self._entries.pop(user_id, None)

    async def get(self, user_id: str) -> UserRecord | None:
        cached = self._entries.get(user_id)
        if cached is not None:
            record, stored_at = cached
            if self._clock() - stored_at < self._ttl:
                self._entries.move_to_end(user_id)
                return record.model_copy(deep=True)

        try:
            record = await self._backend.get(user_id)
        except UserStoreError:
            if cached is None:
                raise
            logger.warning("User store read failed for %s, serving cached record", user_id)
            return cached[0].model_copy(deep=True)

        if record is None:
            self.invalidate(user_id)
            return None
        self._remember(user_id, record)
        return record

    async def save(self, user_id: str, record: UserRecord) -> None:
        try:
            await self._backend.save(user_id, record)
        except UserStoreError:
            self.invalidate(user_id)
            raise
        self._remember(user_id, record)
