"""Pydantic schemas for user records and study sessions."""
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field

from studybot.schemas.badge import BadgeTier
from studybot.schemas.settlement import SettlementReport


class SessionStatus(str, Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    COMPLETING = "completing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset({SessionStatus.IN_PROGRESS, SessionStatus.COMPLETING})


class SessionOutcome(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    EXPIRED = "expired"  # timers lost, reset after the grace period


class SessionState(BaseModel):
    status: SessionStatus = SessionStatus.IDLE
    start_time: datetime | None = None
    duration_minutes: int | None = None
    generation: int = 0

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def deadline(self) -> datetime | None:
        if self.start_time is None or self.duration_minutes is None:
            return None
        return self.start_time + timedelta(minutes=self.duration_minutes)


class SessionHistoryEntry(BaseModel):
    generation: int
    started_at: datetime
    ended_at: datetime
    duration_minutes: int
    display_minutes: int
    kind: str  # pomodoro | extended
    outcome: SessionOutcome
    tx_hash: str | None = None


class UserRecord(BaseModel):
    user_id: str
    address: str | None = None
    session: SessionState | None = None
    completed_session_count: int = 0
    badges_issued: set[BadgeTier] = Field(default_factory=set)
    session_generation: int = 0
    history: list[SessionHistoryEntry] = Field(default_factory=list)

    @property
    def status(self) -> SessionStatus:
        return self.session.status if self.session else SessionStatus.IDLE


class SessionDescriptor(BaseModel):
    """An armed session instance, handed from the state machine to the scheduler."""

    user_id: str
    address: str
    generation: int
    start_time: datetime
    duration_minutes: int

    @property
    def deadline(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)


# ---------- API payloads ----------

class StartSessionSchema(BaseModel):
    duration_minutes: int = Field(gt=0)


class LinkAddressSchema(BaseModel):
    address: str


class SessionOutSchema(BaseModel):
    status: SessionStatus
    generation: int
    start_time: datetime | None = None
    duration_minutes: int | None = None
    display_minutes: int | None = None
    deadline: datetime | None = None


class UserOutSchema(BaseModel):
    user_id: str
    address: str | None
    session: SessionOutSchema
    completed_session_count: int
    badges_issued: list[BadgeTier]
    history: list[SessionHistoryEntry]
    last_settlement: SettlementReport | None = None


class SessionOptionSchema(BaseModel):
    duration_minutes: int
    display_minutes: int
