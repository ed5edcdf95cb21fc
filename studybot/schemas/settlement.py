"""Pydantic schemas for settlement results."""
from enum import Enum

from pydantic import BaseModel

from studybot.schemas.badge import BadgeOutcome


class SettlementOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class SettlementReport(BaseModel):
    user_id: str
    generation: int
    outcome: SettlementOutcome
    error_code: str | None = None
    tx_hash: str | None = None
    badge: BadgeOutcome | None = None
