from studybot.schemas.badge import BadgeOutcome, BadgeResult, BadgeTier
from studybot.schemas.session import (
    SessionDescriptor,
    SessionHistoryEntry,
    SessionOutcome,
    SessionState,
    SessionStatus,
    UserRecord,
)
from studybot.schemas.settlement import SettlementOutcome, SettlementReport

__all__ = [
    "BadgeOutcome",
    "BadgeResult",
    "BadgeTier",
    "SessionDescriptor",
    "SessionHistoryEntry",
    "SessionOutcome",
    "SessionState",
    "SessionStatus",
    "SettlementOutcome",
    "SettlementReport",
    "UserRecord",
]
