"""Badge tiers and the outcome of a milestone evaluation."""
from enum import Enum

from pydantic import BaseModel


class BadgeTier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"

    @property
    def ledger_index(self) -> int:
        """Tier id used by the badge contract (uint8)."""
        return _LEDGER_INDEX[self]

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


_LEDGER_INDEX = {BadgeTier.BRONZE: 0, BadgeTier.SILVER: 1, BadgeTier.GOLD: 2}


class BadgeResult(str, Enum):
    NONE = "none"  # no threshold met
    ALREADY_ISSUED = "already_issued"
    MINTED = "minted"
    FAILED = "failed"


class BadgeOutcome(BaseModel):
    result: BadgeResult
    tier: BadgeTier | None = None
    tx_hash: str | None = None
    error: str | None = None
