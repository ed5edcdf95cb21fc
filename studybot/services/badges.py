"""Badge milestones: completed-session thresholds mapped to NFT tiers."""
import logging

from studybot.core.errors import LedgerError
from studybot.schemas.badge import BadgeOutcome, BadgeResult, BadgeTier
from studybot.services.ledger import Ledger

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS = {
    BadgeTier.BRONZE: 20,
    BadgeTier.SILVER: 50,
    BadgeTier.GOLD: 70,
}


def select_tier(completed_count: int, thresholds: dict[BadgeTier, int]) -> BadgeTier | None:
    """Return the highest tier whose threshold is met, or None."""
    met = [(threshold, tier) for tier, threshold in thresholds.items() if completed_count >= threshold]
    if not met:
        return None
    return max(met, key=lambda item: item[0])[1]


class BadgeMilestoneEvaluator:
    """Mints the highest reached tier once.

    Only the single highest tier is attempted per call; lower tiers skipped
    over between calls are not backfilled.
    """

    def __init__(
        self,
        ledger: Ledger,
        thresholds: dict[BadgeTier, int] | None = None,
        attempt_score: int = 100,
    ) -> None:
        self._ledger = ledger
        self._thresholds = thresholds or DEFAULT_THRESHOLDS
        self._attempt_score = attempt_score

    async def evaluate(
        self,
        address: str,
        completed_count: int,
        issued: set[BadgeTier] | None = None,
    ) -> BadgeOutcome:
        tier = select_tier(completed_count, self._thresholds)
        if tier is None:
            return BadgeOutcome(result=BadgeResult.NONE)
        if issued and tier in issued:
            return BadgeOutcome(result=BadgeResult.ALREADY_ISSUED, tier=tier)

        try:
            if await self._ledger.has_badge(address, tier):
                logger.info("%s already holds the %s badge", address, tier.value)
                return BadgeOutcome(result=BadgeResult.ALREADY_ISSUED, tier=tier)
        except LedgerError as exc:
            logger.warning("Badge lookup failed for %s (%s): %s", address, tier.value, exc)
            return BadgeOutcome(result=BadgeResult.FAILED, tier=tier, error=str(exc))

        try:
            attempt = await self._ledger.record_attempt(address, self._attempt_score)
            if not attempt.ok:
                logger.warning("Recording attempt for %s failed: %s", address, attempt.error)
        except LedgerError as exc:
            # minting can still succeed without the attempt record
            logger.warning("Recording attempt for %s failed: %s", address, exc)

        try:
            result = await self._ledger.mint_badge(address, tier)
        except LedgerError as exc:
            if "already has badge" in str(exc):
                return BadgeOutcome(result=BadgeResult.ALREADY_ISSUED, tier=tier)
            logger.warning("Minting %s badge for %s failed: %s", tier.value, address, exc)
            return BadgeOutcome(result=BadgeResult.FAILED, tier=tier, error=str(exc))

        if not result.ok:
            logger.warning("Minting %s badge for %s failed: %s", tier.value, address, result.error)
            return BadgeOutcome(result=BadgeResult.FAILED, tier=tier, tx_hash=result.tx_hash, error=result.error)

        logger.info("Minted %s badge for %s: %s", tier.value, address, result.tx_hash)
        return BadgeOutcome(result=BadgeResult.MINTED, tier=tier, tx_hash=result.tx_hash)
