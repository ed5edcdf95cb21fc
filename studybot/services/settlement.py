"""Reward settlement: turns a completing session into an on-chain reward.

Protocol, in order:

1. preflight: the operator account must hold enough for gas,
2. registration check on the user's address,
3. registration repair (bounded re-register + re-verify) when the check
   fails or errors,
4. reward transfer, then ``finalize(SUCCESS)``,
5. badge evaluation, best-effort; it never reverts a completed session.

Every failure is caught here and resolves the session to Completed or Idle,
and every run ends with exactly one terminal message to the user.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from studybot.core.config import Settings
from studybot.core.errors import (
    BadgeIssuanceFailed,
    InsufficientOperatingFunds,
    LedgerError,
    RegistrationUnrecoverable,
    SettlementError,
    SettlementFailed,
    StudyBotError,
    UserStoreError,
)
from studybot.schemas.badge import BadgeOutcome, BadgeResult
from studybot.schemas.session import SessionDescriptor, UserRecord
from studybot.schemas.settlement import SettlementOutcome, SettlementReport
from studybot.services import messages
from studybot.services.badges import BadgeMilestoneEvaluator
from studybot.services.ledger import Ledger
from studybot.services.state_machine import SessionStateMachine

logger = logging.getLogger(__name__)

NotifyFn = Callable[[str, str], Awaitable[None]]


@dataclass
class _Run:
    """Progress of one settlement, consulted if the run is cancelled."""

    descriptor: SessionDescriptor
    tx_hash: str | None = None
    finalized: bool = False


class RewardSettlementCoordinator:
    def __init__(
        self,
        ledger: Ledger,
        state_machine: SessionStateMachine,
        evaluator: BadgeMilestoneEvaluator,
        notify: NotifyFn,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._ledger = ledger
        self._state_machine = state_machine
        self._evaluator = evaluator
        self._notify = notify
        self._settings = settings
        self._sleep = sleep

    def _tx_url(self, tx_hash: str | None) -> str:
        if not tx_hash:
            return "n/a"
        return self._settings.explorer_tx_url.format(tx_hash=tx_hash)

    async def settle(self, descriptor: SessionDescriptor) -> SettlementReport:
        """Run the protocol for one session that just entered Completing.

        Cancellation at any step still resolves the session: Completed if
        the reward transfer went through, Idle otherwise.
        """
        run = _Run(descriptor)
        try:
            return await self._settle(run)
        except asyncio.CancelledError:
            await self._resolve_cancelled(run)
            raise

    async def _settle(self, run: _Run) -> SettlementReport:
        descriptor = run.descriptor
        user_id, generation = descriptor.user_id, descriptor.generation
        logger.info("Settling session %s for %s (%s)", generation, user_id, descriptor.address)
        display = self._settings.display_minutes(descriptor.duration_minutes)
        await self._notify(user_id, messages.COMPLETED_MESSAGE.format(minutes=display))

        try:
            await self._run_protocol(run)
        except SettlementError as exc:
            logger.warning("Settlement of session %s for %s failed: %s (%s)", generation, user_id, exc.code, exc)
            return await self._fail(run, exc)
        except Exception as exc:
            logger.exception("Unexpected error settling session %s for %s", generation, user_id)
            return await self._fail(run, SettlementFailed(str(exc)))

        tx_hash = run.tx_hash
        try:
            record = await self._state_machine.finalize(
                user_id, generation, SettlementOutcome.SUCCESS, tx_hash=tx_hash
            )
        except UserStoreError as exc:
            run.finalized = True
            logger.exception("Reward sent for %s but session %s could not be saved", user_id, generation)
            await self._notify(user_id, StudyBotError.message)
            return SettlementReport(
                user_id=user_id,
                generation=generation,
                outcome=SettlementOutcome.FAILURE,
                error_code=exc.code,
                tx_hash=tx_hash,
            )
        run.finalized = True

        count = record.completed_session_count if record else None
        await self._notify(user_id, self._reward_message(count, tx_hash))

        badge = await self._award_badge(record) if record else None
        return SettlementReport(
            user_id=user_id,
            generation=generation,
            outcome=SettlementOutcome.SUCCESS,
            tx_hash=tx_hash,
            badge=badge,
        )

    def _reward_message(self, count: int | None, tx_hash: str | None) -> str:
        return messages.REWARD_SUCCESS_MESSAGE.format(
            amount=self._settings.reward_amount,
            symbol=self._settings.reward_token_symbol,
            count=count if count is not None else "?",
            url=self._tx_url(tx_hash),
        )

    async def _resolve_cancelled(self, run: _Run) -> None:
        if run.finalized:
            return
        user_id, generation = run.descriptor.user_id, run.descriptor.generation
        outcome = SettlementOutcome.SUCCESS if run.tx_hash else SettlementOutcome.FAILURE
        logger.warning("Settlement of session %s for %s cancelled, finalizing as %s", generation, user_id, outcome.value)
        try:
            record = await self._state_machine.finalize(user_id, generation, outcome, tx_hash=run.tx_hash)
        except UserStoreError:
            logger.exception("Could not finalize cancelled session %s for %s", generation, user_id)
            return
        run.finalized = True
        if outcome == SettlementOutcome.SUCCESS:
            count = record.completed_session_count if record else None
            await self._notify(user_id, self._reward_message(count, run.tx_hash))
        else:
            await self._notify(user_id, SettlementFailed.message)

    # ---------- protocol steps ----------

    async def _run_protocol(self, run: _Run) -> None:
        address = run.descriptor.address
        await self._preflight()
        await self._ensure_registered(address)

        # a submitted transfer cannot be recalled, so cancellation waits for its outcome
        transfer = asyncio.ensure_future(self._ledger.transfer_reward(address, self._settings.reward_amount))
        try:
            result = await asyncio.shield(transfer)
        except asyncio.CancelledError:
            await self._collect_transfer(run, transfer)
            raise
        except LedgerError as exc:
            raise SettlementFailed(str(exc)) from exc
        if not result.ok:
            raise SettlementFailed(result.error or f"transfer {result.tx_hash} failed")
        logger.info("Reward of %s sent to %s: %s", self._settings.reward_amount, address, result.tx_hash)
        run.tx_hash = result.tx_hash

    async def _collect_transfer(self, run: _Run, transfer: asyncio.Future) -> None:
        try:
            result = await transfer
        except Exception as exc:
            logger.warning("Reward transfer to %s failed during cancellation: %s", run.descriptor.address, exc)
            return
        if result.ok:
            run.tx_hash = result.tx_hash

    async def _preflight(self) -> None:
        try:
            balance = await self._ledger.operating_balance()
        except LedgerError as exc:
            raise SettlementFailed(f"operating balance unavailable: {exc}") from exc
        floor = self._settings.operating_balance_floor
        if balance < floor:
            raise InsufficientOperatingFunds(f"operating balance {balance} below {floor}")

    async def _check_registered(self, address: str) -> bool:
        try:
            return await self._ledger.is_registered(address)
        except LedgerError as exc:
            logger.warning("Registration check for %s failed: %s", address, exc)
            return False

    async def _ensure_registered(self, address: str) -> None:
        if await self._check_registered(address):
            return

        attempts = max(self._settings.registration_repair_attempts, 1)
        backoff = self._settings.registration_retry_backoff_seconds
        for attempt in range(1, attempts + 1):
            if attempt > 1 and backoff > 0:
                await self._sleep(backoff * 2 ** (attempt - 2))
            logger.info("Re-registering %s (attempt %s/%s)", address, attempt, attempts)
            try:
                result = await self._ledger.register(address)
            except LedgerError as exc:
                logger.warning("Re-registration of %s failed: %s", address, exc)
                continue
            if not result.ok:
                logger.warning("Re-registration of %s failed: %s", address, result.error)
            if await self._check_registered(address):
                return

        raise RegistrationUnrecoverable(f"{address} still unregistered after {attempts} repair attempt(s)")

    # ---------- outcomes ----------

    async def _fail(self, run: _Run, error: SettlementError) -> SettlementReport:
        user_id, generation = run.descriptor.user_id, run.descriptor.generation
        try:
            await self._state_machine.finalize(user_id, generation, SettlementOutcome.FAILURE)
            run.finalized = True
        except UserStoreError:
            # stale-session expiry clears it on the next start
            logger.exception("Could not release session %s for %s", generation, user_id)
        await self._notify(user_id, error.message)
        return SettlementReport(
            user_id=user_id,
            generation=generation,
            outcome=SettlementOutcome.FAILURE,
            error_code=error.code,
        )

    async def _award_badge(self, record: UserRecord) -> BadgeOutcome:
        try:
            outcome = await self._evaluator.evaluate(
                record.address, record.completed_session_count, record.badges_issued
            )
        except Exception as exc:
            logger.exception("Badge evaluation failed for %s", record.user_id)
            outcome = BadgeOutcome(result=BadgeResult.FAILED, error=str(exc))

        if outcome.result in (BadgeResult.MINTED, BadgeResult.ALREADY_ISSUED) and outcome.tier:
            try:
                await self._state_machine.remember_badge(record.user_id, outcome.tier)
            except UserStoreError:
                logger.warning("Could not cache %s badge for %s", outcome.tier.value, record.user_id)

        if outcome.result == BadgeResult.MINTED:
            await self._notify(
                record.user_id,
                messages.BADGE_MINTED_MESSAGE.format(
                    tier=outcome.tier.display_name, url=self._tx_url(outcome.tx_hash)
                ),
            )
        elif outcome.result == BadgeResult.FAILED:
            await self._notify(record.user_id, BadgeIssuanceFailed.message)
        return outcome
