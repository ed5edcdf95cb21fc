"""Session service: the entry point callers use to drive study sessions."""
import asyncio
import logging

from studybot.core.config import Settings
from studybot.core.errors import InvalidAddress, StudyBotError, UserStoreError
from studybot.schemas.session import SessionDescriptor, UserRecord
from studybot.schemas.settlement import SettlementReport
from studybot.services import messages
from studybot.services.badges import BadgeMilestoneEvaluator
from studybot.services.ledger import Ledger, is_valid_address
from studybot.services.messages import MessagePicker
from studybot.services.notifier import Notifier
from studybot.services.scheduler import AsyncioTimer, SessionScheduler, Timer
from studybot.services.settlement import RewardSettlementCoordinator
from studybot.services.state_machine import SessionStateMachine
from studybot.services.store import UserStore

logger = logging.getLogger(__name__)


class SessionService:
    def __init__(
        self,
        store: UserStore,
        ledger: Ledger,
        notifier: Notifier,
        settings: Settings,
        timer: Timer | None = None,
        picker: MessagePicker | None = None,
    ) -> None:
        self.settings = settings
        self.notifier = notifier
        self.picker = picker or MessagePicker()
        timer = timer or AsyncioTimer()

        self.state_machine = SessionStateMachine(store, settings, clock=timer.now)
        self.scheduler = SessionScheduler(timer, settings)
        self.evaluator = BadgeMilestoneEvaluator(
            ledger, thresholds=settings.badge_thresholds, attempt_score=settings.badge_attempt_score
        )
        self.coordinator = RewardSettlementCoordinator(
            ledger, self.state_machine, self.evaluator, self.notify, settings
        )
        self._settlements: set[asyncio.Task] = set()
        self._reports: dict[str, SettlementReport] = {}

    async def notify(self, user_id: str, text: str) -> None:
        """Send a chat message without letting transport trouble reach the caller."""
        try:
            await asyncio.wait_for(
                self.notifier.notify(user_id, text), timeout=self.settings.notify_timeout_seconds
            )
        except Exception as exc:
            logger.warning("Notification to %s failed: %r", user_id, exc)

    # ---------- user operations ----------

    async def link_address(self, user_id: str, address: str) -> UserRecord:
        if not is_valid_address(address):
            raise InvalidAddress(address)
        return await self.state_machine.link_address(user_id, address)

    async def get_user(self, user_id: str) -> UserRecord | None:
        return await self.state_machine.get(user_id)

    def last_settlement(self, user_id: str) -> SettlementReport | None:
        return self._reports.get(user_id)

    async def start(self, user_id: str, duration_minutes: int) -> SessionDescriptor:
        descriptor = await self.state_machine.start(user_id, duration_minutes)
        self.scheduler.arm(descriptor, self._on_interim, self._on_elapsed)
        display = self.settings.display_minutes(duration_minutes)
        await self.notify(user_id, self.picker.start(display))
        return descriptor

    async def cancel(self, user_id: str) -> None:
        generation = await self.state_machine.cancel(user_id)
        self.scheduler.cancel(user_id, generation)
        await self.notify(user_id, messages.CANCELLED_MESSAGE)

    async def reset(self, user_id: str) -> bool:
        generation = await self.state_machine.reset(user_id)
        if generation is None:
            await self.notify(user_id, messages.NOTHING_TO_RESET_MESSAGE)
            return False
        self.scheduler.cancel(user_id, generation)
        await self.notify(user_id, messages.RESET_MESSAGE)
        return True

    # ---------- scheduler callbacks ----------

    async def _on_interim(self, descriptor: SessionDescriptor) -> None:
        await self.notify(descriptor.user_id, self.picker.encouragement())

    async def _on_elapsed(self, descriptor: SessionDescriptor) -> None:
        try:
            completing = await self.state_machine.mark_completing(descriptor.user_id, descriptor.generation)
        except UserStoreError:
            # left InProgress; stale-session expiry frees it after the grace period
            logger.exception(
                "Could not close session %s for %s at its deadline", descriptor.generation, descriptor.user_id
            )
            await self.notify(descriptor.user_id, StudyBotError.message)
            return
        if completing is None:
            return
        task = asyncio.create_task(self._settle(completing))
        self._settlements.add(task)
        task.add_done_callback(self._settlements.discard)

    async def _settle(self, descriptor: SessionDescriptor) -> SettlementReport:
        report = await self.coordinator.settle(descriptor)
        self._reports[descriptor.user_id] = report
        return report

    # ---------- lifecycle ----------

    async def drain(self) -> None:
        """Wait for every running settlement, including ones started meanwhile."""
        while self._settlements:
            await asyncio.gather(*list(self._settlements), return_exceptions=True)

    async def shutdown(self) -> None:
        self.scheduler.shutdown()
        # settlements created this tick must start before they are cancelled
        await asyncio.sleep(0)
        for task in list(self._settlements):
            task.cancel()
        await self.drain()
