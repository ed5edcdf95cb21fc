"""In-process fakes for the ledger, notifier and timer."""
import asyncio
import heapq
import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from studybot.core.errors import LedgerError
from studybot.schemas.badge import BadgeTier
from studybot.services.ledger import TxResult

USER = "1001"
ADDRESS = "0x1111111111111111111111111111111111111111"
OTHER_ADDRESS = "0x2222222222222222222222222222222222222222"
START = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


class ManualHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimer:
    """Virtual clock; callbacks run only when ``advance`` moves past them."""

    def __init__(self, start: datetime = START) -> None:
        self._now = start
        self._queue: list = []
        self._seq = itertools.count()

    def now(self) -> datetime:
        return self._now

    def call_later(self, delay, callback) -> ManualHandle:
        handle = ManualHandle()
        due = self._now + timedelta(seconds=max(delay, 0.0))
        heapq.heappush(self._queue, (due, next(self._seq), callback, handle))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for *_, handle in self._queue if not handle.cancelled)

    async def advance(self, seconds: float) -> None:
        target = self._now + timedelta(seconds=seconds)
        while self._queue and self._queue[0][0] <= target:
            due, _, callback, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = due
            await callback()
            await asyncio.sleep(0)
        self._now = target

    async def advance_minutes(self, minutes: float) -> None:
        await self.advance(minutes * 60)


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = False

    async def notify(self, user_id: str, text: str) -> None:
        if self.fail:
            raise RuntimeError("chat transport down")
        self.sent.append((user_id, text))

    def texts(self, user_id: str) -> list[str]:
        return [text for uid, text in self.sent if uid == user_id]


class FakeLedger:
    """Scriptable ledger; every call is appended to ``calls``."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.balance = Decimal("1")
        self.balance_error: str | None = None
        self.registered: set[str] = set()
        self.register_fixes = True
        self.register_error: str | None = None
        self.check_error: str | None = None
        self.transfer_ok = True
        self.transfer_error: str | None = None
        self.badges: set[tuple[str, BadgeTier]] = set()
        self.has_badge_error: str | None = None
        self.attempt_error: str | None = None
        self.mint_error: str | None = None
        self.mint_ok = True
        self.transfer_gate: asyncio.Event | None = None
        self._tx = itertools.count(1)

    def _hash(self) -> str:
        return f"0x{next(self._tx):064x}"

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def operating_balance(self) -> Decimal:
        self.calls.append(("operating_balance",))
        if self.balance_error:
            raise LedgerError(self.balance_error)
        return self.balance

    async def is_registered(self, address: str) -> bool:
        self.calls.append(("is_registered", address))
        if self.check_error:
            raise LedgerError(self.check_error)
        return address.lower() in self.registered

    async def register(self, address: str) -> TxResult:
        self.calls.append(("register", address))
        if self.register_error:
            raise LedgerError(self.register_error)
        if not self.register_fixes:
            return TxResult(ok=False, tx_hash=self._hash(), error="transaction reverted")
        self.registered.add(address.lower())
        return TxResult(ok=True, tx_hash=self._hash())

    async def transfer_reward(self, address: str, amount: Decimal) -> TxResult:
        self.calls.append(("transfer_reward", address, amount))
        if self.transfer_gate is not None:
            await self.transfer_gate.wait()
        if self.transfer_error:
            raise LedgerError(self.transfer_error)
        if not self.transfer_ok:
            return TxResult(ok=False, tx_hash=self._hash(), error="transaction reverted")
        return TxResult(ok=True, tx_hash=self._hash())

    async def has_badge(self, address: str, tier: BadgeTier) -> bool:
        self.calls.append(("has_badge", address, tier))
        if self.has_badge_error:
            raise LedgerError(self.has_badge_error)
        return (address.lower(), tier) in self.badges

    async def record_attempt(self, address: str, score: int) -> TxResult:
        self.calls.append(("record_attempt", address, score))
        if self.attempt_error:
            raise LedgerError(self.attempt_error)
        return TxResult(ok=True, tx_hash=self._hash())

    async def mint_badge(self, address: str, tier: BadgeTier) -> TxResult:
        self.calls.append(("mint_badge", address, tier))
        if self.mint_error:
            raise LedgerError(self.mint_error)
        if not self.mint_ok:
            return TxResult(ok=False, tx_hash=self._hash(), error="transaction reverted")
        self.badges.add((address.lower(), tier))
        return TxResult(ok=True, tx_hash=self._hash())
