"""Session scheduler: interim notifications and the deadline for each session.

Timers are registered against a timer facility (``call_later`` + ``now``).
Every user's timer set is tagged with the session generation it was armed
for; cancelling drops the generation, and each callback checks that its
generation is still the armed one before doing anything, so a timer that
fires late after a cancel or a restart discards itself.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from studybot.core.config import Settings
from studybot.schemas.session import SessionDescriptor

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timer(Protocol):
    def now(self) -> datetime: ...

    def call_later(self, delay: float, callback: Callback) -> TimerHandle: ...


class AsyncioTimer:
    """Runs callbacks as tasks on the running event loop."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def call_later(self, delay: float, callback: Callback) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(delay, 0.0), self._spawn, callback)

    def _spawn(self, callback: Callback) -> None:
        task = asyncio.ensure_future(callback())
        self._tasks.add(task)
        task.add_done_callback(self._reap)

    def _reap(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Timer callback failed", exc_info=task.exception())


@dataclass(frozen=True)
class SessionTimeline:
    """Offsets from session start, in seconds."""

    interim_offsets: tuple[float, ...]
    deadline: float


def plan_timeline(duration_minutes: int, cadence_minutes: int) -> SessionTimeline:
    """Interim boundaries strictly before the deadline, then the deadline."""
    offsets = tuple(
        float(minute * 60) for minute in range(cadence_minutes, duration_minutes, cadence_minutes)
    )
    return SessionTimeline(interim_offsets=offsets, deadline=float(duration_minutes * 60))


@dataclass
class _ArmedSession:
    generation: int
    handles: list[TimerHandle] = field(default_factory=list)


class SessionScheduler:
    def __init__(self, timer: Timer, settings: Settings) -> None:
        self._timer = timer
        self._settings = settings
        self._armed: dict[str, _ArmedSession] = {}

    def now(self) -> datetime:
        return self._timer.now()

    def is_armed(self, user_id: str, generation: int) -> bool:
        armed = self._armed.get(user_id)
        return armed is not None and armed.generation == generation

    def arm(
        self,
        descriptor: SessionDescriptor,
        on_interim: Callable[[SessionDescriptor], Awaitable[None]],
        on_elapsed: Callable[[SessionDescriptor], Awaitable[None]],
    ) -> SessionTimeline:
        """Schedule the session's interim and elapsed callbacks.

        Offsets are measured from the session's start time, so arming late
        (e.g. after a slow store write) only fires what is still ahead.
        """
        user_id, generation = descriptor.user_id, descriptor.generation
        self.cancel(user_id)

        timeline = plan_timeline(
            descriptor.duration_minutes, self._settings.cadence_minutes(descriptor.duration_minutes)
        )
        elapsed_so_far = (self._timer.now() - descriptor.start_time).total_seconds()
        armed = self._armed[user_id] = _ArmedSession(generation=generation)

        async def interim() -> None:
            if not self.is_armed(user_id, generation):
                logger.debug("Discarding stale interim timer for %s generation %s", user_id, generation)
                return
            await on_interim(descriptor)

        async def elapsed() -> None:
            if not self.is_armed(user_id, generation):
                logger.debug("Discarding stale elapsed timer for %s generation %s", user_id, generation)
                return
            self.cancel(user_id)
            await on_elapsed(descriptor)

        for offset in timeline.interim_offsets:
            if offset > elapsed_so_far:
                armed.handles.append(self._timer.call_later(offset - elapsed_so_far, interim))
        armed.handles.append(self._timer.call_later(timeline.deadline - elapsed_so_far, elapsed))

        logger.debug(
            "Armed %s interim timers and deadline for %s generation %s",
            len(armed.handles) - 1, user_id, generation,
        )
        return timeline

    def cancel(self, user_id: str, generation: int | None = None) -> bool:
        """Drop the user's timers. With a generation, only if it is the armed one."""
        armed = self._armed.get(user_id)
        if armed is None or (generation is not None and armed.generation != generation):
            return False
        del self._armed[user_id]
        for handle in armed.handles:
            handle.cancel()
        return True

    def shutdown(self) -> None:
        for user_id in list(self._armed):
            self.cancel(user_id)
