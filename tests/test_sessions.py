"""Session service: wiring of state machine, scheduler and notifications."""
import asyncio

import pytest

from fakes import USER
from studybot.core.errors import InvalidAddress, StudyBotError, UserStoreError, WalletNotLinked
from studybot.schemas.session import SessionOutcome, SessionStatus
from studybot.services import messages


@pytest.mark.asyncio
async def test_invalid_address_is_rejected(service):
    with pytest.raises(InvalidAddress):
        await service.link_address(USER, "0x123")
    assert await service.get_user(USER) is None


@pytest.mark.asyncio
async def test_start_requires_wallet(service, notifier):
    with pytest.raises(WalletNotLinked):
        await service.start(USER, 50)
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_fifty_minute_session_message_sequence(linked, timer, notifier):
    await linked.start(USER, 50)
    await timer.advance_minutes(50)
    await linked.drain()

    texts = notifier.texts(USER)
    assert "50 minutes" in texts[0]
    assert all(t in messages.ENCOURAGING_MESSAGES for t in texts[1:5])
    assert texts[5] == messages.COMPLETED_MESSAGE.format(minutes=50)
    assert len(texts) == 7
    record = await linked.get_user(USER)
    assert record.history[-1].kind == "extended"


@pytest.mark.asyncio
async def test_reset_messages(linked, timer, ledger, notifier):
    await linked.reset(USER)
    assert notifier.texts(USER)[-1] == messages.NOTHING_TO_RESET_MESSAGE

    await linked.start(USER, 2)
    assert await linked.reset(USER) is True
    assert notifier.texts(USER)[-1] == messages.RESET_MESSAGE

    await timer.advance_minutes(5)
    await linked.drain()
    assert ledger.calls == []
    assert (await linked.get_user(USER)).status == SessionStatus.IDLE


@pytest.mark.asyncio
async def test_restart_after_cancel_ignores_old_timers(linked, timer, ledger):
    await linked.start(USER, 50)
    await timer.advance_minutes(1)
    await linked.cancel(USER)
    await linked.start(USER, 2)

    await timer.advance_minutes(60)
    await linked.drain()

    record = await linked.get_user(USER)
    assert ledger.names().count("transfer_reward") == 1
    assert record.completed_session_count == 1
    assert record.history[-1].generation == 2


@pytest.mark.asyncio
async def test_slow_notifier_times_out(linked, settings, notifier):
    settings.notify_timeout_seconds = 0.01

    async def hang(user_id, text):
        await asyncio.sleep(10)

    notifier.notify = hang
    await linked.start(USER, 2)

    assert (await linked.get_user(USER)).status == SessionStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_shutdown_drops_timers(linked, timer, ledger):
    await linked.start(USER, 2)
    await linked.shutdown()
    await timer.advance_minutes(5)

    assert ledger.calls == []
    assert timer.pending == 0


@pytest.mark.asyncio
async def test_store_failure_at_deadline_is_reported(linked, store, timer, ledger, notifier, monkeypatch):
    await linked.start(USER, 2)

    async def locked_save(user_id, record):
        raise UserStoreError("db locked")

    monkeypatch.setattr(store, "save", locked_save)
    await timer.advance_minutes(2)
    await linked.drain()

    assert notifier.texts(USER)[-1] == StudyBotError.message
    assert ledger.calls == []
    assert (await linked.get_user(USER)).status == SessionStatus.IN_PROGRESS

    monkeypatch.undo()
    await timer.advance_minutes(3)
    await linked.start(USER, 2)
    record = await linked.get_user(USER)
    assert record.history[-1].outcome == SessionOutcome.EXPIRED
    assert record.session.generation == 2
