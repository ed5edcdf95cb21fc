"""Shared fixtures: a session service wired to in-memory collaborators."""
import random

import pytest

from fakes import ADDRESS, USER, FakeLedger, ManualTimer, RecordingNotifier
from studybot.core.config import Settings
from studybot.services.messages import MessagePicker
from studybot.services.sessions import SessionService
from studybot.services.store import InMemoryUserStore


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, database_url="sqlite+aiosqlite:///:memory:")


@pytest.fixture
def timer() -> ManualTimer:
    return ManualTimer()


@pytest.fixture
def ledger() -> FakeLedger:
    fake = FakeLedger()
    fake.registered.add(ADDRESS.lower())
    return fake


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def store() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
def service(store, ledger, notifier, settings, timer) -> SessionService:
    return SessionService(
        store, ledger, notifier, settings, timer=timer, picker=MessagePicker(random.Random(7))
    )


@pytest.fixture
async def linked(service) -> SessionService:
    """Service with USER already linked to ADDRESS."""
    await service.link_address(USER, ADDRESS)
    return service
