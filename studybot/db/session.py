"""Async engine, session factory and declarative base."""
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from studybot.core.config import get_settings

Base = declarative_base()


def _to_async_url(url: str) -> str:
    # a plain sqlite url from env gets the aiosqlite driver
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


def make_engine(url: str, echo: bool = False) -> AsyncEngine:
    return create_async_engine(_to_async_url(url), echo=echo, future=True)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, expire_on_commit=False)


settings = get_settings()
engine = make_engine(settings.database_url, echo=settings.debug)
AsyncSessionLocal = make_session_factory(engine)

