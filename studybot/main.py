"""Study Session Rewards - FastAPI app entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from studybot.core.config import get_settings
from studybot.core.logging import configure_logging
from studybot.db.base import Base
from studybot.db.session import AsyncSessionLocal, engine
from studybot.routers import api
from studybot.services.ledger import UnconfiguredLedger, Web3Ledger
from studybot.services.notifier import LoggingNotifier, TelegramNotifier
from studybot.services.sessions import SessionService
from studybot.services.store import CachedUserStore, SqlUserStore

logger = logging.getLogger(__name__)

settings = get_settings()


def build_ledger(settings):
    if not settings.ledger_configured:
        logger.warning("Ledger not configured; settlements will fail until RPC and contracts are set")
        return UnconfiguredLedger()
    return Web3Ledger(
        settings.rpc_url,
        settings.quiz_manager_address,
        settings.badge_nft_address,
        settings.operator_private_key,
        gas_limit=settings.ledger_gas_limit,
        receipt_timeout=settings.ledger_receipt_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    store = CachedUserStore(
        SqlUserStore(AsyncSessionLocal),
        ttl_seconds=settings.user_cache_ttl_seconds,
        max_entries=settings.user_cache_max_entries,
    )
    if settings.telegram_token:
        notifier = TelegramNotifier(settings.telegram_token)
        await notifier.start()
    else:
        notifier = LoggingNotifier()

    app.state.sessions = SessionService(store, build_ledger(settings), notifier, settings)
    logger.info("%s started", settings.app_name)

    yield

    await app.state.sessions.shutdown()
    if isinstance(notifier, TelegramNotifier):
        await notifier.close()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Timed study sessions with on-chain rewards and badges",
    lifespan=lifespan,
)

app.include_router(api.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
