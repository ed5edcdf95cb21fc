"""Application configuration from environment."""
from decimal import Decimal

from pydantic_settings import BaseSettings

from studybot.schemas.badge import BadgeTier


class Settings(BaseSettings):
    """App settings loaded from env / .env."""

    app_name: str = "Study Session Rewards"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite+aiosqlite:///./studybot.db"

    # Sessions: real minutes offered; 2 is the short test session advertised as 25
    duration_options: list[int] = [2, 50]
    duration_display_minutes: dict[int, int] = {2: 25}
    interim_cadence_minutes: int = 10
    short_session_cadence_minutes: int = 1
    short_session_threshold_minutes: int = 2
    stale_grace_minutes: int = 2
    settlement_stale_minutes: int = 15  # Completing longer than this is orphaned

    # Rewards
    reward_amount: Decimal = Decimal("20")
    reward_token_symbol: str = "SIMBI"
    badge_thresholds: dict[BadgeTier, int] = {
        BadgeTier.BRONZE: 20,
        BadgeTier.SILVER: 50,
        BadgeTier.GOLD: 70,
    }
    badge_attempt_score: int = 100
    operating_balance_floor: Decimal = Decimal("0.01")  # ETH, for gas
    registration_repair_attempts: int = 1
    registration_retry_backoff_seconds: float = 0.0

    # Collaborators
    notify_timeout_seconds: float = 10.0
    user_cache_ttl_seconds: float = 30.0
    user_cache_max_entries: int = 1024

    # Ledger (web3)
    rpc_url: str = ""
    quiz_manager_address: str = ""
    badge_nft_address: str = ""
    operator_private_key: str = ""
    ledger_gas_limit: int = 500_000
    ledger_receipt_timeout_seconds: float = 120.0
    explorer_tx_url: str = "https://sepolia.basescan.org/tx/{tx_hash}"

    # Chat transport
    telegram_token: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    def display_minutes(self, duration_minutes: int) -> int:
        """Minutes shown to the user for a configured duration."""
        return self.duration_display_minutes.get(duration_minutes, duration_minutes)

    def cadence_minutes(self, duration_minutes: int) -> int:
        if duration_minutes <= self.short_session_threshold_minutes:
            return self.short_session_cadence_minutes
        return self.interim_cadence_minutes

    @property
    def ledger_configured(self) -> bool:
        return bool(
            self.rpc_url
            and self.quiz_manager_address
            and self.badge_nft_address
            and self.operator_private_key
        )


def get_settings() -> Settings:
    return Settings()

