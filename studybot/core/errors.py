"""Error taxonomy for sessions and settlement.

Each error carries a stable ``code`` (used by the HTTP layer and in
settlement reports) and a user-facing ``message`` sent through the chat
notifier.
"""


class StudyBotError(Exception):
    code = "error"
    message = "❌ Sorry, something went wrong. Please try again later."

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail
        super().__init__(detail or self.code)


# --- user-input class: reported directly, never retried ---

class SessionAlreadyActive(StudyBotError):
    code = "session_already_active"
    message = (
        "⚠️ You already have a study session in progress! Focus on that one first.\n\n"
        "If you believe this is an error, reset the session."
    )


class NoActiveSession(StudyBotError):
    code = "no_active_session"
    message = "❌ You don't have an active study session to cancel."


class WalletNotLinked(StudyBotError):
    code = "wallet_not_linked"
    message = "⚠️ You need to create a wallet first. Use the /start command to set up your wallet."


class InvalidDuration(StudyBotError):
    code = "invalid_duration"
    message = "⚠️ That session length isn't available. Pick one of the offered durations."


class AddressConflict(StudyBotError):
    code = "address_conflict"
    message = "⚠️ A different wallet is already linked to this account."


class InvalidAddress(StudyBotError):
    code = "invalid_address"
    message = "⚠️ That doesn't look like a valid wallet address."


# --- operational class: surfaced to the user with a manual-retry hint ---

class SettlementError(StudyBotError):
    """Base for failures that end a completing session without reward."""


class InsufficientOperatingFunds(SettlementError):
    code = "insufficient_operating_funds"
    message = (
        "❌ Rewards are temporarily unavailable, so this session was not counted. "
        "Please start a new session a bit later."
    )


class RegistrationUnrecoverable(SettlementError):
    code = "registration_unrecoverable"
    message = (
        "❌ Failed to process rewards: your wallet is not registered. "
        "Use the /start command to make sure your wallet is registered, then start a new session."
    )


class SettlementFailed(SettlementError):
    code = "settlement_failed"
    message = "❌ Failed to process rewards. Please try again later by starting a new session."


# --- non-fatal ---

class BadgeIssuanceFailed(StudyBotError):
    code = "badge_issuance_failed"
    message = (
        "ℹ️ You've reached a badge milestone, but there was an issue minting it. "
        "It will be retried after your next session."
    )


# --- infrastructure ---

class LedgerError(StudyBotError):
    """A ledger call failed (RPC, revert, timeout)."""

    code = "ledger_error"


class UserStoreError(StudyBotError):
    """The backing user store could not read or write a record."""

    code = "user_store_error"
