"""Ledger client: address registration, reward transfer and badge minting.

``Web3Ledger`` talks to three contracts on an EVM chain:

* the quiz manager, which tracks registered wallets and knows the token,
* the reward token, which mints directly to users,
* the badge NFT, which records attempts and mints tier badges.

web3.py is synchronous, so every call runs in the loop's default executor.
Writes are serialized on one lock because they share the operator nonce.
"""
import asyncio
import functools
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

from eth_account import Account
from web3 import Web3

from studybot.core.errors import LedgerError
from studybot.schemas.badge import BadgeTier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TxResult:
    ok: bool
    tx_hash: str | None = None
    error: str | None = None


class Ledger(Protocol):
    async def operating_balance(self) -> Decimal: ...

    async def is_registered(self, address: str) -> bool: ...

    async def register(self, address: str) -> TxResult: ...

    async def transfer_reward(self, address: str, amount: Decimal) -> TxResult: ...

    async def has_badge(self, address: str, tier: BadgeTier) -> bool: ...

    async def record_attempt(self, address: str, score: int) -> TxResult: ...

    async def mint_badge(self, address: str, tier: BadgeTier) -> TxResult: ...


def is_valid_address(address: str) -> bool:
    return Web3.is_address(address)


def _fn(name: str, inputs: list[str], outputs: list[str] | None = None, view: bool = False) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": f"arg{i}", "type": t} for i, t in enumerate(inputs)],
        "outputs": [{"name": "", "type": t} for t in (outputs or [])],
        "stateMutability": "view" if view else "nonpayable",
    }


QUIZ_MANAGER_ABI = [
    _fn("isRegistered", ["address"], ["bool"], view=True),
    _fn("reRegisterWallet", ["address"]),
    _fn("token", [], ["address"], view=True),
]

TOKEN_ABI = [
    _fn("mintToUser", ["address", "uint256"]),
    _fn("balanceOf", ["address"], ["uint256"], view=True),
]

BADGE_NFT_ABI = [
    _fn("recordQuizAttempt", ["address", "uint256"]),
    _fn("safeMint", ["address", "uint8"]),
    _fn("hasBadge", ["address", "uint8"], ["bool"], view=True),
]


class Web3Ledger:
    def __init__(
        self,
        rpc_url: str,
        quiz_manager_address: str,
        badge_nft_address: str,
        private_key: str,
        *,
        gas_limit: int = 500_000,
        receipt_timeout: float = 120.0,
    ) -> None:
        self._w3 = Web3(Web3.HTTPProvider(rpc_url))
        self._account = Account.from_key(private_key)
        self._gas_limit = gas_limit
        self._receipt_timeout = receipt_timeout
        self._quiz_manager = self._w3.eth.contract(
            address=Web3.to_checksum_address(quiz_manager_address), abi=QUIZ_MANAGER_ABI
        )
        self._badge_nft = self._w3.eth.contract(
            address=Web3.to_checksum_address(badge_nft_address), abi=BADGE_NFT_ABI
        )
        self._token = None
        self._tx_lock = asyncio.Lock()

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(func, *args))
        except LedgerError:
            raise
        except Exception as exc:
            raise LedgerError(f"{getattr(func, '__name__', 'ledger call')}: {exc}") from exc

    def _token_contract(self):
        if self._token is None:
            token_address = self._quiz_manager.functions.token().call()
            logger.info("Reward token contract: %s", token_address)
            self._token = self._w3.eth.contract(address=token_address, abi=TOKEN_ABI)
        return self._token

    def _send(self, call) -> TxResult:
        tx = call.build_transaction(
            {
                "from": self._account.address,
                "nonce": self._w3.eth.get_transaction_count(self._account.address, "pending"),
                "gas": self._gas_limit,
                "chainId": self._w3.eth.chain_id,
            }
        )
        signed = self._account.sign_transaction(tx)
        tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        hex_hash = Web3.to_hex(tx_hash)
        logger.info("Transaction sent: %s", hex_hash)
        receipt = self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout)
        if receipt["status"] != 1:
            return TxResult(ok=False, tx_hash=hex_hash, error="transaction reverted")
        return TxResult(ok=True, tx_hash=hex_hash)

    async def _transact(self, build) -> TxResult:
        async with self._tx_lock:
            return await self._run(lambda: self._send(build()))

    async def operating_balance(self) -> Decimal:
        wei = await self._run(self._w3.eth.get_balance, self._account.address)
        return Decimal(Web3.from_wei(wei, "ether"))

    async def is_registered(self, address: str) -> bool:
        checksum = Web3.to_checksum_address(address)
        return bool(await self._run(self._quiz_manager.functions.isRegistered(checksum).call))

    async def register(self, address: str) -> TxResult:
        checksum = Web3.to_checksum_address(address)
        return await self._transact(lambda: self._quiz_manager.functions.reRegisterWallet(checksum))

    async def transfer_reward(self, address: str, amount: Decimal) -> TxResult:
        checksum = Web3.to_checksum_address(address)
        wei = Web3.to_wei(amount, "ether")
        return await self._transact(lambda: self._token_contract().functions.mintToUser(checksum, wei))

    async def has_badge(self, address: str, tier: BadgeTier) -> bool:
        checksum = Web3.to_checksum_address(address)
        call = self._badge_nft.functions.hasBadge(checksum, tier.ledger_index).call
        return bool(await self._run(call))

    async def record_attempt(self, address: str, score: int) -> TxResult:
        checksum = Web3.to_checksum_address(address)
        return await self._transact(lambda: self._badge_nft.functions.recordQuizAttempt(checksum, score))

    async def mint_badge(self, address: str, tier: BadgeTier) -> TxResult:
        checksum = Web3.to_checksum_address(address)
        return await self._transact(lambda: self._badge_nft.functions.safeMint(checksum, tier.ledger_index))


class UnconfiguredLedger:
    """Stands in when no RPC or contracts are configured: every call fails.

    Sessions still run and time out normally; settlement then resolves to
    a failure message instead of a reward.
    """

    async def _unavailable(self, *args: Any) -> Any:
        raise LedgerError("ledger not configured")

    operating_balance = _unavailable
    is_registered = _unavailable
    register = _unavailable
    transfer_reward = _unavailable
    has_badge = _unavailable
    record_attempt = _unavailable
    mint_badge = _unavailable
