from __future__ import annotations

import asyncio
import logging
from typing import Any

from eth_account import Account
from web3 import AsyncWeb3

from dca_engine.common import log_event, with_timeout
from dca_engine.execution.types import SpendingPolicy

SPENDING_LIMITS_ABI: list[dict[str, Any]] = [
    {
        "inputs": [
            {"internalType": "address", "name": "user", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"},
        ],
        "name": "checkLimit",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "user", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"},
        ],
        "name": "recordSpend",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "user", "type": "address"}],
        "name": "getCurrentSpent",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "user", "type": "address"}],
        "name": "getPolicy",
        "outputs": [
            {"internalType": "uint256", "name": "limit", "type": "uint256"},
            {"internalType": "uint256", "name": "period", "type": "uint256"},
            {"internalType": "bool", "name": "isActive", "type": "bool"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
]


class SpendRecordError(RuntimeError):
    pass


class SpendingLimitsContractStore:
    """Reads and records per-wallet USD spend on the SpendingLimits contract.

    Amounts are USD values in 18-decimal base units. ``recordSpend`` is sent
    by the delegatee, which the contract owner must have authorized.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger,
        web3: AsyncWeb3,
        contract_address: str,
        delegatee_private_key: str,
        timeout_seconds: float = 15.0,
        receipt_timeout_seconds: float = 120.0,
    ) -> None:
        self._logger = logger
        self._web3 = web3
        self._contract = web3.eth.contract(
            address=AsyncWeb3.to_checksum_address(contract_address),
            abi=SPENDING_LIMITS_ABI,
        )
        self._account = Account.from_key(delegatee_private_key)
        self._timeout_seconds = timeout_seconds
        self._receipt_timeout_seconds = receipt_timeout_seconds
        self._send_lock = asyncio.Lock()

    async def get_policy(self, wallet_address: str) -> SpendingPolicy | None:
        user = AsyncWeb3.to_checksum_address(wallet_address)
        limit, period, is_active = await with_timeout(
            self._contract.functions.getPolicy(user).call(),
            timeout_seconds=self._timeout_seconds,
            operation="spending policy read",
        )
        if int(limit) == 0 and int(period) == 0 and not is_active:
            return None
        spent = await with_timeout(
            self._contract.functions.getCurrentSpent(user).call(),
            timeout_seconds=self._timeout_seconds,
            operation="current spend read",
        )
        return SpendingPolicy(
            limit_usd_units=int(limit),
            period_seconds=int(period),
            active=bool(is_active),
            spent_usd_units=int(spent),
        )

    async def check_limit(self, wallet_address: str, usd_units: int) -> bool:
        allowed = await with_timeout(
            self._contract.functions.checkLimit(AsyncWeb3.to_checksum_address(wallet_address), usd_units).call(),
            timeout_seconds=self._timeout_seconds,
            operation="spend limit check",
        )
        return bool(allowed)

    async def record_spend(self, wallet_address: str, usd_units: int) -> str | None:
        user = AsyncWeb3.to_checksum_address(wallet_address)
        # The delegatee nonce is shared by every wallet's spend records.
        async with self._send_lock:
            nonce = await with_timeout(
                self._web3.eth.get_transaction_count(self._account.address, "pending"),
                timeout_seconds=self._timeout_seconds,
                operation="delegatee nonce read",
            )
            tx = await with_timeout(
                self._contract.functions.recordSpend(user, usd_units).build_transaction(
                    {"from": self._account.address, "nonce": nonce}
                ),
                timeout_seconds=self._timeout_seconds,
                operation="recordSpend build",
            )
            signed = self._account.sign_transaction(tx)
            tx_hash = await with_timeout(
                self._web3.eth.send_raw_transaction(signed.raw_transaction),
                timeout_seconds=self._timeout_seconds,
                operation="recordSpend send",
            )

        receipt = await self._web3.eth.wait_for_transaction_receipt(
            tx_hash,
            timeout=self._receipt_timeout_seconds,
        )
        tx_hash_hex = "0x" + bytes(tx_hash).hex()
        if int(receipt.get("status", 0)) != 1:
            raise SpendRecordError(f"recordSpend transaction {tx_hash_hex} reverted")

        log_event(
            self._logger,
            level="info",
            event="spend_recorded",
            message="Spend recorded on spending limits contract",
            wallet_address=wallet_address,
            usd_units=str(usd_units),
            spend_tx_hash=tx_hash_hex,
        )
        return tx_hash_hex
