from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

WRAPPED_NATIVE_BASE = "0x4200000000000000000000000000000000000006"
SIGNING_NETWORK_RPC_DEFAULT = "https://yellowstone-rpc.litprotocol.com"


def to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or str(value).strip() == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def to_float(value: Any, default: float) -> float:
    try:
        if value is None or str(value).strip() == "":
            return default
        return float(str(value).strip())
    except (TypeError, ValueError):
        return default


def to_decimal(value: Any, default: Decimal) -> Decimal:
    try:
        if value is None or str(value).strip() == "":
            return default
        parsed = Decimal(str(value).strip())
    except (TypeError, ValueError, InvalidOperation):
        return default
    if not parsed.is_finite():
        return default
    return parsed


@dataclass(slots=True)
class AppSettings:
    tick_interval_seconds: float
    error_backoff_seconds: float
    max_concurrent_executions: int
    http_timeout_seconds: float
    rpc_timeout_seconds: float
    signing_timeout_seconds: float
    chain_name: str
    chain_id: str
    chain_rpc_url: str
    wrapped_native_address: str
    price_oracle_api: str
    trending_api: str
    trending_api_key: str
    trending_tag: str
    trending_blockchain: str
    signing_network_url: str
    signing_network_name: str
    signing_network_rpc_url: str
    delegatee_private_key: str
    swap_action_id: str
    gas_buffer_percent: Decimal
    delegatee_min_balance: Decimal
    capacity_requests_per_kilosecond: int
    capacity_days_until_expiration: int
    capacity_early_expiration_minutes: int
    session_duration_seconds: int
    capacity_delegation_ttl_seconds: int
    spend_limit_enabled: bool
    spend_limit_contract_address: str
    spend_limit_rpc_url: str
    usd_decimals: int
    spend_receipt_timeout_seconds: float
    execution_guard_ttl_seconds: int

    @classmethod
    def from_env(cls) -> "AppSettings":
        chain_rpc_url = os.getenv("BASE_RPC_URL", "").strip()
        return cls(
            tick_interval_seconds=max(1.0, to_float(os.getenv("TICK_INTERVAL_SECONDS"), 10.0)),
            error_backoff_seconds=max(1.0, to_float(os.getenv("ERROR_BACKOFF_SECONDS"), 30.0)),
            max_concurrent_executions=max(1, to_int(os.getenv("MAX_CONCURRENT_EXECUTIONS"), 1)),
            http_timeout_seconds=max(1.0, to_float(os.getenv("HTTP_TIMEOUT_SECONDS"), 15.0)),
            rpc_timeout_seconds=max(1.0, to_float(os.getenv("RPC_TIMEOUT_SECONDS"), 15.0)),
            signing_timeout_seconds=max(5.0, to_float(os.getenv("SIGNING_TIMEOUT_SECONDS"), 90.0)),
            chain_name=os.getenv("CHAIN_NAME", "base").strip().lower() or "base",
            chain_id=os.getenv("CHAIN_ID", "8453").strip() or "8453",
            chain_rpc_url=chain_rpc_url,
            wrapped_native_address=(
                os.getenv("WRAPPED_NATIVE_ADDRESS", WRAPPED_NATIVE_BASE).strip().lower()
                or WRAPPED_NATIVE_BASE
            ),
            price_oracle_api=os.getenv(
                "PRICE_ORACLE_API",
                "https://api.dexscreener.com/latest/dex/tokens",
            ).strip(),
            trending_api=os.getenv("TRENDING_API", "https://api.coinranking.com/v2/coins").strip(),
            trending_api_key=os.getenv("COINRANKING_API_KEY", "").strip(),
            trending_tag=os.getenv("TRENDING_TAG", "meme").strip() or "meme",
            trending_blockchain=os.getenv("TRENDING_BLOCKCHAIN", "base").strip().lower() or "base",
            signing_network_url=os.getenv("SIGNING_NETWORK_URL", "").strip().rstrip("/"),
            signing_network_name=os.getenv("SIGNING_NETWORK_NAME", "datil").strip() or "datil",
            signing_network_rpc_url=(
                os.getenv("SIGNING_NETWORK_RPC_URL", SIGNING_NETWORK_RPC_DEFAULT).strip()
                or SIGNING_NETWORK_RPC_DEFAULT
            ),
            delegatee_private_key=os.getenv("VINCENT_DELEGATEE_PRIVATE_KEY", "").strip(),
            swap_action_id=os.getenv("VINCENT_TOOL_UNISWAP_SWAP_IPFS_ID", "").strip(),
            gas_buffer_percent=max(
                Decimal("0"),
                to_decimal(os.getenv("GAS_BUFFER_PERCENT"), Decimal("10")),
            ),
            delegatee_min_balance=max(
                Decimal("0"),
                to_decimal(os.getenv("DELEGATEE_MIN_BALANCE"), Decimal("0.01")),
            ),
            capacity_requests_per_kilosecond=max(
                1,
                to_int(os.getenv("CAPACITY_REQUESTS_PER_KILOSECOND"), 10),
            ),
            capacity_days_until_expiration=max(
                1,
                to_int(os.getenv("CAPACITY_DAYS_UNTIL_EXPIRATION"), 1),
            ),
            capacity_early_expiration_minutes=max(
                0,
                to_int(os.getenv("CAPACITY_EARLY_EXPIRATION_MINUTES"), 10),
            ),
            session_duration_seconds=max(60, to_int(os.getenv("SESSION_DURATION_SECONDS"), 86_400)),
            capacity_delegation_ttl_seconds=max(
                30,
                to_int(os.getenv("CAPACITY_DELEGATION_TTL_SECONDS"), 600),
            ),
            spend_limit_enabled=to_bool(os.getenv("SPEND_LIMIT_ENABLED"), True),
            spend_limit_contract_address=os.getenv("SPEND_LIMIT_CONTRACT_ADDRESS", "").strip(),
            spend_limit_rpc_url=os.getenv("SPEND_LIMIT_RPC_URL", "").strip() or chain_rpc_url,
            usd_decimals=min(36, max(0, to_int(os.getenv("USD_DECIMALS"), 18))),
            spend_receipt_timeout_seconds=max(
                10.0,
                to_float(os.getenv("SPEND_RECEIPT_TIMEOUT_SECONDS"), 120.0),
            ),
            execution_guard_ttl_seconds=max(30, to_int(os.getenv("EXECUTION_GUARD_TTL_SECONDS"), 300)),
        )

    def execution_budget_seconds(self) -> int:
        """Upper bound on one execution when every remote call runs to its timeout.

        A cold execution makes up to 8 signing requests (mint quote, mint,
        two auth nonces with delegation and session, swap submission), 9 RPC
        calls (balances plus the spend-limit reads and transaction) and 2 HTTP
        lookups, then waits for the spend receipt.
        """
        return int(
            8 * self.signing_timeout_seconds
            + 9 * self.rpc_timeout_seconds
            + 2 * self.http_timeout_seconds
            + self.spend_receipt_timeout_seconds
        )

    def effective_guard_ttl_seconds(self) -> int:
        # Never shorter than the slowest possible execution.
        return max(self.execution_guard_ttl_seconds, self.execution_budget_seconds() + 60)

    def missing_required(self) -> list[str]:
        required = {
            "BASE_RPC_URL": self.chain_rpc_url,
            "SIGNING_NETWORK_URL": self.signing_network_url,
            "VINCENT_DELEGATEE_PRIVATE_KEY": self.delegatee_private_key,
            "VINCENT_TOOL_UNISWAP_SWAP_IPFS_ID": self.swap_action_id,
        }
        if self.spend_limit_enabled:
            required["SPEND_LIMIT_CONTRACT_ADDRESS"] = self.spend_limit_contract_address
        return [name for name, value in required.items() if not value]

    def require_complete(self) -> None:
        missing = self.missing_required()
        if missing:
            raise ValueError(f"Missing required settings: {', '.join(sorted(missing))}")
