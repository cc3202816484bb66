from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Protocol

WALLET_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")
DECIMAL_STRING_RE = re.compile(r"^\d*\.?\d+$")

MIN_PURCHASE_INTERVAL_SECONDS = 10
MAX_PURCHASE_INTERVAL_SECONDS = 31_536_000

OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)

    raw = str(value).strip()
    normalized = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    return to_utc_datetime(parsed)


def normalize_wallet_address(value: Any) -> str:
    address = str(value or "").strip().lower()
    if not WALLET_ADDRESS_RE.match(address):
        raise ValueError(f"Invalid wallet address: {value!r}")
    return address


def is_decimal_string(value: Any) -> bool:
    return isinstance(value, str) and bool(DECIMAL_STRING_RE.match(value))


class InvalidPolicyError(ValueError):
    pass


@dataclass(slots=True, frozen=True)
class Policy:
    policy_id: str
    wallet_address: str
    purchase_interval_seconds: int
    purchase_amount: str
    active: bool
    registered_at: datetime

    @classmethod
    def from_document(cls, policy_id: str, data: dict[str, Any]) -> "Policy":
        try:
            wallet_address = normalize_wallet_address(data.get("walletAddress"))
        except ValueError as error:
            raise InvalidPolicyError(str(error)) from error

        interval_raw = data.get("purchaseIntervalSeconds")
        try:
            interval = int(interval_raw)
        except (TypeError, ValueError) as error:
            raise InvalidPolicyError(f"Invalid purchase interval: {interval_raw!r}") from error
        if not MIN_PURCHASE_INTERVAL_SECONDS <= interval <= MAX_PURCHASE_INTERVAL_SECONDS:
            raise InvalidPolicyError(
                f"Purchase interval {interval}s is outside "
                f"[{MIN_PURCHASE_INTERVAL_SECONDS}, {MAX_PURCHASE_INTERVAL_SECONDS}]"
            )

        amount = data.get("purchaseAmount")
        if not is_decimal_string(amount):
            raise InvalidPolicyError(f"Purchase amount must be a decimal string: {amount!r}")

        registered_at = to_utc_datetime(data.get("registeredAt"))
        if registered_at is None:
            raise InvalidPolicyError("Policy is missing registeredAt")

        return cls(
            policy_id=policy_id,
            wallet_address=wallet_address,
            purchase_interval_seconds=interval,
            purchase_amount=amount,
            active=bool(data.get("active", False)),
            registered_at=registered_at,
        )

    @property
    def purchase_amount_decimal(self) -> Decimal:
        return Decimal(self.purchase_amount)


@dataclass(slots=True, frozen=True)
class PurchaseRecord:
    policy_id: str
    wallet_address: str
    symbol: str
    name: str
    coin_address: str
    price: str
    purchase_amount: str
    success: bool
    purchased_at: datetime
    tx_hash: str | None = None
    error: str | None = None

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            "scheduleId": self.policy_id,
            "walletAddress": self.wallet_address,
            "symbol": self.symbol,
            "name": self.name,
            "coinAddress": self.coin_address,
            "price": self.price,
            "purchaseAmount": self.purchase_amount,
            "success": self.success,
            "purchasedAt": self.purchased_at,
        }
        if self.tx_hash:
            document["txHash"] = self.tx_hash
        if self.error:
            document["error"] = self.error
        return document

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "PurchaseRecord":
        purchased_at = to_utc_datetime(data.get("purchasedAt"))
        if purchased_at is None:
            raise ValueError("Purchase record is missing purchasedAt")
        return cls(
            policy_id=str(data.get("scheduleId") or ""),
            wallet_address=str(data.get("walletAddress") or "").lower(),
            symbol=str(data.get("symbol") or ""),
            name=str(data.get("name") or ""),
            coin_address=str(data.get("coinAddress") or "").lower(),
            price=str(data.get("price") or "0"),
            purchase_amount=str(data.get("purchaseAmount") or "0"),
            success=bool(data.get("success", False)),
            purchased_at=purchased_at,
            tx_hash=data.get("txHash") or None,
            error=data.get("error") or None,
        )


@dataclass(slots=True, frozen=True)
class TargetAsset:
    symbol: str
    name: str
    contract_address: str
    price: str


@dataclass(slots=True, frozen=True)
class SpendingPolicy:
    limit_usd_units: int
    period_seconds: int
    active: bool
    spent_usd_units: int = 0


@dataclass(slots=True, frozen=True)
class SwapQuote:
    wallet_address: str
    asset: TargetAsset
    purchase_amount: str
    native_price_usd: Decimal
    purchase_value_usd: Decimal
    gas_buffer: Decimal
    total_required: Decimal
    user_balance: Decimal
    delegatee_balance: Decimal
    affordable: bool
    delegatee_funded: bool

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        for key, value in list(payload.items()):
            if isinstance(value, Decimal):
                payload[key] = str(value)
        return payload


@dataclass(slots=True, frozen=True)
class ExecutionOutcome:
    status: str
    wallet_address: str
    reason: str
    record: PurchaseRecord | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def recorded(self) -> bool:
        return self.record is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "wallet_address": self.wallet_address,
            "reason": self.reason,
            "tx_hash": self.record.tx_hash if self.record else None,
            "recorded": self.recorded,
            "metadata": dict(self.metadata),
        }


@dataclass(slots=True)
class TickSummary:
    started_at: datetime
    evaluated: int = 0
    due: int = 0
    executed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    skipped_in_flight: int = 0
    errors: int = 0
    aborted: bool = False
    abort_reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["started_at"] = self.started_at.isoformat()
        return payload


class PolicyStore(Protocol):
    async def find_active_policies(self) -> list[Policy]:
        ...

    async def find_policy_by_wallet(self, wallet_address: str) -> Policy | None:
        ...

    async def find_latest_purchase(self, policy_id: str) -> PurchaseRecord | None:
        ...

    async def insert_purchase_record(self, record: PurchaseRecord) -> str:
        ...

    async def list_purchases(self, wallet_address: str, limit: int) -> list[PurchaseRecord]:
        ...


class ExecutionGuardStore(Protocol):
    async def acquire_execution_guard(self, *, wallet_address: str, owner_id: str, ttl_seconds: int) -> bool:
        ...

    async def release_execution_guard(self, *, wallet_address: str, owner_id: str) -> bool:
        ...


class PriceOracle(Protocol):
    async def get_usd_price(self, asset_address: str, chain: str) -> Decimal | None:
        ...


class ChainReader(Protocol):
    async def get_native_balance(self, address: str) -> Decimal:
        ...


class TrendingAssetResolver(Protocol):
    async def get_target_asset(self) -> TargetAsset:
        ...


class SpendLimitStore(Protocol):
    async def get_policy(self, wallet_address: str) -> SpendingPolicy | None:
        ...

    async def check_limit(self, wallet_address: str, usd_units: int) -> bool:
        ...

    async def record_spend(self, wallet_address: str, usd_units: int) -> str | None:
        ...
