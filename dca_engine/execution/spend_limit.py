from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal

from dca_engine.common import log_event
from dca_engine.errors import SpendLimitRejected

from .types import SpendLimitStore

REASON_NO_ACTIVE_POLICY = "no active spending policy"
REASON_LIMIT_EXCEEDED = "spending limit exceeded"


def to_usd_value(price: Decimal | str, amount: Decimal | str, decimals: int = 18) -> Decimal:
    quantum = Decimal(1).scaleb(-decimals)
    return (Decimal(str(price)) * Decimal(str(amount))).quantize(quantum, rounding=ROUND_DOWN)


def to_usd_units(price: Decimal | str, amount: Decimal | str, decimals: int = 18) -> int:
    """USD value of ``amount`` at ``price`` as an integer of ``decimals`` base units."""
    return int(to_usd_value(price, amount, decimals).scaleb(decimals))


@dataclass(slots=True, frozen=True)
class SpendAuthorization:
    wallet_address: str
    asset_address: str
    usd_value: Decimal
    usd_units: int
    record_reference: str | None


class SpendLimitGate:
    """Check-then-record against the external per-wallet spending policy.

    A wallet without an active policy is rejected. Check and record for one
    wallet run under a lock so a single trade is counted once.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger,
        store: SpendLimitStore,
        decimals: int = 18,
    ) -> None:
        self._logger = logger
        self._store = store
        self._decimals = decimals
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, wallet_address: str) -> asyncio.Lock:
        lock = self._locks.get(wallet_address)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[wallet_address] = lock
        return lock

    async def authorize(
        self,
        *,
        wallet_address: str,
        asset_address: str,
        amount: Decimal | str,
        price_usd: Decimal,
    ) -> SpendAuthorization:
        usd_value = to_usd_value(price_usd, amount, self._decimals)
        usd_units = int(usd_value.scaleb(self._decimals))

        async with self._lock_for(wallet_address):
            policy = await self._store.get_policy(wallet_address)
            if policy is None or not policy.active:
                self._log_rejection(wallet_address, REASON_NO_ACTIVE_POLICY, usd_value)
                raise SpendLimitRejected(REASON_NO_ACTIVE_POLICY)

            if not await self._store.check_limit(wallet_address, usd_units):
                self._log_rejection(wallet_address, REASON_LIMIT_EXCEEDED, usd_value)
                raise SpendLimitRejected(REASON_LIMIT_EXCEEDED)

            reference = await self._store.record_spend(wallet_address, usd_units)

        log_event(
            self._logger,
            level="info",
            event="spend_authorized",
            message="Spend authorized by spending limit gate",
            wallet_address=wallet_address,
            asset_address=asset_address,
            usd_value=str(usd_value),
        )
        return SpendAuthorization(
            wallet_address=wallet_address,
            asset_address=asset_address,
            usd_value=usd_value,
            usd_units=usd_units,
            record_reference=reference,
        )

    def _log_rejection(self, wallet_address: str, reason: str, usd_value: Decimal) -> None:
        log_event(
            self._logger,
            level="warning",
            event="spend_rejected",
            message="Spend rejected by spending limit gate",
            wallet_address=wallet_address,
            reason=reason,
            usd_value=str(usd_value),
        )
