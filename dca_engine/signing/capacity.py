from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Protocol

from dca_engine.common import log_event
from dca_engine.errors import CapacityMintError

from .types import CapacityCredential, utc_midnight_after


class CapacityMinter(Protocol):
    async def get_capacity_mint_cost(self, *, requests_per_kilosecond: int, expires_at: datetime) -> Decimal:
        ...

    async def mint_capacity_credential(
        self,
        *,
        requests_per_kilosecond: int,
        days_until_utc_midnight_expiration: int,
    ) -> CapacityCredential:
        ...


class BalanceReader(Protocol):
    async def get_native_balance(self, address: str) -> Decimal:
        ...


class CapacityCredentialManager:
    """Owns the single capacity credential the signing network requires.

    The credential is minted lazily, reused until it reaches its early
    expiration boundary, and re-minted under a lock so concurrent callers
    share one mint.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger,
        minter: CapacityMinter,
        balance_reader: BalanceReader,
        delegatee_address: str,
        requests_per_kilosecond: int = 10,
        days_until_utc_midnight_expiration: int = 1,
        early_expiration: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._logger = logger
        self._minter = minter
        self._balance_reader = balance_reader
        self._delegatee_address = delegatee_address
        self._requests_per_kilosecond = requests_per_kilosecond
        self._days = days_until_utc_midnight_expiration
        self._early_expiration = early_expiration
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._credential: CapacityCredential | None = None
        self._lock = asyncio.Lock()

    @property
    def credential(self) -> CapacityCredential | None:
        return self._credential

    def is_valid(self, credential: CapacityCredential | None, now: datetime | None = None) -> bool:
        if credential is None:
            return False
        return not credential.is_expired(now or self._clock(), self._early_expiration)

    def invalidate(self) -> None:
        self._credential = None

    async def get_or_mint(self, now: datetime | None = None) -> CapacityCredential:
        current = self._credential
        if self.is_valid(current, now):
            return current  # type: ignore[return-value]

        async with self._lock:
            # Another caller may have minted while we waited.
            moment = now or self._clock()
            current = self._credential
            if self.is_valid(current, moment):
                return current  # type: ignore[return-value]

            if current is not None:
                log_event(
                    self._logger,
                    level="info",
                    event="capacity_credit_expired",
                    message="Capacity credit reached its expiration boundary",
                    token_id=current.token_id,
                    expiry_boundary=current.expiry_boundary(self._early_expiration).isoformat(),
                )
                self._credential = None

            credential = await self._mint(moment)
            if not self.is_valid(credential, moment):
                raise CapacityMintError(
                    f"Minted capacity credit {credential.token_id} is already past its expiration boundary"
                )
            self._credential = credential
            return credential

    def _days_for(self, moment: datetime) -> int:
        days = self._days
        while utc_midnight_after(moment, days) - self._early_expiration <= moment:
            days += 1
        return days

    async def _mint(self, moment: datetime) -> CapacityCredential:
        days = self._days_for(moment)
        expires_at = utc_midnight_after(moment, days)
        try:
            cost = await self._minter.get_capacity_mint_cost(
                requests_per_kilosecond=self._requests_per_kilosecond,
                expires_at=expires_at,
            )
            balance = await self._balance_reader.get_native_balance(self._delegatee_address)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            raise CapacityMintError(f"Unable to quote capacity credit mint: {error}") from error

        if cost > balance:
            raise CapacityMintError(
                f"{self._delegatee_address} has insufficient balance to mint capacity credit: "
                f"{balance} < {cost}"
            )

        try:
            return await self._minter.mint_capacity_credential(
                requests_per_kilosecond=self._requests_per_kilosecond,
                days_until_utc_midnight_expiration=days,
            )
        except asyncio.CancelledError:
            raise
        except Exception as error:
            raise CapacityMintError(f"Capacity credit mint failed: {error}") from error
