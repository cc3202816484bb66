from __future__ import annotations

import logging
from datetime import datetime

from dca_engine.common import log_event
from dca_engine.errors import ExecutionInFlight

from .executor import SwapExecutor
from .scheduler import PolicyScheduler
from .types import (
    OUTCOME_SKIPPED,
    ExecutionOutcome,
    PolicyStore,
    PurchaseRecord,
    SwapQuote,
    TickSummary,
    is_decimal_string,
    normalize_wallet_address,
)


class DcaEngine:
    """Facade used by the tick loop and the operator CLI."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        store: PolicyStore,
        executor: SwapExecutor,
        scheduler: PolicyScheduler,
    ) -> None:
        self._logger = logger
        self._store = store
        self.executor = executor
        self.scheduler = scheduler

    async def healthcheck(self) -> None:
        await self.executor.check_delegatee_funded()

    async def run_tick(self, now: datetime | None = None) -> TickSummary:
        return await self.scheduler.run_tick(now)

    async def execute_now(self, wallet_address: str) -> ExecutionOutcome:
        wallet = normalize_wallet_address(wallet_address)
        policy = await self._store.find_policy_by_wallet(wallet)
        if policy is None or not policy.active:
            log_event(
                self._logger,
                level="warning",
                event="execute_now_no_policy",
                message="No active policy for wallet",
                wallet_address=wallet,
            )
            return ExecutionOutcome(
                status=OUTCOME_SKIPPED,
                wallet_address=wallet,
                reason="no_active_policy",
            )

        log_event(
            self._logger,
            level="info",
            event="execute_now_requested",
            message="Manual execution requested",
            policy_id=policy.policy_id,
            wallet_address=wallet,
        )
        try:
            return await self.scheduler.execute_policy(policy)
        except ExecutionInFlight as error:
            return ExecutionOutcome(
                status=OUTCOME_SKIPPED,
                wallet_address=wallet,
                reason=ExecutionInFlight.reason,
                metadata={"error": str(error)},
            )

    async def simulate(self, wallet_address: str, purchase_amount: str | None = None) -> SwapQuote:
        wallet = normalize_wallet_address(wallet_address)
        if purchase_amount is None:
            policy = await self._store.find_policy_by_wallet(wallet)
            if policy is None:
                raise ValueError(f"No policy for wallet {wallet}; pass an amount to simulate")
            purchase_amount = policy.purchase_amount
        if not is_decimal_string(purchase_amount):
            raise ValueError(f"Purchase amount must be a decimal string: {purchase_amount!r}")
        return await self.executor.simulate(wallet, purchase_amount)

    async def history(self, wallet_address: str, limit: int = 20) -> list[PurchaseRecord]:
        return await self._store.list_purchases(normalize_wallet_address(wallet_address), limit)
