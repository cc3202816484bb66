from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Callable, Protocol

from dca_engine.common import guarded_call, log_event
from dca_engine.errors import ExecutionInFlight, SystemicExecutionError

from .types import (
    OUTCOME_FAILED,
    OUTCOME_SKIPPED,
    OUTCOME_SUCCEEDED,
    ExecutionGuardStore,
    ExecutionOutcome,
    Policy,
    PolicyStore,
    TickSummary,
    utc_now,
)


def is_policy_due(policy: Policy, last_purchase_at: datetime | None, now: datetime) -> bool:
    anchor = last_purchase_at if last_purchase_at is not None else policy.registered_at
    return (now - anchor).total_seconds() >= policy.purchase_interval_seconds


class PolicyExecutor(Protocol):
    async def execute(self, policy: Policy, purchased_at: datetime | None = None) -> ExecutionOutcome:
        ...


class InFlightRegistry:
    """Wallets with an execution currently running in this process."""

    def __init__(self) -> None:
        self._wallets: set[str] = set()

    def __contains__(self, wallet_address: str) -> bool:
        return wallet_address in self._wallets

    def __len__(self) -> int:
        return len(self._wallets)

    def try_acquire(self, wallet_address: str) -> bool:
        # No await between the check and the add.
        if wallet_address in self._wallets:
            return False
        self._wallets.add(wallet_address)
        return True

    def release(self, wallet_address: str) -> None:
        self._wallets.discard(wallet_address)


class PolicyScheduler:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        store: PolicyStore,
        executor: PolicyExecutor,
        in_flight: InFlightRegistry | None = None,
        guard_store: ExecutionGuardStore | None = None,
        guard_ttl_seconds: int = 300,
        owner_prefix: str = "dca-engine",
        max_concurrent_executions: int = 1,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._logger = logger
        self._store = store
        self._executor = executor
        self.in_flight = in_flight or InFlightRegistry()
        self._guard_store = guard_store
        self._guard_ttl_seconds = guard_ttl_seconds
        self._owner_prefix = owner_prefix
        self._max_concurrent_executions = max(1, max_concurrent_executions)
        self._clock = clock or utc_now

    async def execute_policy(self, policy: Policy, purchased_at: datetime | None = None) -> ExecutionOutcome:
        """Run one policy while holding its in-process and cross-process guards.

        Raises ``ExecutionInFlight`` when either guard is already held.
        """
        wallet = policy.wallet_address
        if not self.in_flight.try_acquire(wallet):
            raise ExecutionInFlight(f"Execution already in flight for {wallet}")

        owner_id = f"{self._owner_prefix}:{uuid.uuid4().hex}"
        guard_acquired = False
        try:
            if self._guard_store is not None:
                guard_acquired = await self._guard_store.acquire_execution_guard(
                    wallet_address=wallet,
                    owner_id=owner_id,
                    ttl_seconds=self._guard_ttl_seconds,
                )
                if not guard_acquired:
                    raise ExecutionInFlight(f"Execution guard for {wallet} is held by another process")
            return await self._executor.execute(policy, purchased_at)
        finally:
            if guard_acquired:
                await guarded_call(
                    lambda: self._guard_store.release_execution_guard(
                        wallet_address=wallet,
                        owner_id=owner_id,
                    ),
                    logger=self._logger,
                    event="execution_guard_release_failed",
                    message="Failed to release execution guard",
                    level="warning",
                )
            self.in_flight.release(wallet)

    async def run_tick(self, now: datetime | None = None) -> TickSummary:
        now = now or self._clock()
        summary = TickSummary(started_at=now)

        policies = await self._store.find_active_policies()
        summary.evaluated = len(policies)
        if not policies:
            return summary

        semaphore = asyncio.Semaphore(self._max_concurrent_executions)
        await asyncio.gather(*(self._process(policy, now, summary, semaphore) for policy in policies))

        log_event(
            self._logger,
            level="warning" if summary.aborted else "info",
            event="tick_completed",
            message="Scheduler tick completed",
            **summary.to_dict(),
        )
        return summary

    async def _process(
        self,
        policy: Policy,
        now: datetime,
        summary: TickSummary,
        semaphore: asyncio.Semaphore,
    ) -> None:
        async with semaphore:
            if summary.aborted:
                return
            if not policy.active:
                return
            if policy.wallet_address in self.in_flight:
                summary.skipped_in_flight += 1
                log_event(
                    self._logger,
                    level="info",
                    event="policy_in_flight",
                    message="Policy skipped because a prior execution is still running",
                    policy_id=policy.policy_id,
                    wallet_address=policy.wallet_address,
                )
                return

            try:
                latest = await self._store.find_latest_purchase(policy.policy_id)
                last_purchase_at = latest.purchased_at if latest is not None else None
                if not is_policy_due(policy, last_purchase_at, now):
                    return
                summary.due += 1
                if summary.aborted:
                    return

                outcome = await self.execute_policy(policy, now)
            except ExecutionInFlight as error:
                summary.skipped_in_flight += 1
                log_event(
                    self._logger,
                    level="info",
                    event="policy_in_flight",
                    message="Policy skipped because a prior execution is still running",
                    policy_id=policy.policy_id,
                    wallet_address=policy.wallet_address,
                    error=str(error),
                )
                return
            except SystemicExecutionError as error:
                summary.executed += 1
                summary.aborted = True
                summary.abort_reason = f"{error.reason}: {error}"
                log_event(
                    self._logger,
                    level="critical",
                    event="tick_aborted",
                    message="Systemic failure; remaining executions for this tick are aborted",
                    policy_id=policy.policy_id,
                    wallet_address=policy.wallet_address,
                    reason=error.reason,
                    error=str(error),
                )
                return
            except Exception as error:
                summary.errors += 1
                log_event(
                    self._logger,
                    level="exception",
                    event="policy_execution_error",
                    message="Policy execution raised an unexpected error",
                    policy_id=policy.policy_id,
                    wallet_address=policy.wallet_address,
                    error=str(error),
                )
                return

            summary.executed += 1
            if outcome.status == OUTCOME_SUCCEEDED:
                summary.succeeded += 1
            elif outcome.status == OUTCOME_FAILED:
                summary.failed += 1
            elif outcome.status == OUTCOME_SKIPPED:
                summary.skipped += 1
