from __future__ import annotations

import asyncio
import logging
import unittest
from datetime import timedelta
from decimal import Decimal

from dca_engine.execution import (
    OUTCOME_SKIPPED,
    OUTCOME_SUCCEEDED,
    DcaEngine,
    PolicyScheduler,
)

from tests.fakes import T0, WALLET_A, WALLET_B, ExecutorHarness, FakeGuardStore, make_policy


def _engine(harness: ExecutorHarness, guards: FakeGuardStore | None = None) -> DcaEngine:
    logger = logging.getLogger("test.engine")
    scheduler = PolicyScheduler(
        logger=logger,
        store=harness.store,
        executor=harness.executor,
        guard_store=guards,
        clock=harness.clock,
    )
    return DcaEngine(logger=logger, store=harness.store, executor=harness.executor, scheduler=scheduler)


class ExecuteNowTests(unittest.IsolatedAsyncioTestCase):
    async def test_execute_now_ignores_due_ness(self) -> None:
        # Registered a second ago with a 10s interval: not due for the tick loop.
        policy = make_policy(WALLET_A, registered_at=T0 + timedelta(seconds=10))
        harness = ExecutorHarness(policies=[policy])

        outcome = await _engine(harness).execute_now(WALLET_A.upper().replace("0X", "0x"))

        self.assertEqual(outcome.status, OUTCOME_SUCCEEDED)
        self.assertEqual(len(harness.store.records), 1)
        self.assertIsNotNone(outcome.to_dict()["tx_hash"])

    async def test_execute_now_without_policy_is_skipped(self) -> None:
        harness = ExecutorHarness(policies=[make_policy(WALLET_A)])

        outcome = await _engine(harness).execute_now(WALLET_B)

        self.assertEqual(outcome.status, OUTCOME_SKIPPED)
        self.assertEqual(outcome.reason, "no_active_policy")
        self.assertEqual(harness.store.records, [])

    async def test_execute_now_with_inactive_policy_is_skipped(self) -> None:
        harness = ExecutorHarness(policies=[make_policy(WALLET_A, active=False)])

        outcome = await _engine(harness).execute_now(WALLET_A)

        self.assertEqual(outcome.reason, "no_active_policy")

    async def test_execute_now_rejects_malformed_wallet(self) -> None:
        harness = ExecutorHarness()

        with self.assertRaises(ValueError):
            await _engine(harness).execute_now("not-a-wallet")

    async def test_execute_now_during_tick_execution_is_skipped(self) -> None:
        harness = ExecutorHarness(policies=[make_policy(WALLET_A)])
        harness.signer.delay_seconds = 0.05
        engine = _engine(harness)

        tick = asyncio.create_task(engine.run_tick(T0 + timedelta(seconds=11)))
        await asyncio.sleep(0.01)
        outcome = await engine.execute_now(WALLET_A)
        summary = await tick

        self.assertEqual(outcome.status, OUTCOME_SKIPPED)
        self.assertEqual(outcome.reason, "execution_in_flight")
        self.assertEqual(summary.succeeded, 1)
        self.assertEqual(len(harness.store.records), 1)

    async def test_execute_now_respects_guard_from_other_process(self) -> None:
        harness = ExecutorHarness(policies=[make_policy(WALLET_A)])
        guards = FakeGuardStore()
        guards.held[WALLET_A] = "scheduler:run-1"

        outcome = await _engine(harness, guards).execute_now(WALLET_A)

        self.assertEqual(outcome.reason, "execution_in_flight")
        self.assertEqual(harness.signer.submissions, [])


class SimulateTests(unittest.IsolatedAsyncioTestCase):
    async def test_simulate_defaults_to_policy_amount(self) -> None:
        harness = ExecutorHarness(policies=[make_policy(WALLET_A, amount="0.05")])

        quote = await _engine(harness).simulate(WALLET_A)

        self.assertEqual(quote.purchase_amount, "0.05")
        self.assertEqual(quote.purchase_value_usd, Decimal("125"))
        self.assertEqual(harness.store.records, [])

    async def test_simulate_rejects_invalid_amount(self) -> None:
        harness = ExecutorHarness(policies=[make_policy(WALLET_A)])

        for amount in ("-1", "1e5", "abc", ""):
            with self.subTest(amount=amount):
                with self.assertRaises(ValueError):
                    await _engine(harness).simulate(WALLET_A, amount)

    async def test_simulate_without_policy_or_amount_fails(self) -> None:
        harness = ExecutorHarness()

        with self.assertRaises(ValueError):
            await _engine(harness).simulate(WALLET_B)


class HistoryTests(unittest.IsolatedAsyncioTestCase):
    async def test_history_returns_newest_first(self) -> None:
        harness = ExecutorHarness(policies=[make_policy(WALLET_A)])
        engine = _engine(harness)
        await engine.execute_now(WALLET_A)
        harness.clock.advance(30)
        await engine.execute_now(WALLET_A)

        history = await engine.history(WALLET_A, limit=1)

        self.assertEqual(len(history), 1)
        self.assertEqual(history[0].purchased_at, T0 + timedelta(seconds=41))


if __name__ == "__main__":
    unittest.main()
