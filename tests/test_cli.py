from __future__ import annotations

import io
import json
import logging
import os
import unittest
from contextlib import redirect_stdout
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from dca_engine.execution import DcaEngine, PolicyScheduler
from dca_engine.runtime import cli

from tests.fakes import T0, WALLET_A, ExecutorHarness, make_policy
from tests.test_settings import COMPLETE_ENV

SERVICE_ENV = dict(COMPLETE_ENV, ENGINE_RUN_ID="service-run-1")


def _engine(harness: ExecutorHarness) -> DcaEngine:
    logger = logging.getLogger("test.cli")
    scheduler = PolicyScheduler(logger=logger, store=harness.store, executor=harness.executor, clock=harness.clock)
    return DcaEngine(logger=logger, store=harness.store, executor=harness.executor, scheduler=scheduler)


class CliRunTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.harness = ExecutorHarness(policies=[make_policy(WALLET_A)])
        self.storage = MagicMock()
        self.storage.connect = AsyncMock()
        self.storage.mark_run_stopped = AsyncMock()
        self.storage.close = AsyncMock()
        self.gateway_cls = MagicMock(return_value=self.storage)
        components = SimpleNamespace(engine=_engine(self.harness), clients=[])

        patches = [
            patch.dict(os.environ, SERVICE_ENV, clear=True),
            patch("dca_engine.runtime.cli.StorageGateway", new=self.gateway_cls),
            patch("dca_engine.runtime.cli.build_components", new=MagicMock(return_value=components)),
        ]
        for active in patches:
            active.start()
            self.addCleanup(active.stop)

    async def _run(self, argv: list[str]) -> tuple[int, object]:
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            code = await cli.run(cli.parse_args(argv))
        return code, json.loads(buffer.getvalue())

    async def test_cli_uses_its_own_run_id(self) -> None:
        code, payload = await self._run(["history", WALLET_A])

        self.assertEqual(code, cli.EXIT_OK)
        self.assertEqual(payload, [])
        settings = self.gateway_cls.call_args.args[0]
        self.assertTrue(settings.engine_run_id.startswith("cli-history-"))
        self.assertNotEqual(settings.engine_run_id, "service-run-1")
        self.storage.mark_run_stopped.assert_awaited_once_with(reason="cli:history")

    async def test_invalid_simulate_amount_is_reported_as_json(self) -> None:
        code, payload = await self._run(["simulate", WALLET_A, "--amount", "abc"])

        self.assertEqual(code, cli.EXIT_USAGE)
        self.assertIn("abc", payload["error"])
        self.assertEqual(payload["command"], "simulate")
        self.storage.close.assert_awaited_once()

    async def test_malformed_wallet_is_reported_as_json(self) -> None:
        code, payload = await self._run(["execute-now", "not-a-wallet"])

        self.assertEqual(code, cli.EXIT_USAGE)
        self.assertIn("error", payload)
        self.assertEqual(self.harness.store.records, [])

    async def test_execute_now_prints_outcome(self) -> None:
        code, payload = await self._run(["execute-now", WALLET_A])

        self.assertEqual(code, cli.EXIT_OK)
        self.assertEqual(payload["status"], "succeeded")
        self.assertEqual(len(self.harness.store.records), 1)

    async def test_incomplete_settings_exit_before_connecting(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            code, payload = await self._run(["history", WALLET_A])

        self.assertEqual(code, cli.EXIT_USAGE)
        self.assertIn("Missing required settings", payload["error"])
        self.gateway_cls.assert_not_called()


class CliStorageSettingsTests(unittest.TestCase):
    def test_run_id_ignores_service_run_id(self) -> None:
        with patch.dict(os.environ, SERVICE_ENV, clear=True):
            settings = cli.cli_storage_settings("simulate", now=T0)

        self.assertEqual(settings.engine_run_id, "cli-simulate-20260301T120000Z")
        self.assertEqual(settings.engine_id, "dca-engine")


if __name__ == "__main__":
    unittest.main()
