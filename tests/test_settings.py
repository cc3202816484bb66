from __future__ import annotations

import os
import unittest
from decimal import Decimal
from unittest.mock import patch

from dca_engine.runtime.settings import AppSettings, to_bool, to_decimal, to_int
from dca_engine.storage import StorageSettings

COMPLETE_ENV = {
    "BASE_RPC_URL": "https://base.example/rpc",
    "SIGNING_NETWORK_URL": "https://signer.example/",
    "VINCENT_DELEGATEE_PRIVATE_KEY": "0x" + "1" * 64,
    "VINCENT_TOOL_UNISWAP_SWAP_IPFS_ID": "QmSwapAction",
    "SPEND_LIMIT_CONTRACT_ADDRESS": "0x" + "5" * 40,
}


class ParsingHelperTests(unittest.TestCase):
    def test_helpers_fall_back_on_blank_or_invalid(self) -> None:
        self.assertEqual(to_int("", 7), 7)
        self.assertEqual(to_int("12.9", 7), 12)
        self.assertEqual(to_int("abc", 7), 7)
        self.assertTrue(to_bool(None, True))
        self.assertFalse(to_bool("off", True))
        self.assertEqual(to_decimal("NaN", Decimal("1")), Decimal("1"))
        self.assertEqual(to_decimal("0.25", Decimal("1")), Decimal("0.25"))


class AppSettingsTests(unittest.TestCase):
    def test_defaults(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = AppSettings.from_env()

        self.assertEqual(settings.tick_interval_seconds, 10.0)
        self.assertEqual(settings.max_concurrent_executions, 1)
        self.assertEqual(settings.chain_name, "base")
        self.assertEqual(settings.chain_id, "8453")
        self.assertEqual(settings.gas_buffer_percent, Decimal("10"))
        self.assertEqual(settings.delegatee_min_balance, Decimal("0.01"))
        self.assertEqual(settings.capacity_requests_per_kilosecond, 10)
        self.assertEqual(settings.capacity_days_until_expiration, 1)
        self.assertEqual(settings.capacity_early_expiration_minutes, 10)
        self.assertEqual(settings.session_duration_seconds, 86_400)
        self.assertEqual(settings.capacity_delegation_ttl_seconds, 600)
        self.assertEqual(settings.signing_network_rpc_url, "https://yellowstone-rpc.litprotocol.com")
        self.assertTrue(settings.spend_limit_enabled)
        self.assertEqual(settings.usd_decimals, 18)

    def test_missing_required_settings_are_listed(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = AppSettings.from_env()

        with self.assertRaises(ValueError) as context:
            settings.require_complete()

        message = str(context.exception)
        for name in COMPLETE_ENV:
            self.assertIn(name, message)

    def test_complete_environment_passes(self) -> None:
        with patch.dict(os.environ, COMPLETE_ENV, clear=True):
            settings = AppSettings.from_env()

        settings.require_complete()
        self.assertEqual(settings.signing_network_url, "https://signer.example")
        self.assertEqual(settings.spend_limit_rpc_url, "https://base.example/rpc")

    def test_spend_limit_contract_optional_when_gate_disabled(self) -> None:
        env = dict(COMPLETE_ENV, SPEND_LIMIT_ENABLED="false")
        del env["SPEND_LIMIT_CONTRACT_ADDRESS"]
        with patch.dict(os.environ, env, clear=True):
            settings = AppSettings.from_env()

        self.assertEqual(settings.missing_required(), [])

    def test_guard_ttl_covers_worst_case_execution(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = AppSettings.from_env()

        self.assertEqual(settings.spend_receipt_timeout_seconds, 120.0)
        # 8 x 90s signing, 9 x 15s rpc, 2 x 15s http, 120s receipt wait
        self.assertEqual(settings.execution_budget_seconds(), 1005)
        self.assertEqual(settings.execution_guard_ttl_seconds, 300)
        self.assertEqual(settings.effective_guard_ttl_seconds(), 1065)

    def test_guard_ttl_follows_configured_timeouts(self) -> None:
        env = {"SIGNING_TIMEOUT_SECONDS": "10", "RPC_TIMEOUT_SECONDS": "5", "SPEND_RECEIPT_TIMEOUT_SECONDS": "30"}
        with patch.dict(os.environ, env, clear=True):
            settings = AppSettings.from_env()

        self.assertEqual(settings.execution_budget_seconds(), 80 + 45 + 30 + 30)
        self.assertEqual(settings.effective_guard_ttl_seconds(), 300)

        with patch.dict(os.environ, dict(env, EXECUTION_GUARD_TTL_SECONDS="100"), clear=True):
            settings = AppSettings.from_env()

        self.assertEqual(settings.effective_guard_ttl_seconds(), 185 + 60)

    def test_values_are_clamped(self) -> None:
        env = {"TICK_INTERVAL_SECONDS": "0", "MAX_CONCURRENT_EXECUTIONS": "-3", "GAS_BUFFER_PERCENT": "-5"}
        with patch.dict(os.environ, env, clear=True):
            settings = AppSettings.from_env()

        self.assertEqual(settings.tick_interval_seconds, 1.0)
        self.assertEqual(settings.max_concurrent_executions, 1)
        self.assertEqual(settings.gas_buffer_percent, Decimal("0"))


class StorageSettingsTests(unittest.TestCase):
    def test_defaults(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = StorageSettings.from_env()

        self.assertEqual(settings.redis_url, "redis://redis:6379/0")
        self.assertEqual(settings.policies_collection, "schedules")
        self.assertEqual(settings.purchases_collection, "purchases")
        self.assertEqual(settings.execution_guard_prefix, "dca:guard")
        self.assertTrue(settings.engine_run_id.startswith("run-"))


if __name__ == "__main__":
    unittest.main()
