from __future__ import annotations

import os
import unittest
from unittest.mock import AsyncMock, patch

from dca_engine.storage import StorageSettings
from dca_engine.storage.helpers import doc_id_from_text, serialize_for_redis
from dca_engine.storage.redis_ops import RELEASE_GUARD_SCRIPT, RedisStorageOps

from tests.fakes import WALLET_A


class _Ops(RedisStorageOps):
    def __init__(self, redis_client) -> None:
        with patch.dict(os.environ, {}, clear=True):
            self.settings = StorageSettings.from_env()
        self._redis = redis_client


class ExecutionGuardTests(unittest.IsolatedAsyncioTestCase):
    async def test_acquire_uses_set_nx_with_ttl(self) -> None:
        redis_client = AsyncMock()
        redis_client.set.return_value = True
        ops = _Ops(redis_client)

        acquired = await ops.acquire_execution_guard(wallet_address=WALLET_A, owner_id="engine:1", ttl_seconds=300)

        self.assertTrue(acquired)
        redis_client.set.assert_awaited_once_with(f"dca:guard:{WALLET_A}", "engine:1", ex=300, nx=True)

    async def test_acquire_reports_held_guard(self) -> None:
        redis_client = AsyncMock()
        redis_client.set.return_value = None
        ops = _Ops(redis_client)

        self.assertFalse(
            await ops.acquire_execution_guard(wallet_address=WALLET_A, owner_id="engine:2", ttl_seconds=300)
        )

    async def test_release_only_deletes_own_guard(self) -> None:
        redis_client = AsyncMock()
        redis_client.eval.return_value = 0
        ops = _Ops(redis_client)

        released = await ops.release_execution_guard(wallet_address=WALLET_A, owner_id="engine:1")

        self.assertFalse(released)
        redis_client.eval.assert_awaited_once_with(RELEASE_GUARD_SCRIPT, 1, f"dca:guard:{WALLET_A}", "engine:1")

    async def test_heartbeat_stores_tick_summary(self) -> None:
        redis_client = AsyncMock()
        ops = _Ops(redis_client)

        await ops.update_heartbeat({"evaluated": 3, "aborted": False, "abort_reason": ""})

        redis_client.hset.assert_awaited_once_with(
            "dca:tick:last",
            mapping={"evaluated": "3", "aborted": "0", "abort_reason": ""},
        )

    async def test_missing_client_raises(self) -> None:
        ops = _Ops(None)

        with self.assertRaises(RuntimeError):
            await ops.acquire_execution_guard(wallet_address=WALLET_A, owner_id="x", ttl_seconds=1)


class HelperTests(unittest.TestCase):
    def test_doc_id_replaces_slashes_and_bounds_length(self) -> None:
        self.assertEqual(doc_id_from_text(" a/b "), "a_b")
        long_id = doc_id_from_text("x" * 200)
        self.assertLessEqual(len(long_id), 128)
        with self.assertRaises(ValueError):
            doc_id_from_text("  ")

    def test_serialize_for_redis(self) -> None:
        self.assertEqual(serialize_for_redis(True), "1")
        self.assertEqual(serialize_for_redis(2.5), "2.5")
        self.assertEqual(serialize_for_redis({"a": 1}), '{"a":1}')


if __name__ == "__main__":
    unittest.main()
