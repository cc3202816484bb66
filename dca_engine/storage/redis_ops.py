from __future__ import annotations

from typing import Any

from redis.asyncio.client import Redis

from .helpers import now_iso as _now_iso
from .helpers import serialize_for_redis as _serialize_for_redis

RELEASE_GUARD_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
  return redis.call('del', KEYS[1])
end
return 0
"""


class RedisStorageOps:
    @staticmethod
    def _guard_key(prefix: str, wallet_address: str) -> str:
        return f"{prefix}:{wallet_address}"

    async def acquire_execution_guard(
        self,
        *,
        wallet_address: str,
        owner_id: str,
        ttl_seconds: int,
    ) -> bool:
        redis_client = self._require_redis()
        acquired = await redis_client.set(
            self._guard_key(self.settings.execution_guard_prefix, wallet_address),
            owner_id,
            ex=max(1, ttl_seconds),
            nx=True,
        )
        return bool(acquired)

    async def release_execution_guard(self, *, wallet_address: str, owner_id: str) -> bool:
        redis_client = self._require_redis()
        deleted = await redis_client.eval(
            RELEASE_GUARD_SCRIPT,
            1,
            self._guard_key(self.settings.execution_guard_prefix, wallet_address),
            owner_id,
        )
        return bool(deleted)

    async def update_heartbeat(self, tick_summary: dict[str, Any] | None = None) -> None:
        redis_client = self._require_redis()
        await redis_client.set(self.settings.heartbeat_key, _now_iso())
        if tick_summary:
            mapping = {str(key): _serialize_for_redis(value) for key, value in tick_summary.items()}
            await redis_client.hset(self.settings.tick_summary_key, mapping=mapping)

    def _require_redis(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("Redis client is not initialized.")
        return self._redis
