from __future__ import annotations

import logging

from redis import asyncio as redis_asyncio
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class UpdateDedupe:
    """Marks Telegram update ids as seen so redelivered updates are skipped.

    State lives in Redis so every worker process shares it. If Redis is down
    the update is processed anyway.
    """

    def __init__(
        self,
        *,
        redis: redis_asyncio.Redis,
        ttl_seconds: int = 300,
        prefix: str = "update",
    ) -> None:
        self._redis = redis
        self._ttl_seconds = max(1, ttl_seconds)
        self._prefix = prefix

    async def mark_once(self, update_id: int) -> bool:
        key = f"{self._prefix}:{update_id}"
        try:
            created = await self._redis.set(key, "1", nx=True, ex=self._ttl_seconds)
        except RedisError as exc:
            logger.warning("update_dedupe_unavailable update_id=%s detail=%s", update_id, exc)
            return True
        return bool(created)
