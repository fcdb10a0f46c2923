from __future__ import annotations

import logging
from typing import Protocol

from redis import asyncio as redis_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from relay_bot_orx.turns import Turn, parse_turn, serialize_turn

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "history"


class StoreError(Exception):
    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class TurnStore(Protocol):
    async def append(
        self,
        key: str,
        turn: Turn,
        *,
        timestamp_ms: int,
        ttl_seconds: int,
    ) -> None: ...

    async def read_descending(self, key: str, rank: int) -> Turn | None: ...

    async def remove(self, key: str, turn: Turn) -> None: ...


def conversation_key(user_id: str | int, *, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}:{user_id}"


class RedisTurnStore:
    """Per-user turn log kept in a Redis sorted set scored by timestamp.

    Members are the serialized turns themselves, so re-appending an identical
    turn moves it to the new score instead of adding a second copy.
    """

    def __init__(self, *, redis: redis_asyncio.Redis) -> None:
        self._redis = redis

    async def append(
        self,
        key: str,
        turn: Turn,
        *,
        timestamp_ms: int,
        ttl_seconds: int,
    ) -> None:
        member = serialize_turn(turn)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.zadd(key, {member: timestamp_ms}).expire(
                    key, ttl_seconds
                ).execute()
        except RedisError as exc:
            raise _store_error("append", key, exc) from exc

    async def read_descending(self, key: str, rank: int) -> Turn | None:
        """Return the turn at `rank`, newest first.

        A member that does not parse is removed so the rest of the log stays
        readable; the next member moves up into its rank.
        """
        while True:
            try:
                members = await self._redis.zrevrange(key, rank, rank)
            except RedisError as exc:
                raise _store_error("read", key, exc) from exc

            if not members:
                return None
            try:
                return parse_turn(members[0])
            except ValueError as exc:
                logger.warning("turn_store_dropped_member key=%s detail=%s", key, exc)
                await self._remove_member(key, members[0])

    async def remove(self, key: str, turn: Turn) -> None:
        try:
            await self._redis.zrem(key, serialize_turn(turn))
        except RedisError as exc:
            raise _store_error("remove", key, exc) from exc

    async def _remove_member(self, key: str, member: str) -> None:
        try:
            removed = await self._redis.zrem(key, member)
        except RedisError as exc:
            raise _store_error("remove", key, exc) from exc
        if not removed:
            raise StoreError(
                f"Turn store could not drop unreadable member of {key}",
                transient=False,
            )


def _store_error(operation: str, key: str, exc: RedisError) -> StoreError:
    transient = isinstance(exc, (RedisConnectionError, RedisTimeoutError))
    return StoreError(
        f"Turn store {operation} failed for {key}: {exc}",
        transient=transient,
    )
