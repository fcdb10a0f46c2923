from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from relay_bot_orx.turn_store import StoreError
from relay_bot_orx.turns import Turn, parse_turn, serialize_turn
from relay_bot_orx.user_config import OpenAIConfig, OpenAIProfile


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the turn store and dedupe."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sorted_sets: dict[str, dict[str, float]] = {}
        self.strings: dict[str, str] = {}
        self.expires_at: dict[str, float] = {}
        self.commands: list[str] = []
        self.fail_commands: set[str] = set()
        self.error: RedisError = RedisConnectionError("connection refused")

    def _record(self, command: str) -> None:
        self.commands.append(command)
        if command in self.fail_commands:
            raise self.error

    def _purge(self, key: str) -> None:
        expires_at = self.expires_at.get(key)
        if expires_at is not None and expires_at <= self.now:
            self.sorted_sets.pop(key, None)
            self.strings.pop(key, None)
            del self.expires_at[key]

    def ttl(self, key: str) -> float | None:
        self._purge(key)
        expires_at = self.expires_at.get(key)
        if expires_at is None:
            return None
        return expires_at - self.now

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        assert transaction
        return FakePipeline(self)

    async def zrevrange(self, key: str, start: int, end: int) -> list[str]:
        self._record("zrevrange")
        self._purge(key)
        members = self.sorted_sets.get(key, {})
        ordered = sorted(members.items(), key=lambda item: (item[1], item[0]), reverse=True)
        return [member for member, _ in ordered[start : end + 1]]

    async def zrem(self, key: str, *members: str) -> int:
        self._record("zrem")
        self._purge(key)
        stored = self.sorted_sets.get(key, {})
        removed = 0
        for member in members:
            if stored.pop(member, None) is not None:
                removed += 1
        return removed

    async def set(
        self,
        key: str,
        value: str,
        *,
        nx: bool = False,
        ex: int | None = None,
    ) -> bool | None:
        self._record("set")
        self._purge(key)
        if nx and key in self.strings:
            return None
        self.strings[key] = value
        if ex is not None:
            self.expires_at[key] = self.now + ex
        return True

    def _zadd(self, key: str, mapping: dict[str, float]) -> None:
        self._purge(key)
        self.sorted_sets.setdefault(key, {}).update(mapping)

    def _expire(self, key: str, seconds: int) -> None:
        if key in self.sorted_sets or key in self.strings:
            self.expires_at[key] = self.now + seconds


class FakePipeline:
    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._queued: list[tuple[str, tuple[Any, ...]]] = []

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self._queued.clear()

    def zadd(self, key: str, mapping: dict[str, float]) -> FakePipeline:
        self._queued.append(("zadd", (key, mapping)))
        return self

    def expire(self, key: str, seconds: int) -> FakePipeline:
        self._queued.append(("expire", (key, seconds)))
        return self

    async def execute(self) -> list[object]:
        self._redis._record("multi")
        for command, args in self._queued:
            self._redis.commands.append(command)
            getattr(self._redis, f"_{command}")(*args)
        results: list[object] = [True] * len(self._queued)
        self._queued.clear()
        return results


class SpyTurnStore:
    """In-memory turn store that records every call and can be told to fail."""

    def __init__(self) -> None:
        self.logs: dict[str, dict[str, int]] = {}
        self.ttls: dict[str, int] = {}
        self.appends: list[tuple[str, Turn, int]] = []
        self.removed: list[Turn] = []
        self.reads = 0
        self.fail_reads = False
        self.fail_appends_for: set[str] = set()

    def seed(self, key: str, turns: Sequence[Turn], *, start_ms: int = 1_000) -> None:
        for offset, turn in enumerate(turns):
            self.logs.setdefault(key, {})[serialize_turn(turn)] = start_ms + offset

    def turns(self, key: str) -> list[Turn]:
        members = sorted(self.logs.get(key, {}).items(), key=lambda item: item[1])
        return [parse_turn(member) for member, _ in members]

    async def append(
        self,
        key: str,
        turn: Turn,
        *,
        timestamp_ms: int,
        ttl_seconds: int,
    ) -> None:
        self.appends.append((key, turn, timestamp_ms))
        if turn.role in self.fail_appends_for:
            raise StoreError("append failed", transient=True)
        self.logs.setdefault(key, {})[serialize_turn(turn)] = timestamp_ms
        self.ttls[key] = ttl_seconds

    async def read_descending(self, key: str, rank: int) -> Turn | None:
        self.reads += 1
        if self.fail_reads:
            raise StoreError("read failed", transient=True)
        members = sorted(
            self.logs.get(key, {}).items(), key=lambda item: item[1], reverse=True
        )
        if rank >= len(members):
            return None
        return parse_turn(members[rank][0])

    async def remove(self, key: str, turn: Turn) -> None:
        self.removed.append(turn)
        self.logs.get(key, {}).pop(serialize_turn(turn), None)


class FakeLedger:
    def __init__(self, config: OpenAIConfig | None = None, spent_tokens: int = 0) -> None:
        self.config = config or OpenAIConfig(api_key="sk-test")
        self.spent_tokens = spent_tokens
        self.added: list[tuple[int, int]] = []
        self.fail_add = False

    async def load_profile(self, user_id: int) -> OpenAIProfile:
        return OpenAIProfile(config=self.config, spent_tokens=self.spent_tokens)

    async def add_spent_tokens(self, user_id: int, tokens: int) -> None:
        if self.fail_add:
            raise RuntimeError("ledger offline")
        self.added.append((user_id, tokens))
        self.spent_tokens += tokens
