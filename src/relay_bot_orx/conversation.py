from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from relay_bot_orx.history_window import build_window
from relay_bot_orx.turn_store import (
    DEFAULT_NAMESPACE,
    StoreError,
    TurnStore,
    conversation_key,
)
from relay_bot_orx.turns import Turn

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DURATION_SECONDS = 60 * 10
DEFAULT_CHAR_LIMIT = 10_000
MAX_CACHE_DURATION_SECONDS = 60 * 60
MAX_CHAR_LIMIT = 10_000


@dataclass(frozen=True)
class WindowConfig:
    cache_duration: int = DEFAULT_CACHE_DURATION_SECONDS
    char_limit: int = DEFAULT_CHAR_LIMIT

    def __post_init__(self) -> None:
        if not 0 < self.cache_duration <= MAX_CACHE_DURATION_SECONDS:
            raise ValueError(
                f"cache_duration must be in 1..{MAX_CACHE_DURATION_SECONDS}"
            )
        if not 0 < self.char_limit <= MAX_CHAR_LIMIT:
            raise ValueError(f"char_limit must be in 1..{MAX_CHAR_LIMIT}")


class Completer(Protocol):
    """Turns a window into a reply.

    ``None`` means no reply should be sent. Any raised exception is treated
    as a failed completion.
    """

    async def complete(self, turns: Sequence[Turn]) -> str | None: ...


def now_ms() -> int:
    return time.time_ns() // 1_000_000


class ConversationManager:
    def __init__(
        self,
        *,
        store: TurnStore,
        namespace: str = DEFAULT_NAMESPACE,
        default_window: WindowConfig | None = None,
    ) -> None:
        self._store = store
        self._namespace = namespace
        self._default_window = default_window or WindowConfig()

    def key_for(self, user_id: str | int) -> str:
        return conversation_key(user_id, namespace=self._namespace)

    async def get_conversation(
        self,
        user_id: str | int,
        *,
        incoming_length: int,
        window: WindowConfig | None = None,
    ) -> list[Turn]:
        window = window or self._default_window
        return await build_window(
            self._store,
            self.key_for(user_id),
            incoming_length=incoming_length,
            char_limit=window.char_limit,
        )

    async def store_turn(
        self,
        user_id: str | int,
        turn: Turn,
        *,
        timestamp_ms: int | None = None,
        window: WindowConfig | None = None,
    ) -> None:
        window = window or self._default_window
        await self._store.append(
            self.key_for(user_id),
            turn,
            timestamp_ms=now_ms() if timestamp_ms is None else timestamp_ms,
            ttl_seconds=window.cache_duration,
        )

    async def process_message(
        self,
        user_id: str | int,
        message_text: str,
        completer: Completer,
        *,
        window: WindowConfig | None = None,
    ) -> str | None:
        window = window or self._default_window

        try:
            history = await self.get_conversation(
                user_id,
                incoming_length=len(message_text),
                window=window,
            )
        except StoreError as exc:
            logger.warning(
                "history_read_failed user_id=%s transient=%s detail=%s",
                user_id,
                exc.transient,
                exc,
            )
            history = []

        user_turn = Turn.user(message_text)
        history.append(user_turn)
        user_timestamp = now_ms()

        reply = await completer.complete(history)
        if reply is None:
            return None

        assistant_timestamp = max(now_ms(), user_timestamp + 1)
        for turn, timestamp in (
            (user_turn, user_timestamp),
            (Turn.assistant(reply), assistant_timestamp),
        ):
            try:
                await self.store_turn(
                    user_id,
                    turn,
                    timestamp_ms=timestamp,
                    window=window,
                )
            except StoreError:
                logger.exception(
                    "history_store_failed user_id=%s role=%s", user_id, turn.role
                )

        return reply
