from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from relay_bot_orx.completion_client import CompletionClient
from relay_bot_orx.conversation import ConversationManager
from relay_bot_orx.turns import Turn
from relay_bot_orx.user_config import OpenAIConfig, OpenAIProfile

logger = logging.getLogger(__name__)

ComposingSignal = Callable[[], Awaitable[None]]


class MessageTooLong(Exception):
    def __init__(self, user_message: str = "Too long message") -> None:
        super().__init__(user_message)
        self.user_message = user_message


class SpendLedger(Protocol):
    async def load_profile(self, user_id: int) -> OpenAIProfile: ...

    async def add_spent_tokens(self, user_id: int, tokens: int) -> None: ...


@dataclass(frozen=True)
class ReplyPacing:
    min_seconds: float = 1.0
    max_seconds: float = 5.0

    def __post_init__(self) -> None:
        if self.min_seconds < 0 or self.max_seconds < self.min_seconds:
            raise ValueError("Reply pacing needs 0 <= min_seconds <= max_seconds")

    def draw(self) -> float:
        return random.uniform(self.min_seconds, self.max_seconds)


class BudgetGate:
    def __init__(
        self,
        *,
        ledger: SpendLedger,
        completion_client: CompletionClient,
        conversations: ConversationManager,
        pacing: ReplyPacing | None = None,
    ) -> None:
        self._ledger = ledger
        self._completion_client = completion_client
        self._conversations = conversations
        self._pacing = pacing or ReplyPacing()

    async def reply(
        self,
        user_id: int,
        message: str,
        *,
        conversation_id: str | int | None = None,
        composing: ComposingSignal | None = None,
    ) -> str | None:
        """Answer `message` on behalf of `user_id`, or return None to stay silent.

        `user_id` owns the config and the spend; `conversation_id` names the
        history log and defaults to `user_id`.
        """
        profile = await self._ledger.load_profile(user_id)
        config = profile.config

        if profile.over_budget:
            logger.info(
                "token_budget_exceeded user_id=%s spent=%d max=%d",
                user_id,
                profile.spent_tokens,
                config.max_total_tokens_spent,
            )
            return None

        if len(message) > config.max_message_length:
            raise MessageTooLong()

        completer = _PacedCompleter(
            user_id=user_id,
            config=config,
            ledger=self._ledger,
            completion_client=self._completion_client,
            pacing=self._pacing,
            composing=composing,
        )
        return await self._conversations.process_message(
            user_id if conversation_id is None else conversation_id,
            message,
            completer,
            window=config.window,
        )


class _PacedCompleter:
    def __init__(
        self,
        *,
        user_id: int,
        config: OpenAIConfig,
        ledger: SpendLedger,
        completion_client: CompletionClient,
        pacing: ReplyPacing,
        composing: ComposingSignal | None,
    ) -> None:
        self._user_id = user_id
        self._config = config
        self._ledger = ledger
        self._completion_client = completion_client
        self._pacing = pacing
        self._composing = composing

    async def complete(self, turns: Sequence[Turn]) -> str | None:
        result = await self._completion_client.complete(self._config, turns)

        try:
            await self._ledger.add_spent_tokens(self._user_id, result.tokens_spent)
        except Exception:
            logger.exception(
                "spend_update_failed user_id=%s tokens=%d",
                self._user_id,
                result.tokens_spent,
            )

        await pace_reply(self._pacing.draw(), composing=self._composing)
        return result.reply


async def pace_reply(
    delay_seconds: float, *, composing: ComposingSignal | None = None
) -> None:
    """Wait before delivering a reply so it reads like a person typing.

    Cancelling the wait only cuts it short; the caller still gets to deliver.
    """
    if composing is not None:
        try:
            await composing()
        except Exception:
            logger.warning("composing_signal_failed", exc_info=True)

    try:
        await asyncio.sleep(delay_seconds)
    except asyncio.CancelledError:
        logger.info("reply_delay_cancelled delay_seconds=%.2f", delay_seconds)
