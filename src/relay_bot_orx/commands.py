from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from relay_bot_orx.completion_client import CompletionError
from relay_bot_orx.user_config import ConfigValidationError, OpenAIConfig

logger = logging.getLogger(__name__)

OPTION_UPDATED = "Option updated"
UNKNOWN_COMMAND = "Unknown command"

HELP_TEXT = """Connect this bot to your Telegram Business account and it will answer your chats for you.

Settings:
/api_key [key] - show or set the OpenAI API key
/model [name] - show or set the model (gpt-3.5-turbo, gpt-4-turbo, gpt-4o, gpt-4o-mini)
/prompt [text] - show or set the system prompt
/max_message_length [n] - longest incoming message that gets an answer (up to 4000)
/max_total_tokens_spent [n] - stop answering once this many tokens are spent
/cache_duration [seconds] - how long a conversation is remembered (up to 3600)
/char_limit [n] - how much conversation history is sent with each message (up to 10000)
/help - this message
"""


class KeyValidator(Protocol):
    async def is_api_key_valid(self, api_key: str) -> bool: ...


@dataclass(frozen=True)
class CommandResult:
    response: str
    config: OpenAIConfig
    changed: bool = False


async def run_command(
    text: str,
    config: OpenAIConfig,
    *,
    key_validator: KeyValidator,
) -> CommandResult:
    parts = text.split()
    if not parts:
        return CommandResult(response=UNKNOWN_COMMAND, config=config)

    command = parts[0].split("@", maxsplit=1)[0].lower()
    args = parts[1:]

    try:
        if command == "/help" and not args:
            return CommandResult(response=HELP_TEXT, config=config)
        if command == "/api_key":
            return await _api_key(args, config, key_validator)
        if command == "/prompt":
            return _prompt(text, args, config)
        if command == "/model":
            return _single_value(
                args,
                config,
                show=f"Current model: {config.model}",
                apply=config.with_model,
            )
        if command == "/max_message_length":
            return _single_int(
                args,
                config,
                show=f"Current max message length: {config.max_message_length}",
                apply=config.with_max_message_length,
                invalid="Invalid length",
            )
        if command == "/max_total_tokens_spent":
            return _single_int(
                args,
                config,
                show=(
                    "Current max total tokens spent: "
                    f"{config.max_total_tokens_spent}"
                ),
                apply=config.with_max_total_tokens_spent,
                invalid="Invalid token amount",
            )
        if command == "/cache_duration":
            return _single_int(
                args,
                config,
                show=f"Current cache duration: {config.cache_duration} seconds",
                apply=config.with_cache_duration,
                invalid="Invalid duration",
            )
        if command == "/char_limit":
            return _single_int(
                args,
                config,
                show=f"Current char limit: {config.char_limit}",
                apply=config.with_char_limit,
                invalid="Invalid limit",
            )
    except ConfigValidationError as exc:
        return CommandResult(response=exc.user_message, config=config)

    return CommandResult(response=UNKNOWN_COMMAND, config=config)


async def _api_key(
    args: list[str], config: OpenAIConfig, key_validator: KeyValidator
) -> CommandResult:
    if not args:
        return CommandResult(
            response=f"Current API key: {config.display_api_key()}",
            config=config,
        )
    if len(args) > 1:
        return CommandResult(response=UNKNOWN_COMMAND, config=config)

    updated = config.with_api_key(args[0])
    try:
        valid = await key_validator.is_api_key_valid(args[0])
    except CompletionError as exc:
        logger.warning("api_key_check_failed detail=%s", exc)
        return CommandResult(
            response=f"Could not check API key: {exc.user_message}",
            config=config,
        )

    if not valid:
        return CommandResult(response="Invalid API key", config=config)
    return CommandResult(response=OPTION_UPDATED, config=updated, changed=True)


def _prompt(text: str, args: list[str], config: OpenAIConfig) -> CommandResult:
    if not args:
        return CommandResult(
            response=f"Current prompt: {config.display_prompt()}",
            config=config,
        )

    new_prompt = text.strip().split(maxsplit=1)[1].strip()
    return CommandResult(
        response=OPTION_UPDATED,
        config=config.with_prompt(new_prompt),
        changed=True,
    )


def _single_value(
    args: list[str],
    config: OpenAIConfig,
    *,
    show: str,
    apply: Callable[[str], OpenAIConfig],
) -> CommandResult:
    if not args:
        return CommandResult(response=show, config=config)
    if len(args) > 1:
        return CommandResult(response=UNKNOWN_COMMAND, config=config)
    return CommandResult(response=OPTION_UPDATED, config=apply(args[0]), changed=True)


def _single_int(
    args: list[str],
    config: OpenAIConfig,
    *,
    show: str,
    apply: Callable[[int], OpenAIConfig],
    invalid: str,
) -> CommandResult:
    if not args:
        return CommandResult(response=show, config=config)
    if len(args) > 1:
        return CommandResult(response=UNKNOWN_COMMAND, config=config)

    try:
        value = int(args[0])
    except ValueError:
        return CommandResult(response=invalid, config=config)
    return CommandResult(response=OPTION_UPDATED, config=apply(value), changed=True)
