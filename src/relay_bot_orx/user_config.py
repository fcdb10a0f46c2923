from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any

from relay_bot_orx.conversation import (
    DEFAULT_CACHE_DURATION_SECONDS,
    DEFAULT_CHAR_LIMIT,
    MAX_CACHE_DURATION_SECONDS,
    MAX_CHAR_LIMIT,
    WindowConfig,
)

DEFAULT_MODEL = "gpt-3.5-turbo"
ALLOWED_MODELS = ("gpt-3.5-turbo", "gpt-4-turbo", "gpt-4o", "gpt-4o-mini")
DEFAULT_MAX_MESSAGE_LENGTH = 4_000
DEFAULT_MAX_TOTAL_TOKENS_SPENT = 1_000_000
DEFAULT_MAX_TOKENS = 1_000
MAX_PROMPT_CHARS = 4_000
MAX_MESSAGE_LENGTH_LIMIT = 4_000
UNSET_DISPLAY = "---"


class ConfigValidationError(ValueError):
    def __init__(self, user_message: str) -> None:
        super().__init__(user_message)
        self.user_message = user_message


@dataclass(frozen=True)
class OpenAIConfig:
    api_key: str | None = None
    model: str = DEFAULT_MODEL
    prompt: str | None = None
    max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH
    max_total_tokens_spent: int = DEFAULT_MAX_TOTAL_TOKENS_SPENT
    max_tokens: int = DEFAULT_MAX_TOKENS
    cache_duration: int = DEFAULT_CACHE_DURATION_SECONDS
    char_limit: int = DEFAULT_CHAR_LIMIT

    @property
    def window(self) -> WindowConfig:
        return WindowConfig(
            cache_duration=self.cache_duration,
            char_limit=self.char_limit,
        )

    def display_api_key(self) -> str:
        if not self.api_key:
            return UNSET_DISPLAY
        if len(self.api_key) <= 8:
            return "*" * len(self.api_key)
        return f"{self.api_key[:3]}...{self.api_key[-4:]}"

    def display_prompt(self) -> str:
        return self.prompt or UNSET_DISPLAY

    def with_api_key(self, api_key: str) -> OpenAIConfig:
        stripped = api_key.strip()
        if not stripped or any(char.isspace() for char in stripped):
            raise ConfigValidationError("Invalid API key")
        return replace(self, api_key=stripped)

    def with_model(self, model: str) -> OpenAIConfig:
        if model not in ALLOWED_MODELS:
            allowed = ", ".join(ALLOWED_MODELS)
            raise ConfigValidationError(
                f"Invalid model. Allowed values are: {allowed}"
            )
        return replace(self, model=model)

    def with_prompt(self, prompt: str) -> OpenAIConfig:
        if len(prompt) > MAX_PROMPT_CHARS:
            raise ConfigValidationError(
                "Prompt is too long. Maximum length is "
                f"{MAX_PROMPT_CHARS} characters"
            )
        return replace(self, prompt=prompt or None)

    def with_max_message_length(self, length: int) -> OpenAIConfig:
        if length > MAX_MESSAGE_LENGTH_LIMIT:
            raise ConfigValidationError(
                f"Max message length is too long. Maximum is {MAX_MESSAGE_LENGTH_LIMIT}"
            )
        if length <= 0:
            raise ConfigValidationError("Max message length must be positive")
        return replace(self, max_message_length=length)

    def with_max_total_tokens_spent(self, tokens: int) -> OpenAIConfig:
        if tokens < 0:
            raise ConfigValidationError("Max total tokens spent must not be negative")
        return replace(self, max_total_tokens_spent=tokens)

    def with_cache_duration(self, seconds: int) -> OpenAIConfig:
        if not 0 < seconds <= MAX_CACHE_DURATION_SECONDS:
            raise ConfigValidationError(
                f"Cache duration must be between 1 and {MAX_CACHE_DURATION_SECONDS} seconds"
            )
        return replace(self, cache_duration=seconds)

    def with_char_limit(self, limit: int) -> OpenAIConfig:
        if not 0 < limit <= MAX_CHAR_LIMIT:
            raise ConfigValidationError(
                f"Char limit must be between 1 and {MAX_CHAR_LIMIT}"
            )
        return replace(self, char_limit=limit)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "max_message_length": self.max_message_length,
            "max_total_tokens_spent": self.max_total_tokens_spent,
            "max_tokens": self.max_tokens,
            "cache_duration": self.cache_duration,
            "char_limit": self.char_limit,
        }
        if self.api_key is not None:
            payload["api_key"] = self.api_key
        if self.prompt is not None:
            payload["prompt"] = self.prompt
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> OpenAIConfig:
        defaults = cls()
        return cls(
            api_key=_optional_str(payload.get("api_key")),
            model=_str_or(payload.get("model"), defaults.model),
            prompt=_optional_str(payload.get("prompt")),
            max_message_length=_int_or(
                payload.get("max_message_length"), defaults.max_message_length
            ),
            max_total_tokens_spent=_int_or(
                payload.get("max_total_tokens_spent"),
                defaults.max_total_tokens_spent,
            ),
            max_tokens=_int_or(payload.get("max_tokens"), defaults.max_tokens),
            cache_duration=_bounded_int_or(
                payload.get("cache_duration"),
                defaults.cache_duration,
                MAX_CACHE_DURATION_SECONDS,
            ),
            char_limit=_bounded_int_or(
                payload.get("char_limit"), defaults.char_limit, MAX_CHAR_LIMIT
            ),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str | None) -> OpenAIConfig:
        if not raw:
            return cls()
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            return cls()
        return cls.from_dict(payload)


@dataclass(frozen=True)
class OpenAIProfile:
    config: OpenAIConfig = field(default_factory=OpenAIConfig)
    spent_tokens: int = 0

    @property
    def over_budget(self) -> bool:
        return self.spent_tokens > self.config.max_total_tokens_spent


@dataclass(frozen=True)
class User:
    id: int
    business_id: str
    openai: OpenAIProfile = field(default_factory=OpenAIProfile)

    @property
    def config(self) -> OpenAIConfig:
        return self.openai.config


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _str_or(value: object, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value
    return default


def _int_or(value: object, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    return default


def _bounded_int_or(value: object, default: int, maximum: int) -> int:
    number = _int_or(value, default)
    if not 0 < number <= maximum:
        return default
    return number
