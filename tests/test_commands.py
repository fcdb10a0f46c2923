from __future__ import annotations

import pytest

from relay_bot_orx.commands import HELP_TEXT, run_command
from relay_bot_orx.completion_client import ProviderError
from relay_bot_orx.user_config import OpenAIConfig


class _KeyValidator:
    def __init__(self, *, valid: bool = True, error: Exception | None = None) -> None:
        self._valid = valid
        self._error = error
        self.checked: list[str] = []

    async def is_api_key_valid(self, api_key: str) -> bool:
        self.checked.append(api_key)
        if self._error is not None:
            raise self._error
        return self._valid


@pytest.mark.anyio
async def test_help_returns_help_text() -> None:
    result = await run_command("/help", OpenAIConfig(), key_validator=_KeyValidator())

    assert result.response == HELP_TEXT
    assert result.changed is False


@pytest.mark.anyio
async def test_show_model() -> None:
    result = await run_command("/model", OpenAIConfig(), key_validator=_KeyValidator())

    assert result.response == "Current model: gpt-3.5-turbo"


@pytest.mark.anyio
async def test_set_model() -> None:
    result = await run_command(
        "/model gpt-4o", OpenAIConfig(), key_validator=_KeyValidator()
    )

    assert result.response == "Option updated"
    assert result.changed is True
    assert result.config.model == "gpt-4o"


@pytest.mark.anyio
async def test_invalid_model_keeps_config() -> None:
    config = OpenAIConfig()

    result = await run_command("/model llama", config, key_validator=_KeyValidator())

    assert result.response.startswith("Invalid model")
    assert result.changed is False
    assert result.config is config


@pytest.mark.anyio
async def test_set_api_key_checks_with_provider() -> None:
    validator = _KeyValidator()

    result = await run_command("/api_key sk-new", OpenAIConfig(), key_validator=validator)

    assert validator.checked == ["sk-new"]
    assert result.config.api_key == "sk-new"
    assert result.changed is True


@pytest.mark.anyio
async def test_rejected_api_key_is_not_saved() -> None:
    result = await run_command(
        "/api_key sk-bad", OpenAIConfig(), key_validator=_KeyValidator(valid=False)
    )

    assert result.response == "Invalid API key"
    assert result.changed is False


@pytest.mark.anyio
async def test_api_key_check_failure_is_reported() -> None:
    validator = _KeyValidator(error=ProviderError("Chat service is unreachable. Try again."))

    result = await run_command("/api_key sk-x", OpenAIConfig(), key_validator=validator)

    assert result.response == "Could not check API key: Chat service is unreachable. Try again."
    assert result.changed is False


@pytest.mark.anyio
async def test_show_api_key_is_masked() -> None:
    config = OpenAIConfig(api_key="sk-abcdefghijklmnop")

    result = await run_command("/api_key", config, key_validator=_KeyValidator())

    assert result.response == "Current API key: sk-...mnop"


@pytest.mark.anyio
async def test_prompt_takes_rest_of_line() -> None:
    result = await run_command(
        "/prompt  You are a  polite shop assistant.",
        OpenAIConfig(),
        key_validator=_KeyValidator(),
    )

    assert result.config.prompt == "You are a  polite shop assistant."


@pytest.mark.anyio
async def test_show_unset_prompt() -> None:
    result = await run_command("/prompt", OpenAIConfig(), key_validator=_KeyValidator())

    assert result.response == "Current prompt: ---"


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("/max_message_length abc", "Invalid length"),
        ("/max_total_tokens_spent lots", "Invalid token amount"),
        ("/cache_duration soon", "Invalid duration"),
        ("/char_limit big", "Invalid limit"),
    ],
)
async def test_non_numeric_values_are_rejected(text: str, expected: str) -> None:
    result = await run_command(text, OpenAIConfig(), key_validator=_KeyValidator())

    assert result.response == expected
    assert result.changed is False


@pytest.mark.anyio
async def test_set_numeric_options() -> None:
    config = OpenAIConfig()
    validator = _KeyValidator()

    for text in (
        "/max_message_length 1000",
        "/max_total_tokens_spent 5000",
        "/cache_duration 120",
        "/char_limit 3000",
    ):
        result = await run_command(text, config, key_validator=validator)
        assert result.response == "Option updated"
        config = result.config

    assert config.max_message_length == 1000
    assert config.max_total_tokens_spent == 5000
    assert config.cache_duration == 120
    assert config.char_limit == 3000


@pytest.mark.anyio
async def test_out_of_range_cache_duration() -> None:
    result = await run_command(
        "/cache_duration 7200", OpenAIConfig(), key_validator=_KeyValidator()
    )

    assert result.response == "Cache duration must be between 1 and 3600 seconds"


@pytest.mark.anyio
async def test_command_with_bot_suffix() -> None:
    result = await run_command(
        "/model@relay_bot", OpenAIConfig(), key_validator=_KeyValidator()
    )

    assert result.response == "Current model: gpt-3.5-turbo"


@pytest.mark.anyio
@pytest.mark.parametrize("text", ["hello", "", "/model a b", "/unknown"])
async def test_unknown_commands(text: str) -> None:
    result = await run_command(text, OpenAIConfig(), key_validator=_KeyValidator())

    assert result.response == "Unknown command"
