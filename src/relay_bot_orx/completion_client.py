from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from relay_bot_orx.turns import Turn
from relay_bot_orx.user_config import OpenAIConfig

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"


class CompletionError(Exception):
    def __init__(self, user_message: str, *, status_code: int | None = None) -> None:
        super().__init__(user_message)
        self.user_message = user_message
        self.status_code = status_code


class ProviderError(CompletionError):
    pass


class EmptyResponse(CompletionError):
    pass


class ConfigError(CompletionError):
    pass


@dataclass(frozen=True)
class CompletionResult:
    reply: str
    tokens_spent: int = 0


class CompletionClient:
    """Chat-completions adapter. One request per call, no retries."""

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient,
        base_url: str = DEFAULT_OPENAI_BASE_URL,
        timeout_seconds: float = 45.0,
    ) -> None:
        self._http_client = http_client
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    async def complete(
        self, config: OpenAIConfig, turns: Sequence[Turn]
    ) -> CompletionResult:
        if not config.api_key:
            raise ConfigError("I don't know what to answer")

        payload = {
            "model": config.model,
            "messages": build_provider_messages(config.prompt, turns),
            "max_tokens": config.max_tokens,
        }

        try:
            response = await self._http_client.post(
                f"{self._base_url}/chat/completions",
                json=payload,
                headers=_build_headers(config.api_key),
                timeout=self._timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise ProviderError("Chat service timed out. Try again.") from exc
        except httpx.NetworkError as exc:
            raise ProviderError("Chat service is unreachable. Try again.") from exc
        except httpx.TransportError as exc:
            raise ProviderError("Chat service connection failed. Try again.") from exc

        if response.status_code in {401, 403}:
            raise ProviderError(
                "Chat service authorization failed.",
                status_code=response.status_code,
            )

        if response.status_code >= 400:
            detail = _extract_response_detail(response)
            raise ProviderError(
                f"Chat reply failed: {detail}",
                status_code=response.status_code,
            )

        return _extract_completion(response)

    async def is_api_key_valid(self, api_key: str) -> bool:
        try:
            response = await self._http_client.get(
                f"{self._base_url}/models",
                headers=_build_headers(api_key),
                timeout=self._timeout_seconds,
            )
        except httpx.TransportError as exc:
            raise ProviderError("Chat service is unreachable. Try again.") from exc

        if response.status_code < 400:
            return True
        if response.status_code == 401:
            return False

        detail = _extract_response_detail(response)
        raise ProviderError(
            f"API key check failed: {detail}",
            status_code=response.status_code,
        )


def build_provider_messages(
    system_prompt: str | None, turns: Sequence[Turn]
) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    for turn in turns:
        if turn.role not in {"user", "assistant"}:
            raise ValueError(f"Invalid turn role {turn.role!r}")
        messages.append({"role": turn.role, "content": turn.content})

    return messages


def _extract_completion(response: httpx.Response) -> CompletionResult:
    try:
        payload = response.json()
    except ValueError as exc:
        raise ProviderError("Chat service returned invalid JSON.") from exc

    if not isinstance(payload, dict):
        raise ProviderError("Chat service returned an invalid response format.")

    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        raise EmptyResponse("No answer")

    first_choice = choices[0]
    if not isinstance(first_choice, dict):
        raise ProviderError("Chat service returned an invalid reply payload.")

    message = first_choice.get("message")
    if not isinstance(message, dict):
        raise ProviderError("Chat service returned an invalid message payload.")

    content = _extract_content_text(message.get("content"))
    if not content:
        raise EmptyResponse("No answer")

    return CompletionResult(
        reply=content,
        tokens_spent=_extract_total_tokens(payload.get("usage")),
    )


def _extract_content_text(content: Any) -> str:
    if isinstance(content, str):
        return content.strip()

    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                text = item.get("text")
                if isinstance(text, str) and text.strip():
                    parts.append(text.strip())
        return "\n".join(parts)

    return ""


def _extract_total_tokens(usage: Any) -> int:
    if not isinstance(usage, dict):
        return 0
    total = usage.get("total_tokens")
    if isinstance(total, int) and not isinstance(total, bool) and total >= 0:
        return total
    return 0


def _extract_response_detail(response: httpx.Response) -> str:
    detail = ""
    try:
        payload = response.json()
        if isinstance(payload, dict):
            error = payload.get("error")
            if isinstance(error, dict):
                error = error.get("message") or error
            detail = str(error or payload.get("message") or payload)
        else:
            detail = str(payload)
    except ValueError:
        detail = response.text

    detail = " ".join(detail.strip().split())
    if not detail:
        return "No error detail"
    if len(detail) > 240:
        return f"{detail[:240]}..."
    return detail


def _build_headers(api_key: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
