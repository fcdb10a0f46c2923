from __future__ import annotations

import httpx

TELEGRAM_MAX_MESSAGE_CHARS = 4096


class TelegramSendError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TelegramClient:
    def __init__(
        self,
        *,
        bot_token: str,
        http_client: httpx.AsyncClient,
        base_url: str = "https://api.telegram.org",
        timeout_seconds: float = 30.0,
    ) -> None:
        self._http_client = http_client
        self._base_url = base_url.rstrip("/")
        self._bot_token = bot_token.strip()
        self._timeout_seconds = timeout_seconds

    async def send_text(
        self,
        *,
        chat_id: int,
        text: str,
        business_connection_id: str | None = None,
    ) -> None:
        payload: dict[str, object] = {
            "chat_id": chat_id,
            "text": _truncate(text),
        }
        if business_connection_id:
            payload["business_connection_id"] = business_connection_id
        await self._post_json(method="sendMessage", payload=payload)

    async def send_chat_action(
        self,
        *,
        chat_id: int,
        action: str = "typing",
        business_connection_id: str | None = None,
    ) -> None:
        payload: dict[str, object] = {"chat_id": chat_id, "action": action}
        if business_connection_id:
            payload["business_connection_id"] = business_connection_id
        await self._post_json(method="sendChatAction", payload=payload)

    async def _post_json(self, *, method: str, payload: dict[str, object]) -> None:
        url = f"{self._base_url}/bot{self._bot_token}/{method}"
        try:
            response = await self._http_client.post(
                url, json=payload, timeout=self._timeout_seconds
            )
        except httpx.TransportError as exc:
            raise TelegramSendError(
                f"Telegram {method} failed due to network error."
            ) from exc

        _raise_for_telegram_error(method, response)


def _truncate(text: str) -> str:
    if len(text) <= TELEGRAM_MAX_MESSAGE_CHARS:
        return text
    return f"{text[: TELEGRAM_MAX_MESSAGE_CHARS - 3].rstrip()}..."


def _raise_for_telegram_error(method: str, response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    detail = response.text.strip() or "No error detail"
    if len(detail) > 240:
        detail = f"{detail[:240]}..."
    raise TelegramSendError(
        f"Telegram {method} failed ({response.status_code}): {detail}",
        status_code=response.status_code,
    )
