from __future__ import annotations

import json

import httpx
import pytest

from relay_bot_orx.telegram_client import TelegramClient, TelegramSendError


@pytest.mark.anyio
async def test_send_text_on_behalf_of_business_account() -> None:
    seen: dict[str, object] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as http_client:
        client = TelegramClient(bot_token="token", http_client=http_client)
        await client.send_text(
            chat_id=777, text="hello", business_connection_id="conn-1"
        )

    assert seen["path"] == "/bottoken/sendMessage"
    assert seen["body"] == {
        "chat_id": 777,
        "text": "hello",
        "business_connection_id": "conn-1",
    }


@pytest.mark.anyio
async def test_send_text_to_private_chat_omits_connection() -> None:
    bodies: list[dict[str, object]] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as http_client:
        client = TelegramClient(bot_token="token", http_client=http_client)
        await client.send_text(chat_id=555, text="Option updated")

    assert bodies == [{"chat_id": 555, "text": "Option updated"}]


@pytest.mark.anyio
async def test_send_text_truncates_long_messages() -> None:
    bodies: list[dict[str, str]] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as http_client:
        client = TelegramClient(bot_token="token", http_client=http_client)
        await client.send_text(chat_id=1, text="x" * 5000)

    assert len(bodies[0]["text"]) == 4096
    assert bodies[0]["text"].endswith("...")


@pytest.mark.anyio
async def test_send_chat_action_typing() -> None:
    seen: dict[str, object] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as http_client:
        client = TelegramClient(bot_token="token", http_client=http_client)
        await client.send_chat_action(chat_id=777, business_connection_id="conn-1")

    assert seen["path"] == "/bottoken/sendChatAction"
    assert seen["body"] == {
        "chat_id": 777,
        "action": "typing",
        "business_connection_id": "conn-1",
    }


@pytest.mark.anyio
async def test_http_error_maps_to_send_error() -> None:
    async def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(400, text="bad request")

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as http_client:
        client = TelegramClient(bot_token="token", http_client=http_client)
        with pytest.raises(TelegramSendError) as exc:
            await client.send_text(chat_id=1, text="hello")

    assert exc.value.status_code == 400
    assert "bad request" in str(exc.value)


@pytest.mark.anyio
async def test_network_error_maps_to_send_error() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as http_client:
        client = TelegramClient(bot_token="token", http_client=http_client)
        with pytest.raises(TelegramSendError) as exc:
            await client.send_chat_action(chat_id=1)

    assert exc.value.status_code is None


@pytest.mark.anyio
async def test_protocol_error_maps_to_send_error() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.RemoteProtocolError("peer closed connection", request=request)

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as http_client:
        client = TelegramClient(bot_token="token", http_client=http_client)
        with pytest.raises(TelegramSendError):
            await client.send_text(chat_id=1, text="hello")
