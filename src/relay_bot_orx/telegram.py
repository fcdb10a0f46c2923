from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class BusinessConnection:
    update_id: int
    connection_id: str
    user_chat_id: int
    is_enabled: bool


@dataclass(frozen=True)
class BusinessMessage:
    update_id: int
    business_connection_id: str
    chat_id: int
    sender_id: int
    text: str | None


@dataclass(frozen=True)
class PrivateMessage:
    update_id: int
    chat_id: int
    text: str | None


TelegramUpdate = BusinessConnection | BusinessMessage | PrivateMessage


def parse_telegram_update(payload: dict[str, Any]) -> TelegramUpdate | None:
    update_id = _as_int(payload.get("update_id"))
    if update_id is None:
        return None

    connection = as_dict(payload.get("business_connection"))
    if connection:
        return _parse_business_connection(update_id, connection)

    business_message = as_dict(payload.get("business_message"))
    if business_message:
        return _parse_business_message(update_id, business_message)

    message = as_dict(payload.get("message"))
    if message:
        return _parse_private_message(update_id, message)

    return None


def _parse_business_connection(
    update_id: int, connection: dict[str, Any]
) -> BusinessConnection | None:
    connection_id = first_non_empty_str(connection, "id")
    user_chat_id = _as_int(connection.get("user_chat_id"))
    if connection_id is None or user_chat_id is None:
        return None

    return BusinessConnection(
        update_id=update_id,
        connection_id=connection_id,
        user_chat_id=user_chat_id,
        is_enabled=connection.get("is_enabled") is True,
    )


def _parse_business_message(
    update_id: int, message: dict[str, Any]
) -> BusinessMessage | None:
    connection_id = first_non_empty_str(message, "business_connection_id")
    chat_id = _as_int(as_dict(message.get("chat")).get("id"))
    sender_id = _as_int(as_dict(message.get("from")).get("id"))
    if connection_id is None or chat_id is None:
        return None

    return BusinessMessage(
        update_id=update_id,
        business_connection_id=connection_id,
        chat_id=chat_id,
        sender_id=chat_id if sender_id is None else sender_id,
        text=_message_text(message),
    )


def _parse_private_message(
    update_id: int, message: dict[str, Any]
) -> PrivateMessage | None:
    chat = as_dict(message.get("chat"))
    if first_non_empty_str(chat, "type") != "private":
        return None

    chat_id = _as_int(chat.get("id"))
    if chat_id is None:
        return None

    return PrivateMessage(
        update_id=update_id,
        chat_id=chat_id,
        text=_message_text(message),
    )


def _message_text(message: dict[str, Any]) -> str | None:
    text = message.get("text")
    if isinstance(text, str) and text:
        return text
    return None


def as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {}


def first_non_empty_str(payload: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def _as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit() or (stripped.startswith("-") and stripped[1:].isdigit()):
            return int(stripped)
    return None
