from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, BackgroundTasks, Header, HTTPException

from relay_bot_orx.budget_gate import BudgetGate, MessageTooLong
from relay_bot_orx.commands import KeyValidator, run_command
from relay_bot_orx.completion_client import CompletionError
from relay_bot_orx.config import Settings
from relay_bot_orx.dedupe import UpdateDedupe
from relay_bot_orx.telegram import (
    BusinessConnection,
    BusinessMessage,
    PrivateMessage,
    parse_telegram_update,
)
from relay_bot_orx.telegram_client import TelegramClient, TelegramSendError
from relay_bot_orx.user_store import UserNotFoundError, UserStore, UserStoreError

logger = logging.getLogger(__name__)

CONNECTED_TEXT = "created\nnow /help for info"
DISCONNECTED_TEXT = "deleted"
ONLY_TEXT = "Only text"
UNEXPECTED_ERROR_TEXT = "Unexpected error while generating reply."
SETTINGS_SAVE_FAILED_TEXT = "Failed to save settings. Try again."


class WebhookHandler:
    def __init__(
        self,
        *,
        settings: Settings,
        telegram_client: TelegramClient,
        user_store: UserStore,
        budget_gate: BudgetGate,
        key_validator: KeyValidator,
        dedupe: UpdateDedupe,
    ) -> None:
        self._settings = settings
        self._telegram_client = telegram_client
        self._user_store = user_store
        self._budget_gate = budget_gate
        self._key_validator = key_validator
        self._dedupe = dedupe

    async def handle_update(
        self, payload: dict[str, object], background_tasks: BackgroundTasks
    ) -> dict[str, str]:
        update = parse_telegram_update(payload)
        if update is None:
            logger.debug(
                "unsupported_update update_id=%s top_level_key_count=%d",
                payload.get("update_id"),
                len(payload),
            )
            return {"status": "ignored", "reason": "unsupported_update"}

        if not await self._dedupe.mark_once(update.update_id):
            return {"status": "ignored", "reason": "duplicate"}

        if isinstance(update, BusinessConnection):
            background_tasks.add_task(self.handle_business_connection, update)
            return {"status": "accepted", "reason": "business_connection_queued"}

        if isinstance(update, BusinessMessage):
            background_tasks.add_task(self.handle_business_message, update)
            return {"status": "accepted", "reason": "business_message_queued"}

        background_tasks.add_task(self.handle_private_message, update)
        return {"status": "accepted", "reason": "command_queued"}

    async def handle_business_connection(self, update: BusinessConnection) -> None:
        try:
            if update.is_enabled:
                await self._user_store.upsert_user(
                    update.user_chat_id, update.connection_id
                )
                text = CONNECTED_TEXT
            else:
                await self._user_store.delete_user(update.user_chat_id)
                text = DISCONNECTED_TEXT
        except UserStoreError:
            logger.exception(
                "business_connection_store_failed user_chat_id=%s enabled=%s",
                update.user_chat_id,
                update.is_enabled,
            )
            return

        logger.info(
            "business_connection_updated user_chat_id=%s enabled=%s",
            update.user_chat_id,
            update.is_enabled,
        )
        await self._safe_send_text(update.user_chat_id, text)

    async def handle_business_message(self, message: BusinessMessage) -> None:
        connection_id = message.business_connection_id
        try:
            user = await self._user_store.load_by_business_id(connection_id)
        except UserNotFoundError:
            logger.error("business_user_not_found business_id=%s", connection_id)
            return
        except UserStoreError:
            logger.exception("business_user_load_failed business_id=%s", connection_id)
            return

        if message.sender_id == user.id:
            return

        if message.text is None:
            await self._safe_send_text(message.chat_id, ONLY_TEXT, connection_id)
            return

        async def composing() -> None:
            await self._telegram_client.send_chat_action(
                chat_id=message.chat_id,
                business_connection_id=connection_id,
            )

        try:
            reply = await self._budget_gate.reply(
                user.id,
                message.text,
                conversation_id=business_conversation_id(user.id, message.chat_id),
                composing=composing,
            )
        except MessageTooLong as exc:
            await self._safe_send_text(message.chat_id, exc.user_message, connection_id)
            return
        except CompletionError as exc:
            logger.warning(
                "chat_generation_error user_id=%s chat_id=%s detail=%s",
                user.id,
                message.chat_id,
                exc,
            )
            await self._safe_send_text(message.chat_id, exc.user_message, connection_id)
            return
        except Exception:
            logger.exception(
                "unexpected_chat_error user_id=%s chat_id=%s", user.id, message.chat_id
            )
            await self._safe_send_text(
                message.chat_id, UNEXPECTED_ERROR_TEXT, connection_id
            )
            return

        if reply is None:
            return

        await self._safe_send_text(message.chat_id, reply, connection_id)

    async def handle_private_message(self, message: PrivateMessage) -> None:
        try:
            user = await self._user_store.load_by_chat_id(message.chat_id)
        except UserNotFoundError:
            await self._safe_send_text(
                message.chat_id,
                f"only for business\ncontact {self._settings.bot_contact}",
            )
            return
        except Exception:
            logger.exception("private_user_load_failed chat_id=%s", message.chat_id)
            await self._safe_send_text(message.chat_id, UNEXPECTED_ERROR_TEXT)
            return

        if message.text is None:
            await self._safe_send_text(message.chat_id, ONLY_TEXT)
            return

        try:
            result = await run_command(
                message.text, user.config, key_validator=self._key_validator
            )
        except Exception:
            logger.exception("unexpected_command_error user_id=%s", user.id)
            await self._safe_send_text(message.chat_id, UNEXPECTED_ERROR_TEXT)
            return

        response = result.response
        if result.changed:
            try:
                await self._user_store.update_config(user.id, result.config)
            except UserStoreError:
                logger.exception("settings_update_failed user_id=%s", user.id)
                response = SETTINGS_SAVE_FAILED_TEXT

        await self._safe_send_text(message.chat_id, response)

    async def _safe_send_text(
        self,
        chat_id: int,
        text: str,
        business_connection_id: str | None = None,
    ) -> None:
        try:
            await self._telegram_client.send_text(
                chat_id=chat_id,
                text=text,
                business_connection_id=business_connection_id,
            )
        except TelegramSendError:
            logger.exception(
                "telegram_send_text_failed chat_id=%s business_id=%s",
                chat_id,
                business_connection_id,
            )


def business_conversation_id(owner_id: int, chat_id: int) -> str:
    return f"{owner_id}:{chat_id}"


def is_valid_secret(expected: str | None, received: str | None) -> bool:
    if expected is None:
        return True
    if received is None:
        return False
    return hmac.compare_digest(expected.encode(), received.encode())


def build_router(handler: WebhookHandler, *, secret_token: str | None = None) -> APIRouter:
    router = APIRouter()

    @router.post("/webhook/telegram")
    async def telegram_webhook(
        payload: dict[str, object],
        background_tasks: BackgroundTasks,
        x_telegram_bot_api_secret_token: str | None = Header(default=None),
    ) -> dict[str, str]:
        if not is_valid_secret(secret_token, x_telegram_bot_api_secret_token):
            raise HTTPException(status_code=401, detail="invalid secret token")
        return await handler.handle_update(payload, background_tasks)

    return router
