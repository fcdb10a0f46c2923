from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI
from redis import asyncio as redis_asyncio

from relay_bot_orx.budget_gate import BudgetGate, ReplyPacing
from relay_bot_orx.completion_client import CompletionClient
from relay_bot_orx.config import Settings
from relay_bot_orx.conversation import ConversationManager
from relay_bot_orx.dedupe import UpdateDedupe
from relay_bot_orx.telegram_client import TelegramClient
from relay_bot_orx.turn_store import RedisTurnStore
from relay_bot_orx.user_store import UserStore
from relay_bot_orx.webhook import WebhookHandler, build_router


def create_app(settings: Settings) -> FastAPI:
    http_client = httpx.AsyncClient()
    redis = redis_asyncio.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.redis_timeout_seconds,
        socket_connect_timeout=settings.redis_timeout_seconds,
    )
    user_store = UserStore(settings.database_path)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        await http_client.aclose()
        await redis.aclose()
        user_store.close()

    app = FastAPI(title="relay-bot-orx", version="1.0", lifespan=lifespan)

    telegram_client = TelegramClient(
        bot_token=settings.telegram_bot_token,
        http_client=http_client,
        base_url=settings.telegram_api_base_url,
    )
    completion_client = CompletionClient(
        http_client=http_client,
        base_url=settings.openai_base_url,
        timeout_seconds=settings.openai_timeout_seconds,
    )
    conversations = ConversationManager(store=RedisTurnStore(redis=redis))
    budget_gate = BudgetGate(
        ledger=user_store,
        completion_client=completion_client,
        conversations=conversations,
        pacing=ReplyPacing(
            min_seconds=settings.bot_reply_delay_min_seconds,
            max_seconds=settings.bot_reply_delay_max_seconds,
        ),
    )
    handler = WebhookHandler(
        settings=settings,
        telegram_client=telegram_client,
        user_store=user_store,
        budget_gate=budget_gate,
        key_validator=completion_client,
        dedupe=UpdateDedupe(
            redis=redis, ttl_seconds=settings.bot_update_dedupe_ttl_seconds
        ),
    )

    app.include_router(
        build_router(handler, secret_token=settings.telegram_webhook_secret)
    )

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    return app


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    settings = Settings.from_env()
    app = create_app(settings)

    uvicorn.run(
        app,
        host=settings.bot_webhook_host,
        port=settings.bot_webhook_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
