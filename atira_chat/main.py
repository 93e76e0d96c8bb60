# atira_chat/main.py

from __future__ import annotations

import asyncio
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from atira_chat.api import websocket as websocket_module
from atira_chat.api.routes import chat_history, health, metrics, root
from atira_chat.core import state
from atira_chat.core.config import Settings, settings
from atira_chat.core.logging import get_logger, setup_logging
from atira_chat.services.chat_relay import ChatRelay
from atira_chat.services.message_store import MessageStore
from atira_chat.services.redis_pub_sub import AsyncRedisPubSubService

# Configure logging first
setup_logging()
logger = get_logger(__name__)


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    cfg = app_settings or settings

    app = FastAPI(title="Atira Chat Relay")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # REST routes
    app.include_router(root.router)
    app.include_router(health.router)
    app.include_router(metrics.router)
    app.include_router(chat_history.router)

    # WebSocket routes
    app.include_router(websocket_module.router)

    listener_tasks = []

    @app.on_event("startup")
    async def startup_event():
        logger.info("🚀 Application starting - chat relay enabled")

        store = MessageStore(cfg.DATABASE_URL)
        await store.init_models()
        state.store = store

        redis_service = None
        if cfg.PUB_SUB_SERVICE == "redis":
            redis_service = AsyncRedisPubSubService(
                host=cfg.REDIS_HOST,
                port=cfg.REDIS_PORT,
                access_key=cfg.REDIS_ACCESS_KEY,
                ssl=cfg.REDIS_SSL,
            )
            await redis_service.connect()
            state.redis_service = redis_service

        state.relay = ChatRelay(
            store,
            pubsub=redis_service,
            max_content_length=cfg.MAX_MESSAGE_LENGTH,
            history_limit=cfg.HISTORY_LIMIT,
            emit_rejections=cfg.CHAT_EMIT_REJECTIONS,
        )

        if redis_service is not None:
            # Deliver fan-outs published by every process, this one included
            listener_tasks.append(asyncio.create_task(redis_service.listen(state.relay)))

    @app.on_event("shutdown")
    async def on_shutdown():
        for task in listener_tasks:
            task.cancel()
        results = await asyncio.gather(*listener_tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Redis listener stopped with error: {result}")
        listener_tasks.clear()
        if state.redis_service is not None:
            await state.redis_service.close()
            state.redis_service = None
        if state.store is not None:
            await state.store.close()
            state.store = None
        state.relay = None

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("atira_chat.main:app", host="0.0.0.0", port=8000)
