from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from .client import InboxApiClient
from .config import SyncSettings
from .observability.context import get_agent_id, get_conversation_id
from .observability.logging import configure_logging
from .router import create_inbox_router
from .sync.feed import ChangeFeed, InMemoryChangeFeed
from .sync.redis_feed import RedisChangeFeed
from .sync.runtime import InboxSyncRuntime

log = logging.getLogger(__name__)


def _build_feed(settings: SyncSettings) -> ChangeFeed:
    if settings.redis_url:
        return RedisChangeFeed.from_url(
            settings.redis_url,
            prefix=settings.realtime_channel_prefix,
            subscribe_timeout=settings.realtime_subscribe_timeout_seconds,
        )
    return InMemoryChangeFeed()


def create_app(
    settings: SyncSettings | None = None,
    *,
    api: InboxApiClient | None = None,
    feed: ChangeFeed | None = None,
    autostart: bool = True,
) -> FastAPI:
    settings = settings or SyncSettings.from_env()
    api = api or InboxApiClient(
        settings.api_url,
        token=settings.api_token,
        timeout_seconds=settings.http_timeout_seconds,
        conversations_limit=settings.conversations_limit,
    )
    feed = feed or _build_feed(settings)
    runtime = InboxSyncRuntime(settings, api=api, feed=feed)

    app = FastAPI(title="inbox-sync")
    app.state.settings = settings
    app.state.runtime = runtime
    app.include_router(create_inbox_router(runtime))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.api_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def startup():
        configure_logging(
            level=settings.log_level,
            agent_getter=get_agent_id,
            conversation_getter=get_conversation_id,
        )
        logging.getLogger("httpx").setLevel(logging.WARNING)
        if isinstance(runtime.feed, RedisChangeFeed):
            try:
                await runtime.feed.client.ping()
                log.info("Redis change feed connected")
            except Exception as exc:
                # Fall back to the process-local feed; polling still keeps the list fresh.
                log.warning("Redis change feed unavailable, using in-memory feed: %s", exc)
                fallback = InMemoryChangeFeed()
                runtime.feed = fallback
                runtime.realtime.feed = fallback
        if autostart:
            await runtime.start()

    @app.on_event("shutdown")
    async def shutdown():
        await runtime.stop()
        await runtime.api.aclose()
        if isinstance(runtime.feed, RedisChangeFeed):
            await runtime.feed.aclose()

    @app.get("/health")
    async def health_check():
        return {
            "status": "ok",
            "realtimeConnected": runtime.realtime.realtime_connected,
            "isPolling": runtime.conversation_poller.is_polling,
            "conversations": len(runtime.snapshots.get_last()),
        }

    Instrumentator().instrument(app).expose(app, endpoint="/metrics")
    return app


def run() -> None:
    import uvicorn

    settings = SyncSettings.from_env()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
