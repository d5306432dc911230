from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis

from .feed import (
    CHANNEL_ERROR,
    CLOSED,
    SUBSCRIBED,
    TIMED_OUT,
    ChangeEvent,
    ChangeHandler,
    StatusCallback,
    _Bindings,
)

log = logging.getLogger(__name__)


class RedisChannel:
    """One logical realtime channel backed by a Redis pub/sub connection.

    Each watched table maps to the pub/sub channel `<prefix>:<table>`. Messages are
    JSON `{"table", "event", "record"}`. Status is reported as SUBSCRIBED once the
    subscription is in place, TIMED_OUT if that takes longer than `subscribe_timeout`,
    CHANNEL_ERROR on connection failures and CLOSED when the server ends the stream.
    Nothing is reported after `unsubscribe()`.
    """

    def __init__(self, client: redis.Redis, name: str, *, prefix: str, subscribe_timeout: float):
        self.client = client
        self.name = name
        self.prefix = prefix
        self.subscribe_timeout = subscribe_timeout
        self.bindings = _Bindings()
        self._callback: Optional[StatusCallback] = None
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    def _topic(self, table: str) -> str:
        return f"{self.prefix}:{table}"

    def on(self, table: str, event: str, handler: ChangeHandler) -> "RedisChannel":
        self.bindings.add(table, event, handler)
        return self

    def subscribe(self, callback: StatusCallback) -> "RedisChannel":
        self._callback = callback
        self._task = asyncio.get_running_loop().create_task(self._listen(), name=f"realtime:{self.name}")
        return self

    def _emit(self, status: str) -> None:
        if self._stopped or self._callback is None:
            return
        try:
            self._callback(status)
        except Exception as exc:
            log.exception("Realtime status callback failed (%s): %s", status, exc)

    def _dispatch(self, raw: Any) -> None:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8", "ignore")
        data = json.loads(raw)
        if not isinstance(data, dict) or not data.get("table"):
            raise ValueError("change message without table")
        record = data.get("record")
        change = ChangeEvent(
            table=str(data["table"]),
            event=str(data.get("event") or "UPDATE").upper(),
            record=record if isinstance(record, dict) else {},
        )
        self.bindings.dispatch(change)

    async def _listen(self) -> None:
        pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        topics = [self._topic(t) for t in self.bindings.tables]
        try:
            try:
                await asyncio.wait_for(pubsub.subscribe(*topics), timeout=self.subscribe_timeout)
            except asyncio.TimeoutError:
                log.warning("Realtime channel %s: subscribe timed out after %ss", self.name, self.subscribe_timeout)
                self._emit(TIMED_OUT)
                return
            except Exception as exc:
                log.warning("Realtime channel %s: subscribe failed: %s", self.name, exc)
                self._emit(CHANNEL_ERROR)
                return

            self._emit(SUBSCRIBED)
            try:
                async for msg in pubsub.listen():
                    if not msg or msg.get("type") != "message":
                        continue
                    try:
                        self._dispatch(msg.get("data"))
                    except Exception as inner_exc:
                        log.warning("Realtime channel %s: bad change message: %s", self.name, inner_exc)
            except Exception as exc:
                log.warning("Realtime channel %s: connection lost: %s", self.name, exc)
                self._emit(CHANNEL_ERROR)
                return
            self._emit(CLOSED)
        finally:
            try:
                await pubsub.aclose()
            except Exception as exc:
                log.debug("Realtime channel %s: pubsub close failed: %s", self.name, exc)

    def unsubscribe(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._callback = None
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()


class RedisChangeFeed:
    def __init__(self, client: redis.Redis, *, prefix: str = "inbox:changes", subscribe_timeout: float = 10.0):
        self.client = client
        self.prefix = prefix
        self.subscribe_timeout = subscribe_timeout

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisChangeFeed":
        return cls(redis.from_url(url), **kwargs)

    def channel(self, name: str) -> RedisChannel:
        return RedisChannel(self.client, name, prefix=self.prefix, subscribe_timeout=self.subscribe_timeout)

    def remove_channel(self, channel: RedisChannel) -> None:
        channel.unsubscribe()

    async def publish(self, table: str, event: str, record: Dict[str, Any] | None = None) -> None:
        payload = json.dumps({"table": table, "event": event.upper(), "record": record or {}}, ensure_ascii=False)
        await self.client.publish(f"{self.prefix}:{table}", payload)

    async def aclose(self) -> None:
        try:
            await self.client.aclose()
        except Exception as exc:
            log.debug("Redis close failed: %s", exc)
