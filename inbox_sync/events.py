from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Set

log = logging.getLogger(__name__)


class EventBus:
    """Fan-out of UI events (snapshot, chime, notification, realtime status) to subscribers.

    Publishing is synchronous so the alert engines can emit from plain callbacks. Each
    subscriber gets its own bounded queue; while nobody listens, the latest events are
    kept (trimmed) and replayed to the next subscriber.
    """

    def __init__(self, maxsize: int = 200):
        self.maxsize = max(1, int(maxsize))
        self._subscribers: Set[asyncio.Queue] = set()
        self._pending: List[Dict[str, Any]] = []
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize)
        for event in self._pending:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                break
        self._pending.clear()
        self._subscribers.add(queue)
        log.info("Event subscriber connected subscribers=%s", len(self._subscribers))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.discard(queue)
            log.info("Event subscriber disconnected subscribers=%s", len(self._subscribers))

    def publish(self, event_type: str, **data: Any) -> None:
        if self._closed:
            return
        event = {"type": event_type, **data}
        if not self._subscribers:
            self._pending.append(event)
            if len(self._pending) > self.maxsize:
                self._pending = self._pending[-(self.maxsize // 2 or 1):]
            return
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # Slow consumer: drop its oldest event to make room.
                try:
                    queue.get_nowait()
                    queue.put_nowait(event)
                except (asyncio.QueueEmpty, asyncio.QueueFull):
                    log.warning("Dropping %s event for a stalled subscriber", event_type)

    def close(self) -> None:
        self._closed = True
        self._subscribers.clear()
        self._pending.clear()
