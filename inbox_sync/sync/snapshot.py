from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional

from ..models import Conversation, ConversationSnapshot

log = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[ConversationSnapshot]]
SnapshotListener = Callable[[ConversationSnapshot], None]


class ConversationSnapshotCache:
    """Last fetched conversation list plus change-gated listener notification.

    `fetch()` (background polls) only replaces the stored snapshot and notifies when
    the list changed by id/freshness/status/assignment; `refresh()` always does.
    Concurrent fetches are not serialized: whichever completes last wins. Results that
    land after `close()` are dropped.
    """

    def __init__(self, fetcher: Fetcher):
        self.fetcher = fetcher
        self._snapshot = ConversationSnapshot()
        self._listeners: List[SnapshotListener] = []
        self._alive = True
        self.loaded = False
        self.fetch_count = 0
        self.change_count = 0

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _remove

    def get_last(self) -> ConversationSnapshot:
        return self._snapshot

    def find_by_phone(self, phone_number: str) -> Optional[Conversation]:
        return self._snapshot.find_by_phone(phone_number)

    async def _load(self) -> ConversationSnapshot:
        try:
            snapshot = await self.fetcher()
        except Exception as exc:
            log.error("Error fetching conversations: %s", exc)
            raise
        self.fetch_count += 1
        return snapshot

    def _apply(self, snapshot: ConversationSnapshot) -> None:
        self._snapshot = snapshot
        self.loaded = True
        self.change_count += 1
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as exc:
                log.exception("Snapshot listener failed: %s", exc)

    async def fetch(self) -> ConversationSnapshot:
        snapshot = await self._load()
        if not self._alive:
            log.debug("Discarding conversation fetch that finished after close")
            return snapshot
        if snapshot.differs_from(self._snapshot):
            self._apply(snapshot)
        else:
            self.loaded = True
        return snapshot

    async def refresh(self) -> ConversationSnapshot:
        snapshot = await self._load()
        if not self._alive:
            log.debug("Discarding conversation refresh that finished after close")
            return snapshot
        self._apply(snapshot)
        return snapshot

    def close(self) -> None:
        self._alive = False
        self._listeners.clear()
