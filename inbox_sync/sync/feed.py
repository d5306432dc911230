from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

log = logging.getLogger(__name__)

# Channel status values reported to `subscribe` callbacks.
SUBSCRIBED = "SUBSCRIBED"
CHANNEL_ERROR = "CHANNEL_ERROR"
TIMED_OUT = "TIMED_OUT"
CLOSED = "CLOSED"

ANY_EVENT = "*"
CHANGE_EVENTS = ("INSERT", "UPDATE", "DELETE")


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: str
    record: Dict[str, Any]


ChangeHandler = Callable[[ChangeEvent], None]
StatusCallback = Callable[[str], None]


class ChangeChannel(Protocol):
    name: str

    def on(self, table: str, event: str, handler: ChangeHandler) -> "ChangeChannel": ...

    def subscribe(self, callback: StatusCallback) -> "ChangeChannel": ...

    def unsubscribe(self) -> None: ...


class ChangeFeed(Protocol):
    def channel(self, name: str) -> ChangeChannel: ...

    def remove_channel(self, channel: ChangeChannel) -> None: ...


class _Bindings:
    """(table, event) -> handlers registry shared by the feed implementations."""

    def __init__(self) -> None:
        self._items: List[Tuple[str, str, ChangeHandler]] = []

    def add(self, table: str, event: str, handler: ChangeHandler) -> None:
        event = (event or ANY_EVENT).upper()
        if event != ANY_EVENT and event not in CHANGE_EVENTS:
            raise ValueError(f"Unsupported change event: {event}")
        self._items.append((table, event, handler))

    @property
    def tables(self) -> List[str]:
        seen: List[str] = []
        for table, _, _ in self._items:
            if table not in seen:
                seen.append(table)
        return seen

    def dispatch(self, change: ChangeEvent) -> int:
        hits = 0
        for table, event, handler in list(self._items):
            if table != change.table:
                continue
            if event != ANY_EVENT and event != change.event.upper():
                continue
            hits += 1
            try:
                handler(change)
            except Exception as exc:
                log.exception("Change handler for %s/%s failed: %s", table, event, exc)
        return hits


class MemoryChannel:
    def __init__(self, feed: "InMemoryChangeFeed", name: str):
        self.feed = feed
        self.name = name
        self.bindings = _Bindings()
        self.status: Optional[str] = None
        self._callback: Optional[StatusCallback] = None
        self.unsubscribed = False

    def on(self, table: str, event: str, handler: ChangeHandler) -> "MemoryChannel":
        self.bindings.add(table, event, handler)
        return self

    def subscribe(self, callback: StatusCallback) -> "MemoryChannel":
        self._callback = callback
        if self.feed.auto_subscribe:
            self.set_status(SUBSCRIBED)
        return self

    def set_status(self, status: str) -> None:
        """Report a connection status to the subscriber (used to simulate drops)."""
        if self.unsubscribed:
            return
        self.status = status
        if self._callback is not None:
            self._callback(status)

    def unsubscribe(self) -> None:
        self.unsubscribed = True
        self.status = CLOSED
        self._callback = None


class InMemoryChangeFeed:
    """Process-local change feed, used when no Redis is configured.

    `emit` delivers a change synchronously to every subscribed, still-attached channel.
    """

    def __init__(self, auto_subscribe: bool = True):
        self.auto_subscribe = auto_subscribe
        self.channels: List[MemoryChannel] = []
        self.created = 0
        self.removed = 0

    def channel(self, name: str) -> MemoryChannel:
        ch = MemoryChannel(self, name)
        self.channels.append(ch)
        self.created += 1
        return ch

    def remove_channel(self, channel: MemoryChannel) -> None:
        if channel in self.channels:
            self.channels.remove(channel)
            self.removed += 1
        channel.unsubscribe()

    def emit(self, table: str, event: str, record: Dict[str, Any] | None = None) -> int:
        change = ChangeEvent(table=table, event=event.upper(), record=dict(record or {}))
        hits = 0
        for ch in list(self.channels):
            if ch.unsubscribed or ch.status != SUBSCRIBED:
                continue
            hits += ch.bindings.dispatch(change)
        return hits

    async def publish(self, table: str, event: str, record: Dict[str, Any] | None = None) -> None:
        self.emit(table, event, record)
