from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

from ..visibility import PageVisibility
from .feed import ANY_EVENT, CHANNEL_ERROR, CLOSED, SUBSCRIBED, TIMED_OUT, ChangeChannel, ChangeEvent, ChangeFeed
from .timers import TimerHandle, Timers

log = logging.getLogger(__name__)

INITIAL_RETRY_DELAY_MS = 3_000
MAX_RETRY_DELAY_MS = 30_000
DEBOUNCE_MS = 500
CHANNEL_NAME = "realtime:metadata-sync"

# (table, event) pairs whose changes make the conversation list stale.
WATCHED_TOPICS: Tuple[Tuple[str, str], ...] = (
    ("conversation_metadata", ANY_EVENT),
    ("conversation_contact_labels", ANY_EVENT),
    ("contacts", ANY_EVENT),
    ("conversation_notes", "INSERT"),
)

CONNECTING = "connecting"
STATUS_SUBSCRIBED = "subscribed"
STATUS_ERROR = "error"
STATUS_CLOSED = "closed"

_RECONNECT_STATUSES = (CHANNEL_ERROR, TIMED_OUT, CLOSED)


class RealtimeChangeListener:
    """Keeps one realtime channel open and turns change bursts into single refreshes.

    Change events are debounced (`debounce_ms` after the last event). Channel failures
    schedule a full resubscribe after the current retry delay, which then doubles up to
    `max_retry_delay_ms`; a successful subscribe resets it. When the page becomes visible
    again the channel is rebuilt immediately and `on_change` fires once.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        on_change: Callable[[], None],
        *,
        timers: Timers,
        visibility: PageVisibility | None = None,
        topics: Tuple[Tuple[str, str], ...] = WATCHED_TOPICS,
        channel_name: str = CHANNEL_NAME,
        debounce_ms: int = DEBOUNCE_MS,
        initial_retry_delay_ms: int = INITIAL_RETRY_DELAY_MS,
        max_retry_delay_ms: int = MAX_RETRY_DELAY_MS,
        on_status: Callable[[str], None] | None = None,
    ):
        self.feed = feed
        # Handler cells: always read at call time.
        self.on_change = on_change
        self.on_status = on_status
        self.timers = timers
        self.topics = topics
        self.channel_name = channel_name
        self.debounce_ms = debounce_ms
        self.initial_retry_delay_ms = initial_retry_delay_ms
        self.max_retry_delay_ms = max_retry_delay_ms

        self.retry_delay_ms = initial_retry_delay_ms
        self.status = STATUS_CLOSED
        self.realtime_connected = False
        self.subscribe_count = 0

        self._visibility = visibility
        self._detach_visibility: Optional[Callable[[], None]] = None
        self._channel: Optional[ChangeChannel] = None
        self._retry_timer: Optional[TimerHandle] = None
        self._debounce_timer: Optional[TimerHandle] = None
        self._alive = False

    @property
    def channel(self) -> Optional[ChangeChannel]:
        return self._channel

    def open(self) -> None:
        if self._alive:
            return
        self._alive = True
        self.subscribe()
        if self._visibility is not None:
            self._detach_visibility = self._visibility.add_listener(self._on_visibility_change)

    def _set_status(self, status: str, connected: bool) -> None:
        changed = status != self.status or connected != self.realtime_connected
        self.status = status
        self.realtime_connected = connected
        if changed and self.on_status is not None:
            try:
                self.on_status(status)
            except Exception as exc:
                log.exception("Realtime status hook failed: %s", exc)

    def _fire_change(self) -> None:
        try:
            self.on_change()
        except Exception as exc:
            log.exception("Realtime on_change handler failed: %s", exc)

    def _trigger_data_change(self, _change: ChangeEvent | None = None) -> None:
        if self._debounce_timer is not None:
            self._debounce_timer.cancel()
        self._debounce_timer = self.timers.call_later(self.debounce_ms, self._debounce_elapsed)

    def _debounce_elapsed(self) -> None:
        self._debounce_timer = None
        if self._alive:
            self._fire_change()

    def _teardown_channel(self) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            try:
                self.feed.remove_channel(channel)
            except Exception as exc:
                log.warning("Realtime channel removal failed: %s", exc)

    def subscribe(self) -> None:
        if not self._alive:
            return
        # Never two live channels: drop the previous one first.
        self._teardown_channel()

        channel = self.feed.channel(self.channel_name)
        for table, event in self.topics:
            channel.on(table, event, self._trigger_data_change)
        self._channel = channel
        self.subscribe_count += 1
        self._set_status(CONNECTING, False)
        channel.subscribe(lambda status, ch=channel: self._on_channel_status(ch, status))

    def _on_channel_status(self, channel: ChangeChannel, status: str) -> None:
        if not self._alive or channel is not self._channel:
            return
        if status == SUBSCRIBED:
            self._set_status(STATUS_SUBSCRIBED, True)
            self.retry_delay_ms = self.initial_retry_delay_ms
            log.info("Realtime channel %s subscribed", self.channel_name)
        elif status in _RECONNECT_STATUSES:
            self._set_status(STATUS_CLOSED if status == CLOSED else STATUS_ERROR, False)
            self._schedule_reconnect(status)

    def _schedule_reconnect(self, reason: str) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
        delay = self.retry_delay_ms
        self.retry_delay_ms = min(delay * 2, self.max_retry_delay_ms)
        log.warning("Realtime channel %s %s; resubscribing in %sms", self.channel_name, reason, delay)
        self._retry_timer = self.timers.call_later(delay, self._retry_elapsed)

    def _retry_elapsed(self) -> None:
        self._retry_timer = None
        if self._alive:
            self.subscribe()

    def _on_visibility_change(self, hidden: bool) -> None:
        if hidden or not self._alive:
            # Keep the subscription as-is while hidden.
            return
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None
        self.retry_delay_ms = self.initial_retry_delay_ms
        self.subscribe()
        # Data may have gone stale while hidden.
        self._fire_change()

    def close(self) -> None:
        if not self._alive:
            return
        self._alive = False
        if self._detach_visibility is not None:
            self._detach_visibility()
            self._detach_visibility = None
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None
        if self._debounce_timer is not None:
            self._debounce_timer.cancel()
            self._debounce_timer = None
        channel, self._channel = self._channel, None
        if channel is not None:
            channel.unsubscribe()
            self.feed.remove_channel(channel)
        self._set_status(STATUS_CLOSED, False)
