from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ..visibility import PageVisibility

log = logging.getLogger(__name__)

MAX_INTERVAL_MS = 60_000

PollAction = Callable[[], Awaitable[None]]
Sleep = Callable[[float], Awaitable[None]]


class BackoffPoller:
    """Sequential poller with exponential backoff and visibility-driven pause.

    `action` runs immediately on start, then again `current_interval_ms` after each
    run settles, so runs never overlap. Success resets the interval to base; failure
    doubles it up to `max_interval_ms` and polling carries on. While the page is hidden
    the poller is paused (no pending run); when it becomes visible again it restarts
    from the base interval if still enabled.
    """

    def __init__(
        self,
        action: PollAction,
        *,
        interval_ms: int = 5_000,
        enabled: bool = True,
        visibility: PageVisibility | None = None,
        max_interval_ms: int = MAX_INTERVAL_MS,
        sleep: Sleep | None = None,
        name: str = "poller",
    ):
        # Handler cell: the loop reads `self.action` at call time.
        self.action = action
        self.name = name
        self._base = int(interval_ms)
        self._current = int(interval_ms)
        self._max = max(int(max_interval_ms), int(interval_ms))
        self._enabled = bool(enabled)
        self._sleep: Sleep = sleep or asyncio.sleep
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self.is_polling = False
        self.is_paused = bool(visibility is not None and visibility.hidden)
        self._visibility = visibility
        self._detach_visibility = (
            visibility.add_listener(self._on_visibility_change) if visibility is not None else None
        )

    @property
    def base_interval_ms(self) -> int:
        return self._base

    @property
    def current_interval_ms(self) -> int:
        return self._current

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _reset_backoff(self) -> None:
        self._current = self._base

    def _increase_backoff(self) -> None:
        self._current = min(self._current * 2, self._max)

    def start(self) -> None:
        if self._closed or not self._enabled:
            return
        if self._visibility is not None and self._visibility.hidden:
            self.is_paused = True
            return
        if self.running:
            return
        self.is_polling = True
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"poller:{self.name}")

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        self.is_polling = False
        self._reset_backoff()

    def set_enabled(self, enabled: bool) -> None:
        enabled = bool(enabled)
        if enabled == self._enabled:
            return
        self._enabled = enabled
        if enabled:
            self.start()
        else:
            self.stop()

    def set_interval(self, interval_ms: int) -> None:
        self._base = int(interval_ms)
        self._current = int(interval_ms)
        self._max = max(self._max, self._base)

    async def poll_once(self) -> bool:
        try:
            await self.action()
        except Exception as exc:
            self._increase_backoff()
            log.warning("Poller %s: poll failed, next attempt in %sms: %s", self.name, self._current, exc)
            return False
        self._reset_backoff()
        return True

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            await self._sleep(self._current / 1000.0)

    async def join(self) -> None:
        """Wait until the polling loop exits (stop/close/pause)."""
        task = self._task
        if task is not None:
            await asyncio.wait([task])

    def _on_visibility_change(self, hidden: bool) -> None:
        if self._closed:
            return
        if hidden:
            self.is_paused = True
            self.stop()
            log.debug("Poller %s paused (page hidden)", self.name)
        else:
            self.is_paused = False
            if self._enabled:
                self.start()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.stop()
        if self._detach_visibility is not None:
            self._detach_visibility()
            self._detach_visibility = None
