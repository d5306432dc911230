from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from .events import EventBus

log = logging.getLogger(__name__)

DEFAULT = "default"
GRANTED = "granted"
DENIED = "denied"
_PERMISSIONS = (DEFAULT, GRANTED, DENIED)


@dataclass
class DesktopNotification:
    title: str
    tag: str
    icon: str = "/favicon.ico"
    body: str = ""
    on_click: Optional[Callable[[], None]] = field(default=None, repr=False)
    closed: bool = False

    def close(self) -> None:
        self.closed = True


class NotificationCenter:
    """Desktop notification surface of the agent's browser.

    The browser owns the real permission prompt; it reports the answer through
    `set_permission`. Notifications are keyed by tag: showing a tag that is already
    on screen replaces the earlier one instead of stacking a second.
    """

    def __init__(self, bus: EventBus | None = None, *, permission: str = DEFAULT, supported: bool = True):
        self.bus = bus
        self.supported = bool(supported)
        self._permission = permission if permission in _PERMISSIONS else DEFAULT
        self._active: Dict[str, DesktopNotification] = {}
        self._permission_waiters: list[asyncio.Future] = []
        self.permission_requested = False

    @property
    def permission(self) -> str:
        return self._permission

    @property
    def active(self) -> Dict[str, DesktopNotification]:
        return dict(self._active)

    def set_permission(self, permission: str) -> None:
        value = str(permission or "").strip().lower()
        if value not in _PERMISSIONS:
            raise ValueError(f"Unknown notification permission: {permission!r}")
        self._permission = value
        if value != DEFAULT:
            waiters, self._permission_waiters = self._permission_waiters, []
            for fut in waiters:
                if not fut.done():
                    fut.set_result(value)

    def request_permission_later(self) -> None:
        """Ask the browser to prompt on the agent's next click/keypress (needs a user gesture)."""
        if not self.supported or self._permission != DEFAULT or self.permission_requested:
            return
        self.permission_requested = True
        if self.bus is not None:
            self.bus.publish("notification_permission_request")

    async def request_permission(self, timeout: float = 30.0) -> str:
        if not self.supported or self._permission != DEFAULT:
            return self._permission
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._permission_waiters.append(fut)
        self.permission_requested = True
        if self.bus is not None:
            self.bus.publish("notification_permission_request")
        try:
            return await asyncio.wait_for(fut, timeout=timeout)
        except asyncio.TimeoutError:
            return self._permission
        finally:
            if fut in self._permission_waiters:
                self._permission_waiters.remove(fut)

    def show(self, title: str, *, tag: str, icon: str = "/favicon.ico", body: str = "") -> Optional[DesktopNotification]:
        if not self.supported or self._permission != GRANTED:
            return None
        previous = self._active.pop(tag, None)
        if previous is not None:
            previous.close()
        notification = DesktopNotification(title=title, tag=tag, icon=icon, body=body)
        notification.on_click = lambda: self.dismiss(tag)
        self._active[tag] = notification
        if self.bus is not None:
            self.bus.publish("notification", title=title, tag=tag, icon=icon, body=body)
        return notification

    def dismiss(self, tag: str) -> None:
        notification = self._active.pop(tag, None)
        if notification is not None:
            notification.close()
            if self.bus is not None:
                self.bus.publish("notification_closed", tag=tag)
