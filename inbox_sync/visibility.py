from __future__ import annotations

import logging
from typing import Callable, List

log = logging.getLogger(__name__)

VisibilityListener = Callable[[bool], None]


class PageVisibility:
    """Whether the agent's inbox page is currently hidden, as reported by the browser.

    Listeners get the new `hidden` value on every transition (not on repeats).
    """

    def __init__(self, hidden: bool = False):
        self._hidden = bool(hidden)
        self._listeners: List[VisibilityListener] = []

    @property
    def hidden(self) -> bool:
        return self._hidden

    def add_listener(self, listener: VisibilityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _remove

    def set_hidden(self, hidden: bool) -> None:
        hidden = bool(hidden)
        if hidden == self._hidden:
            return
        self._hidden = hidden
        for listener in list(self._listeners):
            try:
                listener(hidden)
            except Exception as exc:
                log.exception("Visibility listener failed: %s", exc)
