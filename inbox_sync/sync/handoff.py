from __future__ import annotations

import asyncio
import logging
from typing import FrozenSet, Iterable, List, Sequence, Set

from ..chime import HANDOFF
from ..config import DEFAULT_HANDOFF_PATTERNS
from ..models import Conversation, ConversationSnapshot
from ..notifications import DEFAULT, GRANTED, NotificationCenter
from .alerts import ChimeGate

log = logging.getLogger(__name__)


def is_handoff_conversation(conv: Conversation, patterns: Sequence[str] = DEFAULT_HANDOFF_PATTERNS) -> bool:
    """The bot handed off: last message is outbound and mentions a trigger phrase."""
    last = conv.last_message
    if last is None or not last.is_outbound:
        return False
    content = (last.content or "").lower()
    return any(p in content for p in patterns)


def classify_handoffs(
    conversations: Iterable[Conversation], patterns: Sequence[str] = DEFAULT_HANDOFF_PATTERNS
) -> List[Conversation]:
    return [c for c in conversations if is_handoff_conversation(c, patterns)]


class HandoffDetector:
    """Tracks which conversations wait for a human and which the agent already opened.

    `all_handoff_ids` is recomputed from scratch on every snapshot. Acknowledgements last
    for the session and are never revoked. A brand-new handoff (not in the previous set,
    not acknowledged) triggers the shared chime and a desktop notification.
    """

    def __init__(
        self,
        *,
        gate: ChimeGate,
        notifications: NotificationCenter,
        patterns: Sequence[str] = DEFAULT_HANDOFF_PATTERNS,
        icon: str = "/favicon.ico",
    ):
        self.gate = gate
        self.notifications = notifications
        self.patterns = tuple(p.lower() for p in patterns)
        self.icon = icon
        self._all: FrozenSet[str] = frozenset()
        self._acknowledged: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self.notifications.request_permission_later()

    @property
    def all_handoff_ids(self) -> FrozenSet[str]:
        return self._all

    @property
    def acknowledged_ids(self) -> FrozenSet[str]:
        return frozenset(self._acknowledged)

    @property
    def alerting_ids(self) -> FrozenSet[str]:
        return frozenset(self._all - self._acknowledged)

    def acknowledge(self, conversation_id: str) -> None:
        self._acknowledged.add(conversation_id)

    def on_conversations_updated(self, snapshot: ConversationSnapshot) -> List[Conversation]:
        handoffs = classify_handoffs(snapshot, self.patterns)
        previous = self._all
        brand_new = [c for c in handoffs if c.id not in previous and c.id not in self._acknowledged]
        self._all = frozenset(c.id for c in handoffs)

        if brand_new:
            log.info("Handoff requested in %s conversation(s): %s", len(brand_new), [c.id for c in brand_new])
            self.gate.try_chime(HANDOFF)
            self._notify(brand_new)
        return brand_new

    def _notify(self, handoffs: List[Conversation]) -> None:
        if not self.notifications.supported:
            return
        if self.notifications.permission == DEFAULT:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                self.notifications.request_permission_later()
                return
            task = loop.create_task(self._notify_after_prompt(handoffs))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return
        self._show(handoffs)

    async def _notify_after_prompt(self, handoffs: List[Conversation]) -> None:
        # The agent may have just interacted with the page; ask now.
        await self.notifications.request_permission()
        self._show(handoffs)

    def _show(self, handoffs: List[Conversation]) -> None:
        if self.notifications.permission != GRANTED:
            return
        for conv in handoffs:
            try:
                self.notifications.show(
                    f"{conv.display_name} necesita ayuda de una persona",
                    tag=f"handoff-{conv.id}",
                    icon=self.icon,
                )
            except Exception as exc:
                log.debug("Handoff notification failed for %s: %s", conv.id, exc)

    def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
