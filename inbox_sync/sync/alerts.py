from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..chime import MESSAGE, ChimePlayer
from ..models import Conversation, ConversationSnapshot
from ..notifications import GRANTED, NotificationCenter
from ..visibility import PageVisibility
from .timers import Timers

log = logging.getLogger(__name__)

CHIME_COOLDOWN_MS = 3_000
SENT_SUPPRESSION_MS = 5_000
PREVIEW_CHARS = 60


class ChimeGate:
    """Single audible channel shared by every alert path: one chime per cooldown window."""

    def __init__(self, player: ChimePlayer, timers: Timers, cooldown_ms: int = CHIME_COOLDOWN_MS):
        self.player = player
        self.timers = timers
        self.cooldown_ms = cooldown_ms
        self.last_chime_at: Optional[float] = None
        self.chimes = 0

    def try_chime(self, sound: str = MESSAGE) -> bool:
        now = self.timers.now_ms()
        if self.last_chime_at is not None and now - self.last_chime_at < self.cooldown_ms:
            log.debug("Chime %s skipped (cooldown)", sound)
            return False
        # The window starts even if the platform refuses playback.
        self.last_chime_at = now
        self.chimes += 1
        self.player.play(sound)
        return True


class MessageAlertEngine:
    """Chimes/notifies on new inbound activity the current agent should see.

    A conversation qualifies when its last message is inbound, it is unassigned or
    assigned to `current_user_id`, no message was sent by this agent in the last
    `suppression_ms`, and its freshness timestamp is new: changed from the recorded
    value, or first seen with a non-empty timestamp.
    """

    def __init__(
        self,
        *,
        gate: ChimeGate,
        notifications: NotificationCenter,
        visibility: PageVisibility,
        timers: Timers,
        current_user_id: str | None = None,
        notifications_enabled: bool = True,
        suppression_ms: int = SENT_SUPPRESSION_MS,
        icon: str = "/favicon.ico",
    ):
        self.gate = gate
        self.notifications = notifications
        self.visibility = visibility
        self.timers = timers
        self.current_user_id = current_user_id
        self.notifications_enabled = bool(notifications_enabled)
        self.suppression_ms = suppression_ms
        self.icon = icon
        self.last_sent_at: Optional[float] = None
        self._last_active: Dict[str, str] = {}
        self.notifications.request_permission_later()

    @property
    def known_timestamps(self) -> Dict[str, str]:
        return dict(self._last_active)

    def mark_sent_message(self) -> None:
        self.last_sent_at = self.timers.now_ms()

    def _suppressed(self, now: float) -> bool:
        return self.last_sent_at is not None and now - self.last_sent_at < self.suppression_ms

    def _eligible(self, conv: Conversation) -> bool:
        if conv.last_message is None or not conv.last_message.is_inbound:
            return False
        if conv.assigned_agent_id is None:
            return True
        return self.current_user_id is not None and conv.assigned_agent_id == self.current_user_id

    def on_conversations_updated(
        self, snapshot: ConversationSnapshot, meta: Dict[str, Any] | None = None
    ) -> List[Conversation]:
        now = self.timers.now_ms()
        prev = self._last_active
        fresh: Dict[str, str] = {}
        suppressed = self._suppressed(now)
        to_notify: List[Conversation] = []

        for conv in snapshot:
            last_active = conv.last_active_at or ""
            fresh[conv.id] = last_active

            if not self._eligible(conv):
                continue
            if suppressed:
                continue

            prior = prev.get(conv.id)
            changed = prior is not None and last_active != prior
            first_seen = prior is None and last_active != ""
            if not (changed or first_seen):
                continue
            to_notify.append(conv)

        # Always advance the baseline, including while suppressed or disabled.
        self._last_active = fresh

        if not self.notifications_enabled or not to_notify:
            return []

        log.info(
            "New inbound activity in %s conversation(s) source=%s",
            len(to_notify),
            (meta or {}).get("source", "poll"),
        )
        self.gate.try_chime(MESSAGE)
        for conv in to_notify:
            self._show_notification(conv)
        return to_notify

    def _show_notification(self, conv: Conversation) -> None:
        if self.notifications.permission != GRANTED:
            return
        if not self.visibility.hidden:
            # Do not interrupt an attended page.
            return
        content = (conv.last_message.content if conv.last_message else None) or ""
        try:
            self.notifications.show(
                f"{conv.display_name}: {content[:PREVIEW_CHARS]}",
                tag=f"message-{conv.id}",
                icon=self.icon,
            )
        except Exception as exc:
            log.debug("Message notification failed for %s: %s", conv.id, exc)
