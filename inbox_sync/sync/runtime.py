from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set

from ..chime import AudioOutput, BusAudioOutput, ChimePlayer
from ..client import InboxApiClient
from ..config import SyncSettings
from ..events import EventBus
from ..models import Conversation, ConversationSnapshot, Message
from ..notifications import NotificationCenter
from ..observability.context import set_agent_id, set_conversation_id
from ..visibility import PageVisibility
from .alerts import ChimeGate, MessageAlertEngine
from .feed import ChangeFeed
from .handoff import HandoffDetector
from .poller import BackoffPoller, Sleep
from .realtime import RealtimeChangeListener
from .snapshot import ConversationSnapshotCache
from .timers import LoopTimers, Timers

log = logging.getLogger(__name__)


@dataclass
class InboxSyncState:
    selected_id: Optional[str] = None
    messages: List[Message] = field(default_factory=list)
    role: str = "agent"
    started: bool = False


class InboxSyncRuntime:
    """One agent session: pollers, realtime listener, snapshot cache and alert engines."""

    def __init__(
        self,
        settings: SyncSettings,
        *,
        api: InboxApiClient,
        feed: ChangeFeed,
        bus: EventBus | None = None,
        visibility: PageVisibility | None = None,
        notifications: NotificationCenter | None = None,
        timers: Timers | None = None,
        sleep: Sleep | None = None,
        audio_output_factory: Callable[[], AudioOutput] | None = None,
    ):
        self.settings = settings
        self.api = api
        self.feed = feed
        self.bus = bus or EventBus(settings.event_queue_maxsize)
        self.visibility = visibility or PageVisibility()
        self.timers = timers or LoopTimers()
        self.notifications = notifications or NotificationCenter(self.bus)
        self.state = InboxSyncState()
        self._tasks: Set[asyncio.Task] = set()

        self.player = ChimePlayer(audio_output_factory or (lambda: BusAudioOutput(self.bus)))
        self.gate = ChimeGate(self.player, self.timers, settings.chime_cooldown_ms)

        self.snapshots = ConversationSnapshotCache(self._fetch_conversations)
        self.handoffs = HandoffDetector(
            gate=self.gate,
            notifications=self.notifications,
            patterns=settings.handoff_patterns,
            icon=settings.notification_icon,
        )
        self.alerts = MessageAlertEngine(
            gate=self.gate,
            notifications=self.notifications,
            visibility=self.visibility,
            timers=self.timers,
            current_user_id=settings.current_user_id,
            notifications_enabled=settings.notifications_enabled,
            suppression_ms=settings.sent_suppression_ms,
            icon=settings.notification_icon,
        )
        self.snapshots.add_listener(self._on_snapshot)

        self.conversation_poller = BackoffPoller(
            self._poll_conversations,
            interval_ms=settings.conversations_poll_interval_ms,
            max_interval_ms=settings.poll_max_interval_ms,
            visibility=self.visibility,
            sleep=sleep,
            name="conversations",
        )
        self.message_poller = BackoffPoller(
            self._poll_messages,
            interval_ms=settings.messages_poll_interval_ms,
            max_interval_ms=settings.poll_max_interval_ms,
            enabled=False,
            visibility=self.visibility,
            sleep=sleep,
            name="messages",
        )
        self.realtime = RealtimeChangeListener(
            feed,
            self._on_realtime_change,
            timers=self.timers,
            visibility=self.visibility,
            debounce_ms=settings.realtime_debounce_ms,
            initial_retry_delay_ms=settings.realtime_retry_initial_ms,
            max_retry_delay_ms=settings.realtime_retry_max_ms,
            on_status=self._on_realtime_status,
        )

    # ---- lifecycle ----
    async def start(self) -> None:
        if self.state.started:
            return
        self.state.started = True
        set_agent_id(self.settings.current_user_id)
        try:
            prefs = await self.api.get_preferences()
            self.alerts.notifications_enabled = bool(prefs.get("notifications_enabled", True))
            self.state.role = str(prefs.get("role") or "agent")
        except Exception as exc:
            log.warning("Could not load user preferences (keeping defaults): %s", exc)
        self.conversation_poller.start()
        self.realtime.open()

    async def stop(self) -> None:
        self.state.started = False
        self.conversation_poller.close()
        self.message_poller.close()
        self.realtime.close()
        self.snapshots.close()
        self.handoffs.close()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
        self._tasks.clear()

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ---- data paths ----
    async def _fetch_conversations(self) -> ConversationSnapshot:
        return await self.api.list_conversations(limit=self.settings.conversations_limit)

    async def _poll_conversations(self) -> None:
        await self.snapshots.fetch()

    async def _poll_messages(self) -> None:
        conversation_id = self.state.selected_id
        if not conversation_id:
            return
        messages = await self.api.list_messages(conversation_id)
        # The agent may have switched conversations while the request was in flight.
        if self.state.selected_id != conversation_id or not self.state.started:
            return
        changed = [m.id for m in messages] != [m.id for m in self.state.messages]
        self.state.messages = messages
        if changed:
            self.bus.publish(
                "messages",
                conversationId=conversation_id,
                messages=[m.to_dict() for m in messages],
            )

    def _on_snapshot(self, snapshot: ConversationSnapshot) -> None:
        self.handoffs.on_conversations_updated(snapshot)
        self.alerts.on_conversations_updated(snapshot)
        self.bus.publish(
            "snapshot",
            conversations=snapshot.to_list(),
            alertingIds=sorted(self.handoffs.alerting_ids),
            allHandoffIds=sorted(self.handoffs.all_handoff_ids),
        )

    def _on_realtime_change(self) -> None:
        self._spawn(self._refresh_quietly("realtime"), name="refresh:realtime")

    def _on_realtime_status(self, status: str) -> None:
        self.bus.publish("realtime_status", status=status, connected=self.realtime.realtime_connected)

    async def _refresh_quietly(self, source: str) -> None:
        try:
            await self.snapshots.refresh()
        except Exception as exc:
            log.warning("Conversation refresh (%s) failed: %s", source, exc)

    # ---- agent operations ----
    async def refresh(self) -> ConversationSnapshot:
        return await self.snapshots.refresh()

    def open_conversation(self, conversation_id: str) -> None:
        self.handoffs.acknowledge(conversation_id)
        if self.state.selected_id != conversation_id:
            self.state.messages = []
        self.state.selected_id = conversation_id
        set_conversation_id(conversation_id)
        # Restart message polling for the newly selected conversation.
        self.message_poller.stop()
        self.message_poller.set_enabled(True)
        self.message_poller.start()

    def close_conversation(self) -> None:
        self.state.selected_id = None
        self.state.messages = []
        set_conversation_id(None)
        self.message_poller.set_enabled(False)

    def select_by_phone(self, phone_number: str) -> Optional[Conversation]:
        conv = self.snapshots.find_by_phone(phone_number)
        if conv is not None:
            self.open_conversation(conv.id)
        return conv

    async def send_message(self, to: str, body: str, *, select: bool = False) -> Dict[str, Any]:
        result = await self.api.send_message(to, body)
        self.alerts.mark_sent_message()
        try:
            await self.snapshots.refresh()
        except Exception as exc:
            log.warning("Refresh after send failed: %s", exc)
        if select:
            self.select_by_phone("".join(ch for ch in to if ch.isdigit()))
        return result

    async def set_notifications_enabled(self, enabled: bool) -> bool:
        value = await self.api.set_notifications_enabled(bool(enabled))
        self.alerts.notifications_enabled = value
        return value

    def status(self) -> Dict[str, Any]:
        return {
            "isPolling": self.conversation_poller.is_polling,
            "isPaused": self.conversation_poller.is_paused,
            "pollIntervalMs": self.conversation_poller.current_interval_ms,
            "realtimeConnected": self.realtime.realtime_connected,
            "realtimeStatus": self.realtime.status,
            "alertingIds": sorted(self.handoffs.alerting_ids),
            "allHandoffIds": sorted(self.handoffs.all_handoff_ids),
            "notificationsEnabled": self.alerts.notifications_enabled,
            "notificationPermission": self.notifications.permission,
            "selectedId": self.state.selected_id,
            "conversations": len(self.snapshots.get_last()),
            "role": self.state.role,
        }
