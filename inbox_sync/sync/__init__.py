"""Polling, realtime invalidation, snapshot diffing and alert engines."""

from .alerts import ChimeGate, MessageAlertEngine
from .handoff import HandoffDetector, is_handoff_conversation
from .poller import BackoffPoller
from .realtime import RealtimeChangeListener
from .runtime import InboxSyncRuntime, InboxSyncState
from .snapshot import ConversationSnapshotCache

__all__ = [
    "BackoffPoller",
    "ChimeGate",
    "ConversationSnapshotCache",
    "HandoffDetector",
    "InboxSyncRuntime",
    "InboxSyncState",
    "MessageAlertEngine",
    "RealtimeChangeListener",
    "is_handoff_conversation",
]
