"""Conversation freshness and alerting for the WhatsApp Business inbox."""

from .config import SyncSettings
from .models import Conversation, ConversationSnapshot, LastMessage
from .sync import InboxSyncRuntime

__all__ = [
    "Conversation",
    "ConversationSnapshot",
    "InboxSyncRuntime",
    "LastMessage",
    "SyncSettings",
]
