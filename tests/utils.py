import asyncio
from typing import Any, Dict, List, Optional

from inbox_sync.client import InboxApiError
from inbox_sync.models import Conversation, ConversationSnapshot, LastMessage, Message


class FakeHandle:
    def __init__(self, due: float, seq: int, callback):
        self.due = due
        self.seq = seq
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimers:
    """Deterministic millisecond clock; callbacks fire only inside `advance`."""

    def __init__(self, start: float = 100_000.0):
        self.now = float(start)
        self._handles: List[FakeHandle] = []
        self._seq = 0

    def now_ms(self) -> float:
        return self.now

    def call_later(self, delay_ms: float, callback) -> FakeHandle:
        self._seq += 1
        handle = FakeHandle(self.now + max(0.0, float(delay_ms)), self._seq, callback)
        self._handles.append(handle)
        return handle

    def pending(self) -> List[FakeHandle]:
        return [h for h in self._handles if not h.cancelled and not h.fired]

    def advance(self, ms: float) -> None:
        target = self.now + ms
        while True:
            due = [h for h in self.pending() if h.due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.due, h.seq))
            self.now = handle.due
            handle.fired = True
            handle.callback()
        self.now = target


class RecordingOutput:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.played: List[str] = []

    def play(self, name: str, clip: bytes) -> None:
        if self.fail:
            raise RuntimeError("autoplay blocked")
        assert clip[:4] == b"RIFF"
        self.played.append(name)


def conv(
    cid: str,
    *,
    content: Optional[str] = "hola",
    direction: str = "inbound",
    last_active_at: str = "2024-01-01T00:00:00Z",
    status: str = "abierto",
    assigned: Optional[str] = None,
    phone: str = "",
    name: Optional[str] = None,
    labels=(),
) -> Conversation:
    return Conversation(
        id=cid,
        phone_number=phone or f"5210000000{cid[-1:] or '0'}",
        contact_name=name,
        last_message=LastMessage(content=content, direction=direction) if content is not None else None,
        last_active_at=last_active_at,
        status=status,
        assigned_agent_id=assigned,
        labels=tuple(labels),
    )


def snap(*conversations: Conversation) -> ConversationSnapshot:
    return ConversationSnapshot(conversations)


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeInboxApi:
    """Stands in for InboxApiClient; responses are queued per call."""

    def __init__(self, snapshots: Optional[List[ConversationSnapshot]] = None):
        self.snapshots = list(snapshots or [])
        self.last = ConversationSnapshot()
        self.conversation_calls = 0
        self.message_calls: List[str] = []
        self.messages: Dict[str, List[Message]] = {}
        self.sent: List[Dict[str, Any]] = []
        self.preferences: Dict[str, Any] = {"notifications_enabled": True, "role": "agent"}
        self.fail_conversations = False
        self.closed = False

    async def list_conversations(self, status=None, limit=None) -> ConversationSnapshot:
        self.conversation_calls += 1
        if self.fail_conversations:
            raise InboxApiError("inbox api down", status_code=503)
        if self.snapshots:
            self.last = self.snapshots.pop(0)
        return self.last

    async def list_messages(self, conversation_id: str) -> List[Message]:
        self.message_calls.append(conversation_id)
        return list(self.messages.get(conversation_id, []))

    async def send_message(self, to: str, body: str) -> Dict[str, Any]:
        digits = "".join(ch for ch in to if ch.isdigit())
        if not 10 <= len(digits) <= 15:
            raise ValueError("Invalid phone number format")
        self.sent.append({"to": digits, "body": body})
        return {"messages": [{"id": f"wamid.{len(self.sent)}"}]}

    async def get_preferences(self) -> Dict[str, Any]:
        return dict(self.preferences)

    async def set_notifications_enabled(self, enabled: bool) -> bool:
        self.preferences["notifications_enabled"] = bool(enabled)
        return bool(enabled)

    async def aclose(self) -> None:
        self.closed = True
