from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

INBOUND = "inbound"
OUTBOUND = "outbound"


def _parse_iso_ts(ts: Any) -> Optional[datetime]:
    if not isinstance(ts, str) or not ts.strip():
        return None
    try:
        return datetime.fromisoformat(ts.strip().replace("Z", "+00:00"))
    except Exception:
        return None


def parse_direction(last_inbound_at: Any = None, last_outbound_at: Any = None) -> str:
    """Direction of the newest message from the provider's inbound/outbound stamps.

    Ties count as inbound; with no usable stamp the conversation is treated as inbound.
    """
    inbound = _parse_iso_ts(last_inbound_at)
    outbound = _parse_iso_ts(last_outbound_at)
    if inbound and outbound:
        try:
            return INBOUND if inbound >= outbound else OUTBOUND
        except TypeError:
            # naive vs aware stamps
            return INBOUND if inbound.timestamp() >= outbound.timestamp() else OUTBOUND
    if inbound:
        return INBOUND
    if outbound:
        return OUTBOUND
    return INBOUND


@dataclass(frozen=True)
class Label:
    id: str
    name: str = ""
    color: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "color": self.color}


@dataclass(frozen=True)
class LastMessage:
    content: str
    direction: str = INBOUND
    type: Optional[str] = None

    @property
    def is_inbound(self) -> bool:
        return self.direction == INBOUND

    @property
    def is_outbound(self) -> bool:
        return self.direction == OUTBOUND


@dataclass(frozen=True)
class Conversation:
    id: str
    phone_number: str = ""
    contact_name: Optional[str] = None
    last_message: Optional[LastMessage] = None
    # Freshness timestamp: most recent activity recorded by the provider.
    last_active_at: str = ""
    # Inbox workflow status (abierto/pendiente/resuelto) and provider status (active/ended).
    status: str = "abierto"
    provider_status: str = "unknown"
    assigned_agent_id: Optional[str] = None
    assigned_agent_name: Optional[str] = None
    labels: Tuple[Label, ...] = ()
    messages_count: Optional[int] = None

    @property
    def display_name(self) -> str:
        return self.contact_name or self.phone_number or "Cliente"

    def same_meta_as(self, other: Optional["Conversation"]) -> bool:
        """Equality used for change detection: identity, freshness, status, assignment."""
        if other is None:
            return False
        return (
            self.id == other.id
            and self.last_active_at == other.last_active_at
            and self.status == other.status
            and self.provider_status == other.provider_status
            and self.assigned_agent_id == other.assigned_agent_id
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "phoneNumber": self.phone_number,
            "contactName": self.contact_name,
            "lastActiveAt": self.last_active_at,
            "convStatus": self.status,
            "status": self.provider_status,
            "assignedAgentId": self.assigned_agent_id,
            "assignedAgentName": self.assigned_agent_name,
            "labels": [lbl.to_dict() for lbl in self.labels],
            "messagesCount": self.messages_count,
            "lastMessage": None,
        }
        if self.last_message is not None:
            out["lastMessage"] = {
                "content": self.last_message.content,
                "direction": self.last_message.direction,
                "type": self.last_message.type,
            }
        return out


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def label_from_api(raw: Any) -> Optional[Label]:
    if not isinstance(raw, dict):
        return None
    lid = _opt_str(raw.get("id"))
    if not lid:
        return None
    return Label(id=lid, name=str(raw.get("name") or ""), color=str(raw.get("color") or ""))


def conversation_from_api(raw: Dict[str, Any]) -> Conversation:
    """Build a Conversation from one `/api/conversations` record (camelCase keys)."""
    cid = _opt_str(raw.get("id"))
    if not cid:
        raise ValueError("conversation record without id")

    last_message = None
    lm = raw.get("lastMessage")
    if isinstance(lm, dict) and isinstance(lm.get("content"), str):
        direction = str(lm.get("direction") or "").strip().lower()
        if direction not in (INBOUND, OUTBOUND):
            direction = parse_direction(raw.get("lastInboundAt"), raw.get("lastOutboundAt"))
        last_message = LastMessage(content=lm["content"], direction=direction, type=_opt_str(lm.get("type")))
    elif isinstance(raw.get("lastMessageText"), str) and raw.get("lastMessageText"):
        # Un-transformed provider shape.
        last_message = LastMessage(
            content=raw["lastMessageText"],
            direction=parse_direction(raw.get("lastInboundAt"), raw.get("lastOutboundAt")),
            type=_opt_str(raw.get("lastMessageType")),
        )

    labels: List[Label] = []
    for item in raw.get("labels") or []:
        lbl = label_from_api(item)
        if lbl is not None:
            labels.append(lbl)

    count = raw.get("messagesCount")
    last_active = raw.get("lastActiveAt")
    return Conversation(
        id=cid,
        phone_number=str(raw.get("phoneNumber") or ""),
        contact_name=_opt_str(raw.get("contactName")),
        last_message=last_message,
        last_active_at=last_active if isinstance(last_active, str) else "",
        status=str(raw.get("convStatus") or "abierto"),
        provider_status=str(raw.get("status") or "unknown"),
        assigned_agent_id=_opt_str(raw.get("assignedAgentId")),
        assigned_agent_name=_opt_str(raw.get("assignedAgentName")),
        labels=tuple(labels),
        messages_count=count if isinstance(count, int) else None,
    )


class ConversationSnapshot:
    """Ordered, immutable conversation list as of one fetch."""

    __slots__ = ("_items",)

    def __init__(self, conversations=()) -> None:
        self._items: Tuple[Conversation, ...] = tuple(conversations)

    def __iter__(self) -> Iterator[Conversation]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> Conversation:
        return self._items[index]

    def __repr__(self) -> str:
        return f"ConversationSnapshot({len(self._items)} conversations)"

    @property
    def conversations(self) -> Tuple[Conversation, ...]:
        return self._items

    def ids(self) -> List[str]:
        return [c.id for c in self._items]

    def get(self, conversation_id: str) -> Optional[Conversation]:
        for conv in self._items:
            if conv.id == conversation_id:
                return conv
        return None

    def find_by_phone(self, phone_number: str) -> Optional[Conversation]:
        for conv in self._items:
            if conv.phone_number == phone_number:
                return conv
        return None

    def differs_from(self, other: Optional["ConversationSnapshot"]) -> bool:
        """True when length changed or any index differs on id/freshness/status/assignment.

        Message content and labels are not compared.
        """
        prev = other._items if other is not None else ()
        if len(self._items) != len(prev):
            return True
        return any(not cur.same_meta_as(old) for cur, old in zip(self._items, prev))

    def to_list(self) -> List[Dict[str, Any]]:
        return [c.to_dict() for c in self._items]


@dataclass(frozen=True)
class HandoffInfo:
    id: str
    contact_name: Optional[str] = None
    phone_number: Optional[str] = None


@dataclass(frozen=True)
class Message:
    id: str
    direction: str = INBOUND
    content: str = ""
    type: str = "text"
    timestamp: str = ""
    status: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "direction": self.direction,
            "content": self.content,
            "type": self.type,
            "timestamp": self.timestamp,
            "status": self.status,
        }


def message_from_api(raw: Dict[str, Any]) -> Message:
    mid = _opt_str(raw.get("id"))
    if not mid:
        raise ValueError("message record without id")
    content = raw.get("content")
    if not isinstance(content, str):
        text = raw.get("text")
        if isinstance(text, dict) and isinstance(text.get("body"), str):
            content = text["body"]
        else:
            content = ""
    direction = str(raw.get("direction") or INBOUND).strip().lower()
    return Message(
        id=mid,
        direction=direction if direction in (INBOUND, OUTBOUND) else INBOUND,
        content=content,
        type=str(raw.get("type") or "text"),
        timestamp=str(raw.get("timestamp") or raw.get("createdAt") or ""),
        status=_opt_str(raw.get("status")),
        raw=dict(raw),
    )
