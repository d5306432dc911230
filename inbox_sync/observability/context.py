from __future__ import annotations

from contextvars import ContextVar, Token
from typing import Optional

# NOTE: Set per agent session (runtime start) and per opened conversation. Background
# tasks inherit whatever was bound when they were created.
_AGENT_ID: ContextVar[Optional[str]] = ContextVar("agent_id", default=None)
_CONVERSATION_ID: ContextVar[Optional[str]] = ContextVar("conversation_id", default=None)


def get_agent_id() -> Optional[str]:
    return _AGENT_ID.get()


def set_agent_id(value: Optional[str]) -> Token[Optional[str]]:
    v = (value or "").strip() if value else None
    return _AGENT_ID.set(v or None)


def get_conversation_id() -> Optional[str]:
    return _CONVERSATION_ID.get()


def set_conversation_id(value: Optional[str]) -> Token[Optional[str]]:
    v = (value or "").strip() if value else None
    return _CONVERSATION_ID.set(v or None)
