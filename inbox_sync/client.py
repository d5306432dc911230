from __future__ import annotations

import logging
import re
from typing import Any, Dict, List

import httpx

from .models import (
    ConversationSnapshot,
    HandoffInfo,
    Message,
    conversation_from_api,
    message_from_api,
)

log = logging.getLogger(__name__)

_PHONE_RE = re.compile(r"^\d{10,15}$")


class InboxApiError(RuntimeError):
    """Non-2xx or malformed response from the inbox API."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _digits_only(value: str) -> str:
    return "".join(ch for ch in str(value or "") if ch.isdigit())


class InboxApiClient:
    """Thin async client for the inbox HTTP API (conversations, messages, preferences)."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str = "",
        timeout_seconds: float = 12.0,
        conversations_limit: int = 50,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.conversations_limit = conversations_limit
        self._client = httpx.AsyncClient(
            base_url=str(base_url or "").rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds, connect=min(5.0, timeout_seconds)),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        response = await self._client.request(method, path, **kwargs)
        if response.status_code >= 400:
            detail = ""
            try:
                body = response.json()
                detail = str((body or {}).get("error") or "") if isinstance(body, dict) else ""
            except Exception:
                detail = response.text[:200]
            raise InboxApiError(
                f"{method} {path} failed with {response.status_code}: {detail}".rstrip(": "),
                status_code=response.status_code,
            )
        try:
            return response.json()
        except Exception as exc:
            raise InboxApiError(f"{method} {path} returned invalid JSON: {exc}", status_code=response.status_code)

    async def list_conversations(self, status: str | None = None, limit: int | None = None) -> ConversationSnapshot:
        params: Dict[str, Any] = {"limit": int(limit or self.conversations_limit)}
        if status:
            params["status"] = status
        body = await self._request("GET", "/api/conversations", params=params)
        rows = body.get("data") if isinstance(body, dict) else None
        if not isinstance(rows, list):
            raise InboxApiError("GET /api/conversations returned no data list")
        out = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            try:
                out.append(conversation_from_api(row))
            except ValueError as exc:
                log.warning("Skipping malformed conversation record: %s", exc)
        return ConversationSnapshot(out)

    async def list_handoffs(self) -> List[HandoffInfo]:
        """Legacy server-side handoff scan; client-side classification supersedes it."""
        body = await self._request("GET", "/api/conversations/handoffs")
        items = body.get("handoffs") if isinstance(body, dict) else None
        out: List[HandoffInfo] = []
        for item in items or []:
            if not isinstance(item, dict) or not item.get("id"):
                continue
            out.append(
                HandoffInfo(
                    id=str(item["id"]),
                    contact_name=item.get("contactName") or None,
                    phone_number=item.get("phoneNumber") or None,
                )
            )
        return out

    async def list_messages(self, conversation_id: str) -> List[Message]:
        body = await self._request("GET", f"/api/messages/{conversation_id}")
        rows = body.get("data") if isinstance(body, dict) else None
        out: List[Message] = []
        for row in rows or []:
            if not isinstance(row, dict):
                continue
            try:
                out.append(message_from_api(row))
            except ValueError as exc:
                log.warning("Skipping malformed message record: %s", exc)
        return out

    async def send_message(self, to: str, body: str) -> Dict[str, Any]:
        phone = _digits_only(to)
        if not _PHONE_RE.match(phone):
            raise ValueError("Invalid phone number format")
        if not str(body or "").strip():
            raise ValueError("Message body is empty")
        result = await self._request("POST", "/api/messages/send", data={"to": phone, "body": body})
        return result if isinstance(result, dict) else {"result": result}

    async def get_preferences(self) -> Dict[str, Any]:
        body = await self._request("GET", "/api/user/preferences")
        if not isinstance(body, dict):
            return {"notifications_enabled": True, "role": "agent"}
        return {
            "notifications_enabled": bool(body.get("notifications_enabled", True)),
            "role": str(body.get("role") or "agent"),
        }

    async def set_notifications_enabled(self, enabled: bool) -> bool:
        body = await self._request(
            "PATCH", "/api/user/preferences", json={"notifications_enabled": bool(enabled)}
        )
        if isinstance(body, dict) and isinstance(body.get("notifications_enabled"), bool):
            return body["notifications_enabled"]
        return bool(enabled)
