from __future__ import annotations

import asyncio
import logging

import httpx
from fastapi import APIRouter, Body, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import Response

from .chime import CHIMES
from .client import InboxApiError
from .sync.runtime import InboxSyncRuntime

log = logging.getLogger(__name__)


def _upstream_error(exc: Exception) -> HTTPException:
    status = getattr(exc, "status_code", None)
    if isinstance(status, int) and 400 <= status < 500:
        return HTTPException(status_code=status, detail=str(exc))
    return HTTPException(status_code=502, detail=f"Inbox API unavailable: {exc}")


def create_inbox_router(rt: InboxSyncRuntime) -> APIRouter:
    router = APIRouter(prefix="/inbox")

    @router.get("/state")
    async def get_state():
        return rt.status()

    @router.get("/conversations")
    async def get_conversations():
        snapshot = rt.snapshots.get_last()
        return {
            "data": snapshot.to_list(),
            "alertingIds": sorted(rt.handoffs.alerting_ids),
            "allHandoffIds": sorted(rt.handoffs.all_handoff_ids),
        }

    @router.post("/refresh")
    async def refresh():
        """Manual refresh: always re-fetches and re-notifies."""
        try:
            snapshot = await rt.refresh()
        except (InboxApiError, httpx.HTTPError) as exc:
            raise _upstream_error(exc)
        return {"ok": True, "conversations": len(snapshot)}

    @router.post("/conversations/{conversation_id}/open")
    async def open_conversation(conversation_id: str):
        rt.open_conversation(conversation_id)
        return {"ok": True, "selectedId": conversation_id, "alertingIds": sorted(rt.handoffs.alerting_ids)}

    @router.post("/conversations/close")
    async def close_conversation():
        rt.close_conversation()
        return {"ok": True}

    @router.get("/messages")
    async def get_messages():
        return {
            "conversationId": rt.state.selected_id,
            "data": [m.to_dict() for m in rt.state.messages],
        }

    @router.post("/messages/send")
    async def send_message(payload: dict = Body(...)):
        to = str(payload.get("to") or "").strip()
        body = str(payload.get("body") or "")
        if not to:
            raise HTTPException(status_code=400, detail="Missing required field: to")
        try:
            result = await rt.send_message(to, body, select=bool(payload.get("select")))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        except (InboxApiError, httpx.HTTPError) as exc:
            raise _upstream_error(exc)
        return {"ok": True, "result": result, "selectedId": rt.state.selected_id}

    @router.post("/visibility")
    async def set_visibility(payload: dict = Body(...)):
        hidden = payload.get("hidden")
        if not isinstance(hidden, bool):
            raise HTTPException(status_code=400, detail="hidden must be a boolean")
        rt.visibility.set_hidden(hidden)
        return {"ok": True, "hidden": rt.visibility.hidden, "isPaused": rt.conversation_poller.is_paused}

    @router.post("/notifications/permission")
    async def set_notification_permission(payload: dict = Body(...)):
        try:
            rt.notifications.set_permission(str(payload.get("permission") or ""))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        return {"ok": True, "permission": rt.notifications.permission}

    @router.post("/notifications/enabled")
    async def set_notifications_enabled(payload: dict = Body(...)):
        enabled = payload.get("enabled")
        if not isinstance(enabled, bool):
            raise HTTPException(status_code=400, detail="enabled must be a boolean")
        try:
            value = await rt.set_notifications_enabled(enabled)
        except (InboxApiError, httpx.HTTPError) as exc:
            raise _upstream_error(exc)
        return {"ok": True, "notificationsEnabled": value}

    @router.get("/sounds/{name}.wav")
    async def get_sound(name: str):
        if name not in CHIMES:
            raise HTTPException(status_code=404, detail="Unknown sound")
        return Response(
            content=rt.player.clip(name),
            media_type="audio/wav",
            headers={"Cache-Control": "public, max-age=86400"},
        )

    @router.websocket("/events")
    async def events(websocket: WebSocket):
        await websocket.accept()
        queue = rt.bus.subscribe()

        async def _pump():
            while True:
                event = await queue.get()
                await websocket.send_json(event)

        sender = None
        try:
            await websocket.send_json({"type": "state", **rt.status()})
            sender = asyncio.create_task(_pump())
            # Inbound frames are ignored (keepalive pings); this only watches for disconnect.
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        except Exception as exc:
            log.warning("Event stream closed: %s", exc)
        finally:
            if sender is not None:
                sender.cancel()
            rt.bus.unsubscribe(queue)

    return router
