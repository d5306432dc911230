from fastapi.testclient import TestClient

from inbox_sync.config import SyncSettings
from inbox_sync.main import create_app
from inbox_sync.sync.feed import InMemoryChangeFeed

from .utils import FakeInboxApi, conv, snap


def _app(api):
    settings = SyncSettings(current_user_id="u1", log_level="WARNING")
    return create_app(settings, api=api, feed=InMemoryChangeFeed(), autostart=False)


def _inbox():
    return snap(
        conv("c1", content="Te voy a transferir a un asesor", direction="outbound", last_active_at="t1"),
        conv("c2", last_active_at="t1", phone="5215550002222"),
    )


def test_refresh_and_conversation_listing():
    api = FakeInboxApi([_inbox()])
    with TestClient(_app(api)) as client:
        assert client.get("/health").json()["status"] == "ok"

        r = client.post("/inbox/refresh")
        assert r.status_code == 200
        assert r.json() == {"ok": True, "conversations": 2}

        body = client.get("/inbox/conversations").json()
        assert [c["id"] for c in body["data"]] == ["c1", "c2"]
        assert body["alertingIds"] == ["c1"]

        opened = client.post("/inbox/conversations/c1/open").json()
        assert opened["selectedId"] == "c1"
        assert opened["alertingIds"] == []

        assert client.get("/inbox/messages").json()["conversationId"] == "c1"
        assert client.post("/inbox/conversations/close").status_code == 200
        assert client.get("/inbox/state").json()["selectedId"] is None
    assert api.closed


def test_refresh_upstream_failure_maps_to_502():
    api = FakeInboxApi()
    api.fail_conversations = True
    with TestClient(_app(api)) as client:
        r = client.post("/inbox/refresh")
    assert r.status_code == 502


def test_send_message_validation_and_success():
    api = FakeInboxApi([_inbox()])
    with TestClient(_app(api)) as client:
        assert client.post("/inbox/messages/send", json={"body": "hola"}).status_code == 400
        assert client.post("/inbox/messages/send", json={"to": "123", "body": "hola"}).status_code == 400

        r = client.post("/inbox/messages/send", json={"to": "5215550002222", "body": "hola", "select": True})
        assert r.status_code == 200
        assert r.json()["selectedId"] == "c2"
    assert api.sent == [{"to": "5215550002222", "body": "hola"}]


def test_visibility_permission_and_preferences():
    api = FakeInboxApi([_inbox()])
    with TestClient(_app(api)) as client:
        assert client.post("/inbox/visibility", json={"hidden": "yes"}).status_code == 400
        r = client.post("/inbox/visibility", json={"hidden": True})
        assert r.json() == {"ok": True, "hidden": True, "isPaused": True}

        assert client.post("/inbox/notifications/permission", json={"permission": "maybe"}).status_code == 400
        r = client.post("/inbox/notifications/permission", json={"permission": "granted"})
        assert r.json()["permission"] == "granted"

        assert client.post("/inbox/notifications/enabled", json={"enabled": "no"}).status_code == 400
        r = client.post("/inbox/notifications/enabled", json={"enabled": False})
        assert r.json()["notificationsEnabled"] is False

        state = client.get("/inbox/state").json()
        assert state["notificationPermission"] == "granted"
        assert state["notificationsEnabled"] is False
    assert api.preferences["notifications_enabled"] is False


def test_sounds_are_served_as_wav():
    with TestClient(_app(FakeInboxApi())) as client:
        r = client.get("/inbox/sounds/message.wav")
        assert r.status_code == 200
        assert r.headers["content-type"] == "audio/wav"
        assert r.content[:4] == b"RIFF"
        assert client.get("/inbox/sounds/handoff.wav").status_code == 200
        assert client.get("/inbox/sounds/siren.wav").status_code == 404


def test_event_stream_starts_with_state_then_replays_pending_events():
    api = FakeInboxApi([_inbox()])
    with TestClient(_app(api)) as client:
        client.post("/inbox/refresh")
        with client.websocket_connect("/inbox/events") as websocket:
            first = websocket.receive_json()
            assert first["type"] == "state"
            assert first["alertingIds"] == ["c1"]
            types = {websocket.receive_json()["type"] for _ in range(2)}
            assert "snapshot" in types
