import asyncio

from inbox_sync.chime import HANDOFF, MESSAGE
from inbox_sync.notifications import NotificationCenter
from inbox_sync.sync.alerts import MessageAlertEngine
from inbox_sync.sync.handoff import HandoffDetector, is_handoff_conversation

from .utils import conv, settle, snap


def _bot(cid, text="Te voy a transferir a un asesor", **kw):
    return conv(cid, content=text, direction="outbound", **kw)


def test_handoff_classification():
    assert is_handoff_conversation(_bot("c1", "Un momento, te voy a CONECTAR CON UN ASESOR."))
    assert is_handoff_conversation(_bot("c2", "Voy a transferir a una persona del equipo"))
    assert not is_handoff_conversation(conv("c3", content="quiero transferir a un asesor", direction="inbound"))
    assert not is_handoff_conversation(_bot("c4", "Gracias por tu compra"))
    assert not is_handoff_conversation(conv("c5", content=None))


def test_custom_patterns():
    c = _bot("c1", "Escalando a soporte humano")
    assert not is_handoff_conversation(c)
    assert is_handoff_conversation(c, ("soporte humano",))


def test_new_handoff_chimes_and_notifies_once(gate, notifications, audio):
    detector = HandoffDetector(gate=gate, notifications=notifications)
    s = snap(_bot("c1", name="Ana"), conv("c2"))

    brand_new = detector.on_conversations_updated(s)
    assert [c.id for c in brand_new] == ["c1"]
    assert detector.all_handoff_ids == {"c1"}
    assert detector.alerting_ids == {"c1"}
    assert audio.played == [HANDOFF]
    assert notifications.active["handoff-c1"].title == "Ana necesita ayuda de una persona"

    # still a handoff on the next snapshot: no new alert
    gate.timers.advance(10_000)
    assert detector.on_conversations_updated(s) == []
    assert audio.played == [HANDOFF]


def test_handoff_disappears_once_customer_replies(gate, notifications):
    detector = HandoffDetector(gate=gate, notifications=notifications)
    detector.on_conversations_updated(snap(_bot("c1")))
    assert detector.alerting_ids == {"c1"}

    detector.on_conversations_updated(snap(conv("c1", content="gracias", direction="inbound")))
    assert detector.all_handoff_ids == frozenset()
    assert detector.alerting_ids == frozenset()


def test_acknowledged_conversation_never_alerts_again(gate, notifications, audio):
    detector = HandoffDetector(gate=gate, notifications=notifications)
    detector.on_conversations_updated(snap(_bot("c1")))
    detector.acknowledge("c1")
    detector.acknowledge("c1")
    assert detector.alerting_ids == frozenset()
    assert detector.all_handoff_ids == {"c1"}

    # the bot hands off again later in the same session
    gate.timers.advance(10_000)
    detector.on_conversations_updated(snap(conv("c1", content="hola", direction="inbound")))
    assert detector.on_conversations_updated(snap(_bot("c1"))) == []
    assert detector.alerting_ids == frozenset()
    assert audio.played == [HANDOFF]


def test_acknowledging_before_handoff_suppresses_it(gate, notifications, audio):
    detector = HandoffDetector(gate=gate, notifications=notifications)
    detector.acknowledge("c7")
    assert detector.on_conversations_updated(snap(_bot("c7"))) == []
    assert detector.all_handoff_ids == {"c7"}
    assert audio.played == []


def test_handoff_notifies_even_when_page_is_visible_but_respects_permission(bus, gate):
    denied = NotificationCenter(bus, permission="denied")
    detector = HandoffDetector(gate=gate, notifications=denied)
    detector.on_conversations_updated(snap(_bot("c1")))
    assert denied.active == {}
    assert gate.chimes == 1


def test_default_permission_prompts_then_notifies(bus, gate):
    center = NotificationCenter(bus)

    async def scenario():
        detector = HandoffDetector(gate=gate, notifications=center)
        detector.on_conversations_updated(snap(_bot("c1", name="Luis")))
        await settle()
        assert center.active == {}
        center.set_permission("granted")
        await settle()
        detector.close()

    asyncio.run(scenario())
    assert "handoff-c1" in center.active
    queue = bus.subscribe()
    types = []
    while not queue.empty():
        types.append(queue.get_nowait()["type"])
    assert "notification_permission_request" in types
    assert "notification" in types


def test_handoff_and_message_alert_share_one_chime(gate, notifications, visibility, timers, audio):
    detector = HandoffDetector(gate=gate, notifications=notifications)
    alerts = MessageAlertEngine(gate=gate, notifications=notifications, visibility=visibility, timers=timers)
    s = snap(_bot("c1", last_active_at="t1"), conv("c2", last_active_at="t1"))

    detector.on_conversations_updated(s)
    alerts.on_conversations_updated(s)
    assert audio.played == [HANDOFF]
    assert gate.chimes == 1

    timers.advance(3000)
    alerts.on_conversations_updated(snap(_bot("c1", last_active_at="t1"), conv("c2", last_active_at="t2")))
    assert audio.played == [HANDOFF, MESSAGE]
