from inbox_sync.config import DEFAULT_HANDOFF_PATTERNS, SyncSettings


def test_defaults(monkeypatch):
    for name in ("CONVERSATIONS_POLL_INTERVAL_MS", "CHIME_COOLDOWN_MS", "HANDOFF_PATTERNS", "INBOX_API_URL"):
        monkeypatch.delenv(name, raising=False)
    settings = SyncSettings.from_env()
    assert settings.conversations_poll_interval_ms == 10_000
    assert settings.messages_poll_interval_ms == 5_000
    assert settings.chime_cooldown_ms == 3_000
    assert settings.sent_suppression_ms == 5_000
    assert settings.realtime_retry_initial_ms == 3_000
    assert settings.realtime_retry_max_ms == 30_000
    assert settings.handoff_patterns == DEFAULT_HANDOFF_PATTERNS
    assert settings.current_user_id is None


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("INBOX_API_URL", "https://inbox.example.com/")
    monkeypatch.setenv("CURRENT_USER_ID", "agent-7")
    monkeypatch.setenv("CONVERSATIONS_POLL_INTERVAL_MS", "15000")
    monkeypatch.setenv("NOTIFICATIONS_ENABLED", "off")
    monkeypatch.setenv("HANDOFF_PATTERNS", "Hablar con humano, ,soporte")
    monkeypatch.setenv("CONVERSATIONS_LIMIT", "500")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    settings = SyncSettings.from_env()
    assert settings.api_url == "https://inbox.example.com"
    assert settings.current_user_id == "agent-7"
    assert settings.conversations_poll_interval_ms == 15_000
    assert settings.notifications_enabled is False
    assert settings.handoff_patterns == ("hablar con humano", "soporte")
    assert settings.conversations_limit == 100
    assert settings.log_level == "DEBUG"


def test_bad_numbers_fall_back(monkeypatch):
    monkeypatch.setenv("CHIME_COOLDOWN_MS", "soon")
    monkeypatch.setenv("REALTIME_SUBSCRIBE_TIMEOUT_SECONDS", "x")
    settings = SyncSettings.from_env()
    assert settings.chime_cooldown_ms == 3_000
    assert settings.realtime_subscribe_timeout_seconds == 10.0
