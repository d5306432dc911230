from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Tuple

from dotenv import load_dotenv

# Load a local `.env` before reading settings. On managed platforms the variables are
# injected directly and this is a no-op.
load_dotenv()

DEFAULT_HANDOFF_PATTERNS: Tuple[str, ...] = (
    "conectar con un asesor",
    "conectar con una persona",
    "transferir a un asesor",
    "transferir a una persona",
)


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name, default) or "").strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return int(default)


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return float(default)


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return tuple(default)
    items = tuple(p.strip().lower() for p in raw.split(",") if p.strip())
    return items or tuple(default)


@dataclass
class SyncSettings:
    # Inbox HTTP API (conversations, messages, preferences)
    api_url: str = "http://localhost:3000"
    api_token: str = ""
    http_timeout_seconds: float = 12.0

    # Realtime change feed. Empty REDIS_URL falls back to the in-memory feed.
    redis_url: str = ""
    realtime_channel_prefix: str = "inbox:changes"
    realtime_subscribe_timeout_seconds: float = 10.0

    current_user_id: str | None = None

    conversations_poll_interval_ms: int = 10_000
    messages_poll_interval_ms: int = 5_000
    poll_max_interval_ms: int = 60_000

    realtime_debounce_ms: int = 500
    realtime_retry_initial_ms: int = 3_000
    realtime_retry_max_ms: int = 30_000

    chime_cooldown_ms: int = 3_000
    sent_suppression_ms: int = 5_000

    notifications_enabled: bool = True
    notification_icon: str = "/favicon.ico"
    handoff_patterns: Tuple[str, ...] = field(default_factory=lambda: DEFAULT_HANDOFF_PATTERNS)

    conversations_limit: int = 50
    event_queue_maxsize: int = 200

    log_level: str = "INFO"
    port: int = 8080

    @classmethod
    def from_env(cls) -> "SyncSettings":
        return cls(
            api_url=_env_str("INBOX_API_URL", "http://localhost:3000").rstrip("/"),
            api_token=_env_str("INBOX_API_TOKEN"),
            http_timeout_seconds=max(1.0, _env_float("INBOX_HTTP_TIMEOUT_SECONDS", 12.0)),
            redis_url=_env_str("REDIS_URL"),
            realtime_channel_prefix=_env_str("REALTIME_CHANNEL_PREFIX", "inbox:changes") or "inbox:changes",
            realtime_subscribe_timeout_seconds=max(0.5, _env_float("REALTIME_SUBSCRIBE_TIMEOUT_SECONDS", 10.0)),
            current_user_id=_env_str("CURRENT_USER_ID") or None,
            conversations_poll_interval_ms=max(250, _env_int("CONVERSATIONS_POLL_INTERVAL_MS", 10_000)),
            messages_poll_interval_ms=max(250, _env_int("MESSAGES_POLL_INTERVAL_MS", 5_000)),
            poll_max_interval_ms=max(1_000, _env_int("POLL_MAX_INTERVAL_MS", 60_000)),
            realtime_debounce_ms=max(0, _env_int("REALTIME_DEBOUNCE_MS", 500)),
            realtime_retry_initial_ms=max(100, _env_int("REALTIME_RETRY_INITIAL_MS", 3_000)),
            realtime_retry_max_ms=max(100, _env_int("REALTIME_RETRY_MAX_MS", 30_000)),
            chime_cooldown_ms=max(0, _env_int("CHIME_COOLDOWN_MS", 3_000)),
            sent_suppression_ms=max(0, _env_int("SENT_SUPPRESSION_MS", 5_000)),
            notifications_enabled=_env_bool("NOTIFICATIONS_ENABLED", True),
            notification_icon=_env_str("NOTIFICATION_ICON", "/favicon.ico") or "/favicon.ico",
            handoff_patterns=_env_list("HANDOFF_PATTERNS", DEFAULT_HANDOFF_PATTERNS),
            conversations_limit=min(100, max(1, _env_int("CONVERSATIONS_LIMIT", 50))),
            event_queue_maxsize=max(10, _env_int("EVENT_QUEUE_MAXSIZE", 200)),
            log_level=_env_str("LOG_LEVEL", "INFO").upper() or "INFO",
            port=_env_int("PORT", 8080),
        )
