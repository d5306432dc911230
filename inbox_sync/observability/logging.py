from __future__ import annotations

import logging
from typing import Callable, Optional


class _ContextFilter(logging.Filter):
    def __init__(
        self,
        *,
        agent_getter: Optional[Callable[[], Optional[str]]] = None,
        conversation_getter: Optional[Callable[[], Optional[str]]] = None,
    ) -> None:
        super().__init__()
        self._agent_getter = agent_getter
        self._conversation_getter = conversation_getter

    def filter(self, record: logging.LogRecord) -> bool:
        # Inject defaults so formatters can always reference these fields.
        record.agent_id = None
        record.conversation_id = None
        try:
            if self._agent_getter:
                record.agent_id = self._agent_getter()
        except Exception:
            record.agent_id = None
        try:
            if self._conversation_getter:
                record.conversation_id = self._conversation_getter()
        except Exception:
            record.conversation_id = None
        return True


def configure_logging(
    *,
    level: str = "INFO",
    agent_getter: Optional[Callable[[], Optional[str]]] = None,
    conversation_getter: Optional[Callable[[], Optional[str]]] = None,
) -> None:
    """Configure root logging with the agent/conversation context fields."""
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(lvl)

    # uvicorn may already have installed handlers.
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(lvl)
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)s %(name)s "
                "agent=%(agent_id)s conversation=%(conversation_id)s "
                "%(message)s"
            )
        )
        root.addHandler(handler)

    # Logger filters do not run for records propagated from child loggers, so the
    # context filter goes on every root handler. Replace instead of stacking.
    ctx_filter = _ContextFilter(
        agent_getter=agent_getter,
        conversation_getter=conversation_getter,
    )
    for handler in root.handlers:
        for existing in list(handler.filters):
            if isinstance(existing, _ContextFilter):
                handler.removeFilter(existing)
        handler.addFilter(ctx_filter)
