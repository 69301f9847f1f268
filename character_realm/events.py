"""One-way notification side-channel.

Controllers call `emit(event_type, payload)` after a state change has been
persisted. Delivery (push, email, websockets) belongs to whoever consumes
the sink; the engine only needs somewhere to send the event.

Event types:
  session.created     {"session_id", "user_id", "character_id"}
  session.message     {"session_id", "user_id", "character_id", "count"}
  group.created       {"group_id", "creator_id", "user_ids", "character_ids"}
  group.message       {"group_id", "sender_id", "recipients", "count"}
  group.auto_chat     {"group_id", "enabled"}
  group.deactivated   {"group_id"}
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    def emit(self, event_type: str, payload: dict[str, Any]) -> None: ...


class LoggingEventSink:
    """Default sink: writes each event to the log."""

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        logger.info("event %s %s", event_type, payload)


class MemoryEventSink:
    """Collects events in order. Used by tests and the demo."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        self.events.append((event_type, payload))

    def types(self) -> list[str]:
        return [event_type for event_type, _ in self.events]
