"""
Event bus for nightline state changes.

Decouples the narrative core from whatever presents it. The flag store,
call-flow engine and end-state resolver emit events; a UI or test
subscribes without either side knowing the other.

Usage:
    bus = EventBus()
    bus.on(EventType.CALL_STARTED, my_handler)

    # Emit (in the engine when state changes)
    bus.emit(EventType.CALL_STARTED, night_id="night_01", call_id="call_karen")

    def my_handler(event: NarrativeEvent):
        print(f"Answered {event.data['call_id']}")

Each session owns its bus and passes it to the components it builds.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Events published by the narrative core."""

    # Call flow
    INCOMING_CALL = "call.incoming"
    CALL_STARTED = "call.started"
    CALL_HELD = "call.held"
    CALL_RESUMED = "call.resumed"
    SEGMENT_CHANGED = "segment.changed"
    RESPONSES_PRESENTED = "responses.presented"
    RESPONSE_SELECTED = "response.selected"
    CALL_ENDED = "call.ended"
    CALL_MISSED = "call.missed"
    CALL_SKIPPED = "call.skipped"
    ALL_CALLS_COMPLETE = "calls.complete"

    # Flags
    FLAG_SET = "flag.set"
    FLAG_CLEARED = "flag.cleared"
    SCORE_CHANGED = "score.changed"

    # Resolution
    DISPATCH_RECORDED = "dispatch.recorded"
    END_STATE_RESOLVED = "endstate.resolved"

    # Night lifecycle
    NIGHT_STARTED = "night.started"
    NIGHT_ENDED = "night.ended"
    NIGHT_SAVED = "night.saved"


@dataclass
class NarrativeEvent:
    """
    One emitted event.

    Attributes:
        type: What happened
        data: Keyword payload passed to emit()
        night_id: Night the emitting component belongs to
        timestamp: Wall-clock emit time
    """

    type: EventType
    data: dict = field(default_factory=dict)
    night_id: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    def __str__(self) -> str:
        return f"[{self.type.value}] {self.data}"


EventHandler = Callable[[NarrativeEvent], None]


class EventBus:
    """
    Synchronous, single-threaded fan-out.

    Listeners run immediately inside emit(), in subscription order.
    A failing listener is logged and skipped; the rest still run.
    """

    def __init__(self, history_limit: int = 200):
        self._listeners: dict[EventType, list[EventHandler]] = {}
        self._history: list[NarrativeEvent] = []
        self._history_limit = history_limit

    def on(self, event_type: EventType, handler: EventHandler) -> None:
        """Register `handler` for `event_type`. Registering twice is a no-op."""
        handlers = self._listeners.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event_type: EventType, handler: EventHandler) -> None:
        """Unsubscribe a handler. Unknown handlers are ignored."""
        if event_type in self._listeners and handler in self._listeners[event_type]:
            self._listeners[event_type].remove(handler)

    def emit(self, event_type: EventType, night_id: str = "", **data) -> NarrativeEvent:
        """
        Record an event and hand it to every listener of its type.

        Returns the event, mostly so tests can inspect it.
        """
        event = NarrativeEvent(type=event_type, data=data, night_id=night_id)

        self._history.append(event)
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit :]

        # Copy so a handler may unsubscribe itself mid-emit
        for handler in list(self._listeners.get(event_type, [])):
            try:
                handler(event)
            except Exception:
                logger.exception("Error in handler for %s", event_type.value)

        return event

    def clear(self) -> None:
        """Drop all listeners and history."""
        self._listeners.clear()
        self._history.clear()

    def get_history(self, event_type: EventType | None = None) -> list[NarrativeEvent]:
        """Retained events, oldest first, optionally of one type."""
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if e.type == event_type]

    def listener_count(self, event_type: EventType) -> int:
        return len(self._listeners.get(event_type, []))
