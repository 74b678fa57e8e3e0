from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Literal

from parley.telemetry.logging import get_logger

Role = Literal["user", "assistant"]
Indicator = Literal["idle", "listening", "processing", "generating"]

EVENT_LOG_SIZE = 50


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"

    @property
    def active(self) -> bool:
        return self in (ConnectionState.CONNECTING, ConnectionState.OPEN)


@dataclass(frozen=True, slots=True)
class ConversationItem:
    id: str
    role: Role
    content: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class EventRecord:
    ts: float
    type: str


@dataclass(frozen=True, slots=True)
class StateSnapshot:
    """Read-only view handed to the presentation layer."""

    connection: ConnectionState
    recording: bool
    conversation: tuple[ConversationItem, ...]
    current_response: str
    playing: bool
    processing: bool
    listening: bool
    indicator: Indicator
    last_error: str | None
    session: dict[str, Any]
    recent_events: tuple[EventRecord, ...]

    def to_dict(self, recent: int = 20) -> dict[str, Any]:
        return {
            "connection": self.connection.value,
            "recording": self.recording,
            "conversation": [item.to_dict() for item in self.conversation],
            "current_response": self.current_response,
            "playing": self.playing,
            "processing": self.processing,
            "listening": self.listening,
            "indicator": self.indicator,
            "last_error": self.last_error,
            "session": self.session,
            "recent_events": [{"ts": rec.ts, "type": rec.type} for rec in self.recent_events[-recent:]],
        }


StateListener = Callable[[StateSnapshot], None]


class SessionState:
    """Every indicator the presentation layer can observe, mutated only from the event loop."""

    def __init__(self, event_log_size: int = EVENT_LOG_SIZE) -> None:
        self.connection = ConnectionState.IDLE
        self.recording = False
        self.playing = False
        self.processing = False
        self.listening = False
        self.indicator: Indicator = "idle"
        self.last_error: str | None = None
        self.session: dict[str, Any] = {}
        self._events: Deque[EventRecord] = deque(maxlen=event_log_size)
        self._listeners: list[StateListener] = []
        self._conversation: Callable[[], tuple[ConversationItem, ...]] = tuple
        self._current_response: Callable[[], str] = str
        self._logger = get_logger(__name__)

    def bind_transcript(
        self,
        conversation: Callable[[], tuple[ConversationItem, ...]],
        current_response: Callable[[], str],
    ) -> None:
        self._conversation = conversation
        self._current_response = current_response

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def record_event(self, event_type: str) -> None:
        self._events.append(EventRecord(ts=time.time(), type=event_type))

    def set_indicator(self, indicator: Indicator) -> None:
        self.indicator = indicator
        self.listening = indicator == "listening"
        self.processing = indicator in ("processing", "generating")

    def clear_activity(self) -> None:
        self.set_indicator("idle")

    def set_playing(self, playing: bool) -> None:
        if self.playing == playing:
            return
        self.playing = playing
        self.publish()

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            connection=self.connection,
            recording=self.recording,
            conversation=self._conversation(),
            current_response=self._current_response(),
            playing=self.playing,
            processing=self.processing,
            listening=self.listening,
            indicator=self.indicator,
            last_error=self.last_error,
            session=dict(self.session),
            recent_events=tuple(self._events),
        )

    def publish(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                self._logger.exception("state.listener.failed")


__all__ = [
    "ConnectionState",
    "ConversationItem",
    "EventRecord",
    "Indicator",
    "SessionState",
    "StateListener",
    "StateSnapshot",
]
