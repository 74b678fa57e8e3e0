from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal

from parley.errors import MalformedEventError

Role = Literal["user", "assistant", "system"]


@dataclass(slots=True)
class InboundEvent:
    kind: ClassVar[str] = ""
    event_id: str | None = None


@dataclass(slots=True)
class SessionCreated(InboundEvent):
    kind: ClassVar[str] = "session.created"
    session: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SessionUpdated(InboundEvent):
    kind: ClassVar[str] = "session.updated"
    session: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SpeechStarted(InboundEvent):
    kind: ClassVar[str] = "input_audio_buffer.speech_started"
    item_id: str | None = None
    audio_start_ms: int | None = None


@dataclass(slots=True)
class SpeechStopped(InboundEvent):
    kind: ClassVar[str] = "input_audio_buffer.speech_stopped"
    item_id: str | None = None
    audio_end_ms: int | None = None


@dataclass(slots=True)
class AudioBufferCommitted(InboundEvent):
    kind: ClassVar[str] = "input_audio_buffer.committed"
    item_id: str | None = None
    previous_item_id: str | None = None


@dataclass(slots=True)
class ConversationItemCreated(InboundEvent):
    kind: ClassVar[str] = "conversation.item.created"
    item_id: str | None = None
    role: Role | None = None
    content: str | None = None


@dataclass(slots=True)
class InputTranscriptionCompleted(InboundEvent):
    kind: ClassVar[str] = "conversation.item.input_audio_transcription.completed"
    item_id: str | None = None
    transcript: str = ""


@dataclass(slots=True)
class ResponseCreated(InboundEvent):
    kind: ClassVar[str] = "response.created"
    response_id: str | None = None


@dataclass(slots=True)
class ResponseOutputItemAdded(InboundEvent):
    kind: ClassVar[str] = "response.output_item.added"
    response_id: str | None = None
    item_id: str | None = None


@dataclass(slots=True)
class ResponseContentPartAdded(InboundEvent):
    kind: ClassVar[str] = "response.content_part.added"
    response_id: str | None = None
    item_id: str | None = None
    part_type: str | None = None


@dataclass(slots=True)
class AudioDelta(InboundEvent):
    kind: ClassVar[str] = "response.audio.delta"
    response_id: str | None = None
    item_id: str | None = None
    delta: str = ""


@dataclass(slots=True)
class AudioDone(InboundEvent):
    kind: ClassVar[str] = "response.audio.done"
    response_id: str | None = None
    item_id: str | None = None


@dataclass(slots=True)
class AudioTranscriptDelta(InboundEvent):
    kind: ClassVar[str] = "response.audio_transcript.delta"
    response_id: str | None = None
    delta: str = ""


@dataclass(slots=True)
class AudioTranscriptDone(InboundEvent):
    kind: ClassVar[str] = "response.audio_transcript.done"
    response_id: str | None = None
    transcript: str = ""


@dataclass(slots=True)
class TextDelta(InboundEvent):
    kind: ClassVar[str] = "response.text.delta"
    response_id: str | None = None
    delta: str = ""


@dataclass(slots=True)
class TextDone(InboundEvent):
    kind: ClassVar[str] = "response.text.done"
    response_id: str | None = None
    text: str = ""


@dataclass(slots=True)
class ResponseDone(InboundEvent):
    kind: ClassVar[str] = "response.done"
    response_id: str | None = None
    status: str | None = None


@dataclass(slots=True)
class RateLimitsUpdated(InboundEvent):
    kind: ClassVar[str] = "rate_limits.updated"
    rate_limits: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class ErrorEvent(InboundEvent):
    kind: ClassVar[str] = "error"
    message: str | None = None
    code: str | None = None
    error_type: str | None = None


@dataclass(slots=True)
class UnknownEvent(InboundEvent):
    """Any envelope whose ``type`` is not one of the kinds above."""

    kind: ClassVar[str] = "unknown"
    type: str = ""
    payload: dict[str, Any] = field(default_factory=dict)


def _str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _int(value: Any) -> int | None:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


def _obj(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def first_content_text(item: dict[str, Any]) -> str | None:
    """First non-empty text among ``text``, ``input_text`` and ``transcript`` of the first content part."""
    content = item.get("content")
    if not isinstance(content, list) or not content:
        return None
    part = _obj(content[0])
    for key in ("text", "input_text", "transcript"):
        value = part.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _response_id(envelope: dict[str, Any]) -> str | None:
    return _str(envelope.get("response_id")) or _str(_obj(envelope.get("response")).get("id"))


def _item_created(envelope: dict[str, Any], event_id: str | None) -> ConversationItemCreated:
    item = _obj(envelope.get("item"))
    role = item.get("role")
    return ConversationItemCreated(
        event_id=event_id,
        item_id=_str(item.get("id")),
        role=role if role in ("user", "assistant", "system") else None,
        content=first_content_text(item),
    )


def _error(envelope: dict[str, Any], event_id: str | None) -> ErrorEvent:
    error = envelope.get("error")
    if isinstance(error, str):
        return ErrorEvent(event_id=event_id, message=error)
    error = _obj(error)
    return ErrorEvent(
        event_id=event_id,
        message=_str(error.get("message")),
        code=_str(error.get("code")),
        error_type=_str(error.get("type")),
    )


_Builder = Callable[[dict[str, Any], str | None], InboundEvent]

_BUILDERS: dict[str, _Builder] = {
    SessionCreated.kind: lambda e, eid: SessionCreated(event_id=eid, session=_obj(e.get("session"))),
    SessionUpdated.kind: lambda e, eid: SessionUpdated(event_id=eid, session=_obj(e.get("session"))),
    SpeechStarted.kind: lambda e, eid: SpeechStarted(
        event_id=eid, item_id=_str(e.get("item_id")), audio_start_ms=_int(e.get("audio_start_ms"))
    ),
    SpeechStopped.kind: lambda e, eid: SpeechStopped(
        event_id=eid, item_id=_str(e.get("item_id")), audio_end_ms=_int(e.get("audio_end_ms"))
    ),
    AudioBufferCommitted.kind: lambda e, eid: AudioBufferCommitted(
        event_id=eid, item_id=_str(e.get("item_id")), previous_item_id=_str(e.get("previous_item_id"))
    ),
    ConversationItemCreated.kind: _item_created,
    InputTranscriptionCompleted.kind: lambda e, eid: InputTranscriptionCompleted(
        event_id=eid, item_id=_str(e.get("item_id")), transcript=_str(e.get("transcript")) or ""
    ),
    ResponseCreated.kind: lambda e, eid: ResponseCreated(event_id=eid, response_id=_response_id(e)),
    ResponseOutputItemAdded.kind: lambda e, eid: ResponseOutputItemAdded(
        event_id=eid, response_id=_response_id(e), item_id=_str(_obj(e.get("item")).get("id"))
    ),
    ResponseContentPartAdded.kind: lambda e, eid: ResponseContentPartAdded(
        event_id=eid,
        response_id=_response_id(e),
        item_id=_str(e.get("item_id")),
        part_type=_str(_obj(e.get("part")).get("type")),
    ),
    AudioDelta.kind: lambda e, eid: AudioDelta(
        event_id=eid, response_id=_response_id(e), item_id=_str(e.get("item_id")), delta=_str(e.get("delta")) or ""
    ),
    AudioDone.kind: lambda e, eid: AudioDone(event_id=eid, response_id=_response_id(e), item_id=_str(e.get("item_id"))),
    AudioTranscriptDelta.kind: lambda e, eid: AudioTranscriptDelta(
        event_id=eid, response_id=_response_id(e), delta=_str(e.get("delta")) or ""
    ),
    AudioTranscriptDone.kind: lambda e, eid: AudioTranscriptDone(
        event_id=eid, response_id=_response_id(e), transcript=_str(e.get("transcript")) or ""
    ),
    TextDelta.kind: lambda e, eid: TextDelta(event_id=eid, response_id=_response_id(e), delta=_str(e.get("delta")) or ""),
    TextDone.kind: lambda e, eid: TextDone(event_id=eid, response_id=_response_id(e), text=_str(e.get("text")) or ""),
    ResponseDone.kind: lambda e, eid: ResponseDone(
        event_id=eid, response_id=_response_id(e), status=_str(_obj(e.get("response")).get("status"))
    ),
    RateLimitsUpdated.kind: lambda e, eid: RateLimitsUpdated(
        event_id=eid, rate_limits=[limit for limit in e.get("rate_limits") or [] if isinstance(limit, dict)]
    ),
    ErrorEvent.kind: _error,
}

KNOWN_KINDS = frozenset(_BUILDERS)


def parse_envelope(raw: str | bytes | dict[str, Any]) -> dict[str, Any]:
    """Decode a wire frame into an envelope dict carrying a string ``type``."""
    if isinstance(raw, dict):
        envelope = raw
    else:
        try:
            envelope = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise MalformedEventError(f"invalid JSON: {exc}") from exc
    if not isinstance(envelope, dict):
        raise MalformedEventError("envelope must be a JSON object")
    msg_type = envelope.get("type")
    if not isinstance(msg_type, str) or not msg_type.strip():
        raise MalformedEventError("envelope missing non-empty 'type'")
    return envelope


def parse_event(raw: str | bytes | dict[str, Any]) -> InboundEvent:
    envelope = parse_envelope(raw)
    msg_type = envelope["type"].strip()
    event_id = _str(envelope.get("event_id"))
    builder = _BUILDERS.get(msg_type)
    if builder is None:
        payload = {k: v for k, v in envelope.items() if k != "type"}
        return UnknownEvent(event_id=event_id, type=msg_type, payload=payload)
    return builder(envelope, event_id)


__all__ = [
    "AudioBufferCommitted",
    "AudioDelta",
    "AudioDone",
    "AudioTranscriptDelta",
    "AudioTranscriptDone",
    "ConversationItemCreated",
    "ErrorEvent",
    "InboundEvent",
    "InputTranscriptionCompleted",
    "KNOWN_KINDS",
    "RateLimitsUpdated",
    "ResponseContentPartAdded",
    "ResponseCreated",
    "ResponseDone",
    "ResponseOutputItemAdded",
    "SessionCreated",
    "SessionUpdated",
    "SpeechStarted",
    "SpeechStopped",
    "TextDelta",
    "TextDone",
    "UnknownEvent",
    "first_content_text",
    "parse_envelope",
    "parse_event",
]
