from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from parley.audio.codec import AudioChunk, decode_pcm16
from parley.audio.playback import AudioPlaybackScheduler
from parley.conversation.aggregator import ConversationAggregator
from parley.conversation.state import SessionState
from parley.errors import ParleyError
from parley.protocol import events as ev
from parley.protocol.outbound import Envelope, OutboundMessageBuilder
from parley.telemetry.logging import get_logger

SendFn = Callable[[Envelope], Awaitable[None]]
Handler = Callable[[Any], Awaitable[None]]


class EventRouter:
    """Applies inbound realtime events, in arrival order, to state, transcript and playback."""

    def __init__(
        self,
        state: SessionState,
        aggregator: ConversationAggregator,
        playback: AudioPlaybackScheduler,
        send: SendFn,
        builder: OutboundMessageBuilder | None = None,
        sample_rate: int = 24_000,
    ) -> None:
        self._state = state
        self._aggregator = aggregator
        self._playback = playback
        self._send = send
        self._builder = builder or OutboundMessageBuilder()
        self._sample_rate = sample_rate
        self._audio_sequence = 0
        self._logger = get_logger(__name__)
        self._handlers: dict[type[ev.InboundEvent], Handler] = {
            ev.SessionCreated: self._on_session,
            ev.SessionUpdated: self._on_session,
            ev.SpeechStarted: self._on_speech_started,
            ev.SpeechStopped: self._on_speech_stopped,
            ev.AudioBufferCommitted: self._on_buffer_committed,
            ev.ConversationItemCreated: self._on_item_created,
            ev.InputTranscriptionCompleted: self._on_input_transcription,
            ev.ResponseCreated: self._on_response_created,
            ev.ResponseOutputItemAdded: self._on_trace_only,
            ev.ResponseContentPartAdded: self._on_trace_only,
            ev.AudioDelta: self._on_audio_delta,
            ev.AudioDone: self._on_trace_only,
            ev.AudioTranscriptDelta: self._on_text_delta,
            ev.TextDelta: self._on_text_delta,
            ev.AudioTranscriptDone: self._on_transcript_done,
            ev.TextDone: self._on_text_done,
            ev.ResponseDone: self._on_response_done,
            ev.RateLimitsUpdated: self._on_rate_limits,
            ev.ErrorEvent: self._on_error,
            ev.UnknownEvent: self._on_unknown,
        }

    async def dispatch(self, event: ev.InboundEvent) -> None:
        event_type = event.type if isinstance(event, ev.UnknownEvent) else event.kind
        self._state.record_event(event_type)
        handler = self._handlers.get(type(event), self._on_unknown)
        await handler(event)
        self._state.publish()

    def reset(self) -> None:
        self._audio_sequence = 0

    async def _on_session(self, event: ev.SessionCreated | ev.SessionUpdated) -> None:
        self._state.session = dict(event.session)
        self._logger.info("realtime.session", kind=event.kind, session_id=event.session.get("id"))

    async def _on_speech_started(self, event: ev.SpeechStarted) -> None:
        self._state.set_indicator("listening")

    async def _on_speech_stopped(self, event: ev.SpeechStopped) -> None:
        self._state.set_indicator("processing")

    async def _on_buffer_committed(self, event: ev.AudioBufferCommitted) -> None:
        try:
            await self._send(self._builder.response_create())
        except ParleyError as exc:
            self._logger.warning("realtime.response_create.failed", item_id=event.item_id, error=str(exc))

    async def _on_item_created(self, event: ev.ConversationItemCreated) -> None:
        if event.role != "user":
            return
        item = self._aggregator.add_user_item(event.item_id, event.content)
        self._logger.debug("conversation.item.user", item_id=item.id, placeholder=event.content is None)

    async def _on_input_transcription(self, event: ev.InputTranscriptionCompleted) -> None:
        self._aggregator.backfill_user_transcript(event.item_id, event.transcript)

    async def _on_response_created(self, event: ev.ResponseCreated) -> None:
        self._aggregator.begin_response(event.response_id)
        self._state.set_indicator("generating")

    async def _on_audio_delta(self, event: ev.AudioDelta) -> None:
        if not event.delta:
            return
        try:
            pcm = decode_pcm16(event.delta)
        except ValueError as exc:
            self._logger.error("playback.chunk.decode_failed", response_id=event.response_id, error=str(exc))
            return
        chunk = AudioChunk(samples=pcm, sequence=self._audio_sequence, sample_rate=self._sample_rate)
        self._audio_sequence += 1
        self._playback.enqueue(chunk)

    async def _on_text_delta(self, event: ev.AudioTranscriptDelta | ev.TextDelta) -> None:
        self._aggregator.append_delta(event.delta, event.response_id)

    async def _on_transcript_done(self, event: ev.AudioTranscriptDone) -> None:
        self._aggregator.merge_final(event.transcript, event.response_id)

    async def _on_text_done(self, event: ev.TextDone) -> None:
        self._aggregator.merge_final(event.text, event.response_id)

    async def _on_response_done(self, event: ev.ResponseDone) -> None:
        item = self._aggregator.complete_response(event.response_id)
        self._state.clear_activity()
        self._logger.info("conversation.item.assistant", item_id=item.id, status=event.status, chars=len(item.content))

    async def _on_rate_limits(self, event: ev.RateLimitsUpdated) -> None:
        self._logger.debug("realtime.rate_limits", limits=event.rate_limits)

    async def _on_error(self, event: ev.ErrorEvent) -> None:
        self._state.last_error = f"API Error: {event.message}" if event.message else "API Error occurred"
        self._logger.error("realtime.error", message=event.message, code=event.code, type=event.error_type)

    async def _on_trace_only(self, event: ev.InboundEvent) -> None:
        self._logger.debug("realtime.event", kind=event.kind)

    async def _on_unknown(self, event: ev.InboundEvent) -> None:
        event_type = event.type if isinstance(event, ev.UnknownEvent) else type(event).__name__
        self._logger.info("realtime.event.unknown", type=event_type)


__all__ = ["EventRouter"]
