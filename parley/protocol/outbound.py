from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from parley.audio.codec import AudioChunk
from parley.config import SessionConfig

Envelope = dict[str, Any]

RESPONSE_MODALITIES: tuple[str, ...] = ("audio", "text")


class OutboundMessageBuilder:
    """Builds client envelopes for the realtime channel."""

    def session_update(self, config: SessionConfig) -> Envelope:
        return {"type": "session.update", "session": config.to_payload()}

    def audio_append(self, audio: AudioChunk | str) -> Envelope:
        payload = audio.to_base64() if isinstance(audio, AudioChunk) else audio
        if not payload:
            raise ValueError("audio payload must not be empty")
        return {"type": "input_audio_buffer.append", "audio": payload}

    def audio_commit(self) -> Envelope:
        return {"type": "input_audio_buffer.commit"}

    def item_create_text(self, text: str) -> Envelope:
        if not text or not text.strip():
            raise ValueError("text message must not be empty")
        return {
            "type": "conversation.item.create",
            "item": {
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": text}],
            },
        }

    def response_create(self, modalities: Sequence[str] = RESPONSE_MODALITIES) -> Envelope:
        return {"type": "response.create", "response": {"modalities": list(modalities)}}


__all__ = ["Envelope", "OutboundMessageBuilder", "RESPONSE_MODALITIES"]
