from __future__ import annotations

import functools
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_INSTRUCTIONS = (
    "You are a helpful voice assistant. Respond naturally and conversationally. "
    "Always provide both audio and text responses so users can see transcripts of what you say."
)


class TurnDetection(BaseModel):
    type: Literal["server_vad"] = "server_vad"
    threshold: float = Field(0.5, ge=0.0, le=1.0)
    prefix_padding_ms: int = Field(300, ge=0)
    silence_duration_ms: int = Field(500, ge=0)


class InputAudioTranscription(BaseModel):
    model: str = "whisper-1"


class SessionConfig(BaseModel):
    """Options negotiated for one realtime session; dumped verbatim into ``session.update``."""

    modalities: list[Literal["audio", "text"]] = Field(default_factory=lambda: ["audio", "text"])
    instructions: str = DEFAULT_INSTRUCTIONS
    voice: str = "alloy"
    input_audio_format: Literal["pcm16"] = "pcm16"
    output_audio_format: Literal["pcm16"] = "pcm16"
    input_audio_transcription: InputAudioTranscription | None = Field(default_factory=InputAudioTranscription)
    turn_detection: TurnDetection | None = Field(default_factory=TurnDetection)
    temperature: float = Field(0.8, ge=0.0, le=2.0)
    max_response_output_tokens: int | Literal["inf"] | None = 250

    def to_payload(self) -> dict:
        return self.model_dump(exclude_none=True)


class RealtimeSettings(BaseModel):
    api_key: str | None = None
    model: str
    url: str
    bootstrap_url: str | None = None
    session: SessionConfig


class AudioSettings(BaseModel):
    sample_rate: int = 24_000
    chunk_samples: int = 4096
    input_device: str | int | None = None
    output_device: str | int | None = None
    capture_mode: Literal["auto", "stream", "blocking"] = "auto"
    playback_gap_ms: int = 10


class TelemetrySettings(BaseModel):
    log_level: str = "INFO"
    json_logs: bool = True
    otlp_endpoint: str | None = None


class UISettings(BaseModel):
    origin: str = "http://localhost:3000"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", ".env.local"), env_file_encoding="utf-8", extra="ignore")

    OPENAI_API_KEY: str | None = None
    REALTIME_MODEL: str = "gpt-4o-realtime-preview-2024-12-17"
    REALTIME_URL: str = "wss://api.openai.com/v1/realtime"
    REALTIME_BOOTSTRAP_URL: str | None = None
    REALTIME_VOICE: str = "alloy"
    REALTIME_INSTRUCTIONS: str = DEFAULT_INSTRUCTIONS
    REALTIME_TEMPERATURE: float = 0.8
    REALTIME_MAX_RESPONSE_OUTPUT_TOKENS: int = 250
    REALTIME_TRANSCRIPTION_MODEL: str = "whisper-1"
    TURN_DETECTION_THRESHOLD: float = 0.5
    TURN_DETECTION_PREFIX_PADDING_MS: int = 300
    TURN_DETECTION_SILENCE_DURATION_MS: int = 500
    AUDIO_SAMPLE_RATE: int = 24_000
    AUDIO_CHUNK_SAMPLES: int = 4096
    AUDIO_INPUT_DEVICE: str | int | None = None
    AUDIO_OUTPUT_DEVICE: str | int | None = None
    AUDIO_CAPTURE_MODE: Literal["auto", "stream", "blocking"] = "auto"
    PLAYBACK_GAP_MS: int = 10
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None
    UI_ORIGIN: str = "http://localhost:3000"

    @staticmethod
    def _coerce_device(device: str | int | None) -> str | int | None:
        if isinstance(device, str):
            trimmed = device.strip()
            if not trimmed:
                return None
            if trimmed.isdigit():
                return int(trimmed)
            return trimmed
        return device

    @property
    def session_config(self) -> SessionConfig:
        return SessionConfig(
            instructions=self.REALTIME_INSTRUCTIONS,
            voice=self.REALTIME_VOICE,
            input_audio_transcription=InputAudioTranscription(model=self.REALTIME_TRANSCRIPTION_MODEL),
            turn_detection=TurnDetection(
                threshold=self.TURN_DETECTION_THRESHOLD,
                prefix_padding_ms=self.TURN_DETECTION_PREFIX_PADDING_MS,
                silence_duration_ms=self.TURN_DETECTION_SILENCE_DURATION_MS,
            ),
            temperature=self.REALTIME_TEMPERATURE,
            max_response_output_tokens=self.REALTIME_MAX_RESPONSE_OUTPUT_TOKENS,
        )

    @property
    def realtime(self) -> RealtimeSettings:
        return RealtimeSettings(
            api_key=self.OPENAI_API_KEY,
            model=self.REALTIME_MODEL,
            url=self.REALTIME_URL,
            bootstrap_url=self.REALTIME_BOOTSTRAP_URL,
            session=self.session_config,
        )

    @property
    def audio(self) -> AudioSettings:
        return AudioSettings(
            sample_rate=self.AUDIO_SAMPLE_RATE,
            chunk_samples=self.AUDIO_CHUNK_SAMPLES,
            input_device=self._coerce_device(self.AUDIO_INPUT_DEVICE),
            output_device=self._coerce_device(self.AUDIO_OUTPUT_DEVICE),
            capture_mode=self.AUDIO_CAPTURE_MODE,
            playback_gap_ms=self.PLAYBACK_GAP_MS,
        )

    @property
    def telemetry(self) -> TelemetrySettings:
        return TelemetrySettings(
            log_level=self.LOG_LEVEL,
            json_logs=self.LOG_JSON,
            otlp_endpoint=self.OTEL_EXPORTER_OTLP_ENDPOINT,
        )

    @property
    def ui(self) -> UISettings:
        return UISettings(origin=self.UI_ORIGIN)


@functools.lru_cache(maxsize=1)
def load_settings() -> AppSettings:
    return AppSettings()


__all__ = [
    "AppSettings",
    "AudioSettings",
    "InputAudioTranscription",
    "RealtimeSettings",
    "SessionConfig",
    "TurnDetection",
    "load_settings",
]
