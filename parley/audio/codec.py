from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Iterator

import numpy as np

PCM16_NEGATIVE_SCALE = 32768.0
PCM16_POSITIVE_SCALE = 32767.0
DEFAULT_CHUNK_SAMPLES = 4096
WIRE_DTYPE = np.dtype("<i2")


@dataclass(frozen=True, slots=True, eq=False)
class AudioChunk:
    """A fixed window of PCM16 samples and its position in the stream."""

    samples: np.ndarray
    sequence: int = 0
    sample_rate: int = 24_000

    def __post_init__(self) -> None:
        pcm = np.array(self.samples, dtype=np.int16).reshape(-1)
        pcm.setflags(write=False)
        object.__setattr__(self, "samples", pcm)

    def __len__(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        return len(self) / float(self.sample_rate)

    def to_float(self) -> np.ndarray:
        return pcm16_to_float(self.samples)

    def to_base64(self) -> str:
        return encode_pcm16(self.samples)


def float_to_pcm16(samples: np.ndarray | list[float]) -> np.ndarray:
    """Quantize [-1, 1] floats to int16; negatives scale by 32768, the rest by 32767."""
    data = np.clip(np.asarray(samples, dtype=np.float64).reshape(-1), -1.0, 1.0)
    scaled = np.where(data < 0, data * PCM16_NEGATIVE_SCALE, data * PCM16_POSITIVE_SCALE)
    # ceil keeps pcm16_to_float(float_to_pcm16(x)) within one LSB of x on both sides of zero.
    return np.clip(np.ceil(scaled), -32768, 32767).astype(np.int16)


def pcm16_to_float(pcm: np.ndarray) -> np.ndarray:
    return np.asarray(pcm, dtype=np.int16).astype(np.float32) / np.float32(PCM16_NEGATIVE_SCALE)


def pcm16_to_bytes(pcm: np.ndarray) -> bytes:
    return np.asarray(pcm, dtype=np.int16).astype(WIRE_DTYPE, copy=False).tobytes()


def bytes_to_pcm16(data: bytes) -> np.ndarray:
    if len(data) % WIRE_DTYPE.itemsize:
        raise ValueError(f"PCM16 payload has odd length {len(data)}")
    return np.frombuffer(data, dtype=WIRE_DTYPE).astype(np.int16)


def encode_pcm16(pcm: np.ndarray) -> str:
    return base64.b64encode(pcm16_to_bytes(pcm)).decode("ascii")


def decode_pcm16(payload: str) -> np.ndarray:
    try:
        raw = base64.b64decode(payload, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"invalid base64 audio payload: {exc}") from exc
    return bytes_to_pcm16(raw)


def encode_audio(samples: np.ndarray | list[float]) -> str:
    """Float samples to the transport text used by ``input_audio_buffer.append``."""
    return encode_pcm16(float_to_pcm16(samples))


def decode_audio(payload: str) -> np.ndarray:
    """Transport text from ``response.audio.delta`` to float32 samples."""
    return pcm16_to_float(decode_pcm16(payload))


def iter_windows(samples: np.ndarray, size: int = DEFAULT_CHUNK_SAMPLES) -> Iterator[np.ndarray]:
    """Cut a buffer into ``size`` windows; the last one may be shorter."""
    if size <= 0:
        raise ValueError("window size must be positive")
    data = np.asarray(samples).reshape(-1)
    for start in range(0, data.shape[0], size):
        yield data[start : start + size]


class PcmChunker:
    """Accumulates capture frames of any length and emits fixed-size PCM16 chunks."""

    def __init__(self, chunk_samples: int = DEFAULT_CHUNK_SAMPLES, sample_rate: int = 24_000) -> None:
        if chunk_samples <= 0:
            raise ValueError("chunk_samples must be positive")
        self.chunk_samples = chunk_samples
        self.sample_rate = sample_rate
        self._pending = np.zeros(0, dtype=np.int16)
        self._sequence = 0

    @property
    def pending_samples(self) -> int:
        return int(self._pending.shape[0])

    def push(self, frame: np.ndarray) -> list[AudioChunk]:
        pcm = frame if np.asarray(frame).dtype == np.int16 else float_to_pcm16(frame)
        self._pending = np.concatenate([self._pending, np.asarray(pcm, dtype=np.int16).reshape(-1)])
        chunks: list[AudioChunk] = []
        while self._pending.shape[0] >= self.chunk_samples:
            chunks.append(self._emit(self._pending[: self.chunk_samples]))
            self._pending = self._pending[self.chunk_samples :]
        return chunks

    def flush(self) -> AudioChunk | None:
        """Return the trailing partial window, if any."""
        if self._pending.shape[0] == 0:
            return None
        chunk = self._emit(self._pending)
        self._pending = np.zeros(0, dtype=np.int16)
        return chunk

    def reset(self) -> None:
        self._pending = np.zeros(0, dtype=np.int16)
        self._sequence = 0

    def _emit(self, window: np.ndarray) -> AudioChunk:
        chunk = AudioChunk(samples=window, sequence=self._sequence, sample_rate=self.sample_rate)
        self._sequence += 1
        return chunk


__all__ = [
    "AudioChunk",
    "DEFAULT_CHUNK_SAMPLES",
    "PcmChunker",
    "bytes_to_pcm16",
    "decode_audio",
    "decode_pcm16",
    "encode_audio",
    "encode_pcm16",
    "float_to_pcm16",
    "iter_windows",
    "pcm16_to_bytes",
    "pcm16_to_float",
]
