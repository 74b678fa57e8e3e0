from __future__ import annotations

import asyncio
from typing import Literal

import numpy as np
import sounddevice as sd

from parley.audio.capture import CaptureMode, CaptureOptions, CaptureSource, FrameCallback
from parley.audio.codec import AudioChunk
from parley.errors import CaptureUnavailableError
from parley.telemetry.logging import get_logger


class SoundDeviceCapture:
    """Microphone via PortAudio, either callback-driven (``stream``) or polled (``blocking``)."""

    def __init__(self, options: CaptureOptions, mode: CaptureMode = "stream") -> None:
        self.options = options
        self.mode: CaptureMode = mode
        self._stream: sd.InputStream | None = None
        self._logger = get_logger(__name__)

    def open(self, on_frame: FrameCallback | None) -> None:
        if self._stream:
            return
        if self.mode == "stream" and on_frame is None:
            raise ValueError("stream capture requires a frame callback")

        callback = None
        if on_frame is not None:

            def callback(indata, frames, time_info, status) -> None:  # type: ignore[no-redef]
                if status:
                    self._logger.warning("capture.device.status", status=str(status))
                on_frame(indata[:, 0])

        try:
            self._stream = sd.InputStream(
                samplerate=self.options.sample_rate,
                channels=self.options.channels,
                blocksize=self.options.block_samples if self.mode == "blocking" else 0,
                dtype="float32",
                callback=callback,
                device=self.options.device,
            )
            self._stream.start()
        except sd.PortAudioError as exc:
            self._stream = None
            raise CaptureUnavailableError(str(exc)) from exc
        if self.options.echo_cancellation or self.options.noise_suppression or self.options.auto_gain_control:
            # PortAudio exposes raw input only; the OS audio stack applies any processing.
            self._logger.debug("capture.device.processing_unavailable")
        self._logger.info("capture.device.opened", mode=self.mode, device=self.options.device)

    def read(self, frames: int) -> np.ndarray:
        if self._stream is None:
            raise CaptureUnavailableError("capture stream is not open")
        data, overflowed = self._stream.read(frames)
        if overflowed:
            self._logger.warning("capture.device.overflow", frames=frames)
        return np.asarray(data[:, 0], dtype=np.float32)

    def close(self) -> None:
        if self._stream:
            self._stream.stop()
            self._stream.close()
            self._stream = None
            self._logger.info("capture.device.closed")


def open_capture_source(
    options: CaptureOptions,
    preferred: Literal["auto", "stream", "blocking"] = "auto",
) -> CaptureSource:
    """Probe the input device; prefer callback streaming and fall back to blocking reads."""
    try:
        sd.check_input_settings(
            device=options.device,
            channels=options.channels,
            dtype="float32",
            samplerate=options.sample_rate,
        )
    except (sd.PortAudioError, ValueError) as exc:
        raise CaptureUnavailableError(f"input device rejected capture settings: {exc}") from exc
    if preferred != "auto":
        return SoundDeviceCapture(options, mode=preferred)
    return _ProbingCapture(options)


class _ProbingCapture:
    """Tries the streaming strategy on open and degrades to blocking reads if it fails."""

    def __init__(self, options: CaptureOptions) -> None:
        self._options = options
        self._inner = SoundDeviceCapture(options, mode="stream")
        self._logger = get_logger(__name__)

    @property
    def mode(self) -> CaptureMode:
        return self._inner.mode

    def open(self, on_frame: FrameCallback | None) -> None:
        if on_frame is not None:
            try:
                self._inner.open(on_frame)
                return
            except CaptureUnavailableError as exc:
                self._logger.warning("capture.stream.unavailable", error=str(exc))
        self._inner = SoundDeviceCapture(self._options, mode="blocking")
        self._inner.open(None)

    def read(self, frames: int) -> np.ndarray:
        return self._inner.read(frames)

    def close(self) -> None:
        self._inner.close()


class SoundDeviceSink:
    """Speaker output through one long-lived PortAudio stream so consecutive chunks butt together."""

    def __init__(self, sample_rate: int = 24_000, device: str | int | None = None) -> None:
        self._sample_rate = sample_rate
        self._device = device
        self._stream: sd.OutputStream | None = None
        self._logger = get_logger(__name__)

    def _ensure_stream(self) -> sd.OutputStream:
        if self._stream is None:
            self._stream = sd.OutputStream(
                samplerate=self._sample_rate,
                channels=1,
                dtype="float32",
                device=self._device,
            )
            self._stream.start()
            self._logger.info("playback.device.opened", samplerate=self._sample_rate, device=self._device)
        return self._stream

    async def play(self, chunk: AudioChunk) -> None:
        stream = self._ensure_stream()
        data = chunk.to_float().reshape(-1, 1)
        underflowed = await asyncio.to_thread(stream.write, data)
        if underflowed:
            self._logger.debug("playback.device.underflow", sequence=chunk.sequence)

    async def stop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.abort()
        finally:
            stream.close()
        self._logger.info("playback.device.stopped")


__all__ = ["SoundDeviceCapture", "SoundDeviceSink", "open_capture_source"]
