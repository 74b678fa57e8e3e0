from __future__ import annotations

import asyncio
import contextlib
import queue
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import numpy as np

from parley.audio.codec import AudioChunk, PcmChunker
from parley.errors import CaptureUnavailableError, ParleyError
from parley.protocol.outbound import Envelope, OutboundMessageBuilder
from parley.telemetry.logging import get_logger

CaptureMode = Literal["stream", "blocking"]
FrameCallback = Callable[[np.ndarray], None]
SendFn = Callable[[Envelope], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class CaptureOptions:
    sample_rate: int = 24_000
    channels: int = 1
    block_samples: int = 4096
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True
    device: str | int | None = None


class CaptureSource(Protocol):
    """Raw microphone binding.

    ``mode == "stream"`` sources push float32 mono frames to the callback given to
    ``open`` (possibly from a real-time audio thread). ``mode == "blocking"``
    sources are opened with ``None`` and polled through ``read``.
    """

    mode: CaptureMode

    def open(self, on_frame: FrameCallback | None) -> None: ...

    def read(self, frames: int) -> np.ndarray: ...

    def close(self) -> None: ...


class AudioCaptureEncoder:
    """Turns microphone frames into ``input_audio_buffer.append`` envelopes."""

    def __init__(
        self,
        source_factory: Callable[[CaptureOptions], CaptureSource],
        send: SendFn,
        builder: OutboundMessageBuilder | None = None,
        options: CaptureOptions | None = None,
    ) -> None:
        self._source_factory = source_factory
        self._send = send
        self._builder = builder or OutboundMessageBuilder()
        self.options = options or CaptureOptions()
        self._chunker = PcmChunker(self.options.block_samples, self.options.sample_rate)
        # Handoff point between the audio thread and the event loop.
        self._frames: queue.Queue[np.ndarray | None] = queue.Queue()
        self._source: CaptureSource | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self.chunks_sent = 0
        self._logger = get_logger(__name__)

    @property
    def recording(self) -> bool:
        return self._source is not None

    @property
    def mode(self) -> CaptureMode | None:
        return self._source.mode if self._source else None

    async def __aenter__(self) -> "AudioCaptureEncoder":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop(commit=exc is None)

    async def start(self) -> None:
        if self._source is not None:
            return
        self._chunker.reset()
        self._stopping = False
        self.chunks_sent = 0
        self._frames = queue.Queue()
        try:
            source = self._source_factory(self.options)
            source.open(self._on_frame if source.mode == "stream" else None)
        except CaptureUnavailableError:
            raise
        except Exception as exc:
            raise CaptureUnavailableError(f"capture device unavailable: {exc}") from exc
        self._source = source
        pump = self._pump_stream if source.mode == "stream" else self._pump_blocking
        self._task = asyncio.get_running_loop().create_task(pump(source))
        self._logger.info(
            "capture.started",
            mode=source.mode,
            samplerate=self.options.sample_rate,
            chunk_samples=self.options.block_samples,
        )

    async def stop(self, commit: bool = True) -> None:
        """Flush the trailing partial chunk, commit the buffer and release the device."""
        source = self._source
        if source is None:
            return
        self._stopping = True
        try:
            if source.mode == "stream":
                try:
                    source.close()
                except Exception as exc:
                    self._logger.warning("capture.close_failed", error=str(exc))
                self._frames.put_nowait(None)
            if self._task is not None:
                await self._task
        finally:
            self._task = None
            self._release(source)
        tail = self._chunker.flush()
        if tail is not None:
            await self._send_chunk(tail)
        if commit:
            await self._send_quietly(self._builder.audio_commit())
        self._logger.info("capture.stopped", chunks=self.chunks_sent, committed=commit)

    async def abort(self) -> None:
        """Release the device and drop buffered audio without talking to the channel."""
        source = self._source
        if source is None:
            return
        self._stopping = True
        if source.mode == "stream":
            with contextlib.suppress(Exception):
                source.close()
        self._frames.put_nowait(None)
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._release(source)
        self._chunker.reset()
        self._logger.info("capture.aborted")

    def _release(self, source: CaptureSource) -> None:
        if source.mode == "blocking":
            try:
                source.close()
            except Exception as exc:
                self._logger.warning("capture.close_failed", error=str(exc))
        self._source = None

    def _on_frame(self, frame: np.ndarray) -> None:
        # Runs on the device thread; only touches the thread-safe queue.
        self._frames.put_nowait(np.array(frame, dtype=np.float32, copy=True).reshape(-1))

    async def _pump_stream(self, source: CaptureSource) -> None:
        loop = asyncio.get_running_loop()
        while True:
            frame = await loop.run_in_executor(None, self._frames.get)
            if frame is None:
                break
            await self._encode(frame)

    async def _pump_blocking(self, source: CaptureSource) -> None:
        loop = asyncio.get_running_loop()
        while not self._stopping:
            try:
                frame = await loop.run_in_executor(None, source.read, self.options.block_samples)
            except Exception as exc:
                self._logger.error("capture.read_failed", error=str(exc))
                break
            await self._encode(frame)

    async def _encode(self, frame: Any) -> None:
        for chunk in self._chunker.push(np.asarray(frame, dtype=np.float32)):
            await self._send_chunk(chunk)

    async def _send_chunk(self, chunk: AudioChunk) -> None:
        if await self._send_quietly(self._builder.audio_append(chunk)):
            self.chunks_sent += 1

    async def _send_quietly(self, envelope: Envelope) -> bool:
        try:
            await self._send(envelope)
        except ParleyError as exc:
            self._logger.warning("capture.send_failed", type=envelope["type"], error=str(exc))
            return False
        return True


__all__ = ["AudioCaptureEncoder", "CaptureMode", "CaptureOptions", "CaptureSource"]
