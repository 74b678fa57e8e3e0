from __future__ import annotations

import asyncio
import contextlib
from collections import deque
from collections.abc import Callable
from typing import Deque, Literal, Protocol

from parley.audio.codec import AudioChunk
from parley.telemetry.logging import get_logger

PlaybackState = Literal["idle", "playing"]


class AudioSink(Protocol):
    async def play(self, chunk: AudioChunk) -> None:
        """Return once the chunk has finished playing (or has been handed to the device)."""

    async def stop(self) -> None:
        """Abort in-flight playback."""


class AudioPlaybackScheduler:
    """Plays decoded chunks strictly in arrival order, one at a time.

    A single drain task owns the queue while playing: it awaits each chunk's
    completion, waits ``gap_ms`` if more audio is queued, and returns to idle
    once the queue is empty. ``enqueue`` starts a drain task only from idle.
    """

    def __init__(
        self,
        sink: AudioSink,
        gap_ms: int = 10,
        on_playing_changed: Callable[[bool], None] | None = None,
    ) -> None:
        self._sink = sink
        self._gap_s = max(gap_ms, 0) / 1000.0
        self._on_playing_changed = on_playing_changed
        self._queue: Deque[AudioChunk] = deque()
        self._state: PlaybackState = "idle"
        self._current: AudioChunk | None = None
        self._task: asyncio.Task[None] | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._logger = get_logger(__name__)

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def is_playing(self) -> bool:
        return self._state == "playing"

    @property
    def current(self) -> AudioChunk | None:
        return self._current

    def __len__(self) -> int:
        return len(self._queue)

    def enqueue(self, chunk: AudioChunk) -> None:
        self._queue.append(chunk)
        if self._state == "idle":
            self._set_state("playing")
            self._task = asyncio.get_running_loop().create_task(self._drain())

    async def wait_idle(self) -> None:
        await self._idle.wait()

    async def reset(self) -> None:
        """Drop queued audio and stop the current chunk; safe to call repeatedly."""
        dropped = len(self._queue)
        self._queue.clear()
        task, self._task = self._task, None
        if task is not None and not task.done():
            try:
                await self._sink.stop()
            except Exception as exc:
                self._logger.error("playback.sink.stop_failed", error=str(exc))
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._current = None
        if self._state != "idle":
            self._logger.info("playback.reset", dropped=dropped)
        self._set_state("idle")

    async def _drain(self) -> None:
        try:
            while self._queue:
                chunk = self._queue.popleft()
                self._current = chunk
                try:
                    await self._sink.play(chunk)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self._logger.error("playback.chunk.skipped", sequence=chunk.sequence, error=str(exc))
                finally:
                    self._current = None
                if self._queue and self._gap_s:
                    await asyncio.sleep(self._gap_s)
        finally:
            if self._task is asyncio.current_task():
                self._task = None
                self._set_state("idle")

    def _set_state(self, state: PlaybackState) -> None:
        if state == self._state:
            return
        self._state = state
        if state == "idle":
            self._idle.set()
        else:
            self._idle.clear()
        self._logger.debug("playback.state", state=state, queued=len(self._queue))
        if self._on_playing_changed is not None:
            self._on_playing_changed(state == "playing")


__all__ = ["AudioPlaybackScheduler", "AudioSink", "PlaybackState"]
