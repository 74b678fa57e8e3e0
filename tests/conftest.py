from __future__ import annotations

import asyncio
import json
import time
from typing import Any

import numpy as np
import pytest

from parley.audio.capture import CaptureOptions
from parley.audio.codec import AudioChunk
from parley.config import AppSettings, SessionConfig
from parley.errors import BootstrapError
from parley.session.bootstrap import SessionGrant


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeSink:
    def __init__(self, fail_on: set[int] | None = None, hold: bool = False) -> None:
        self.played: list[int] = []
        self.stops = 0
        self.fail_on = fail_on or set()
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        if not hold:
            self.release.set()

    async def play(self, chunk: AudioChunk) -> None:
        self.started.set()
        await self.release.wait()
        if chunk.sequence in self.fail_on:
            raise RuntimeError(f"device glitch on {chunk.sequence}")
        self.played.append(chunk.sequence)

    async def stop(self) -> None:
        self.stops += 1


class FakeCaptureSource:
    """Stands in for a microphone; ``push`` plays the part of the audio thread."""

    def __init__(self, mode: str = "stream", frames: list[np.ndarray] | None = None) -> None:
        self.mode = mode
        self.frames = list(frames or [])
        self.callback = None
        self.opened = False
        self.closed = False

    def open(self, on_frame) -> None:
        self.opened = True
        self.callback = on_frame

    def push(self, frame: np.ndarray) -> None:
        assert self.callback is not None
        self.callback(frame)

    def read(self, frames: int) -> np.ndarray:
        if self.frames:
            return self.frames.pop(0)
        time.sleep(0.005)
        return np.zeros(0, dtype=np.float32)

    def close(self) -> None:
        self.closed = True


class FakeChannel:
    """In-memory duplex channel; ``feed`` queues a server frame, ``drop`` ends the stream."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._inbound: asyncio.Queue[Any] = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            from websockets.exceptions import ConnectionClosedOK

            raise ConnectionClosedOK(None, None)
        self.sent.append(json.loads(message))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbound.put_nowait(None)

    def feed(self, message: dict[str, Any] | str) -> None:
        self._inbound.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self, exc: BaseException | None = None) -> None:
        self._inbound.put_nowait(exc)

    def sent_types(self) -> list[str]:
        return [envelope["type"] for envelope in self.sent]

    def __aiter__(self) -> "FakeChannel":
        return self

    async def __anext__(self) -> str:
        message = await self._inbound.get()
        if message is None:
            raise StopAsyncIteration
        if isinstance(message, BaseException):
            raise message
        return message


class FakeBootstrap:
    def __init__(self, error: str | None = None, model: str = "test-model") -> None:
        self.error = error
        self.model = model
        self.calls = 0

    async def fetch(self) -> SessionGrant:
        self.calls += 1
        if self.error:
            raise BootstrapError(self.error)
        return SessionGrant(credential="sk-test", model=self.model, config=SessionConfig())


class FakeConnector:
    def __init__(self, error: BaseException | None = None) -> None:
        self.error = error
        self.channels: list[FakeChannel] = []
        self.calls: list[tuple[str, dict[str, str]]] = []

    async def __call__(self, url: str, headers: dict[str, str]) -> FakeChannel:
        self.calls.append((url, headers))
        if self.error is not None:
            raise self.error
        channel = FakeChannel()
        self.channels.append(channel)
        return channel

    @property
    def channel(self) -> FakeChannel:
        return self.channels[-1]


async def settle(predicate=None, timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate()`` holds (or just a few turns when omitted)."""
    if predicate is None:
        for _ in range(5):
            await asyncio.sleep(0)
        return
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


@pytest.fixture
def settle_loop():
    return settle


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        _env_file=None,
        OPENAI_API_KEY="sk-test",
        AUDIO_CHUNK_SAMPLES=4,
        PLAYBACK_GAP_MS=0,
    )


@pytest.fixture
def capture_options() -> CaptureOptions:
    return CaptureOptions(block_samples=4)


@pytest.fixture
def make_sink():
    return FakeSink


@pytest.fixture
def make_source():
    return FakeCaptureSource


@pytest.fixture
def make_bootstrap():
    return FakeBootstrap


@pytest.fixture
def make_connector():
    return FakeConnector
