from __future__ import annotations

import anyio
import numpy as np
import pytest

from parley.audio.capture import AudioCaptureEncoder
from parley.audio.codec import decode_pcm16
from parley.errors import CaptureUnavailableError, NotConnectedError


class Outbox:
    def __init__(self, fail: bool = False) -> None:
        self.envelopes: list[dict] = []
        self.fail = fail

    async def __call__(self, envelope: dict) -> None:
        if self.fail:
            raise NotConnectedError("closed")
        self.envelopes.append(envelope)

    def types(self) -> list[str]:
        return [envelope["type"] for envelope in self.envelopes]


@pytest.mark.anyio("asyncio")
async def test_stream_capture_chunks_flushes_and_commits(make_source, capture_options, settle_loop) -> None:
    source = make_source(mode="stream")
    outbox = Outbox()
    encoder = AudioCaptureEncoder(lambda options: source, outbox, options=capture_options)

    await encoder.start()
    assert encoder.recording and encoder.mode == "stream"
    source.push(np.full(6, 0.5, dtype=np.float32))
    source.push(np.full(3, -0.5, dtype=np.float32))
    await settle_loop(lambda: encoder.chunks_sent == 2)

    await encoder.stop()
    assert source.closed
    assert not encoder.recording
    assert outbox.types() == [
        "input_audio_buffer.append",
        "input_audio_buffer.append",
        "input_audio_buffer.append",
        "input_audio_buffer.commit",
    ]
    sizes = [len(decode_pcm16(env["audio"])) for env in outbox.envelopes[:3]]
    assert sizes == [4, 4, 1]
    assert decode_pcm16(outbox.envelopes[2]["audio"]).tolist() == [-16384]


@pytest.mark.anyio("asyncio")
async def test_blocking_capture_polls_source(make_source, capture_options, settle_loop) -> None:
    frames = [np.full(4, 0.25, dtype=np.float32), np.full(2, 0.25, dtype=np.float32)]
    source = make_source(mode="blocking", frames=frames)
    outbox = Outbox()
    encoder = AudioCaptureEncoder(lambda options: source, outbox, options=capture_options)

    await encoder.start()
    assert source.callback is None
    await settle_loop(lambda: not source.frames)
    await encoder.stop()

    assert source.closed
    assert outbox.types() == ["input_audio_buffer.append", "input_audio_buffer.append", "input_audio_buffer.commit"]


@pytest.mark.anyio("asyncio")
async def test_stop_without_audio_only_commits(make_source, capture_options) -> None:
    outbox = Outbox()
    encoder = AudioCaptureEncoder(lambda options: make_source(), outbox, options=capture_options)
    await encoder.start()
    await encoder.stop()
    assert outbox.types() == ["input_audio_buffer.commit"]
    await encoder.stop()
    assert outbox.types() == ["input_audio_buffer.commit"]


@pytest.mark.anyio("asyncio")
async def test_device_failure_is_reported_as_unavailable(capture_options) -> None:
    def denied(options):
        raise PermissionError("microphone access denied")

    encoder = AudioCaptureEncoder(denied, Outbox(), options=capture_options)
    with pytest.raises(CaptureUnavailableError):
        await encoder.start()
    assert not encoder.recording


@pytest.mark.anyio("asyncio")
async def test_abort_sends_nothing(make_source, capture_options, settle_loop) -> None:
    source = make_source()
    outbox = Outbox()
    encoder = AudioCaptureEncoder(lambda options: source, outbox, options=capture_options)
    await encoder.start()
    source.push(np.zeros(2, dtype=np.float32))
    await settle_loop()
    await encoder.abort()

    assert source.closed
    assert not encoder.recording
    assert outbox.envelopes == []


@pytest.mark.anyio("asyncio")
async def test_send_failures_do_not_break_capture(make_source, capture_options) -> None:
    source = make_source()
    encoder = AudioCaptureEncoder(lambda options: source, Outbox(fail=True), options=capture_options)
    await encoder.start()
    source.push(np.zeros(5, dtype=np.float32))
    await encoder.stop()
    assert encoder.chunks_sent == 0
    assert not encoder.recording


@pytest.mark.anyio("asyncio")
async def test_stop_finishes_when_device_close_fails(make_source, capture_options, monkeypatch) -> None:
    source = make_source(mode="stream")
    outbox = Outbox()
    encoder = AudioCaptureEncoder(lambda options: source, outbox, options=capture_options)
    await encoder.start()
    source.push(np.zeros(2, dtype=np.float32))

    def broken_close() -> None:
        raise OSError("PortAudio stream already gone")

    monkeypatch.setattr(source, "close", broken_close)
    with anyio.fail_after(1):
        await encoder.stop()
    assert not encoder.recording
    assert outbox.types() == ["input_audio_buffer.append", "input_audio_buffer.commit"]
