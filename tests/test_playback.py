from __future__ import annotations

import numpy as np
import pytest

from parley.audio.codec import AudioChunk
from parley.audio.playback import AudioPlaybackScheduler


def _chunk(sequence: int) -> AudioChunk:
    return AudioChunk(samples=np.zeros(4, dtype=np.int16), sequence=sequence)


@pytest.mark.anyio("asyncio")
async def test_chunks_play_in_arrival_order(make_sink) -> None:
    sink = make_sink()
    transitions: list[bool] = []
    scheduler = AudioPlaybackScheduler(sink, gap_ms=0, on_playing_changed=transitions.append)

    for sequence in range(5):
        scheduler.enqueue(_chunk(sequence))
    assert scheduler.is_playing
    await scheduler.wait_idle()

    assert sink.played == [0, 1, 2, 3, 4]
    assert scheduler.state == "idle"
    assert transitions == [True, False]


@pytest.mark.anyio("asyncio")
async def test_only_one_chunk_plays_at_a_time(make_sink, settle_loop) -> None:
    sink = make_sink(hold=True)
    scheduler = AudioPlaybackScheduler(sink, gap_ms=0)
    scheduler.enqueue(_chunk(0))
    scheduler.enqueue(_chunk(1))
    await settle_loop(sink.started.is_set)

    assert scheduler.current is not None and scheduler.current.sequence == 0
    assert len(scheduler) == 1
    sink.release.set()
    await scheduler.wait_idle()
    assert sink.played == [0, 1]


@pytest.mark.anyio("asyncio")
async def test_failing_chunk_is_skipped(make_sink) -> None:
    sink = make_sink(fail_on={1})
    scheduler = AudioPlaybackScheduler(sink, gap_ms=1)
    for sequence in range(3):
        scheduler.enqueue(_chunk(sequence))
    await scheduler.wait_idle()
    assert sink.played == [0, 2]


@pytest.mark.anyio("asyncio")
async def test_reset_drops_queue_and_is_idempotent(make_sink, settle_loop) -> None:
    sink = make_sink(hold=True)
    scheduler = AudioPlaybackScheduler(sink, gap_ms=0)
    for sequence in range(3):
        scheduler.enqueue(_chunk(sequence))
    await settle_loop(sink.started.is_set)

    await scheduler.reset()
    assert scheduler.state == "idle"
    assert len(scheduler) == 0
    assert scheduler.current is None
    assert sink.stops == 1
    assert sink.played == []

    await scheduler.reset()
    assert sink.stops == 1

    sink.release.set()
    scheduler.enqueue(_chunk(7))
    await scheduler.wait_idle()
    assert sink.played == [7]


@pytest.mark.anyio("asyncio")
async def test_enqueue_after_drain_restarts_playback(make_sink) -> None:
    sink = make_sink()
    scheduler = AudioPlaybackScheduler(sink, gap_ms=0)
    scheduler.enqueue(_chunk(0))
    await scheduler.wait_idle()
    scheduler.enqueue(_chunk(1))
    await scheduler.wait_idle()
    assert sink.played == [0, 1]
