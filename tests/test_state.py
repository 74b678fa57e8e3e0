from __future__ import annotations

import pytest

from parley.conversation.state import ConnectionState, SessionState
from parley.ui.websocket import StateBridge


def test_indicator_drives_flags() -> None:
    state = SessionState()
    state.set_indicator("listening")
    assert (state.listening, state.processing) == (True, False)
    state.set_indicator("processing")
    assert (state.listening, state.processing) == (False, True)
    state.set_indicator("generating")
    assert state.processing
    state.clear_activity()
    assert (state.listening, state.processing, state.indicator) == (False, False, "idle")


def test_event_log_is_bounded() -> None:
    state = SessionState(event_log_size=3)
    for index in range(5):
        state.record_event(f"e{index}")
    assert [record.type for record in state.snapshot().recent_events] == ["e2", "e3", "e4"]
    assert len(state.snapshot().to_dict(recent=2)["recent_events"]) == 2


def test_listeners_receive_snapshots_and_can_unsubscribe() -> None:
    state = SessionState()
    received = []
    unsubscribe = state.subscribe(received.append)

    def broken(snapshot) -> None:
        raise RuntimeError("listener bug")

    state.subscribe(broken)
    state.connection = ConnectionState.OPEN
    state.publish()
    assert received[-1].connection == ConnectionState.OPEN

    unsubscribe()
    state.set_playing(True)
    assert len(received) == 1


@pytest.mark.anyio("asyncio")
async def test_bridge_keeps_latest_snapshot() -> None:
    bridge = StateBridge()
    state = SessionState()
    state.last_error = "API Error occurred"
    await bridge.publish(state.snapshot())
    assert bridge.client_count == 0
    assert bridge._latest["last_error"] == "API Error occurred"
