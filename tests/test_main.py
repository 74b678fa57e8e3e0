from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient
from websockets.exceptions import InvalidURI

from parley.client import RealtimeConversation
from parley.main import create_app
from parley.session.bootstrap import HttpBootstrap


@pytest.fixture
def app_client(settings, make_sink, make_source, make_bootstrap, make_connector):
    connector = make_connector()

    def factory(app_settings) -> RealtimeConversation:
        return RealtimeConversation(
            sink=make_sink(),
            capture_factory=lambda options: make_source(),
            settings=app_settings,
            bootstrap=make_bootstrap(),
            connector=connector,
        )

    app = create_app(settings=settings, conversation_factory=factory)
    with TestClient(app) as client:
        yield client, connector


def test_state_endpoint_reports_idle(app_client) -> None:
    client, _ = app_client
    body = client.get("/state").json()
    assert body["connection"] == "idle"
    assert body["conversation"] == []
    assert body["recording"] is False


def test_connect_message_and_disconnect(app_client) -> None:
    client, connector = app_client
    assert client.post("/connect").json() == {"status": "ok", "state": "open"}

    assert client.post("/messages", json={"text": "hello"}).status_code == 200
    assert connector.channel.sent_types() == ["session.update", "conversation.item.create", "response.create"]
    assert client.post("/messages", json={"text": "  "}).status_code == 400

    assert client.post("/disconnect").json() == {"status": "ok", "state": "closed"}
    assert client.post("/messages", json={"text": "late"}).status_code == 409


def test_recording_start_needs_connection(app_client) -> None:
    client, _ = app_client
    response = client.post("/recording/start")
    assert response.status_code == 409
    assert response.json()["detail"] == "not connected"


def test_recording_round_trip(app_client) -> None:
    client, connector = app_client
    client.post("/connect")
    assert client.post("/recording/start").json() == {"status": "ok", "recording": True}
    assert client.get("/state").json()["recording"] is True
    assert client.post("/recording/stop").json() == {"status": "ok", "recording": False}
    assert connector.channel.sent_types()[-1] == "input_audio_buffer.commit"
    client.post("/disconnect")


def test_state_websocket_streams_snapshots(app_client) -> None:
    client, _ = app_client
    with client.websocket_connect("/ws/state") as websocket:
        client.post("/connect")
        states = set()
        while "open" not in states:
            states.add(websocket.receive_json()["connection"])
    client.post("/disconnect")


def test_shutdown_closes_session_http_client(settings, make_sink, make_source, make_connector) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"client_secret": {"value": "ek-1"}, "model": "test-model"})

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    connector = make_connector()

    def factory(app_settings) -> RealtimeConversation:
        return RealtimeConversation(
            sink=make_sink(),
            capture_factory=lambda options: make_source(),
            settings=app_settings,
            bootstrap=HttpBootstrap("https://app.example/session", "fallback-model", client=http),
            connector=connector,
        )

    with TestClient(create_app(settings=settings, conversation_factory=factory)) as client:
        assert client.post("/connect").json()["state"] == "open"
        assert connector.calls[0][1]["Authorization"] == "Bearer ek-1"
        assert not http.is_closed
    assert http.is_closed


def test_rejected_realtime_url_maps_to_bad_gateway(settings, make_sink, make_source, make_bootstrap, make_connector) -> None:
    connector = make_connector(error=InvalidURI("http://x", "not a ws uri"))

    def factory(app_settings) -> RealtimeConversation:
        return RealtimeConversation(
            sink=make_sink(),
            capture_factory=lambda options: make_source(),
            settings=app_settings,
            bootstrap=make_bootstrap(),
            connector=connector,
        )

    with TestClient(create_app(settings=settings, conversation_factory=factory)) as client:
        assert client.post("/connect").status_code == 502
        assert client.get("/state").json()["connection"] == "errored"
        connector.error = None
        assert client.post("/connect").json()["state"] == "open"
        client.post("/disconnect")
