from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from parley.conversation.state import StateSnapshot
from parley.telemetry.logging import get_logger


class StateBridge:
    """Pushes session state snapshots to every websocket subscribed at ``/ws/state``."""

    def __init__(self, recent_events: int = 20) -> None:
        self._clients: set[WebSocket] = set()
        self._router = APIRouter()
        self._router.add_api_websocket_route("/ws/state", self._websocket_handler)
        self._lock = asyncio.Lock()
        self._recent_events = recent_events
        self._latest: dict[str, Any] | None = None
        self._pending: set[asyncio.Task[None]] = set()
        self._logger = get_logger(__name__)

    @property
    def router(self) -> APIRouter:
        return self._router

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def _websocket_handler(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._clients.add(websocket)
        self._logger.info("ui.client.connected", count=len(self._clients))
        if self._latest is not None:
            await websocket.send_json(self._latest)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            async with self._lock:
                self._clients.discard(websocket)
            self._logger.info("ui.client.disconnected", count=len(self._clients))

    async def publish(self, snapshot: StateSnapshot) -> None:
        message = snapshot.to_dict(recent=self._recent_events)
        self._latest = message
        async with self._lock:
            send_tasks = [client.send_json(message) for client in self._clients]
        if send_tasks:
            await asyncio.gather(*send_tasks, return_exceptions=True)

    def listener(self, snapshot: StateSnapshot) -> None:
        """Synchronous state listener; schedules the broadcast on the running loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._latest = snapshot.to_dict(recent=self._recent_events)
            return
        task = loop.create_task(self.publish(snapshot))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


__all__ = ["StateBridge"]
