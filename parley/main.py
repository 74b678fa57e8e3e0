from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from parley.client import RealtimeConversation, build_default_conversation
from parley.config import AppSettings, load_settings
from parley.errors import BootstrapError, ChannelError, NotConnectedError
from parley.telemetry.logging import configure_logging, get_logger
from parley.telemetry.tracing import configure_tracing
from parley.ui.websocket import StateBridge

ConversationFactory = Callable[[AppSettings], RealtimeConversation]

logger = get_logger(__name__)


class MessageRequest(BaseModel):
    text: str


def _conversation(request: Request) -> RealtimeConversation:
    conversation = getattr(request.app.state, "conversation", None)
    if conversation is None:
        raise HTTPException(status_code=503, detail="conversation unavailable")
    return conversation


def create_app(
    settings: AppSettings | None = None,
    conversation_factory: ConversationFactory | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.telemetry.log_level, json_logs=settings.telemetry.json_logs)
    configure_tracing("parley-realtime", settings.telemetry.otlp_endpoint)
    factory = conversation_factory or build_default_conversation

    bridge = StateBridge()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        conversation = factory(settings)
        conversation.subscribe(bridge.listener)
        await bridge.publish(conversation.snapshot())
        app.state.conversation = conversation
        logger.info("app.started")
        try:
            yield
        finally:
            await conversation.aclose()
            app.state.conversation = None
            logger.info("app.stopped")

    app = FastAPI(title="Parley Realtime Conversation", lifespan=lifespan)
    app.state.bridge = bridge

    origins = {settings.ui.origin}
    if "localhost" in settings.ui.origin:
        origins.add(settings.ui.origin.replace("localhost", "127.0.0.1"))
    app.include_router(bridge.router)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(origins),
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )

    @app.get("/state")
    async def get_state(request: Request) -> dict[str, Any]:
        return _conversation(request).snapshot().to_dict()

    @app.post("/connect")
    async def connect(request: Request) -> dict[str, Any]:
        conversation = _conversation(request)
        try:
            session = await conversation.connect()
        except BootstrapError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except ChannelError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        logger.info("control.connect", model=session.model if session else None)
        return {"status": "ok", "state": conversation.snapshot().connection.value}

    @app.post("/disconnect")
    async def disconnect(request: Request) -> dict[str, str]:
        conversation = _conversation(request)
        await conversation.disconnect()
        logger.info("control.disconnect")
        return {"status": "ok", "state": conversation.snapshot().connection.value}

    @app.post("/recording/start")
    async def recording_start(request: Request) -> dict[str, Any]:
        conversation = _conversation(request)
        started = await conversation.start_recording()
        if not started:
            snapshot = conversation.snapshot()
            detail = snapshot.last_error if snapshot.connection.value == "open" else "not connected"
            raise HTTPException(status_code=409, detail=detail or "recording unavailable")
        return {"status": "ok", "recording": True}

    @app.post("/recording/stop")
    async def recording_stop(request: Request) -> dict[str, Any]:
        await _conversation(request).stop_recording()
        return {"status": "ok", "recording": False}

    @app.post("/messages")
    async def send_message(payload: MessageRequest, request: Request) -> dict[str, str]:
        conversation = _conversation(request)
        if not conversation.connection.is_open:
            raise HTTPException(status_code=409, detail="not connected")
        try:
            await conversation.send_text(payload.text)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except (NotConnectedError, ChannelError) as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {"status": "ok"}

    return app


__all__ = ["MessageRequest", "create_app"]
