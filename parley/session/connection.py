from __future__ import annotations

import asyncio
import contextlib
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

import httpx
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from parley.config import SessionConfig
from parley.conversation.state import ConnectionState
from parley.errors import BootstrapError, ChannelError, NotConnectedError
from parley.protocol.outbound import Envelope, OutboundMessageBuilder
from parley.session.bootstrap import SessionBootstrap, SessionGrant
from parley.telemetry.logging import bind_connection, clear_connection, get_logger
from parley.telemetry.tracing import get_tracer


class DuplexChannel(Protocol):
    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


Connector = Callable[[str, dict[str, str]], Awaitable[DuplexChannel]]
MessageHandler = Callable[[str | bytes], Awaitable[None]]
StateHandler = Callable[[ConnectionState, str | None], None]
ClosedHandler = Callable[[str | None], Awaitable[None]]


async def websocket_connector(url: str, headers: dict[str, str]) -> DuplexChannel:
    return await connect(url, additional_headers=headers, max_size=None)


@dataclass(frozen=True, slots=True)
class Session:
    endpoint: str
    model: str
    config: SessionConfig
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def realtime_url(base_url: str, model: str) -> str:
    return str(httpx.URL(base_url).copy_merge_params({"model": model}))


class ConnectionManager:
    """Owns the duplex channel: bootstrap, handshake, receive loop and teardown.

    A ``connect`` while a connection is connecting or open is a no-op that returns
    the current session.
    """

    def __init__(
        self,
        bootstrap: SessionBootstrap,
        url: str,
        on_message: MessageHandler,
        on_state: StateHandler | None = None,
        on_closed: ClosedHandler | None = None,
        connector: Connector = websocket_connector,
        builder: OutboundMessageBuilder | None = None,
    ) -> None:
        self._bootstrap = bootstrap
        self._url = url
        self._on_message = on_message
        self._on_state = on_state
        self._on_closed = on_closed
        self._connector = connector
        self._builder = builder or OutboundMessageBuilder()
        self._state = ConnectionState.IDLE
        self._session: Session | None = None
        self._channel: DuplexChannel | None = None
        self._receiver: asyncio.Task[None] | None = None
        self._attempt = 0
        self._tracer = get_tracer(__name__)
        self._logger = get_logger(__name__)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def is_open(self) -> bool:
        return self._state == ConnectionState.OPEN and self._channel is not None

    async def connect(self) -> Session | None:
        if self._state.active:
            self._logger.warning("connection.connect.redundant", state=self._state.value)
            return self._session
        self._attempt += 1
        attempt = self._attempt
        self._set_state(ConnectionState.CONNECTING)
        try:
            grant, url, channel = await self._handshake(attempt)
        except BootstrapError as exc:
            self._fail_attempt(attempt, str(exc))
            raise
        except Exception as exc:
            self._fail_attempt(attempt, f"Connection error occurred: {exc}")
            raise ChannelError(str(exc) or type(exc).__name__) from exc
        except BaseException:
            self._fail_attempt(attempt, "Connection attempt cancelled")
            raise

        if attempt != self._attempt or self._state != ConnectionState.CONNECTING:
            # Torn down while the handshake was in flight.
            with contextlib.suppress(Exception):
                await channel.close()
            return None

        self._channel = channel
        self._session = Session(endpoint=url, model=grant.model, config=grant.config)
        self._set_state(ConnectionState.OPEN)
        self._receiver = asyncio.get_running_loop().create_task(self._receive(channel))
        await self.send(self._builder.session_update(grant.config))
        return self._session

    async def _handshake(self, attempt: int) -> tuple[SessionGrant, str, DuplexChannel]:
        with self._tracer.start_as_current_span("realtime.handshake"):
            grant = await self._bootstrap.fetch()
            url = realtime_url(self._url, grant.model)
            bind_connection(model=grant.model, attempt=attempt)
            headers = {"Authorization": f"Bearer {grant.credential}", "OpenAI-Beta": "realtime=v1"}
            channel = await self._connector(url, headers)
        return grant, url, channel

    def _fail_attempt(self, attempt: int, error: str) -> None:
        # A close() during the handshake already moved the state on.
        if attempt == self._attempt and self._state == ConnectionState.CONNECTING:
            self._set_state(ConnectionState.ERRORED, error)

    async def send(self, envelope: Envelope) -> None:
        channel = self._channel
        if channel is None or self._state != ConnectionState.OPEN:
            raise NotConnectedError(f"cannot send {envelope.get('type')}: channel is {self._state.value}")
        try:
            await channel.send(json.dumps(envelope))
        except ConnectionClosed as exc:
            raise ChannelError(f"channel closed while sending {envelope.get('type')}") from exc

    async def close(self) -> None:
        """Close the channel and stop receiving; repeated calls are harmless."""
        self._attempt += 1
        channel, self._channel = self._channel, None
        receiver, self._receiver = self._receiver, None
        if channel is not None:
            try:
                await channel.close()
            except Exception as exc:
                self._logger.warning("connection.close_failed", error=str(exc))
        if receiver is not None and receiver is not asyncio.current_task() and not receiver.done():
            receiver.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await receiver
        self._session = None
        if self._state not in (ConnectionState.IDLE, ConnectionState.CLOSED):
            self._set_state(ConnectionState.CLOSED)
        clear_connection()

    async def _receive(self, channel: DuplexChannel) -> None:
        error: str | None = None
        try:
            async for message in channel:
                try:
                    await self._on_message(message)
                except Exception:
                    self._logger.exception("connection.message.failed")
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as exc:
            error = f"Connection closed unexpectedly: {exc}"
        except OSError as exc:
            error = f"Connection error occurred: {exc}"

        if self._channel is not channel:
            return
        self._channel = None
        self._receiver = None
        self._session = None
        self._set_state(ConnectionState.ERRORED if error else ConnectionState.CLOSED, error)
        if self._on_closed is not None:
            await self._on_closed(error)

    def _set_state(self, state: ConnectionState, error: str | None = None) -> None:
        self._state = state
        if error:
            self._logger.warning("connection.state", state=state.value, error=error)
        else:
            self._logger.info("connection.state", state=state.value)
        if self._on_state is not None:
            self._on_state(state, error)


__all__ = ["ConnectionManager", "Connector", "DuplexChannel", "Session", "realtime_url", "websocket_connector"]
