from __future__ import annotations

from collections.abc import Callable

from parley.audio.capture import AudioCaptureEncoder, CaptureOptions, CaptureSource
from parley.audio.playback import AudioPlaybackScheduler, AudioSink
from parley.config import AppSettings, load_settings
from parley.conversation.aggregator import ConversationAggregator
from parley.conversation.state import ConnectionState, SessionState, StateListener, StateSnapshot
from parley.errors import BootstrapError, CaptureUnavailableError, ChannelError, MalformedEventError
from parley.protocol.events import parse_event
from parley.protocol.outbound import OutboundMessageBuilder
from parley.router import EventRouter
from parley.session.bootstrap import SessionBootstrap, bootstrap_from_settings
from parley.session.connection import ConnectionManager, Connector, Session, websocket_connector
from parley.telemetry.logging import get_logger

CaptureFactory = Callable[[CaptureOptions], CaptureSource]


class RealtimeConversation:
    """One voice/text conversation with a remote realtime agent.

    All state changes happen on the event loop that calls these methods; audio
    from the capture device reaches it through the encoder's thread-safe queue.
    """

    def __init__(
        self,
        sink: AudioSink,
        capture_factory: CaptureFactory,
        settings: AppSettings | None = None,
        bootstrap: SessionBootstrap | None = None,
        connector: Connector = websocket_connector,
    ) -> None:
        settings = settings or load_settings()
        audio = settings.audio
        self.state = SessionState()
        self.aggregator = ConversationAggregator()
        self.state.bind_transcript(lambda: self.aggregator.items, lambda: self.aggregator.current_text)
        self._builder = OutboundMessageBuilder()
        self._bootstrap = bootstrap or bootstrap_from_settings(settings.realtime)
        self.connection = ConnectionManager(
            bootstrap=self._bootstrap,
            url=settings.realtime.url,
            on_message=self._on_message,
            on_state=self._on_connection_state,
            on_closed=self._on_channel_closed,
            connector=connector,
            builder=self._builder,
        )
        self.playback = AudioPlaybackScheduler(sink, gap_ms=audio.playback_gap_ms, on_playing_changed=self.state.set_playing)
        self.capture = AudioCaptureEncoder(
            capture_factory,
            send=self.connection.send,
            builder=self._builder,
            options=CaptureOptions(
                sample_rate=audio.sample_rate,
                block_samples=audio.chunk_samples,
                device=audio.input_device,
            ),
        )
        self.router = EventRouter(
            self.state,
            self.aggregator,
            self.playback,
            send=self.connection.send,
            builder=self._builder,
            sample_rate=audio.sample_rate,
        )
        self._logger = get_logger(__name__)

    async def __aenter__(self) -> "RealtimeConversation":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        return self.state.subscribe(listener)

    def snapshot(self) -> StateSnapshot:
        return self.state.snapshot()

    @property
    def session(self) -> Session | None:
        return self.connection.session

    async def connect(self) -> Session | None:
        if not self.connection.state.active:
            self.state.last_error = None
        try:
            return await self.connection.connect()
        except (BootstrapError, ChannelError) as exc:
            self.state.last_error = str(exc)
            raise
        finally:
            self.state.publish()

    async def disconnect(self) -> None:
        """Close the channel, release the microphone, silence playback, drop partial text."""
        await self.connection.close()
        await self._release_media()
        self.state.publish()

    async def aclose(self) -> None:
        """Disconnect and release the bootstrap's HTTP client, if it holds one."""
        await self.disconnect()
        close = getattr(self._bootstrap, "aclose", None)
        if close is not None:
            await close()

    async def start_recording(self) -> bool:
        if not self.connection.is_open:
            self._logger.warning("capture.start.not_connected", state=self.connection.state.value)
            return False
        try:
            await self.capture.start()
        except CaptureUnavailableError as exc:
            self._logger.error("capture.start.failed", error=str(exc))
            self.state.recording = False
            self.state.last_error = "Failed to start recording"
            self.state.publish()
            return False
        self.state.recording = True
        self.state.publish()
        return True

    async def stop_recording(self) -> None:
        await self.capture.stop(commit=self.connection.is_open)
        self.state.recording = False
        self.state.publish()

    async def send_text(self, text: str) -> None:
        """Send a typed user turn and ask for a spoken + written reply."""
        item = self._builder.item_create_text(text)
        if not self.connection.is_open:
            self._logger.warning("conversation.text.not_connected", state=self.connection.state.value)
            return
        await self.connection.send(item)
        await self.connection.send(self._builder.response_create())

    async def _on_message(self, raw: str | bytes) -> None:
        try:
            event = parse_event(raw)
        except MalformedEventError as exc:
            self._logger.warning("realtime.event.malformed", error=str(exc))
            return
        await self.router.dispatch(event)

    def _on_connection_state(self, state: ConnectionState, error: str | None) -> None:
        self.state.connection = state
        if error:
            self.state.last_error = error
        self.state.publish()

    async def _on_channel_closed(self, error: str | None) -> None:
        await self._release_media()
        self.state.publish()

    async def _release_media(self) -> None:
        await self.capture.abort()
        self.state.recording = False
        await self.playback.reset()
        self.router.reset()
        self.aggregator.discard_response()
        self.state.clear_activity()


def build_default_conversation(settings: AppSettings | None = None) -> RealtimeConversation:
    """Wire a conversation to the local sound devices."""
    from parley.audio.devices import SoundDeviceSink, open_capture_source

    settings = settings or load_settings()
    audio = settings.audio

    def capture_factory(options: CaptureOptions) -> CaptureSource:
        return open_capture_source(options, preferred=audio.capture_mode)

    return RealtimeConversation(
        sink=SoundDeviceSink(sample_rate=audio.sample_rate, device=audio.output_device),
        capture_factory=capture_factory,
        settings=settings,
    )


__all__ = ["CaptureFactory", "RealtimeConversation", "build_default_conversation"]
