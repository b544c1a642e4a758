"""
Realtime session facade.

One `RealtimeSession` owns one connection. It runs the receive loop that
decodes inbound events, reconciles session snapshots, fans every message out
to observers and publishes it to the inbound channel consumed by `stream()`.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Iterable, Optional, Union

import numpy as np

from src.realtime_engine.api import RealtimeAPI
from src.realtime_engine.bridge import InboundChannel, MessageSource, StreamingBridge
from src.realtime_engine.codec import RealtimeCodec
from src.realtime_engine.errors import DecodeError, TransportError, ValidationError
from src.realtime_engine.event_handler import RealtimeEventHandler, RealtimeObserver
from src.realtime_engine.models import (
    AUDIO_PCM,
    DEFAULT_PCM_RATE,
    ChatRole,
    ClientMessage,
    ConnectionState,
    ContentItem,
    ConversationItemCreateMessage,
    DataContent,
    InputAudioBufferAppendMessage,
    InputAudioBufferClearMessage,
    InputAudioBufferCommitMessage,
    ResponseCreateMessage,
    ServerMessage,
    SessionMessage,
    SessionOptions,
    SessionUpdateMessage,
    TextContent,
)
from src.realtime_engine.reconciler import reconcile
from src.realtime_engine.utils import AudioBuffer, pcm_to_data_uri, prepare_audio
from utils.ml_logging import get_logger
from utils.trace_context import TraceContext

logger = get_logger("realtime_engine.session")

END_REASON_CLIENT = "closed"
END_REASON_REMOTE = "remote_closed"


class RealtimeSession(RealtimeEventHandler):
    """
    A live conversation with the realtime service over a single websocket.

    Handlers registered with `on()` receive typed messages under
    "server.<type>", "server.*", "client.<type>" and "client.*", plus
    "session.error", "session.state" and "session.ended".
    """

    def __init__(
        self,
        api: RealtimeAPI,
        codec: Optional[RealtimeCodec] = None,
        options: Optional[SessionOptions] = None,
        target_sample_rate: int = DEFAULT_PCM_RATE,
        observers: Iterable[RealtimeObserver] = (),
    ) -> None:
        super().__init__()
        self.api = api
        self.codec = codec or RealtimeCodec()
        self.target_sample_rate = target_sample_rate
        self.session_id: Optional[str] = None
        self.end_reason: Optional[str] = None
        self.channel = InboundChannel()
        self.bridge = StreamingBridge(self.channel, self.send, self._on_pump_error)

        self._options = options
        self._receive_task: Optional[asyncio.Task] = None
        self._closing: Optional[asyncio.Future] = None
        self._ended = False

        for observer in observers:
            self.add_observer(observer)

        self.api.on("connection.state", self._on_state_changed)
        self.api.on("connection.error", self._report_error)

    # ---------------------------
    # State
    # ---------------------------

    @property
    def state(self) -> ConnectionState:
        return self.api.state

    @property
    def is_connected(self) -> bool:
        return not self._ended and self.api.is_connected()

    @property
    def options(self) -> Optional[SessionOptions]:
        """The current reconciled options snapshot."""
        return self._options

    # ---------------------------
    # Lifecycle
    # ---------------------------

    async def start(self) -> None:
        """
        Connect if needed and start the receive loop.

        Raises:
            AuthenticationError: Credentials were rejected.
            TransportError: The connection could not be opened.
        """
        if self._receive_task is not None:
            raise RuntimeError("Session already started")
        if self._ended:
            raise TransportError("Session has ended")

        if not self.api.is_connected():
            try:
                await self.api.connect()
            except TransportError as exc:
                self._report_error(exc)
                self._finalize(f"error: {exc}")
                raise

        self._receive_task = asyncio.create_task(self._receive_loop())
        logger.info("Realtime session started", extra={"session_id": self.session_id or "-"})

    async def end(self, reason: str = END_REASON_CLIENT) -> None:
        """
        End the session: stop the receive loop, close the socket and then the
        inbound channel. Safe to call more than once and from any teardown path;
        concurrent callers wait on the same shutdown, which runs to completion
        even if a caller is cancelled.
        """
        if self._ended:
            return
        if self._closing is None:
            self._closing = asyncio.ensure_future(self._shutdown(reason, asyncio.current_task()))
        await asyncio.shield(self._closing)

    async def _shutdown(self, reason: str, caller: Optional[asyncio.Task]) -> None:
        try:
            task = self._receive_task
            if task is not None and not task.done() and task is not caller:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            await self.api.close(reason)
        finally:
            self._finalize(reason)

    async def __aenter__(self) -> "RealtimeSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.end()
        return False

    async def _receive_loop(self) -> None:
        try:
            async for text in self.api.receive_messages():
                self._handle_text(text)
            reason = END_REASON_REMOTE
        except asyncio.CancelledError:
            # end() finalizes once the socket is closed
            if self._closing is None:
                self._finalize(END_REASON_CLIENT)
            raise
        except TransportError as exc:
            self._report_error(exc)
            reason = f"error: {exc}"

        await self.end(reason)

    def _finalize(self, reason: str) -> None:
        if self._ended:
            return
        self._ended = True
        self.end_reason = reason
        self.channel.close()
        logger.info(f"Realtime session ended: {reason}", extra={"session_id": self.session_id or "-"})
        self.notify("on_session_ended", reason)
        self.dispatch("session.ended", reason)

    # ---------------------------
    # Inbound
    # ---------------------------

    def _handle_text(self, text: str) -> None:
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            self._report_error(DecodeError(f"Invalid JSON from server: {exc}", document=text))
            return

        try:
            message = self.codec.decode(document)
        except DecodeError as exc:
            logger.warning(f"Dropping undecodable '{exc.event_type}' event: {exc}")
            self._report_error(exc)
            return

        if message is None:
            return

        if isinstance(message, SessionMessage) and message.options is not None:
            if message.session_id:
                self.session_id = message.session_id
            self._options = reconcile(message.options, self._options)
            message.options = self._options

        self.notify("on_message_received", message)
        self.dispatch(f"server.{message.event_type}", message)
        self.dispatch("server.*", message)
        self.channel.publish(message)

    def _report_error(self, error: Exception) -> None:
        self.notify("on_error", error)
        self.dispatch("session.error", error)

    def _on_pump_error(self, error: Exception) -> None:
        # send() reports every transport failure itself
        if not isinstance(error, TransportError):
            self._report_error(error)

    def _on_state_changed(self, state: ConnectionState) -> None:
        self.notify("on_state_changed", state)
        self.dispatch("session.state", state)

    # ---------------------------
    # Outbound
    # ---------------------------

    async def send(self, message: ClientMessage) -> None:
        """
        Encode and send any client message.

        Raises:
            EncodeError: The message cannot be expressed on the wire; nothing is sent.
            TransportError: The session is not connected or the write failed, in
                which case the session is ended.
        """
        if not self.is_connected:
            error = TransportError("Realtime session is not connected")
            self._report_error(error)
            raise error

        document = self.codec.encode(message, self._options)
        wire_type = document["type"]

        if isinstance(message, SessionUpdateMessage):
            self._options = message.options

        with TraceContext("realtime.send", session_id=self.session_id, event_type=wire_type):
            try:
                await self.api.send(json.dumps(document))
            except TransportError as exc:
                self._report_error(exc)
                await self.end(f"error: {exc}")
                raise

        self.notify("on_message_sent", message)
        self.dispatch(f"client.{wire_type}", message)
        self.dispatch("client.*", message)

    async def update(self, options: SessionOptions) -> None:
        """Request a new session configuration; the echo is reconciled on arrival."""
        await self.send(SessionUpdateMessage(options=options))

    async def send_audio(self, audio: Union[AudioBuffer, DataContent]) -> None:
        """
        Append audio to the input buffer. Raw bytes must already be PCM16 in the
        session input format; numpy buffers are converted to PCM16 first.
        """
        if isinstance(audio, np.ndarray):
            if not audio.size:
                raise ValidationError("Cannot append an empty audio buffer")
            audio = DataContent(uri=pcm_to_data_uri(audio), media_type=AUDIO_PCM)
        elif isinstance(audio, (bytes, bytearray)):
            if not audio:
                raise ValidationError("Cannot append an empty audio buffer")
            audio = DataContent.from_bytes(bytes(audio))
        await self.send(InputAudioBufferAppendMessage(content=audio))

    async def commit_audio(self) -> None:
        await self.send(InputAudioBufferCommitMessage())

    async def clear_audio(self) -> None:
        await self.send(InputAudioBufferClearMessage())

    def _input_sample_rate(self) -> int:
        audio_format = self._options.input_audio_format if self._options else None
        if audio_format is None:
            return self.target_sample_rate
        if audio_format.type != AUDIO_PCM:
            raise ValidationError(f"Captured PCM cannot be sent to a {audio_format.type} input buffer")
        return audio_format.rate

    async def send_audio_clip(
        self, pcm: AudioBuffer, sample_rate: int, channels: int = 1, create_response: bool = True
    ) -> None:
        """
        Send a complete recorded clip: downmix, resample, append, commit and
        optionally request a response.

        Raises:
            UnsupportedChannelLayout: A channel count other than one or two.
            AudioTooShortError: Less than 100 ms after conditioning.
        """
        prepared = prepare_audio(pcm, sample_rate, channels, self._input_sample_rate())
        await self.send_audio(prepared)
        await self.commit_audio()
        if create_response:
            await self.create_response()

    async def create_response(self, **fields: Any) -> None:
        await self.send(ResponseCreateMessage(**fields))

    async def create_conversation_item(self, item: ContentItem, previous_id: Optional[str] = None) -> None:
        await self.send(ConversationItemCreateMessage(item=item, previous_id=previous_id))

    async def send_text(self, text: str, role: ChatRole = ChatRole.USER, create_response: bool = True) -> None:
        await self.create_conversation_item(ContentItem(contents=[TextContent(text)], role=role))
        if create_response:
            await self.create_response()

    def stream(
        self, outbound: MessageSource = (), cancel: Optional[asyncio.Event] = None
    ) -> AsyncIterator[ServerMessage]:
        """
        Send `outbound` while yielding inbound messages until the session ends
        or `cancel` is set. Only one stream may be active per session.
        """
        return self.bridge.stream(outbound, cancel)
