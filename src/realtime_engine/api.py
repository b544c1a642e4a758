import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import urlencode

import backoff
import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, InvalidHandshake, InvalidStatus

from src.realtime_engine.errors import AuthenticationError, DecodeError, TransportError
from src.realtime_engine.event_handler import RealtimeEventHandler
from src.realtime_engine.models import ConnectionState
from utils.ml_logging import get_logger
from utils.trace_context import TraceContext

logger = get_logger("realtime_engine.api")

DEFAULT_ENDPOINT = "wss://api.openai.com/v1/realtime"
DEFAULT_MODEL = "gpt-realtime"

Fragment = Union[str, bytes, bytearray, memoryview]

_AUTH_FAILURE_STATUSES = (401, 403)
_NO_FRAGMENT = object()


class FrameAssembler:
    """
    Accumulates websocket fragments until the transport flags the end of a
    message. Binary fragments are only decoded as UTF-8 once the message is
    complete, so multi-byte sequences split across fragments survive.
    """

    def __init__(self) -> None:
        self._parts: List[Fragment] = []

    @property
    def pending(self) -> bool:
        return bool(self._parts)

    def reset(self) -> None:
        self._parts = []

    def feed(self, fragment: Fragment, final: bool) -> Optional[str]:
        """
        Add a fragment; returns the complete message text when `final` is set.

        Raises:
            DecodeError: If the completed message is not valid UTF-8.
        """
        self._parts.append(fragment)
        if not final:
            return None

        parts, self._parts = self._parts, []
        if all(isinstance(part, str) for part in parts):
            return "".join(parts)

        data = b"".join(part.encode("utf-8") if isinstance(part, str) else bytes(part) for part in parts)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"Inbound message is not valid UTF-8: {exc}") from exc


class RealtimeAPI(RealtimeEventHandler):
    """
    Owns the single websocket of a realtime session.

    Dispatches "connection.state" on every state change and "connection.error"
    for inbound frames that cannot be turned into text.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        url: str = DEFAULT_ENDPOINT,
        connect_timeout: float = 10.0,
        connect_max_tries: int = 3,
        retry_base_delay: float = 0.5,
        max_message_size: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
        connector: Optional[Callable[..., Awaitable[Any]]] = None,
    ) -> None:
        super().__init__()
        self.url = url
        self.api_key = api_key
        self.model = model
        self.connect_timeout = connect_timeout
        self.connect_max_tries = max(1, connect_max_tries)
        self.retry_base_delay = retry_base_delay
        self.max_message_size = max_message_size
        self.extra_headers = dict(headers or {})
        self._connector = connector or websockets.connect
        self._assembler = FrameAssembler()
        self._send_lock = asyncio.Lock()
        self._state = ConnectionState.DISCONNECTED
        self.ws = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_connected(self) -> bool:
        """
        Check if WebSocket connection is active.

        Returns:
            bool: True if connected, False otherwise.
        """
        return self.ws is not None and self._state == ConnectionState.CONNECTED

    @property
    def connection_url(self) -> str:
        separator = "&" if "?" in self.url else "?"
        return f"{self.url}{separator}{urlencode({'model': self.model})}"

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.debug(f"Connection state {self._state.value} -> {state.value}")
        self._state = state
        self.dispatch("connection.state", state)

    def _headers(self) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        headers.update(self.extra_headers)
        return headers

    async def connect(self) -> None:
        """
        Open the websocket and complete the handshake.

        Transient socket failures during the handshake are retried with
        exponential backoff up to `connect_max_tries`. Rejected credentials are
        never retried.

        Raises:
            AuthenticationError: The service answered the handshake with 401/403.
            TransportError: Any other connect failure.
        """
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            raise TransportError("Already connected")
        if self._state == ConnectionState.ENDED:
            raise TransportError("Connection has ended; open a new session to reconnect")
        if not self.api_key:
            self._set_state(ConnectionState.ENDED)
            raise AuthenticationError("No API key configured for the realtime service")

        self._set_state(ConnectionState.CONNECTING)
        logger.info(f"Connecting to Realtime API at {self.connection_url}")

        open_with_retry = backoff.on_exception(
            backoff.expo,
            (OSError, asyncio.TimeoutError),
            max_tries=self.connect_max_tries,
            factor=self.retry_base_delay,
            on_backoff=self._log_backoff,
            logger=None,
        )(self._open)

        with TraceContext("realtime.connect", metadata={"model": self.model}):
            try:
                self.ws = await open_with_retry()
            except TransportError:
                self._set_state(ConnectionState.ENDED)
                raise
            except (OSError, asyncio.TimeoutError) as exc:
                self._set_state(ConnectionState.ENDED)
                logger.error(f"Failed to connect to WebSocket after {self.connect_max_tries} attempt(s): {exc}")
                raise TransportError(f"Failed to connect to {self.url}: {exc}") from exc

        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"Connected to {self.url}")

    async def _open(self) -> Any:
        try:
            return await self._connector(
                self.connection_url,
                additional_headers=self._headers(),
                max_size=self.max_message_size,
                open_timeout=self.connect_timeout,
            )
        except InvalidStatus as exc:
            status = exc.response.status_code
            if status in _AUTH_FAILURE_STATUSES:
                logger.error(f"Realtime API rejected credentials (HTTP {status})")
                raise AuthenticationError(f"Authentication failed with HTTP {status}", status_code=status) from exc
            raise TransportError(f"Handshake rejected with HTTP {status}") from exc
        except InvalidHandshake as exc:
            raise TransportError(f"Invalid websocket handshake: {exc}") from exc

    @staticmethod
    def _log_backoff(details: Dict[str, Any]) -> None:
        logger.warning(
            f"Connect attempt {details['tries']} failed, retrying in {details['wait']:.2f}s"
        )

    async def send(self, payload: str) -> None:
        """
        Write one complete message. Concurrent callers are serialized so frames
        never interleave.

        Raises:
            TransportError: If not connected or the write fails; the connection
                is then ended.
        """
        if not self.is_connected():
            raise TransportError("RealtimeAPI is not connected")

        async with self._send_lock:
            ws = self.ws
            if ws is None:
                raise TransportError("RealtimeAPI is not connected")
            try:
                await ws.send(payload)
            except (ConnectionClosed, OSError) as exc:
                logger.error(f"Error sending WebSocket message: {exc}")
                self._set_state(ConnectionState.ENDED)
                raise TransportError(f"Send failed: {exc}") from exc
        logger.debug(f"Sent: {payload}")

    @staticmethod
    async def _read_frames(ws: Any) -> AsyncIterator[Tuple[Fragment, bool]]:
        """Yield the fragments of the next message, flagging the last one."""
        pending = _NO_FRAGMENT
        async for fragment in ws.recv_streaming():
            if pending is not _NO_FRAGMENT:
                yield pending, False
            pending = fragment
        if pending is not _NO_FRAGMENT:
            yield pending, True

    async def receive_messages(self) -> AsyncIterator[str]:
        """
        Yield complete inbound text messages in arrival order.

        A normal close ends the iteration; any other close or read failure
        raises TransportError. Either way the connection is ENDED afterwards.
        """
        ws = self.ws
        if ws is None:
            raise TransportError("RealtimeAPI is not connected")

        try:
            while True:
                async for fragment, final in self._read_frames(ws):
                    try:
                        message = self._assembler.feed(fragment, final)
                    except DecodeError as exc:
                        logger.warning(f"Dropping undecodable frame: {exc}")
                        self.dispatch("connection.error", exc)
                        continue
                    if message is not None:
                        logger.debug(f"Received: {message}")
                        yield message
        except ConnectionClosedOK:
            logger.info("WebSocket closed normally")
        except ConnectionClosed as exc:
            logger.error(f"WebSocket connection error: {exc}")
            raise TransportError(f"Connection closed unexpectedly: {exc}") from exc
        except OSError as exc:
            logger.error(f"WebSocket read failed: {exc}")
            raise TransportError(f"Receive failed: {exc}") from exc
        finally:
            self._assembler.reset()
            self._set_state(ConnectionState.ENDED)

    async def close(self, reason: str = "client closed") -> None:
        """
        Close the websocket. Safe to call more than once.
        """
        ws, self.ws = self.ws, None
        self._set_state(ConnectionState.ENDED)
        if ws is None:
            return
        try:
            # close reasons are limited to 123 bytes
            await ws.close(code=1000, reason=reason.encode("utf-8")[:123].decode("utf-8", "ignore"))
            logger.info(f"Disconnected from {self.url}: {reason}")
        except (ConnectionClosed, OSError) as exc:
            logger.debug(f"Ignoring error while closing WebSocket: {exc}")
