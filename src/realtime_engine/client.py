from typing import Any, Callable, Iterable, Optional, Sequence

from src.realtime_engine import settings
from src.realtime_engine.api import RealtimeAPI
from src.realtime_engine.codec import RealtimeCodec
from src.realtime_engine.event_handler import RealtimeObserver
from src.realtime_engine.models import SessionOptions
from src.realtime_engine.profile import load_session_profile
from src.realtime_engine.session import RealtimeSession
from utils.ml_logging import get_logger
from utils.telemetry_config import setup_tracing

logger = get_logger("realtime_engine.client")


class RealtimeClient:
    """
    Factory for realtime sessions.

    Every argument falls back to the environment (see `settings`). A YAML
    session profile, when configured, supplies the initial options for
    sessions created without explicit ones.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        endpoint: Optional[str] = None,
        session_config_path: Optional[str] = None,
        observers: Optional[Iterable[RealtimeObserver]] = None,
        tools: Sequence[Any] = (),
        ignored_event_types: Optional[Iterable[str]] = None,
        connector: Optional[Callable[..., Any]] = None,
        enable_tracing: Optional[bool] = None,
    ) -> None:
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.model = model or settings.REALTIME_MODEL
        self.endpoint = endpoint or settings.REALTIME_ENDPOINT
        self.session_config_path = session_config_path or settings.REALTIME_SESSION_CONFIG
        self.observers = list(observers or [])
        self.tools = tuple(tools)
        self.ignored_event_types = frozenset(
            settings.REALTIME_IGNORED_EVENTS if ignored_event_types is None else ignored_event_types
        )
        self._connector = connector

        if enable_tracing is None:
            enable_tracing = settings.REALTIME_ENABLE_TRACING
        if enable_tracing:
            setup_tracing()

    def default_options(self) -> Optional[SessionOptions]:
        """Options from the configured YAML profile, or None when there is none."""
        if not self.session_config_path:
            return None
        profile = load_session_profile(self.session_config_path)
        options = profile.to_options(tools=self.tools)
        if options.model is None:
            options = options.with_changes(model=self.model)
        return options

    def _build_api(self) -> RealtimeAPI:
        return RealtimeAPI(
            api_key=self.api_key,
            model=self.model,
            url=self.endpoint,
            connect_timeout=settings.REALTIME_CONNECT_TIMEOUT,
            connect_max_tries=settings.REALTIME_CONNECT_MAX_TRIES,
            max_message_size=settings.REALTIME_MAX_MESSAGE_SIZE,
            connector=self._connector,
        )

    async def create_session(self, options: Optional[SessionOptions] = None) -> RealtimeSession:
        """
        Connect, start a session and send its initial configuration.

        Args:
            options (SessionOptions, optional): Initial options; defaults to the
                YAML profile when one is configured.

        Returns:
            RealtimeSession: A started session.

        Raises:
            AuthenticationError: The service rejected the API key.
            TransportError: The connection could not be opened.
        """
        initial = options if options is not None else self.default_options()

        session = RealtimeSession(
            self._build_api(),
            codec=RealtimeCodec(self.ignored_event_types),
            target_sample_rate=settings.REALTIME_TARGET_SAMPLE_RATE,
            observers=self.observers,
        )
        await session.start()

        if initial is not None:
            try:
                await session.update(initial)
            except Exception:
                await session.end("error: initial session.update failed")
                raise

        logger.keyinfo(f"Realtime session ready (model={self.model})")
        return session
