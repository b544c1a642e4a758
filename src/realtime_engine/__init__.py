"""
Realtime Engine Package

Provides classes and utilities for:
- A persistent websocket session with a realtime conversational-AI service
- Encoding typed client messages and decoding server events
- Streaming outbound messages while consuming inbound events
- Reconciling session configuration echoed by the service
- Conditioning captured audio (downmix, resampling, duration gate)
"""

from .api import FrameAssembler, RealtimeAPI
from .bridge import InboundChannel, OutboundQueue, StreamingBridge
from .client import RealtimeClient
from .codec import RealtimeCodec
from .errors import (
    AudioTooShortError,
    AuthenticationError,
    DecodeError,
    EncodeError,
    ProtocolError,
    RealtimeError,
    TransportError,
    UnsupportedChannelLayout,
    ValidationError,
)
from .event_handler import RealtimeEventHandler, RealtimeObserver
from .observers import LoggingObserver, TracingObserver
from .profile import SessionProfile, load_session_profile
from .reconciler import reconcile
from .session import RealtimeSession
from .utils import (
    array_buffer_to_base64,
    downmix_to_mono,
    float_to_16bit_pcm,
    prepare_audio,
    resample_linear,
)

__all__ = [
    "RealtimeClient",
    "RealtimeSession",
    "RealtimeAPI",
    "FrameAssembler",
    "RealtimeCodec",
    "RealtimeEventHandler",
    "RealtimeObserver",
    "LoggingObserver",
    "TracingObserver",
    "InboundChannel",
    "OutboundQueue",
    "StreamingBridge",
    "SessionProfile",
    "load_session_profile",
    "reconcile",
    "RealtimeError",
    "TransportError",
    "AuthenticationError",
    "DecodeError",
    "EncodeError",
    "ProtocolError",
    "ValidationError",
    "UnsupportedChannelLayout",
    "AudioTooShortError",
    "float_to_16bit_pcm",
    "array_buffer_to_base64",
    "downmix_to_mono",
    "resample_linear",
    "prepare_audio",
]
