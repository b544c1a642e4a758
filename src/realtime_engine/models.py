"""
Realtime Message Model
======================

Typed representations exchanged with the realtime service:

- Session configuration snapshots (`SessionOptions`) and their building blocks
- Tool capabilities (`FunctionTool`, `RemoteTool`)
- Conversation content (`ContentItem` and its content parts)
- Client messages (flowing to the service)
- Server messages (flowing from the service)
"""

from __future__ import annotations

import base64
import dataclasses
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from src.realtime_engine.errors import ProtocolError, ValidationError

AUDIO_PCM = "audio/pcm"
AUDIO_PCMU = "audio/pcmu"
AUDIO_PCMA = "audio/pcma"
SUPPORTED_AUDIO_FORMATS = (AUDIO_PCM, AUDIO_PCMU, AUDIO_PCMA)
DEFAULT_PCM_RATE = 24000

# "inf" on the wire
MAX_OUTPUT_TOKENS_INF = sys.maxsize


# ============================================================================
# Enumerations
# ============================================================================


class ConnectionState(Enum):
    """Lifecycle of the single socket owned by a session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ENDED = "ended"


class SessionKind(Enum):
    REALTIME = "realtime"
    TRANSCRIPTION = "transcription"


class NoiseReduction(Enum):
    NEAR_FIELD = "near_field"
    FAR_FIELD = "far_field"


class ToolChoiceMode(Enum):
    NONE = "none"
    AUTO = "auto"
    REQUIRED = "required"


class ChatRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


# ============================================================================
# Session configuration
# ============================================================================


@dataclass(frozen=True)
class AudioFormat:
    """Audio format as understood by the service; `rate` only applies to PCM."""

    type: str = AUDIO_PCM
    rate: Optional[int] = None

    def __post_init__(self) -> None:
        if self.type not in SUPPORTED_AUDIO_FORMATS:
            raise ValidationError(f"Unsupported audio format type: {self.type}")
        if self.type == AUDIO_PCM:
            if self.rate is None:
                object.__setattr__(self, "rate", DEFAULT_PCM_RATE)
        elif self.rate is not None:
            object.__setattr__(self, "rate", None)


@dataclass(frozen=True)
class TranscriptionOptions:
    model: Optional[str] = None
    language: Optional[str] = None
    prompt: Optional[str] = None


@dataclass(frozen=True)
class ServerVAD:
    """Server-side voice activity detection driven by silence timing."""

    create_response: bool = True
    interrupt_response: bool = True
    idle_timeout_ms: Optional[int] = None
    prefix_padding_ms: int = 300
    silence_duration_ms: int = 500
    threshold: float = 0.5


@dataclass(frozen=True)
class SemanticVAD:
    """Voice activity detection driven by a semantic end-of-turn classifier."""

    create_response: bool = True
    interrupt_response: bool = True
    eagerness: str = "auto"


VoiceActivityDetection = Union[ServerVAD, SemanticVAD]


# ============================================================================
# Tools
# ============================================================================


@dataclass(eq=False)
class FunctionTool:
    """
    A locally implemented function the model may call.

    `function` is carried for the surrounding orchestration layer; the engine
    never invokes it.
    """

    name: str
    description: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    function: Optional[Callable[..., Any]] = None


@dataclass(eq=False)
class RemoteTool:
    """A hosted tool server (MCP) the service talks to directly."""

    server_label: Optional[str] = None
    server_url: Optional[str] = None
    connector_id: Optional[str] = None
    authorization: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    require_approval: Any = None
    server_description: Optional[str] = None
    allowed_tools: Optional[List[str]] = None
    name: Optional[str] = None


RealtimeTool = Union[FunctionTool, RemoteTool]
ToolChoice = Union[ToolChoiceMode, FunctionTool, RemoteTool, str]

_REMOTE_TOOL_MARKERS = ("server_label", "server_url", "connector_id")
_REMOTE_TOOL_FIELDS = tuple(f.name for f in dataclasses.fields(RemoteTool))


def _lookup_field(source: Any, name: str) -> Any:
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def as_tool(source: Any) -> RealtimeTool:
    """
    Classify a tool-like object into the tool union.

    Args:
        source: A tool instance, a mapping, or any object exposing tool attributes.

    Returns:
        FunctionTool or RemoteTool.

    Raises:
        TypeError: If the object exposes neither capability.
    """
    if isinstance(source, (FunctionTool, RemoteTool)):
        return source

    if any(_lookup_field(source, marker) is not None for marker in _REMOTE_TOOL_MARKERS):
        return RemoteTool(**{name: _lookup_field(source, name) for name in _REMOTE_TOOL_FIELDS})

    name = _lookup_field(source, "name")
    schema = _lookup_field(source, "parameters")
    if schema is None:
        schema = _lookup_field(source, "json_schema")
    if name and schema is not None:
        return FunctionTool(
            name=name,
            description=_lookup_field(source, "description"),
            parameters=dict(schema),
            function=source if callable(source) else None,
        )

    raise TypeError(f"Object of type {type(source).__name__} is not a recognizable tool")


# ============================================================================
# Session options snapshot
# ============================================================================


@dataclass(frozen=True)
class SessionOptions:
    """
    Immutable configuration snapshot for a session.

    `tools`, `tool_choice` and `tracing` are client-held and cannot be
    reconstructed from server echoes.
    """

    session_kind: SessionKind = SessionKind.REALTIME
    model: Optional[str] = None
    instructions: Optional[str] = None
    voice: Optional[str] = None
    voice_speed: float = 1.0
    input_audio_format: Optional[AudioFormat] = None
    output_audio_format: Optional[AudioFormat] = None
    noise_reduction: Optional[NoiseReduction] = None
    transcription: Optional[TranscriptionOptions] = None
    voice_activity_detection: Optional[VoiceActivityDetection] = None
    output_modalities: Tuple[str, ...] = ()
    max_output_tokens: Optional[int] = None
    tools: Tuple[RealtimeTool, ...] = ()
    tool_choice: Optional[ToolChoice] = None
    tracing: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "output_modalities", tuple(self.output_modalities))
        object.__setattr__(self, "tools", tuple(as_tool(tool) for tool in self.tools))

    def with_changes(self, **changes: Any) -> "SessionOptions":
        return dataclasses.replace(self, **changes)

    def find_tool(self, name: str) -> Optional[RealtimeTool]:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None


# ============================================================================
# Conversation content
# ============================================================================


@dataclass(frozen=True)
class TextContent:
    text: str


@dataclass(frozen=True)
class DataContent:
    """Binary payload carried either as a data URI or as raw bytes."""

    uri: Optional[str] = None
    data: Optional[bytes] = None
    media_type: Optional[str] = None

    def __post_init__(self) -> None:
        if self.uri is None and self.data is None:
            raise ValidationError("DataContent requires a uri or raw data")
        if self.media_type is None and self.uri and self.uri.startswith("data:"):
            header = self.uri[len("data:"):].split(",", 1)[0]
            object.__setattr__(self, "media_type", header.split(";", 1)[0] or None)

    @classmethod
    def from_bytes(cls, data: bytes, media_type: str = AUDIO_PCM) -> "DataContent":
        encoded = base64.b64encode(data).decode("ascii")
        return cls(uri=f"data:{media_type};base64,{encoded}", data=bytes(data), media_type=media_type)

    @property
    def is_data_uri(self) -> bool:
        return bool(self.uri) and self.uri.startswith("data:")

    @property
    def base64_data(self) -> str:
        """Payload after the last comma of the URI, else the raw bytes base64-encoded."""
        if self.uri:
            comma_index = self.uri.rfind(",")
            if 0 <= comma_index < len(self.uri) - 1:
                return self.uri[comma_index + 1:]
        if self.data is not None:
            return base64.b64encode(self.data).decode("ascii")
        return ""


@dataclass(frozen=True)
class FunctionCallContent:
    call_id: str
    name: str
    arguments: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class FunctionResultContent:
    call_id: str
    result: Any = None


ContentPart = Union[TextContent, DataContent, FunctionCallContent, FunctionResultContent]


@dataclass
class ContentItem:
    contents: List[ContentPart] = field(default_factory=list)
    id: Optional[str] = None
    role: Optional[ChatRole] = None


@dataclass
class UsageDetails:
    input_token_count: Optional[int] = None
    output_token_count: Optional[int] = None
    total_token_count: Optional[int] = None
    input_audio_token_count: Optional[int] = None
    input_text_token_count: Optional[int] = None
    output_audio_token_count: Optional[int] = None
    output_text_token_count: Optional[int] = None


@dataclass
class ErrorContent:
    message: Optional[str]
    error_code: Optional[str] = None
    details: Optional[str] = None


# ============================================================================
# Client messages
# ============================================================================


@dataclass
class ClientMessage:
    event_id: Optional[str] = field(default=None, kw_only=True)


@dataclass
class SessionUpdateMessage(ClientMessage):
    options: SessionOptions = field(default_factory=SessionOptions)


@dataclass
class InputAudioBufferAppendMessage(ClientMessage):
    content: Optional[DataContent] = None


@dataclass
class InputAudioBufferCommitMessage(ClientMessage):
    pass


@dataclass
class InputAudioBufferClearMessage(ClientMessage):
    pass


@dataclass
class ResponseCreateMessage(ClientMessage):
    items: Sequence[ContentItem] = ()
    instructions: Optional[str] = None
    output_audio_format: Optional[AudioFormat] = None
    output_voice: Optional[str] = None
    exclude_from_conversation: bool = False
    max_output_tokens: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    output_modalities: Sequence[str] = ()
    tool_choice: Optional[ToolChoice] = None
    tools: Sequence[RealtimeTool] = ()


@dataclass
class ConversationItemCreateMessage(ClientMessage):
    item: Optional[ContentItem] = None
    previous_id: Optional[str] = None


@dataclass
class RawClientMessage(ClientMessage):
    raw_representation: Optional[Union[str, Mapping[str, Any]]] = None


# ============================================================================
# Server messages
# ============================================================================


class ServerMessageType(Enum):
    ERROR = "error"
    INPUT_AUDIO_TRANSCRIPTION_DELTA = "conversation.item.input_audio_transcription.delta"
    INPUT_AUDIO_TRANSCRIPTION_COMPLETED = "conversation.item.input_audio_transcription.completed"
    INPUT_AUDIO_TRANSCRIPTION_FAILED = "conversation.item.input_audio_transcription.failed"
    OUTPUT_AUDIO_DELTA = "response.output_audio.delta"
    OUTPUT_AUDIO_DONE = "response.output_audio.done"
    OUTPUT_AUDIO_TRANSCRIPTION_DELTA = "response.output_audio_transcript.delta"
    OUTPUT_AUDIO_TRANSCRIPTION_DONE = "response.output_audio_transcript.done"
    RESPONSE_CREATED = "response.created"
    RESPONSE_DONE = "response.done"
    RESPONSE_OUTPUT_ITEM_ADDED = "response.output_item.added"
    RESPONSE_OUTPUT_ITEM_DONE = "response.output_item.done"
    SESSION_CREATED = "session.created"
    SESSION_UPDATED = "session.updated"
    RAW_CONTENT_ONLY = "raw"


@dataclass
class ServerMessage:
    type: ServerMessageType
    event_id: Optional[str] = None
    raw_representation: Optional[Dict[str, Any]] = field(default=None, repr=False)

    @property
    def event_type(self) -> Optional[str]:
        """The wire `type` string, including for unrecognized events."""
        if self.raw_representation is not None:
            return self.raw_representation.get("type")
        return self.type.value


@dataclass
class ErrorMessage(ServerMessage):
    type: ServerMessageType = ServerMessageType.ERROR
    error: Optional[ErrorContent] = None
    parameter: Optional[str] = None

    def to_exception(self) -> ProtocolError:
        error = self.error or ErrorContent(message=None)
        return ProtocolError(
            error.message or "Unknown realtime error",
            error_code=error.error_code,
            parameter=self.parameter,
            event_id=self.event_id,
        )


@dataclass
class InputAudioTranscriptionMessage(ServerMessage):
    item_id: Optional[str] = None
    content_index: Optional[int] = None
    transcription: Optional[str] = None
    error: Optional[ErrorContent] = None
    usage: Optional[UsageDetails] = None


@dataclass
class OutputTextAudioMessage(ServerMessage):
    response_id: Optional[str] = None
    item_id: Optional[str] = None
    output_index: Optional[int] = None
    content_index: Optional[int] = None
    text: Optional[str] = None
    audio: Optional[str] = None

    @property
    def audio_bytes(self) -> bytes:
        return base64.b64decode(self.audio) if self.audio else b""


@dataclass
class ResponseCreatedMessage(ServerMessage):
    response_id: Optional[str] = None
    conversation_id: Optional[str] = None
    status: Optional[str] = None
    output_audio_format: Optional[AudioFormat] = None
    output_voice: Optional[str] = None
    max_output_tokens: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    output_modalities: Optional[List[str]] = None
    error: Optional[ErrorContent] = None
    usage: Optional[UsageDetails] = None
    items: Optional[List[ContentItem]] = None


@dataclass
class ResponseOutputItemMessage(ServerMessage):
    response_id: Optional[str] = None
    output_index: Optional[int] = None
    item: Optional[ContentItem] = None


@dataclass
class SessionMessage(ServerMessage):
    session_id: Optional[str] = None
    options: Optional[SessionOptions] = None
