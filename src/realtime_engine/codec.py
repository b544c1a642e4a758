"""
Wire codec between the typed message model and the realtime JSON protocol.

Outbound messages are encoded to JSON-ready dictionaries; inbound documents
are dispatched on their `type` discriminator to a decoder table. Unknown
event types decode to a raw message carrying the original document.
"""

import json
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from src.realtime_engine.errors import DecodeError, EncodeError, ValidationError
from src.realtime_engine.models import (
    AUDIO_PCM,
    MAX_OUTPUT_TOKENS_INF,
    AudioFormat,
    ChatRole,
    ClientMessage,
    ContentItem,
    ContentPart,
    ConversationItemCreateMessage,
    DataContent,
    ErrorContent,
    ErrorMessage,
    FunctionCallContent,
    FunctionResultContent,
    FunctionTool,
    InputAudioBufferAppendMessage,
    InputAudioBufferClearMessage,
    InputAudioBufferCommitMessage,
    InputAudioTranscriptionMessage,
    NoiseReduction,
    OutputTextAudioMessage,
    RawClientMessage,
    RealtimeTool,
    RemoteTool,
    ResponseCreatedMessage,
    ResponseCreateMessage,
    ResponseOutputItemMessage,
    SemanticVAD,
    ServerMessage,
    ServerMessageType,
    ServerVAD,
    SessionKind,
    SessionMessage,
    SessionOptions,
    SessionUpdateMessage,
    TextContent,
    ToolChoice,
    ToolChoiceMode,
    TranscriptionOptions,
    UsageDetails,
    VoiceActivityDetection,
)
from utils.ml_logging import get_logger

logger = get_logger("realtime_engine.codec")

_REMOTE_TOOL_WIRE_FIELDS = (
    "server_label",
    "server_url",
    "connector_id",
    "authorization",
    "headers",
    "require_approval",
    "server_description",
    "allowed_tools",
)


# ---------------------------
# Encoding helpers
# ---------------------------


def encode_audio_format(audio_format: AudioFormat) -> Dict[str, Any]:
    encoded: Dict[str, Any] = {"type": audio_format.type}
    if audio_format.type == AUDIO_PCM and audio_format.rate is not None:
        encoded["rate"] = audio_format.rate
    return encoded


def encode_turn_detection(vad: VoiceActivityDetection) -> Dict[str, Any]:
    if isinstance(vad, ServerVAD):
        return {
            "type": "server_vad",
            "create_response": vad.create_response,
            "idle_timeout_ms": vad.idle_timeout_ms,
            "interrupt_response": vad.interrupt_response,
            "prefix_padding_ms": vad.prefix_padding_ms,
            "silence_duration_ms": vad.silence_duration_ms,
            "threshold": vad.threshold,
        }
    if isinstance(vad, SemanticVAD):
        return {
            "type": "semantic_vad",
            "create_response": vad.create_response,
            "interrupt_response": vad.interrupt_response,
            "eagerness": vad.eagerness,
        }
    raise EncodeError(f"Unsupported voice activity detection: {type(vad).__name__}")


def encode_max_output_tokens(value: int) -> Any:
    return "inf" if value >= MAX_OUTPUT_TOKENS_INF else value


def encode_tool(tool: RealtimeTool) -> Dict[str, Any]:
    """
    Serialize a tool to its wire shape.

    Function tools carry their JSON schema; remote tools copy only the fields
    that are set on the source object.
    """
    if isinstance(tool, FunctionTool):
        if not tool.name:
            raise EncodeError("Function tools require a name")
        encoded: Dict[str, Any] = {"type": "function", "name": tool.name}
        if tool.description:
            encoded["description"] = tool.description
        encoded["parameters"] = dict(tool.parameters)
        return encoded

    if isinstance(tool, RemoteTool):
        encoded = {"type": "mcp"}
        for name in _REMOTE_TOOL_WIRE_FIELDS:
            value = getattr(tool, name)
            if value is not None:
                encoded[name] = value
        return encoded

    raise EncodeError(f"Unsupported tool type: {type(tool).__name__}")


def encode_tool_choice(choice: ToolChoice, tools: Sequence[RealtimeTool] = ()) -> Any:
    if isinstance(choice, ToolChoiceMode):
        return choice.value

    if isinstance(choice, str):
        try:
            return ToolChoiceMode(choice).value
        except ValueError:
            pass
        resolved = next((tool for tool in tools if tool.name == choice), None)
        if resolved is None:
            raise EncodeError(f"Tool choice '{choice}' does not match any registered tool")
        choice = resolved

    if isinstance(choice, FunctionTool):
        return {"type": "function", "name": choice.name}

    if isinstance(choice, RemoteTool):
        encoded = {"type": "mcp", "server_label": choice.server_label}
        if choice.name:
            encoded["name"] = choice.name
        return encoded

    raise EncodeError(f"Unsupported tool choice: {choice!r}")


def encode_session(options: SessionOptions) -> Dict[str, Any]:
    """Build the `session` object of a `session.update` event."""
    session: Dict[str, Any] = {}
    audio_input: Dict[str, Any] = {}

    if options.input_audio_format is not None:
        audio_input["format"] = encode_audio_format(options.input_audio_format)

    if options.noise_reduction is not None:
        audio_input["noise_reduction"] = {"type": options.noise_reduction.value}

    if options.transcription is not None:
        transcription = {
            key: value
            for key, value in (
                ("language", options.transcription.language),
                ("model", options.transcription.model),
                ("prompt", options.transcription.prompt),
            )
            if value is not None
        }
        audio_input["transcription"] = transcription

    if options.voice_activity_detection is not None:
        audio_input["turn_detection"] = encode_turn_detection(options.voice_activity_detection)

    audio: Dict[str, Any] = {"input": audio_input}
    session["audio"] = audio

    if options.session_kind == SessionKind.TRANSCRIPTION:
        session["type"] = SessionKind.TRANSCRIPTION.value
        return session

    session["type"] = SessionKind.REALTIME.value

    audio_output: Dict[str, Any] = {}
    if options.output_audio_format is not None:
        audio_output["format"] = encode_audio_format(options.output_audio_format)
    audio_output["speed"] = options.voice_speed
    if options.voice is not None:
        audio_output["voice"] = options.voice
    audio["output"] = audio_output

    if options.instructions is not None:
        session["instructions"] = options.instructions
    if options.max_output_tokens is not None:
        session["max_output_tokens"] = encode_max_output_tokens(options.max_output_tokens)
    if options.model is not None:
        session["model"] = options.model
    if options.output_modalities:
        session["output_modalities"] = list(options.output_modalities)
    if options.tools:
        session["tools"] = [encode_tool(tool) for tool in options.tools]
    if options.tool_choice is not None:
        session["tool_choice"] = encode_tool_choice(options.tool_choice, options.tools)

    return session


def _inline_payload(content: DataContent, context: str) -> str:
    payload = content.base64_data
    if not payload:
        raise EncodeError(f"{context} requires inline base64 data, got uri={content.uri!r}")
    return payload


def _encode_content_part(part: ContentPart) -> Dict[str, Any]:
    if isinstance(part, TextContent):
        return {"type": "input_text", "text": part.text}

    if isinstance(part, DataContent):
        media_type = part.media_type or ""
        if media_type.startswith("audio/"):
            return {"type": "input_audio", "audio": _inline_payload(part, "input_audio")}
        if media_type.startswith("image/"):
            if part.uri:
                return {"type": "input_image", "image_url": part.uri}
            return {"type": "input_image", "image": _inline_payload(part, "input_image")}
        raise EncodeError(f"Unsupported content media type: {part.media_type!r}")

    raise EncodeError(f"{type(part).__name__} cannot appear inside a message item")


def _encode_function_output(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


def encode_content_item(item: ContentItem) -> Dict[str, Any]:
    """
    Serialize a conversation item.

    A function call or function result in the first content slot makes the
    whole item a `function_call` / `function_call_output` item.
    """
    encoded: Dict[str, Any] = {}
    if item.id is not None:
        encoded["id"] = item.id

    first = item.contents[0] if item.contents else None

    if isinstance(first, FunctionResultContent):
        encoded["type"] = "function_call_output"
        encoded["call_id"] = first.call_id
        encoded["output"] = _encode_function_output(first.result)
        return encoded

    if isinstance(first, FunctionCallContent):
        encoded["type"] = "function_call"
        encoded["call_id"] = first.call_id
        encoded["name"] = first.name
        encoded["arguments"] = json.dumps(first.arguments if first.arguments is not None else {})
        return encoded

    encoded["type"] = "message"
    if item.role is not None:
        encoded["role"] = item.role.value
    encoded["content"] = [_encode_content_part(part) for part in item.contents]
    return encoded


# ---------------------------
# Decoding helpers
# ---------------------------


def _opt_str(source: Mapping[str, Any], key: str) -> Optional[str]:
    value = source.get(key)
    if value is None or isinstance(value, str):
        return value
    raise DecodeError(f"Field '{key}' must be a string, got {type(value).__name__}")


def _opt_int(source: Mapping[str, Any], key: str) -> Optional[int]:
    value = source.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"Field '{key}' must be an integer, got {type(value).__name__}")
    return value


def _opt_object(source: Mapping[str, Any], key: str) -> Optional[Mapping[str, Any]]:
    value = source.get(key)
    return value if isinstance(value, Mapping) else None


def _code_str(value: Any) -> Optional[str]:
    # Error codes are strings on the wire but some gateways send integers
    return None if value is None else str(value)


def decode_max_output_tokens(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if value == "inf":
        return MAX_OUTPUT_TOKENS_INF
    raise DecodeError(f"Invalid max_output_tokens value: {value!r}")


def decode_audio_format(source: Optional[Mapping[str, Any]]) -> Optional[AudioFormat]:
    if not source or "type" not in source:
        return None
    try:
        return AudioFormat(type=source["type"], rate=_opt_int(source, "rate"))
    except ValidationError as exc:
        raise DecodeError(str(exc)) from exc


def decode_turn_detection(source: Optional[Mapping[str, Any]]) -> Optional[VoiceActivityDetection]:
    if not source:
        return None
    vad_type = source.get("type")
    if vad_type == "server_vad":
        fields = (
            "create_response",
            "interrupt_response",
            "idle_timeout_ms",
            "prefix_padding_ms",
            "silence_duration_ms",
            "threshold",
        )
        return ServerVAD(**{name: source[name] for name in fields if source.get(name) is not None})
    if vad_type == "semantic_vad":
        fields = ("create_response", "interrupt_response", "eagerness")
        return SemanticVAD(**{name: source[name] for name in fields if source.get(name) is not None})
    raise DecodeError(f"Unknown turn_detection type: {vad_type!r}")


def decode_usage(source: Any, require_type_check: bool = False) -> Optional[UsageDetails]:
    if not isinstance(source, Mapping):
        return None
    if require_type_check and source.get("type") != "tokens":
        return None

    usage = UsageDetails(
        input_token_count=_opt_int(source, "input_tokens"),
        output_token_count=_opt_int(source, "output_tokens"),
        total_token_count=_opt_int(source, "total_tokens"),
    )
    input_details = _opt_object(source, "input_token_details")
    if input_details is not None:
        usage.input_audio_token_count = _opt_int(input_details, "audio_tokens")
        usage.input_text_token_count = _opt_int(input_details, "text_tokens")
    output_details = _opt_object(source, "output_token_details")
    if output_details is not None:
        usage.output_audio_token_count = _opt_int(output_details, "audio_tokens")
        usage.output_text_token_count = _opt_int(output_details, "text_tokens")
    return usage


def _decode_error_content(source: Optional[Mapping[str, Any]]) -> Optional[ErrorContent]:
    if source is None or "message" not in source:
        return None
    return ErrorContent(
        message=_opt_str(source, "message"),
        error_code=_code_str(source.get("code")),
        details=_opt_str(source, "param"),
    )


def decode_content_parts(source: Any) -> List[ContentPart]:
    if not isinstance(source, list):
        return []

    parts: List[ContentPart] = []
    for element in source:
        if not isinstance(element, Mapping):
            continue
        part_type = element.get("type")
        if part_type in ("input_text", "text", "output_text"):
            text = element.get("text")
            if text is None:
                text = element.get("transcript")
            if text is not None:
                parts.append(TextContent(text))
        elif part_type in ("input_audio", "output_audio", "audio"):
            if element.get("audio"):
                parts.append(DataContent(uri=f"data:{AUDIO_PCM};base64,{element['audio']}"))
            elif element.get("transcript") is not None:
                parts.append(TextContent(element["transcript"]))
        elif part_type == "input_image" and element.get("image_url"):
            parts.append(DataContent(uri=element["image_url"]))
        else:
            logger.debug(f"Skipping unsupported content part type: {part_type}")
    return parts


def _decode_arguments(value: Any) -> Optional[Dict[str, Any]]:
    if value is None:
        return None
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, str):
        if not value:
            return None
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as exc:
            raise DecodeError(f"Function call arguments are not valid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise DecodeError("Function call arguments must be a JSON object")
        return parsed
    raise DecodeError(f"Unsupported function call arguments: {type(value).__name__}")


def decode_content_item(source: Any) -> Optional[ContentItem]:
    """Parse an item object; unsupported item types return None."""
    if not isinstance(source, Mapping) or "type" not in source:
        return None

    item_id = _opt_str(source, "id")
    item_type = source.get("type")

    if item_type == "message":
        content = source.get("content")
        if not isinstance(content, list):
            return None
        role = source.get("role")
        try:
            chat_role = ChatRole(role) if role is not None else None
        except ValueError:
            chat_role = None
        return ContentItem(contents=decode_content_parts(content), id=item_id, role=chat_role)

    if item_type == "function_call" and source.get("name") and source.get("call_id"):
        call = FunctionCallContent(
            call_id=source["call_id"],
            name=source["name"],
            arguments=_decode_arguments(source.get("arguments")),
        )
        return ContentItem(contents=[call], id=item_id)

    if item_type == "function_call_output" and source.get("call_id"):
        result = FunctionResultContent(call_id=source["call_id"], result=source.get("output"))
        return ContentItem(contents=[result], id=item_id)

    return None


def decode_session_options(session: Mapping[str, Any]) -> SessionOptions:
    """
    Build a snapshot from the scalar state echoed by the service.

    Tools and tool choice are left empty; they only exist client-side.
    """
    try:
        kind = SessionKind(session.get("type") or SessionKind.REALTIME.value)
    except ValueError as exc:
        raise DecodeError(f"Unknown session type: {session.get('type')!r}") from exc

    audio = _opt_object(session, "audio") or {}
    audio_input = _opt_object(audio, "input") or {}
    audio_output = _opt_object(audio, "output") or {}

    noise_reduction = None
    noise = _opt_object(audio_input, "noise_reduction")
    if noise is not None and noise.get("type"):
        try:
            noise_reduction = NoiseReduction(noise["type"])
        except ValueError as exc:
            raise DecodeError(f"Unknown noise_reduction type: {noise['type']!r}") from exc

    transcription = None
    transcription_source = _opt_object(audio_input, "transcription")
    if transcription_source is not None:
        transcription = TranscriptionOptions(
            model=_opt_str(transcription_source, "model"),
            language=_opt_str(transcription_source, "language"),
            prompt=_opt_str(transcription_source, "prompt"),
        )

    speed = audio_output.get("speed")
    modalities = session.get("output_modalities") or ()

    return SessionOptions(
        session_kind=kind,
        model=_opt_str(session, "model"),
        instructions=_opt_str(session, "instructions"),
        voice=_opt_str(audio_output, "voice"),
        voice_speed=float(speed) if speed is not None else 1.0,
        input_audio_format=decode_audio_format(_opt_object(audio_input, "format")),
        output_audio_format=decode_audio_format(_opt_object(audio_output, "format")),
        noise_reduction=noise_reduction,
        transcription=transcription,
        voice_activity_detection=decode_turn_detection(_opt_object(audio_input, "turn_detection")),
        output_modalities=tuple(m for m in modalities if isinstance(m, str) and m),
        max_output_tokens=decode_max_output_tokens(session.get("max_output_tokens")),
    )


# ---------------------------
# Codec
# ---------------------------


class RealtimeCodec:
    """
    Encodes client messages and decodes server events.
    """

    EventDecoders = {
        "error": lambda self, doc: self._decode_error(doc),
        "conversation.item.input_audio_transcription.delta": lambda self, doc: self._decode_input_transcription(doc),
        "conversation.item.input_audio_transcription.completed": lambda self, doc: self._decode_input_transcription(doc),
        "conversation.item.input_audio_transcription.failed": lambda self, doc: self._decode_input_transcription(doc),
        "response.output_audio.delta": lambda self, doc: self._decode_output_text_audio(doc),
        "response.output_audio.done": lambda self, doc: self._decode_output_text_audio(doc),
        "response.output_audio_transcript.delta": lambda self, doc: self._decode_output_text_audio(doc),
        "response.output_audio_transcript.done": lambda self, doc: self._decode_output_text_audio(doc),
        "response.created": lambda self, doc: self._decode_response(doc),
        "response.done": lambda self, doc: self._decode_response(doc),
        "response.output_item.added": lambda self, doc: self._decode_output_item(doc),
        "response.output_item.done": lambda self, doc: self._decode_output_item(doc),
        "session.created": lambda self, doc: self._decode_session(doc),
        "session.updated": lambda self, doc: self._decode_session(doc),
    }

    def __init__(self, ignored_event_types: Iterable[str] = ()) -> None:
        self.ignored_event_types = frozenset(ignored_event_types)

    # ---------------------------
    # Encoding
    # ---------------------------

    def encode(
        self, message: ClientMessage, current_options: Optional[SessionOptions] = None
    ) -> Dict[str, Any]:
        """
        Encode a client message into a JSON-ready dictionary.

        Args:
            message (ClientMessage): The message to encode.
            current_options (SessionOptions, optional): Session snapshot used to
                resolve tool choices given by name.

        Returns:
            dict: The wire document, always carrying `type`.

        Raises:
            EncodeError: If the message cannot be expressed on the wire.
        """
        if isinstance(message, RawClientMessage):
            document = self._encode_raw(message)
        else:
            document = {}
            if message.event_id is not None:
                document["event_id"] = message.event_id
            document.update(self._encode_typed(message, current_options))

        if message.event_id is not None:
            document.setdefault("event_id", message.event_id)
        return document

    def encode_text(
        self, message: ClientMessage, current_options: Optional[SessionOptions] = None
    ) -> str:
        return json.dumps(self.encode(message, current_options))

    def _encode_typed(
        self, message: ClientMessage, current_options: Optional[SessionOptions]
    ) -> Dict[str, Any]:
        if isinstance(message, SessionUpdateMessage):
            return {"type": "session.update", "session": encode_session(message.options)}

        if isinstance(message, InputAudioBufferAppendMessage):
            return self._encode_audio_append(message)

        if isinstance(message, InputAudioBufferCommitMessage):
            return {"type": "input_audio_buffer.commit"}

        if isinstance(message, InputAudioBufferClearMessage):
            return {"type": "input_audio_buffer.clear"}

        if isinstance(message, ResponseCreateMessage):
            return {"type": "response.create", "response": self._encode_response(message, current_options)}

        if isinstance(message, ConversationItemCreateMessage):
            if message.item is None:
                raise EncodeError("conversation.item.create requires an item")
            document: Dict[str, Any] = {"type": "conversation.item.create"}
            if message.previous_id is not None:
                document["previous_item_id"] = message.previous_id
            document["item"] = encode_content_item(message.item)
            return document

        raise EncodeError(f"Unsupported client message: {type(message).__name__}")

    def _encode_audio_append(self, message: InputAudioBufferAppendMessage) -> Dict[str, Any]:
        content = message.content
        if content is None:
            raise EncodeError("input_audio_buffer.append requires audio content")
        if content.media_type is not None and not content.media_type.startswith("audio/"):
            raise EncodeError(f"Cannot append non-audio content: {content.media_type}")
        audio = _inline_payload(content, "input_audio_buffer.append")
        return {"type": "input_audio_buffer.append", "audio": audio}

    def _encode_response(
        self, message: ResponseCreateMessage, current_options: Optional[SessionOptions]
    ) -> Dict[str, Any]:
        response: Dict[str, Any] = {}

        audio_output: Dict[str, Any] = {}
        if message.output_audio_format is not None:
            audio_output["format"] = encode_audio_format(message.output_audio_format)
        if message.output_voice:
            audio_output["voice"] = message.output_voice
        if audio_output:
            response["audio"] = {"output": audio_output}

        response["conversation"] = "none" if message.exclude_from_conversation else "auto"

        if message.items:
            response["input"] = [encode_content_item(item) for item in message.items]

        if message.instructions:
            response["instructions"] = message.instructions

        if message.max_output_tokens is not None:
            response["max_output_tokens"] = encode_max_output_tokens(message.max_output_tokens)

        if message.metadata:
            response["metadata"] = dict(message.metadata)

        if message.output_modalities:
            response["output_modalities"] = list(message.output_modalities)

        if message.tool_choice is not None:
            known_tools = list(message.tools)
            if current_options is not None:
                known_tools.extend(current_options.tools)
            response["tool_choice"] = encode_tool_choice(message.tool_choice, known_tools)

        if message.tools:
            response["tools"] = [encode_tool(tool) for tool in message.tools]

        return response

    def _encode_raw(self, message: RawClientMessage) -> Dict[str, Any]:
        raw = message.raw_representation
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise EncodeError(f"Raw message is not valid JSON: {exc}") from exc
        if not isinstance(raw, Mapping):
            raise EncodeError("Raw message must be a JSON object")
        if "type" not in raw:
            raise EncodeError("Raw message must carry a 'type'")
        return dict(raw)

    # ---------------------------
    # Decoding
    # ---------------------------

    def decode_text(self, text: str) -> Optional[ServerMessage]:
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            raise DecodeError(f"Invalid JSON from server: {exc}", document=text) from exc
        return self.decode(document)

    def decode(self, document: Any) -> Optional[ServerMessage]:
        """
        Decode a server event document.

        Returns:
            ServerMessage or None: None only for event types configured as ignored.

        Raises:
            DecodeError: If a recognized event is missing required fields or has
                fields of the wrong shape.
        """
        if not isinstance(document, Mapping):
            raise DecodeError("Server event must be a JSON object", document=document)

        event_type = document.get("type")
        if not isinstance(event_type, str):
            raise DecodeError("Server event is missing its 'type'", document=document)

        if event_type in self.ignored_event_types:
            return None

        decoder = self.EventDecoders.get(event_type)
        if decoder is None:
            return ServerMessage(
                type=ServerMessageType.RAW_CONTENT_ONLY,
                event_id=document.get("event_id") if isinstance(document.get("event_id"), str) else None,
                raw_representation=dict(document),
            )

        try:
            return decoder(self, document)
        except DecodeError as exc:
            exc.event_type = exc.event_type or event_type
            exc.document = exc.document if exc.document is not None else document
            raise
        except (KeyError, TypeError, ValueError) as exc:
            raise DecodeError(
                f"Malformed '{event_type}' event: {exc}", event_type=event_type, document=document
            ) from exc

    def _decode_error(self, doc: Mapping[str, Any]) -> ErrorMessage:
        error = _opt_object(doc, "error")
        if error is None or "message" not in error:
            raise DecodeError("Error event without an error message")
        return ErrorMessage(
            event_id=_opt_str(doc, "event_id"),
            raw_representation=dict(doc),
            error=ErrorContent(message=_opt_str(error, "message"), error_code=_code_str(error.get("code"))),
            parameter=_opt_str(error, "param"),
        )

    def _decode_input_transcription(self, doc: Mapping[str, Any]) -> InputAudioTranscriptionMessage:
        transcription = _opt_str(doc, "delta")
        if transcription is None:
            transcription = _opt_str(doc, "transcript")
        return InputAudioTranscriptionMessage(
            type=ServerMessageType(doc["type"]),
            event_id=_opt_str(doc, "event_id"),
            raw_representation=dict(doc),
            item_id=_opt_str(doc, "item_id"),
            content_index=_opt_int(doc, "content_index"),
            transcription=transcription,
            error=_decode_error_content(_opt_object(doc, "error")),
            usage=decode_usage(doc.get("usage"), require_type_check=True),
        )

    def _decode_output_text_audio(self, doc: Mapping[str, Any]) -> OutputTextAudioMessage:
        message_type = ServerMessageType(doc["type"])
        message = OutputTextAudioMessage(
            type=message_type,
            event_id=_opt_str(doc, "event_id"),
            raw_representation=dict(doc),
            response_id=_opt_str(doc, "response_id"),
            item_id=_opt_str(doc, "item_id"),
            output_index=_opt_int(doc, "output_index"),
            content_index=_opt_int(doc, "content_index"),
        )
        if message_type == ServerMessageType.OUTPUT_AUDIO_DELTA:
            message.audio = _opt_str(doc, "delta")
        else:
            text = _opt_str(doc, "delta")
            message.text = text if text is not None else _opt_str(doc, "transcript")
        return message

    def _decode_response(self, doc: Mapping[str, Any]) -> ResponseCreatedMessage:
        response = _opt_object(doc, "response")
        if response is None:
            raise DecodeError("Response event without a response object")

        message = ResponseCreatedMessage(
            type=ServerMessageType(doc["type"]),
            event_id=_opt_str(doc, "event_id"),
            raw_representation=dict(doc),
            response_id=_opt_str(response, "id"),
            conversation_id=_opt_str(response, "conversation_id"),
            status=_opt_str(response, "status"),
            max_output_tokens=decode_max_output_tokens(response.get("max_output_tokens")),
        )

        audio_output = _opt_object(_opt_object(response, "audio") or {}, "output")
        if audio_output is not None:
            message.output_audio_format = decode_audio_format(_opt_object(audio_output, "format"))
            message.output_voice = _opt_str(audio_output, "voice")

        metadata = _opt_object(response, "metadata")
        if metadata is not None:
            message.metadata = dict(metadata)

        modalities = response.get("output_modalities")
        if isinstance(modalities, list):
            message.output_modalities = [m for m in modalities if isinstance(m, str) and m] or None

        status_details = _opt_object(response, "status_details")
        error = _opt_object(status_details or {}, "error")
        if error is not None and "type" in error and "code" in error:
            message.error = ErrorContent(message=_opt_str(error, "type"), error_code=_code_str(error.get("code")))

        message.usage = decode_usage(response.get("usage"))

        output = response.get("output")
        if isinstance(output, list):
            message.items = [item for item in (decode_content_item(o) for o in output) if item is not None]

        return message

    def _decode_output_item(self, doc: Mapping[str, Any]) -> ResponseOutputItemMessage:
        return ResponseOutputItemMessage(
            type=ServerMessageType(doc["type"]),
            event_id=_opt_str(doc, "event_id"),
            raw_representation=dict(doc),
            response_id=_opt_str(doc, "response_id"),
            output_index=_opt_int(doc, "output_index"),
            item=decode_content_item(doc.get("item")),
        )

    def _decode_session(self, doc: Mapping[str, Any]) -> SessionMessage:
        session = _opt_object(doc, "session")
        if session is None:
            raise DecodeError("Session event without a session object")
        return SessionMessage(
            type=ServerMessageType(doc["type"]),
            event_id=_opt_str(doc, "event_id"),
            raw_representation=dict(doc),
            session_id=_opt_str(session, "id"),
            options=decode_session_options(session),
        )
