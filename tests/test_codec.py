"""
Tests for the Realtime Wire Codec
=================================

Encoding of every client message variant and decoding of every recognized
server event, including the raw fallback for unknown event types.
"""

import base64
import json
import sys

import pytest

from src.realtime_engine.codec import RealtimeCodec, decode_session_options, encode_session
from src.realtime_engine.errors import DecodeError, EncodeError, ProtocolError
from src.realtime_engine.models import (
    AUDIO_PCMU,
    AudioFormat,
    ChatRole,
    ContentItem,
    ConversationItemCreateMessage,
    DataContent,
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
    RemoteTool,
    ResponseCreatedMessage,
    ResponseCreateMessage,
    ResponseOutputItemMessage,
    SemanticVAD,
    ServerMessageType,
    ServerVAD,
    SessionKind,
    SessionMessage,
    SessionOptions,
    SessionUpdateMessage,
    TextContent,
    ToolChoiceMode,
    TranscriptionOptions,
)


@pytest.fixture
def codec():
    """Fixture providing a codec with no ignored events."""
    return RealtimeCodec()


@pytest.fixture
def weather_tool():
    return FunctionTool(
        name="get_weather",
        description="Look up the weather",
        parameters={"type": "object", "properties": {"city": {"type": "string"}}},
    )


@pytest.fixture
def remote_tool():
    return RemoteTool(server_label="docs", server_url="https://mcp.example.com", require_approval="never")


class TestSessionUpdateEncoding:
    """Test session.update encoding."""

    def test_realtime_session_layout(self, codec, weather_tool):
        options = SessionOptions(
            model="gpt-realtime",
            instructions="Be brief.",
            voice="marin",
            voice_speed=1.2,
            input_audio_format=AudioFormat(),
            output_audio_format=AudioFormat(AUDIO_PCMU),
            noise_reduction=NoiseReduction.NEAR_FIELD,
            transcription=TranscriptionOptions(model="whisper-1", language="en"),
            voice_activity_detection=ServerVAD(silence_duration_ms=400),
            output_modalities=("audio",),
            max_output_tokens=1024,
            tools=(weather_tool,),
            tool_choice=ToolChoiceMode.AUTO,
            tracing={"workflow": "support"},
        )

        document = codec.encode(SessionUpdateMessage(options=options, event_id="evt_1"))

        assert document["type"] == "session.update"
        assert document["event_id"] == "evt_1"
        session = document["session"]
        assert session["type"] == "realtime"
        assert session["model"] == "gpt-realtime"
        assert session["instructions"] == "Be brief."
        assert session["max_output_tokens"] == 1024
        assert session["output_modalities"] == ["audio"]
        assert session["tool_choice"] == "auto"
        assert session["tools"] == [
            {
                "type": "function",
                "name": "get_weather",
                "description": "Look up the weather",
                "parameters": {"type": "object", "properties": {"city": {"type": "string"}}},
            }
        ]
        audio_input = session["audio"]["input"]
        assert audio_input["format"] == {"type": "audio/pcm", "rate": 24000}
        assert audio_input["noise_reduction"] == {"type": "near_field"}
        assert audio_input["transcription"] == {"language": "en", "model": "whisper-1"}
        assert audio_input["turn_detection"] == {
            "type": "server_vad",
            "create_response": True,
            "idle_timeout_ms": None,
            "interrupt_response": True,
            "prefix_padding_ms": 300,
            "silence_duration_ms": 400,
            "threshold": 0.5,
        }
        assert session["audio"]["output"] == {"format": {"type": "audio/pcmu"}, "speed": 1.2, "voice": "marin"}
        assert "tracing" not in session

    def test_transcription_session_sends_input_block_only(self, codec):
        options = SessionOptions(
            session_kind=SessionKind.TRANSCRIPTION,
            model="ignored",
            instructions="ignored",
            transcription=TranscriptionOptions(model="gpt-4o-transcribe"),
            voice_activity_detection=SemanticVAD(eagerness="high"),
        )

        session = codec.encode(SessionUpdateMessage(options=options))["session"]

        assert session["type"] == "transcription"
        assert set(session) == {"type", "audio"}
        assert set(session["audio"]) == {"input"}
        assert session["audio"]["input"]["turn_detection"] == {
            "type": "semantic_vad",
            "create_response": True,
            "interrupt_response": True,
            "eagerness": "high",
        }

    def test_speed_always_written_for_realtime(self):
        session = encode_session(SessionOptions())
        assert session["audio"]["output"] == {"speed": 1.0}

    def test_infinite_max_output_tokens(self):
        session = encode_session(SessionOptions(max_output_tokens=sys.maxsize))
        assert session["max_output_tokens"] == "inf"

    def test_remote_tool_copies_only_set_fields(self, remote_tool):
        session = encode_session(SessionOptions(tools=(remote_tool,)))
        assert session["tools"] == [
            {
                "type": "mcp",
                "server_label": "docs",
                "server_url": "https://mcp.example.com",
                "require_approval": "never",
            }
        ]

    def test_tool_choice_instances(self, weather_tool, remote_tool):
        function_choice = encode_session(SessionOptions(tools=(weather_tool,), tool_choice=weather_tool))
        assert function_choice["tool_choice"] == {"type": "function", "name": "get_weather"}

        remote = RemoteTool(server_label="docs", name="search")
        remote_choice = encode_session(SessionOptions(tools=(remote,), tool_choice=remote))
        assert remote_choice["tool_choice"] == {"type": "mcp", "server_label": "docs", "name": "search"}

    def test_tool_like_mapping_is_read_by_field(self):
        options = SessionOptions(tools=({"name": "lookup", "parameters": {"type": "object"}},))
        assert isinstance(options.tools[0], FunctionTool)
        assert encode_session(options)["tools"][0]["name"] == "lookup"


class TestAudioBufferEncoding:
    """Test input_audio_buffer.* encoding."""

    def test_append_uses_payload_after_last_comma(self, codec):
        message = InputAudioBufferAppendMessage(content=DataContent(uri="data:audio/pcm;base64,AAEC"))
        assert codec.encode(message) == {"type": "input_audio_buffer.append", "audio": "AAEC"}

    def test_append_raw_bytes_are_base64_encoded(self, codec):
        message = InputAudioBufferAppendMessage(content=DataContent(data=b"\x00\x01\x02"))
        assert codec.encode(message)["audio"] == base64.b64encode(b"\x00\x01\x02").decode()

    def test_append_from_bytes(self, codec):
        message = InputAudioBufferAppendMessage(content=DataContent.from_bytes(b"\x01\x00"))
        assert codec.encode(message)["audio"] == "AQA="

    def test_append_rejects_non_audio(self, codec):
        message = InputAudioBufferAppendMessage(content=DataContent(uri="data:image/png;base64,AAAA"))
        with pytest.raises(EncodeError):
            codec.encode(message)

    def test_append_rejects_remote_audio_uri(self, codec):
        message = InputAudioBufferAppendMessage(content=DataContent(uri="https://example.com/clip.pcm"))
        with pytest.raises(EncodeError):
            codec.encode(message)

    def test_append_rejects_data_uri_without_payload(self, codec):
        message = InputAudioBufferAppendMessage(content=DataContent(uri="data:audio/pcm;base64,"))
        with pytest.raises(EncodeError):
            codec.encode(message)

    def test_append_requires_content(self, codec):
        with pytest.raises(EncodeError):
            codec.encode(InputAudioBufferAppendMessage())

    def test_commit_and_clear(self, codec):
        assert codec.encode(InputAudioBufferCommitMessage()) == {"type": "input_audio_buffer.commit"}
        assert codec.encode(InputAudioBufferClearMessage(event_id="e2")) == {
            "event_id": "e2",
            "type": "input_audio_buffer.clear",
        }


class TestConversationItemEncoding:
    """Test conversation.item.create encoding."""

    def test_message_item_with_mixed_content(self, codec):
        item = ContentItem(
            contents=[
                TextContent("What is this?"),
                DataContent(uri="data:audio/pcm;base64,AAAA"),
                DataContent(uri="https://example.com/cat.png", media_type="image/png"),
                DataContent(data=b"\x89PNG", media_type="image/png"),
            ],
            id="item_1",
            role=ChatRole.USER,
        )

        document = codec.encode(ConversationItemCreateMessage(item=item, previous_id="item_0"))

        assert document["type"] == "conversation.item.create"
        assert document["previous_item_id"] == "item_0"
        assert document["item"] == {
            "id": "item_1",
            "type": "message",
            "role": "user",
            "content": [
                {"type": "input_text", "text": "What is this?"},
                {"type": "input_audio", "audio": "AAAA"},
                {"type": "input_image", "image_url": "https://example.com/cat.png"},
                {"type": "input_image", "image": base64.b64encode(b"\x89PNG").decode()},
            ],
        }

    def test_function_result_takes_priority(self, codec):
        item = ContentItem(contents=[FunctionResultContent(call_id="call_1", result={"temp": 21})])
        document = codec.encode(ConversationItemCreateMessage(item=item))
        assert document["item"] == {"type": "function_call_output", "call_id": "call_1", "output": '{"temp": 21}'}
        assert "previous_item_id" not in document

    def test_string_function_result_sent_verbatim(self, codec):
        item = ContentItem(contents=[FunctionResultContent(call_id="call_1", result="sunny")])
        assert codec.encode(ConversationItemCreateMessage(item=item))["item"]["output"] == "sunny"

    def test_function_call_arguments_are_a_json_string(self, codec):
        item = ContentItem(contents=[FunctionCallContent(call_id="call_2", name="get_weather", arguments={"city": "Oslo"})])
        encoded = codec.encode(ConversationItemCreateMessage(item=item))["item"]
        assert encoded["type"] == "function_call"
        assert encoded["name"] == "get_weather"
        assert json.loads(encoded["arguments"]) == {"city": "Oslo"}

    def test_item_required(self, codec):
        with pytest.raises(EncodeError):
            codec.encode(ConversationItemCreateMessage())

    @pytest.mark.parametrize(
        "content",
        [
            DataContent(uri="https://example.com/clip.pcm", media_type="audio/pcm"),
            DataContent(data=b"", media_type="image/png"),
        ],
    )
    def test_content_without_inline_payload_rejected(self, codec, content):
        item = ContentItem(contents=[content])
        with pytest.raises(EncodeError):
            codec.encode(ConversationItemCreateMessage(item=item))

    def test_unsupported_media_type_rejected(self, codec):
        item = ContentItem(contents=[DataContent(uri="data:application/pdf;base64,AAAA")])
        with pytest.raises(EncodeError):
            codec.encode(ConversationItemCreateMessage(item=item))


class TestResponseCreateEncoding:
    """Test response.create encoding."""

    def test_defaults_to_auto_conversation(self, codec):
        assert codec.encode(ResponseCreateMessage()) == {"type": "response.create", "response": {"conversation": "auto"}}

    def test_full_response(self, codec, weather_tool):
        message = ResponseCreateMessage(
            items=[ContentItem(contents=[TextContent("hi")], role=ChatRole.USER)],
            instructions="Answer in French.",
            output_audio_format=AudioFormat(rate=24000),
            output_voice="cedar",
            exclude_from_conversation=True,
            max_output_tokens=sys.maxsize,
            metadata={"topic": "weather"},
            output_modalities=["text"],
            tool_choice=ToolChoiceMode.REQUIRED,
            tools=[weather_tool],
        )

        response = codec.encode(message)["response"]

        assert response["audio"] == {"output": {"format": {"type": "audio/pcm", "rate": 24000}, "voice": "cedar"}}
        assert response["conversation"] == "none"
        assert response["input"] == [
            {"type": "message", "role": "user", "content": [{"type": "input_text", "text": "hi"}]}
        ]
        assert response["instructions"] == "Answer in French."
        assert response["max_output_tokens"] == "inf"
        assert response["metadata"] == {"topic": "weather"}
        assert response["output_modalities"] == ["text"]
        assert response["tool_choice"] == "required"
        assert response["tools"][0]["name"] == "get_weather"

    def test_tool_choice_name_resolved_from_session(self, codec, weather_tool):
        current = SessionOptions(tools=(weather_tool,))
        response = codec.encode(ResponseCreateMessage(tool_choice="get_weather"), current)["response"]
        assert response["tool_choice"] == {"type": "function", "name": "get_weather"}

    def test_mode_name_as_string(self, codec):
        response = codec.encode(ResponseCreateMessage(tool_choice="none"))["response"]
        assert response["tool_choice"] == "none"

    def test_unknown_tool_choice_name_rejected(self, codec):
        with pytest.raises(EncodeError):
            codec.encode(ResponseCreateMessage(tool_choice="missing"), SessionOptions())


class TestRawEncoding:
    """Test raw passthrough."""

    def test_raw_string(self, codec):
        document = codec.encode(RawClientMessage(raw_representation='{"type":"response.cancel"}'))
        assert document == {"type": "response.cancel"}

    def test_raw_mapping_with_event_id(self, codec):
        document = codec.encode(RawClientMessage(raw_representation={"type": "response.cancel"}, event_id="e9"))
        assert document == {"type": "response.cancel", "event_id": "e9"}

    def test_raw_requires_type(self, codec):
        with pytest.raises(EncodeError):
            codec.encode(RawClientMessage(raw_representation={"foo": 1}))

    def test_raw_invalid_json(self, codec):
        with pytest.raises(EncodeError):
            codec.encode(RawClientMessage(raw_representation="{not json"))


class TestErrorDecoding:
    """Test error event decoding."""

    def test_rate_limit_scenario(self, codec):
        message = codec.decode_text('{"type":"error","error":{"message":"rate_limit","code":"429"}}')

        assert isinstance(message, ErrorMessage)
        assert message.type == ServerMessageType.ERROR
        assert message.error.message == "rate_limit"
        assert message.error.error_code == "429"

    def test_error_param_and_exception_form(self, codec):
        message = codec.decode(
            {
                "type": "error",
                "event_id": "evt_7",
                "error": {"type": "invalid_request_error", "message": "bad voice", "code": "invalid_value", "param": "voice"},
            }
        )

        assert message.parameter == "voice"
        exc = message.to_exception()
        assert isinstance(exc, ProtocolError)
        assert str(exc) == "bad voice"
        assert exc.error_code == "invalid_value"
        assert exc.event_id == "evt_7"

    def test_error_without_message_is_malformed(self, codec):
        with pytest.raises(DecodeError) as exc_info:
            codec.decode({"type": "error", "error": {"code": "500"}})
        assert exc_info.value.event_type == "error"


class TestServerEventDecoding:
    """Test decoding of transcription, output and response events."""

    def test_unknown_type_is_raw(self, codec):
        document = {"type": "rate_limits.updated", "event_id": "e1", "rate_limits": [{"name": "tokens"}]}
        message = codec.decode(document)

        assert message.type == ServerMessageType.RAW_CONTENT_ONLY
        assert message.event_type == "rate_limits.updated"
        assert message.event_id == "e1"
        assert message.raw_representation == document

    def test_ignored_type_decodes_to_none(self):
        codec = RealtimeCodec(ignored_event_types=["rate_limits.updated"])
        assert codec.decode({"type": "rate_limits.updated"}) is None

    def test_missing_type_is_malformed(self, codec):
        with pytest.raises(DecodeError):
            codec.decode({"event_id": "x"})

    def test_invalid_json(self, codec):
        with pytest.raises(DecodeError):
            codec.decode_text("{oops")

    def test_input_transcription_delta(self, codec):
        message = codec.decode(
            {
                "type": "conversation.item.input_audio_transcription.delta",
                "item_id": "item_1",
                "content_index": 0,
                "delta": "Hel",
            }
        )
        assert isinstance(message, InputAudioTranscriptionMessage)
        assert message.transcription == "Hel"
        assert message.item_id == "item_1"
        assert message.content_index == 0
        assert message.usage is None

    def test_input_transcription_completed_with_token_usage(self, codec):
        message = codec.decode(
            {
                "type": "conversation.item.input_audio_transcription.completed",
                "item_id": "item_1",
                "content_index": 0,
                "transcript": "Hello there",
                "usage": {
                    "type": "tokens",
                    "input_tokens": 20,
                    "output_tokens": 5,
                    "total_tokens": 25,
                    "input_token_details": {"audio_tokens": 18, "text_tokens": 2},
                },
            }
        )
        assert message.type == ServerMessageType.INPUT_AUDIO_TRANSCRIPTION_COMPLETED
        assert message.transcription == "Hello there"
        assert message.usage.total_token_count == 25
        assert message.usage.input_audio_token_count == 18
        assert message.usage.output_audio_token_count is None

    def test_duration_usage_is_ignored(self, codec):
        message = codec.decode(
            {
                "type": "conversation.item.input_audio_transcription.completed",
                "transcript": "hi",
                "usage": {"type": "duration", "seconds": 1.2},
            }
        )
        assert message.usage is None

    def test_input_transcription_failed(self, codec):
        message = codec.decode(
            {
                "type": "conversation.item.input_audio_transcription.failed",
                "item_id": "item_2",
                "error": {"message": "audio unintelligible", "code": "transcription_failed", "param": None},
            }
        )
        assert message.transcription is None
        assert message.error.message == "audio unintelligible"
        assert message.error.error_code == "transcription_failed"

    def test_output_audio_delta(self, codec):
        message = codec.decode(
            {
                "type": "response.output_audio.delta",
                "response_id": "resp_1",
                "item_id": "item_3",
                "output_index": 0,
                "content_index": 0,
                "delta": base64.b64encode(b"\x01\x02").decode(),
            }
        )
        assert isinstance(message, OutputTextAudioMessage)
        assert message.audio_bytes == b"\x01\x02"
        assert message.text is None
        assert message.response_id == "resp_1"

    def test_output_transcript_done(self, codec):
        message = codec.decode({"type": "response.output_audio_transcript.done", "transcript": "All done."})
        assert message.type == ServerMessageType.OUTPUT_AUDIO_TRANSCRIPTION_DONE
        assert message.text == "All done."
        assert message.audio is None

    def test_wrong_field_type_is_malformed(self, codec):
        with pytest.raises(DecodeError):
            codec.decode({"type": "response.output_audio.delta", "output_index": "zero"})

    def test_response_done(self, codec):
        message = codec.decode(
            {
                "type": "response.done",
                "event_id": "evt_5",
                "response": {
                    "id": "resp_1",
                    "conversation_id": "conv_1",
                    "status": "failed",
                    "status_details": {"type": "failed", "error": {"type": "server_error", "code": "overloaded"}},
                    "max_output_tokens": "inf",
                    "metadata": {"topic": "weather"},
                    "output_modalities": ["audio"],
                    "audio": {"output": {"format": {"type": "audio/pcm"}, "voice": "marin"}},
                    "usage": {
                        "input_tokens": 10,
                        "output_tokens": 30,
                        "total_tokens": 40,
                        "output_token_details": {"audio_tokens": 25, "text_tokens": 5},
                    },
                    "output": [
                        {
                            "id": "item_9",
                            "type": "message",
                            "role": "assistant",
                            "content": [{"type": "output_audio", "transcript": "It is sunny."}],
                        },
                        {"id": "item_10", "type": "function_call", "call_id": "call_1", "name": "get_weather", "arguments": "{\"city\": \"Oslo\"}"},
                        {"id": "item_11", "type": "mcp_list_tools"},
                    ],
                },
            }
        )

        assert isinstance(message, ResponseCreatedMessage)
        assert message.type == ServerMessageType.RESPONSE_DONE
        assert message.response_id == "resp_1"
        assert message.conversation_id == "conv_1"
        assert message.status == "failed"
        assert message.error.message == "server_error"
        assert message.error.error_code == "overloaded"
        assert message.max_output_tokens == sys.maxsize
        assert message.metadata == {"topic": "weather"}
        assert message.output_modalities == ["audio"]
        assert message.output_audio_format == AudioFormat(rate=24000)
        assert message.output_voice == "marin"
        assert message.usage.output_audio_token_count == 25
        assert len(message.items) == 2
        assert message.items[0].role == ChatRole.ASSISTANT
        assert message.items[0].contents == [TextContent("It is sunny.")]
        call = message.items[1].contents[0]
        assert call == FunctionCallContent(call_id="call_1", name="get_weather", arguments={"city": "Oslo"})

    def test_response_without_response_object_is_malformed(self, codec):
        with pytest.raises(DecodeError):
            codec.decode({"type": "response.created"})

    def test_output_item_added(self, codec):
        message = codec.decode(
            {
                "type": "response.output_item.added",
                "response_id": "resp_1",
                "output_index": 1,
                "item": {
                    "id": "item_4",
                    "type": "message",
                    "role": "user",
                    "content": [
                        {"type": "input_text", "text": "hello"},
                        {"type": "input_audio", "audio": "AAAA"},
                        {"type": "input_image", "image_url": "https://example.com/a.png"},
                    ],
                },
            }
        )
        assert isinstance(message, ResponseOutputItemMessage)
        assert message.type == ServerMessageType.RESPONSE_OUTPUT_ITEM_ADDED
        assert message.output_index == 1
        contents = message.item.contents
        assert contents[0] == TextContent("hello")
        assert contents[1].uri == "data:audio/pcm;base64,AAAA"
        assert contents[1].media_type == "audio/pcm"
        assert contents[2].uri == "https://example.com/a.png"

    def test_output_item_done_with_function_output(self, codec):
        message = codec.decode(
            {
                "type": "response.output_item.done",
                "item": {"id": "item_5", "type": "function_call", "call_id": "c1", "name": "f", "arguments": {"a": 1}},
            }
        )
        assert message.type == ServerMessageType.RESPONSE_OUTPUT_ITEM_DONE
        assert message.item.contents[0].arguments == {"a": 1}


class TestSessionDecoding:
    """Test session.created / session.updated decoding."""

    def test_session_created(self, codec):
        message = codec.decode(
            {
                "type": "session.created",
                "event_id": "evt_0",
                "session": {
                    "id": "sess_1",
                    "type": "realtime",
                    "model": "gpt-realtime",
                    "instructions": "",
                    "output_modalities": ["audio"],
                    "max_output_tokens": "inf",
                    "tools": [{"type": "function", "name": "server_side"}],
                    "tool_choice": "auto",
                    "audio": {
                        "input": {
                            "format": {"type": "audio/pcm", "rate": 24000},
                            "noise_reduction": None,
                            "transcription": None,
                            "turn_detection": {
                                "type": "server_vad",
                                "threshold": 0.5,
                                "prefix_padding_ms": 300,
                                "silence_duration_ms": 200,
                                "idle_timeout_ms": None,
                                "create_response": True,
                                "interrupt_response": True,
                            },
                        },
                        "output": {"format": {"type": "audio/pcm", "rate": 24000}, "voice": "marin", "speed": 1.0},
                    },
                },
            }
        )

        assert isinstance(message, SessionMessage)
        assert message.session_id == "sess_1"
        options = message.options
        assert options.session_kind == SessionKind.REALTIME
        assert options.model == "gpt-realtime"
        assert options.voice == "marin"
        assert options.max_output_tokens == sys.maxsize
        assert options.voice_activity_detection == ServerVAD(silence_duration_ms=200)
        assert options.noise_reduction is None
        assert options.tools == ()
        assert options.tool_choice is None

    def test_transcription_session(self):
        options = decode_session_options(
            {
                "type": "transcription",
                "audio": {"input": {"format": {"type": "audio/pcma"}, "noise_reduction": {"type": "far_field"}}},
            }
        )
        assert options.session_kind == SessionKind.TRANSCRIPTION
        assert options.input_audio_format == AudioFormat("audio/pcma")
        assert options.input_audio_format.rate is None
        assert options.noise_reduction == NoiseReduction.FAR_FIELD

    def test_unknown_turn_detection_is_malformed(self, codec):
        with pytest.raises(DecodeError):
            codec.decode(
                {"type": "session.updated", "session": {"audio": {"input": {"turn_detection": {"type": "psychic"}}}}}
            )

    def test_invalid_max_output_tokens_is_malformed(self, codec):
        with pytest.raises(DecodeError):
            codec.decode({"type": "session.updated", "session": {"max_output_tokens": "lots"}})
