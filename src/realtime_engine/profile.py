"""
YAML session profiles.

A profile describes the initial session configuration in a file instead of
code. It is validated with pydantic and converted into a `SessionOptions`
snapshot:

    type: realtime
    model: gpt-realtime
    instructions: You are a helpful assistant.
    voice: marin
    input_audio_format: {type: audio/pcm, rate: 24000}
    turn_detection:
      type: server_vad
      silence_duration_ms: 400
    max_output_tokens: inf
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Sequence, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from src.realtime_engine.errors import ValidationError
from src.realtime_engine.models import (
    MAX_OUTPUT_TOKENS_INF,
    AudioFormat,
    NoiseReduction,
    SemanticVAD,
    ServerVAD,
    SessionKind,
    SessionOptions,
    ToolChoiceMode,
    TranscriptionOptions,
    as_tool,
)
from utils.ml_logging import get_logger

logger = get_logger("realtime_engine.profile")


class AudioFormatModel(BaseModel):
    type: Literal["audio/pcm", "audio/pcmu", "audio/pcma"] = "audio/pcm"
    rate: Optional[int] = Field(default=None, gt=0)

    def to_format(self) -> AudioFormat:
        return AudioFormat(type=self.type, rate=self.rate)


class TranscriptionModel(BaseModel):
    model: Optional[str] = None
    language: Optional[str] = None
    prompt: Optional[str] = None


class ServerVADModel(BaseModel):
    type: Literal["server_vad"] = "server_vad"
    create_response: bool = True
    interrupt_response: bool = True
    idle_timeout_ms: Optional[int] = None
    prefix_padding_ms: int = 300
    silence_duration_ms: int = 500
    threshold: float = Field(default=0.5, ge=0.0, le=1.0)

    def to_vad(self) -> ServerVAD:
        return ServerVAD(**self.model_dump(exclude={"type"}))


class SemanticVADModel(BaseModel):
    type: Literal["semantic_vad"] = "semantic_vad"
    create_response: bool = True
    interrupt_response: bool = True
    eagerness: Literal["low", "medium", "high", "auto"] = "auto"

    def to_vad(self) -> SemanticVAD:
        return SemanticVAD(**self.model_dump(exclude={"type"}))


TurnDetectionModel = Annotated[Union[ServerVADModel, SemanticVADModel], Field(discriminator="type")]


class SessionProfile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["realtime", "transcription"] = "realtime"
    model: Optional[str] = None
    instructions: Optional[str] = None
    voice: Optional[str] = None
    speed: float = Field(default=1.0, gt=0)
    input_audio_format: Optional[AudioFormatModel] = None
    output_audio_format: Optional[AudioFormatModel] = None
    noise_reduction: Optional[Literal["near_field", "far_field"]] = None
    transcription: Optional[TranscriptionModel] = None
    turn_detection: Optional[TurnDetectionModel] = None
    output_modalities: List[str] = Field(default_factory=list)
    max_output_tokens: Optional[Union[int, Literal["inf"]]] = None
    tools: List[Dict[str, Any]] = Field(default_factory=list)
    tool_choice: Optional[str] = None
    tracing: Optional[Dict[str, Any]] = None

    def to_options(self, tools: Sequence[Any] = ()) -> SessionOptions:
        """
        Convert the profile into a session snapshot.

        Args:
            tools: Extra tool objects registered in code, appended after the
                tools declared in the profile.

        Raises:
            ValidationError: If a tool is malformed or `tool_choice` names a
                tool that is not registered.
        """
        try:
            all_tools = tuple(as_tool(tool) for tool in list(self.tools) + list(tools))
        except TypeError as exc:
            raise ValidationError(f"Invalid tool in session profile: {exc}") from exc

        tool_choice: Any = None
        if self.tool_choice is not None:
            try:
                tool_choice = ToolChoiceMode(self.tool_choice)
            except ValueError:
                tool_choice = next((tool for tool in all_tools if tool.name == self.tool_choice), None)
                if tool_choice is None:
                    raise ValidationError(f"tool_choice '{self.tool_choice}' does not match any tool")

        max_tokens = self.max_output_tokens
        if max_tokens == "inf":
            max_tokens = MAX_OUTPUT_TOKENS_INF

        return SessionOptions(
            session_kind=SessionKind(self.type),
            model=self.model,
            instructions=self.instructions,
            voice=self.voice,
            voice_speed=self.speed,
            input_audio_format=self.input_audio_format.to_format() if self.input_audio_format else None,
            output_audio_format=self.output_audio_format.to_format() if self.output_audio_format else None,
            noise_reduction=NoiseReduction(self.noise_reduction) if self.noise_reduction else None,
            transcription=TranscriptionOptions(**self.transcription.model_dump()) if self.transcription else None,
            voice_activity_detection=self.turn_detection.to_vad() if self.turn_detection else None,
            output_modalities=tuple(self.output_modalities),
            max_output_tokens=max_tokens,
            tools=all_tools,
            tool_choice=tool_choice,
            tracing=self.tracing,
        )


def load_session_profile(path: Union[str, Path]) -> SessionProfile:
    """
    Load and validate a YAML session profile.

    The document may hold the fields at the top level or under a `session` key.

    Raises:
        ValidationError: If the file is not a mapping or fails validation.
    """
    cfg_path = Path(path).expanduser().resolve()
    with open(cfg_path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)

    if isinstance(data, dict) and isinstance(data.get("session"), dict):
        data = data["session"]
    if not isinstance(data, dict):
        raise ValidationError(f"Session profile must be a mapping: {cfg_path}")

    try:
        profile = SessionProfile.model_validate(data)
    except PydanticValidationError as exc:
        logger.error(f"Invalid session profile {cfg_path}: {exc}")
        raise ValidationError(f"Invalid session profile {cfg_path}: {exc}") from exc

    logger.info(f"Loaded session profile from {cfg_path} (type={profile.type}, model={profile.model})")
    return profile
