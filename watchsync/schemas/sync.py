"""Data-channel messages exchanged directly between the two peers."""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from ..services.errors import MalformedMessage


class VideoState(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    video_id: str = Field(..., alias="videoId", min_length=1, description="Opaque content identifier")
    current_time: float = Field(..., alias="currentTime", ge=0, description="Playback position in seconds")
    is_playing: bool = Field(..., alias="isPlaying")


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str = Field(..., description="Message body, trimmed")
    sender: str = Field(..., description="Display name of the author")
    timestamp: float = Field(..., ge=0, description="Milliseconds on the sender's clock")

    @field_validator("text")
    @classmethod
    def _strip_text(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("chat text must not be blank")
        return stripped


class VideoStateMessage(BaseModel):
    type: Literal["videoState"] = "videoState"
    payload: VideoState


class ChatDataMessage(BaseModel):
    type: Literal["chat"] = "chat"
    payload: ChatMessage


class PingMessage(BaseModel):
    type: Literal["ping"] = "ping"
    payload: float


DataMessage = Annotated[
    Union[VideoStateMessage, ChatDataMessage, PingMessage],
    Field(discriminator="type"),
]

_data_adapter: TypeAdapter[Any] = TypeAdapter(DataMessage)


def decode_message(raw: str | bytes) -> VideoStateMessage | ChatDataMessage | PingMessage:
    """Parse one data-channel frame; unknown tags are rejected as malformed."""

    try:
        return _data_adapter.validate_json(raw)
    except ValidationError as exc:
        raise MalformedMessage(f"Invalid data message: {exc.error_count()} error(s)") from exc


def encode_message(message: VideoStateMessage | ChatDataMessage | PingMessage) -> str:
    return message.model_dump_json(by_alias=True)
