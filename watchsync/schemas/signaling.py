"""Wire contracts for the signaling websocket.

Every frame is a JSON object tagged by ``type``. Field names use the camelCase
spelling browsers already speak; Python code uses the snake_case attributes.
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..services.errors import MalformedMessage


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# client -> server


class CreateRoom(_WireModel):
    type: Literal["create-room"] = "create-room"


class JoinRoom(_WireModel):
    type: Literal["join-room"] = "join-room"
    room_id: str = Field(..., alias="roomId", min_length=1, description="Room to join")


class SignalRequest(_WireModel):
    type: Literal["signal"] = "signal"
    room_id: str = Field(..., alias="roomId", min_length=1)
    signal: Any = Field(..., description="Opaque negotiation payload")


class LeaveRoom(_WireModel):
    type: Literal["leave-room"] = "leave-room"
    room_id: str = Field(..., alias="roomId", min_length=1)


ClientMessage = Annotated[
    Union[CreateRoom, JoinRoom, SignalRequest, LeaveRoom],
    Field(discriminator="type"),
]


# server -> client


class Connected(_WireModel):
    type: Literal["connected"] = "connected"
    participant_id: str = Field(..., alias="participantId")


class RoomCreated(_WireModel):
    type: Literal["room-created"] = "room-created"
    room_id: str = Field(..., alias="roomId")


class RoomJoined(_WireModel):
    type: Literal["room-joined"] = "room-joined"
    room_id: str = Field(..., alias="roomId")
    is_initiator: bool = Field(default=False, alias="isInitiator")


class ErrorReply(_WireModel):
    type: Literal["error"] = "error"
    message: str
    code: str | None = None


class SignalRelay(_WireModel):
    type: Literal["signal"] = "signal"
    signal: Any = Field(..., description="Negotiation payload forwarded unmodified")


class PeerJoined(_WireModel):
    type: Literal["peer-joined"] = "peer-joined"


class PeerLeft(_WireModel):
    type: Literal["peer-left"] = "peer-left"


ServerMessage = Annotated[
    Union[Connected, RoomCreated, RoomJoined, ErrorReply, SignalRelay, PeerJoined, PeerLeft],
    Field(discriminator="type"),
]

_client_adapter: TypeAdapter[Any] = TypeAdapter(ClientMessage)
_server_adapter: TypeAdapter[Any] = TypeAdapter(ServerMessage)


def parse_client_message(data: object) -> CreateRoom | JoinRoom | SignalRequest | LeaveRoom:
    """Validate a decoded JSON frame sent by a participant."""

    try:
        return _client_adapter.validate_python(data)
    except ValidationError as exc:
        raise MalformedMessage(f"Invalid signaling message: {exc.error_count()} error(s)") from exc


def parse_server_message(raw: str | bytes) -> Any:
    """Validate a raw JSON frame received from the signaling server."""

    try:
        return _server_adapter.validate_json(raw)
    except ValidationError as exc:
        raise MalformedMessage(f"Invalid server message: {exc.error_count()} error(s)") from exc
