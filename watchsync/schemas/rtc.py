"""Data contracts for RTC and room lookup endpoints."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class IceServer(BaseModel):
    urls: list[str] = Field(..., description="STUN/TURN URLs handed to the peer transport")


class RtcConfigResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ice_servers: list[IceServer] = Field(..., alias="iceServers")
    signaling_path: str = Field(..., alias="signalingPath", description="Websocket path for signaling")


class RoomSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    size: int = Field(..., ge=0, le=2)
    host_id: str | None = Field(default=None, alias="hostId")
    is_full: bool = Field(..., alias="isFull")
    joinable: bool = Field(..., description="False once full or after a member has left")
