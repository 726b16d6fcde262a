"""Read-only room lookups for share links and diagnostics."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ..schemas.rtc import RoomSummary
from ..services.rooms import Room
from ..services.signaling import SignalingHub
from .deps import get_hub

router = APIRouter()


def _summarize(room: Room) -> RoomSummary:
    return RoomSummary(
        id=room.id,
        size=room.size,
        host_id=room.host_id,
        is_full=room.is_full,
        joinable=room.joinable,
    )


@router.get("", response_model=list[RoomSummary], response_model_by_alias=True)
async def list_rooms(hub: SignalingHub = Depends(get_hub)) -> list[RoomSummary]:
    """List live rooms."""

    return [_summarize(room) for room in hub.directory.rooms()]


@router.get("/{room_id}", response_model=RoomSummary, response_model_by_alias=True)
async def room_info(room_id: str, hub: SignalingHub = Depends(get_hub)) -> RoomSummary:
    """Describe one room so a guest can check it before joining."""

    room = hub.directory.get(room_id)
    if room is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return _summarize(room)
