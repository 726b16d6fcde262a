"""In-memory WebRTC signaling hub for two-person rooms."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict

from ..core.config import Settings
from ..schemas.signaling import (
    CreateRoom,
    ErrorReply,
    JoinRoom,
    LeaveRoom,
    RoomCreated,
    RoomJoined,
    SignalRelay,
    SignalRequest,
)
from .errors import RoomFull, RoomNotFound, WatchSyncError
from .rooms import RoomDirectory

SendCallable = Callable[[dict], Awaitable[None]]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SignalingConnection:
    """Connection wrapper for signaling participants."""

    connection_id: str
    send: SendCallable
    _send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def deliver(self, message: dict) -> None:
        """Write one frame; concurrent writers are serialized to keep per-sender order."""

        async with self._send_lock:
            await self.send(message)


class SignalingHub:
    """Route participant commands to the room directory and relay negotiation payloads."""

    def __init__(
        self,
        *,
        grace_seconds: float = 0.0,
        auto_create: bool = False,
        directory: RoomDirectory | None = None,
    ) -> None:
        self._connections: Dict[str, SignalingConnection] = {}
        if directory is None:
            directory = RoomDirectory(grace_seconds=grace_seconds, auto_create=auto_create)
        if not directory.has_notifier:
            directory.bind(self.deliver)
        self.directory = directory

    @classmethod
    def from_settings(cls, settings: Settings) -> "SignalingHub":
        return cls(grace_seconds=settings.room_grace_seconds, auto_create=settings.auto_create_rooms)

    def connect(self, connection: SignalingConnection) -> None:
        self._connections[connection.connection_id] = connection
        logger.info("Participant %s connected", connection.connection_id)

    async def disconnect(self, participant_id: str) -> None:
        """Drop the connection and leave every room it occupied."""

        self._connections.pop(participant_id, None)
        left = await self.directory.disconnect_all(participant_id)
        logger.info("Participant %s disconnected (rooms left: %s)", participant_id, left or "none")

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def handle(self, participant_id: str, message: CreateRoom | JoinRoom | SignalRequest | LeaveRoom) -> None:
        """Apply one client command. Room rejections are answered with an ``error`` frame."""

        if isinstance(message, CreateRoom):
            await self._leave_current(participant_id)
            room_id = await self.directory.create_room()
            await self.directory.join(room_id, participant_id)
            await self.deliver(participant_id, RoomCreated(room_id=room_id))
        elif isinstance(message, JoinRoom):
            try:
                await self.directory.join(message.room_id, participant_id)
            except (RoomNotFound, RoomFull) as exc:
                logger.info("Participant %s rejected from room %s: %s", participant_id, message.room_id, exc.code)
                await self.reject(participant_id, exc)
                return
            await self._leave_current(participant_id, keep=message.room_id)
            # A joiner that lands in an empty room becomes its host and makes the offer.
            is_host = self.directory.is_host(message.room_id, participant_id)
            await self.deliver(participant_id, RoomJoined(room_id=message.room_id, is_initiator=is_host))
        elif isinstance(message, SignalRequest):
            await self.relay(participant_id, message.room_id, message.signal)
        elif isinstance(message, LeaveRoom):
            await self.directory.leave(message.room_id, participant_id)

    async def relay(self, sender_id: str, room_id: str, payload: Any) -> None:
        """Forward an opaque payload to the other occupant, or drop it."""

        room = self.directory.get(room_id)
        if room is None or sender_id not in room.members:
            logger.debug("Dropping signal from %s: not a member of %s", sender_id, room_id)
            return
        recipient_id = room.other_member(sender_id)
        if recipient_id is None:
            logger.debug("Dropping signal from %s: room %s has no peer yet", sender_id, room_id)
            return
        await self.deliver(recipient_id, SignalRelay(signal=payload))

    async def reject(self, participant_id: str, error: WatchSyncError) -> None:
        await self.deliver(participant_id, ErrorReply(message=error.message, code=error.code))

    async def deliver(self, participant_id: str, message: Any) -> None:
        connection = self._connections.get(participant_id)
        if connection is None:
            return
        await connection.deliver(message.to_wire())

    async def close(self) -> None:
        self._connections.clear()
        await self.directory.close()

    async def _leave_current(self, participant_id: str, keep: str | None = None) -> None:
        # A participant occupies at most one room at a time.
        for room in self.directory.rooms():
            if room.id != keep and participant_id in room.members:
                await self.directory.leave(room.id, participant_id)
