"""In-memory room directory for two-person watch parties."""
from __future__ import annotations

import asyncio
import logging
import secrets
import string
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Iterator

from ..schemas.signaling import PeerJoined, PeerLeft
from .errors import RoomFull, RoomNotFound

logger = logging.getLogger(__name__)

ROOM_CAPACITY = 2
ROOM_ID_LENGTH = 8
ROOM_ID_ALPHABET = string.ascii_lowercase + string.digits

Notify = Callable[[str, PeerJoined | PeerLeft], Awaitable[None]]


def generate_room_id() -> str:
    return "".join(secrets.choice(ROOM_ID_ALPHABET) for _ in range(ROOM_ID_LENGTH))


@dataclass(slots=True)
class Room:
    """A room and its ordered membership.

    A room is sealed once a member departs while another remains: the remaining
    host has already closed its peer link, so newcomers are turned away until
    the room empties.
    """

    id: str
    members: list[str] = field(default_factory=list)
    host_id: str | None = None
    sealed: bool = False

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def is_full(self) -> bool:
        return len(self.members) >= ROOM_CAPACITY

    @property
    def joinable(self) -> bool:
        return not self.is_full and not self.sealed

    def other_member(self, participant_id: str) -> str | None:
        for member in self.members:
            if member != participant_id:
                return member
        return None


class RoomDirectory:
    """Own the room map: capacity, host designation and membership notifications.

    The directory never touches a transport. Membership changes are announced
    through ``notify(recipient_id, message)``, which the signaling hub wires to
    the recipient's websocket.
    """

    def __init__(
        self,
        notify: Notify | None = None,
        *,
        grace_seconds: float = 0.0,
        auto_create: bool = False,
        id_factory: Callable[[], str] = generate_room_id,
    ) -> None:
        self._rooms: Dict[str, Room] = {}
        self._lock = asyncio.Lock()
        self._notify = notify
        self._grace_seconds = grace_seconds
        self._auto_create = auto_create
        self._id_factory = id_factory
        self._pending_deletes: Dict[str, asyncio.Task[None]] = {}

    def bind(self, notify: Notify) -> None:
        """Attach the notifier used for peer-joined / peer-left announcements."""

        self._notify = notify

    @property
    def has_notifier(self) -> bool:
        return self._notify is not None

    async def create_room(self) -> str:
        """Register an empty room under a fresh identifier."""

        async with self._lock:
            room_id = self._id_factory()
            while room_id in self._rooms:
                logger.debug("Room id collision on %s, retrying", room_id)
                room_id = self._id_factory()
            self._rooms[room_id] = Room(id=room_id)
        logger.info("Room %s created", room_id)
        return room_id

    async def join(self, room_id: str, participant_id: str) -> Room:
        """Add a participant, raising ``RoomNotFound`` or ``RoomFull`` on rejection."""

        async with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                if not self._auto_create:
                    raise RoomNotFound()
                room = self._rooms[room_id] = Room(id=room_id)
                logger.info("Room %s auto-created on join", room_id)
            if participant_id in room.members:
                return room
            if room.is_full:
                raise RoomFull()
            if room.sealed:
                raise RoomFull("Room is closed to new participants")

            room.members.append(participant_id)
            if room.host_id is None:
                room.host_id = participant_id
            self._cancel_pending_delete(room_id)
            peer_id = room.other_member(participant_id)

        logger.info("Participant %s joined room %s (%d/%d)", participant_id, room_id, room.size, ROOM_CAPACITY)
        if peer_id is not None:
            await self._emit(peer_id, PeerJoined())
        return room

    async def leave(self, room_id: str, participant_id: str) -> None:
        """Remove a participant, deleting the room once it is empty."""

        async with self._lock:
            room = self._rooms.get(room_id)
            if room is None or participant_id not in room.members:
                return
            room.members.remove(participant_id)
            if room.host_id == participant_id:
                room.host_id = room.members[0] if room.members else None

            remaining = list(room.members)
            if remaining:
                room.sealed = True
            else:
                self._retire(room)

        logger.info("Participant %s left room %s", participant_id, room_id)
        for member in remaining:
            await self._emit(member, PeerLeft())

    async def disconnect_all(self, participant_id: str) -> list[str]:
        """Leave every room the participant belongs to and return their ids."""

        async with self._lock:
            joined = [room.id for room in self._rooms.values() if participant_id in room.members]
        for room_id in joined:
            await self.leave(room_id, participant_id)
        return joined

    def get(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def room_of(self, participant_id: str) -> Room | None:
        for room in self._rooms.values():
            if participant_id in room.members:
                return room
        return None

    def is_host(self, room_id: str, participant_id: str) -> bool:
        room = self._rooms.get(room_id)
        return room is not None and room.host_id == participant_id

    def members(self, room_id: str) -> list[str]:
        room = self._rooms.get(room_id)
        return list(room.members) if room else []

    def size(self, room_id: str) -> int:
        room = self._rooms.get(room_id)
        return room.size if room else 0

    def rooms(self) -> Iterator[Room]:
        return iter(list(self._rooms.values()))

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    async def close(self) -> None:
        """Cancel scheduled deletions and forget every room."""

        tasks = list(self._pending_deletes.values())
        self._pending_deletes.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._rooms.clear()

    def _retire(self, room: Room) -> None:
        # Caller holds the lock.
        room_id = room.id
        room.sealed = False
        if self._grace_seconds <= 0:
            self._rooms.pop(room_id, None)
            logger.info("Room %s deleted (empty)", room_id)
            return
        logger.info("Room %s empty, deleting in %.0fs", room_id, self._grace_seconds)
        self._cancel_pending_delete(room_id)
        self._pending_deletes[room_id] = asyncio.create_task(self._delete_later(room_id))

    async def _delete_later(self, room_id: str) -> None:
        await asyncio.sleep(self._grace_seconds)
        async with self._lock:
            self._pending_deletes.pop(room_id, None)
            room = self._rooms.get(room_id)
            if room is not None and not room.members:
                self._rooms.pop(room_id, None)
                logger.info("Room %s deleted after grace period", room_id)

    def _cancel_pending_delete(self, room_id: str) -> None:
        task = self._pending_deletes.pop(room_id, None)
        if task is not None:
            task.cancel()

    async def _emit(self, recipient_id: str, message: PeerJoined | PeerLeft) -> None:
        if self._notify is None:
            return
        try:
            await self._notify(recipient_id, message)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to notify %s of %s: %s", recipient_id, message.type, exc)
