"""Error taxonomy shared by the signaling server and peer clients."""
from __future__ import annotations


class WatchSyncError(RuntimeError):
    """Base class for participant-level failures."""

    code = "WatchSyncError"
    default_message = "Unexpected watch party failure"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class RoomNotFound(WatchSyncError):
    code = "RoomNotFound"
    default_message = "Room not found"


class RoomFull(WatchSyncError):
    code = "RoomFull"
    default_message = "Room is full"


class SignalingDisconnected(WatchSyncError):
    code = "SignalingDisconnected"
    default_message = "Disconnected from signaling server"


class PeerNegotiationTimeout(WatchSyncError):
    code = "PeerNegotiationTimeout"
    default_message = "Could not connect to peer"


class PeerTransportError(WatchSyncError):
    code = "PeerTransportError"
    default_message = "Peer connection error"


class MalformedMessage(WatchSyncError):
    code = "MalformedMessage"
    default_message = "Malformed message"


_BY_CODE: dict[str, type[WatchSyncError]] = {
    cls.code: cls
    for cls in (
        RoomNotFound,
        RoomFull,
        SignalingDisconnected,
        PeerNegotiationTimeout,
        PeerTransportError,
        MalformedMessage,
    )
}


def error_from_code(code: str | None, message: str | None = None) -> WatchSyncError:
    """Rebuild a typed error from an ``error`` reply sent by the server."""

    error_cls = _BY_CODE.get(code or "", WatchSyncError)
    return error_cls(message)
