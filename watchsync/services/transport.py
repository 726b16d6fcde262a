"""Peer transport capability and its aiortc data-channel implementation.

A transport owns one direct link. It reports everything that happens to it as
``TransportEvent`` values through the ``emit`` callable it was built with, so
the owning session can process them in order alongside signaling events.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol, Sequence, Union

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription

from .errors import PeerTransportError

logger = logging.getLogger(__name__)

DATA_CHANNEL_LABEL = "watchsync"


@dataclass(frozen=True, slots=True)
class TransportSignal:
    """A negotiation payload the remote side must receive."""

    payload: Any


@dataclass(frozen=True, slots=True)
class TransportConnected:
    pass


@dataclass(frozen=True, slots=True)
class TransportData:
    data: str


@dataclass(frozen=True, slots=True)
class TransportClosed:
    pass


@dataclass(frozen=True, slots=True)
class TransportFailed:
    error: PeerTransportError


TransportEvent = Union[TransportSignal, TransportConnected, TransportData, TransportClosed, TransportFailed]
Emit = Callable[[Any], None]


class PeerTransport(Protocol):
    """Capability consumed by ``PeerSession``."""

    async def start(self) -> None:
        """Begin negotiation; an initiator produces its offer here."""

    async def signal(self, payload: Any) -> None:
        """Apply a negotiation payload received from the remote side."""

    def send(self, data: str) -> None:
        """Send one text frame over the reliable, ordered channel."""

    async def close(self) -> None:
        """Release the link. Safe to call more than once."""


TransportFactory = Callable[[bool, Emit], PeerTransport]


class AiortcTransport:
    """Reliable ordered data channel over an ``RTCPeerConnection``.

    Negotiation is non-trickle: each side sends a single ``offer``/``answer``
    description once ICE gathering has finished, so the payloads are plain
    ``{"type": ..., "sdp": ...}`` dicts.
    """

    def __init__(self, initiator: bool, emit: Emit, ice_servers: Sequence[str] = ()) -> None:
        self.initiator = initiator
        self._emit = emit
        self._ice_servers = list(ice_servers)
        self._pc: RTCPeerConnection | None = None
        self._channel: Any = None
        self._closed = False

    async def start(self) -> None:
        config = RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in self._ice_servers])
        pc = self._pc = RTCPeerConnection(configuration=config)

        @pc.on("connectionstatechange")
        def on_connection_state() -> None:
            state = pc.connectionState
            logger.debug("Peer connection state: %s", state)
            if state == "failed":
                self._emit(TransportFailed(PeerTransportError("Peer connection failed")))
            elif state == "closed" and not self._closed:
                self._emit(TransportClosed())

        if self.initiator:
            self._bind_channel(pc.createDataChannel(DATA_CHANNEL_LABEL, ordered=True))
            offer = await pc.createOffer()
            # aiortc gathers every candidate before setLocalDescription returns.
            await pc.setLocalDescription(offer)
            self._emit_description()
        else:

            @pc.on("datachannel")
            def on_datachannel(channel: Any) -> None:
                self._bind_channel(channel)

    async def signal(self, payload: Any) -> None:
        if self._pc is None:
            raise PeerTransportError("Transport not started")
        if not isinstance(payload, dict) or payload.get("type") not in {"offer", "answer"}:
            logger.debug("Ignoring unsupported negotiation payload: %r", payload)
            return
        try:
            description = RTCSessionDescription(sdp=payload["sdp"], type=payload["type"])
            await self._pc.setRemoteDescription(description)
            if description.type == "offer":
                answer = await self._pc.createAnswer()
                await self._pc.setLocalDescription(answer)
                self._emit_description()
        except (KeyError, ValueError, asyncio.InvalidStateError) as exc:
            raise PeerTransportError(f"Could not apply remote description: {exc}") from exc

    def send(self, data: str) -> None:
        channel = self._channel
        if channel is None or channel.readyState != "open":
            raise PeerTransportError("Data channel is not open")
        channel.send(data)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._pc is not None:
            await self._pc.close()

    def _emit_description(self) -> None:
        description = self._pc.localDescription
        self._emit(TransportSignal({"type": description.type, "sdp": description.sdp}))

    def _bind_channel(self, channel: Any) -> None:
        self._channel = channel

        @channel.on("open")
        def on_open() -> None:
            self._emit(TransportConnected())

        @channel.on("message")
        def on_message(message: str | bytes) -> None:
            if isinstance(message, bytes):
                message = message.decode("utf-8", errors="replace")
            self._emit(TransportData(message))

        @channel.on("close")
        def on_close() -> None:
            if not self._closed:
                self._emit(TransportClosed())

        # The answering side may receive a channel that is already open.
        if channel.readyState == "open":
            self._emit(TransportConnected())


def aiortc_factory(ice_servers: Sequence[str]) -> TransportFactory:
    """Build a transport factory bound to the configured ICE servers."""

    def factory(initiator: bool, emit: Emit) -> PeerTransport:
        return AiortcTransport(initiator, emit, ice_servers)

    return factory
