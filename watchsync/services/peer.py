"""Per-participant peer session: negotiation state machine, timers and data stream.

Everything that can happen to a session (server replies, transport callbacks,
timer expiry) is posted to one queue and handled by ``dispatch`` one event at
a time, so handlers never interleave.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections import deque
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Union

from ..core.config import Settings
from ..schemas import signaling as wire
from ..schemas.sync import (
    ChatDataMessage,
    PingMessage,
    VideoStateMessage,
    decode_message,
    encode_message,
)
from .errors import (
    MalformedMessage,
    PeerNegotiationTimeout,
    PeerTransportError,
    RoomFull,
    RoomNotFound,
    SignalingDisconnected,
    WatchSyncError,
    error_from_code,
)
from .signaling_client import SignalingFailed, SignalingLink, SignalingLost, SignalingResumed
from .transport import (
    PeerTransport,
    TransportClosed,
    TransportConnected,
    TransportData,
    TransportFactory,
    TransportFailed,
    TransportSignal,
)

logger = logging.getLogger(__name__)

PING_TIMER = "ping"
WATCHDOG_TIMER = "watchdog"
MISSED_ECHO_INTERVALS = 3
MAX_OUTSTANDING_PINGS = 16


class SessionState(str, enum.Enum):
    IDLE = "idle"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"


_TRANSITIONS: Dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.NEGOTIATING, SessionState.CLOSED},
    SessionState.NEGOTIATING: {SessionState.CONNECTED, SessionState.CLOSED},
    SessionState.CONNECTED: {SessionState.NEGOTIATING, SessionState.CLOSED},
    SessionState.CLOSED: set(),
}


# Internal events


@dataclass(frozen=True, slots=True)
class TimerFired:
    name: str


@dataclass(frozen=True, slots=True)
class WatchdogExpired:
    pass


# Events published to listeners (sync controller, UI)


@dataclass(frozen=True, slots=True)
class SessionStateChanged:
    state: SessionState


@dataclass(frozen=True, slots=True)
class RoomCreated:
    room_id: str


@dataclass(frozen=True, slots=True)
class RoomJoined:
    room_id: str
    is_host: bool


@dataclass(frozen=True, slots=True)
class PeerJoined:
    pass


@dataclass(frozen=True, slots=True)
class PeerLeft:
    pass


@dataclass(frozen=True, slots=True)
class MessageReceived:
    message: VideoStateMessage | ChatDataMessage


@dataclass(frozen=True, slots=True)
class SessionFailed:
    error: WatchSyncError


SessionEvent = Union[
    SessionStateChanged,
    RoomCreated,
    RoomJoined,
    PeerJoined,
    PeerLeft,
    MessageReceived,
    SessionFailed,
    TimerFired,
]
Listener = Callable[[Any], Awaitable[None]]


class PeerSession:
    """Drive one participant from room setup to a connected data channel."""

    def __init__(
        self,
        signaling: SignalingLink,
        transport_factory: TransportFactory,
        *,
        negotiation_timeout: float = 30.0,
        ping_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.signaling = signaling
        self.state = SessionState.IDLE
        self.is_initiator = False
        self.is_host = False
        self.room_id: str | None = None
        self.pending_signals: Deque[Any] = deque()
        self.last_echo_at: float | None = None
        self.round_trip_ms: float | None = None

        self._transport_factory = transport_factory
        self._transport: PeerTransport | None = None
        self._negotiation_timeout = negotiation_timeout
        self._ping_interval = ping_interval
        self._clock = clock
        self._listeners: list[Listener] = []
        self._timers: Dict[str, asyncio.Task[None]] = {}
        self._outstanding_pings: Deque[float] = deque(maxlen=MAX_OUTSTANDING_PINGS)
        self._first_ping_at: float | None = None
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()
        self._runner: asyncio.Task[None] | None = None
        self._cleaned_up = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        signaling: SignalingLink,
        transport_factory: TransportFactory,
    ) -> "PeerSession":
        return cls(
            signaling,
            transport_factory,
            negotiation_timeout=settings.negotiation_timeout_seconds,
            ping_interval=settings.ping_interval_seconds,
        )

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    @property
    def connected(self) -> bool:
        return self.state is SessionState.CONNECTED

    # Lifecycle

    async def initiate_peer(self, is_initiator: bool, room_id: str | None = None) -> None:
        """Start as host (creating a room) or as guest joining ``room_id``."""

        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"Session already started ({self.state.value})")
        if not is_initiator and not room_id:
            raise ValueError("A joining participant needs a room id")

        self.is_initiator = is_initiator
        self.is_host = is_initiator
        self.room_id = room_id
        await self._transition(SessionState.NEGOTIATING)
        self._runner = asyncio.create_task(self._run())

        try:
            await self.signaling.start(self.post)
            await self._request_room()
        except SignalingDisconnected as exc:
            await self._fail(exc)
            await self.cleanup()

    async def cleanup(self) -> None:
        """Release every resource once; later calls are no-ops."""

        if self._cleaned_up:
            return
        self._cleaned_up = True
        logger.info("Cleaning up peer session (room %s)", self.room_id)

        # The peer must observe peer-left before the transport drops.
        if self.room_id and self.signaling.connected:
            try:
                await self.signaling.send(wire.LeaveRoom(room_id=self.room_id))
            except SignalingDisconnected as exc:
                logger.debug("Could not send leave-room: %s", exc)
        await self._close()
        await self.signaling.close()

        runner = self._runner
        if runner is not None and runner is not asyncio.current_task():
            runner.cancel()
            with suppress(asyncio.CancelledError):
                await runner

    # Event intake

    def post(self, event: Any) -> None:
        """Queue an event for the session runner. Safe from transport callbacks."""

        if not self._cleaned_up:
            self._inbox.put_nowait(event)

    async def _run(self) -> None:
        while not self._cleaned_up:
            event = await self._inbox.get()
            try:
                await self.dispatch(event)
            except Exception:  # noqa: BLE001
                logger.exception("Peer session failed handling %s", type(event).__name__)

    async def dispatch(self, event: Any) -> None:
        """Handle one event to completion."""

        if isinstance(event, wire.RoomCreated):
            await self._on_room_created(event)
        elif isinstance(event, wire.RoomJoined):
            await self._on_room_joined(event)
        elif isinstance(event, wire.PeerJoined):
            await self._on_peer_joined()
        elif isinstance(event, wire.PeerLeft):
            await self._on_peer_left()
        elif isinstance(event, wire.SignalRelay):
            await self._on_remote_signal(event.signal)
        elif isinstance(event, wire.ErrorReply):
            await self._on_error_reply(event)
        elif isinstance(event, wire.Connected):
            logger.debug("Signaling assigned participant id %s", event.participant_id)
        elif isinstance(event, TransportSignal):
            await self._on_local_signal(event.payload)
        elif isinstance(event, TransportConnected):
            await self._on_transport_connected()
        elif isinstance(event, TransportData):
            await self._on_data(event.data)
        elif isinstance(event, TransportClosed):
            await self._on_transport_lost(PeerTransportError("Peer connection closed"))
        elif isinstance(event, TransportFailed):
            await self._on_transport_lost(event.error)
        elif isinstance(event, WatchdogExpired):
            await self._on_watchdog()
        elif isinstance(event, TimerFired):
            await self._on_timer(event.name)
        elif isinstance(event, SignalingLost):
            logger.warning("Signaling connection lost; waiting for reconnect")
        elif isinstance(event, SignalingResumed):
            await self._on_signaling_resumed()
        elif isinstance(event, SignalingFailed):
            await self._fail(event.error)
            await self.cleanup()
        else:
            logger.warning("Ignoring unknown session event %r", event)

    # Data stream

    def send(self, message: VideoStateMessage | ChatDataMessage | PingMessage) -> None:
        if self.state is not SessionState.CONNECTED or self._transport is None:
            raise PeerTransportError("Peer is not connected")
        self._transport.send(encode_message(message))

    # Timers

    def schedule_every(self, name: str, interval: float) -> None:
        """Post ``TimerFired(name)`` every ``interval`` seconds until the session closes."""

        self.cancel_timer(name)
        self._timers[name] = asyncio.create_task(self._tick(name, interval))

    def cancel_timer(self, name: str) -> None:
        task = self._timers.pop(name, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    @property
    def active_timers(self) -> list[str]:
        return [name for name, task in self._timers.items() if not task.done()]

    async def _tick(self, name: str, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.post(TimerFired(name))

    async def _watchdog(self, timeout: float) -> None:
        await asyncio.sleep(timeout)
        self.post(WatchdogExpired())

    # Handlers

    async def _request_room(self) -> None:
        if self.is_initiator:
            await self.signaling.send(wire.CreateRoom())
        else:
            await self.signaling.send(wire.JoinRoom(room_id=self.room_id))

    async def _on_room_created(self, event: wire.RoomCreated) -> None:
        if self.state is SessionState.CLOSED:
            return
        previous = self.room_id
        self.room_id = event.room_id
        self.is_host = True
        if previous and previous != event.room_id:
            logger.info("Room id changed from %s to %s", previous, event.room_id)
        await self._publish(RoomCreated(event.room_id))

    async def _on_room_joined(self, event: wire.RoomJoined) -> None:
        if self.state is SessionState.CLOSED:
            return
        self.room_id = event.room_id
        self.is_initiator = event.is_initiator
        self.is_host = event.is_initiator
        await self._publish(RoomJoined(event.room_id, event.is_initiator))
        # The host of an empty room waits for peer-joined before offering.
        if not self.is_initiator and self._transport is None and self.state is SessionState.NEGOTIATING:
            await self._start_transport()

    async def _on_peer_joined(self) -> None:
        await self._publish(PeerJoined())
        if self.is_initiator and self._transport is None and self.state is SessionState.NEGOTIATING:
            await self._start_transport()

    async def _on_peer_left(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        logger.info("Peer left room %s", self.room_id)
        await self._publish(PeerLeft())
        await self._close()

    async def _on_remote_signal(self, payload: Any) -> None:
        if self.state is SessionState.CONNECTED or self.state is SessionState.CLOSED:
            logger.debug("Ignoring stray signal while %s", self.state.value)
            return
        if self._transport is None:
            self.pending_signals.append(payload)
            return
        await self._apply_signal(payload)

    async def _apply_signal(self, payload: Any) -> None:
        try:
            await self._transport.signal(payload)
        except PeerTransportError as exc:
            await self._on_transport_lost(exc)

    async def _on_local_signal(self, payload: Any) -> None:
        if self.state is not SessionState.NEGOTIATING or not self.room_id:
            return
        try:
            await self.signaling.send(wire.SignalRequest(room_id=self.room_id, signal=payload))
        except SignalingDisconnected as exc:
            # The remote side tolerates lost signals; the watchdog covers a stalled negotiation.
            logger.warning("Could not relay negotiation payload: %s", exc)

    async def _on_error_reply(self, event: wire.ErrorReply) -> None:
        error = error_from_code(event.code, event.message)
        logger.warning("Signaling server rejected request: %s", error)
        if not isinstance(error, (RoomNotFound, RoomFull)):
            return
        await self._fail(error)
        await self._close()

    async def _on_transport_connected(self) -> None:
        if self.state is not SessionState.NEGOTIATING:
            return
        self.cancel_timer(WATCHDOG_TIMER)
        await self._transition(SessionState.CONNECTED)
        self.schedule_every(PING_TIMER, self._ping_interval)
        logger.info("Peer connection established in room %s", self.room_id)

    async def _on_transport_lost(self, error: PeerTransportError) -> None:
        if self.state is SessionState.CLOSED:
            return
        logger.warning("Peer transport lost: %s", error)
        await self._fail(error)
        await self.cleanup()

    async def _on_watchdog(self) -> None:
        if self.state is not SessionState.NEGOTIATING:
            return
        logger.warning("Negotiation timed out after %.0fs", self._negotiation_timeout)
        await self._fail(PeerNegotiationTimeout())
        await self.cleanup()

    async def _on_signaling_resumed(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        logger.info("Re-issuing room request after reconnect")
        try:
            await self._request_room()
        except SignalingDisconnected as exc:
            logger.warning("Could not re-issue room request: %s", exc)

    async def _on_timer(self, name: str) -> None:
        if self.state is SessionState.CLOSED:
            return
        if name == PING_TIMER:
            self._send_ping()
            return
        await self._publish(TimerFired(name))

    async def _on_data(self, raw: str) -> None:
        try:
            message = decode_message(raw)
        except MalformedMessage as exc:
            logger.warning("Dropping malformed data message: %s", exc)
            return
        if isinstance(message, PingMessage):
            self._on_ping(message)
            return
        await self._publish(MessageReceived(message))

    # Liveness

    def _send_ping(self) -> None:
        now = self._clock()
        if self._first_ping_at is None:
            self._first_ping_at = now
        reference = self.last_echo_at if self.last_echo_at is not None else self._first_ping_at
        if now - reference > self._ping_interval * MISSED_ECHO_INTERVALS:
            logger.warning("No ping echo from peer for %.1fs", now - reference)

        stamp = float(int(time.time() * 1000))
        if self._outstanding_pings and stamp <= self._outstanding_pings[-1]:
            stamp = self._outstanding_pings[-1] + 1
        self._outstanding_pings.append(stamp)
        try:
            self.send(PingMessage(payload=stamp))
        except PeerTransportError as exc:
            logger.debug("Ping not sent: %s", exc)

    def _on_ping(self, message: PingMessage) -> None:
        if message.payload in self._outstanding_pings:
            self._outstanding_pings.remove(message.payload)
            self.last_echo_at = self._clock()
            self.round_trip_ms = max(0.0, time.time() * 1000 - message.payload)
            return
        try:
            self.send(message)
        except PeerTransportError as exc:
            logger.debug("Ping echo not sent: %s", exc)

    # Internals

    async def _start_transport(self) -> None:
        self._transport = self._transport_factory(self.is_initiator, self.post)
        self._timers[WATCHDOG_TIMER] = asyncio.create_task(self._watchdog(self._negotiation_timeout))
        try:
            await self._transport.start()
        except PeerTransportError as exc:
            await self._on_transport_lost(exc)
            return
        while self.pending_signals and self._transport is not None:
            await self._apply_signal(self.pending_signals.popleft())

    async def _close(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        for name in list(self._timers):
            self.cancel_timer(name)
        transport, self._transport = self._transport, None
        self.pending_signals.clear()
        await self._transition(SessionState.CLOSED)
        if transport is not None:
            try:
                await transport.close()
            except Exception as exc:  # noqa: BLE001
                logger.debug("Error while closing transport: %s", exc)

    async def _transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal session transition {self.state.value} -> {new_state.value}")
        logger.debug("Session %s -> %s", self.state.value, new_state.value)
        self.state = new_state
        await self._publish(SessionStateChanged(new_state))

    async def _fail(self, error: WatchSyncError) -> None:
        await self._publish(SessionFailed(error))

    async def _publish(self, event: Any) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception:  # noqa: BLE001
                logger.exception("Session listener failed on %s", type(event).__name__)
