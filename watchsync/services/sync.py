"""Video-state reconciliation and chat on top of a ``PeerSession``.

The host's player is the source of truth. It pushes its state whenever the
user acts and again on every sync tick; the guest corrects its own player
whenever it drifts past a threshold.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Protocol

from ..core.config import Settings
from ..schemas.sync import ChatDataMessage, ChatMessage, VideoState, VideoStateMessage
from .peer import MessageReceived, PeerSession, SessionState, SessionStateChanged, TimerFired

logger = logging.getLogger(__name__)

SYNC_TIMER = "sync"


class Player(Protocol):
    """The slice of a video widget the sync policy drives."""

    async def get_current_time(self) -> float: ...

    async def is_playing(self) -> bool: ...

    async def seek_to(self, seconds: float) -> None: ...

    async def play(self) -> None: ...

    async def pause(self) -> None: ...

    async def load_video(self, video_id: str) -> None: ...


def drift_exceeds(local_time: float, authoritative_time: float, threshold: float) -> bool:
    """Return True when the guest must seek to catch up with the host."""

    return abs(local_time - authoritative_time) > threshold


class VirtualPlayer:
    """Clock-driven stand-in for a real video widget (headless clients, tests)."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.video_id: str | None = None
        self._position = 0.0
        self._playing = False
        self._anchor = clock()
        self.seeks: list[float] = []

    async def get_current_time(self) -> float:
        return self._now()

    async def is_playing(self) -> bool:
        return self._playing

    async def seek_to(self, seconds: float) -> None:
        self.seeks.append(seconds)
        self._position = max(0.0, seconds)
        self._anchor = self._clock()

    async def play(self) -> None:
        if not self._playing:
            self._position = self._now()
            self._anchor = self._clock()
            self._playing = True

    async def pause(self) -> None:
        if self._playing:
            self._position = self._now()
            self._playing = False

    async def load_video(self, video_id: str) -> None:
        self.video_id = video_id
        self._position = 0.0
        self._playing = False
        self._anchor = self._clock()

    def _now(self) -> float:
        if not self._playing:
            return self._position
        return self._position + (self._clock() - self._anchor)


class SyncController:
    """Apply the host-authoritative sync policy and keep the chat transcript."""

    def __init__(
        self,
        session: PeerSession,
        player: Player,
        username: str,
        *,
        drift_threshold: float = 2.0,
        seek_threshold: float = 1.0,
        sync_interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session = session
        self.player = player
        self.username = username
        self.transcript: list[ChatMessage] = []
        self.video_state: VideoState | None = None
        self._drift_threshold = drift_threshold
        self._seek_threshold = seek_threshold
        self._sync_interval = sync_interval
        self._clock = clock
        self._received_at: float | None = None
        self._last_chat_ts = 0.0
        self._loaded_video_id: str | None = None
        session.add_listener(self.handle_event)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session: PeerSession,
        player: Player,
        username: str,
    ) -> "SyncController":
        return cls(
            session,
            player,
            username,
            drift_threshold=settings.drift_threshold_seconds,
            seek_threshold=settings.seek_threshold_seconds,
            sync_interval=settings.sync_interval_seconds,
        )

    @property
    def is_host(self) -> bool:
        return self.session.is_host

    async def handle_event(self, event: Any) -> None:
        if isinstance(event, SessionStateChanged):
            if event.state is SessionState.CONNECTED:
                self.session.schedule_every(SYNC_TIMER, self._sync_interval)
                if self.is_host:
                    await self.broadcast_state()
        elif isinstance(event, TimerFired) and event.name == SYNC_TIMER:
            if self.is_host:
                await self.broadcast_state()
            else:
                await self.check_drift()
        elif isinstance(event, MessageReceived):
            message = event.message
            if isinstance(message, VideoStateMessage):
                await self._on_remote_state(message.payload)
            elif isinstance(message, ChatDataMessage):
                self.transcript.append(message.payload)

    # Host side

    async def set_video(self, video_id: str) -> bool:
        """Select a new video; only the host may do this."""

        if not self.is_host:
            logger.info("Ignoring local video change on guest side")
            return False
        await self.player.load_video(video_id)
        self._loaded_video_id = video_id
        return await self.update_video_state(VideoState(video_id=video_id, current_time=0.0, is_playing=False))

    async def update_video_state(self, state: VideoState) -> bool:
        """Record a host-side change and push it to the guest."""

        if not self.is_host:
            logger.info("Ignoring video state change on guest side")
            return False
        self.video_state = state
        self._send_state(state)
        return True

    async def broadcast_state(self) -> None:
        """Re-send the host's live player state so the guest can self-heal."""

        if not self.is_host or self.video_state is None:
            return
        state = VideoState(
            video_id=self.video_state.video_id,
            current_time=max(0.0, await self.player.get_current_time()),
            is_playing=await self.player.is_playing(),
        )
        self.video_state = state
        self._send_state(state)

    def _send_state(self, state: VideoState) -> None:
        if not self.session.connected:
            logger.debug("Video state kept locally; peer not connected")
            return
        self.session.send(VideoStateMessage(payload=state))

    # Guest side

    async def _on_remote_state(self, state: VideoState) -> None:
        if self.is_host:
            logger.warning("Host ignoring video state sent by guest")
            return
        self.video_state = state
        self._received_at = self._clock()
        await self.apply_state(state, self._seek_threshold)

    async def apply_state(self, state: VideoState, threshold: float) -> bool:
        """Bring the local player in line with ``state``; return True if it seeked."""

        if self._loaded_video_id != state.video_id:
            await self.player.load_video(state.video_id)
            self._loaded_video_id = state.video_id
        local_time = await self.player.get_current_time()
        seeked = drift_exceeds(local_time, state.current_time, threshold)
        if seeked:
            logger.debug("Seeking from %.2fs to %.2fs", local_time, state.current_time)
            await self.player.seek_to(state.current_time)
        if state.is_playing:
            await self.player.play()
        else:
            await self.player.pause()
        return seeked

    def expected_host_time(self) -> float | None:
        """Extrapolate the host position from the last state received."""

        if self.video_state is None or self._received_at is None:
            return None
        if not self.video_state.is_playing:
            return self.video_state.current_time
        return self.video_state.current_time + (self._clock() - self._received_at)

    async def check_drift(self) -> bool:
        """Periodic guest-side check against the wider drift threshold."""

        expected = self.expected_host_time()
        if self.video_state is None or expected is None:
            return False
        local_time = await self.player.get_current_time()
        if not drift_exceeds(local_time, expected, self._drift_threshold):
            return False
        corrected = self.video_state.model_copy(update={"current_time": expected})
        return await self.apply_state(corrected, self._drift_threshold)

    # Chat

    def send_chat(self, text: str) -> ChatMessage | None:
        """Send a chat line and show it locally without waiting for the peer."""

        if not text.strip():
            return None
        timestamp = max(time.time() * 1000, self._last_chat_ts)
        self._last_chat_ts = timestamp
        message = ChatMessage(text=text, sender=self.username, timestamp=timestamp)
        self.session.send(ChatDataMessage(payload=message))
        self.transcript.append(message)
        return message
