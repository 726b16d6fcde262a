"""Websocket client for the signaling server, with bounded reconnection."""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from ..core.config import Settings
from ..schemas.signaling import CreateRoom, JoinRoom, LeaveRoom, SignalRequest, parse_server_message
from .errors import MalformedMessage, SignalingDisconnected

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 30.0

Emit = Callable[[Any], None]
OutgoingMessage = CreateRoom | JoinRoom | SignalRequest | LeaveRoom


@dataclass(frozen=True, slots=True)
class SignalingLost:
    """The server connection dropped; reconnection is under way."""


@dataclass(frozen=True, slots=True)
class SignalingResumed:
    """A new server connection replaced the lost one."""


@dataclass(frozen=True, slots=True)
class SignalingFailed:
    error: SignalingDisconnected


class SignalingLink(Protocol):
    """What ``PeerSession`` needs from a signaling connection."""

    @property
    def connected(self) -> bool: ...

    async def start(self, emit: Emit) -> None: ...

    async def send(self, message: OutgoingMessage) -> None: ...

    async def close(self) -> None: ...


class SignalingClient:
    """Own one websocket to the signaling server and keep it alive."""

    def __init__(
        self,
        url: str,
        *,
        reconnect_attempts: int = 5,
        reconnect_delay: float = 1.0,
    ) -> None:
        self.url = url
        self.participant_id: str | None = None
        self._reconnect_attempts = reconnect_attempts
        self._reconnect_delay = reconnect_delay
        self._ws: Any = None
        self._emit: Emit | None = None
        self._receive_task: asyncio.Task[None] | None = None
        self._closing = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "SignalingClient":
        return cls(
            settings.signaling_url,
            reconnect_attempts=settings.reconnect_attempts,
            reconnect_delay=settings.reconnect_delay_seconds,
        )

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._closing

    async def start(self, emit: Emit) -> None:
        """Connect and begin forwarding server messages to ``emit``."""

        self._emit = emit
        self._ws = await self._connect_with_retry()
        self._receive_task = asyncio.create_task(self._receive_loop())

    async def send(self, message: OutgoingMessage) -> None:
        if self._ws is None or self._closing:
            raise SignalingDisconnected()
        try:
            await self._ws.send(json.dumps(message.to_wire()))
        except ConnectionClosed as exc:
            raise SignalingDisconnected(f"Signaling connection closed: {exc}") from exc

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        if self._receive_task and self._receive_task is not asyncio.current_task():
            self._receive_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._receive_task
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def _connect_with_retry(self) -> Any:
        attempt = 0
        while True:
            try:
                return await websockets.connect(self.url)
            except (OSError, InvalidHandshake, asyncio.TimeoutError) as exc:
                if attempt >= self._reconnect_attempts:
                    raise SignalingDisconnected(f"Could not reach signaling server: {exc}") from exc
                delay = min(self._reconnect_delay * (2 ** attempt), MAX_BACKOFF_SECONDS)
                attempt += 1
                logger.warning(
                    "Signaling connect failed (%s); retry %d/%d in %.1fs",
                    exc,
                    attempt,
                    self._reconnect_attempts,
                    delay,
                )
                await asyncio.sleep(delay)

    async def _receive_loop(self) -> None:
        while not self._closing:
            try:
                async for raw in self._ws:
                    self._dispatch(raw)
            except ConnectionClosed as exc:
                logger.warning("Signaling connection lost: %s", exc)
            if self._closing:
                return

            self._ws = None
            self._publish(SignalingLost())
            try:
                self._ws = await self._connect_with_retry()
            except SignalingDisconnected as exc:
                logger.error("Giving up on signaling server: %s", exc)
                self._publish(SignalingFailed(exc))
                return
            logger.info("Signaling connection resumed")
            self._publish(SignalingResumed())

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            message = parse_server_message(raw)
        except MalformedMessage as exc:
            logger.warning("Dropping malformed signaling frame: %s", exc)
            return
        if message.type == "connected":
            self.participant_id = message.participant_id
        self._publish(message)

    def _publish(self, event: Any) -> None:
        if self._emit is not None:
            self._emit(event)
