"""Tests for the reconnecting signaling client."""
from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import pytest
from websockets.exceptions import ConnectionClosed

from watchsync.schemas.signaling import CreateRoom, RoomCreated, SignalRelay
from watchsync.services import signaling_client
from watchsync.services.errors import SignalingDisconnected
from watchsync.services.signaling_client import (
    SignalingClient,
    SignalingFailed,
    SignalingLost,
    SignalingResumed,
)

_DROP = object()


class DummyWebSocket:
    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self._messages: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True

    def __aiter__(self) -> "DummyWebSocket":
        return self

    async def __anext__(self) -> str:
        item = await self._messages.get()
        if item is _DROP:
            raise ConnectionClosed(None, None)
        return item

    def queue_message(self, payload: dict | str) -> None:
        self._messages.put_nowait(payload if isinstance(payload, str) else json.dumps(payload))

    def drop(self) -> None:
        self._messages.put_nowait(_DROP)


class DummyServer:
    """Hands out scripted sockets; ``None`` entries refuse the connection."""

    def __init__(self, *sockets: DummyWebSocket | None) -> None:
        self._sockets = list(sockets)
        self.attempts = 0

    async def connect(self, url: str) -> DummyWebSocket:
        self.attempts += 1
        ws = self._sockets.pop(0) if self._sockets else None
        if ws is None:
            raise OSError("connection refused")
        return ws


def _install(monkeypatch, server: DummyServer) -> None:
    monkeypatch.setattr(signaling_client, "websockets", SimpleNamespace(connect=server.connect))


async def _wait_for(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


@pytest.mark.asyncio
async def test_client_sends_wire_json_and_forwards_server_messages(monkeypatch):
    ws = DummyWebSocket()
    _install(monkeypatch, DummyServer(ws))
    events: list = []
    client = SignalingClient("ws://test/api/rtc/signaling")

    await client.start(events.append)
    await client.send(CreateRoom())
    ws.queue_message({"type": "connected", "participantId": "p-1"})
    ws.queue_message({"type": "room-created", "roomId": "ab12cd34"})
    ws.queue_message({"type": "signal", "signal": {"type": "offer", "sdp": "v=0"}})
    await _wait_for(lambda: len(events) == 3)

    assert json.loads(ws.sent[0]) == {"type": "create-room"}
    assert client.participant_id == "p-1"
    assert events[1] == RoomCreated(room_id="ab12cd34")
    assert isinstance(events[2], SignalRelay)
    assert events[2].signal == {"type": "offer", "sdp": "v=0"}

    await client.close()
    assert ws.closed
    assert not client.connected


@pytest.mark.asyncio
async def test_malformed_frames_are_dropped(monkeypatch):
    ws = DummyWebSocket()
    _install(monkeypatch, DummyServer(ws))
    events: list = []
    client = SignalingClient("ws://test")

    await client.start(events.append)
    ws.queue_message("not json")
    ws.queue_message({"type": "mystery"})
    ws.queue_message({"type": "peer-joined"})
    await _wait_for(lambda: len(events) == 1)

    assert events[0].type == "peer-joined"
    await client.close()


@pytest.mark.asyncio
async def test_initial_connect_retries_with_backoff_then_gives_up(monkeypatch):
    server = DummyServer(None, None, None)
    _install(monkeypatch, server)
    client = SignalingClient("ws://test", reconnect_attempts=2, reconnect_delay=0.001)

    with pytest.raises(SignalingDisconnected):
        await client.start(lambda event: None)

    assert server.attempts == 3


@pytest.mark.asyncio
async def test_initial_connect_succeeds_after_refusal(monkeypatch):
    ws = DummyWebSocket()
    server = DummyServer(None, ws)
    _install(monkeypatch, server)
    client = SignalingClient("ws://test", reconnect_attempts=2, reconnect_delay=0.001)

    await client.start(lambda event: None)

    assert server.attempts == 2
    assert client.connected
    await client.close()


@pytest.mark.asyncio
async def test_lost_connection_is_resumed(monkeypatch):
    first, second = DummyWebSocket(), DummyWebSocket()
    _install(monkeypatch, DummyServer(first, None, second))
    events: list = []
    client = SignalingClient("ws://test", reconnect_attempts=3, reconnect_delay=0.001)

    await client.start(events.append)
    first.drop()
    await _wait_for(lambda: any(isinstance(event, SignalingResumed) for event in events))

    assert isinstance(events[0], SignalingLost)
    await client.send(CreateRoom())
    assert second.sent == ['{"type": "create-room"}']
    await client.close()


@pytest.mark.asyncio
async def test_lost_connection_fails_after_bounded_attempts(monkeypatch):
    ws = DummyWebSocket()
    _install(monkeypatch, DummyServer(ws))
    events: list = []
    client = SignalingClient("ws://test", reconnect_attempts=1, reconnect_delay=0.001)

    await client.start(events.append)
    ws.drop()
    await _wait_for(lambda: any(isinstance(event, SignalingFailed) for event in events))

    assert isinstance(events[0], SignalingLost)
    assert isinstance(events[-1].error, SignalingDisconnected)
    with pytest.raises(SignalingDisconnected):
        await client.send(CreateRoom())
    await client.close()


@pytest.mark.asyncio
async def test_send_after_close_raises(monkeypatch):
    ws = DummyWebSocket()
    _install(monkeypatch, DummyServer(ws))
    client = SignalingClient("ws://test")
    await client.start(lambda event: None)

    await client.close()
    await client.close()

    with pytest.raises(SignalingDisconnected):
        await client.send(CreateRoom())
