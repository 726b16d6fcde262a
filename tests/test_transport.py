"""Tests for the aiortc data-channel transport."""
from __future__ import annotations

import asyncio

import pytest

from watchsync.services.errors import PeerTransportError
from watchsync.services.transport import (
    AiortcTransport,
    TransportConnected,
    TransportData,
    TransportSignal,
    aiortc_factory,
)


async def _wait_for(predicate, timeout: float = 20.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


def _signals(events: list) -> list[dict]:
    return [event.payload for event in events if isinstance(event, TransportSignal)]


def _connected(events: list) -> bool:
    return any(isinstance(event, TransportConnected) for event in events)


@pytest.mark.asyncio
async def test_two_transports_connect_in_process_and_exchange_data():
    offerer_events: list = []
    answerer_events: list = []
    offerer = AiortcTransport(True, offerer_events.append)
    answerer = AiortcTransport(False, answerer_events.append)

    try:
        await offerer.start()
        await answerer.start()
        [offer] = _signals(offerer_events)
        assert offer["type"] == "offer"

        await answerer.signal(offer)
        [answer] = _signals(answerer_events)
        assert answer["type"] == "answer"
        await offerer.signal(answer)

        await _wait_for(lambda: _connected(offerer_events) and _connected(answerer_events))

        offerer.send('{"type": "ping", "payload": 1}')
        answerer.send("back")
        await _wait_for(lambda: TransportData('{"type": "ping", "payload": 1}') in answerer_events)
        await _wait_for(lambda: TransportData("back") in offerer_events)
    finally:
        await offerer.close()
        await answerer.close()
        await offerer.close()


@pytest.mark.asyncio
async def test_send_before_channel_opens_raises():
    transport = AiortcTransport(True, lambda event: None)

    with pytest.raises(PeerTransportError):
        transport.send("hello")


@pytest.mark.asyncio
async def test_signal_before_start_raises_and_unknown_payloads_are_ignored():
    events: list = []
    transport = AiortcTransport(False, events.append)

    with pytest.raises(PeerTransportError):
        await transport.signal({"type": "offer", "sdp": "v=0"})

    await transport.start()
    await transport.signal({"candidate": "ignored"})
    assert events == []
    await transport.close()


def test_factory_binds_ice_servers():
    factory = aiortc_factory(["stun:stun.example.org:3478"])

    transport = factory(True, lambda event: None)

    assert isinstance(transport, AiortcTransport)
    assert transport.initiator
