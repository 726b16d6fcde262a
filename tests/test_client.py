"""Tests for the headless participant entry point."""
from __future__ import annotations

from types import SimpleNamespace

import pytest

from watchsync import client
from watchsync.core.config import Settings
from watchsync.services import signaling_client
from watchsync.services.signaling_client import SignalingClient
from watchsync.services.sync import VirtualPlayer
from watchsync.services.transport import AiortcTransport


def _settings(**overrides) -> Settings:
    values = {
        "signaling_url": "ws://signal.test/api/rtc/signaling",
        "ice_servers": ["stun:stun.example.org:3478"],
        "reconnect_attempts": 0,
        "reconnect_delay_seconds": 0.001,
    }
    values.update(overrides)
    return Settings(**values)


def test_build_participant_wires_settings():
    player = VirtualPlayer()

    participant = client.build_participant(_settings(negotiation_timeout_seconds=12), "ann", player)

    assert isinstance(participant.signaling, SignalingClient)
    assert participant.signaling.url == "ws://signal.test/api/rtc/signaling"
    assert participant.session.signaling is participant.signaling
    assert participant.sync.player is player
    assert participant.sync.username == "ann"
    transport = participant.session._transport_factory(True, lambda event: None)
    assert isinstance(transport, AiortcTransport)


def test_parser_reads_participant_options():
    args = client.build_parser().parse_args(["--room", "ab12cd34", "--name", "bob", "--say", "hi", "--say", "there"])

    assert args.room == "ab12cd34"
    assert args.name == "bob"
    assert args.say == ["hi", "there"]
    assert args.video is None


@pytest.mark.asyncio
async def test_run_participant_reports_unreachable_server(monkeypatch):
    attempts: list[str] = []

    async def refuse(url: str):
        attempts.append(url)
        raise OSError("connection refused")

    monkeypatch.setattr(signaling_client, "websockets", SimpleNamespace(connect=refuse))

    code = await client.run_participant(_settings(), "ann", room_id="ab12cd34")

    assert code == 1
    assert attempts == ["ws://signal.test/api/rtc/signaling"]
