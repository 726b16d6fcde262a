"""Headless watch-party participant (``watchsync-peer``).

Connects to the signaling server, negotiates an aiortc data channel with the
other participant and keeps a ``VirtualPlayer`` in sync. Useful for smoke
testing a deployment from a terminal.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from .core.config import Settings, settings as default_settings
from .core.logging import setup_logging
from .schemas.sync import ChatDataMessage
from .services.peer import (
    MessageReceived,
    PeerLeft,
    PeerSession,
    RoomCreated,
    SessionFailed,
    SessionState,
    SessionStateChanged,
)
from .services.signaling_client import SignalingClient
from .services.sync import Player, SyncController, VirtualPlayer
from .services.transport import aiortc_factory

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Participant:
    signaling: SignalingClient
    session: PeerSession
    sync: SyncController
    failures: list[Exception] = field(default_factory=list)


def build_participant(settings: Settings, username: str, player: Player | None = None) -> Participant:
    """Wire the signaling client, aiortc transport and sync policy from settings."""

    signaling = SignalingClient.from_settings(settings)
    session = PeerSession.from_settings(settings, signaling, aiortc_factory(settings.ice_servers))
    sync = SyncController.from_settings(settings, session, player or VirtualPlayer(), username)
    return Participant(signaling=signaling, session=session, sync=sync)


async def run_participant(
    settings: Settings,
    username: str,
    *,
    room_id: str | None = None,
    video_id: str | None = None,
    say: Sequence[str] = (),
) -> int:
    """Run one participant until its session closes. Returns a process exit code."""

    participant = build_participant(settings, username)
    session = participant.session
    closed = asyncio.Event()

    async def on_event(event: Any) -> None:
        if isinstance(event, RoomCreated):
            logger.info("Room %s is ready; share this id with your guest", event.room_id)
        elif isinstance(event, PeerLeft):
            logger.info("The other participant left")
        elif isinstance(event, SessionFailed):
            participant.failures.append(event.error)
            logger.error("Session failed: %s", event.error)
        elif isinstance(event, MessageReceived) and isinstance(event.message, ChatDataMessage):
            chat = event.message.payload
            logger.info("%s: %s", chat.sender, chat.text)
        elif isinstance(event, SessionStateChanged):
            if event.state is SessionState.CONNECTED:
                for line in say:
                    participant.sync.send_chat(line)
            elif event.state is SessionState.CLOSED:
                closed.set()

    session.add_listener(on_event)

    try:
        await session.initiate_peer(room_id is None, room_id)
        if video_id and session.is_host:
            await participant.sync.set_video(video_id)
        await closed.wait()
    finally:
        await session.cleanup()

    return 1 if participant.failures else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Join or host a watch party from the terminal")
    parser.add_argument("--room", help="Room id to join; omit to create a new room")
    parser.add_argument("--name", default="guest", help="Display name used for chat")
    parser.add_argument("--video", help="Video id to start with (host only)")
    parser.add_argument("--say", action="append", default=[], help="Chat line to send once connected")
    parser.add_argument("--server", help="Signaling websocket URL (defaults to SIGNALING_URL)")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    settings = default_settings
    if args.server:
        settings = settings.model_copy(update={"signaling_url": args.server})
    try:
        return asyncio.run(
            run_participant(settings, args.name, room_id=args.room, video_id=args.video, say=args.say)
        )
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
