"""RTC configuration and signaling endpoints."""
from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from ..core.config import settings
from ..schemas.rtc import IceServer, RtcConfigResponse
from ..schemas.signaling import Connected, ErrorReply, parse_client_message
from ..services.errors import MalformedMessage
from ..services.signaling import SignalingConnection, SignalingHub
from .deps import get_ws_hub

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/config", response_model=RtcConfigResponse, response_model_by_alias=True)
async def rtc_config() -> RtcConfigResponse:
    """Return the ICE servers peers should hand to their transport."""

    return RtcConfigResponse(
        ice_servers=[IceServer(urls=[url]) for url in settings.ice_servers],
        signaling_path="/api/rtc/signaling",
    )


def _origin_allowed(origin: str | None) -> bool:
    allowed = settings.cors_allow_origins
    if "*" in allowed or origin is None:
        return True
    return origin in allowed


@router.websocket("/signaling")
async def signaling_endpoint(websocket: WebSocket, hub: SignalingHub = Depends(get_ws_hub)) -> None:
    """Room control and negotiation relay for one participant."""

    if not _origin_allowed(websocket.headers.get("origin")):
        logger.warning("Rejecting signaling connection from origin %s", websocket.headers.get("origin"))
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    participant_id = str(uuid4())
    await websocket.accept()

    connection = SignalingConnection(connection_id=participant_id, send=websocket.send_json)
    hub.connect(connection)
    await connection.deliver(Connected(participant_id=participant_id).to_wire())

    try:
        while True:
            frame = await websocket.receive_json()
            try:
                message = parse_client_message(frame)
            except MalformedMessage as exc:
                logger.warning("Malformed frame from %s: %s", participant_id, exc)
                await connection.deliver(ErrorReply(message=exc.message, code=exc.code).to_wire())
                continue
            await hub.handle(participant_id, message)
    except WebSocketDisconnect:
        pass
    except ValueError as exc:
        # receive_json raises on non-JSON text frames; treat as a broken client.
        logger.warning("Closing %s after undecodable frame: %s", participant_id, exc)
    finally:
        await hub.disconnect(participant_id)
