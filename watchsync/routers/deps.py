"""Request-scoped accessors for objects owned by the application lifespan."""
from __future__ import annotations

from fastapi import Request, WebSocket

from ..services.signaling import SignalingHub


def get_hub(request: Request) -> SignalingHub:
    return request.app.state.signaling_hub


def get_ws_hub(websocket: WebSocket) -> SignalingHub:
    return websocket.app.state.signaling_hub
