import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from watchsync.main import app


@pytest.mark.asyncio
async def test_health_endpoint() -> None:
    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get("/api/health")
        head = await client.head("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert head.status_code == 200


@pytest.mark.asyncio
async def test_robots() -> None:
    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        robots = await client.get("/robots.txt")

    assert robots.status_code == 200
    assert "User-agent" in robots.text


@pytest.mark.asyncio
async def test_rtc_config_lists_ice_servers(monkeypatch) -> None:
    from watchsync.routers import rtc

    monkeypatch.setattr(rtc.settings, "ice_servers", ["stun:stun.example.org:3478"])
    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get("/api/rtc/config")

    assert response.status_code == 200
    body = response.json()
    assert body["iceServers"] == [{"urls": ["stun:stun.example.org:3478"]}]
    assert body["signalingPath"] == "/api/rtc/signaling"


def test_room_lookup_requires_known_room() -> None:
    with TestClient(app) as client:
        missing = client.get("/api/rooms/nope1234")
        listing = client.get("/api/rooms")

    assert missing.status_code == 404
    assert listing.status_code == 200
    assert listing.json() == []
