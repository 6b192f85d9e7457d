"""
Health check endpoint tests.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from orgconsole.main import app


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def test_health_check(client: AsyncClient):
    """Health endpoint should return status ok."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_ready_check(client: AsyncClient):
    response = await client.get("/ready")
    assert response.status_code == 200
    assert response.json() == {"status": "ready"}


async def test_api_root(client: AsyncClient):
    """API v1 root should return version and endpoint list."""
    response = await client.get("/api/v1/")
    assert response.status_code == 200
    data = response.json()
    assert data["api"] == "v1"
    assert "/orgs/{orgSlug}/members" in data["endpoints"]


async def test_security_headers(client: AsyncClient):
    response = await client.get("/health")
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


async def test_protected_route_requires_session(client: AsyncClient):
    response = await client.get("/api/v1/orgs")
    assert response.status_code == 401
    assert response.json() == {"error": "You must be logged in"}
