"""Fixtures for HTTP API tests (FastAPI)."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

import trellis.dashboard as dash_module
from tests._db_factory import Seeded
from trellis.dashboard import create_app


@pytest.fixture
def api_db(seeded: Seeded) -> Seeded:
    """The seeded workspace, reconnected so the ASGI app may use it from any thread."""
    seeded.db.reconnect(check_same_thread=False)
    return seeded


@pytest.fixture
async def client(api_db: Seeded) -> AsyncIterator[AsyncClient]:
    """Test client bound to the seeded database."""
    dash_module._db = api_db.db
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    dash_module._db = None


async def login(client: AsyncClient, username: str) -> dict[str, str]:
    """Log in as *username* and return bearer headers.

    The session cookie set by the response is dropped so each request
    authenticates only with the headers it is given.
    """
    resp = await client.post("/api/session", json={"username": username})
    assert resp.status_code == 201, resp.text
    client.cookies.clear()
    return {"Authorization": f"Bearer {resp.json()['token']}"}
