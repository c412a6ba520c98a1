"""Shared fixtures: a mocked transport and clients wired to it."""

from unittest.mock import AsyncMock

import pytest

from acc_client import Client, ClientConfig, ConnectionParameters

from fixtures import URL


@pytest.fixture
def transport():
    return AsyncMock()


@pytest.fixture
def make_client(transport):
    """Factory for clients sending through ``transport``."""

    def _make(credentials: str = "session", **options) -> Client:
        config = ClientConfig(transport=transport, **options)
        if credentials == "password":
            params = ConnectionParameters.of_user_and_password(URL, "admin", "admin", config)
        elif credentials == "bearer":
            params = ConnectionParameters.of_bearer_token(URL, "$bearer$", config)
        elif credentials == "anonymous":
            params = ConnectionParameters.of_anonymous_user(URL, config)
        else:
            params = ConnectionParameters.of_session_token(URL, "$session_token$", config)
        return Client(params)

    return _make


@pytest.fixture
async def client(make_client):
    """Client logged on with a session token (no remote call needed)."""
    client = make_client()
    await client.logon()
    return client
