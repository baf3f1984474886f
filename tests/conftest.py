"""
Pytest configuration and fixtures.
"""
import pytest
import pytest_asyncio

from fake_backend import FakeBackend
from feed_service.backend_client import BackendClient
from feed_service.realtime import RealtimeHub

BASE_URL = "http://backend.test"


@pytest.fixture
def fake():
    """Empty in-memory backend"""
    return FakeBackend()


@pytest_asyncio.fixture
async def backend(fake):
    """Started client bound to a user session, talking to the fake backend"""
    client = BackendClient(base_url=BASE_URL, api_key="anon-key", token="session-token", transport=fake.transport)
    await client.start()
    yield client
    await client.stop()


@pytest_asyncio.fixture
async def anon_backend(backend):
    """Same connection pool without a session"""
    return backend.with_token(None)


@pytest.fixture
def hub():
    """Realtime hub fed directly through publish()"""
    return RealtimeHub()
