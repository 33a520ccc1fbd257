import pytest
import pytest_asyncio
from aiohttp import ClientSession
from aiohttp.test_utils import TestServer

from lanmedia.config import ClientSettings

from tests.helpers import FakeMediaServer


@pytest.fixture
def fast_settings() -> ClientSettings:
    return ClientSettings(
        resolve_timeout=0.5,
        discovery_timeout=0.3,
        catalogue_timeout=5,
        thumbnail_timeout=5,
        max_attempts=5,
        accepted_backoff=0.01,
        error_backoff=0.01,
        max_concurrent_downloads=2,
    )


@pytest_asyncio.fixture
async def media_server():
    fake = FakeMediaServer()
    server = TestServer(fake.app())
    await server.start_server()
    fake.address = f"http://{server.host}:{server.port}"
    try:
        yield fake
    finally:
        await server.close()


@pytest_asyncio.fixture
async def session():
    async with ClientSession() as client_session:
        yield client_session
