"""Pytest configuration for querystate tests."""

from collections.abc import AsyncIterator

import pytest

from querystate import QueryClient, QueryConfig
from tests.helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake clock."""
    return FakeClock()


@pytest.fixture
async def client(clock: FakeClock) -> AsyncIterator[QueryClient]:
    """Create a query client with fast, jitter-free retries."""
    config = QueryConfig(
        retry_base_delay=0.001,
        retry_max_delay=0.01,
        retry_jitter=0.0,
        cache_time=60.0,
    )
    client = QueryClient(config, clock=clock)
    yield client
    await client.dispose()
