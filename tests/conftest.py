"""Pytest configuration and shared fixtures."""

from typing import Callable

import httpx
import pytest


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def no_sleep() -> RecordingSleep:
    """Sleep function that returns immediately and records each delay."""
    return RecordingSleep()


@pytest.fixture
def mock_client() -> Callable[[Callable], httpx.AsyncClient]:
    """Factory for clients whose requests are answered by a handler.

    Example::

        client = mock_client(lambda request: httpx.Response(200))
    """

    def factory(handler: Callable) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory
