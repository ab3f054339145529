"""Shared test helpers."""

import asyncio
from collections.abc import Callable
from typing import Any


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FetchRecorder:
    """Async fetch function returning queued results.

    Each queued item is a value to return or an exception to raise. The
    last item repeats once the queue is down to one.
    """

    def __init__(self, *results: Any) -> None:
        self.results = list(results)
        self.calls = 0

    async def __call__(self) -> Any:
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return result


class ControlledFetch:
    """Async fetch function whose calls complete when the test says so."""

    def __init__(self) -> None:
        self.futures: list[asyncio.Future[Any]] = []

    @property
    def calls(self) -> int:
        return len(self.futures)

    async def __call__(self) -> Any:
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self.futures.append(future)
        return await future


async def wait_until(predicate: Callable[[], bool], max_cycles: int = 100) -> None:
    """Yield to the event loop until the predicate holds."""
    for _ in range(max_cycles):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")
