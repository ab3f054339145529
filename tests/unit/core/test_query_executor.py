"""Tests for QueryExecutor fetch orchestration."""

import asyncio
import time

import pytest

from querystate import (
    FetchError,
    InvalidKeyError,
    QueryClient,
    QueryConfig,
    QueryOptions,
    QueryStatus,
    RetriesExhaustedError,
)
from tests.helpers import ControlledFetch, FakeClock, FetchRecorder, wait_until


class TestDeduplication:
    """Tests for in-flight request sharing."""

    @pytest.mark.asyncio
    async def test_concurrent_resolves_share_one_fetch(
        self, client: QueryClient
    ) -> None:
        """Two concurrent resolves for one key call the fetch function once."""
        fetch = ControlledFetch()

        first = asyncio.create_task(client.resolve(["users", "1"], fetch))
        second = asyncio.create_task(client.resolve(["users", "1"], fetch))
        await wait_until(lambda: fetch.calls == 1)
        await asyncio.sleep(0)

        fetch.futures[0].set_result({"id": 1})

        assert await first == {"id": 1}
        assert await second == {"id": 1}
        assert fetch.calls == 1
        assert client.stats["deduplicated"] == 1

    @pytest.mark.asyncio
    async def test_different_keys_fetch_separately(self, client: QueryClient) -> None:
        """Different keys never share a fetch."""
        fetch = FetchRecorder("value")

        await asyncio.gather(
            client.resolve(["users", "1"], fetch),
            client.resolve(["users", "2"], fetch),
        )

        assert fetch.calls == 2

    @pytest.mark.asyncio
    async def test_joined_callers_share_failure(self, client: QueryClient) -> None:
        """A joined caller receives the same error as the originator."""
        fetch = FetchRecorder(FetchError("not found", retryable=False))

        results = await asyncio.gather(
            client.resolve("missing", fetch),
            client.resolve("missing", fetch),
            return_exceptions=True,
        )

        assert fetch.calls == 1
        assert all(isinstance(r, FetchError) for r in results)
        assert results[0] is results[1]

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_shared_fetch(
        self, client: QueryClient
    ) -> None:
        """Cancelling one waiter leaves the fetch running for the others."""
        fetch = ControlledFetch()

        first = asyncio.create_task(client.resolve("shared", fetch))
        second = asyncio.create_task(client.resolve("shared", fetch))
        await wait_until(lambda: fetch.calls == 1)
        await asyncio.sleep(0)

        first.cancel()
        await asyncio.sleep(0)
        fetch.futures[0].set_result("done")

        assert await second == "done"
        assert first.cancelled()


class TestStaleness:
    """Tests for freshness checks."""

    @pytest.mark.asyncio
    async def test_fresh_data_served_without_fetch(self, clock: FakeClock) -> None:
        """Within stale_time the cached data is returned without I/O."""
        client = QueryClient(QueryConfig(stale_time=1.0), clock=clock)
        fetch = FetchRecorder("v1", "v2")

        assert await client.resolve("k", fetch) == "v1"
        clock.advance(0.5)
        assert await client.resolve("k", fetch) == "v1"

        assert fetch.calls == 1
        assert client.stats["hits"] == 1
        await client.dispose()

    @pytest.mark.asyncio
    async def test_stale_data_refetched(self, clock: FakeClock) -> None:
        """After stale_time the fetch function runs again."""
        client = QueryClient(QueryConfig(stale_time=1.0), clock=clock)
        fetch = FetchRecorder("v1", "v2")

        await client.resolve("k", fetch)
        clock.advance(1.5)

        assert await client.resolve("k", fetch) == "v2"
        assert fetch.calls == 2
        await client.dispose()

    @pytest.mark.asyncio
    async def test_default_stale_time_always_refetches(
        self, client: QueryClient
    ) -> None:
        """With stale_time 0 every sequential resolve fetches."""
        fetch = FetchRecorder("a", "b")

        await client.resolve("k", fetch)
        assert await client.resolve("k", fetch) == "b"
        assert fetch.calls == 2

    @pytest.mark.asyncio
    async def test_per_call_stale_time(self, client: QueryClient, clock: FakeClock) -> None:
        """Options override the configured stale_time."""
        fetch = FetchRecorder("a", "b")
        options = QueryOptions(stale_time=10.0)

        await client.resolve("k", fetch, options)
        clock.advance(5)

        assert await client.resolve("k", fetch, options) == "a"
        assert fetch.calls == 1


class TestStateTransitions:
    """Tests for the entry state machine."""

    @pytest.mark.asyncio
    async def test_first_fetch_goes_through_loading(self, client: QueryClient) -> None:
        """A first fetch moves IDLE -> LOADING -> SUCCESS."""
        seen: list[tuple[QueryStatus, bool]] = []
        client.subscribe("k", lambda e: seen.append((e.status, e.is_fetching)))

        await client.resolve("k", FetchRecorder("data"))

        assert seen == [
            (QueryStatus.IDLE, False),
            (QueryStatus.LOADING, True),
            (QueryStatus.SUCCESS, False),
        ]

    @pytest.mark.asyncio
    async def test_refetch_keeps_data_visible(self, client: QueryClient) -> None:
        """A background refetch keeps SUCCESS and flags is_refetching."""
        await client.resolve("k", FetchRecorder("old"))
        fetch = ControlledFetch()

        task = asyncio.create_task(client.resolve("k", fetch))
        await wait_until(lambda: fetch.calls == 1)

        entry = client.get_snapshot("k")
        assert entry is not None
        assert entry.status is QueryStatus.SUCCESS
        assert entry.data == "old"
        assert entry.is_fetching
        assert entry.is_refetching

        fetch.futures[0].set_result("new")
        await task

        entry = client.get_snapshot("k")
        assert entry.data == "new"
        assert not entry.is_refetching

    @pytest.mark.asyncio
    async def test_updated_at_set_on_success(
        self, client: QueryClient, clock: FakeClock
    ) -> None:
        """updated_at records the clock time of the successful write."""
        await client.resolve("k", FetchRecorder("v"))

        assert client.get_snapshot("k").updated_at == clock.now

    @pytest.mark.asyncio
    async def test_none_result_is_an_error(self, client: QueryClient) -> None:
        """A fetch returning None fails without retries."""
        fetch = FetchRecorder(None)

        with pytest.raises(FetchError):
            await client.resolve("k", fetch)

        assert fetch.calls == 1
        assert client.get_snapshot("k").status is QueryStatus.ERROR

    @pytest.mark.asyncio
    async def test_invalid_key_raises(self, client: QueryClient) -> None:
        """A non-serializable key is rejected before any fetch."""
        fetch = FetchRecorder("v")

        with pytest.raises(InvalidKeyError):
            await client.resolve(["users", lambda: None], fetch)

        assert fetch.calls == 0


class TestRetries:
    """Tests for retry behavior."""

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self) -> None:
        """Two failures then success: three calls, two backoff waits."""
        client = QueryClient(
            QueryConfig(max_retries=3, retry_base_delay=0.01, retry_jitter=0.0)
        )
        fetch = FetchRecorder(ConnectionError("boom"), ConnectionError("boom"), "user")

        started = time.monotonic()
        result = await client.resolve(["user", "1"], fetch)
        elapsed = time.monotonic() - started

        assert result == "user"
        assert fetch.calls == 3
        assert client.get_snapshot(["user", "1"]).status is QueryStatus.SUCCESS
        assert elapsed >= 0.029
        await client.dispose()

    @pytest.mark.asyncio
    async def test_backoff_delays_double(self, clock: FakeClock) -> None:
        """Backoff waits follow base * 2**retry."""
        delays: list[float] = []

        async def record_sleep(delay: float) -> None:
            delays.append(delay)

        client = QueryClient(
            QueryConfig(max_retries=4, retry_base_delay=0.01, retry_jitter=0.0),
            clock=clock,
            sleep=record_sleep,
        )
        fetch = FetchRecorder(OSError(), OSError(), OSError(), "ok")

        await client.resolve("k", fetch)

        assert delays == pytest.approx([0.01, 0.02, 0.04])
        await client.dispose()

    @pytest.mark.asyncio
    async def test_failure_count_reported_between_attempts(
        self, client: QueryClient
    ) -> None:
        """Observers see the failure count grow before each backoff wait."""
        counts: list[int] = []
        client.subscribe("k", lambda e: counts.append(e.fetch_failure_count))
        fetch = FetchRecorder(OSError(), OSError(), "ok")

        await client.resolve("k", fetch)

        assert counts[-3:] == [1, 2, 0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise(self, client: QueryClient) -> None:
        """After max_retries failures the caller gets RetriesExhaustedError."""
        cause = ConnectionError("down")
        fetch = FetchRecorder(cause)

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await client.resolve("k", fetch)

        assert fetch.calls == 3
        assert exc_info.value.last_error is cause
        assert exc_info.value.attempts == 3
        assert exc_info.value.__cause__ is cause

        entry = client.get_snapshot("k")
        assert entry.status is QueryStatus.ERROR
        assert entry.error is exc_info.value
        assert entry.data is None
        assert entry.fetch_failure_count == 3
        assert not entry.is_fetching

    @pytest.mark.asyncio
    async def test_non_retryable_error_not_retried(self, client: QueryClient) -> None:
        """Errors marked non-retryable fail on the first attempt."""
        error = FetchError("bad request", retryable=False)
        fetch = FetchRecorder(error)

        with pytest.raises(FetchError) as exc_info:
            await client.resolve("k", fetch)

        assert exc_info.value is error
        assert fetch.calls == 1

    @pytest.mark.asyncio
    async def test_client_error_status_not_retried(self, client: QueryClient) -> None:
        """Errors carrying a 4xx status code are not retried."""

        class HTTPError(Exception):
            status_code = 404

        fetch = FetchRecorder(HTTPError())

        with pytest.raises(HTTPError):
            await client.resolve("k", fetch)

        assert fetch.calls == 1

    @pytest.mark.asyncio
    async def test_per_call_max_retries(self, client: QueryClient) -> None:
        """Options override the configured attempt limit."""
        fetch = FetchRecorder(OSError())

        with pytest.raises(RetriesExhaustedError):
            await client.resolve("k", fetch, QueryOptions(max_retries=1))

        assert fetch.calls == 1

    @pytest.mark.asyncio
    async def test_manual_resolve_after_error_retries_immediately(
        self, client: QueryClient
    ) -> None:
        """Calling resolve again after an error fetches right away."""
        fetch = FetchRecorder(OSError(), OSError(), OSError(), "recovered")

        with pytest.raises(RetriesExhaustedError):
            await client.resolve("k", fetch)

        assert await client.resolve("k", fetch) == "recovered"
        entry = client.get_snapshot("k")
        assert entry.status is QueryStatus.SUCCESS
        assert entry.error is None


class TestStaleWhileRevalidate:
    """Tests for keeping data across failures."""

    @pytest.mark.asyncio
    async def test_failed_refetch_keeps_data(self, client: QueryClient) -> None:
        """A failed refetch leaves the previous data and records the error."""
        await client.resolve("k", FetchRecorder("X"))

        with pytest.raises(RetriesExhaustedError):
            await client.resolve("k", FetchRecorder(OSError("down")))

        entry = client.get_snapshot("k")
        assert entry.status is QueryStatus.ERROR
        assert entry.data == "X"
        assert entry.error is not None

    @pytest.mark.asyncio
    async def test_clear_data_on_error_option(self, clock: FakeClock) -> None:
        """keep_data_on_error=False drops data when a refetch fails."""
        client = QueryClient(
            QueryConfig(keep_data_on_error=False, max_retries=1), clock=clock
        )
        await client.resolve("k", FetchRecorder("X"))

        with pytest.raises(RetriesExhaustedError):
            await client.resolve("k", FetchRecorder(OSError()))

        assert client.get_snapshot("k").data is None
        await client.dispose()

    @pytest.mark.asyncio
    async def test_updated_at_unchanged_by_error(
        self, client: QueryClient, clock: FakeClock
    ) -> None:
        """A failure never moves updated_at."""
        await client.resolve("k", FetchRecorder("X"))
        updated_at = client.get_snapshot("k").updated_at
        clock.advance(10)

        with pytest.raises(RetriesExhaustedError):
            await client.resolve("k", FetchRecorder(OSError()))

        entry = client.get_snapshot("k")
        assert entry.updated_at == updated_at
        assert entry.error_updated_at == clock.now


class TestSequencing:
    """Tests for discarding superseded fetch results."""

    @pytest.mark.asyncio
    async def test_out_of_order_result_discarded(self, client: QueryClient) -> None:
        """A slow older fetch cannot overwrite a newer result."""
        fetch = ControlledFetch()

        older = asyncio.create_task(client.resolve("search", fetch))
        await wait_until(lambda: fetch.calls == 1)
        newer = asyncio.create_task(
            client.resolve("search", fetch, QueryOptions(cancel_refetch=True))
        )
        await wait_until(lambda: fetch.calls == 2)

        fetch.futures[1].set_result("new")
        assert await newer == "new"

        fetch.futures[0].set_result("old")
        assert await older == "old"

        entry = client.get_snapshot("search")
        assert entry.data == "new"
        assert entry.status is QueryStatus.SUCCESS
        assert client.stats["discarded"] >= 1

    @pytest.mark.asyncio
    async def test_superseded_fetch_keeps_entry_fetching(
        self, client: QueryClient
    ) -> None:
        """The entry stays fetching until the newest fetch settles."""
        fetch = ControlledFetch()

        older = asyncio.create_task(client.resolve("k", fetch))
        await wait_until(lambda: fetch.calls == 1)
        newer = asyncio.create_task(
            client.resolve("k", fetch, QueryOptions(cancel_refetch=True))
        )
        await wait_until(lambda: fetch.calls == 2)

        fetch.futures[0].set_result("old")
        await older

        assert client.get_snapshot("k").is_fetching

        fetch.futures[1].set_result("new")
        await newer
        assert not client.get_snapshot("k").is_fetching

    @pytest.mark.asyncio
    async def test_soft_cancel_discards_result(self, client: QueryClient) -> None:
        """cancel() supersedes the fetch and reverts a first load to IDLE."""
        fetch = ControlledFetch()

        task = asyncio.create_task(client.resolve("k", fetch))
        await wait_until(lambda: fetch.calls == 1)

        assert client.cancel("k") == 1
        entry = client.get_snapshot("k")
        assert entry.status is QueryStatus.IDLE
        assert not entry.is_fetching

        fetch.futures[0].set_result("late")
        assert await task == "late"
        assert client.get_snapshot("k").data is None

    @pytest.mark.asyncio
    async def test_eviction_discards_inflight_result(self, client: QueryClient) -> None:
        """A fetch settling after its entry was removed does not recreate it."""
        fetch = ControlledFetch()

        task = asyncio.create_task(client.resolve("k", fetch))
        await wait_until(lambda: fetch.calls == 1)

        client.remove("k")
        fetch.futures[0].set_result("late")
        await task

        assert client.get_snapshot("k") is None


class TestSignal:
    """Tests for the opaque cancellation handle."""

    @pytest.mark.asyncio
    async def test_signal_forwarded_to_fetch(self, client: QueryClient) -> None:
        """options.signal is passed to the fetch function untouched."""
        signal = object()
        received: list[object] = []

        async def fetch(sig: object) -> str:
            received.append(sig)
            return "ok"

        await client.resolve("k", fetch, QueryOptions(signal=signal))

        assert received == [signal]

    @pytest.mark.asyncio
    async def test_sync_fetch_function_accepted(self, client: QueryClient) -> None:
        """A fetch function returning a plain value works too."""
        assert await client.resolve("k", lambda: 42) == 42
