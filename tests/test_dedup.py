"""Tests for in-flight request deduplication."""

from __future__ import annotations

import asyncio

import pytest

from repodash.dedup import InFlightDeduplicator


class TestInFlightDeduplicator:
    """Core deduplication behaviour."""

    @pytest.mark.asyncio
    async def test_single_call_returns_result(self):
        """A single call passes through to fn and returns its result."""
        dedup = InFlightDeduplicator()

        async def fetch():
            return "hello"

        assert await dedup.run("key1", fetch) == "hello"

    @pytest.mark.asyncio
    async def test_concurrent_calls_deduplicated(self):
        """Multiple concurrent calls for the same key only invoke fn once."""
        dedup = InFlightDeduplicator()
        call_count = 0
        shared = object()

        async def slow_fetch():
            nonlocal call_count
            call_count += 1
            await asyncio.sleep(0.05)
            return shared

        r1, r2, r3 = await asyncio.gather(
            dedup.run("same-key", slow_fetch),
            dedup.run("same-key", slow_fetch),
            dedup.run("same-key", slow_fetch),
        )

        assert r1 is shared and r2 is shared and r3 is shared
        assert call_count == 1, f"fn called {call_count} times (expected 1)"

    @pytest.mark.asyncio
    async def test_has_reflects_pendency(self):
        dedup = InFlightDeduplicator()
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()
            return 1

        task = asyncio.create_task(dedup.run("k", blocked))
        await asyncio.sleep(0.01)
        assert dedup.has("k")
        assert dedup.inflight_count() == 1

        gate.set()
        await task
        assert not dedup.has("k")
        assert dedup.inflight_count() == 0

    @pytest.mark.asyncio
    async def test_after_completion_next_call_starts_new_fetch(self):
        dedup = InFlightDeduplicator()
        call_count = 0

        async def fetch():
            nonlocal call_count
            call_count += 1
            return call_count

        assert await dedup.run("k", fetch) == 1
        assert not dedup.has("k")
        assert await dedup.run("k", fetch) == 2
        assert call_count == 2

    @pytest.mark.asyncio
    async def test_different_keys_run_independently(self):
        """Requests with different keys are not deduplicated."""
        dedup = InFlightDeduplicator()
        call_count = 0

        async def fetch(val: str):
            nonlocal call_count
            call_count += 1
            await asyncio.sleep(0.02)
            return val

        r1, r2 = await asyncio.gather(
            dedup.run("a", lambda: fetch("alpha")),
            dedup.run("b", lambda: fetch("beta")),
        )

        assert (r1, r2) == ("alpha", "beta")
        assert call_count == 2


class TestErrors:
    @pytest.mark.asyncio
    async def test_error_propagates_and_cleans_up(self):
        dedup = InFlightDeduplicator()

        async def failing():
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await dedup.run("k", failing)
        assert not dedup.has("k")

    @pytest.mark.asyncio
    async def test_concurrent_calls_propagate_error(self):
        """If the shared fetch raises, all waiters see the same error."""
        dedup = InFlightDeduplicator()
        call_count = 0

        async def failing_fetch():
            nonlocal call_count
            call_count += 1
            await asyncio.sleep(0.02)
            raise RuntimeError("shared failure")

        results = await asyncio.gather(
            *(dedup.run("err-key", failing_fetch) for _ in range(3)),
            return_exceptions=True,
        )

        assert all(isinstance(r, RuntimeError) for r in results)
        assert all("shared failure" in str(r) for r in results)
        assert call_count == 1
        assert not dedup.has("err-key")

    @pytest.mark.asyncio
    async def test_key_not_stuck_after_failure(self):
        dedup = InFlightDeduplicator()

        async def failing():
            raise RuntimeError("first attempt")

        async def ok():
            return "second attempt"

        with pytest.raises(RuntimeError):
            await dedup.run("k", failing)
        assert await dedup.run("k", ok) == "second attempt"

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_shared_fetch(self):
        dedup = InFlightDeduplicator()
        gate = asyncio.Event()

        async def slow():
            await gate.wait()
            return "v"

        owner = asyncio.create_task(dedup.run("k", slow))
        follower = asyncio.create_task(dedup.run("k", slow))
        await asyncio.sleep(0.01)

        owner.cancel()
        await asyncio.sleep(0)
        gate.set()

        assert await follower == "v"
        with pytest.raises(asyncio.CancelledError):
            await owner
        assert not dedup.has("k")
