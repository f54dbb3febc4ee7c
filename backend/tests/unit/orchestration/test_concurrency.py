"""Tests for the ConcurrencyGate."""

import asyncio

import pytest

from connector_sync.orchestration.concurrency import ConcurrencyGate


class TestConcurrencyGate:
    """Tests for bounded FIFO admission."""

    def test_rejects_non_positive_limit(self):
        """A limit below one is a configuration error."""
        with pytest.raises(ValueError):
            ConcurrencyGate(limit=0)

    @pytest.mark.asyncio
    async def test_never_exceeds_limit(self):
        """At most `limit` tasks run at any moment."""
        gate = ConcurrencyGate(limit=3, name="test")
        running = 0
        peak = 0

        async def work():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return "ok"

        handles = [gate.admit(work) for _ in range(10)]
        results = await gate.await_all(handles)

        assert results == ["ok"] * 10
        assert peak == 3
        assert gate.peak_active == 3
        assert gate.active == 0
        assert gate.pending == 0

    @pytest.mark.asyncio
    async def test_admits_in_submission_order(self):
        """Waiting tasks start in the order they were submitted."""
        gate = ConcurrencyGate(limit=1)
        started = []

        def make(index: int):
            async def work():
                started.append(index)
                await asyncio.sleep(0)
                return index

            return work

        handles = [gate.admit(make(i)) for i in range(5)]
        results = await gate.await_all(handles)

        assert started == [0, 1, 2, 3, 4]
        assert results == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_failure_does_not_cancel_siblings(self):
        """A failing task settles its own handle only."""
        gate = ConcurrencyGate(limit=2)

        async def ok():
            await asyncio.sleep(0.01)
            return 1

        async def boom():
            raise RuntimeError("boom")

        handles = [gate.admit(ok), gate.admit(boom), gate.admit(ok)]
        results = await gate.await_all(handles)

        assert results[0] == 1
        assert isinstance(results[1], RuntimeError)
        assert results[2] == 1
        assert gate.stats()["failed"] == 1
        assert gate.stats()["completed"] == 3

    @pytest.mark.asyncio
    async def test_queued_work_waits_for_slot(self):
        """Work beyond the limit stays pending until a slot frees up."""
        gate = ConcurrencyGate(limit=1)
        release = asyncio.Event()

        async def blocker():
            await release.wait()

        async def follower():
            return "done"

        first = gate.admit(blocker)
        second = gate.admit(follower)
        await asyncio.sleep(0)

        assert gate.active == 1
        assert gate.pending == 1
        assert not second.done()

        release.set()
        assert await gate.await_all([first, second]) == [None, "done"]

    @pytest.mark.asyncio
    async def test_await_all_without_handles(self):
        """Waiting on nothing returns immediately."""
        assert await ConcurrencyGate(limit=1).await_all() == []

    @pytest.mark.asyncio
    async def test_cancel_drops_queue_and_running_work(self):
        """Cancel stops admitted work and drops queued work."""
        gate = ConcurrencyGate(limit=1)
        started = asyncio.Event()

        async def forever():
            started.set()
            await asyncio.sleep(3600)

        first = gate.admit(forever)
        second = gate.admit(forever)
        await started.wait()

        await gate.cancel()

        assert first.cancelled()
        assert second.cancelled()
        assert gate.active == 0
