"""Tests for ResourceLocks."""

import asyncio

import pytest

from connector_sync.orchestration.locks import ResourceLocks


async def _hold(locks: ResourceLocks, key: str, events: list[str], release: asyncio.Event, within=None):
    async with locks.hold(key, within=within):
        events.append(f"enter:{key}")
        await release.wait()
        events.append(f"exit:{key}")


class TestResourceLocks:
    """Tests for keyed exclusivity."""

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        """A second holder of a key waits for the first to leave."""
        locks = ResourceLocks()
        events: list[str] = []
        release = asyncio.Event()

        first = asyncio.ensure_future(_hold(locks, "1:100:issue:5", events, release))
        await asyncio.sleep(0.01)
        second = asyncio.ensure_future(_hold(locks, "1:100:issue:5", events, asyncio.Event()))
        await asyncio.sleep(0.01)

        assert events == ["enter:1:100:issue:5"]

        release.set()
        await first
        await asyncio.sleep(0.01)
        assert events[-1] == "enter:1:100:issue:5"
        second.cancel()
        await asyncio.gather(second, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_resources_of_one_container_run_together(self):
        """Different resources inside a container do not exclude each other."""
        locks = ResourceLocks()
        events: list[str] = []
        release = asyncio.Event()

        holders = [
            asyncio.ensure_future(_hold(locks, f"1:100:issue:{n}", events, release, within="1:100"))
            for n in (1, 2)
        ]
        await asyncio.sleep(0.01)

        assert sorted(events) == ["enter:1:100:issue:1", "enter:1:100:issue:2"]
        release.set()
        await asyncio.gather(*holders)

    @pytest.mark.asyncio
    async def test_container_waits_for_resources_inside_it(self):
        """Holding a container key waits for in-flight work inside the container."""
        locks = ResourceLocks()
        events: list[str] = []
        leaf_release = asyncio.Event()
        container_release = asyncio.Event()

        leaf = asyncio.ensure_future(
            _hold(locks, "1:100:issue:1", events, leaf_release, within="1:100")
        )
        await asyncio.sleep(0.01)
        container = asyncio.ensure_future(_hold(locks, "1:100", events, container_release))
        await asyncio.sleep(0.01)
        late_leaf = asyncio.ensure_future(
            _hold(locks, "1:100:code", events, container_release, within="1:100")
        )
        await asyncio.sleep(0.01)

        assert events == ["enter:1:100:issue:1"]

        leaf_release.set()
        await leaf
        await asyncio.sleep(0.01)
        assert events[-1] == "enter:1:100"

        container_release.set()
        await asyncio.gather(container, late_leaf)
        assert events.index("exit:1:100") < events.index("enter:1:100:code")

    @pytest.mark.asyncio
    async def test_idle_keys_are_dropped(self):
        """Keys leave the table once nobody holds or waits on them."""
        locks = ResourceLocks()
        release = asyncio.Event()
        events: list[str] = []

        holder = asyncio.ensure_future(
            _hold(locks, "1:100:issue:1", events, release, within="1:100")
        )
        await asyncio.sleep(0.01)
        waiter = asyncio.ensure_future(_hold(locks, "1:100", events, asyncio.Event()))
        await asyncio.sleep(0.01)

        assert "1:100" in locks
        assert len(locks) == 2

        waiter.cancel()
        await asyncio.gather(waiter, return_exceptions=True)
        release.set()
        await holder

        assert len(locks) == 0
