"""Worker-local exclusivity for activities that touch the same mirrored resource.

Keys are hierarchical: ``c:repo`` names a container and ``c:repo:issue:7``
a resource inside it. Work on a child resource holds the container key
shared and its own key exclusively; work on the whole container holds the
container key exclusively. A repository deletion therefore waits for every
in-flight issue, discussion and code sync of that repository, and no new
one starts until it finishes.

Keys are always taken container first, so holders never wait on each other
in a cycle.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class _KeyState:
    condition: asyncio.Condition = field(default_factory=asyncio.Condition)
    readers: int = 0
    writer: bool = False
    writers_waiting: int = 0
    users: int = 0


class ResourceLocks:
    """Keyed reader/writer locks; a key's state is dropped once nobody uses it.

    Example:
        locks = ResourceLocks()
        async with locks.hold("1:100:issue:7", within="1:100"):
            await upsert_issue(...)
    """

    def __init__(self) -> None:
        self._keys: dict[str, _KeyState] = {}

    def __len__(self) -> int:
        """Number of keys currently held or waited on."""
        return len(self._keys)

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    @asynccontextmanager
    async def hold(self, key: str, within: Optional[str] = None) -> AsyncIterator[None]:
        """Hold ``key`` exclusively, and ``within`` shared around it.

        Args:
            key: Resource key
            within: Key of the owning container, if any
        """
        if within is None or within == key:
            async with self._exclusive(key):
                yield
            return

        async with self._shared(within):
            async with self._exclusive(key):
                yield

    @asynccontextmanager
    async def _shared(self, key: str) -> AsyncIterator[None]:
        state = self._enter(key)
        try:
            async with state.condition:
                # Writers are preferred so a container GC is not starved by leaf syncs.
                await state.condition.wait_for(
                    lambda: not state.writer and state.writers_waiting == 0
                )
                state.readers += 1
            try:
                yield
            finally:
                async with state.condition:
                    state.readers -= 1
                    state.condition.notify_all()
        finally:
            self._leave(key, state)

    @asynccontextmanager
    async def _exclusive(self, key: str) -> AsyncIterator[None]:
        state = self._enter(key)
        try:
            async with state.condition:
                state.writers_waiting += 1
                try:
                    await state.condition.wait_for(
                        lambda: not state.writer and state.readers == 0
                    )
                finally:
                    state.writers_waiting -= 1
                    state.condition.notify_all()
                state.writer = True
            try:
                yield
            finally:
                async with state.condition:
                    state.writer = False
                    state.condition.notify_all()
        finally:
            self._leave(key, state)

    def _enter(self, key: str) -> _KeyState:
        state = self._keys.get(key)
        if state is None:
            state = self._keys[key] = _KeyState()
        state.users += 1
        return state

    def _leave(self, key: str, state: _KeyState) -> None:
        state.users -= 1
        if state.users == 0 and self._keys.get(key) is state:
            del self._keys[key]
            logger.debug("resource_lock_released", key=key)
