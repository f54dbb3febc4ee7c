"""Bounded, FIFO admission of concurrent work.

Each level of the fan-out tree owns its own gate, so limits compose
multiplicatively (N repositories x M leaves per repository).
"""

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar, Union

import structlog

from connector_sync.observability.metrics import set_gate_active

logger = structlog.get_logger(__name__)

T = TypeVar("T")

WorkFactory = Callable[[], Awaitable[T]]


class ConcurrencyGate:
    """Admits at most ``limit`` tasks at a time; the rest wait in submission order.

    Example:
        gate = ConcurrencyGate(limit=3, name="repositories")
        handles = [gate.admit(partial(sync_repo, repo)) for repo in repos]
        outcomes = await gate.await_all(handles)
    """

    def __init__(self, limit: int, name: str = "gate") -> None:
        if limit < 1:
            raise ValueError("ConcurrencyGate limit must be >= 1")
        self._limit = limit
        self._name = name
        self._queue: deque[tuple[WorkFactory[Any], asyncio.Future[Any]]] = deque()
        self._running: set[asyncio.Task[None]] = set()
        self._active = 0
        self._peak_active = 0
        self._submitted = 0
        self._completed = 0
        self._failed = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def active(self) -> int:
        """Number of admitted tasks currently executing."""
        return self._active

    @property
    def pending(self) -> int:
        """Number of submitted tasks waiting for admission."""
        return len(self._queue)

    @property
    def peak_active(self) -> int:
        return self._peak_active

    def stats(self) -> dict[str, int]:
        return {
            "limit": self._limit,
            "active": self._active,
            "pending": len(self._queue),
            "peak_active": self._peak_active,
            "submitted": self._submitted,
            "completed": self._completed,
            "failed": self._failed,
        }

    def admit(self, work: WorkFactory[T]) -> "asyncio.Future[T]":
        """Submit work; returns a future settled with the work's outcome.

        Args:
            work: Zero-argument callable returning an awaitable

        Returns:
            Future resolved with the result or the raised exception
        """
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._queue.append((work, future))
        self._submitted += 1
        self._drain()
        return future

    async def await_all(
        self,
        handles: Optional[Iterable["asyncio.Future[T]"]] = None,
    ) -> list[Union[T, BaseException]]:
        """Wait until every handle settled; failures never cancel siblings.

        Args:
            handles: Futures returned by admit; defaults to nothing pending

        Returns:
            Results or exceptions, in the order of ``handles``
        """
        handles = list(handles or [])
        if not handles:
            return []
        return await asyncio.gather(*handles, return_exceptions=True)

    async def cancel(self) -> None:
        """Drop queued work and cancel admitted work, waiting for it to stop."""
        while self._queue:
            _, future = self._queue.popleft()
            future.cancel()
        running = list(self._running)
        for task in running:
            task.cancel()
        if running:
            await asyncio.wait(running)

    def _drain(self) -> None:
        # Runs on the event loop thread only, so counter updates are atomic.
        while self._active < self._limit and self._queue:
            work, future = self._queue.popleft()
            if future.done():
                continue
            self._active += 1
            self._peak_active = max(self._peak_active, self._active)
            task = asyncio.ensure_future(self._run(work, future))
            self._running.add(task)
            task.add_done_callback(self._running.discard)
        set_gate_active(self._name, self._active)

    async def _run(self, work: WorkFactory[Any], future: "asyncio.Future[Any]") -> None:
        try:
            result = await work()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            self._failed += 1
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self._active -= 1
            self._completed += 1
            self._drain()
