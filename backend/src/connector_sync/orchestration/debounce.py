"""Debounced incremental sync.

A DebounceLoop folds bursts of change notifications for one resource into a
single sync pass that runs after a full quiet window. It runs inside a
long-lived workflow; notifications arrive as signals.

    Idle --notify--> Pending --notify--> Pending (window restarts, coalesced + 1)
                        |
                        +--window elapses--> sync pass --> Idle

A notification that arrives while a pass is running arms the next cycle,
so the change it announces is picked up by a later pass.
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

from temporalio import workflow
from temporalio.exceptions import ActivityError

from connector_sync.observability.metrics import record_debounce_pass

from .invoker import describe_failure, unless_replaying

SyncPass = Callable[["DebounceState"], Awaitable[Any]]


@dataclass
class DebounceState:
    """Notification state of one quiet-window cycle.

    Attributes:
        pending: A notification arrived since the last pass
        coalesced_count: Notifications folded into the next pass beyond the first
    """

    pending: bool = False
    coalesced_count: int = 0


class DebounceLoop:
    """Coalesces notifications into sync passes separated by quiet windows.

    The loop runs until it has completed ``max_passes`` passes with nothing
    pending, so the hosting workflow can continue as new with a fresh
    history. Cancellation during a sync pass waits for the pass to end.
    """

    def __init__(
        self,
        window_seconds: float,
        kind: str = "resource",
        name: Optional[str] = None,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._window = timedelta(seconds=window_seconds)
        self._kind = kind
        self._name = name or kind
        self._state = DebounceState()
        self._notifications = 0
        self._passes = 0

    @property
    def state(self) -> DebounceState:
        return self._state

    @property
    def passes(self) -> int:
        """Number of sync passes started so far."""
        return self._passes

    def notify(self, payload: Any = None) -> None:
        """Record a change notification. Called from the signal handler."""
        self._notifications += 1
        if self._state.pending:
            self._state.coalesced_count += 1
            workflow.logger.debug(
                "debounce_window_restarted",
                extra={"loop": self._name, "coalesced_count": self._state.coalesced_count},
            )
        else:
            self._state.pending = True
            workflow.logger.info(
                "debounce_armed",
                extra={"loop": self._name, "window_seconds": self._window.total_seconds()},
            )

    async def run(self, sync_pass: SyncPass, max_passes: Optional[int] = None) -> None:
        """Wait for a notification, wait out the window, sync; repeat.

        Args:
            sync_pass: Coroutine function running one pass
            max_passes: Return once this many passes ran and nothing is pending
        """
        while True:
            if max_passes is not None and self._passes >= max_passes and not self._state.pending:
                return
            await workflow.wait_condition(lambda: self._state.pending)
            await self._wait_quiet_window()

            snapshot = DebounceState(
                pending=self._state.pending,
                coalesced_count=self._state.coalesced_count,
            )
            self._state = DebounceState()
            await self._run_pass(sync_pass, snapshot)

    async def _wait_quiet_window(self) -> None:
        while True:
            seen = self._notifications
            try:
                await workflow.wait_condition(
                    lambda: self._notifications != seen, timeout=self._window
                )
            except asyncio.TimeoutError:
                return

    async def _run_pass(self, sync_pass: SyncPass, snapshot: DebounceState) -> None:
        self._passes += 1
        workflow.logger.info(
            "debounce_pass_started",
            extra={"loop": self._name, "coalesced_count": snapshot.coalesced_count},
        )
        unless_replaying(record_debounce_pass, self._kind, snapshot.coalesced_count)

        running = asyncio.ensure_future(sync_pass(snapshot))
        try:
            await asyncio.shield(running)
        except asyncio.CancelledError:
            # Cancellation between cycles only: let the pass finish first.
            if not running.done():
                await asyncio.wait({running})
            self._log_outcome(running)
            raise
        except ActivityError as e:
            workflow.logger.warning(
                "debounce_pass_failed",
                extra={"loop": self._name, "error": describe_failure(e)},
            )
            return
        workflow.logger.info("debounce_pass_completed", extra={"loop": self._name})

    def _log_outcome(self, running: "asyncio.Future[Any]") -> None:
        if running.cancelled():
            return
        error = running.exception()
        if error is not None:
            workflow.logger.warning(
                "debounce_pass_failed",
                extra={"loop": self._name, "error": describe_failure(error)},
            )
        else:
            workflow.logger.info("debounce_pass_completed", extra={"loop": self._name})
