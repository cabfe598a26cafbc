"""Synchronization loop: keeps the parameter snapshot current.

Three things request reads: the periodic poll timer, deferred reads
scheduled after writes and camera-side captures, and forced reads after
captures and on session bootstrap. All of them end in refresh(), which
allows one unforced read in flight at a time and drops requests that
arrive meanwhile. Reads themselves are serialized with writes by the
device channel.

Every start() and stop() bumps an epoch. A read that completes after the
epoch moved on belongs to a finished session and is discarded.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from tether_mcp.devices.errors import DeviceUnavailableError
from tether_mcp.devices.parameters import CameraParameters
from tether_mcp.devices.store import ParameterStore
from tether_mcp.drivers.config import DEFAULT_POLL_INTERVAL_S
from tether_mcp.observability import get_logger

logger = get_logger(__name__)

__all__ = ["SyncLoop"]

ParamsCallback = Callable[[CameraParameters], None]
FailureCallback = Callable[[DeviceUnavailableError], None]


class SyncLoop:
    """Polls the camera while running and routes read results.

    Args:
        store: Store that reads go through and results are written to.
        on_params: Called with each fresh snapshot after it is stored.
        on_failure: Called when a read fails. The session treats this as
            the camera going away.
        poll_interval_s: Period of the background poll.
    """

    def __init__(
        self,
        store: ParameterStore,
        *,
        on_params: ParamsCallback | None = None,
        on_failure: FailureCallback | None = None,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
    ) -> None:
        self._store = store
        self._on_params = on_params
        self._on_failure = on_failure
        self.poll_interval_s = poll_interval_s

        self._running = False
        self._epoch = 0
        self._reads_in_flight = 0
        self._timer_task: asyncio.Task[None] | None = None
        self._deferred: set[asyncio.Task[None]] = set()
        self.suppressed_reads = 0

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def poll_interval_s(self) -> float:
        return self._poll_interval_s

    @poll_interval_s.setter
    def poll_interval_s(self, value: float) -> None:
        if value <= 0:
            raise ValueError(f"poll_interval_s must be positive, got {value}")
        self._poll_interval_s = value

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def read_in_flight(self) -> bool:
        return self._reads_in_flight > 0

    @property
    def pending_refreshes(self) -> int:
        """Deferred reads scheduled and not yet finished."""
        return len(self._deferred)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the poll timer. Must be called from a running event loop."""
        if self._running:
            return
        self._running = True
        self._epoch += 1
        self._timer_task = asyncio.get_running_loop().create_task(
            self._run_timer(self._epoch), name="tether-poll"
        )
        self._timer_task.add_done_callback(self._on_task_done)
        logger.debug("Sync loop started", poll_interval_s=self._poll_interval_s)

    def stop(self) -> None:
        """Stop polling and cancel every deferred read.

        The task calling stop() is never cancelled by it, so a read that
        fails and triggers a disconnect finishes its own callback chain.
        """
        was_running = self._running
        self._running = False
        self._epoch += 1

        current = asyncio.current_task() if _loop_running() else None
        tasks = list(self._deferred)
        if self._timer_task is not None:
            tasks.append(self._timer_task)
            self._timer_task = None
        for task in tasks:
            if task is not current:
                task.cancel()
        if was_running:
            logger.debug("Sync loop stopped", cancelled=len(tasks))

    async def drain(self) -> None:
        """Wait until every deferred read has finished."""
        while self._deferred:
            await asyncio.gather(*list(self._deferred), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def refresh(self, force: bool = False) -> CameraParameters | None:
        """Read the camera and store the snapshot.

        Args:
            force: Read even when another read is in flight. Still waits
                for the device channel.

        Returns:
            The new snapshot, or None when the loop is stopped, the request
            was suppressed, the read failed, or the result was stale.
        """
        if not self._running:
            return None
        if self._reads_in_flight and not force:
            self.suppressed_reads += 1
            logger.debug("Read suppressed, another read in flight")
            return None

        epoch = self._epoch
        self._reads_in_flight += 1
        try:
            snapshot = await self._store.read()
        except DeviceUnavailableError as e:
            if epoch != self._epoch:
                return None
            logger.warning("Camera read failed", error=str(e))
            if self._on_failure is not None:
                self._on_failure(e)
            return None
        finally:
            self._reads_in_flight -= 1

        if epoch != self._epoch or not self._running:
            logger.debug("Discarding read from a finished session")
            return None

        self._store.replace(snapshot)
        if self._on_params is not None:
            self._on_params(snapshot)
        return snapshot

    def schedule_refresh(self, delay_s: float = 0.0) -> asyncio.Task[None] | None:
        """Request a read after ``delay_s`` seconds.

        Returns:
            The tracked task, or None when the loop is not running.
        """
        if not self._running:
            return None
        task = asyncio.get_running_loop().create_task(
            self._deferred_refresh(delay_s, self._epoch), name="tether-deferred-read"
        )
        self._deferred.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    async def _deferred_refresh(self, delay_s: float, epoch: int) -> None:
        if delay_s > 0:
            await asyncio.sleep(delay_s)
        if epoch != self._epoch:
            return
        await self.refresh()

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._deferred.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Sync task crashed",
                error=str(task.exception()),
                exc_info=task.exception(),
            )

    async def _run_timer(self, epoch: int) -> None:
        while self._running and epoch == self._epoch:
            await asyncio.sleep(self._poll_interval_s)
            if epoch != self._epoch:
                return
            await self.refresh()


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True
