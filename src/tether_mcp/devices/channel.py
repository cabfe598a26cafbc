"""Single serialization point for camera transport calls.

Every blocking transport call (reads, writes, probes, captures, event
polls, connect/disconnect) goes through DeviceChannel.run(), which holds
an asyncio.Lock around ``loop.run_in_executor``. The lock is FIFO, so
calls reach the camera in request order and never overlap.

A transport call cannot be interrupted once it is on the executor. When
the awaiting task is cancelled, the channel keeps the lock until the call
returns, then re-raises the cancellation.
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections.abc import Callable
from typing import Any, TypeVar

from tether_mcp.drivers.cameras import CameraTransport
from tether_mcp.observability import DeviceStats, get_logger

logger = get_logger(__name__)

__all__ = ["DeviceChannel"]

T = TypeVar("T")


class DeviceChannel:
    """Serializes transport calls and records their timing.

    Example:
        channel = DeviceChannel(transport)
        params = await channel.run("read", transport.get_params)
    """

    def __init__(
        self, transport: CameraTransport, stats: DeviceStats | None = None
    ) -> None:
        self._transport = transport
        self._stats = stats if stats is not None else DeviceStats()
        self._lock = asyncio.Lock()

    @property
    def transport(self) -> CameraTransport:
        return self._transport

    @property
    def stats(self) -> DeviceStats:
        return self._stats

    @property
    def busy(self) -> bool:
        """True while a call holds the channel."""
        return self._lock.locked()

    async def run(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        """Run ``func(*args)`` on the executor once the channel is free.

        Args:
            operation: Stats bucket, e.g. "read", "write", "probe".
            func: Blocking transport method.
            *args: Positional arguments for ``func``.

        Returns:
            Whatever ``func`` returns.

        Raises:
            Whatever ``func`` raises, unchanged.
        """
        async with self._lock:
            loop = asyncio.get_running_loop()
            start = time.perf_counter()
            future = loop.run_in_executor(None, functools.partial(func, *args))
            try:
                result = await asyncio.shield(future)
            except asyncio.CancelledError:
                await self._wait_out(future)
                self._record(operation, start, future.exception())
                raise
            except Exception as e:
                self._record(operation, start, e)
                raise
            self._record(operation, start, None)
            return result

    @staticmethod
    async def _wait_out(future: asyncio.Future[Any]) -> None:
        """Wait for an executor call whose caller was cancelled."""
        while not future.done():
            try:
                await asyncio.wait({future})
            except asyncio.CancelledError:
                continue

    def _record(
        self, operation: str, start: float, error: BaseException | None
    ) -> None:
        duration_ms = (time.perf_counter() - start) * 1000
        self._stats.record(
            operation,
            duration_ms,
            success=error is None,
            error_type=type(error).__name__ if error is not None else None,
        )
        if error is not None:
            logger.debug(
                "Device call failed",
                operation=operation,
                duration_ms=round(duration_ms, 2),
                error=str(error),
            )
