"""Background monitors: camera-side captures and hot-plug detection.

EventPump runs while a camera is connected. It asks the transport to wait
briefly for a capture taken with the shutter button on the body and hands
each downloaded file to the session.

AutoConnector runs while no camera is connected and periodically tries to
open one, so plugging a camera in connects it without a request.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING

from tether_mcp.devices.channel import DeviceChannel
from tether_mcp.devices.errors import DeviceUnavailableError
from tether_mcp.devices.parameters import CaptureResult
from tether_mcp.drivers.cameras import TransportError
from tether_mcp.drivers.config import (
    DEFAULT_EVENT_POLL_INTERVAL_S,
    DEFAULT_EVENT_WAIT_TIMEOUT_S,
    DEFAULT_RECONNECT_INTERVAL_S,
)
from tether_mcp.observability import get_logger

if TYPE_CHECKING:
    from tether_mcp.devices.session import TetherSession

logger = get_logger(__name__)

__all__ = ["AutoConnector", "EventPump"]


class _BackgroundTask:
    """Owns one named asyncio task."""

    _task_name = "tether-background"

    def __init__(self) -> None:
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=self._task_name
        )
        self._task.add_done_callback(self._on_done)

    def stop(self) -> None:
        """Cancel the task unless stop() is called from inside it."""
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def stop_and_wait(self) -> None:
        task = self._task
        self.stop()
        if task is not None and task is not asyncio.current_task():
            await asyncio.gather(task, return_exceptions=True)

    def _on_done(self, task: asyncio.Task[None]) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Background task crashed",
                task=task.get_name(),
                error=str(task.exception()),
                exc_info=task.exception(),
            )

    async def _run(self) -> None:  # pragma: no cover
        raise NotImplementedError


class EventPump(_BackgroundTask):
    """Polls the transport for captures taken on the camera body."""

    _task_name = "tether-event-pump"

    def __init__(
        self,
        channel: DeviceChannel,
        on_capture: Callable[[CaptureResult], None],
        *,
        interval_s: float = DEFAULT_EVENT_POLL_INTERVAL_S,
        wait_timeout_s: float = DEFAULT_EVENT_WAIT_TIMEOUT_S,
    ) -> None:
        """Create a pump.

        Args:
            channel: Device channel the polls go through.
            on_capture: Called with each camera-side capture.
            interval_s: Pause between polls, leaving the channel free.
            wait_timeout_s: How long each poll waits for a camera event.
        """
        super().__init__()
        self._channel = channel
        self._on_capture = on_capture
        self.interval_s = interval_s
        self.wait_timeout_s = wait_timeout_s

    async def poll_once(self) -> CaptureResult | None:
        """Poll one time. Transport errors are logged and yield None."""
        transport = self._channel.transport
        try:
            raw = await self._channel.run(
                "poll_events", transport.poll_new_capture, self.wait_timeout_s
            )
        except TransportError as e:
            # Liveness is decided by the read path, not here
            logger.debug("Camera event poll failed", error=str(e))
            return None
        if raw is None:
            return None
        result = CaptureResult.from_driver_capture(raw, source="camera")
        logger.info("Camera-side capture downloaded", file_path=result.file_path)
        self._on_capture(result)
        return result

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self.interval_s)


class AutoConnector(_BackgroundTask):
    """Tries to connect a camera whenever the session is disconnected."""

    _task_name = "tether-auto-connect"

    def __init__(
        self,
        session: TetherSession,
        *,
        interval_s: float = DEFAULT_RECONNECT_INTERVAL_S,
    ) -> None:
        super().__init__()
        self._session = session
        self.interval_s = interval_s
        self.attempts = 0
        self._last_error: str | None = None

    async def attempt(self) -> bool:
        """One connection attempt if disconnected. True when connected."""
        if self._session.is_connected:
            return True
        self.attempts += 1
        try:
            await self._session.connect(attempts=1)
        except DeviceUnavailableError as e:
            message = str(e)
            if message != self._last_error:
                logger.info("Waiting for camera", reason=message)
                self._last_error = message
            return False
        self._last_error = None
        return True

    async def _run(self) -> None:
        while True:
            await self.attempt()
            await asyncio.sleep(self.interval_s)
