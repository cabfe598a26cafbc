"""Capture coordinator.

A capture goes to the folder the caller asked for, else to a folder the
workspace collaborator provides, else to the transport default. After a
successful capture one forced read runs so the remaining-shot count is
current, then the result is published. A failed capture never changes the
connection state.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from pathlib import Path

from tether_mcp.devices.channel import DeviceChannel
from tether_mcp.devices.connection import ConnectionStateMachine
from tether_mcp.devices.errors import CaptureFailedError, TetherError
from tether_mcp.devices.parameters import CaptureResult
from tether_mcp.devices.sync import SyncLoop
from tether_mcp.drivers.cameras import TransportError
from tether_mcp.observability import get_logger

logger = get_logger(__name__)

__all__ = ["CaptureCoordinator", "WorkspaceProvider"]

#: Returns the folder a capture without an explicit folder should go to.
WorkspaceProvider = Callable[[], Awaitable[Path | str | None]]


class CaptureCoordinator:
    """Runs captures through the device channel."""

    def __init__(
        self,
        channel: DeviceChannel,
        sync: SyncLoop,
        connection: ConnectionStateMachine,
        *,
        workspace_provider: WorkspaceProvider | None = None,
        on_captured: Callable[[CaptureResult], None] | None = None,
    ) -> None:
        self._channel = channel
        self._sync = sync
        self._connection = connection
        self.workspace_provider = workspace_provider
        self._on_captured = on_captured

    async def resolve_folder(self, preferred_folder: Path | str | None) -> str | None:
        """Folder for the next capture, None for the transport default."""
        if preferred_folder:
            return str(preferred_folder)
        if self.workspace_provider is not None:
            folder = await self.workspace_provider()
            return str(folder) if folder else None
        return None

    async def capture(self, preferred_folder: Path | str | None = None) -> CaptureResult:
        """Capture one image and download it.

        Args:
            preferred_folder: Destination folder. None asks the workspace
                provider, or uses the transport default without one.

        Returns:
            The downloaded capture.

        Raises:
            CaptureFailedError: Not connected, no workspace folder could be
                made, or the camera failed to capture or download.
        """
        if not self._connection.is_connected:
            raise CaptureFailedError("Camera not connected")

        try:
            folder = await self.resolve_folder(preferred_folder)
        except (OSError, TetherError) as e:
            raise CaptureFailedError(f"Could not prepare capture folder: {e}") from e

        logger.info("Capture requested", folder=folder)
        transport = self._channel.transport
        try:
            raw = await self._channel.run("capture", transport.capture, folder)
        except TransportError as e:
            logger.warning("Capture failed", folder=folder, error=str(e))
            raise CaptureFailedError(f"Capture failed: {e}") from e

        result = CaptureResult.from_driver_capture(raw)
        logger.info(
            "Capture complete",
            file_path=result.file_path,
            width=result.width,
            height=result.height,
        )

        # A failed read here disconnects the session; the capture stands.
        await self._sync.refresh(force=True)

        if self._on_captured is not None:
            self._on_captured(result)
        return result
