"""Parameter store: the session's snapshot, alias map and write path.

The store is the only owner of the current CameraParameters and AliasMap.
Both exist only while the store is open (camera connected). The snapshot
changes only through replace(), which the sync loop calls with the result
of a successful read. A write goes to the camera and schedules a confirming
read after the settle delay; the snapshot shows the new value only once
that read returns it.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from tether_mcp.devices.channel import DeviceChannel
from tether_mcp.devices.errors import (
    DeviceUnavailableError,
    ParameterWriteError,
    UnsupportedParameterError,
)
from tether_mcp.devices.parameters import (
    AliasMap,
    CameraParameters,
    SemanticParameter,
)
from tether_mcp.drivers.cameras import TransportError
from tether_mcp.drivers.config import DEFAULT_SETTLE_DELAY_S
from tether_mcp.observability import get_logger

logger = get_logger(__name__)

__all__ = ["ParameterStore", "RefreshScheduler"]

#: Called with a delay in seconds to request a deferred read.
RefreshScheduler = Callable[[float], Any]


class ParameterStore:
    """Holds the last trusted snapshot and the resolved alias map."""

    def __init__(
        self,
        channel: DeviceChannel,
        settle_delay_s: float = DEFAULT_SETTLE_DELAY_S,
    ) -> None:
        self._channel = channel
        self.settle_delay_s = settle_delay_s
        self._open = False
        self._snapshot: CameraParameters | None = None
        self._aliases: AliasMap | None = None
        self._schedule_refresh: RefreshScheduler | None = None

    def attach_refresh_scheduler(self, scheduler: RefreshScheduler) -> None:
        """Set the callback used to request the read that confirms a write."""
        self._schedule_refresh = scheduler

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def snapshot(self) -> CameraParameters | None:
        return self._snapshot

    @property
    def aliases(self) -> AliasMap | None:
        return self._aliases

    def open(self) -> None:
        """Start a session with an empty alias map and no snapshot."""
        self._open = True
        self._aliases = AliasMap.empty()
        self._snapshot = None

    def install_aliases(self, aliases: AliasMap) -> None:
        if not self._open:
            raise DeviceUnavailableError("Cannot install aliases without a camera")
        self._aliases = aliases

    def replace(self, snapshot: CameraParameters) -> None:
        """Replace the whole snapshot with one read."""
        if not self._open:
            raise DeviceUnavailableError("Cannot store parameters without a camera")
        self._snapshot = snapshot

    def clear(self) -> None:
        """Drop snapshot and alias map; the store stays closed until open()."""
        self._open = False
        self._snapshot = None
        self._aliases = None

    # -------------------------------------------------------------------------
    # Device access
    # -------------------------------------------------------------------------

    async def read(self) -> CameraParameters:
        """Read a complete snapshot from the camera.

        Does not store it; the sync loop decides whether the result is
        still current.

        Raises:
            DeviceUnavailableError: Store closed, camera unreachable, or the
                read was incomplete.
        """
        if not self._open:
            raise DeviceUnavailableError("Camera not connected")
        transport = self._channel.transport
        try:
            raw = await self._channel.run("read", transport.get_params)
        except TransportError as e:
            raise DeviceUnavailableError(f"Camera read failed: {e}") from e
        try:
            return CameraParameters.from_driver_params(raw)
        except ValueError as e:
            raise DeviceUnavailableError(f"Camera read was incomplete: {e}") from e

    async def write(self, parameter: SemanticParameter | str, value: str) -> None:
        """Write one parameter to the camera.

        The snapshot is left untouched. On success a read is scheduled
        after ``settle_delay_s``.

        Raises:
            DeviceUnavailableError: No camera session.
            UnsupportedParameterError: Unknown parameter, or no resolved key.
            ParameterWriteError: The camera rejected the value. The session
                is not disconnected and nothing is retried.
        """
        param = SemanticParameter.parse(parameter)
        if not self._open or self._aliases is None:
            raise DeviceUnavailableError("Camera not connected")
        key = self._aliases.key_for(param)
        if key is None:
            raise UnsupportedParameterError(param.value)

        transport = self._channel.transport
        try:
            await self._channel.run("write", transport.set_config_value, key, value)
        except TransportError as e:
            logger.warning(
                "Parameter write rejected",
                parameter=param.value,
                key=key,
                value=value,
                error=str(e),
            )
            raise ParameterWriteError(
                param.value, value, f"Failed to set {param.value} to '{value}': {e}"
            ) from e

        logger.info("Parameter written", parameter=param.value, key=key, value=value)
        if self._schedule_refresh is not None:
            self._schedule_refresh(self.settle_delay_s)
