"""Tether session: the single owner of one camera connection.

TetherSession composes the device channel, connection state machine,
config key resolver, parameter store, sync loop and capture coordinator.
Host code (MCP tools, the dashboard) talks only to the session and
listens to its event channel.

Lifecycle of one camera session:
    1. CONNECTED: generation bumps, the store opens with an empty alias
       map, a bootstrap task starts.
    2. Bootstrap resolves every parameter's config key, installs the alias
       map, starts the poll loop and runs the first trusted read.
    3. Polls, deferred reads after writes, and forced reads after captures
       keep the snapshot current.
    4. DISCONNECTED (explicit, hot-unplug, or a failed read): generation
       bumps, bootstrap and every timer are cancelled, snapshot and alias
       map are dropped, the transport is released in the background.

Example:
    from tether_mcp.devices import TetherSession
    from tether_mcp.drivers.cameras import DigitalTwinTransport

    session = TetherSession(DigitalTwinTransport("Nikon Z 6"))
    await session.connect()
    await session.wait_ready(timeout=2.0)
    await session.write("iso", "800")
    result = await session.capture()
    await session.close()
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from tether_mcp.devices.capture import CaptureCoordinator, WorkspaceProvider
from tether_mcp.devices.channel import DeviceChannel
from tether_mcp.devices.connection import ConnectionState, ConnectionStateMachine
from tether_mcp.devices.errors import (
    CaptureFailedError,
    DeviceUnavailableError,
    DownloadFolderError,
    TetherError,
)
from tether_mcp.devices.events import EventChannel, SessionEvent, SessionEventKind
from tether_mcp.devices.monitor import AutoConnector, EventPump
from tether_mcp.devices.parameters import (
    AliasMap,
    CameraParameters,
    CaptureResult,
    ParameterControl,
    SemanticParameter,
    build_controls,
)
from tether_mcp.devices.resolver import ConfigKeyResolver
from tether_mcp.devices.store import ParameterStore
from tether_mcp.devices.sync import SyncLoop
from tether_mcp.devices.workspace import DatedWorkspaceFactory
from tether_mcp.drivers.cameras import (
    CONFIG_KEY_CANDIDATES,
    CameraTransport,
    TransportError,
)
from tether_mcp.drivers.config import DriverConfig
from tether_mcp.observability import DeviceStats, LogContext, get_logger

logger = get_logger(__name__)

__all__ = ["TetherSession"]


class TetherSession:
    """Owns one tethered camera and its parameter state."""

    def __init__(
        self,
        transport: CameraTransport,
        config: DriverConfig | None = None,
        *,
        workspace_provider: WorkspaceProvider | None = None,
        stats: DeviceStats | None = None,
        candidates: Mapping[str, Sequence[str]] = CONFIG_KEY_CANDIDATES,
    ) -> None:
        """Create a disconnected session.

        Args:
            transport: Camera transport (libgphoto2 or digital twin).
            config: Timing, folders and monitor settings. Defaults apply
                when None.
            workspace_provider: Async callable returning a fresh folder for
                captures without one. When None and ``config.workspace_root``
                is set, dated folders are created under that root.
            stats: Device call statistics. A new collector when None.
            candidates: Semantic parameter -> candidate config keys.
        """
        self._config = config or DriverConfig()
        self._transport = transport
        self._channel = DeviceChannel(transport, stats)
        self._events = EventChannel()
        self._connection = ConnectionStateMachine()
        self._resolver = ConfigKeyResolver(self._channel, candidates)
        self._store = ParameterStore(
            self._channel, settle_delay_s=self._config.timing.settle_delay_s
        )
        self._sync = SyncLoop(
            self._store,
            on_params=self._on_params,
            on_failure=self._on_read_failure,
            poll_interval_s=self._config.timing.poll_interval_s,
        )
        self._store.attach_refresh_scheduler(self._sync.schedule_refresh)

        if workspace_provider is None and self._config.workspace_root is not None:
            workspace_provider = DatedWorkspaceFactory(self._config.workspace_root)
        self._workspace_provider = workspace_provider
        self._capture = CaptureCoordinator(
            self._channel,
            self._sync,
            self._connection,
            workspace_provider=self._provide_workspace if workspace_provider else None,
            on_captured=self._on_host_capture,
        )

        self._pump = EventPump(
            self._channel,
            self.handle_captured,
            interval_s=self._config.event_poll_interval_s,
            wait_timeout_s=self._config.event_wait_timeout_s,
        )
        self._auto_connector = AutoConnector(
            self, interval_s=self._config.reconnect_interval_s
        )

        self._generation = 0
        self._camera: dict[str, str] | None = None
        self._workspace_folder: Path | None = None
        self._last_error: str | None = None
        self._last_published: CameraParameters | None = None
        self._timing_applied = False
        self._monitoring = False
        self._ready = asyncio.Event()
        self._ready.set()
        self._bootstrap_task: asyncio.Task[None] | None = None
        self._release_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

        self._connection.add_listener(self._on_transition)

    def __repr__(self) -> str:
        model = self._camera["model"] if self._camera else None
        return (
            f"TetherSession(state={self.state.value}, model={model!r}, "
            f"generation={self._generation})"
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def config(self) -> DriverConfig:
        return self._config

    @property
    def transport(self) -> CameraTransport:
        return self._transport

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def is_connected(self) -> bool:
        return self._connection.is_connected

    @property
    def parameters(self) -> CameraParameters | None:
        """Last trusted snapshot; None while disconnected or bootstrapping."""
        return self._store.snapshot

    @property
    def aliases(self) -> AliasMap | None:
        """Resolved config keys; None while disconnected."""
        return self._store.aliases

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def events(self) -> EventChannel:
        return self._events

    @property
    def stats(self) -> DeviceStats:
        return self._channel.stats

    @property
    def sync(self) -> SyncLoop:
        return self._sync

    @property
    def camera(self) -> dict[str, str] | None:
        """``{"model", "port"}`` of the connected camera."""
        return dict(self._camera) if self._camera else None

    @property
    def workspace_folder(self) -> Path | None:
        return self._workspace_folder

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def monitoring(self) -> bool:
        return self._monitoring

    def status(self) -> dict[str, Any]:
        """JSON-ready summary for tools and the dashboard."""
        return {
            "state": self.state.value,
            "generation": self._generation,
            "camera": self.camera,
            "ready": self.parameters is not None,
            "workspaceFolder": (
                str(self._workspace_folder) if self._workspace_folder else None
            ),
            "monitoring": self._monitoring,
            "lastError": self._last_error,
        }

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    async def connect(
        self, attempts: int = 1, retry_delay_s: float | None = None
    ) -> dict[str, str]:
        """Detect and open a camera, then start the session.

        Returns immediately with the current camera when already connected.
        Parameters become available once bootstrap finishes; use
        wait_ready() to wait for them.

        Args:
            attempts: Connection attempts before giving up.
            retry_delay_s: Pause between attempts (config default if None).

        Returns:
            ``{"model", "port"}`` of the opened camera.

        Raises:
            DeviceUnavailableError: No camera could be opened.
            ValueError: ``attempts`` is less than 1.
        """
        if attempts < 1:
            raise ValueError(f"attempts must be at least 1, got {attempts}")
        if self.is_connected and self._camera is not None:
            return dict(self._camera)

        delay = (
            retry_delay_s
            if retry_delay_s is not None
            else self._config.connect_retry_delay_s
        )
        last_error: TransportError | None = None
        for attempt in range(1, attempts + 1):
            try:
                detected = await self._channel.run("connect", self._transport.connect)
            except TransportError as e:
                last_error = e
                logger.debug("Connect attempt failed", attempt=attempt, error=str(e))
                if attempt < attempts:
                    await asyncio.sleep(delay)
                continue
            self._camera = {"model": detected["model"], "port": detected["port"]}
            self._connection.handle_status(ConnectionState.CONNECTED)
            return dict(self._camera)

        self._last_error = str(last_error) if last_error else "No camera detected"
        raise DeviceUnavailableError(self._last_error) from last_error

    async def disconnect(self) -> None:
        """End the session and release the camera."""
        self._connection.mark_disconnected()
        release = self._release_task
        if release is not None:
            await asyncio.gather(release, return_exceptions=True)

    def handle_status(self, status: str | ConnectionState) -> bool:
        """Apply a connection status signal from the transport layer.

        Returns:
            True when the connection state changed.
        """
        return self._connection.handle_status(status)

    # -------------------------------------------------------------------------
    # Parameters
    # -------------------------------------------------------------------------

    async def refresh(self) -> CameraParameters | None:
        """Read the camera now.

        Returns:
            The fresh snapshot, or the current one (None while
            bootstrapping) when no read could be made right now.

        Raises:
            DeviceUnavailableError: Not connected, or the read failed and
                the session disconnected.
        """
        if not self.is_connected:
            raise DeviceUnavailableError("Camera not connected")
        snapshot = await self._sync.refresh(force=True)
        if snapshot is not None:
            return snapshot
        if not self.is_connected:
            raise DeviceUnavailableError(self._last_error or "Camera not connected")
        return self.parameters

    async def write(self, parameter: SemanticParameter | str, value: str) -> None:
        """Write one parameter. The snapshot updates after the settle delay.

        Raises:
            DeviceUnavailableError: Not connected.
            UnsupportedParameterError: No resolved key for the parameter.
            ParameterWriteError: The camera rejected the value.
        """
        try:
            await self._store.write(parameter, value)
        except TetherError as e:
            self._publish_error(e, parameter=str(getattr(parameter, "value", parameter)))
            raise

    def controls(self) -> list[ParameterControl]:
        """Display state of every parameter control."""
        return build_controls(self.parameters, self._store.aliases)

    async def wait_ready(self, timeout: float | None = None) -> bool:
        """Wait for the first trusted read of the current session.

        Returns:
            True when a snapshot is available, False on timeout or when
            the session ended first.
        """
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except TimeoutError:
            return False
        return self.parameters is not None

    # -------------------------------------------------------------------------
    # Capture and workspace
    # -------------------------------------------------------------------------

    async def capture(self, folder: Path | str | None = None) -> CaptureResult:
        """Capture into ``folder``, the workspace folder, or a new workspace.

        Raises:
            CaptureFailedError: Not connected or the capture failed.
        """
        try:
            return await self._capture.capture(folder or self._workspace_folder)
        except CaptureFailedError as e:
            self._publish_error(e)
            raise

    def handle_captured(self, result: CaptureResult | Mapping[str, Any]) -> None:
        """Route a capture taken on the camera body.

        Publishes it and schedules a read so the shot counter updates.
        """
        if not isinstance(result, CaptureResult):
            result = CaptureResult.from_driver_capture(result, source="camera")
        payload = result.to_dict()
        payload.setdefault("source", "camera")
        self._publish(SessionEventKind.CAPTURED, payload)
        self._sync.schedule_refresh(0.0)

    async def set_workspace_folder(self, folder: Path | str | None) -> None:
        """Set the folder captures go to, including camera-side captures.

        Raises:
            DownloadFolderError: The camera refused the folder. The session
                stays connected.
        """
        workspace = Path(folder) if folder else None
        path = str(workspace) if workspace else None
        try:
            await self._channel.run(
                "download_folder", self._transport.set_download_folder, path
            )
        except TransportError as e:
            raise DownloadFolderError(f"Could not set download folder: {e}") from e
        self._workspace_folder = workspace
        logger.info("Workspace folder set", folder=path)

    async def _provide_workspace(self) -> Path | None:
        if self._workspace_provider is None:
            return self._workspace_folder
        folder = await self._workspace_provider()
        if folder:
            await self.set_workspace_folder(folder)
        return self._workspace_folder

    # -------------------------------------------------------------------------
    # Monitoring
    # -------------------------------------------------------------------------

    def start_monitoring(self) -> None:
        """Start hot-plug detection and camera-side capture polling."""
        self._monitoring = True
        if self._config.auto_connect:
            self._auto_connector.start()
        if self.is_connected:
            self._pump.start()

    def stop_monitoring(self) -> None:
        self._monitoring = False
        self._auto_connector.stop()
        self._pump.stop()

    async def close(self) -> None:
        """Stop every task, disconnect and close all subscriptions."""
        self._monitoring = False
        await self._auto_connector.stop_and_wait()
        await self._pump.stop_and_wait()
        if self.is_connected:
            await self.disconnect()
        self._sync.stop()
        await self._sync.drain()
        if self._bootstrap_task is not None:
            self._bootstrap_task.cancel()
            await asyncio.gather(self._bootstrap_task, return_exceptions=True)
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._events.close()
        logger.info("Session closed")

    # -------------------------------------------------------------------------
    # Transitions and callbacks
    # -------------------------------------------------------------------------

    def _on_transition(
        self, previous: ConnectionState, current: ConnectionState
    ) -> None:
        if current is ConnectionState.CONNECTED:
            if previous is ConnectionState.CONNECTED:
                self._sync.schedule_refresh(0.0)
                return
            self._begin_session()
        else:
            self._end_session()

    def _begin_session(self) -> None:
        self._generation += 1
        generation = self._generation
        self._store.open()
        self._ready.clear()
        self._timing_applied = False
        self._last_published = None
        self._last_error = None
        self._publish(SessionEventKind.STATUS, self.status())

        model = self._camera["model"] if self._camera else None
        with LogContext(generation=generation, camera_model=model):
            logger.info("Camera session started")
            self._bootstrap_task = self._spawn(
                self._bootstrap(generation), name="tether-bootstrap"
            )
        if self._monitoring:
            self._pump.start()

    def _end_session(self) -> None:
        self._generation += 1
        current = asyncio.current_task()
        if self._bootstrap_task is not None and self._bootstrap_task is not current:
            self._bootstrap_task.cancel()
        self._bootstrap_task = None
        self._sync.stop()
        self._pump.stop()
        self._store.clear()
        self._camera = None
        self._last_published = None
        self._ready.set()
        logger.info("Camera session ended", reason=self._last_error)
        self._publish(SessionEventKind.STATUS, self.status())
        self._release_task = self._spawn(self._release_transport(), name="tether-release")

    async def _bootstrap(self, generation: int) -> None:
        aliases = await self._resolver.resolve_all()
        if generation != self._generation:
            return
        self._store.install_aliases(aliases)
        logger.info(
            "Config keys resolved",
            resolved=len(aliases),
            unsupported=[p.value for p in SemanticParameter if p not in aliases],
        )
        self._publish(SessionEventKind.ALIASES, aliases.to_dict())
        self._sync.start()
        await self._sync.refresh(force=True)

    async def _release_transport(self) -> None:
        try:
            await self._channel.run("disconnect", self._transport.disconnect)
        except TransportError as e:
            logger.debug("Transport release failed", error=str(e))

    def _on_params(self, snapshot: CameraParameters) -> None:
        if not self._timing_applied:
            self._apply_timing(snapshot.model)
        if self._camera is None:
            self._camera = {"model": snapshot.model, "port": snapshot.port}
        self._last_error = None
        self._ready.set()
        if snapshot != self._last_published:
            self._last_published = snapshot
            self._publish(SessionEventKind.PARAMS, snapshot.to_dict())

    def _apply_timing(self, model: str) -> None:
        timing = self._config.timing_for(model)
        self._store.settle_delay_s = timing.settle_delay_s
        self._sync.poll_interval_s = timing.poll_interval_s
        self._timing_applied = True
        logger.debug(
            "Timing applied",
            model=model,
            poll_interval_s=timing.poll_interval_s,
            settle_delay_s=timing.settle_delay_s,
        )

    def _on_read_failure(self, error: DeviceUnavailableError) -> None:
        self._last_error = str(error)
        self._connection.mark_disconnected()

    def _on_host_capture(self, result: CaptureResult) -> None:
        payload = result.to_dict()
        payload.setdefault("source", "host")
        self._publish(SessionEventKind.CAPTURED, payload)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _publish(self, kind: SessionEventKind, payload: dict[str, Any]) -> None:
        self._events.publish(SessionEvent(kind, payload, self._generation))

    def _publish_error(self, error: TetherError, **context: Any) -> None:
        self._publish(
            SessionEventKind.ERROR,
            {"error": error.kind, "message": str(error), **context},
        )

    def _spawn(self, coro: Any, name: str) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Session task crashed",
                task=task.get_name(),
                error=str(task.exception()),
                exc_info=task.exception(),
            )
