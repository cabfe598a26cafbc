"""Device layer - camera session, parameter sync and config key resolution."""

from tether_mcp.devices.capture import CaptureCoordinator
from tether_mcp.devices.channel import DeviceChannel
from tether_mcp.devices.connection import ConnectionState, ConnectionStateMachine
from tether_mcp.devices.errors import (
    CaptureFailedError,
    DeviceUnavailableError,
    DownloadFolderError,
    ParameterWriteError,
    TetherError,
    UnsupportedParameterError,
)
from tether_mcp.devices.events import (
    EventChannel,
    SessionEvent,
    SessionEventKind,
    Subscription,
)
from tether_mcp.devices.monitor import AutoConnector, EventPump
from tether_mcp.devices.parameters import (
    AliasMap,
    CameraParameters,
    CaptureResult,
    ParameterControl,
    ResolvedKey,
    SemanticParameter,
    build_controls,
)
from tether_mcp.devices.registry import (
    get_session,
    init_session,
    shutdown_session,
)
from tether_mcp.devices.resolver import ConfigKeyResolver
from tether_mcp.devices.session import TetherSession
from tether_mcp.devices.store import ParameterStore
from tether_mcp.devices.sync import SyncLoop
from tether_mcp.devices.workspace import DatedWorkspaceFactory

__all__ = [
    # Session
    "TetherSession",
    "init_session",
    "get_session",
    "shutdown_session",
    # Components
    "CaptureCoordinator",
    "ConfigKeyResolver",
    "ConnectionState",
    "ConnectionStateMachine",
    "DatedWorkspaceFactory",
    "DeviceChannel",
    "ParameterStore",
    "SyncLoop",
    # Monitors
    "AutoConnector",
    "EventPump",
    # Events
    "EventChannel",
    "SessionEvent",
    "SessionEventKind",
    "Subscription",
    # Parameters
    "AliasMap",
    "CameraParameters",
    "CaptureResult",
    "ParameterControl",
    "ResolvedKey",
    "SemanticParameter",
    "build_controls",
    # Errors
    "CaptureFailedError",
    "DeviceUnavailableError",
    "DownloadFolderError",
    "ParameterWriteError",
    "TetherError",
    "UnsupportedParameterError",
]
