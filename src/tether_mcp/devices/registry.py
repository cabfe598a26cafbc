"""Module-level session singleton for the MCP server and dashboard.

The server creates the session once at startup with init_session(); tool
handlers and dashboard routes reach it through get_session().

Example:
    from tether_mcp.devices.registry import get_session, init_session
    from tether_mcp.drivers.config import get_factory

    factory = get_factory()
    init_session(factory.create_transport(), factory.config)

    async def status_endpoint():
        return get_session().status()
"""

from __future__ import annotations

from tether_mcp.devices.capture import WorkspaceProvider
from tether_mcp.devices.session import TetherSession
from tether_mcp.drivers.cameras import CameraTransport
from tether_mcp.drivers.config import DriverConfig
from tether_mcp.observability import DeviceStats

__all__ = ["get_session", "init_session", "shutdown_session"]

_default_session: TetherSession | None = None


def init_session(
    transport: CameraTransport,
    config: DriverConfig | None = None,
    *,
    workspace_provider: WorkspaceProvider | None = None,
    stats: DeviceStats | None = None,
) -> TetherSession:
    """Create the global session, replacing any previous one.

    The previous session is not closed; call shutdown_session() first when
    one exists.
    """
    global _default_session
    _default_session = TetherSession(
        transport, config, workspace_provider=workspace_provider, stats=stats
    )
    return _default_session


def get_session() -> TetherSession:
    """Return the global session.

    Raises:
        RuntimeError: If init_session() has not been called.
    """
    if _default_session is None:
        raise RuntimeError("Session not initialized. Call init_session() first.")
    return _default_session


async def shutdown_session() -> None:
    """Close and drop the global session. No-op when none exists."""
    global _default_session
    session, _default_session = _default_session, None
    if session is not None:
        await session.close()
