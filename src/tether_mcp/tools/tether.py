"""MCP Tools for tethered camera control.

Uses the module-level TetherSession from the device layer. Works the same
with the libgphoto2 transport and the digital twin.

Every tool returns one TextContent holding JSON. Failures come back as
``{"error": <kind>, "message": ...}`` where kind is the TetherError kind
(``device_unavailable``, ``unsupported_parameter``,
``parameter_write_failed``, ``capture_failed``) or ``internal``.
"""

import json
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from tether_mcp.devices import TetherError, TetherSession, get_session
from tether_mcp.devices.parameters import SemanticParameter
from tether_mcp.observability import get_logger

logger = get_logger(__name__)

_PARAMETER_NAMES = [p.value for p in SemanticParameter]

# Tool definitions
TOOLS = [
    Tool(
        name="tether_status",
        description="Get the camera connection state, camera identity and workspace folder",
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    Tool(
        name="tether_connect",
        description="Detect and connect the first available camera",
        inputSchema={
            "type": "object",
            "properties": {
                "wait_s": {
                    "type": "number",
                    "description": "Seconds to wait for the first parameter read",
                    "default": 5.0,
                },
            },
            "required": [],
        },
    ),
    Tool(
        name="tether_disconnect",
        description="Disconnect the camera and release the USB device",
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    Tool(
        name="tether_get_params",
        description="Get the current camera parameters (ISO, shutter, aperture, ...)",
        inputSchema={
            "type": "object",
            "properties": {
                "refresh": {
                    "type": "boolean",
                    "description": "Read the camera now instead of returning the last poll",
                    "default": False,
                },
            },
            "required": [],
        },
    ),
    Tool(
        name="tether_list_controls",
        description=(
            "List every camera parameter with its current value, available "
            "choices and whether it can be changed on this camera"
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    Tool(
        name="tether_set_param",
        description=(
            "Set a camera parameter. The new value shows up in the parameters "
            "after the camera settles"
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "parameter": {
                    "type": "string",
                    "enum": _PARAMETER_NAMES,
                    "description": "Semantic parameter name",
                },
                "value": {
                    "type": "string",
                    "description": "One of the parameter's choices (see tether_list_controls)",
                },
            },
            "required": ["parameter", "value"],
        },
    ),
    Tool(
        name="tether_capture",
        description="Capture a photo and download it to the workspace folder",
        inputSchema={
            "type": "object",
            "properties": {
                "folder": {
                    "type": "string",
                    "description": "Destination folder (defaults to the workspace folder)",
                },
            },
            "required": [],
        },
    ),
    Tool(
        name="tether_set_workspace",
        description="Set the folder captures are downloaded to",
        inputSchema={
            "type": "object",
            "properties": {
                "folder": {
                    "type": "string",
                    "description": "Destination folder path",
                },
            },
            "required": ["folder"],
        },
    ),
    Tool(
        name="tether_stats",
        description="Get timing and error statistics of camera operations",
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
]


def register(server: Server) -> None:
    """Register tethering tools with the MCP server.

    Args:
        server: MCP Server instance, not yet running.
    """

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """Return available tethering tools."""
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Route tool calls to their implementations."""
        if name == "tether_status":
            return await _status()
        elif name == "tether_connect":
            return await _connect(arguments.get("wait_s", 5.0))
        elif name == "tether_disconnect":
            return await _disconnect()
        elif name == "tether_get_params":
            return await _get_params(arguments.get("refresh", False))
        elif name == "tether_list_controls":
            return await _list_controls()
        elif name == "tether_set_param":
            return await _set_param(arguments["parameter"], arguments["value"])
        elif name == "tether_capture":
            return await _capture(arguments.get("folder"))
        elif name == "tether_set_workspace":
            return await _set_workspace(arguments["folder"])
        elif name == "tether_stats":
            return await _stats()
        else:
            return _json({"error": "unknown_tool", "message": f"Unknown tool: {name}"})


# Tool implementations using the device layer


def _json(result: dict[str, Any]) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(result, indent=2))]


def _error(tool: str, e: Exception) -> list[TextContent]:
    if isinstance(e, TetherError):
        logger.warning("Tool failed", tool=tool, error=e.kind, message=str(e))
        return _json({"error": e.kind, "message": str(e)})
    logger.error("Tool crashed", tool=tool, error=str(e), exc_info=e)
    return _json({"error": "internal", "message": str(e)})


async def _status(session: TetherSession | None = None) -> list[TextContent]:
    """Connection state, camera identity and workspace folder."""
    try:
        session = session or get_session()
        return _json(session.status())
    except Exception as e:
        return _error("tether_status", e)


async def _connect(
    wait_s: float = 5.0, session: TetherSession | None = None
) -> list[TextContent]:
    """Connect the camera and wait up to ``wait_s`` for its parameters.

    Returns:
        JSON ``{"connected": true, "camera": {...}, "ready": bool,
        "parameters": {...} | null}``.
    """
    try:
        session = session or get_session()
        config = session.config
        camera = await session.connect(
            attempts=config.connect_attempts,
            retry_delay_s=config.connect_retry_delay_s,
        )
        ready = await session.wait_ready(timeout=wait_s)
        params = session.parameters
        return _json(
            {
                "connected": session.is_connected,
                "camera": camera,
                "ready": ready,
                "parameters": params.to_dict() if params else None,
            }
        )
    except Exception as e:
        return _error("tether_connect", e)


async def _disconnect(session: TetherSession | None = None) -> list[TextContent]:
    try:
        session = session or get_session()
        await session.disconnect()
        return _json({"connected": False})
    except Exception as e:
        return _error("tether_disconnect", e)


async def _get_params(
    refresh: bool = False, session: TetherSession | None = None
) -> list[TextContent]:
    """Current snapshot, optionally read fresh from the camera.

    Returns ``device_unavailable`` while disconnected and
    ``{"ready": false}`` while the session is still bootstrapping.
    """
    try:
        session = session or get_session()
        if not session.is_connected:
            return _json(
                {"error": "device_unavailable", "message": "Camera not connected"}
            )
        params = await session.refresh() if refresh else session.parameters
        if params is None:
            return _json({"ready": False, "parameters": None})
        return _json({"ready": True, "parameters": params.to_dict()})
    except Exception as e:
        return _error("tether_get_params", e)


async def _list_controls(session: TetherSession | None = None) -> list[TextContent]:
    try:
        session = session or get_session()
        return _json(
            {
                "state": session.state.value,
                "controls": [c.to_dict() for c in session.controls()],
            }
        )
    except Exception as e:
        return _error("tether_list_controls", e)


async def _set_param(
    parameter: str, value: str, session: TetherSession | None = None
) -> list[TextContent]:
    """Write one parameter. The snapshot updates after the settle delay."""
    try:
        session = session or get_session()
        await session.write(parameter, str(value))
        return _json(
            {
                "parameter": SemanticParameter.parse(parameter).value,
                "value": str(value),
                "accepted": True,
                "settle_delay_s": session.config.timing_for(
                    session.camera["model"] if session.camera else None
                ).settle_delay_s,
            }
        )
    except Exception as e:
        return _error("tether_set_param", e)


async def _capture(
    folder: str | None = None, session: TetherSession | None = None
) -> list[TextContent]:
    try:
        session = session or get_session()
        result = await session.capture(folder)
        params = session.parameters
        return _json(
            {
                "capture": result.to_dict(),
                "imagesRemaining": params.images_remaining if params else None,
            }
        )
    except Exception as e:
        return _error("tether_capture", e)


async def _set_workspace(
    folder: str, session: TetherSession | None = None
) -> list[TextContent]:
    try:
        session = session or get_session()
        await session.set_workspace_folder(folder)
        return _json({"workspaceFolder": str(session.workspace_folder)})
    except Exception as e:
        return _error("tether_set_workspace", e)


async def _stats(session: TetherSession | None = None) -> list[TextContent]:
    try:
        session = session or get_session()
        return _json(session.stats.to_dict())
    except Exception as e:
        return _error("tether_stats", e)
