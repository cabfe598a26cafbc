"""FastAPI web application for the tethering dashboard."""

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, Field

from tether_mcp.devices import (
    DeviceUnavailableError,
    SessionEvent,
    SessionEventKind,
    TetherError,
    TetherSession,
    get_session,
)
from tether_mcp.observability import get_logger

logger = get_logger(__name__)

# Paths
WEB_DIR = Path(__file__).parent
TEMPLATES_DIR = WEB_DIR / "templates"
STATIC_DIR = WEB_DIR / "static"

# Device-layer error kind -> HTTP status
ERROR_STATUS = {
    "unsupported_parameter": 404,
    "parameter_write_failed": 409,
    "capture_failed": 409,
    "download_folder_failed": 409,
    "device_unavailable": 503,
}

SessionProvider = Callable[[], TetherSession]


# Request bodies


class ParamWrite(BaseModel):
    value: str = Field(..., description="One of the parameter's choices")


class CaptureRequest(BaseModel):
    folder: str | None = Field(None, description="Destination folder")


class ConnectRequest(BaseModel):
    wait_s: float = Field(5.0, ge=0, description="Seconds to wait for parameters")


class WorkspaceRequest(BaseModel):
    folder: str = Field(..., description="Destination folder path")


def create_app(
    session_provider: SessionProvider | None = None,
    *,
    session_factory: SessionProvider | None = None,
) -> FastAPI:
    """Create the dashboard application.

    The application provides:
    - Dashboard UI at / showing the parameter controls
    - REST API for status, parameters, writes and captures at /api/*
    - Session events as JSON over the WebSocket at /ws/events

    Args:
        session_provider: Returns the session to serve. Defaults to the
            module-level session from get_session().
        session_factory: Builds a session at startup that the application
            owns and closes at shutdown. Takes precedence over
            ``session_provider``.

    Returns:
        Configured FastAPI application ready for uvicorn.

    Example:
        >>> app = create_app()
        >>> config = uvicorn.Config(app, host="127.0.0.1", port=8080)
        >>> await uvicorn.Server(config).serve()
    """
    owned: dict[str, TetherSession] = {}

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting tether dashboard")
        if session_factory is not None:
            owned["session"] = session_factory()
        yield
        logger.info("Shutting down tether dashboard")
        session = owned.pop("session", None)
        if session is not None:
            await session.close()

    def current_session() -> TetherSession:
        if session_factory is not None:
            return owned["session"]
        return (session_provider or get_session)()

    app = FastAPI(
        title="Tether Control",
        description="Web dashboard for tethered camera control",
        version="0.1.0",
        lifespan=lifespan,
    )

    if STATIC_DIR.exists():
        app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    templates = Jinja2Templates(directory=TEMPLATES_DIR)

    @app.exception_handler(TetherError)
    async def tether_error_handler(request: Request, exc: TetherError) -> JSONResponse:
        status = ERROR_STATUS.get(exc.kind, 500)
        logger.warning(
            "Request failed",
            path=request.url.path,
            error=exc.kind,
            message=str(exc),
            status=status,
        )
        return JSONResponse(
            {"error": exc.kind, "message": str(exc)}, status_code=status
        )

    # Routes
    @app.get("/", response_class=HTMLResponse)
    async def dashboard(request: Request) -> HTMLResponse:
        """Render the dashboard with the current controls."""
        session = current_session()
        return templates.TemplateResponse(
            request,
            "dashboard.html",
            {
                "title": "Tether Control",
                "status": session.status(),
                "controls": session.controls(),
            },
        )

    @app.get("/api/status")
    async def api_status() -> dict[str, Any]:
        return current_session().status()

    @app.get("/api/params")
    async def api_params(refresh: bool = False) -> dict[str, Any]:
        """Current snapshot; ``ready`` is false while bootstrapping.

        Raises:
            DeviceUnavailableError: Not connected (503).
        """
        session = current_session()
        if not session.is_connected:
            raise DeviceUnavailableError("Camera not connected")
        params = await session.refresh() if refresh else session.parameters
        return {
            "ready": params is not None,
            "parameters": params.to_dict() if params else None,
        }

    @app.get("/api/controls")
    async def api_controls() -> dict[str, Any]:
        session = current_session()
        return {
            "state": session.state.value,
            "controls": [c.to_dict() for c in session.controls()],
        }

    @app.get("/api/stats")
    async def api_stats() -> dict[str, Any]:
        return current_session().stats.to_dict()

    @app.put("/api/params/{parameter}", status_code=202)
    async def api_set_param(parameter: str, body: ParamWrite) -> dict[str, Any]:
        """Write one parameter.

        Accepted writes show up in /api/params after the settle delay.
        Unknown or unresolved parameters give 404, rejected values 409.
        """
        session = current_session()
        await session.write(parameter, body.value)
        return {"parameter": parameter, "value": body.value, "accepted": True}

    @app.post("/api/capture")
    async def api_capture(body: CaptureRequest | None = None) -> dict[str, Any]:
        session = current_session()
        result = await session.capture(body.folder if body else None)
        params = session.parameters
        return {
            "capture": result.to_dict(),
            "imagesRemaining": params.images_remaining if params else None,
        }

    @app.post("/api/connect")
    async def api_connect(body: ConnectRequest | None = None) -> dict[str, Any]:
        session = current_session()
        config = session.config
        camera = await session.connect(
            attempts=config.connect_attempts,
            retry_delay_s=config.connect_retry_delay_s,
        )
        ready = await session.wait_ready(timeout=body.wait_s if body else 5.0)
        params = session.parameters
        return {
            "connected": session.is_connected,
            "camera": camera,
            "ready": ready,
            "parameters": params.to_dict() if params else None,
        }

    @app.post("/api/disconnect")
    async def api_disconnect() -> dict[str, Any]:
        await current_session().disconnect()
        return {"connected": False}

    @app.put("/api/workspace")
    async def api_workspace(body: WorkspaceRequest) -> dict[str, Any]:
        session = current_session()
        await session.set_workspace_folder(body.folder)
        return {"workspaceFolder": str(session.workspace_folder)}

    @app.websocket("/ws/events")
    async def ws_events(websocket: WebSocket) -> None:
        """Stream session events as JSON.

        The first message is a status event with the current state, so a
        client that connects mid-session starts from a known snapshot.
        """
        session = current_session()
        await websocket.accept()
        async with session.events.subscribe() as subscription:
            hello = SessionEvent(
                SessionEventKind.STATUS, session.status(), session.generation
            )
            try:
                await websocket.send_json(hello.to_dict())
                async for event in subscription:
                    await websocket.send_json(event.to_dict())
            except WebSocketDisconnect:
                logger.debug("Event client disconnected")
                return
        await websocket.close()

    return app
