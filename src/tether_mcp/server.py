"""MCP Server entry point for tethered camera control."""

import argparse
import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

import uvicorn
from mcp.server import Server
from mcp.server.stdio import stdio_server

from tether_mcp.drivers.cameras import DEFAULT_TWIN_MODEL
from tether_mcp.drivers.config import (
    DEFAULT_POLL_INTERVAL_S,
    DEFAULT_SETTLE_DELAY_S,
    DriverConfig,
    DriverMode,
    TimingProfile,
    configure,
    get_factory,
)
from tether_mcp.observability import configure_logging, get_logger
from tether_mcp.tools import tether
from tether_mcp.web.app import create_app

logger = get_logger(__name__)


@dataclass
class DashboardState:
    """Container for the dashboard server and the task serving it."""

    task: asyncio.Task[None] | None = field(default=None)
    server: uvicorn.Server | None = field(default=None)


_dashboard = DashboardState()


def create_server() -> Server:
    """Create the MCP server and register the tethering tools.

    The session itself is created by run_server(); tools look it up
    through get_session() at call time.

    Returns:
        Configured MCP Server instance.
    """
    server = Server("tether-mcp")
    tether.register(server)
    return server


def build_config(args: argparse.Namespace) -> DriverConfig:
    """Turn parsed arguments into a DriverConfig.

    Raises:
        ValueError: Invalid timing values.
    """
    config = DriverConfig(
        mode=DriverMode(args.mode),
        timing=TimingProfile(
            poll_interval_s=args.poll_interval,
            settle_delay_s=args.settle_delay,
        ),
        auto_connect=not args.no_auto_connect,
        twin_model=args.twin_model,
    )
    if args.capture_dir:
        config.capture_dir = Path(args.capture_dir).expanduser()
    if args.workspace_root:
        config.workspace_root = Path(args.workspace_root).expanduser()
    return config


async def start_dashboard(
    host: str = "127.0.0.1", port: int = 8080, log_level: str = "warning"
) -> None:
    """Serve the web dashboard as a task on the running event loop.

    The dashboard shares the loop with the MCP server, so both reach the
    same session without crossing threads. No-op if already running.

    Args:
        host: Address to bind (use 0.0.0.0 for remote access).
        port: Port to listen on.
        log_level: Uvicorn log level.
    """
    if _dashboard.task is not None and not _dashboard.task.done():
        logger.warning("Dashboard already running")
        return

    config = uvicorn.Config(
        create_app(),
        host=host,
        port=port,
        log_level=log_level,
        ws="websockets-sansio",
    )
    _dashboard.server = uvicorn.Server(config)
    _dashboard.task = asyncio.get_running_loop().create_task(
        _serve_dashboard(_dashboard.server, host, port),
        name=f"tether-dashboard-{host}:{port}",
    )
    logger.info(f"Dashboard started at http://{host}:{port}")


async def _serve_dashboard(server: uvicorn.Server, host: str, port: int) -> None:
    try:
        await server.serve()
    except OSError as e:
        logger.error("Dashboard failed to start", error=str(e), host=host, port=port)


async def stop_dashboard() -> None:
    """Ask the dashboard to exit and wait for it. No-op when not running."""
    server, task = _dashboard.server, _dashboard.task
    _dashboard.server = None
    _dashboard.task = None
    if server is not None:
        logger.info("Stopping dashboard server")
        server.should_exit = True
    if task is not None:
        await asyncio.gather(task, return_exceptions=True)


async def run_server(
    config: DriverConfig,
    dashboard_host: str | None = None,
    dashboard_port: int | None = None,
    dashboard_log_level: str = "warning",
) -> None:
    """Run the MCP server over stdio until stdin closes.

    Creates the transport and the global session from ``config``, starts
    hot-plug monitoring, optionally serves the dashboard, then runs the MCP
    protocol over stdin/stdout. The session is always shut down on exit.

    Args:
        config: Driver mode, folders and timing.
        dashboard_host: Host for the dashboard, or None to disable it.
        dashboard_port: Port for the dashboard, or None to disable it.
        dashboard_log_level: Uvicorn log level for the dashboard.

    Example:
        >>> asyncio.run(run_server(DriverConfig(), "127.0.0.1", 8080))
    """
    from tether_mcp.devices import init_session, shutdown_session

    configure(config)
    transport = get_factory().create_transport()
    session = init_session(transport, config)
    logger.info(
        "Session created",
        mode=config.mode.value,
        transport=type(transport).__name__,
    )

    server = create_server()
    session.start_monitoring()

    if dashboard_host and dashboard_port:
        await start_dashboard(dashboard_host, dashboard_port, dashboard_log_level)

    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:
        await stop_dashboard()
        await shutdown_session()
        logger.info("Session shut down")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        argv: Arguments to parse (default sys.argv[1:]).

    Raises:
        SystemExit: On invalid arguments or --help.
    """
    parser = argparse.ArgumentParser(
        description="Tether MCP Server - Tethered camera parameters and capture"
    )
    parser.add_argument(
        "--mode",
        type=str,
        choices=[m.value for m in DriverMode],
        default=DriverMode.DIGITAL_TWIN.value,
        help=(
            "Driver mode: 'hardware' for libgphoto2 cameras, "
            "'digital_twin' for simulation (default)"
        ),
    )
    parser.add_argument(
        "--twin-model",
        type=str,
        default=DEFAULT_TWIN_MODEL,
        help=f"Simulated camera body (default: {DEFAULT_TWIN_MODEL})",
    )
    parser.add_argument(
        "--capture-dir",
        type=str,
        default=None,
        help="Folder for captures when no workspace is set",
    )
    parser.add_argument(
        "--workspace-root",
        type=str,
        default=None,
        help="Create a dated workspace folder under this root for captures",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=DEFAULT_POLL_INTERVAL_S,
        help=f"Parameter poll period in seconds (default: {DEFAULT_POLL_INTERVAL_S})",
    )
    parser.add_argument(
        "--settle-delay",
        type=float,
        default=DEFAULT_SETTLE_DELAY_S,
        help=(
            "Wait after a write before reading it back, in seconds "
            f"(default: {DEFAULT_SETTLE_DELAY_S})"
        ),
    )
    parser.add_argument(
        "--no-auto-connect",
        action="store_true",
        help="Disable hot-plug detection; connect only on request",
    )
    parser.add_argument(
        "--dashboard-host",
        type=str,
        default=None,
        help="Host to run the web dashboard on (e.g., 127.0.0.1)",
    )
    parser.add_argument(
        "--dashboard-port",
        type=int,
        default=None,
        help="Port to run the web dashboard on (e.g., 8080)",
    )
    parser.add_argument(
        "--dashboard-log-level",
        type=str,
        choices=["critical", "error", "warning", "info", "debug"],
        default="warning",
        help="Log level for dashboard server (default: warning)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level for tether_mcp loggers (default: INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs as JSON lines on stderr",
    )
    return parser.parse_args(argv)


def main() -> None:
    """Main entry point for the tether-mcp server.

    Parses arguments, configures logging and runs the MCP server over
    stdio until the client closes it.
    """
    args = parse_args()

    configure_logging(level=getattr(logging, args.log_level), json_format=args.json_logs)

    config = build_config(args)
    logger.info("Starting MCP server", mode=config.mode.value)
    asyncio.run(
        run_server(
            config,
            dashboard_host=args.dashboard_host,
            dashboard_port=args.dashboard_port,
            dashboard_log_level=args.dashboard_log_level,
        )
    )


if __name__ == "__main__":
    main()
