"""Observability for tether-mcp: structured logging and device call statistics.

Example:
    from tether_mcp.observability import LogContext, get_logger

    logger = get_logger(__name__)

    with LogContext(generation=1):
        logger.info("Parameters refreshed", iso="400")

Statistics Example:
    from tether_mcp.observability import DeviceStats

    stats = DeviceStats()
    session = TetherSession(transport, stats=stats)
    ...
    print(stats.get_summary("read").p95_duration_ms)
"""

from tether_mcp.observability.logging import (
    JSONFormatter,
    LogContext,
    StructuredFormatter,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)
from tether_mcp.observability.stats import (
    DeviceStats,
    OperationSummary,
)

__all__ = [
    # Logging
    "JSONFormatter",
    "LogContext",
    "StructuredFormatter",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
    # Statistics
    "DeviceStats",
    "OperationSummary",
]
