"""Test helper functions for tether-mcp.

Provides protocol compliance checks and a polling wait for conditions
that settle asynchronously (deferred reads, background tasks).

Example:
    from tests.helpers import assert_implements_protocol, wait_until
    from tether_mcp.drivers.cameras import CameraTransport

    def test_twin_implements_protocol(twin):
        assert_implements_protocol(twin, CameraTransport)

    async def test_value_lands(session):
        assert await wait_until(lambda: session.parameters is not None)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any, Protocol


def assert_implements_protocol(instance: object, protocol: type[Protocol]) -> None:
    """Assert that an instance implements a runtime-checkable Protocol.

    Args:
        instance: Object to check for protocol compliance.
        protocol: Protocol class decorated with @runtime_checkable.

    Raises:
        AssertionError: If instance doesn't implement protocol, listing the
            missing members.
    """
    if isinstance(instance, protocol):
        return

    object_attrs = set(dir(object))
    protocol_methods = {
        attr
        for attr in set(dir(protocol)) - object_attrs
        if not attr.startswith("_")
    }
    missing = sorted(m for m in protocol_methods if not hasattr(instance, m))
    missing_str = ", ".join(missing) if missing else "unknown"
    raise AssertionError(
        f"{type(instance).__name__} does not implement {protocol.__name__}. "
        f"Missing: {missing_str}"
    )


def assert_all_implement_protocol(instances: list[Any], protocol: type[Protocol]) -> None:
    """Assert that all instances in a list implement a Protocol."""
    for i, instance in enumerate(instances):
        try:
            assert_implements_protocol(instance, protocol)
        except AssertionError as e:
            raise AssertionError(f"Instance at index {i}: {e}") from e


async def wait_until(
    condition: Callable[[], bool], timeout: float = 2.0, interval: float = 0.005
) -> bool:
    """Poll ``condition`` on the event loop until it holds or time runs out.

    Returns:
        True if the condition held before the timeout.
    """
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        await asyncio.sleep(interval)
    return condition()
