"""Connection state machine.

Two states, DISCONNECTED (initial) and CONNECTED, driven by status signals
from the transport layer, the hot-plug monitor or a failed read. Listeners
are called synchronously in registration order with ``(previous, current)``.

A CONNECTED signal while already connected changes nothing but is still
delivered, so the session can refresh. DISCONNECTED while disconnected is
ignored.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum

from tether_mcp.observability import get_logger

logger = get_logger(__name__)

__all__ = ["ConnectionState", "ConnectionStateMachine", "TransitionListener"]


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTED = "CONNECTED"

    @classmethod
    def parse(cls, status: str | ConnectionState) -> ConnectionState:
        """Accept enum members or status strings in any case.

        Raises:
            ValueError: Unknown status.
        """
        if isinstance(status, ConnectionState):
            return status
        try:
            return cls(status.strip().upper())
        except ValueError as e:
            raise ValueError(f"Unknown connection status '{status}'") from e


TransitionListener = Callable[[ConnectionState, ConnectionState], None]


class ConnectionStateMachine:
    """Tracks whether a camera session is open."""

    def __init__(self) -> None:
        self._state = ConnectionState.DISCONNECTED
        self._listeners: list[TransitionListener] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: TransitionListener) -> None:
        self._listeners.remove(listener)

    def handle_status(self, status: str | ConnectionState) -> bool:
        """Apply a status signal.

        Args:
            status: "CONNECTED"/"DISCONNECTED" or a ConnectionState.

        Returns:
            True when the state changed.

        Raises:
            ValueError: Unknown status string.
        """
        new_state = ConnectionState.parse(status)
        previous = self._state

        if new_state is ConnectionState.DISCONNECTED and previous is new_state:
            return False

        self._state = new_state
        changed = previous is not new_state
        if changed:
            logger.info(
                "Connection state changed",
                previous=previous.value,
                current=new_state.value,
            )
        for listener in list(self._listeners):
            listener(previous, new_state)
        return changed

    def mark_disconnected(self) -> bool:
        """Shortcut for handle_status(DISCONNECTED)."""
        return self.handle_status(ConnectionState.DISCONNECTED)
