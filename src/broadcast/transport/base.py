"""Base connection abstraction for admin and viewer clients.

Defines the interface the relay components talk to, independent of the
concrete transport. Each connection tracks an explicit lifecycle state
machine so components can check liveness without touching the socket.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from enum import Enum

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states.

    State Transitions:
    - CONNECTING → OPEN (handshake complete)
    - CONNECTING → CLOSED (handshake failed)
    - OPEN → CLOSED (close requested, peer closed, or transport error)
    """

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


VALID_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.CONNECTING: {ConnectionState.OPEN, ConnectionState.CLOSED},
    ConnectionState.OPEN: {ConnectionState.CLOSED},
    ConnectionState.CLOSED: set(),  # Terminal state
}


class Connection(ABC):
    """Base class for client connections.

    Sends never raise: a message for a connection that is no longer open is
    dropped and ``send`` reports ``False``. Removal from any registry is left
    to whoever owns the connection's receive loop.
    """

    def __init__(self, connection_id: str) -> None:
        self._connection_id = connection_id
        self._state = ConnectionState.CONNECTING

    @property
    def connection_id(self) -> str:
        """Identifier used for logging."""
        return self._connection_id

    @property
    def state(self) -> ConnectionState:
        """Current lifecycle state."""
        return self._state

    @property
    def is_open(self) -> bool:
        """Check if messages can currently be delivered."""
        return self._state == ConnectionState.OPEN

    def transition_state(self, new_state: ConnectionState) -> bool:
        """Move to a new lifecycle state.

        Transitions out of CLOSED are ignored rather than rejected, since
        close signals may arrive from several places for the same socket.

        Args:
            new_state: Target state

        Returns:
            True if the state changed

        Raises:
            ValueError: If the transition is invalid
        """
        if new_state == self._state:
            return False
        if self._state == ConnectionState.CLOSED:
            return False
        if new_state not in VALID_TRANSITIONS[self._state]:
            raise ValueError(
                f"Invalid state transition: {self._state.value} → {new_state.value}"
            )

        old_state = self._state
        self._state = new_state
        logger.debug(
            "Connection state transition",
            extra={
                "connection_id": self._connection_id,
                "from_state": old_state.value,
                "to_state": new_state.value,
            },
        )
        return True

    def mark_open(self) -> None:
        """Record that the handshake completed."""
        self.transition_state(ConnectionState.OPEN)

    def mark_closed(self) -> None:
        """Record that the connection is gone."""
        self.transition_state(ConnectionState.CLOSED)

    @abstractmethod
    async def send(self, message: BaseModel) -> bool:
        """Serialize and send a protocol message.

        Args:
            message: Outbound protocol model

        Returns:
            True if the message was handed to the transport
        """
        pass

    @abstractmethod
    def messages(self) -> AsyncIterator[str | bytes]:
        """Iterate raw inbound messages until the connection closes.

        Iteration ends normally on a clean close. Transport errors are
        raised as ConnectionError after the state moves to CLOSED.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        pass
