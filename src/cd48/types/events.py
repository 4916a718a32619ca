"""Connection state and the payloads passed to event callbacks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


# (from, to) pairs the connection manager may take
ALLOWED_TRANSITIONS: frozenset[tuple[ConnectionState, ConnectionState]] = frozenset(
    {
        (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING),
        (ConnectionState.CONNECTING, ConnectionState.CONNECTED),
        (ConnectionState.CONNECTING, ConnectionState.DISCONNECTED),
        (ConnectionState.CONNECTED, ConnectionState.DISCONNECTED),
        (ConnectionState.CONNECTED, ConnectionState.RECONNECTING),
        (ConnectionState.RECONNECTING, ConnectionState.CONNECTED),
        (ConnectionState.RECONNECTING, ConnectionState.DISCONNECTED),
        # reconnect() / on-demand auto reconnect from an idle engine
        (ConnectionState.DISCONNECTED, ConnectionState.RECONNECTING),
    }
)


@dataclass(frozen=True)
class ConnectionStateChange:
    previous_state: ConnectionState
    current_state: ConnectionState


@dataclass(frozen=True)
class ReconnectEvent:
    attempt: int


@dataclass(frozen=True)
class ReconnectFailedEvent:
    attempts: int


DisconnectCallback = Callable[[], None]
ReconnectCallback = Callable[[ReconnectEvent], None]
ReconnectFailedCallback = Callable[[ReconnectFailedEvent], None]
ConnectionStateChangeCallback = Callable[[ConnectionStateChange], None]
