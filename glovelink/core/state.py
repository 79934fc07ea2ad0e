"""Connection lifecycle state machine."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable

from glovelink.core.errors import ConnectionBusyError, InvalidTransitionError
from glovelink.core.model import ConnectionType
from glovelink.transports.base import Transport

LOGGER = logging.getLogger(__name__)

ConnectionListener = Callable[[ConnectionType, "dict[str, Any] | None"], None]


class LinkState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


class ConnectionStateMachine:
    """Owns the single active transport and reports connection changes.

    Only CONNECTED and DISCONNECTED are reported to the listener; the
    intermediate states are internal.
    """

    def __init__(self, on_change: ConnectionListener | None = None) -> None:
        self._on_change = on_change
        self._state = LinkState.DISCONNECTED
        self._pending: ConnectionType = ConnectionType.DISCONNECTED
        self._transport: Transport | None = None
        self._metadata: dict[str, Any] | None = None

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def connection_type(self) -> ConnectionType:
        if self._state in (LinkState.CONNECTED, LinkState.DISCONNECTING) and self._transport is not None:
            return self._pending
        return ConnectionType.DISCONNECTED

    @property
    def pending_type(self) -> ConnectionType:
        return self._pending

    @property
    def transport(self) -> Transport | None:
        return self._transport

    @property
    def metadata(self) -> dict[str, Any] | None:
        return self._metadata

    def begin_connect(self, kind: ConnectionType) -> None:
        if kind is ConnectionType.DISCONNECTED:
            raise InvalidTransitionError("Cannot connect with connection type DISCONNECTED")
        if self._state is not LinkState.DISCONNECTED:
            raise ConnectionBusyError(f"Connection already {self._state.value}")
        self._state = LinkState.CONNECTING
        self._pending = kind

    def attach(self, transport: Transport) -> None:
        if self._state is not LinkState.CONNECTING:
            raise InvalidTransitionError(f"Cannot attach a transport while {self._state.value}")
        if self._transport is not None:
            raise InvalidTransitionError("A transport is already attached")
        self._transport = transport

    def mark_connected(self, metadata: dict[str, Any]) -> None:
        if self._state is not LinkState.CONNECTING or self._transport is None:
            raise InvalidTransitionError(f"Cannot complete a connection while {self._state.value}")
        self._state = LinkState.CONNECTED
        self._metadata = dict(metadata)
        self._notify(self._pending, self._metadata)

    def update_metadata(self, metadata: dict[str, Any]) -> None:
        if self._state is not LinkState.CONNECTED:
            raise InvalidTransitionError(f"Cannot update metadata while {self._state.value}")
        self._metadata = dict(metadata)
        self._notify(self._pending, self._metadata)

    def begin_teardown(self) -> bool:
        """Enter DISCONNECTING. Returns False when teardown is already done or running."""
        if self._state in (LinkState.DISCONNECTED, LinkState.DISCONNECTING):
            return False
        self._state = LinkState.DISCONNECTING
        return True

    def release(self) -> Transport | None:
        if self._state is not LinkState.DISCONNECTING:
            raise InvalidTransitionError(f"Cannot release the transport while {self._state.value}")
        transport, self._transport = self._transport, None
        return transport

    def finish_teardown(self) -> None:
        if self._state is not LinkState.DISCONNECTING:
            raise InvalidTransitionError(f"Cannot finish teardown while {self._state.value}")
        self._state = LinkState.DISCONNECTED
        self._pending = ConnectionType.DISCONNECTED
        self._transport = None
        self._metadata = None
        self._notify(ConnectionType.DISCONNECTED, None)

    def _notify(self, kind: ConnectionType, metadata: dict[str, Any] | None) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(kind, dict(metadata) if metadata is not None else None)
        except Exception:
            LOGGER.exception("Error in connection-change listener")
