"""Transport interfaces."""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import Any, Protocol

from glovelink.core.events import EventSink
from glovelink.core.model import ConnectionType

LOGGER = logging.getLogger(__name__)


class Transport(Protocol):
    kind: ConnectionType

    @property
    def is_connected(self) -> bool:
        """Whether the underlying link is still usable."""

    async def open(self) -> None:
        """Acquire the connection and negotiate the data channel."""

    async def start_receiving(self, emit: EventSink) -> None:
        """Begin pushing inbound events to ``emit``."""

    async def send(self, payload: bytes) -> None:
        """Write payload to the device."""

    async def close(self) -> None:
        """Release every resource. Safe to call repeatedly; never raises."""

    def metadata(self) -> dict[str, Any]:
        """Informational facts attached to connection-change events."""


async def best_effort(step: str, awaitable: Awaitable[Any]) -> bool:
    """Await one cleanup step, logging and ignoring its failure."""
    try:
        await awaitable
    except Exception as exc:
        LOGGER.debug("Cleanup step '%s' failed: %s", step, exc)
        return False
    return True
