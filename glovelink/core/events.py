"""Typed events pushed by transports into the link's event queue."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Union

from glovelink.core.errors import TransportReadError


@dataclass(frozen=True)
class ChunkReceived:
    data: bytes


@dataclass(frozen=True)
class ReadFailed:
    error: TransportReadError


@dataclass(frozen=True)
class StreamEnded:
    pass


@dataclass(frozen=True)
class RemoteDisconnected:
    pass


LinkEvent = Union[ChunkReceived, ReadFailed, StreamEnded, RemoteDisconnected]
EventSink = Callable[[LinkEvent], None]
