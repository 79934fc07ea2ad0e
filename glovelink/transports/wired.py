"""Serial port transport implementation using pyserial-asyncio streams."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any, Callable

import serial
import serial_asyncio

from glovelink.core.errors import TransportConnectError, TransportReadError, TransportWriteError
from glovelink.core.events import ChunkReceived, EventSink, LinkEvent, ReadFailed, StreamEnded
from glovelink.core.model import ConnectionType, SerialPortInfo
from glovelink.transports.base import best_effort

LOGGER = logging.getLogger(__name__)

WIRED_BAUD_RATE = 115_200
READ_CHUNK_SIZE = 4096

OpenConnection = Callable[..., Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


class WiredTransport:
    kind = ConnectionType.WIRED

    def __init__(
        self,
        port: SerialPortInfo,
        baud_rate: int = WIRED_BAUD_RATE,
        *,
        open_connection: OpenConnection = serial_asyncio.open_serial_connection,
        chunk_size: int = READ_CHUNK_SIZE,
    ) -> None:
        self._port = port
        self._baud_rate = baud_rate
        self._open_connection = open_connection
        self._chunk_size = chunk_size
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._active_reader: asyncio.StreamReader | None = None
        self._read_task: asyncio.Task[None] | None = None
        self._keep_reading = False
        self._emit: EventSink | None = None

    @property
    def is_connected(self) -> bool:
        return self._writer is not None and not self._writer.transport.is_closing()

    @property
    def reading(self) -> bool:
        return self._active_reader is not None

    async def open(self) -> None:
        try:
            self._reader, self._writer = await self._open_connection(
                url=self._port.device,
                baudrate=self._baud_rate,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            raise TransportConnectError(f"Could not open {self._port.device}: {exc}") from exc
        LOGGER.info("Opened %s @ %s baud", self._port.device, self._baud_rate)

    async def start_receiving(self, emit: EventSink) -> None:
        self._emit = emit
        self._keep_reading = True
        self._read_task = asyncio.create_task(self._read_loop(), name="glovelink-serial-reader")

    async def _read_loop(self) -> None:
        while self._keep_reading:
            reader = self._acquire_reader()
            if reader is None:
                break
            try:
                while self._keep_reading:
                    chunk = await reader.read(self._chunk_size)
                    if not chunk:
                        break
                    self._push(ChunkReceived(chunk))
            except (serial.SerialException, OSError) as exc:
                LOGGER.error("Serial read error on %s: %s", self._port.device, exc)
                self._push(ReadFailed(_read_error(exc)))
            finally:
                self._release_reader()

        if self._keep_reading:
            self._push(StreamEnded())
        LOGGER.debug("Serial read loop for %s exited", self._port.device)

    def _acquire_reader(self) -> asyncio.StreamReader | None:
        reader = self._reader
        if reader is None or not self.is_connected:
            return None
        if reader.at_eof() or reader.exception() is not None:
            return None
        self._active_reader = reader
        return reader

    def _release_reader(self) -> None:
        self._active_reader = None

    def _push(self, event: LinkEvent) -> None:
        if self._emit is not None:
            self._emit(event)

    async def send(self, payload: bytes) -> None:
        writer = self._writer
        if writer is None or writer.transport.is_closing():
            raise TransportWriteError("Serial port is not open", terminal=True)
        try:
            writer.write(payload)
            await writer.drain()
        except (serial.SerialException, OSError) as exc:
            raise TransportWriteError(str(exc), terminal=writer.transport.is_closing()) from exc

    async def close(self) -> None:
        self._keep_reading = False
        self._emit = None

        task, self._read_task = self._read_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                LOGGER.debug("Serial read task ended with %s", exc)
        self._release_reader()

        writer, self._writer = self._writer, None
        self._reader = None
        if writer is not None:
            await best_effort("close writer", _close_writer(writer))

    def metadata(self) -> dict[str, Any]:
        return {
            "port": self._port.device,
            "baud_rate": self._baud_rate,
            "usb_vendor_id": self._port.vid,
            "usb_product_id": self._port.pid,
        }


def _read_error(exc: Exception) -> TransportReadError:
    error = TransportReadError(str(exc))
    error.__cause__ = exc
    return error


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    await writer.wait_closed()
