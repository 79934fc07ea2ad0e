"""BLE GATT UART transport implementation."""

from __future__ import annotations

import logging
import random
from typing import Any, Callable

from bleak import BleakClient
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError

from glovelink.core.errors import (
    HandshakeFailedError,
    NoCompatibleProfileError,
    RemoteDisconnectedError,
    TransportConnectError,
    TransportWriteError,
)
from glovelink.core.events import ChunkReceived, EventSink, RemoteDisconnected
from glovelink.core.model import ConnectionType, UartProfile
from glovelink.transports.base import best_effort

LOGGER = logging.getLogger(__name__)

SIGNAL_ESTIMATE_RANGE = (-90, -30)
_NOTIFY_PROPERTIES = {"notify", "indicate"}
_WRITE_PROPERTIES = {"write", "write-without-response"}

ClientFactory = Callable[..., BleakClient]


def estimate_signal(rng: random.Random) -> int:
    """Synthetic RSSI placeholder in dBm.

    No signal-strength API is read here; the value only gives UIs something
    to display and must not be treated as telemetry.
    """
    low, high = SIGNAL_ESTIMATE_RANGE
    return rng.randint(low, high)


class RadioTransport:
    kind = ConnectionType.RADIO

    def __init__(
        self,
        device: BLEDevice | str,
        profiles: tuple[UartProfile, ...],
        *,
        client_factory: ClientFactory = BleakClient,
        rng: random.Random | None = None,
        connect_timeout_s: float = 10.0,
    ) -> None:
        self._device = device
        self._profiles = profiles
        self._client_factory = client_factory
        self._rng = rng or random.Random()
        self._connect_timeout_s = connect_timeout_s
        self._client: BleakClient | None = None
        self._notify_char: BleakGATTCharacteristic | None = None
        self._write_char: BleakGATTCharacteristic | None = None
        self._write_with_response = True
        self._emit: EventSink | None = None
        self._notifying = False
        self._closing = False
        self.profile: UartProfile | None = None
        self.signal_estimate: int | None = None

    @property
    def name(self) -> str:
        return getattr(self._device, "name", None) or "Unknown"

    @property
    def address(self) -> str:
        return getattr(self._device, "address", None) or str(self._device)

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected and not self._closing

    async def open(self) -> None:
        self._client = self._client_factory(
            self._device,
            disconnected_callback=self._on_disconnected,
            timeout=self._connect_timeout_s,
        )
        try:
            await self._client.connect()
        except (BleakError, OSError, TimeoutError) as exc:
            raise TransportConnectError(f"BLE connect failed for {self.address}: {exc}") from exc
        LOGGER.info("GATT connected to %s (%s)", self.name, self.address)
        self._select_profile(self._client)
        self.refresh_signal_estimate()

    def _select_profile(self, client: BleakClient) -> None:
        for profile in self._profiles:
            service = client.services.get_service(profile.service_uuid)
            if service is None:
                continue
            notify_char = service.get_characteristic(profile.notify_char_uuid)
            write_char = service.get_characteristic(profile.write_char_uuid)
            if notify_char is None or write_char is None:
                continue
            if not _NOTIFY_PROPERTIES.intersection(notify_char.properties):
                continue
            if not _WRITE_PROPERTIES.intersection(write_char.properties):
                continue
            self.profile = profile
            self._notify_char = notify_char
            self._write_char = write_char
            if profile.write_with_response is not None:
                self._write_with_response = profile.write_with_response
            else:
                self._write_with_response = "write" in write_char.properties
            LOGGER.info("Using UART profile %s (%s)", profile.id, profile.service_uuid)
            return
        raise NoCompatibleProfileError("Incompatible device: Required UART service not found.")

    async def start_receiving(self, emit: EventSink) -> None:
        if self._client is None or self._notify_char is None:
            raise HandshakeFailedError("BLE transport is not open")
        self._emit = emit
        try:
            await self._client.start_notify(self._notify_char, self._on_notify)
        except (BleakError, OSError, TimeoutError) as exc:
            self._emit = None
            raise HandshakeFailedError(f"Could not subscribe to notifications: {exc}") from exc
        self._notifying = True

    async def send(self, payload: bytes) -> None:
        if self._client is None or self._write_char is None:
            raise TransportWriteError("BLE transport is not open", terminal=True)
        if not self._client.is_connected:
            raise RemoteDisconnectedError(f"{self.name} is no longer connected")

        if self._write_with_response:
            chunks = [payload]
        else:
            size = max(self._write_char.max_write_without_response_size, 20)
            chunks = [payload[i : i + size] for i in range(0, len(payload), size)]

        try:
            for chunk in chunks:
                await self._client.write_gatt_char(
                    self._write_char,
                    chunk,
                    response=self._write_with_response,
                )
        except (BleakError, OSError, TimeoutError) as exc:
            if not self._client.is_connected:
                raise RemoteDisconnectedError(str(exc)) from exc
            raise TransportWriteError(str(exc)) from exc

    async def close(self) -> None:
        self._closing = True
        self._emit = None
        client = self._client
        if client is None:
            return
        if self._notifying and self._notify_char is not None:
            self._notifying = False
            await best_effort("stop_notify", client.stop_notify(self._notify_char))
        self._client = None
        self._notify_char = None
        self._write_char = None
        await best_effort("disconnect", client.disconnect())

    def refresh_signal_estimate(self) -> int:
        self.signal_estimate = estimate_signal(self._rng)
        return self.signal_estimate

    def metadata(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "address": self.address,
            "service_uuid": self.profile.service_uuid if self.profile else None,
            "rssi": self.signal_estimate,
            "rssi_estimated": True,
        }

    def _on_notify(self, _: BleakGATTCharacteristic, data: bytearray) -> None:
        if self._emit is not None:
            self._emit(ChunkReceived(bytes(data)))

    def _on_disconnected(self, _: BleakClient) -> None:
        if self._closing:
            return
        LOGGER.warning("BLE link to %s dropped", self.address)
        if self._emit is not None:
            self._emit(RemoteDisconnected())
