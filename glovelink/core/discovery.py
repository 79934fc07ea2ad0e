"""Device pickers for the radio and wired transports.

A picker turns "the user wants to connect" into one concrete device handle.
Both pickers accept an optional ``chooser`` callback standing in for the
platform selection prompt: it receives the candidate list and returns the
chosen entry, or ``None`` when the user dismisses the prompt.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Callable, Optional, Protocol, TypeVar

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError
from serial.tools import list_ports

from glovelink.core.device_match import rank_devices
from glovelink.core.errors import DeviceSelectionError, UnsupportedTransportError, UserCancelledError
from glovelink.core.model import DetectedDevice, DiscoveryRules, SerialPortInfo

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
Chooser = Callable[[Sequence[T]], Optional[T]]


class RadioPicker(Protocol):
    async def request_device(self, rules: DiscoveryRules) -> BLEDevice | str:
        """Return the device handle the user selected."""


class SerialPicker(Protocol):
    async def request_port(self) -> SerialPortInfo:
        """Return the serial port the user selected."""


def _apply_hint(candidates: list[T], hint: str | None, fields: Callable[[T], tuple[str, ...]]) -> list[T]:
    if not hint:
        return candidates
    lowered = hint.lower()
    hinted = [c for c in candidates if any(lowered in value.lower() for value in fields(c) if value)]
    if not hinted:
        raise DeviceSelectionError(f"No device found matching '{hint}'")
    return hinted


def _choose(candidates: list[T], chooser: Chooser[T] | None, describe: Callable[[T], str], what: str) -> T:
    if not candidates:
        raise DeviceSelectionError(f"No compatible {what} found.")

    if chooser is not None:
        choice = chooser(candidates)
        if choice is None:
            raise UserCancelledError(f"{what.capitalize()} selection cancelled.")
        return choice

    if len(candidates) > 1:
        candidate_desc = ", ".join(describe(c) for c in candidates)
        raise DeviceSelectionError(
            f"Multiple candidate {what}s found: {candidate_desc}. Use --device to choose one."
        )
    return candidates[0]


async def scan_devices(timeout: float = 5.0) -> list[tuple[BLEDevice, DetectedDevice]]:
    try:
        found = await BleakScanner.discover(timeout=timeout, return_adv=True)
    except BleakError as exc:
        raise UnsupportedTransportError(f"Bluetooth scanning is not available: {exc}") from exc

    results: list[tuple[BLEDevice, DetectedDevice]] = []
    for device, adv in found.values():
        detected = DetectedDevice(
            address=device.address,
            name=device.name or adv.local_name or "",
            service_uuids=tuple(u.lower() for u in adv.service_uuids or ()),
            rssi=adv.rssi,
        )
        LOGGER.debug("Discovered %s (%s) rssi=%s uuids=%s", detected.name, detected.address, detected.rssi, detected.service_uuids)
        results.append((device, detected))
    return results


class BleakRadioPicker:
    def __init__(
        self,
        *,
        scan_timeout: float = 5.0,
        device_hint: str | None = None,
        chooser: Chooser[DetectedDevice] | None = None,
    ) -> None:
        self.scan_timeout = scan_timeout
        self.device_hint = device_hint
        self.chooser = chooser

    async def request_device(self, rules: DiscoveryRules) -> BLEDevice:
        scanned = await scan_devices(self.scan_timeout)
        handles = {detected.address: device for device, detected in scanned}
        candidates = rank_devices([detected for _, detected in scanned], rules)
        candidates = _apply_hint(candidates, self.device_hint, lambda d: (d.address, d.name))
        chosen = _choose(candidates, self.chooser, lambda d: f"{d.address} ({d.name or 'Unknown'})", "device")
        return handles[chosen.address]


def _port_to_info(port) -> SerialPortInfo:
    """Convert pyserial's ListPortInfo to SerialPortInfo."""
    return SerialPortInfo(
        device=port.device,
        description=port.description,
        vid=port.vid,
        pid=port.pid,
        serial_number=port.serial_number,
        hwid=port.hwid,
    )


def list_serial_ports() -> list[SerialPortInfo]:
    return [_port_to_info(port) for port in sorted(list_ports.comports(), key=lambda p: p.device)]


class ComportSerialPicker:
    def __init__(
        self,
        *,
        port: str | None = None,
        device_hint: str | None = None,
        chooser: Chooser[SerialPortInfo] | None = None,
    ) -> None:
        self.port = port
        self.device_hint = device_hint
        self.chooser = chooser

    async def request_port(self) -> SerialPortInfo:
        ports = await asyncio.to_thread(list_serial_ports)
        if self.port:
            for info in ports:
                if info.device == self.port:
                    return info
            # Virtual ports (pty, socket://, rfc2217://) are not enumerated.
            return SerialPortInfo(device=self.port)

        candidates = _apply_hint(
            ports,
            self.device_hint,
            lambda p: (p.device, p.description or "", p.serial_number or ""),
        )
        return _choose(candidates, self.chooser, lambda p: f"{p.device} ({p.description or 'n/a'})", "serial port")
