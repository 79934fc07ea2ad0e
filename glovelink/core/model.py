"""Core data models used across loader, link, and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Literal

Direction = Literal["in", "out"]


class ConnectionType(Enum):
    DISCONNECTED = "disconnected"
    RADIO = "radio"
    WIRED = "wired"


@dataclass(frozen=True)
class NameFilter:
    name_prefix: tuple[str, ...]
    name_exact: tuple[str, ...]


@dataclass(frozen=True)
class UartProfile:
    id: str
    name: str
    service_uuid: str
    notify_char_uuid: str
    write_char_uuid: str
    match: NameFilter
    write_with_response: bool | None = None


@dataclass(frozen=True)
class DiscoveryRules:
    """Allow-list applied to scan results before a device is offered."""

    service_uuids: tuple[str, ...]
    name_prefix: tuple[str, ...]
    name_exact: tuple[str, ...]

    @classmethod
    def from_profiles(cls, profiles: tuple[UartProfile, ...]) -> DiscoveryRules:
        service_uuids: list[str] = []
        prefixes: list[str] = []
        names: list[str] = []
        for profile in profiles:
            if profile.service_uuid not in service_uuids:
                service_uuids.append(profile.service_uuid)
            prefixes.extend(p for p in profile.match.name_prefix if p not in prefixes)
            names.extend(n for n in profile.match.name_exact if n not in names)
        return cls(
            service_uuids=tuple(service_uuids),
            name_prefix=tuple(prefixes),
            name_exact=tuple(names),
        )


@dataclass(frozen=True)
class DetectedDevice:
    address: str
    name: str
    service_uuids: tuple[str, ...] = ()
    rssi: int | None = None


@dataclass(frozen=True)
class SerialPortInfo:
    device: str
    description: str | None = None
    vid: int | None = None
    pid: int | None = None
    serial_number: str | None = None
    hwid: str | None = None


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    text: str
    direction: Direction

    def render(self) -> str:
        arrow = "<--" if self.direction == "in" else "-->"
        return f"{self.timestamp.strftime('%H:%M:%S')} {arrow} {self.text}"
