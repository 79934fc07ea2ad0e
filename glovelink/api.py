"""Stable public API for embedding glovelink in other applications.

This module is the supported integration surface for third-party callers
(GUIs, dashboards, scripts). Avoid importing from internal modules unless
intentionally depending on non-stable internals.
"""

from __future__ import annotations

from glovelink.core.discovery import (
    BleakRadioPicker,
    ComportSerialPicker,
    RadioPicker,
    SerialPicker,
    list_serial_ports,
    scan_devices,
)
from glovelink.core.errors import (
    ConnectionBusyError,
    DeviceSelectionError,
    GlovelinkError,
    HandshakeFailedError,
    InvalidTransitionError,
    NoCompatibleProfileError,
    ProfileLoadError,
    ProfileValidationError,
    RemoteDisconnectedError,
    TransportConnectError,
    TransportError,
    TransportReadError,
    TransportWriteError,
    UnsupportedTransportError,
    UserCancelledError,
)
from glovelink.core.framing import FrameResult, LineFramer, frame_outbound, split_lines
from glovelink.core.link import DeviceLink, LogCollector
from glovelink.core.model import (
    ConnectionType,
    DetectedDevice,
    DiscoveryRules,
    LogEntry,
    SerialPortInfo,
    UartProfile,
)
from glovelink.core.profile_loader import LoadedProfiles, load_profiles
from glovelink.core.state import LinkState
from glovelink.transports.base import Transport
from glovelink.transports.radio import RadioTransport
from glovelink.transports.wired import WIRED_BAUD_RATE, WiredTransport

__all__ = [
    "GlovelinkError",
    "ProfileLoadError",
    "ProfileValidationError",
    "DeviceSelectionError",
    "UserCancelledError",
    "ConnectionBusyError",
    "InvalidTransitionError",
    "TransportError",
    "TransportConnectError",
    "UnsupportedTransportError",
    "NoCompatibleProfileError",
    "HandshakeFailedError",
    "TransportReadError",
    "TransportWriteError",
    "RemoteDisconnectedError",
    "ConnectionType",
    "LinkState",
    "DetectedDevice",
    "DiscoveryRules",
    "LogEntry",
    "SerialPortInfo",
    "UartProfile",
    "LoadedProfiles",
    "load_profiles",
    "FrameResult",
    "LineFramer",
    "split_lines",
    "frame_outbound",
    "DeviceLink",
    "LogCollector",
    "RadioPicker",
    "SerialPicker",
    "BleakRadioPicker",
    "ComportSerialPicker",
    "scan_devices",
    "list_serial_ports",
    "Transport",
    "RadioTransport",
    "WiredTransport",
    "WIRED_BAUD_RATE",
]
