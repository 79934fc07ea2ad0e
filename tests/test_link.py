from __future__ import annotations

import asyncio
import random
from types import SimpleNamespace

import pytest

from glovelink.core.errors import (
    ConnectionBusyError,
    NoCompatibleProfileError,
    TransportConnectError,
    TransportReadError,
    TransportWriteError,
    UserCancelledError,
)
from glovelink.core.events import ChunkReceived, ReadFailed, StreamEnded
from glovelink.core.link import DeviceLink, LogCollector
from glovelink.core.model import ConnectionType, NameFilter, SerialPortInfo, UartProfile
from glovelink.core.profile_loader import LoadedProfiles
from glovelink.core.state import LinkState
from glovelink.transports.radio import RadioTransport

NORDIC = UartProfile(
    id="nordic_uart",
    name="Nordic UART Service",
    service_uuid="6e400001-b5a3-f393-e0a9-e50e24dcca9e",
    notify_char_uuid="6e400003-b5a3-f393-e0a9-e50e24dcca9e",
    write_char_uuid="6e400002-b5a3-f393-e0a9-e50e24dcca9e",
    match=NameFilter(name_prefix=("Neuro",), name_exact=()),
)
PROFILES = LoadedProfiles(profiles=(NORDIC,), warnings=())
PORT = SerialPortInfo(device="/dev/ttyACM0", description="Glove CDC")
GLOVE = SimpleNamespace(address="AA:BB:CC:DD:EE:FF", name="NeuroGlove")


class FakeGattClient:
    """Just enough of BleakClient for RadioTransport."""

    def __init__(self, *, with_uart: bool = True) -> None:
        characteristics = {
            NORDIC.notify_char_uuid: SimpleNamespace(properties=["notify"], max_write_without_response_size=20),
            NORDIC.write_char_uuid: SimpleNamespace(properties=["write"], max_write_without_response_size=20),
        }
        service = SimpleNamespace(get_characteristic=characteristics.get)
        known = {NORDIC.service_uuid: service} if with_uart else {}
        self.services = SimpleNamespace(get_service=known.get)
        self.is_connected = False
        self.disconnected_callback = None
        self.notify_callback = None
        self.writes: list[bytes] = []
        self.disconnect_calls = 0

    async def connect(self) -> None:
        self.is_connected = True

    async def start_notify(self, characteristic, callback) -> None:
        self.notify_callback = callback

    async def stop_notify(self, characteristic) -> None:
        self.notify_callback = None

    async def write_gatt_char(self, characteristic, data: bytes, response: bool) -> None:
        self.writes.append(bytes(data))

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.is_connected = False


class FakeWiredTransport:
    kind = ConnectionType.WIRED

    def __init__(self, port: SerialPortInfo, baud_rate: int, *, open_error: Exception | None = None) -> None:
        self.port = port
        self.baud_rate = baud_rate
        self.open_error = open_error
        self.emit = None
        self.sent: list[bytes] = []
        self.send_errors: list[Exception] = []
        self.close_calls = 0
        self.connected = False

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def open(self) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.connected = True

    async def start_receiving(self, emit) -> None:
        self.emit = emit

    async def send(self, payload: bytes) -> None:
        if self.send_errors:
            raise self.send_errors.pop(0)
        self.sent.append(payload)

    async def close(self) -> None:
        self.close_calls += 1
        self.connected = False

    def metadata(self) -> dict:
        return {"port": self.port.device, "baud_rate": self.baud_rate}


class FakeRadioPicker:
    def __init__(self, device=GLOVE, error: Exception | None = None) -> None:
        self.device = device
        self.error = error

    async def request_device(self, rules):
        if self.error is not None:
            raise self.error
        return self.device


class FakeSerialPicker:
    def __init__(self, gate: asyncio.Event | None = None) -> None:
        self.gate = gate

    async def request_port(self) -> SerialPortInfo:
        if self.gate is not None:
            await self.gate.wait()
        return PORT


class Harness:
    def __init__(
        self,
        *,
        client: FakeGattClient | None = None,
        radio_picker: FakeRadioPicker | None = None,
        serial_picker: FakeSerialPicker | None = None,
        open_error: Exception | None = None,
    ) -> None:
        self.client = client or FakeGattClient()
        self.log = LogCollector()
        self.changes: list[tuple[ConnectionType, dict | None]] = []
        self.wired: list[FakeWiredTransport] = []
        self.open_error = open_error
        self.after_change = None
        self.link = DeviceLink(
            on_log=self.log,
            on_connection_change=self._changed,
            profiles=PROFILES,
            radio_picker=radio_picker or FakeRadioPicker(),
            serial_picker=serial_picker or FakeSerialPicker(),
            radio_factory=self._radio,
            wired_factory=self._wired,
            rng=random.Random(3),
        )

    def _changed(self, kind: ConnectionType, metadata: dict | None) -> None:
        self.changes.append((kind, metadata))
        if self.after_change is not None:
            self.after_change(kind)

    def _radio(self, device, profiles, *, rng) -> RadioTransport:
        def client_factory(device, *, disconnected_callback, timeout):
            self.client.disconnected_callback = disconnected_callback
            return self.client

        return RadioTransport(device, profiles, client_factory=client_factory, rng=rng)

    def _wired(self, port, baud_rate) -> FakeWiredTransport:
        transport = FakeWiredTransport(port, baud_rate, open_error=self.open_error)
        self.wired.append(transport)
        return transport

    @property
    def lines(self) -> list[tuple[str, str]]:
        return [(entry.text, entry.direction) for entry in self.log.entries]


def test_disconnect_when_idle_is_silent() -> None:
    harness = Harness()
    asyncio.run(harness.link.disconnect())
    assert harness.lines == []
    assert harness.changes == []
    assert harness.link.connection_type is ConnectionType.DISCONNECTED


def test_connect_radio_logs_handshake_and_reports_metadata() -> None:
    harness = Harness()
    asyncio.run(harness.link.connect_radio())

    assert harness.link.connection_type is ConnectionType.RADIO
    assert harness.link.state is LinkState.CONNECTED
    assert harness.lines == [
        ("Requesting BT device...", "out"),
        ("Selected: NeuroGlove", "in"),
        ("Using service: 6e400001...", "in"),
        ("Connected to device", "in"),
    ]
    kind, metadata = harness.changes[-1]
    assert kind is ConnectionType.RADIO
    assert metadata is not None
    assert metadata["address"] == "AA:BB:CC:DD:EE:FF"
    assert -90 <= metadata["rssi"] <= -30
    assert metadata["rssi_estimated"] is True


def test_connect_wired_reports_wired() -> None:
    harness = Harness()
    asyncio.run(harness.link.connect_wired())

    assert harness.link.connection_type is ConnectionType.WIRED
    assert harness.lines == [("Serial port opened", "in")]
    assert harness.changes == [(ConnectionType.WIRED, {"port": "/dev/ttyACM0", "baud_rate": 115200})]


def test_connect_while_connected_is_rejected_without_teardown() -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.link.connect_radio()
        with pytest.raises(ConnectionBusyError):
            await harness.link.connect_wired()

    asyncio.run(scenario())
    assert harness.link.connection_type is ConnectionType.RADIO
    assert harness.lines[-1] == ("Already connected", "in")
    assert harness.client.disconnect_calls == 0
    assert harness.wired == []


def test_connect_while_connecting_is_rejected_immediately() -> None:
    gate = asyncio.Event()
    harness = Harness(serial_picker=FakeSerialPicker(gate))

    async def scenario() -> None:
        first = asyncio.create_task(harness.link.connect_wired())
        await asyncio.sleep(0)
        assert harness.link.state is LinkState.CONNECTING
        with pytest.raises(ConnectionBusyError):
            await harness.link.connect_radio()
        assert harness.lines[-1] == ("Already connecting", "in")
        gate.set()
        await first

    asyncio.run(scenario())
    assert harness.link.connection_type is ConnectionType.WIRED


def test_send_while_disconnected_logs_once() -> None:
    harness = Harness()
    asyncio.run(harness.link.send_message("ping"))
    assert harness.lines == [("No device connected", "out")]


def test_send_frames_text_with_newline() -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.link.connect_radio()
        await harness.link.send_message("ping")

    asyncio.run(scenario())
    assert harness.client.writes == [b"ping\n"]
    assert harness.lines[-1] == ("Sent: ping", "out")


def test_write_error_keeps_connection_usable() -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.link.connect_wired()
        harness.wired[0].send_errors.append(TransportWriteError("write timeout"))
        before = len(harness.lines)
        await harness.link.send_message("a")
        assert harness.lines[before:] == [("Serial write error: write timeout", "in")]
        assert harness.link.connection_type is ConnectionType.WIRED
        await harness.link.send_message("b")

    asyncio.run(scenario())
    assert harness.wired[0].sent == [b"b\n"]
    assert harness.lines[-1] == ("Sent: b", "out")


def test_terminal_write_error_tears_down() -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.link.connect_wired()
        harness.wired[0].send_errors.append(TransportWriteError("port gone", terminal=True))
        await harness.link.send_message("a")

    asyncio.run(scenario())
    assert harness.link.connection_type is ConnectionType.DISCONNECTED
    assert harness.wired[0].close_calls == 1
    assert harness.changes[-1] == (ConnectionType.DISCONNECTED, None)


def test_inbound_chunks_are_framed_into_lines() -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.link.connect_wired()
        emit = harness.wired[0].emit
        emit(ChunkReceived(b"A\nB\r\nC"))
        emit(ChunkReceived(b"D\n"))
        await harness.link.wait_idle()

    asyncio.run(scenario())
    assert harness.lines[1:] == [("A", "in"), ("B", "in"), ("CD", "in")]
    assert harness.link.receive_buffer == ""


def test_remote_disconnect_tears_down_and_clears_buffer() -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.link.connect_radio()
        notify = harness.client.notify_callback
        notify(None, bytearray(b"partial"))
        await harness.link.wait_idle()
        assert harness.link.receive_buffer == "partial"

        harness.client.is_connected = False
        harness.client.disconnected_callback(harness.client)
        await harness.link.wait_idle()
        assert harness.link.connection_type is ConnectionType.DISCONNECTED
        assert harness.link.receive_buffer == ""

        before = len(harness.lines)
        notify(None, bytearray(b"late line\n"))
        await asyncio.sleep(0)
        assert len(harness.lines) == before

    asyncio.run(scenario())
    assert ("Bluetooth disconnected", "in") in harness.lines
    assert harness.client.notify_callback is None
    assert harness.changes[-1] == (ConnectionType.DISCONNECTED, None)


def test_wired_stream_end_tears_down() -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.link.connect_wired()
        emit = harness.wired[0].emit
        emit(ReadFailed(TransportReadError("device unplugged")))
        emit(StreamEnded())
        await harness.link.wait_idle()

    asyncio.run(scenario())
    assert harness.lines[-2:] == [
        ("Serial read error: device unplugged", "in"),
        ("Serial port closed", "in"),
    ]
    assert harness.link.connection_type is ConnectionType.DISCONNECTED
    assert harness.wired[0].close_calls == 1


def test_events_from_previous_session_are_dropped() -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.link.connect_wired()
        stale_emit = harness.wired[0].emit
        await harness.link.disconnect()
        await harness.link.connect_wired()
        stale_emit(ChunkReceived(b"old\n"))
        harness.wired[1].emit(ChunkReceived(b"new\n"))
        await harness.link.wait_idle()

    asyncio.run(scenario())
    texts = [text for text, _ in harness.lines]
    assert "new" in texts
    assert "old" not in texts


def test_incompatible_device_logs_and_cleans_up() -> None:
    harness = Harness(client=FakeGattClient(with_uart=False))

    with pytest.raises(NoCompatibleProfileError):
        asyncio.run(harness.link.connect_radio())

    assert harness.lines[-1] == (
        "Bluetooth error: Incompatible device: Required UART service not found.",
        "in",
    )
    assert harness.client.disconnect_calls == 1
    assert harness.link.connection_type is ConnectionType.DISCONNECTED
    assert harness.changes == [(ConnectionType.DISCONNECTED, None)]


def test_serial_open_failure_logs_and_cleans_up() -> None:
    harness = Harness(open_error=TransportConnectError("Could not open /dev/ttyACM0: busy"))

    with pytest.raises(TransportConnectError):
        asyncio.run(harness.link.connect_wired())

    assert harness.lines == [("Serial error: Could not open /dev/ttyACM0: busy", "in")]
    assert harness.wired[0].close_calls == 1
    assert harness.link.state is LinkState.DISCONNECTED


def test_cancelled_chooser_is_not_logged() -> None:
    harness = Harness(radio_picker=FakeRadioPicker(error=UserCancelledError("Device selection cancelled.")))

    with pytest.raises(UserCancelledError):
        asyncio.run(harness.link.connect_radio())

    assert harness.lines == [("Requesting BT device...", "out")]
    assert harness.link.connection_type is ConnectionType.DISCONNECTED


def test_refresh_signal_estimate_only_on_radio() -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.link.connect_wired()
        await harness.link.refresh_signal_estimate()
        assert harness.lines == [("Serial port opened", "in")]
        await harness.link.disconnect()

        await harness.link.connect_radio()
        changes = len(harness.changes)
        await harness.link.refresh_signal_estimate()
        assert len(harness.changes) == changes + 1

    asyncio.run(scenario())
    kind, metadata = harness.changes[-1]
    assert kind is ConnectionType.RADIO
    assert -90 <= metadata["rssi"] <= -30
    assert harness.lines[-1] == ("Refreshed BT signal", "out")


def test_log_listener_failure_does_not_break_link() -> None:
    def broken(text, direction) -> None:
        raise RuntimeError("sink failed")

    link = DeviceLink(on_log=broken, profiles=PROFILES, serial_picker=FakeSerialPicker())
    asyncio.run(link.send_message("ping"))
    assert link.connection_type is ConnectionType.DISCONNECTED


def test_queued_disconnects_do_not_cancel_a_later_connect() -> None:
    harness = Harness()
    reconnects: list[asyncio.Future] = []

    def reconnect_once(kind: ConnectionType) -> None:
        if kind is ConnectionType.DISCONNECTED and not reconnects:
            reconnects.append(asyncio.ensure_future(harness.link.connect_wired()))

    async def scenario() -> None:
        await harness.link.connect_wired()
        harness.after_change = reconnect_once
        await asyncio.gather(harness.link.disconnect(), harness.link.disconnect())
        await reconnects[0]

    asyncio.run(scenario())
    assert [kind for kind, _ in harness.changes] == [
        ConnectionType.WIRED,
        ConnectionType.DISCONNECTED,
        ConnectionType.WIRED,
    ]
    assert harness.lines == [("Serial port opened", "in"), ("Serial port opened", "in")]
    assert harness.link.connection_type is ConnectionType.WIRED
    assert harness.wired[1].close_calls == 0


def test_connect_while_lock_held_fails_fast() -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.link.connect_wired()
        disconnecting = asyncio.ensure_future(harness.link.disconnect())
        await asyncio.sleep(0)
        with pytest.raises(ConnectionBusyError):
            await harness.link.connect_wired()
        await disconnecting

    asyncio.run(scenario())
    assert len(harness.wired) == 1
    assert ("Still disconnecting", "in") in harness.lines
    assert harness.link.connection_type is ConnectionType.DISCONNECTED


def test_send_after_silent_radio_drop_tears_down() -> None:
    harness = Harness()

    async def scenario() -> None:
        await harness.link.connect_radio()
        harness.client.is_connected = False
        await harness.link.send_message("ping")

    asyncio.run(scenario())
    assert harness.lines[-1] == ("Bluetooth write error: NeuroGlove is no longer connected", "in")
    assert harness.link.connection_type is ConnectionType.DISCONNECTED
    assert harness.client.writes == []
    assert harness.changes[-1] == (ConnectionType.DISCONNECTED, None)
