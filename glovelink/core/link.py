"""Device link orchestration used by the CLI and embedding applications."""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime
from typing import Any, Callable, cast

from glovelink.core.discovery import BleakRadioPicker, ComportSerialPicker, RadioPicker, SerialPicker
from glovelink.core.errors import ConnectionBusyError, TransportWriteError, UserCancelledError
from glovelink.core.events import ChunkReceived, LinkEvent, ReadFailed, RemoteDisconnected, StreamEnded
from glovelink.core.framing import LineFramer, frame_outbound
from glovelink.core.model import ConnectionType, Direction, LogEntry
from glovelink.core.profile_loader import LoadedProfiles, load_profiles
from glovelink.core.state import ConnectionListener, ConnectionStateMachine, LinkState
from glovelink.transports.base import Transport
from glovelink.transports.radio import RadioTransport
from glovelink.transports.wired import WIRED_BAUD_RATE, WiredTransport

LOGGER = logging.getLogger(__name__)

LogListener = Callable[[str, Direction], None]
RadioFactory = Callable[..., RadioTransport]
WiredFactory = Callable[..., Transport]

_LABELS = {
    ConnectionType.RADIO: "Bluetooth",
    ConnectionType.WIRED: "Serial",
}

_BUSY_MESSAGES = {
    LinkState.DISCONNECTED: "Link busy",
    LinkState.CONNECTING: "Already connecting",
    LinkState.CONNECTED: "Already connected",
    LinkState.DISCONNECTING: "Still disconnecting",
}


class DeviceLink:
    """Single-device link over a radio (BLE UART) or wired (serial) transport.

    All public coroutines must run on one event loop. Connect, send,
    disconnect and signal refresh are serialized; a connect issued while
    another connection is active or in progress is rejected with
    `ConnectionBusyError` rather than queued.

    Transports never mutate link state directly. They push events into a
    queue drained by one dispatcher task per session, which frames inbound
    chunks into lines and routes terminal events into `disconnect()`'s
    teardown procedure.
    """

    def __init__(
        self,
        *,
        on_log: LogListener | None = None,
        on_connection_change: ConnectionListener | None = None,
        profiles: LoadedProfiles | None = None,
        radio_picker: RadioPicker | None = None,
        serial_picker: SerialPicker | None = None,
        radio_factory: RadioFactory | None = None,
        wired_factory: WiredFactory | None = None,
        baud_rate: int = WIRED_BAUD_RATE,
        rng: random.Random | None = None,
    ) -> None:
        self._on_log = on_log
        self._machine = ConnectionStateMachine(on_connection_change)
        self._profiles = profiles if profiles is not None else load_profiles()
        self._radio_picker = radio_picker or BleakRadioPicker()
        self._serial_picker = serial_picker or ComportSerialPicker()
        self._radio_factory = radio_factory or RadioTransport
        self._wired_factory = wired_factory or WiredTransport
        self._baud_rate = baud_rate
        self._rng = rng or random.Random()
        self._framer = LineFramer()
        self._lock = asyncio.Lock()
        self._events: asyncio.Queue[tuple[int, LinkEvent]] = asyncio.Queue()
        self._dispatcher: asyncio.Task[None] | None = None
        self._session = 0

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._profiles.warnings

    @property
    def profiles(self) -> LoadedProfiles:
        return self._profiles

    @property
    def state(self) -> LinkState:
        return self._machine.state

    @property
    def connection_type(self) -> ConnectionType:
        return self._machine.connection_type

    @property
    def metadata(self) -> dict[str, Any] | None:
        return self._machine.metadata

    @property
    def receive_buffer(self) -> str:
        return self._framer.buffer

    async def connect_radio(self) -> None:
        self._reject_if_busy(ConnectionType.RADIO)
        async with self._lock:
            self._begin_connect(ConnectionType.RADIO)
            try:
                self._log("Requesting BT device...", "out")
                device = await self._radio_picker.request_device(self._profiles.discovery_rules)
                self._log(f"Selected: {getattr(device, 'name', None) or 'Unknown'}", "in")
                transport = self._radio_factory(device, self._profiles.profiles, rng=self._rng)
                self._machine.attach(transport)
                await transport.open()
                if transport.profile is not None:
                    self._log(f"Using service: {transport.profile.service_uuid.split('-')[0]}...", "in")
                await self._start_session(transport)
                self._log("Connected to device", "in")
                self._machine.mark_connected(transport.metadata())
            except asyncio.CancelledError:
                await self._teardown()
                raise
            except Exception as exc:
                if not isinstance(exc, UserCancelledError):
                    self._log(f"Bluetooth error: {exc}", "in")
                await self._teardown()
                raise

    async def connect_wired(self) -> None:
        self._reject_if_busy(ConnectionType.WIRED)
        async with self._lock:
            self._begin_connect(ConnectionType.WIRED)
            try:
                port = await self._serial_picker.request_port()
                transport = self._wired_factory(port, self._baud_rate)
                self._machine.attach(transport)
                await transport.open()
                self._log("Serial port opened", "in")
                self._machine.mark_connected(transport.metadata())
                await self._start_session(transport)
            except asyncio.CancelledError:
                await self._teardown()
                raise
            except Exception as exc:
                if not isinstance(exc, UserCancelledError):
                    self._log(f"Serial error: {exc}", "in")
                await self._teardown()
                raise

    async def send_message(self, text: str) -> None:
        async with self._lock:
            transport = self._active_transport()
            if transport is None:
                self._log("No device connected", "out")
                return

            label = _LABELS[self._machine.connection_type]
            try:
                await transport.send(frame_outbound(text))
            except TransportWriteError as exc:
                self._log(f"{label} write error: {exc}", "in")
                if exc.terminal:
                    await self._teardown()
                return
            self._log(f"Sent: {text}", "out")

    async def disconnect(self) -> None:
        async with self._lock:
            await self._teardown()

    async def refresh_signal_estimate(self) -> None:
        async with self._lock:
            if self._machine.connection_type is not ConnectionType.RADIO:
                return
            transport = cast(RadioTransport, self._active_transport())
            if transport is None or not transport.is_connected:
                return
            transport.refresh_signal_estimate()
            self._machine.update_metadata(transport.metadata())
            self._log("Refreshed BT signal", "out")

    async def wait_idle(self) -> None:
        """Wait until every transport event queued so far has been handled."""
        if self._dispatcher is None:
            return
        await self._events.join()

    def _reject_if_busy(self, kind: ConnectionType) -> None:
        """Fail fast instead of queueing behind a running operation."""
        if self._lock.locked() or self._machine.state is not LinkState.DISCONNECTED:
            self._raise_busy(kind)

    def _begin_connect(self, kind: ConnectionType) -> None:
        # Callers hold self._lock, so a disconnect queued earlier has already run.
        if self._machine.state is not LinkState.DISCONNECTED:
            self._raise_busy(kind)
        self._machine.begin_connect(kind)

    def _raise_busy(self, kind: ConnectionType) -> None:
        state = self._machine.state
        self._log(_BUSY_MESSAGES[state], "in")
        raise ConnectionBusyError(f"Cannot open a {kind.value} connection while {state.value}")

    def _active_transport(self) -> Transport | None:
        if self._machine.state is not LinkState.CONNECTED:
            return None
        return self._machine.transport

    async def _start_session(self, transport: Transport) -> None:
        self._session += 1
        self._framer.reset()
        self._events = asyncio.Queue()
        self._dispatcher = asyncio.create_task(self._dispatch_events(), name="glovelink-dispatcher")
        session, events = self._session, self._events

        def emit(event: LinkEvent) -> None:
            events.put_nowait((session, event))

        await transport.start_receiving(emit)

    async def _dispatch_events(self) -> None:
        me = asyncio.current_task()
        events = self._events
        while self._dispatcher is me:
            session, event = await events.get()
            try:
                if session == self._session:
                    await self._handle_event(event)
            except Exception:
                LOGGER.exception("Error handling %s", type(event).__name__)
            finally:
                events.task_done()

    async def _handle_event(self, event: LinkEvent) -> None:
        if isinstance(event, ChunkReceived):
            for line in self._framer.feed(event.data):
                self._log(line, "in")
        elif isinstance(event, ReadFailed):
            self._log(f"Serial read error: {event.error}", "in")
        elif isinstance(event, RemoteDisconnected):
            self._log("Bluetooth disconnected", "in")
            async with self._lock:
                await self._teardown()
        elif isinstance(event, StreamEnded):
            self._log("Serial port closed", "in")
            async with self._lock:
                await self._teardown()

    async def _teardown(self) -> None:
        """Release the active transport and return to DISCONNECTED.

        Callers hold ``self._lock``. Safe from any state: a second call while
        DISCONNECTED or DISCONNECTING does nothing.
        """
        if not self._machine.begin_teardown():
            return
        self._session += 1
        transport = self._machine.release()
        if transport is not None:
            await transport.close()
        self._framer.reset()
        await self._stop_dispatcher()
        self._machine.finish_teardown()
        LOGGER.debug("Link torn down")

    async def _stop_dispatcher(self) -> None:
        task, self._dispatcher = self._dispatcher, None
        if task is None or task is asyncio.current_task() or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _log(self, text: str, direction: Direction) -> None:
        if self._on_log is None:
            return
        try:
            self._on_log(text, direction)
        except Exception:
            LOGGER.exception("Error in log listener")


class LogCollector:
    """Log listener that keeps timestamped `LogEntry` records in memory."""

    def __init__(self, on_entry: Callable[[LogEntry], None] | None = None) -> None:
        self.entries: list[LogEntry] = []
        self._on_entry = on_entry

    def __call__(self, text: str, direction: Direction) -> None:
        entry = LogEntry(timestamp=datetime.now(), text=text, direction=direction)
        self.entries.append(entry)
        if self._on_entry is not None:
            self._on_entry(entry)
