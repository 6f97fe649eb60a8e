"""Connection session: link lifecycle, liveness probing and inbound dispatch.

All work happens on one asyncio event loop. Blocking transport calls run in
worker threads via ``asyncio.to_thread``, but every chunk is classified,
decoded and dispatched back on the loop, one at a time, before the next read
is issued. The liveness probe runs on the same loop, so it never interleaves
with a decode.

State machine::

    DISCONNECTED --open ok--> CONNECTED
    CONNECTED --disconnect() | receive error | device removed
              | failed send | failed probe--> DISCONNECTED
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from enum import Enum

from .config import SliderConfig
from .errors import DeviceRemovedError, MalformedBulkTransferError, TransportError
from .models.program import LoopProgram, ProgramRecord
from .models.store import ProgramStore
from .protocol.commands import Opcode, build_command, build_debug_info
from .protocol.framing import Frame, FrameKind, classify_chunk
from .protocol.parser import DeviceMessage, ProgramCount, parse_line
from .protocol.records import (
    BulkTransfer,
    decode_bulk_transfer,
    decode_single_record,
    read_bulk_count,
)
from .transport.usb_connection import DeviceInfo, USBConnection, find_devices

logger = logging.getLogger(__name__)

LineSink = Callable[[str], None]
DisconnectListener = Callable[[str], None]


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


def _describe(record: ProgramRecord) -> str:
    kind = "Loop" if isinstance(record, LoopProgram) else "Complex"
    return f'{kind} Program "{record.name}" (slot {record.slot + 1})'


class ConnectionSession:
    """Owns the link to one slider controller and the program cache it feeds.

    Args:
        store: Program cache updated from inbound records.
        config: Probe interval, read sizes and wire generation.
        connection_factory: Called with an optional ``DeviceInfo`` to create
            the transport; must provide ``open``, ``close``, ``read``,
            ``write`` and ``device_info`` like ``USBConnection``.
        device_finder: Returns devices the host may open without asking.
        line_sink: Receives every text line the device prints.
    """

    def __init__(
        self,
        store: ProgramStore | None = None,
        config: SliderConfig | None = None,
        connection_factory: Callable[[DeviceInfo | None], USBConnection] = USBConnection,
        device_finder: Callable[[], list[DeviceInfo]] = find_devices,
        line_sink: LineSink | None = None,
    ) -> None:
        self.store = store if store is not None else ProgramStore()
        self.config = config or SliderConfig()
        self._connection_factory = connection_factory
        self._device_finder = device_finder
        self._line_sinks: list[LineSink] = [line_sink] if line_sink else []
        self._disconnect_listeners: list[DisconnectListener] = []
        self._connection = None
        self._state = ConnectionState.DISCONNECTED
        self._read_task: asyncio.Task | None = None
        self._probe_task: asyncio.Task | None = None
        self._write_lock = asyncio.Lock()
        self.last_liveness_probe: float | None = None
        self.last_disconnect_reason: str | None = None
        self.expected_program_count: int | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def device_info(self) -> DeviceInfo | None:
        if self._connection is None:
            return None
        return self._connection.device_info

    def add_line_sink(self, sink: LineSink) -> None:
        self._line_sinks.append(sink)

    def add_disconnect_listener(self, listener: DisconnectListener) -> None:
        """Register a callback run with the reason whenever the link drops."""
        self._disconnect_listeners.append(listener)

    # ─── LIFECYCLE ────────────────────────────────────────────────────

    async def connect(self, device: DeviceInfo | None = None) -> DeviceInfo:
        """Open the transport and start the read loop and liveness probe.

        Raises:
            TransportError: If the device cannot be opened. The session
                stays disconnected.
        """
        if self.connected:
            return self._connection.device_info

        connection = self._connection_factory(device)
        try:
            info = await asyncio.to_thread(connection.open)
        except TransportError as e:
            logger.warning("Connection failed: %s", e)
            raise

        self._connection = connection
        self._state = ConnectionState.CONNECTED
        self.last_disconnect_reason = None
        self.last_liveness_probe = None
        self._read_task = asyncio.create_task(self._read_loop(), name="slider-read")
        self._probe_task = asyncio.create_task(self._probe_loop(), name="slider-probe")
        logger.info("Connected to slider controller")
        return info

    async def auto_connect(self) -> bool:
        """Open the first already-authorised device, if any.

        Failures are logged and not retried.
        """
        devices = await asyncio.to_thread(self._device_finder)
        if not devices:
            logger.info("No previously connected slider controller found")
            return False
        try:
            await self.connect(devices[0])
        except TransportError as e:
            logger.warning("Auto-connect failed: %s", e)
            return False
        return True

    async def disconnect(self) -> None:
        """Close the link on request."""
        if await self._drop_connection("Disconnected from slider"):
            logger.info("Disconnected from slider")

    async def _handle_disconnection(self, reason: str) -> None:
        if self.connected:
            logger.warning("Connection lost: %s", reason)
        await self._drop_connection(reason)

    async def _drop_connection(self, reason: str) -> bool:
        if not self.connected:
            return False

        self._state = ConnectionState.DISCONNECTED
        self.last_disconnect_reason = reason
        connection, self._connection = self._connection, None
        self._cancel_tasks()
        await asyncio.to_thread(connection.close)

        for listener in list(self._disconnect_listeners):
            listener(reason)
        return True

    def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        for task in (self._read_task, self._probe_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._read_task = None
        self._probe_task = None

    # ─── OUTBOUND ─────────────────────────────────────────────────────

    async def send(self, data: bytes) -> bool:
        """Write a command buffer.

        Returns:
            True if written; False if not connected or the write failed, in
            which case the session has been disconnected.
        """
        if not self.connected:
            logger.warning("Not connected to slider")
            return False
        try:
            await self._write(data)
        except TransportError as e:
            logger.error("Send error: %s", e)
            await self._handle_disconnection(f"Send failed: {e}")
            return False
        logger.debug("Sent %d bytes: %s", len(data), bytes(data).hex(" "))
        return True

    async def _write(self, data: bytes) -> None:
        # One write at a time: the probe and commands share the handle.
        async with self._write_lock:
            if self._connection is None:
                raise TransportError("Not connected to device")
            await asyncio.to_thread(self._connection.write, data)

    async def send_command(self, opcode: Opcode, payload: bytes = b"") -> bool:
        return await self.send(build_command(opcode, payload))

    async def probe(self) -> bool:
        """Send one liveness probe; a failed write drops the connection."""
        if not self.connected:
            return False
        self.last_liveness_probe = time.monotonic()
        try:
            await self._write(build_debug_info())
        except TransportError as e:
            logger.debug("Connection check failed: %s", e)
            await self._handle_disconnection("Connection check failed")
            return False
        return True

    async def _probe_loop(self) -> None:
        while self.connected:
            await asyncio.sleep(self.config.probe_interval)
            await self.probe()

    # ─── INBOUND ──────────────────────────────────────────────────────

    async def _read_loop(self) -> None:
        config = self.config
        while self.connected:
            connection = self._connection
            try:
                chunk = await asyncio.to_thread(
                    connection.read, config.read_size, config.read_timeout_ms
                )
            except DeviceRemovedError as e:
                await self._handle_disconnection(f"Device disconnected: {e}")
                return
            except TransportError as e:
                await self._handle_disconnection(f"Receive error: {e}")
                return
            if chunk:
                self.handle_chunk(chunk)
            await asyncio.sleep(config.read_poll_interval)

    def handle_chunk(self, chunk: bytes) -> Frame | None:
        """Classify one inbound chunk and dispatch it to completion."""
        frame = classify_chunk(chunk, self.config.frame_generation)
        if frame is None:
            return None

        if frame.kind is FrameKind.TEXT:
            for line in frame.lines:
                self._handle_line(line)
        elif frame.kind is FrameKind.SINGLE_RECORD:
            self._handle_single_record(frame.data)
        else:
            self._handle_bulk_transfer(frame.data)
        return frame

    def _handle_line(self, line: str) -> None:
        for sink in self._line_sinks:
            sink(line)

        parsed = parse_line(line)
        if isinstance(parsed, ProgramCount):
            logger.info("Expecting %d programs", parsed.count)
            self.expected_program_count = parsed.count
            self.store.clear()
            self.store.save()
        elif isinstance(parsed, LoopProgram):
            self.store.put(parsed)
            self.store.save()
            logger.info("Loaded %s from EEPROM", _describe(parsed))
        elif isinstance(parsed, DeviceMessage):
            if parsed.is_event:
                logger.info("[device] %s", parsed.text)
            else:
                logger.debug("[device] %s", parsed.text)

    def _handle_single_record(self, data: bytes) -> ProgramRecord | None:
        record = decode_single_record(data, self.config.frame_generation)
        if record is None:
            return None
        self.store.put(record)
        self.store.save()
        logger.info("Loaded %s from EEPROM", _describe(record))
        return record

    def _handle_bulk_transfer(self, data: bytes) -> BulkTransfer | None:
        logger.info("Received bulk EEPROM data (%d bytes)", len(data))
        try:
            count = read_bulk_count(data)
        except MalformedBulkTransferError as e:
            logger.error("Bulk transfer rejected: %s", e)
            return None

        logger.info("Loading %d programs from EEPROM", count)
        self.store.clear()
        try:
            transfer = decode_bulk_transfer(data, self.config.wire_generation)
        except MalformedBulkTransferError as e:
            logger.error("Bulk transfer aborted at byte %d: %s", e.offset, e)
            self.store.save()
            return None

        self.store.replace(transfer.records)
        self.store.save()
        for record in transfer.records:
            logger.info("Loaded %s", _describe(record))
        logger.info("Bulk EEPROM loading complete")
        return transfer
