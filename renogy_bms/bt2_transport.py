"""Renogy BT-2 Bluetooth transport.

The BT-2 adapter is a transparent bridge between BLE and the RS-485 bus: RTU
request frames are written to one GATT characteristic and the response comes
back as a series of notifications on another.  Notifications are arbitrary
fragments of the response, so they are fed through a :class:`FrameAssembler`
until a complete frame for the pending request has been collected.
"""

from __future__ import annotations

import asyncio
import logging
import re
from enum import Enum
from typing import Any

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError

from .config import Bt2Config
from .const import (
    ATT_HEADER_SIZE,
    BT2_NAME_PREFIX,
    BT2_SCAN_RANGE,
    DEFAULT_BLE_CHUNK_SIZE,
    DEFAULT_SCAN_TIMEOUT,
    EXCEPTION_FLAG,
)
from .exceptions import NotConnectedError, TransportBusyError, TransportTimeoutError
from .modbus_helpers import expected_frame_length, format_frame, frame_crc_ok
from .modbus_pdu import Pdu
from .modbus_transport import BaseModbusTransport

_LOGGER = logging.getLogger(__name__)

_BLUEZ_PATH_RE = re.compile(
    r"^/org/bluez/(?P<adapter>hci\d+)/dev_(?P<mac>(?:[0-9A-Fa-f]{2}_){5}[0-9A-Fa-f]{2})$"
)


class AssemblerState(Enum):
    """Reassembly progress of the pending response."""

    IDLE = "idle"
    ACCUMULATING = "accumulating"
    COMPLETE = "complete"


class FrameAssembler:
    """Reassemble one RTU response frame from notification fragments.

    ``begin`` arms the assembler with the unit and function code of the
    request.  ``feed`` returns the complete frame once enough bytes arrived:
    5 bytes for exception responses, ``3 + byte_count + 2`` for reads, 8 for
    write echoes and, for vendor functions, as soon as the CRC over the
    buffer validates.  Bytes that cannot start the expected frame are
    discarded.
    """

    def __init__(self) -> None:
        self.state = AssemblerState.IDLE
        self.unit: int | None = None
        self.function_code: int | None = None
        self._buffer = bytearray()

    @property
    def armed(self) -> bool:
        return self.unit is not None

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def begin(self, unit: int, function_code: int) -> None:
        """Expect a response from ``unit`` to ``function_code``."""

        self._buffer.clear()
        self.unit = unit
        self.function_code = function_code
        self.state = AssemblerState.IDLE

    def reset(self) -> None:
        self._buffer.clear()
        self.unit = None
        self.function_code = None
        self.state = AssemblerState.IDLE

    def feed(self, data: bytes | bytearray) -> bytes | None:
        """Add a fragment; return the frame once it is complete."""

        if not self.armed or self.state is AssemblerState.COMPLETE:
            return None
        self._buffer.extend(data)
        self._discard_garbage()
        if not self._buffer:
            self.state = AssemblerState.IDLE
            return None
        self.state = AssemblerState.ACCUMULATING

        expected = expected_frame_length(self._buffer)
        if expected is not None:
            if len(self._buffer) < expected:
                return None
            if len(self._buffer) > expected:
                _LOGGER.debug(
                    "Dropping %d bytes after frame: %s",
                    len(self._buffer) - expected,
                    format_frame(self._buffer[expected:]),
                )
            frame = bytes(self._buffer[:expected])
        elif frame_crc_ok(self._buffer):
            frame = bytes(self._buffer)
        else:
            return None

        self._buffer.clear()
        self.state = AssemblerState.COMPLETE
        return frame

    def _discard_garbage(self) -> None:
        valid_functions = (self.function_code, self.function_code | EXCEPTION_FLAG)
        dropped = 0
        while self._buffer:
            if self._buffer[0] == self.unit and (
                len(self._buffer) < 2 or self._buffer[1] in valid_functions
            ):
                break
            del self._buffer[0]
            dropped += 1
        if dropped:
            _LOGGER.warning("Discarded %d bytes that do not start a response frame", dropped)


def _chunks(frame: bytes, size: int) -> list[bytes]:
    return [frame[i : i + size] for i in range(0, len(frame), size)]


class Bt2Transport(BaseModbusTransport):
    """Modbus RTU through a BT-2 BLE adapter.

    ``client`` is a connected ``BleakClient`` (or a compatible object).  Use
    :meth:`connect_by_address` or :meth:`connect_by_path` to create one.
    Settings come from ``config`` with keyword overrides applied on top.
    """

    def __init__(
        self,
        client: BleakClient,
        config: Bt2Config | None = None,
        **overrides: Any,
    ) -> None:
        if overrides:
            base = config.model_dump() if config is not None else {}
            config = Bt2Config(**{**base, **overrides})
        self.config = config or Bt2Config()
        super().__init__(timeout=self.config.timeout)
        self._client = client
        self._assembler = FrameAssembler()
        self._response: asyncio.Future[bytes] | None = None
        self._last_fragment = 0.0
        self._notifying = False
        self._link_lost = False

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------
    @classmethod
    async def connect_by_address(
        cls,
        address: str,
        adapter: str | None = None,
        config: Bt2Config | None = None,
        **overrides: Any,
    ) -> Bt2Transport:
        """Connect to the BT-2 with MAC ``address`` (e.g. ``FD:86:6D:73:00:01``)."""

        if adapter is not None:
            overrides["adapter"] = adapter
        transport: Bt2Transport | None = None

        def _disconnected(_client: BleakClient) -> None:
            if transport is not None:
                transport._handle_disconnect()

        settings = config or Bt2Config()
        if overrides:
            settings = Bt2Config(**{**settings.model_dump(), **overrides})
        client = BleakClient(
            address,
            disconnected_callback=_disconnected,
            timeout=settings.timeout,
            adapter=settings.adapter,
        )
        try:
            await client.connect()
        except (BleakError, asyncio.TimeoutError, TimeoutError) as err:
            raise NotConnectedError(f"Could not connect to BT-2 {address}: {err}") from err

        transport = cls(client, settings)
        try:
            await transport.start()
        except NotConnectedError:
            await client.disconnect()
            raise
        _LOGGER.info("Connected to BT-2 %s via %s", address, settings.adapter)
        return transport

    @classmethod
    async def connect_by_path(
        cls, device_path: str, config: Bt2Config | None = None, **overrides: Any
    ) -> Bt2Transport:
        """Connect using a BlueZ object path like ``/org/bluez/hci0/dev_AA_BB_...``."""

        match = _BLUEZ_PATH_RE.match(device_path)
        if match is None:
            raise ValueError(f"not a BlueZ device path: {device_path}")
        address = match.group("mac").replace("_", ":").upper()
        return await cls.connect_by_address(
            address, match.group("adapter"), config=config, **overrides
        )

    async def start(self) -> None:
        """Subscribe to response notifications."""

        if self._notifying:
            return
        try:
            await self._client.start_notify(self.config.notify_uuid, self._handle_notification)
        except BleakError as err:
            raise NotConnectedError(f"Could not enable BT-2 notifications: {err}") from err
        self._notifying = True

    def default_scan_range(self) -> range:
        return BT2_SCAN_RANGE

    @property
    def chunk_size(self) -> int:
        """Return the largest GATT write used for one request."""

        if self.config.chunk_size is not None:
            return self.config.chunk_size
        mtu = getattr(self._client, "mtu_size", None)
        if isinstance(mtu, int) and mtu > ATT_HEADER_SIZE:
            return mtu - ATT_HEADER_SIZE
        return DEFAULT_BLE_CHUNK_SIZE

    # ------------------------------------------------------------------
    # Exchange
    # ------------------------------------------------------------------
    async def _transceive(self, frame: bytes, request: Pdu, *, expect_reply: bool) -> bytes:
        if self._lock.locked():
            raise TransportBusyError("a BT-2 request is already in flight")
        async with self._lock:
            self._ensure_connected()
            await self.start()
            loop = asyncio.get_running_loop()
            if expect_reply:
                self._assembler.begin(request.address, request.function_code)
                self._response = loop.create_future()
            try:
                await self._write_frame(frame)
                if not expect_reply:
                    return b""
                return await self._wait_for_response(loop)
            finally:
                self._assembler.reset()
                if self._response is not None and not self._response.done():
                    self._response.cancel()
                self._response = None

    async def _write_frame(self, frame: bytes) -> None:
        for chunk in _chunks(frame, self.chunk_size):
            try:
                await self._client.write_gatt_char(
                    self.config.write_uuid,
                    chunk,
                    response=self.config.write_with_response,
                )
            except BleakError as err:
                raise NotConnectedError(f"BT-2 write failed: {err}") from err

    async def _wait_for_response(self, loop: asyncio.AbstractEventLoop) -> bytes:
        assert self._response is not None
        deadline = loop.time() + self.timeout
        self._last_fragment = loop.time()
        while True:
            now = loop.time()
            idle_deadline = self._last_fragment + self.config.idle_timeout
            if now >= deadline:
                _LOGGER.warning(
                    "BT-2 response incomplete after %.2fs (%d bytes buffered)",
                    self.timeout,
                    self._assembler.buffered,
                )
                raise TransportTimeoutError(f"no complete response within {self.timeout:.2f}s")
            if now >= idle_deadline:
                _LOGGER.warning(
                    "No BT-2 data for %.2fs (%d bytes buffered)",
                    self.config.idle_timeout,
                    self._assembler.buffered,
                )
                raise TransportTimeoutError(
                    f"no data for {self.config.idle_timeout:.2f}s while awaiting response"
                )
            try:
                return await asyncio.wait_for(
                    asyncio.shield(self._response), timeout=min(deadline, idle_deadline) - now
                )
            except (asyncio.TimeoutError, TimeoutError):
                continue

    def _handle_notification(self, _sender: Any, data: bytearray) -> None:
        _LOGGER.debug("BT-2 notification: %s", format_frame(data))
        if self._response is None or self._response.done():
            _LOGGER.debug("Dropping unsolicited notification %s", format_frame(data))
            return
        self._last_fragment = asyncio.get_running_loop().time()
        frame = self._assembler.feed(data)
        if frame is not None:
            self._response.set_result(frame)

    def _handle_disconnect(self) -> None:
        if self._link_lost:
            return
        self._link_lost = True
        self._notifying = False
        _LOGGER.info("BT-2 link lost")
        self._fail_pending(NotConnectedError("BT-2 disconnected"))

    def _fail_pending(self, err: Exception) -> None:
        if self._response is not None and not self._response.done():
            self._response.set_exception(err)

    def _ensure_connected(self) -> None:
        if self._closed:
            raise NotConnectedError("transport is closed")
        if self._link_lost:
            raise NotConnectedError("BT-2 disconnected")

    async def _reset_connection(self) -> None:
        self._fail_pending(NotConnectedError("transport closed"))
        if self._notifying and not self._link_lost:
            try:
                await self._client.stop_notify(self.config.notify_uuid)
            except BleakError as err:
                _LOGGER.debug("BT-2 stop_notify failed: %s", err)
        self._notifying = False
        try:
            await self._client.disconnect()
        except BleakError as err:
            _LOGGER.debug("BT-2 disconnect failed: %s", err)
        _LOGGER.info("Closed BT-2 transport")


async def discover_bt2_devices(
    timeout: float = DEFAULT_SCAN_TIMEOUT, *, adapter: str | None = None
) -> list[BLEDevice]:
    """Scan for BLE devices and keep those named like a BT-2 (``BT-TH-...``)."""

    kwargs: dict[str, Any] = {}
    if adapter is not None:
        kwargs["adapter"] = adapter
    try:
        devices = await BleakScanner.discover(timeout=timeout, **kwargs)
    except BleakError as err:
        raise NotConnectedError(f"BT-2 discovery failed: {err}") from err
    found = [device for device in devices if device.name and device.name.startswith(BT2_NAME_PREFIX)]
    _LOGGER.info("Found %d BT-2 device(s)", len(found))
    return found
