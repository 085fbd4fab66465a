"""Transport abstractions for Modbus communication with the BMS.

``BaseModbusTransport`` implements the four request operations on top of a
single abstract exchange primitive: subclasses move one serialized RTU frame
to the bus and return the raw response frame.  Framing checks (CRC, echoed
unit and function code, response shape) live here so every transport reports
the same errors.  Transports never retry; see :mod:`.modbus_retry`.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

import serial_asyncio

from .config import SerialConfig
from .const import (
    BROADCAST_ADDRESS,
    DEFAULT_BAUD_RATE,
    DEFAULT_SERIAL_TIMEOUT,
    SERIAL_SCAN_RANGE,
)
from .exceptions import (
    InvalidDataError,
    NotConnectedError,
    TransportTimeoutError,
    UnsupportedOperationError,
)
from .modbus_helpers import bytes_to_words, expected_frame_length, format_frame, frame_complete
from .modbus_pdu import Pdu

_LOGGER = logging.getLogger(__name__)

# Modbus RTU counts 11 bits per character on the line
_BITS_PER_CHAR = 11
# Above 19200 baud the inter-frame delay is fixed
_FAST_BAUD_THRESHOLD = 19200
_FAST_BAUD_SILENCE = 0.00175
_MIN_FRAME_GAP = 0.05
_READ_CHUNK = 256


class BaseModbusTransport(ABC):
    """Base interface for Modbus transports."""

    def __init__(self, *, timeout: float) -> None:
        self.timeout = float(timeout)
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        """Return whether ``close`` has been called."""

        return self._closed

    @property
    def busy(self) -> bool:
        """Return whether a request is in flight."""

        return self._lock.locked()

    @abstractmethod
    def default_scan_range(self) -> range:
        """Return the unit addresses batteries usually occupy on this link."""

    # ------------------------------------------------------------------
    # Modbus operations
    # ------------------------------------------------------------------
    async def read_holding_registers(self, unit: int, address: int, quantity: int) -> list[int]:
        """Read ``quantity`` registers starting at ``address``."""

        if unit == BROADCAST_ADDRESS:
            raise UnsupportedOperationError("reads cannot be broadcast")
        request = Pdu.read_holding_registers(unit, address, quantity)
        response = await self._exchange(request)
        payload = response.payload
        if not payload or payload[0] != quantity * 2 or len(payload) != 1 + quantity * 2:
            raise InvalidDataError(
                f"unexpected read response {payload.hex(' ')} for {quantity} registers"
            )
        return bytes_to_words(payload[1:])

    async def write_single_register(self, unit: int, address: int, value: int) -> None:
        """Write one register; the device echoes the request."""

        request = Pdu.write_single_register(unit, address, value)
        response = await self._exchange(request)
        if response is not None and response.payload != request.payload:
            raise InvalidDataError(f"unexpected write echo {response.payload.hex(' ')}")

    async def write_multiple_registers(
        self, unit: int, address: int, values: Sequence[int]
    ) -> None:
        """Write consecutive registers; the device echoes address and quantity."""

        request = Pdu.write_multiple_registers(unit, address, values)
        response = await self._exchange(request)
        if response is not None and response.payload != request.payload[:4]:
            raise InvalidDataError(f"unexpected write echo {response.payload.hex(' ')}")

    async def send_custom(self, unit: int, function_code: int, payload: bytes) -> bytes:
        """Send a vendor function and return the response payload."""

        response = await self._exchange(Pdu(unit, function_code, payload))
        return b"" if response is None else response.payload

    async def _exchange(self, request: Pdu) -> Pdu | None:
        """Send ``request`` and return the validated response ``Pdu``.

        Broadcast requests return ``None`` without waiting for a reply.
        """

        if self._closed:
            raise NotConnectedError("transport is closed")
        expect_reply = request.address != BROADCAST_ADDRESS
        frame = request.serialize()
        _LOGGER.debug("TX unit %s: %s", request.address, format_frame(frame))
        raw = await self._transceive(frame, request, expect_reply=expect_reply)
        if not expect_reply:
            return None
        _LOGGER.debug("RX unit %s: %s", request.address, format_frame(raw))

        response = Pdu.deserialize(raw)
        if response.address != request.address:
            raise InvalidDataError(
                f"response from unit {response.address}, expected {request.address}"
            )
        if response.function_code != request.function_code:
            raise InvalidDataError(
                f"response function 0x{response.function_code:02X}, "
                f"expected 0x{request.function_code:02X}"
            )
        return response

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def close(self) -> None:
        """Close the transport; later requests raise ``NotConnectedError``."""

        if self._closed:
            return
        self._closed = True
        await self._reset_connection()

    async def __aenter__(self) -> BaseModbusTransport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @abstractmethod
    async def _transceive(self, frame: bytes, request: Pdu, *, expect_reply: bool) -> bytes:
        """Write ``frame`` and return the raw response frame (``b""`` if none)."""

    @abstractmethod
    async def _reset_connection(self) -> None:
        """Release the underlying link."""


def _inter_frame_silence(baudrate: int) -> float:
    """Return the 3.5 character silence that delimits RTU frames."""

    if baudrate > _FAST_BAUD_THRESHOLD:
        return _FAST_BAUD_SILENCE
    return 3.5 * _BITS_PER_CHAR / baudrate


class SerialModbusTransport(BaseModbusTransport):
    """Modbus RTU over an RS-485 serial line.

    The transport wraps an asyncio ``(StreamReader, StreamWriter)`` pair, as
    returned by ``serial_asyncio.open_serial_connection``; use :meth:`open`
    to open a port by name.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: Any,
        *,
        baudrate: int = DEFAULT_BAUD_RATE,
        timeout: float = DEFAULT_SERIAL_TIMEOUT,
        frame_gap: float | None = None,
        port: str | None = None,
    ) -> None:
        super().__init__(timeout=timeout)
        self.port = port
        self._reader = reader
        self._writer = writer
        self._silence = _inter_frame_silence(baudrate)
        self._frame_gap = frame_gap if frame_gap is not None else max(self._silence, _MIN_FRAME_GAP)
        self._last_activity: float | None = None
        self._dirty = False

    @classmethod
    async def open(
        cls,
        port: str | SerialConfig,
        baudrate: int = DEFAULT_BAUD_RATE,
        **kwargs: Any,
    ) -> SerialModbusTransport:
        """Open ``port`` (a device path or a ``SerialConfig``)."""

        config = (
            port
            if isinstance(port, SerialConfig)
            else SerialConfig(port=port, baudrate=baudrate, **kwargs)
        )
        try:
            reader, writer = await serial_asyncio.open_serial_connection(
                url=config.port,
                baudrate=config.baudrate,
                bytesize=config.bytesize,
                parity=config.parity,
                stopbits=config.stopbits,
            )
        except OSError as err:
            raise NotConnectedError(f"Could not open serial port {config.port}: {err}") from err
        _LOGGER.info("Opened serial port %s at %s baud", config.port, config.baudrate)
        return cls(
            reader,
            writer,
            baudrate=config.baudrate,
            timeout=config.timeout,
            frame_gap=config.frame_gap,
            port=config.port,
        )

    def default_scan_range(self) -> range:
        return SERIAL_SCAN_RANGE

    async def _transceive(self, frame: bytes, request: Pdu, *, expect_reply: bool) -> bytes:
        async with self._lock:
            if self._dirty:
                await self._drain_input()
            await self._wait_for_silence()
            try:
                self._writer.write(frame)
                await self._writer.drain()
            except OSError as err:
                self._dirty = True
                raise NotConnectedError(f"serial write failed: {err}") from err
            self._mark_activity()
            if not expect_reply:
                return b""
            # A late reply to a timed out or cancelled request is drained
            # before the next one goes out
            self._dirty = True
            try:
                response = await self._read_frame()
            finally:
                self._mark_activity()
            return response

    async def _read_frame(self) -> bytes:
        """Read until a complete frame arrived or the line went silent.

        The input is marked clean only when the frame ended without trailing
        bytes.
        """

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        buffer = bytearray()
        while not frame_complete(buffer):
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise self._timeout_error(buffer)
            wait = min(remaining, self._frame_gap) if buffer else remaining
            try:
                chunk = await asyncio.wait_for(self._reader.read(_READ_CHUNK), timeout=wait)
            except (asyncio.TimeoutError, TimeoutError):
                if not buffer or wait >= remaining:
                    raise self._timeout_error(buffer) from None
                _LOGGER.debug("Line silent after partial frame %s", format_frame(buffer))
                break
            if not chunk:
                raise NotConnectedError("serial port closed")
            buffer.extend(chunk)

        expected = expected_frame_length(buffer)
        if expected is not None and len(buffer) > expected:
            _LOGGER.warning(
                "Discarding %d trailing bytes: %s",
                len(buffer) - expected,
                format_frame(buffer[expected:]),
            )
            del buffer[expected:]
        else:
            self._dirty = False
        return bytes(buffer)

    def _timeout_error(self, buffer: bytearray) -> TransportTimeoutError:
        _LOGGER.warning(
            "No complete response within %.2fs (%d bytes received)", self.timeout, len(buffer)
        )
        return TransportTimeoutError(f"no complete response within {self.timeout:.2f}s")

    async def _drain_input(self) -> None:
        """Discard stale bytes left over from a failed exchange."""

        discarded = 0
        while True:
            try:
                chunk = await asyncio.wait_for(
                    self._reader.read(_READ_CHUNK), timeout=self._frame_gap
                )
            except (asyncio.TimeoutError, TimeoutError):
                break
            if not chunk:
                break
            discarded += len(chunk)
        if discarded:
            _LOGGER.warning("Discarded %d stale bytes before request", discarded)
        self._dirty = False

    async def _wait_for_silence(self) -> None:
        if self._last_activity is None:
            return
        loop = asyncio.get_running_loop()
        delay = self._last_activity + self._silence - loop.time()
        if delay > 0:
            await asyncio.sleep(delay)

    def _mark_activity(self) -> None:
        self._last_activity = asyncio.get_running_loop().time()

    async def _reset_connection(self) -> None:
        self._writer.close()
        wait_closed = getattr(self._writer, "wait_closed", None)
        if wait_closed is not None:
            await wait_closed()
        _LOGGER.info("Closed serial port %s", self.port or "<stream>")
