"""Tests for the BT-2 BLE transport and its frame reassembly."""

import asyncio
import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from bleak.exc import BleakError
from conftest import FakeBleakClient, exception_frame

from renogy_bms.bt2_transport import (
    AssemblerState,
    Bt2Transport,
    FrameAssembler,
    discover_bt2_devices,
)
from renogy_bms.config import Bt2Config
from renogy_bms.const import BT2_NOTIFY_CHAR_UUID, BT2_WRITE_CHAR_UUID
from renogy_bms.exceptions import (
    CrcMismatchError,
    ModbusExceptionError,
    NotConnectedError,
    TransportBusyError,
    TransportTimeoutError,
)
from renogy_bms.modbus_exceptions import ModbusExceptionCode
from renogy_bms.modbus_helpers import append_crc
from renogy_bms.modbus_pdu import Pdu

# unit 0x30, cell_count = 4, cell_voltage[1] = 3.3 V
RESPONSE = append_crc(bytes.fromhex("3003040004" "0021"))


def _split(frame, size):
    return [frame[i : i + size] for i in range(0, len(frame), size)]


def _fragments(size, frame=RESPONSE):
    return lambda _request: _split(frame, size)


async def _started(client, **overrides):
    transport = Bt2Transport(client, **overrides)
    await transport.start()
    return transport


async def _wait_for_request(client, count=1):
    while len(client.requests) < count:
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# FrameAssembler
# ---------------------------------------------------------------------------


def test_assembler_state_progression():
    assembler = FrameAssembler()
    assert assembler.state is AssemblerState.IDLE
    assert assembler.feed(RESPONSE) is None

    assembler.begin(0x30, 0x03)
    assert assembler.feed(RESPONSE[:3]) is None
    assert assembler.state is AssemblerState.ACCUMULATING
    assert assembler.buffered == 3
    assert assembler.feed(RESPONSE[3:]) == RESPONSE
    assert assembler.state is AssemblerState.COMPLETE
    assert assembler.feed(RESPONSE) is None

    assembler.reset()
    assert assembler.state is AssemblerState.IDLE
    assert not assembler.armed


def test_assembler_exception_frame():
    assembler = FrameAssembler()
    assembler.begin(0x30, 0x03)
    frame = exception_frame(0x30, 0x03, 0x02)
    assert assembler.feed(frame[:4]) is None
    assert assembler.feed(frame[4:]) == frame


def test_assembler_discards_leading_garbage(caplog):
    assembler = FrameAssembler()
    assembler.begin(0x30, 0x03)
    with caplog.at_level(logging.WARNING):
        assert assembler.feed(b"\xff\x00\x30\x06") is None
        assert assembler.feed(RESPONSE) == RESPONSE
    assert "Discarded" in caplog.text


def test_assembler_garbage_only_stays_idle():
    assembler = FrameAssembler()
    assembler.begin(0x30, 0x03)
    assert assembler.feed(b"\x01\x02\x03") is None
    assert assembler.state is AssemblerState.IDLE
    assert assembler.buffered == 0


def test_assembler_drops_bytes_after_frame():
    assembler = FrameAssembler()
    assembler.begin(0x30, 0x03)
    assert assembler.feed(RESPONSE + b"\x00\x00") == RESPONSE


def test_assembler_custom_function_uses_crc():
    frame = Pdu(0x30, 0x79, b"\x00\x00\x00\x01").serialize()
    assembler = FrameAssembler()
    assembler.begin(0x30, 0x79)
    assert assembler.feed(frame[:-1]) is None
    assert assembler.feed(frame[-1:]) == frame


# ---------------------------------------------------------------------------
# Bt2Transport exchange
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize("size", [1, 2, 3, len(RESPONSE)])
async def test_read_reassembles_fragments(size):
    client = FakeBleakClient(_fragments(size))
    transport = await _started(client)

    words = await transport.read_holding_registers(0x30, 5000, 2)

    assert words == [4, 0x21]
    assert client.requests == [Pdu.read_holding_registers(0x30, 5000, 2).serialize()]
    assert client.write_uuid == BT2_WRITE_CHAR_UUID
    assert client.notify_uuid == BT2_NOTIFY_CHAR_UUID
    assert not transport.busy


@pytest.mark.asyncio
async def test_garbage_before_response_is_skipped():
    client = FakeBleakClient(lambda _request: [b"\xaa\xbb", RESPONSE])
    transport = await _started(client)

    assert await transport.read_holding_registers(0x30, 5000, 2) == [4, 0x21]


@pytest.mark.asyncio
async def test_request_chunked_by_mtu():
    client = FakeBleakClient(_fragments(20), mtu_size=5)
    transport = await _started(client)
    assert transport.chunk_size == 2

    await transport.read_holding_registers(0x30, 5000, 2)

    assert [len(chunk) for chunk in client.writes] == [2, 2, 2, 2]


@pytest.mark.asyncio
async def test_chunk_size_defaults_and_override():
    assert Bt2Transport(FakeBleakClient()).chunk_size == 20
    assert Bt2Transport(FakeBleakClient(mtu_size=None)).chunk_size == 20
    assert Bt2Transport(FakeBleakClient(mtu_size=247)).chunk_size == 244
    assert Bt2Transport(FakeBleakClient(), chunk_size=3).chunk_size == 3


@pytest.mark.asyncio
async def test_idle_timeout(caplog):
    client = FakeBleakClient(_fragments(3, RESPONSE[:3]))
    transport = await _started(client, timeout=1.0, idle_timeout=0.05)

    with caplog.at_level(logging.WARNING), pytest.raises(TransportTimeoutError):
        await transport.read_holding_registers(0x30, 5000, 2)

    assert "No BT-2 data" in caplog.text
    assert not transport.busy


@pytest.mark.asyncio
async def test_no_response_times_out():
    client = FakeBleakClient()
    transport = await _started(client, timeout=0.1, idle_timeout=0.05)

    with pytest.raises(TransportTimeoutError):
        await transport.read_holding_registers(0x30, 5000, 2)


@pytest.mark.asyncio
async def test_overall_timeout_with_trickling_fragments(caplog):
    client = FakeBleakClient(_fragments(1), interval=0.03)
    transport = await _started(client, timeout=0.1, idle_timeout=0.08)

    with caplog.at_level(logging.WARNING), pytest.raises(TransportTimeoutError):
        await transport.read_holding_registers(0x30, 5000, 2)

    assert "incomplete after" in caplog.text


@pytest.mark.asyncio
async def test_crc_mismatch():
    corrupted = bytearray(RESPONSE)
    corrupted[-1] ^= 0xFF
    client = FakeBleakClient(_fragments(4, bytes(corrupted)))
    transport = await _started(client)

    with pytest.raises(CrcMismatchError):
        await transport.read_holding_registers(0x30, 5000, 2)


@pytest.mark.asyncio
async def test_exception_response():
    client = FakeBleakClient(lambda request: [exception_frame(0x30, 0x03, 0x02)])
    transport = await _started(client)

    with pytest.raises(ModbusExceptionError) as err:
        await transport.read_holding_registers(0x30, 5000, 2)

    assert err.value.code is ModbusExceptionCode.ILLEGAL_DATA_ADDRESS


@pytest.mark.asyncio
async def test_custom_function_response():
    def _echo(request):
        return _split(request, 3)

    client = FakeBleakClient(_echo)
    transport = await _started(client)

    assert await transport.send_custom(0x30, 0x79, b"\x00\x00\x00\x01") == b"\x00\x00\x00\x01"


@pytest.mark.asyncio
async def test_second_request_while_busy():
    client = FakeBleakClient()
    transport = await _started(client)

    first = asyncio.create_task(transport.read_holding_registers(0x30, 5000, 2))
    await _wait_for_request(client)
    assert transport.busy

    with pytest.raises(TransportBusyError):
        await transport.read_holding_registers(0x30, 5001, 1)

    client.notify(RESPONSE)
    assert await first == [4, 0x21]
    assert len(client.requests) == 1


@pytest.mark.asyncio
async def test_cancelled_request_cleans_up():
    client = FakeBleakClient()
    transport = await _started(client)

    task = asyncio.create_task(transport.read_holding_registers(0x30, 5000, 2))
    await _wait_for_request(client)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert not transport.busy
    assert not transport._assembler.armed
    client.responder = _fragments(5)
    assert await transport.read_holding_registers(0x30, 5000, 2) == [4, 0x21]


@pytest.mark.asyncio
async def test_unsolicited_notification_is_dropped(caplog):
    client = FakeBleakClient(_fragments(20))
    transport = await _started(client)

    with caplog.at_level(logging.DEBUG, logger="renogy_bms.bt2_transport"):
        client.notify(RESPONSE)

    assert "unsolicited" in caplog.text
    assert await transport.read_holding_registers(0x30, 5000, 2) == [4, 0x21]


@pytest.mark.asyncio
async def test_disconnect_fails_pending_request():
    client = FakeBleakClient()
    transport = await _started(client)

    task = asyncio.create_task(transport.read_holding_registers(0x30, 5000, 2))
    await _wait_for_request(client)
    transport._handle_disconnect()

    with pytest.raises(NotConnectedError):
        await task
    with pytest.raises(NotConnectedError):
        await transport.read_holding_registers(0x30, 5000, 2)


@pytest.mark.asyncio
async def test_write_failure_is_not_connected():
    client = FakeBleakClient()
    client.write_gatt_char = AsyncMock(side_effect=BleakError("gone"))
    transport = await _started(client)

    with pytest.raises(NotConnectedError):
        await transport.read_holding_registers(0x30, 5000, 2)
    assert not transport.busy


@pytest.mark.asyncio
async def test_broadcast_write_does_not_wait():
    client = FakeBleakClient()
    transport = await _started(client, timeout=5.0)

    await asyncio.wait_for(transport.write_single_register(0, 5224, 0x5A5A), timeout=1.0)

    assert client.requests[0][0] == 0


@pytest.mark.asyncio
async def test_close_unsubscribes_and_disconnects():
    client = FakeBleakClient()
    transport = await _started(client)

    await transport.close()
    await transport.close()

    assert client.callback is None
    assert client.disconnected
    with pytest.raises(NotConnectedError):
        await transport.read_holding_registers(0x30, 5000, 2)


def test_config_overrides():
    transport = Bt2Transport(FakeBleakClient(), Bt2Config(timeout=2.0), idle_timeout=0.5)
    assert transport.timeout == 2.0
    assert transport.config.idle_timeout == 0.5
    assert list(transport.default_scan_range()) == list(range(0x30, 0x40))


# ---------------------------------------------------------------------------
# Connection helpers
# ---------------------------------------------------------------------------


class ConnectingClient(FakeBleakClient):
    instances: list["ConnectingClient"] = []
    fail = False

    def __init__(self, address, disconnected_callback=None, timeout=10.0, adapter=None):
        super().__init__()
        self.address = address
        self.disconnected_callback = disconnected_callback
        self.timeout = timeout
        self.adapter = adapter
        ConnectingClient.instances.append(self)

    async def connect(self):
        if self.fail:
            raise BleakError("device not found")


@pytest.fixture
def connecting_client(monkeypatch):
    ConnectingClient.instances = []
    ConnectingClient.fail = False
    monkeypatch.setattr("renogy_bms.bt2_transport.BleakClient", ConnectingClient)
    return ConnectingClient


@pytest.mark.asyncio
async def test_connect_by_path(connecting_client):
    transport = await Bt2Transport.connect_by_path(
        "/org/bluez/hci1/dev_aa_bb_cc_dd_ee_ff", timeout=3.0
    )

    client = connecting_client.instances[0]
    assert client.address == "AA:BB:CC:DD:EE:FF"
    assert client.adapter == "hci1"
    assert client.timeout == 3.0
    assert client.callback is not None

    client.disconnected_callback(client)
    with pytest.raises(NotConnectedError):
        await transport.read_holding_registers(0x30, 5000, 2)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "path", ["/org/bluez/hci0", "/org/bluez/hci0/dev_AA_BB", "AA:BB:CC:DD:EE:FF"]
)
async def test_connect_by_path_rejects_invalid_path(connecting_client, path):
    with pytest.raises(ValueError):
        await Bt2Transport.connect_by_path(path)
    assert connecting_client.instances == []


@pytest.mark.asyncio
async def test_connect_failure(connecting_client):
    connecting_client.fail = True

    with pytest.raises(NotConnectedError):
        await Bt2Transport.connect_by_address("AA:BB:CC:DD:EE:FF")


@pytest.mark.asyncio
async def test_discover_bt2_devices(monkeypatch):
    devices = [
        SimpleNamespace(name="BT-TH-66E0ABCD", address="AA:BB:CC:DD:EE:01"),
        SimpleNamespace(name="Speaker", address="AA:BB:CC:DD:EE:02"),
        SimpleNamespace(name=None, address="AA:BB:CC:DD:EE:03"),
    ]
    discover = AsyncMock(return_value=devices)
    monkeypatch.setattr("renogy_bms.bt2_transport.BleakScanner.discover", discover)

    found = await discover_bt2_devices(2.0, adapter="hci1")

    assert [device.address for device in found] == ["AA:BB:CC:DD:EE:01"]
    discover.assert_awaited_once_with(timeout=2.0, adapter="hci1")


@pytest.mark.asyncio
async def test_discover_bt2_devices_without_adapter(monkeypatch):
    discover = AsyncMock(side_effect=BleakError("No Bluetooth adapters found."))
    monkeypatch.setattr("renogy_bms.bt2_transport.BleakScanner.discover", discover)

    with pytest.raises(NotConnectedError) as excinfo:
        await discover_bt2_devices(1.0)

    assert isinstance(excinfo.value.__cause__, BleakError)
