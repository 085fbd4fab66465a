"""Command line tool querying Renogy batteries over BT-2 or RS-485.

Usage:
    renogy-bms bt2 [--mac ADDRESS] [--adapter hci0] [-b 0x30 -b 0x31 ...]
    renogy-bms serial --port /dev/ttyUSB0 [--baud-rate 9600] [-b 1 ...]

Without ``-b`` the default address range of the link is scanned until the
first unit that does not answer.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from .bt2_transport import Bt2Transport, discover_bt2_devices
from .const import DEFAULT_ADAPTER, DEFAULT_BAUD_RATE, DEFAULT_SCAN_TIMEOUT
from .exceptions import RenogyError
from .modbus_transport import BaseModbusTransport, SerialModbusTransport
from .query import BatteryInfo, discover_batteries, query_battery
from .system_summary import SystemSummary

_LOGGER = logging.getLogger(__name__)

_RULE = "=" * 59


def _parse_address(value: str) -> int:
    """Parse a unit address given as decimal or ``0x`` hex."""

    text = value.strip()
    try:
        address = int(text, 16) if text.lower().startswith("0x") else int(text)
    except ValueError as err:
        raise argparse.ArgumentTypeError(f"invalid address: {value}") from err
    if not 1 <= address <= 247:
        raise argparse.ArgumentTypeError(f"address out of range: {value}")
    return address


def format_battery_info(info: BatteryInfo) -> str:
    """Return a human readable block describing one battery."""

    lines = [
        _RULE,
        f"Battery 0x{info.unit:02X} - {info.serial}",
        _RULE,
        f"  Module Voltage: {info.module_voltage:.1f} V    Current: {info.current:+.2f} A",
        f"  Capacity: {info.remaining_capacity:.1f} / {info.total_capacity:.1f} Ah "
        f"({info.soc_percent:.1f}%)",
    ]
    bms_temp = "n/a" if info.bms_temperature is None else f"{info.bms_temperature:.1f} °C"
    lines.append(f"  Cycles: {info.cycle_count}    BMS Temp: {bms_temp}")
    lines.append("")
    lines.append(f"  Cell Voltages ({info.cell_count} cells):")
    voltages = info.cell_voltages
    for row in range(0, len(voltages), 4):
        cells = "  ".join(
            f"C{row + i + 1:02}: {voltage:.3f}V" for i, voltage in enumerate(voltages[row : row + 4])
        )
        lines.append(f"    {cells}")
    if voltages:
        low, high = min(voltages), max(voltages)
        lines.append(
            f"    Min: {low:.3f}V  Max: {high:.3f}V  Delta: {(high - low) * 1000:.0f}mV"
        )
    if info.status1:
        lines.append(f"  Status: {', '.join(flag.name for flag in info.status1)}")
    return "\n".join(lines)


def format_summary(summary: SystemSummary) -> str:
    alarms = summary.alarms()
    return "\n".join(
        [
            _RULE,
            f"System: {summary.battery_count} batteries",
            _RULE,
            f"  Current: {summary.total_current:+.2f} A    "
            f"Capacity: {summary.total_remaining_ah:.1f} / {summary.total_capacity_ah:.1f} Ah "
            f"({summary.average_soc:.1f}%)",
            f"  Average Voltage: {summary.average_voltage:.1f} V",
            f"  Alarms: {', '.join(flag.name for flag in alarms) if alarms else 'none'}",
        ]
    )


async def _query(
    transport: BaseModbusTransport, addresses: Sequence[int] | None
) -> list[BatteryInfo]:
    if not addresses:
        return await discover_batteries(transport)
    found = []
    for address in addresses:
        info = await query_battery(transport, address)
        if info is None:
            print(f"No battery at 0x{address:02X}", file=sys.stderr)
            continue
        found.append(info)
    return found


async def _open_bt2(args: argparse.Namespace) -> Bt2Transport | None:
    address = args.mac
    if address is None:
        print("Discovering BT-2 devices...")
        devices = await discover_bt2_devices(args.scan_timeout, adapter=args.adapter)
        if not devices:
            print("No BT-2 devices found. Specify a MAC address with --mac", file=sys.stderr)
            return None
        for device in devices:
            print(f"  Found: {device.name or 'unknown'} ({device.address})")
        address = devices[0].address
    print(f"Connecting to {address} via {args.adapter}...")
    return await Bt2Transport.connect_by_address(address, args.adapter)


async def _open_serial(args: argparse.Namespace) -> SerialModbusTransport:
    print(f"Opening {args.port} at {args.baud_rate} baud...")
    return await SerialModbusTransport.open(args.port, args.baud_rate)


async def _run(args: argparse.Namespace) -> int:
    opener = _open_bt2 if args.link == "bt2" else _open_serial
    transport = await opener(args)
    if transport is None:
        return 1
    async with transport:
        batteries = await _query(transport, args.bms_addresses)
    if not batteries:
        print("No batteries found", file=sys.stderr)
        return 1
    for info in batteries:
        print(format_battery_info(info))
        print()
    if len(batteries) > 1:
        print(format_summary(SystemSummary.from_batteries(batteries)))
    return 0


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="renogy-bms", description="Query Renogy BMS batteries"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    links = parser.add_subparsers(dest="link", required=True)

    bt2 = links.add_parser("bt2", help="Query via a BT-2 Bluetooth adapter")
    bt2.add_argument(
        "-m", "--mac", help="BT-2 MAC address; the first BT-2 discovered is used if omitted"
    )
    bt2.add_argument("-a", "--adapter", default=DEFAULT_ADAPTER, help="Bluetooth adapter name")
    bt2.add_argument(
        "--scan-timeout", type=float, default=DEFAULT_SCAN_TIMEOUT, help="Discovery time (s)"
    )

    serial = links.add_parser("serial", help="Query via RS-485")
    serial.add_argument("-p", "--port", required=True, help="Serial port, e.g. /dev/ttyUSB0")
    serial.add_argument("-r", "--baud-rate", type=int, default=DEFAULT_BAUD_RATE)

    for sub in (bt2, serial):
        sub.add_argument(
            "-b",
            "--bms-address",
            dest="bms_addresses",
            action="append",
            type=_parse_address,
            help="BMS unit address (hex like 0x30 or decimal); can be repeated",
        )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    try:
        return asyncio.run(_run(args))
    except RenogyError as err:
        _LOGGER.debug("Query failed", exc_info=True)
        print(f"Error: {err}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
