"""Aggregate view over several battery modules on one bus."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntFlag

from .alarms import Status1, Status2
from .query import BatteryInfo


class SystemAlarms(IntFlag):
    """Condensed alarm bits for the whole bank."""

    OVER_VOLTAGE = 1 << 0
    UNDER_VOLTAGE = 1 << 1
    OVER_CURRENT = 1 << 2
    OVER_TEMP = 1 << 3
    UNDER_TEMP = 1 << 4
    SHORT_CIRCUIT = 1 << 5
    HEATER_ON = 1 << 6
    FULLY_CHARGED = 1 << 7

    @classmethod
    def from_status(cls, status1: Status1, status2: Status2) -> SystemAlarms:
        alarms = cls(0)
        if status1 & (Status1.CELL_OVER_VOLTAGE | Status1.MODULE_OVER_VOLTAGE):
            alarms |= cls.OVER_VOLTAGE
        if status1 & (Status1.CELL_UNDER_VOLTAGE | Status1.MODULE_UNDER_VOLTAGE):
            alarms |= cls.UNDER_VOLTAGE
        if status1 & (
            Status1.CHARGE_OVER_CURRENT1
            | Status1.CHARGE_OVER_CURRENT2
            | Status1.DISCHARGE_OVER_CURRENT1
            | Status1.DISCHARGE_OVER_CURRENT2
        ):
            alarms |= cls.OVER_CURRENT
        if status1 & (Status1.CHARGE_OVER_TEMP | Status1.DISCHARGE_OVER_TEMP):
            alarms |= cls.OVER_TEMP
        if status1 & (Status1.CHARGE_UNDER_TEMP | Status1.DISCHARGE_UNDER_TEMP):
            alarms |= cls.UNDER_TEMP
        if status1 & Status1.SHORT_CIRCUIT:
            alarms |= cls.SHORT_CIRCUIT
        if status2 & Status2.HEATER_ON:
            alarms |= cls.HEATER_ON
        if status2 & Status2.FULLY_CHARGED:
            alarms |= cls.FULLY_CHARGED
        return alarms


@dataclass(frozen=True, slots=True)
class SystemSummary:
    """Totals and averages over a set of battery snapshots."""

    battery_count: int
    total_current: float
    total_remaining_ah: float
    total_capacity_ah: float
    average_soc: float
    average_voltage: float
    average_temperature: float | None
    status1: Status1
    status2: Status2
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_batteries(cls, batteries: Sequence[BatteryInfo]) -> SystemSummary:
        total_current = sum(info.current for info in batteries)
        total_remaining = sum(info.remaining_capacity for info in batteries)
        total_capacity = sum(info.total_capacity for info in batteries)
        temperatures = [temp for info in batteries for temp in info.cell_temperatures]

        status1 = Status1(0)
        status2 = Status2(0)
        for info in batteries:
            if info.status1 is not None:
                status1 |= info.status1
            if info.status2 is not None:
                status2 |= info.status2

        count = len(batteries)
        return cls(
            battery_count=count,
            total_current=total_current,
            total_remaining_ah=total_remaining,
            total_capacity_ah=total_capacity,
            average_soc=total_remaining / total_capacity * 100.0 if total_capacity > 0 else 0.0,
            average_voltage=sum(info.module_voltage for info in batteries) / count if count else 0.0,
            average_temperature=sum(temperatures) / len(temperatures) if temperatures else None,
            status1=status1,
            status2=status2,
        )

    def alarms(self) -> SystemAlarms:
        return SystemAlarms.from_status(self.status1, self.status2)
