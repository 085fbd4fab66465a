"""Pydantic models describing register definitions.

The bundled JSON register map is validated against these models when it is
loaded.  Besides per-field checks the models enforce that each codec kind has
a sensible word count, that flag and alarm registers name their bit layout,
and that no two registers (including every slot of indexed registers) share
an address.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Literal

import pydantic
from pydantic import ConfigDict, Field, field_validator, model_validator

from ..alarms import FLAG_SETS, AlarmKind


class RegisterKind(str, Enum):
    """Codec applied to a register's raw words."""

    INTEGER = "integer"
    VOLTAGE = "voltage"
    CURRENT = "current"
    CHARGE = "charge"
    TEMPERATURE = "temperature"
    PERCENT = "percent"
    TEXT = "text"
    FLAGS = "flags"
    CELL_ALARMS = "cell_alarms"


# Allowed word counts per kind; ``None`` means any length
_KIND_LENGTHS: dict[RegisterKind, set[int] | None] = {
    RegisterKind.INTEGER: {1, 2},
    RegisterKind.VOLTAGE: {1, 2},
    RegisterKind.CURRENT: {1, 2},
    RegisterKind.CHARGE: {1, 2},
    RegisterKind.TEMPERATURE: {1},
    RegisterKind.PERCENT: {1},
    RegisterKind.TEXT: None,
    RegisterKind.FLAGS: {1, 2},
    RegisterKind.CELL_ALARMS: {2},
}


def _normalise_access(access: Any) -> Any:
    if isinstance(access, str):
        key = access.strip().upper()
        if key in {"R", "R/-"}:
            return "R"
        if key in {"RW", "R/W"}:
            return "RW"
        if key in {"W", "-/W"}:
            return "W"
    return access


class IndexRange(pydantic.BaseModel):
    """Valid index range of a parameterised register (e.g. cell 1-16)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    min: int = Field(ge=1)
    max: int = Field(ge=1)

    @model_validator(mode="after")
    def _check_bounds(self) -> IndexRange:
        if self.min > self.max:
            raise ValueError("index min greater than max")
        return self

    @property
    def count(self) -> int:
        return self.max - self.min + 1


class RegisterDefinition(pydantic.BaseModel):
    """Schema describing a raw register definition from JSON."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    address: int = Field(ge=0, le=0xFFFF)
    length: int = Field(1, ge=1, le=125)
    access: Literal["R", "RW", "W"]
    kind: RegisterKind
    scale: float = Field(1, gt=0)
    signed: bool = False
    index: IndexRange | None = None
    min: float | None = None
    max: float | None = None
    flags: str | None = None
    alarm: AlarmKind | None = None
    description: str = Field(min_length=1)

    @field_validator("access", mode="before")
    @classmethod
    def _access(cls, v: Any) -> Any:
        return _normalise_access(v)

    @field_validator("name")
    @classmethod
    def _name_is_snake(cls, v: str) -> str:
        if not re.fullmatch(r"[a-z0-9_]+", v):
            raise ValueError("name must be snake_case")
        return v

    @model_validator(mode="after")
    def _check_consistency(self) -> RegisterDefinition:
        allowed = _KIND_LENGTHS[self.kind]
        if allowed is not None and self.length not in allowed:
            raise ValueError(f"length {self.length} not valid for {self.kind.value} register")

        if self.kind is RegisterKind.FLAGS:
            if self.flags not in FLAG_SETS:
                raise ValueError(f"unknown flag set: {self.flags}")
        elif self.flags is not None:
            raise ValueError("flags only allowed on flag registers")

        if self.kind is RegisterKind.CELL_ALARMS:
            if self.alarm is None:
                raise ValueError("cell alarm register requires alarm kind")
        elif self.alarm is not None:
            raise ValueError("alarm only allowed on cell alarm registers")

        if self.kind in {RegisterKind.TEXT, RegisterKind.FLAGS, RegisterKind.CELL_ALARMS}:
            if self.scale != 1 or self.signed:
                raise ValueError(f"{self.kind.value} registers cannot be scaled or signed")

        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("min greater than max")

        if self.end_address > 0x10000:
            raise ValueError("register block exceeds the 16-bit address space")
        return self

    @property
    def end_address(self) -> int:
        """Return the address one past the last word of the (indexed) block."""

        slots = self.index.count if self.index is not None else 1
        return self.address + slots * self.length


class RegisterList(pydantic.RootModel[list[RegisterDefinition]]):
    """Container model to validate the full register map."""

    root: list[RegisterDefinition]

    @model_validator(mode="after")
    def _unique(self) -> RegisterList:
        seen_names: set[str] = set()
        occupied: dict[int, str] = {}
        for reg in self.root:
            if reg.name in seen_names:
                raise ValueError(f"duplicate register name: {reg.name}")
            seen_names.add(reg.name)
            for addr in range(reg.address, reg.end_address):
                if addr in occupied:
                    raise ValueError(
                        f"address {addr} used by both {occupied[addr]} and {reg.name}"
                    )
                occupied[addr] = reg.name
        return self
