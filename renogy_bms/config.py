"""Transport configuration models."""

from __future__ import annotations

from typing import Literal

import pydantic
from pydantic import ConfigDict, Field

from .const import (
    BT2_NOTIFY_CHAR_UUID,
    BT2_WRITE_CHAR_UUID,
    DEFAULT_ADAPTER,
    DEFAULT_BAUD_RATE,
    DEFAULT_BT2_IDLE_TIMEOUT,
    DEFAULT_BT2_TIMEOUT,
    DEFAULT_BYTESIZE,
    DEFAULT_PARITY,
    DEFAULT_SCAN_TIMEOUT,
    DEFAULT_SERIAL_TIMEOUT,
    DEFAULT_STOPBITS,
)


class SerialConfig(pydantic.BaseModel):
    """Settings for an RS-485 serial link."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    port: str = Field(min_length=1)
    baudrate: int = Field(DEFAULT_BAUD_RATE, gt=0)
    bytesize: Literal[5, 6, 7, 8] = DEFAULT_BYTESIZE
    parity: Literal["N", "E", "O", "M", "S"] = DEFAULT_PARITY
    stopbits: Literal[1, 1.5, 2] = DEFAULT_STOPBITS
    timeout: float = Field(DEFAULT_SERIAL_TIMEOUT, gt=0)
    # Silence that ends a partial frame; None derives it from the baud rate
    frame_gap: float | None = Field(None, gt=0)


class Bt2Config(pydantic.BaseModel):
    """Settings for a BT-2 Bluetooth adapter link."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    adapter: str = DEFAULT_ADAPTER
    write_uuid: str = BT2_WRITE_CHAR_UUID
    notify_uuid: str = BT2_NOTIFY_CHAR_UUID
    timeout: float = Field(DEFAULT_BT2_TIMEOUT, gt=0)
    idle_timeout: float = Field(DEFAULT_BT2_IDLE_TIMEOUT, gt=0)
    # None derives the chunk size from the negotiated MTU
    chunk_size: int | None = Field(None, ge=1)
    write_with_response: bool = False
    scan_timeout: float = Field(DEFAULT_SCAN_TIMEOUT, gt=0)
