"""Register map of the Renogy BMS."""

from __future__ import annotations

from .loader import (
    Register,
    RegisterDef,
    RegisterName,
    all_registers,
    get_register,
    get_register_definition,
    load_registers,
    register_at,
)
from .schema import RegisterKind

__all__ = [
    "Register",
    "RegisterDef",
    "RegisterKind",
    "RegisterName",
    "all_registers",
    "get_register",
    "get_register_definition",
    "load_registers",
    "register_at",
]
