"""Conversion of mqtt command payloads to register values."""

from __future__ import annotations

import json
import re
from typing import Any

_UINT16_MAX = 0xFFFF
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1

_INT_PREFIX = re.compile(r"\s*([+-]?)(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)")


class ConversionError(ValueError):
    """Raised when a value cannot be converted."""


def _parse_int(value: Any) -> int:
    """Read an int the way a C string-to-int with automatic base would."""
    if isinstance(value, (bool, int)):
        number = int(value)
    elif isinstance(value, float):
        number = int(value)
    else:
        match = _INT_PREFIX.match(str(value))
        if match is None:
            raise ConversionError("Failed to convert mqtt value to int16")
        sign, digits = match.groups()
        if digits[:2].lower() == "0x":
            number = int(digits[2:], 16)
        elif digits.startswith("0"):
            number = int(digits, 8)
        else:
            number = int(digits)
        if sign == "-":
            number = -number
    if not _INT32_MIN <= number <= _INT32_MAX:
        raise ConversionError("mqtt value is out of range")
    return number


def _to_uint16(value: int) -> int:
    if 0 <= value <= _UINT16_MAX:
        return value
    raise ConversionError(f"Conversion failed, register value {value} out of range")


def parse_as_json(json_data: str, register_count: int) -> list[int]:
    """Read a json array of exactly ``register_count`` register values."""
    try:
        doc = json.loads(json_data)
    except (TypeError, ValueError):
        doc = None
    if not isinstance(doc, list):
        raise ConversionError(
            "Only json array is supported when converting to multiple registers"
        )
    if len(doc) != register_count:
        raise ConversionError(
            f"Wrong json array size ({len(doc)}), need {register_count}"
        )
    registers = []
    for item in doc:
        if isinstance(item, bool) or not isinstance(item, int):
            raise ConversionError(f"Conversion failed, register value {item!r} is not an integer")
        registers.append(_to_uint16(item))
    return registers


class DefaultCommandConverter:
    """Used for commands that have no converter configured."""

    def to_modbus(self, value: Any, register_count: int) -> list[int]:
        """Convert an mqtt payload to ``register_count`` register values."""
        if register_count > 1:
            return parse_as_json(str(value), register_count)
        number = _parse_int(value)
        if not 0 <= number <= _UINT16_MAX:
            raise ConversionError(f"Conversion failed, value {number} out of range")
        return [number]