"""Per-slave modbus settings."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from .config import ConfigurationError, parse_duration, read_optional_value

log = logging.getLogger(__name__)

_DEPRECATED = {
    "delay_before_poll": "delay_before_command",
    "delay_before_first_poll": "delay_before_first_command",
}


def _read_retries(data: Any, name: str) -> int | None:
    value = read_optional_value(data, name)
    if value is None:
        return None
    try:
        if isinstance(value, bool):
            raise ValueError
        count = value if isinstance(value, int) else int(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"{name}: '{value}' is not an integer") from None
    if not 0 <= count <= 0xFFFF:
        raise ConfigurationError(f"{name}: value {count} is out of range")
    return count


def _read_delay(data: Any, deprecated: str) -> timedelta | None:
    current = _DEPRECATED[deprecated]
    delay = None
    value = read_optional_value(data, deprecated)
    if value is not None:
        log.warning(
            "'%s' is deprecated and will be removed in future releases. Rename it to '%s'",
            deprecated, current,
        )
        delay = parse_duration(value)
    value = read_optional_value(data, current)
    if value is not None:
        delay = parse_duration(value)
    return delay


@dataclass
class ModbusSlaveConfig:
    """Settings that apply to every command sent to one slave."""

    address: int
    slave_name: str = ""
    delay_before_command: timedelta | None = None
    delay_before_first_command: timedelta | None = None
    max_write_retry_count: int = 0
    max_read_retry_count: int = 0

    @classmethod
    def from_config(cls, address: int, data: Mapping[str, Any] | None) -> ModbusSlaveConfig:
        """Build slave settings from a parsed yaml mapping."""
        config = cls(address=address)
        name = read_optional_value(data, "name")
        if name is not None:
            config.slave_name = str(name)
        config.delay_before_command = _read_delay(data, "delay_before_poll")
        config.delay_before_first_command = _read_delay(data, "delay_before_first_poll")

        retries = _read_retries(data, "write_retries")
        if retries is not None:
            config.max_write_retry_count = retries
        retries = _read_retries(data, "read_retries")
        if retries is not None:
            config.max_read_retry_count = retries
        return config