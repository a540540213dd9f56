"""Modbus network and mqtt broker configuration."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any

log = logging.getLogger(__name__)

MAX_RESPONSE_TIMEOUT = timedelta(milliseconds=999)

_DURATION_RE = re.compile(r"\s*(-?\d+)\s*(ms|s|min|h)?\s*")
_UNIT_MS = {"ms": 1, "s": 1000, "min": 60_000, "h": 3_600_000}


class ConfigurationError(Exception):
    """Raised for an invalid configuration value or section."""

    def __init__(self, message: str, line: int | None = None) -> None:
        self.message = message
        self.line_number = line or 0
        if line is None:
            text = f"config error: {message}"
        else:
            text = f"config error(line {line}): {message}"
        super().__init__(text)


def _is_scalar(value: Any) -> bool:
    return value is not None and not isinstance(value, (Mapping, list, tuple))


def _scalar_to_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def parse_duration(value: Any) -> timedelta:
    """Turn ``500``, ``"500ms"``, ``"1s"``, ``"2min"`` or ``"1h"`` into a timedelta.

    A bare number is taken as milliseconds.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return timedelta(milliseconds=value)
    if isinstance(value, str):
        match = _DURATION_RE.fullmatch(value)
        if match is not None:
            number, unit = match.groups()
            return timedelta(milliseconds=int(number) * _UNIT_MS[unit or "ms"])
    raise ConfigurationError(f"Invalid duration '{value}'")


def read_required_value(parent: Any, name: str) -> Any:
    """Return the scalar stored under ``name``; raise if it is missing or not a scalar."""
    if not isinstance(parent, Mapping) or name not in parent:
        raise ConfigurationError(f"Missing required property '{name}'")
    value = parent[name]
    if not _is_scalar(value):
        raise ConfigurationError("string expected, list/null found")
    return value


def read_required_string(parent: Any, name: str) -> str:
    """Return a required, non-empty string value."""
    text = _scalar_to_str(read_required_value(parent, name))
    if not text:
        raise ConfigurationError(f"{name} is an empty string")
    return text


def read_optional_value(parent: Any, name: str) -> Any:
    """Return the scalar under ``name``, or None if it is not there."""
    if not isinstance(parent, Mapping) or name not in parent:
        return None
    value = parent[name]
    if not _is_scalar(value):
        raise ConfigurationError(f"{name} must have a single value. List/null found")
    return value


def _as_int(value: Any, name: str, minimum: int | None = None, maximum: int | None = None) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name}: '{_scalar_to_str(value)}' is not an integer")
    if isinstance(value, int):
        result = value
    else:
        try:
            result = int(str(value).strip())
        except ValueError:
            raise ConfigurationError(f"{name}: '{value}' is not an integer") from None
    if (minimum is not None and result < minimum) or (maximum is not None and result > maximum):
        raise ConfigurationError(f"{name}: value {result} is out of range")
    return result


class NetworkType(Enum):
    RTU = "rtu"
    TCPIP = "tcpip"


class RtuRtsMode(Enum):
    NONE = "none"
    UP = "up"
    DOWN = "down"


class RtuSerialMode(Enum):
    UNSPECIFIED = "unspecified"
    RS232 = "rs232"
    RS485 = "rs485"


def _as_enum(enum_cls: type[Enum], value: Any, name: str) -> Any:
    try:
        return enum_cls(_scalar_to_str(value).lower())
    except ValueError:
        raise ConfigurationError(f"Invalid {name} value '{value}'") from None


@dataclass
class ModbusWatchdogConfig:
    watch_period: timedelta = timedelta(seconds=10)
    device_path: str = ""


@dataclass
class ModbusNetworkConfig:
    """Settings of one modbus network, RTU or TCP/IP."""

    name: str = ""
    type: NetworkType = NetworkType.TCPIP
    response_timeout: timedelta = timedelta(milliseconds=500)
    response_data_timeout: timedelta = timedelta(0)
    delay_before_command: timedelta | None = None
    delay_before_first_command: timedelta | None = None
    max_write_retry_count: int = 2
    max_read_retry_count: int = 1

    # RTU only
    device: str = ""
    baud: int = 0
    parity: str = ""
    data_bit: int = 0
    stop_bit: int = 0
    rtu_serial_mode: RtuSerialMode = RtuSerialMode.UNSPECIFIED
    rts_mode: RtuRtsMode = RtuRtsMode.NONE
    rts_delay_us: int = 0

    # TCP only
    address: str = ""
    port: int = 0

    watchdog_config: ModbusWatchdogConfig = field(default_factory=ModbusWatchdogConfig)

    @classmethod
    def from_config(cls, source: Mapping[str, Any]) -> ModbusNetworkConfig:
        """Build a network configuration from a parsed yaml mapping."""
        config = cls(name=read_required_string(source, "name"))

        for key in ("response_timeout", "response_data_timeout"):
            value = read_optional_value(source, key)
            if value is None:
                continue
            timeout = parse_duration(value)
            if timeout < timedelta(0) or timeout > MAX_RESPONSE_TIMEOUT:
                raise ConfigurationError(f"{key} value must be in range 0-999ms")
            setattr(config, key, timeout)

        value = read_optional_value(source, "min_delay_before_poll")
        if value is not None:
            log.warning(
                "'min_delay_before_poll' is deprecated and will be removed in future "
                "releases. Rename it to 'delay_before_command'"
            )
            config.delay_before_command = parse_duration(value)

        value = read_optional_value(source, "delay_before_command")
        if value is not None:
            config.delay_before_command = parse_duration(value)

        value = read_optional_value(source, "delay_before_first_command")
        if value is not None:
            config.delay_before_first_command = parse_duration(value)

        value = read_optional_value(source, "write_retries")
        if value is not None:
            config.max_write_retry_count = _as_int(value, "write_retries", 0, 0xFFFF)
        value = read_optional_value(source, "read_retries")
        if value is not None:
            config.max_read_retry_count = _as_int(value, "read_retries", 0, 0xFFFF)

        if "device" in source:
            config.type = NetworkType.RTU
            config.device = read_required_string(source, "device")
            config.baud = _as_int(read_required_value(source, "baud"), "baud")
            parity = _scalar_to_str(read_required_value(source, "parity"))
            if len(parity) != 1:
                raise ConfigurationError(f"parity must be a single character, got '{parity}'")
            config.parity = parity
            config.data_bit = _as_int(read_required_value(source, "data_bit"), "data_bit")
            config.stop_bit = _as_int(read_required_value(source, "stop_bit"), "stop_bit")

            value = read_optional_value(source, "rtu_serial_mode")
            if value is not None:
                config.rtu_serial_mode = _as_enum(RtuSerialMode, value, "rtu_serial_mode")
            value = read_optional_value(source, "rtu_rts_mode")
            if value is not None:
                config.rts_mode = _as_enum(RtuRtsMode, value, "rtu_rts_mode")
            value = read_optional_value(source, "rtu_rts_delay_us")
            if value is not None:
                config.rts_delay_us = _as_int(value, "rtu_rts_delay_us")

            config.watchdog_config.device_path = config.device
        elif "address" in source:
            config.type = NetworkType.TCPIP
            config.address = read_required_string(source, "address")
            config.port = _as_int(read_required_value(source, "port"), "port")
        else:
            raise ConfigurationError(
                "Cannot determine modbus network type: missing 'device' or 'address'"
            )

        watchdog = source.get("watchdog")
        value = read_optional_value(watchdog, "watch_period")
        if value is not None:
            config.watchdog_config.watch_period = parse_duration(value)

        return config


@dataclass
class MqttBrokerConfig:
    """Connection settings of the mqtt broker."""

    host: str = ""
    port: int = 1883
    keepalive: int = 60
    username: str = ""
    password: str = ""
    client_id: str = ""
    tls: bool = False
    cafile: str = ""

    @classmethod
    def from_config(cls, source: Mapping[str, Any]) -> MqttBrokerConfig:
        """Build a broker configuration from a parsed yaml mapping."""
        config = cls(host=read_required_string(source, "host"))

        if "tls" in source:
            config.tls = True
            config.port = 8883
            cafile = read_optional_value(source["tls"], "cafile")
            if cafile is not None:
                config.cafile = _scalar_to_str(cafile)
                if not os.path.exists(config.cafile) or os.path.isdir(config.cafile):
                    raise ConfigurationError(
                        f"CA file '{config.cafile}' is not a readable file"
                    )

        value = read_optional_value(source, "port")
        if value is not None:
            config.port = _as_int(value, "port")
        value = read_optional_value(source, "keepalive")
        if value is not None:
            config.keepalive = _as_int(value, "keepalive")
        value = read_optional_value(source, "username")
        if value is not None:
            config.username = _scalar_to_str(value)
        value = read_optional_value(source, "password")
        if value is not None:
            config.password = _scalar_to_str(value)
        return config

    def is_same_as(self, other: MqttBrokerConfig) -> bool:
        """Compare connection settings, ignoring the client id."""
        return (
            self.host == other.host
            and self.port == other.port
            and self.keepalive == other.keepalive
            and self.username == other.username
            and self.password == other.password
            and self.tls == other.tls
            and self.cafile == other.cafile
        )