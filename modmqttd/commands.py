"""Register commands executed on a modbus network and the context interface."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import timedelta

from .config import ModbusNetworkConfig, NetworkType
from .modbus_messages import MsgRegisterValues
from .modbus_types import ModbusSlaveAddressRange, PublishMode, RegisterType

_ZERO = timedelta(0)


class ModbusContextError(Exception):
    """Raised when the modbus library reports a failure."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"libmodbus: {message}")


class ModbusReadError(ModbusContextError):
    """Raised when reading registers fails."""


class ModbusWriteError(ModbusContextError):
    """Raised when writing registers fails."""


class ModbusContext(ABC):
    """Connection to one modbus network."""

    @abstractmethod
    def init(self, config: ModbusNetworkConfig) -> None:
        """Prepare the connection from the network configuration."""

    @abstractmethod
    def connect(self) -> None:
        """Open the connection; failures leave the context disconnected."""

    @abstractmethod
    def is_connected(self) -> bool:
        """True while the connection is open."""

    @abstractmethod
    def disconnect(self) -> None:
        """Close the connection."""

    @abstractmethod
    def read_modbus_registers(self, slave_id: int, poll: RegisterPoll) -> list[int]:
        """Read the registers described by ``poll``; raise ModbusReadError on failure."""

    @abstractmethod
    def write_modbus_registers(self, slave_id: int, command: RegisterWrite) -> None:
        """Write the values of ``command``; raise ModbusWriteError on failure."""

    @abstractmethod
    def network_type(self) -> NetworkType:
        """The kind of network this context talks to."""


class RegisterCommand(ModbusSlaveAddressRange, ABC):
    """A read or write request for a register range on one slave."""

    def __init__(
        self, slave_id: int, register: int, register_type: RegisterType, count: int = 1
    ) -> None:
        super().__init__(slave_id, register, register_type, count)
        self._delay_before_command: timedelta | None = None
        self._delay_before_first_command: timedelta | None = None
        self.max_read_retry_count = 0
        self.max_write_retry_count = 0

    @property
    def delay_before_command(self) -> timedelta:
        """Silence needed before every command; zero if unset."""
        return self._delay_before_command or _ZERO

    @property
    def delay_before_first_command(self) -> timedelta:
        """Silence needed when the previous command went to another slave; zero if unset."""
        return self._delay_before_first_command or _ZERO

    def set_delay_before_command(self, delay: timedelta) -> None:
        self._delay_before_command = delay

    def set_delay_before_first_command(self, delay: timedelta) -> None:
        self._delay_before_first_command = delay

    def has_delay_before_first_command(self) -> bool:
        return self._delay_before_first_command is not None

    def set_max_retry_counts(self, read_count: int, write_count: int, force: bool = False) -> None:
        """Set retry limits; unless forced, zero values keep the current limit."""
        if force or read_count:
            self.max_read_retry_count = read_count
        if force or write_count:
            self.max_write_retry_count = write_count

    @abstractmethod
    def executed_ok(self) -> bool:
        """True if the last execution of this command succeeded."""


class RegisterPoll(RegisterCommand):
    """A register range read periodically."""

    DEFAULT_READ_ERROR_COUNT = 3
    DURATION_BETWEEN_LOG_ERROR = timedelta(minutes=5)

    def __init__(
        self,
        slave_id: int,
        register: int,
        register_type: RegisterType,
        count: int,
        refresh: timedelta,
        publish_mode: PublishMode = PublishMode.ON_CHANGE,
    ) -> None:
        super().__init__(slave_id, register, register_type, count)
        self.refresh = refresh
        self.publish_mode = publish_mode
        self.values: list[int] = []
        now = time.monotonic()
        # a point far in the past so that the first poll is due at once
        self.last_read = now - 100_000 * 3600
        self.last_read_ok = True
        self.read_errors = 0
        self.first_error_time = now

    def update(self, values: Sequence[int]) -> None:
        """Store the values read last."""
        self.values = list(values)

    def executed_ok(self) -> bool:
        return self.last_read_ok


class RegisterWrite(RegisterCommand):
    """Values to be written to a register range."""

    def __init__(
        self,
        slave_id: int,
        register: int,
        register_type: RegisterType,
        values: Sequence[int],
    ) -> None:
        super().__init__(slave_id, register, register_type, len(values))
        self.values = list(values)
        self.creation_time = time.monotonic()
        self.last_write_ok = True
        self.return_message: MsgRegisterValues | None = None

    @classmethod
    def from_message(cls, message: MsgRegisterValues) -> RegisterWrite:
        """Build a write request from a register values message."""
        command = cls(message.slave_id, message.register, message.register_type, message.registers)
        command.creation_time = message.creation_time
        return command

    def executed_ok(self) -> bool:
        return self.last_write_ok