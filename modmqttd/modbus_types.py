"""Register types and modbus address ranges."""

from __future__ import annotations

import logging
from enum import Enum, IntEnum

log = logging.getLogger(__name__)


class RegisterType(IntEnum):
    """Modbus register table."""

    COIL = 1
    BIT = 2
    HOLDING = 3
    INPUT = 4


class PublishMode(Enum):
    """When polled register values are sent on."""

    ON_CHANGE = "on_change"
    EVERY_POLL = "every_poll"


class ModbusAddressRange:
    """A run of consecutive registers of one type."""

    def __init__(self, register: int, register_type: RegisterType, count: int = 1) -> None:
        self.register = register
        self.register_type = RegisterType(register_type)
        self.count = count

    def first_register(self) -> int:
        return self.register

    def last_register(self) -> int:
        return self.register + self.count - 1

    def overlaps(self, other: ModbusAddressRange) -> bool:
        """True if both ranges share a register of the same type."""
        if self.register_type != other.register_type:
            return False
        return (
            self.first_register() <= other.last_register()
            and other.first_register() <= self.last_register()
        )

    def merge(self, other: ModbusAddressRange) -> None:
        """Extend this range so that it also covers ``other``."""
        first = min(self.first_register(), other.first_register())
        last = max(self.last_register(), other.last_register())
        log.debug(
            "Extending register %d(%d) to %d(%d)",
            self.register, self.count, first, last - first + 1,
        )
        self.register = first
        self.count = last - first + 1

    def is_consecutive_of(self, other: ModbusAddressRange) -> bool:
        """True if one range starts right after the other ends."""
        return (
            self.last_register() + 1 == other.first_register()
            or other.last_register() + 1 == self.first_register()
        )

    def is_same_as(self, other: ModbusAddressRange) -> bool:
        if self.register_type != other.register_type:
            return False
        return self.register == other.register and self.count == other.count

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(register={self.register}, "
            f"register_type={self.register_type.name}, count={self.count})"
        )


class ModbusSlaveAddressRange(ModbusAddressRange):
    """An address range on a particular slave."""

    def __init__(
        self, slave_id: int, register: int, register_type: RegisterType, count: int = 1
    ) -> None:
        super().__init__(register, register_type, count)
        self.slave_id = slave_id

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(slave_id={self.slave_id}, register={self.register}, "
            f"register_type={self.register_type.name}, count={self.count})"
        )