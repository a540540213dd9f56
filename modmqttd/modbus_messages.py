"""Messages exchanged between the mqtt side and modbus threads."""

from __future__ import annotations

import copy
import logging
import time
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import timedelta

from .modbus_types import ModbusSlaveAddressRange, PublishMode, RegisterType

log = logging.getLogger(__name__)


class MsgRegisterValues(ModbusSlaveAddressRange):
    """Register values read from, or to be written to, a slave."""

    def __init__(
        self,
        slave_id: int,
        register_type: RegisterType,
        register: int,
        registers: Sequence[int],
        command_id: int = 0,
    ) -> None:
        super().__init__(slave_id, register, register_type, len(registers))
        self.registers = list(registers)
        self.creation_time = time.monotonic()
        self.command_id = command_id

    def has_command_id(self) -> bool:
        return self.command_id != 0


class MsgRegisterReadFailed(ModbusSlaveAddressRange):
    """A register range could not be read."""


class MsgRegisterWriteFailed(ModbusSlaveAddressRange):
    """A register range could not be written."""


class MsgRegisterPoll(ModbusSlaveAddressRange):
    """A register range to poll; ``refresh`` is None until one is set."""

    INVALID_REFRESH = None

    def __init__(
        self, slave_id: int, register: int, register_type: RegisterType, count: int = 1
    ) -> None:
        super().__init__(slave_id, register, register_type, count)
        if register < 0:
            raise ValueError("Invalid register number")
        if count <= 0:
            raise ValueError("Count cannot be 0 or negative")
        self.refresh: timedelta | None = self.INVALID_REFRESH
        self.publish_mode = PublishMode.ON_CHANGE

    def merge(self, other: MsgRegisterPoll) -> None:
        """Extend the range and keep the shorter poll period."""
        super().merge(other)
        if self.refresh is None:
            self.refresh = other.refresh
        elif other.refresh is not None and self.refresh > other.refresh:
            self.refresh = other.refresh
            log.debug(
                "Setting refresh %dms on existing register %d",
                self.refresh // timedelta(milliseconds=1), self.register,
            )

    def is_same_as(self, other: MsgRegisterPoll) -> bool:
        if not super().is_same_as(other):
            return False
        return self.slave_id == other.slave_id


class MsgRegisterPollSpecification:
    """All register ranges polled on one modbus network."""

    def __init__(self, network_name: str) -> None:
        self.network_name = network_name
        self.registers: list[MsgRegisterPoll] = []

    def group(self) -> None:
        """Join consecutive ranges of the same slave and type; overlaps are left alone."""
        by_slave: dict[int, dict[RegisterType, list[MsgRegisterPoll]]] = defaultdict(
            lambda: defaultdict(list)
        )
        for reg in self.registers:
            by_slave[reg.slave_id][reg.register_type].append(reg)

        result: list[MsgRegisterPoll] = []
        for slave_id in sorted(by_slave):
            types = by_slave[slave_id]
            for register_type in sorted(types):
                regs = sorted(types[register_type], key=lambda r: r.register)
                grouped = [copy.copy(regs[0])]
                for reg in regs[1:]:
                    if grouped[-1].is_consecutive_of(reg):
                        grouped[-1].merge(reg)
                    else:
                        grouped.append(copy.copy(reg))
                result.extend(grouped)
        self.registers = result

    def merge(self, poll: MsgRegisterPoll) -> None:
        """Join ``poll`` with every range it overlaps, or add it as a new range."""
        overlapped = [
            r for r in self.registers if r.slave_id == poll.slave_id and poll.overlaps(r)
        ]
        self.registers = [r for r in self.registers if not any(r is o for o in overlapped)]

        added = copy.copy(poll)
        self.registers.append(added)
        if not overlapped:
            log.debug(
                "Adding new register %d.%d (%d) type=%d refresh=%s on network %s",
                poll.slave_id, poll.register, poll.count, poll.register_type,
                poll.refresh, self.network_name,
            )
        for reg in overlapped:
            added.merge(reg)

    def merge_all(self, polls: Iterable[MsgRegisterPoll]) -> None:
        for poll in polls:
            self.merge(poll)


@dataclass
class MsgModbusNetworkState:
    network_name: str
    is_up: bool


@dataclass
class MsgMqttNetworkState:
    is_up: bool


@dataclass
class EndWorkMessage:
    """Tells a modbus thread to finish."""