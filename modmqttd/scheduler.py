"""Choosing which registers are due for polling."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import timedelta

from .commands import RegisterPoll
from .modbus_types import ModbusAddressRange

log = logging.getLogger(__name__)

_TRACE = 5
MAX_DURATION = timedelta.max


class ModbusScheduler:
    """Keeps the poll list of one network and tells which registers are due."""

    def __init__(self) -> None:
        self.poll_specification: dict[int, list[RegisterPoll]] = {}

    def set_poll_specification(self, registers: Mapping[int, Sequence[RegisterPoll]]) -> None:
        self.poll_specification = {slave: list(polls) for slave, polls in registers.items()}

    def get_registers_to_poll(
        self, time_point: float
    ) -> tuple[dict[int, list[RegisterPoll]], timedelta]:
        """Return the registers due at ``time_point`` and the wait until the next poll.

        ``time_point`` is a monotonic clock reading in seconds. The wait is
        ``timedelta.max`` when there is nothing to poll at all.
        """
        due: dict[int, list[RegisterPoll]] = {}
        wait = MAX_DURATION
        for slave_id in sorted(self.poll_specification):
            for reg in self.poll_specification[slave_id]:
                time_passed = timedelta(seconds=time_point - reg.last_read)
                time_to_poll = reg.refresh
                if time_passed >= reg.refresh:
                    log.log(
                        _TRACE,
                        "Register %d.%d (0x%x.0x%x) added, last read %dms ago",
                        slave_id, reg.register, slave_id, reg.register,
                        time_passed // timedelta(milliseconds=1),
                    )
                    due.setdefault(slave_id, []).append(reg)
                else:
                    time_to_poll = reg.refresh - time_passed

                if wait > time_to_poll:
                    wait = time_to_poll
                    log.log(
                        _TRACE,
                        "Wait duration set to %dms as next poll for register %d.%d",
                        time_to_poll // timedelta(milliseconds=1), slave_id, reg.register,
                    )
        return due, wait

    def find_register_poll(self, values: ModbusAddressRange) -> RegisterPoll | None:
        """Return the first polled range of the same slave overlapping ``values``."""
        slave_id = getattr(values, "slave_id", None)
        for reg in self.poll_specification.get(slave_id, ()):
            if reg.overlaps(values):
                return reg
        return None