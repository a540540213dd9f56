"""Execution of queued poll and write commands on one modbus network."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from datetime import timedelta
from typing import Any

from .commands import (
    ModbusContext,
    ModbusReadError,
    ModbusWriteError,
    RegisterCommand,
    RegisterPoll,
    RegisterWrite,
)
from .debugtools import registers_to_str
from .modbus_messages import MsgRegisterReadFailed, MsgRegisterValues, MsgRegisterWriteFailed
from .modbus_types import PublishMode
from .request_queues import MAX_DURATION, ModbusRequestsQueues

log = logging.getLogger(__name__)

_TRACE = 5
_ZERO = timedelta(0)
_MS = timedelta(milliseconds=1)

WRITE_BATCH_SIZE = 10


class ModbusExecutor:
    """Sends commands from per-slave queues, honouring delays and retries.

    Messages for the mqtt side are put on ``from_modbus_queue``.
    """

    WRITE_BATCH_SIZE = WRITE_BATCH_SIZE

    def __init__(
        self,
        from_modbus_queue: Any,
        to_modbus_queue: Any = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._from_modbus_queue = from_modbus_queue
        self._to_modbus_queue = to_modbus_queue
        self._clock = clock
        self._modbus: ModbusContext | None = None

        self.slave_queues: dict[int, ModbusRequestsQueues] = {}
        self._current_slave: int | None = None

        # commands sent to one slave before switching to the next one
        self.commands_left = 0
        self._write_commands_queued = 0

        self._max_read_retry_count = 0
        self._max_write_retry_count = 0
        self._read_retry_count = 0
        self._write_retry_count = 0

        # some point far in the past
        self._last_command_time = clock() - 100_000 * 3600

        self.waiting_command: RegisterCommand | None = None
        self.last_command: RegisterCommand | None = None

        self._initial_poll = False
        self._initial_poll_start = self._last_command_time

    def init(self, modbus: ModbusContext) -> None:
        self._modbus = modbus

    def is_initial_poll_in_progress(self) -> bool:
        return self._initial_poll

    def setup_initial_poll(self, registers: Mapping[int, Sequence[RegisterPoll]]) -> None:
        self.add_poll_list(registers, True)
        log.debug("starting initial poll")

    def _send_message(self, item: Any) -> None:
        self._from_modbus_queue.put(item)

    def add_poll_list(
        self, registers: Mapping[int, Sequence[RegisterPoll]], initial_poll: bool = False
    ) -> None:
        """Queue registers to poll and, if idle, elect the first command to send."""
        setup_queues = self.all_done()

        if self._initial_poll and not self.poll_done():
            log.error(
                "Cannot add next registers before initial poll is finished. Fix control loop."
            )
            return

        if initial_poll:
            self._initial_poll = True
            self._initial_poll_start = self._clock()

        first_added: int | None = None
        for slave_id in sorted(registers):
            polls = registers[slave_id]
            self.slave_queues.setdefault(slave_id, ModbusRequestsQueues()).add_poll_list(polls)
            if polls and first_added is None:
                first_added = slave_id

        # already busy or nothing new to do
        if not setup_queues or first_added is None:
            return

        self._current_slave = first_added

        # find a register whose delay fits best in the silence that has passed
        silence = timedelta(seconds=self._clock() - self._last_command_time)
        log.log(_TRACE, "Starting election for silence period %dms", silence // _MS)

        self._reset_commands_counter()
        current_diff = MAX_DURATION

        for slave_id in sorted(self.slave_queues):
            if current_diff == _ZERO:
                break
            queue = self.slave_queues[slave_id]
            ignore_first_read = slave_id == self._current_slave
            reg_delay = queue.find_for_silence_period(silence, ignore_first_read)
            if reg_delay < current_diff:
                command = queue.pop_first_with_delay(silence, ignore_first_read)
                if self.waiting_command is not None:
                    self.slave_queues[self.waiting_command.slave_id].readd_command(
                        self.waiting_command
                    )
                self.waiting_command = command
                self._current_slave = slave_id
                current_diff = reg_delay
                log.log(
                    _TRACE,
                    "Electing next register to poll as %d.%d, delay=%dms",
                    slave_id, command.register, reg_delay // _MS,
                )

        if self.waiting_command is None:
            self.waiting_command = self.slave_queues[self._current_slave].pop_next()

        log.log(
            _TRACE,
            "Next register to poll set to %d.%d, commands_left=%d",
            self._current_slave, self.waiting_command.register, self.commands_left,
        )

    def add_write_command(self, command: RegisterWrite) -> None:
        """Queue a write; with no other writes pending it goes straight to the front."""
        if self._write_commands_queued == 0:
            if self.waiting_command is not None:
                self.slave_queues.setdefault(
                    self.waiting_command.slave_id, ModbusRequestsQueues()
                ).readd_command(self.waiting_command)
            self.slave_queues.setdefault(command.slave_id, ModbusRequestsQueues())
            self.waiting_command = command
            self._current_slave = command.slave_id
            self._reset_commands_counter()
        else:
            self.slave_queues.setdefault(
                command.slave_id, ModbusRequestsQueues()
            ).add_write_command(command)
            if self._current_slave is None:
                self._current_slave = command.slave_id
                self._reset_commands_counter()
        self._write_commands_queued += 1

    def _poll_registers(self, reg: RegisterPoll, force_send: bool) -> None:
        try:
            start = self._clock()
            new_values = list(self._modbus.read_modbus_registers(reg.slave_id, reg))
            reg.last_read_ok = True
            log.log(
                _TRACE, "Register %d.%d (0x%x.0x%x) polled in %dms",
                reg.slave_id, reg.register, reg.slave_id, reg.register,
                int((self._clock() - start) * 1000),
            )
            if reg.publish_mode is PublishMode.EVERY_POLL:
                force_send = True

            if reg.values != new_values or force_send or reg.read_errors != 0:
                self._send_message(
                    MsgRegisterValues(reg.slave_id, reg.register_type, reg.register, new_values)
                )
                reg.update(new_values)
                if reg.read_errors != 0:
                    log.debug(
                        "Register %d.%d read ok after %d error(s)",
                        reg.slave_id, reg.register, reg.read_errors,
                    )
                reg.read_errors = 0
                log.log(
                    _TRACE, "Register %d.%d values sent, data=%s",
                    reg.slave_id, reg.register, registers_to_str(reg.values),
                )
        except ModbusReadError as ex:
            self._handle_register_read_error(reg, str(ex))
        # set even after a failed read so that the scheduler does not retry at once
        now = self._clock()
        self._last_command_time = now
        reg.last_read = now

    def _handle_register_read_error(self, reg: RegisterPoll, message: str) -> None:
        reg.read_errors += 1
        reg.last_read_ok = False

        now = self._clock()
        since_first = timedelta(seconds=now - reg.first_error_time)
        if reg.read_errors == 1 or since_first > RegisterPoll.DURATION_BETWEEN_LOG_ERROR:
            log.error(
                "%d error(s) when reading register %d.%d, last error: %s",
                reg.read_errors, reg.slave_id, reg.register, message,
            )
            reg.first_error_time = now
            if reg.read_errors != 1:
                reg.read_errors = 0

        if reg.read_errors > RegisterPoll.DEFAULT_READ_ERROR_COUNT:
            self._send_message(
                MsgRegisterReadFailed(reg.slave_id, reg.register, reg.register_type, reg.count)
            )

    def _write_registers(self, command: RegisterWrite) -> None:
        try:
            start = self._clock()
            self._modbus.write_modbus_registers(command.slave_id, command)
            command.last_write_ok = True
            log.debug(
                "Register %d.%d (0x%x.0x%x) written in %dms",
                command.slave_id, command.register, command.slave_id, command.register,
                int((self._clock() - start) * 1000),
            )
            if command.return_message is not None:
                command.return_message.registers = list(command.values)
                self._send_message(command.return_message)
        except ModbusWriteError as ex:
            log.error(
                "error writing register %d.%d: %s", command.slave_id, command.register, ex
            )
            command.last_write_ok = False
            self._send_message(
                MsgRegisterWriteFailed(
                    command.slave_id, command.register, command.register_type, command.count
                )
            )
        self._last_command_time = self._clock()

    def _next_slave_after(self, current: int) -> int:
        keys = sorted(self.slave_queues)
        index = keys.index(current)
        for key in keys[index + 1:] + keys[:index]:
            if not self.slave_queues[key].empty():
                return key
        return current

    def execute_next(self) -> timedelta:
        """Send the next command if its delay has passed.

        Returns zero after sending, the time still to wait if the command
        needs a delay, or ``timedelta.max`` if there is nothing to do.
        """
        if self.waiting_command is None and self._current_slave is not None:
            queue = self.slave_queues[self._current_slave]
            if self.commands_left == 0 or queue.empty():
                next_slave = self._next_slave_after(self._current_slave)
                if next_slave != self._current_slave or not queue.empty():
                    self._current_slave = next_slave
                    self.waiting_command = self.slave_queues[next_slave].pop_next()
                    self._reset_commands_counter()
                else:
                    return MAX_DURATION
            else:
                self.waiting_command = queue.pop_next()

        if self.waiting_command is not None:
            command = self.waiting_command
            slave_change = (
                self.last_command is not None and command.slave_id != self.last_command.slave_id
            )
            delay = command.delay_before_command
            if command.has_delay_before_first_command() and slave_change:
                delay = command.delay_before_first_command

            if delay != _ZERO:
                passed = timedelta(seconds=self._clock() - self._last_command_time)
                left = delay - passed
                if left > _ZERO:
                    log.log(
                        _TRACE, "Command for %d.%d need to wait %dms",
                        command.slave_id, command.register, left // _MS,
                    )
                    return left
            self._send_command()

        if self._initial_poll and self.poll_done():
            if self._current_slave is None:
                log.info("Nothing to do for initial poll")
            else:
                log.info(
                    "Initial poll done in %dms",
                    int((self._clock() - self._initial_poll_start) * 1000),
                )
                self._initial_poll = False

        return _ZERO

    def _send_command(self) -> None:
        command = self.waiting_command
        retry = False
        if command is not self.last_command:
            self._max_read_retry_count = self._read_retry_count = command.max_read_retry_count
            self._max_write_retry_count = self._write_retry_count = command.max_write_retry_count

        if isinstance(command, RegisterPoll):
            self._poll_registers(command, self._initial_poll)
            if not command.last_read_ok:
                if self._read_retry_count != 0:
                    retry = True
                    self._read_retry_count -= 1
            else:
                self._read_retry_count = self._max_read_retry_count
        else:
            self._write_registers(command)
            if not command.last_write_ok:
                if self._write_retry_count != 0:
                    retry = True
                    self._write_retry_count -= 1
            else:
                self._write_retry_count = self._max_write_retry_count
                self._write_commands_queued -= 1

        self.last_command = command

        # a retried command stays waiting for the next call
        if not retry:
            self.waiting_command = None
            if self.commands_left > 0:
                self.commands_left -= 1

    def all_done(self) -> bool:
        if self.waiting_command is not None:
            return False
        return all(queue.empty() for queue in self.slave_queues.values())

    def poll_done(self) -> bool:
        if isinstance(self.waiting_command, RegisterPoll):
            return False
        return all(not queue.poll_queue for queue in self.slave_queues.values())

    def _reset_commands_counter(self) -> None:
        queue = self.slave_queues.get(self._current_slave)
        if queue is None or not queue.poll_queue:
            self.commands_left = WRITE_BATCH_SIZE
        else:
            self.commands_left = len(queue.poll_queue) * 2