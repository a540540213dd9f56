"""Worker thread serving one modbus network, and its handle in the main thread."""

from __future__ import annotations

import logging
import math
import queue
import threading
import time
from collections.abc import Callable, Sequence
from datetime import timedelta
from typing import Any

from .commands import ModbusContext, RegisterCommand, RegisterPoll, RegisterWrite
from .config import ModbusNetworkConfig
from .executor import ModbusExecutor
from .modbus_messages import (
    EndWorkMessage,
    MsgModbusNetworkState,
    MsgMqttNetworkState,
    MsgRegisterPollSpecification,
    MsgRegisterValues,
)
from .modbus_slave import ModbusSlaveConfig
from .modbus_types import PublishMode, RegisterType
from .scheduler import ModbusScheduler
from .watchdog import ModbusWatchdog

log = logging.getLogger(__name__)

_TRACE = 5
_ZERO = timedelta(0)
_MS = timedelta(milliseconds=1)
MAX_DURATION = timedelta.max
MAX_RECONNECT_TIME = timedelta(seconds=60)
RECONNECT_STEP = timedelta(seconds=5)

ContextFactory = Callable[[str], ModbusContext]


def construct_idle_wait_message(idle_wait: timedelta) -> str:
    """Describe how long the worker is going to wait for messages."""
    if idle_wait == _ZERO:
        return "Checking for incoming message"
    text = "Waiting for messages"
    if idle_wait != MAX_DURATION:
        text += f" for  {idle_wait // _MS}ms"
    return text


def _set_command_delays(
    command: RegisterCommand,
    every_time: timedelta | None,
    on_change: timedelta | None,
) -> None:
    if every_time is not None:
        command.set_delay_before_command(every_time)
    if on_change is not None:
        command.set_delay_before_first_command(on_change)


def _queue_timeout(idle_wait: timedelta) -> float | None:
    if idle_wait == MAX_DURATION:
        return None
    return max(idle_wait.total_seconds(), 0.0)


def _poll_refresh(poll: Any) -> timedelta | None:
    refresh = getattr(poll, "refresh_msec", None)
    if refresh is None or refresh < _ZERO:
        return None
    return refresh


class ModbusThread:
    """Runs the poll/write loop of one modbus network.

    Messages arrive on ``to_modbus_queue``; results are put on
    ``from_modbus_queue`` and ``notify`` is called after each one.
    """

    def __init__(
        self,
        to_modbus_queue: queue.Queue,
        from_modbus_queue: queue.Queue,
        context_factory: ContextFactory,
        notify: Callable[[], None] | None = None,
    ) -> None:
        self._to_modbus_queue = to_modbus_queue
        self._from_modbus_queue = from_modbus_queue
        self._context_factory = context_factory
        self._notify = notify

        self.network_name = ""
        self._delay_before_command: timedelta | None = None
        self._delay_before_first_command: timedelta | None = None
        self._max_read_retry_count = 0
        self._max_write_retry_count = 0

        self.slaves: dict[int, ModbusSlaveConfig] = {}

        self._should_run = True
        self._mqtt_connected = False

        self.modbus: ModbusContext | None = None
        self.scheduler = ModbusScheduler()
        self.executor = ModbusExecutor(from_modbus_queue, to_modbus_queue)
        self.watchdog = ModbusWatchdog()

    def _send_message(self, item: Any) -> None:
        self._from_modbus_queue.put(item)
        if self._notify is not None:
            self._notify()

    def _configure(self, config: ModbusNetworkConfig) -> None:
        self.network_name = config.name
        self.modbus = self._context_factory(config.name)
        self.modbus.init(config)
        self.executor.init(self.modbus)
        self.watchdog.init(config.watchdog_config)

        if config.delay_before_command is not None:
            self._delay_before_command = config.delay_before_command
        if config.delay_before_first_command is not None:
            self._delay_before_first_command = config.delay_before_first_command

        if self._delay_before_command is not None:
            log.info(
                "Network default delay before every command set to %dms",
                self._delay_before_command // _MS,
            )
        if self._delay_before_first_command is not None:
            log.info(
                "Network default delay when slave changes set to %dms",
                self._delay_before_first_command // _MS,
            )

        self._max_read_retry_count = config.max_read_retry_count
        self._max_write_retry_count = config.max_write_retry_count

    def _apply_settings(self, command: RegisterCommand) -> None:
        _set_command_delays(command, self._delay_before_command, self._delay_before_first_command)
        command.set_max_retry_counts(
            self._max_read_retry_count, self._max_write_retry_count, True
        )
        slave = self.slaves.get(command.slave_id)
        if slave is not None:
            _set_command_delays(
                command, slave.delay_before_command, slave.delay_before_first_command
            )
            command.set_max_retry_counts(
                slave.max_read_retry_count, slave.max_write_retry_count
            )

    def _set_poll_specification(self, spec: MsgRegisterPollSpecification) -> None:
        register_map: dict[int, list[RegisterPoll]] = {}
        for poll in spec.registers:
            refresh = _poll_refresh(poll)
            # poll groups not merged with any mqtt register are not polled
            if refresh is None:
                continue
            reg = RegisterPoll(
                poll.slave_id,
                poll.register,
                poll.register_type,
                poll.count,
                refresh,
                getattr(poll, "publish_mode", PublishMode.ON_CHANGE),
            )
            self._apply_settings(reg)
            register_map.setdefault(reg.slave_id, []).append(reg)

        self.scheduler.set_poll_specification(register_map)
        log.debug(
            "Poll specification set, got %d slaves, %d registers to poll",
            len(register_map), len(spec.registers),
        )
        for slave_id, polls in sorted(register_map.items()):
            for reg in polls:
                log.debug(
                    "%s, slave %d, register %d:%d, count=%d, poll every %dms, queue %s, "
                    "min f_delay %dms, min delay %dms",
                    self.network_name, slave_id, reg.register, int(reg.register_type),
                    reg.count, reg.refresh // _MS,
                    "on change" if reg.publish_mode is PublishMode.ON_CHANGE else "always",
                    reg.delay_before_first_command // _MS, reg.delay_before_command // _MS,
                )
        self.executor.setup_initial_poll(register_map)

    def _process_write(self, message: MsgRegisterValues) -> None:
        command = RegisterWrite.from_message(message)
        command.return_message = message
        self._apply_settings(command)
        self.executor.add_write_command(command)

    def _update_from_slave_config(self, config: ModbusSlaveConfig) -> None:
        self.slaves[config.address] = config
        for reg in self.scheduler.poll_specification.get(config.address, ()):
            _set_command_delays(
                reg, config.delay_before_command, config.delay_before_first_command
            )
            reg.set_max_retry_counts(config.max_read_retry_count, config.max_write_retry_count)

    def _dispatch(self, item: Any) -> None:
        if isinstance(item, ModbusNetworkConfig):
            self._configure(item)
        elif isinstance(item, MsgRegisterPollSpecification):
            self._set_poll_specification(item)
        elif isinstance(item, EndWorkMessage):
            log.debug("Got exit command")
            self._should_run = False
        elif isinstance(item, MsgRegisterValues):
            self._process_write(item)
        elif isinstance(item, MsgMqttNetworkState):
            self._mqtt_connected = item.is_up
        elif isinstance(item, ModbusSlaveConfig):
            self._update_from_slave_config(item)
        else:
            log.error("Unknown message received, ignoring")

    def _dispatch_messages(self, first: Any) -> None:
        self._dispatch(first)
        while True:
            try:
                item = self._to_modbus_queue.get_nowait()
            except queue.Empty:
                return
            self._dispatch(item)

    def run(self) -> None:
        """Serve the network until an EndWorkMessage arrives."""
        try:
            log.debug("Modbus thread started")
            idle_wait = MAX_DURATION
            next_poll = time.monotonic()

            while self._should_run:
                modbus = self.modbus
                if modbus is not None:
                    if not modbus.is_connected():
                        if idle_wait > MAX_RECONNECT_TIME:
                            idle_wait = _ZERO
                        log.info("modbus: connecting")
                        modbus.connect()
                        if modbus.is_connected():
                            log.info("modbus: connected")
                            self.watchdog.reset()
                            self._send_message(MsgModbusNetworkState(self.network_name, True))
                            # after a reconnect everything has to be refreshed
                            if not self.executor.is_initial_poll_in_progress():
                                self.executor.setup_initial_poll(
                                    self.scheduler.poll_specification
                                )

                    if modbus.is_connected():
                        # poll only when the broker is reachable, so that
                        # register updates do not pile up
                        if self._mqtt_connected:
                            now = time.monotonic()
                            if not self.executor.is_initial_poll_in_progress() and next_poll < now:
                                due, wait = self.scheduler.get_registers_to_poll(now)
                                if wait == MAX_DURATION:
                                    next_poll = math.inf
                                else:
                                    next_poll = now + wait.total_seconds()
                                self.executor.add_poll_list(due)
                                log.log(
                                    _TRACE, "Scheduling %d registers to execute", len(due)
                                )

                            if self.executor.all_done():
                                if math.isinf(next_poll):
                                    idle_wait = MAX_DURATION
                                else:
                                    idle_wait = timedelta(seconds=next_poll - now)
                            else:
                                idle_wait = self.executor.execute_next()
                                last = self.executor.last_command
                                if idle_wait == _ZERO and last is not None:
                                    self.watchdog.inspect_command(last)
                        else:
                            log.info("Waiting for mqtt network to become online")
                            idle_wait = MAX_DURATION
                    else:
                        self._send_message(MsgModbusNetworkState(self.network_name, False))
                        if idle_wait < MAX_RECONNECT_TIME:
                            idle_wait += RECONNECT_STEP
                else:
                    # waiting for the network configuration
                    idle_wait = MAX_DURATION

                if not self._should_run:
                    break

                if (
                    self.modbus is not None
                    and self.modbus.is_connected()
                    and self.watchdog.is_reconnect_required()
                ):
                    if self.watchdog.device_removed:
                        log.error(
                            "Device %s was removed, forcing reconnect", self.watchdog.device_path
                        )
                    else:
                        log.error(
                            "Cannot execute any command in last %ds, reconnecting",
                            int(self.watchdog.current_error_period().total_seconds()),
                        )
                    self.watchdog.reset()
                    self.modbus.disconnect()
                    self._send_message(MsgModbusNetworkState(self.network_name, False))
                else:
                    log.log(_TRACE, construct_idle_wait_message(idle_wait))
                    try:
                        item = self._to_modbus_queue.get(timeout=_queue_timeout(idle_wait))
                    except queue.Empty:
                        continue
                    self._dispatch_messages(item)

            if self.modbus is not None and self.modbus.is_connected():
                self.modbus.disconnect()
            log.debug("Modbus thread %s ended", self.network_name)
        except Exception as ex:
            log.critical("Error in modbus thread %s: %s", self.network_name, ex)


class ModbusClient:
    """Main-thread handle of a modbus network worker."""

    def __init__(
        self,
        context_factory: ContextFactory,
        notify: Callable[[], None] | None = None,
    ) -> None:
        self._context_factory = context_factory
        self._notify = notify
        self.from_modbus_queue: queue.Queue = queue.Queue()
        self.to_modbus_queue: queue.Queue = queue.Queue()
        self.network_name = ""
        self.worker: ModbusThread | None = None
        self._thread: threading.Thread | None = None

    def init(self, config: ModbusNetworkConfig) -> None:
        """Start the worker thread and hand it the network configuration."""
        self.network_name = config.name
        self.worker = ModbusThread(
            self.to_modbus_queue, self.from_modbus_queue, self._context_factory, self._notify
        )
        self._thread = threading.Thread(
            target=self.worker.run, name=f"modbus-{config.name}", daemon=True
        )
        self._thread.start()
        self.to_modbus_queue.put(config)

    def send_command(
        self,
        slave_id: int,
        register_type: RegisterType,
        register: int,
        values: Sequence[int],
        command_id: int,
    ) -> None:
        """Ask the worker to write ``values`` starting at ``register``."""
        message = MsgRegisterValues(
            slave_id, register_type, register, list(values), command_id=command_id
        )
        self.to_modbus_queue.put(message)

    def send_mqtt_network_is_up(self, up: bool) -> None:
        self.to_modbus_queue.put(MsgMqttNetworkState(up))

    def stop(self) -> None:
        """Stop the worker thread and wait for it to end."""
        if self._thread is not None:
            self.to_modbus_queue.put(EndWorkMessage())
            self._thread.join()
            self._thread = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def __enter__(self) -> ModbusClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()