"""Detection of a modbus network that needs a reconnect."""

from __future__ import annotations

import logging
import math
import os
import time
from collections.abc import Callable
from datetime import timedelta

from .commands import RegisterCommand
from .config import ModbusWatchdogConfig

log = logging.getLogger(__name__)

DEVICE_CHECK_PERIOD = timedelta(milliseconds=300)


class ModbusWatchdog:
    """Watches command results and device presence of one network."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.config = ModbusWatchdogConfig()
        self._last_successful_command_time = clock()
        self._last_device_check_time = -math.inf
        self._last_command_ok = True
        self.device_removed = False

    @property
    def device_path(self) -> str:
        return self.config.device_path

    def init(self, config: ModbusWatchdogConfig) -> None:
        self.config = config
        self.reset()
        log.debug(
            "Watchdog initialized. Watch period set to %ds",
            int(config.watch_period.total_seconds()),
        )
        if config.device_path:
            log.debug("Monitoring %s existence", config.device_path)

    def inspect_command(self, command: RegisterCommand) -> None:
        """Record the outcome of an executed command."""
        if command.executed_ok():
            self.reset()
        elif self.config.device_path:
            now = self._clock()
            since_check = timedelta(seconds=now - self._last_device_check_time)
            if not self.device_removed and (
                self._last_command_ok or since_check > DEVICE_CHECK_PERIOD
            ):
                self.device_removed = not os.path.exists(self.config.device_path)
                self._last_device_check_time = now
                if self.device_removed:
                    log.warning("Detected device %s removal", self.config.device_path)
        self._last_command_ok = command.executed_ok()

    def reset(self) -> None:
        self._last_successful_command_time = self._clock()
        self.device_removed = False
        self._last_command_ok = True

    def current_error_period(self) -> timedelta:
        """Time since the last successful command."""
        return timedelta(seconds=self._clock() - self._last_successful_command_time)

    def is_reconnect_required(self) -> bool:
        if self.device_removed:
            return True
        error_period = self.current_error_period()
        log.log(5, "Watchdog: current error period is %s", error_period)
        return error_period > self.config.watch_period