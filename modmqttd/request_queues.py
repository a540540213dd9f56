"""Per-slave queues of poll and write requests."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from datetime import timedelta

from .commands import RegisterCommand, RegisterPoll, RegisterWrite

log = logging.getLogger(__name__)

MAX_DURATION = timedelta.max
_ZERO = timedelta(0)


class ModbusRequestsQueues:
    """Poll and write requests waiting for one slave, served alternately."""

    def __init__(self) -> None:
        self.poll_queue: deque[RegisterPoll] = deque()
        self.write_queue: deque[RegisterWrite] = deque()
        self._last_poll_found: RegisterPoll | None = None
        self._pop_from_poll = True

    def add_poll_list(self, poll_list: Iterable[RegisterPoll]) -> None:
        """Queue registers for the next poll, skipping ones already queued."""
        for poll in poll_list:
            if not any(queued is poll for queued in self.poll_queue):
                self.poll_queue.append(poll)

    def add_write_command(self, command: RegisterWrite) -> None:
        self.write_queue.append(command)

    def readd_command(self, command: RegisterCommand) -> None:
        """Put a command back at the front so that it is served next."""
        if isinstance(command, RegisterPoll):
            self.poll_queue.appendleft(command)
            self._pop_from_poll = True
        else:
            self.write_queue.appendleft(command)
            self._pop_from_poll = False

    def find_for_silence_period(self, period: timedelta, ignore_first_read: bool) -> timedelta:
        """Find the queued poll whose delay best fits ``period`` and return that delay.

        Returns ``MAX_DURATION`` if no queued poll needs a delay.
        """
        result = MAX_DURATION
        for poll in self.poll_queue:
            if ignore_first_read or not poll.has_delay_before_first_command():
                delay = poll.delay_before_command
            else:
                delay = poll.delay_before_first_command

            if delay == _ZERO:
                continue

            diff = abs(delay - period)
            if diff == _ZERO:
                result = delay
                self._last_poll_found = poll
                break
            if diff < result:
                result = delay
                self._last_poll_found = poll
        return result

    def pop_first_with_delay(self, period: timedelta, ignore_first_read: bool) -> RegisterCommand:
        """Remove and return the poll found for ``period``; fall back to pop_next."""
        found = self._last_poll_found
        if found is None or not any(p is found for p in self.poll_queue):
            self._last_poll_found = None
            self.find_for_silence_period(period, ignore_first_read)
            found = self._last_poll_found
        if found is None:
            return self.pop_next()
        self._last_poll_found = None
        for index, poll in enumerate(self.poll_queue):
            if poll is found:
                del self.poll_queue[index]
                break
        return found

    def pop_next(self) -> RegisterCommand:
        """Remove and return the next command, alternating poll and write queues.

        Raises IndexError if both queues are empty.
        """
        if self._pop_from_poll:
            if not self.poll_queue:
                return self.write_queue.popleft()
            self._pop_from_poll = False
            return self.poll_queue.popleft()
        if not self.write_queue:
            return self.poll_queue.popleft()
        self._pop_from_poll = True
        return self.write_queue.popleft()

    def empty(self) -> bool:
        return not self.poll_queue and not self.write_queue