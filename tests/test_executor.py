import queue
from datetime import timedelta

from modmqttd.commands import (
    ModbusContext,
    ModbusReadError,
    ModbusWriteError,
    RegisterPoll,
    RegisterWrite,
)
from modmqttd.config import NetworkType
from modmqttd.executor import ModbusExecutor
from modmqttd.modbus_messages import (
    MsgRegisterReadFailed,
    MsgRegisterValues,
    MsgRegisterWriteFailed,
)
from modmqttd.modbus_types import PublishMode, RegisterType


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeContext(ModbusContext):
    def __init__(self):
        self.values = {}
        self.reads = []
        self.writes = []
        self.failing_slaves = set()
        self.fail_writes = False

    def init(self, config):
        pass

    def connect(self):
        pass

    def is_connected(self):
        return True

    def disconnect(self):
        pass

    def read_modbus_registers(self, slave_id, poll):
        self.reads.append((slave_id, poll.register))
        if slave_id in self.failing_slaves:
            raise ModbusReadError("read failed")
        return [
            self.values.get((slave_id, poll.register + i), 0) for i in range(poll.count)
        ]

    def write_modbus_registers(self, slave_id, command):
        self.writes.append((slave_id, command.register, list(command.values)))
        if self.fail_writes:
            raise ModbusWriteError("write failed")

    def network_type(self):
        return NetworkType.TCPIP


def _make(clock=None):
    out = queue.Queue()
    ctx = FakeContext()
    executor = ModbusExecutor(out, clock=clock) if clock else ModbusExecutor(out)
    executor.init(ctx)
    return executor, ctx, out


def _drain(out):
    items = []
    while not out.empty():
        items.append(out.get_nowait())
    return items


def _poll(slave=1, register=2, mode=PublishMode.ON_CHANGE):
    return RegisterPoll(slave, register, RegisterType.HOLDING, 1, timedelta(seconds=1), mode)


def _run_all(executor):
    while not executor.all_done():
        assert executor.execute_next() == timedelta(0)


def test_initial_poll_sends_values():
    executor, ctx, out = _make()
    ctx.values[(1, 2)] = 32456
    reg = _poll()
    executor.setup_initial_poll({1: [reg]})
    assert executor.is_initial_poll_in_progress()
    assert executor.execute_next() == timedelta(0)
    messages = _drain(out)
    assert len(messages) == 1
    assert isinstance(messages[0], MsgRegisterValues)
    assert messages[0].registers == [32456]
    assert reg.values == [32456]
    assert not executor.is_initial_poll_in_progress()
    assert executor.all_done()


def test_unchanged_value_not_sent_on_change():
    executor, ctx, out = _make()
    ctx.values[(1, 2)] = 5
    reg = _poll()
    executor.setup_initial_poll({1: [reg]})
    _run_all(executor)
    _drain(out)
    executor.add_poll_list({1: [reg]})
    _run_all(executor)
    assert _drain(out) == []
    ctx.values[(1, 2)] = 6
    executor.add_poll_list({1: [reg]})
    _run_all(executor)
    assert [m.registers for m in _drain(out)] == [[6]]


def test_every_poll_always_sends():
    executor, ctx, out = _make()
    reg = _poll(mode=PublishMode.EVERY_POLL)
    executor.setup_initial_poll({1: [reg]})
    _run_all(executor)
    _drain(out)
    executor.add_poll_list({1: [reg]})
    _run_all(executor)
    assert len(_drain(out)) == 1


def test_read_retry_keeps_command_waiting():
    executor, ctx, out = _make()
    ctx.failing_slaves.add(1)
    reg = _poll()
    reg.set_max_retry_counts(1, 0, True)
    executor.setup_initial_poll({1: [reg]})
    executor.execute_next()
    assert executor.waiting_command is reg
    executor.execute_next()
    assert executor.waiting_command is None
    assert ctx.reads == [(1, 2), (1, 2)]
    assert reg.executed_ok() is False


def test_read_failed_message_after_repeated_errors():
    executor, ctx, out = _make()
    ctx.failing_slaves.add(1)
    reg = _poll()
    executor.setup_initial_poll({1: [reg]})
    _run_all(executor)
    for _ in range(RegisterPoll.DEFAULT_READ_ERROR_COUNT - 1):
        executor.add_poll_list({1: [reg]})
        _run_all(executor)
    assert _drain(out) == []
    executor.add_poll_list({1: [reg]})
    _run_all(executor)
    messages = _drain(out)
    assert len(messages) == 1
    assert isinstance(messages[0], MsgRegisterReadFailed)
    assert (messages[0].slave_id, messages[0].register) == (1, 2)


def test_write_sends_return_message():
    executor, ctx, out = _make()
    message = MsgRegisterValues(1, RegisterType.HOLDING, 5, [7], command_id=3)
    command = RegisterWrite.from_message(message)
    command.return_message = message
    executor.add_write_command(command)
    assert executor.execute_next() == timedelta(0)
    assert ctx.writes == [(1, 5, [7])]
    messages = _drain(out)
    assert messages == [message]
    assert messages[0].has_command_id()
    assert executor.all_done()


def test_write_failure_reported():
    executor, ctx, out = _make()
    ctx.fail_writes = True
    command = RegisterWrite(2, 9, RegisterType.HOLDING, [1])
    executor.add_write_command(command)
    executor.execute_next()
    messages = _drain(out)
    assert len(messages) == 1
    assert isinstance(messages[0], MsgRegisterWriteFailed)
    assert (messages[0].slave_id, messages[0].register) == (2, 9)
    assert executor.all_done()


def test_write_goes_before_waiting_poll():
    executor, ctx, out = _make()
    reg = _poll()
    executor.setup_initial_poll({1: [reg]})
    command = RegisterWrite(1, 5, RegisterType.HOLDING, [3])
    executor.add_write_command(command)
    executor.execute_next()
    assert ctx.writes == [(1, 5, [3])]
    assert ctx.reads == []
    _run_all(executor)
    assert ctx.reads == [(1, 2)]


def test_delay_before_command_is_respected():
    clock = FakeClock()
    executor, ctx, out = _make(clock)
    delay = timedelta(milliseconds=50)
    reg = _poll()
    reg.set_delay_before_command(delay)
    executor.setup_initial_poll({1: [reg]})
    assert executor.execute_next() == timedelta(0)
    executor.add_poll_list({1: [reg]})
    assert executor.execute_next() == delay
    assert len(ctx.reads) == 1
    clock.advance(0.05)
    assert executor.execute_next() == timedelta(0)
    assert len(ctx.reads) == 2


def test_empty_queues_return_max():
    executor, ctx, out = _make()
    executor.setup_initial_poll({1: [_poll()]})
    _run_all(executor)
    assert executor.execute_next() == timedelta.max


def test_slaves_served_in_order():
    executor, ctx, out = _make()
    executor.setup_initial_poll({
        2: [_poll(2, 1), _poll(2, 2)],
        1: [_poll(1, 1), _poll(1, 2)],
    })
    _run_all(executor)
    assert ctx.reads == [(1, 1), (1, 2), (2, 1), (2, 2)]


def test_poll_list_ignored_during_initial_poll():
    executor, ctx, out = _make()
    executor.setup_initial_poll({1: [_poll(1, 1), _poll(1, 2)]})
    executor.add_poll_list({3: [_poll(3, 7)]})
    _run_all(executor)
    assert (3, 7) not in ctx.reads
    assert executor.poll_done()