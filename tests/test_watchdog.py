from datetime import timedelta

from modmqttd.commands import RegisterPoll
from modmqttd.config import ModbusWatchdogConfig
from modmqttd.modbus_types import RegisterType
from modmqttd.watchdog import ModbusWatchdog


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def command(ok):
    poll = RegisterPoll(1, 1, RegisterType.HOLDING, 1, timedelta(seconds=1))
    poll.last_read_ok = ok
    return poll


def make(period_s=10, device=""):
    clock = FakeClock()
    dog = ModbusWatchdog(clock)
    dog.init(ModbusWatchdogConfig(watch_period=timedelta(seconds=period_s), device_path=device))
    return dog, clock


def test_error_period_grows_with_time():
    dog, clock = make()
    clock.now += 5
    assert dog.current_error_period() == timedelta(seconds=5)
    assert not dog.is_reconnect_required()


def test_reconnect_required_after_watch_period():
    dog, clock = make(period_s=10)
    dog.inspect_command(command(False))
    clock.now += 11
    assert dog.is_reconnect_required()


def test_successful_command_resets_period():
    dog, clock = make(period_s=10)
    clock.now += 11
    dog.inspect_command(command(True))
    assert dog.current_error_period() == timedelta(0)
    assert not dog.is_reconnect_required()


def test_missing_device_detected(tmp_path):
    dog, _ = make(device=str(tmp_path / "missing"))
    dog.inspect_command(command(False))
    assert dog.device_removed
    assert dog.is_reconnect_required()
    dog.reset()
    assert not dog.device_removed


def test_present_device_not_removed(tmp_path):
    device = tmp_path / "ttyX"
    device.write_text("")
    dog, _ = make(device=str(device))
    dog.inspect_command(command(False))
    assert not dog.device_removed
    assert dog.device_path == str(device)


def test_device_checked_again_only_after_period(tmp_path):
    device = tmp_path / "ttyX"
    device.write_text("")
    dog, clock = make(device=str(device))
    dog.inspect_command(command(False))
    device.unlink()
    clock.now += 0.1
    dog.inspect_command(command(False))
    assert not dog.device_removed
    clock.now += 0.5
    dog.inspect_command(command(False))
    assert dog.device_removed


def test_no_device_path_never_removed():
    dog, _ = make(device="")
    dog.inspect_command(command(False))
    assert not dog.device_removed