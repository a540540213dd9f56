import pytest

from modmqttd.modbus_types import (
    ModbusAddressRange,
    ModbusSlaveAddressRange,
    PublishMode,
    RegisterType,
)


def test_publish_mode_from_config_name():
    assert PublishMode("every_poll") is PublishMode.EVERY_POLL


def test_first_and_last_register():
    r = ModbusAddressRange(10, RegisterType.HOLDING, 5)
    assert r.first_register() == 10
    assert r.last_register() == 10 + 5 - 1


def test_overlapping_ranges():
    a = ModbusAddressRange(10, RegisterType.HOLDING, 5)
    b = ModbusAddressRange(14, RegisterType.HOLDING, 3)
    assert a.overlaps(b)
    assert b.overlaps(a)


def test_adjacent_ranges_do_not_overlap():
    a = ModbusAddressRange(10, RegisterType.HOLDING, 5)
    b = ModbusAddressRange(15, RegisterType.HOLDING, 1)
    assert not a.overlaps(b)
    assert a.is_consecutive_of(b)
    assert b.is_consecutive_of(a)


def test_different_types_never_overlap():
    a = ModbusAddressRange(10, RegisterType.HOLDING, 5)
    b = ModbusAddressRange(10, RegisterType.INPUT, 5)
    assert not a.overlaps(b)
    assert not a.is_same_as(b)


def test_gap_is_not_consecutive():
    a = ModbusAddressRange(1, RegisterType.COIL, 2)
    b = ModbusAddressRange(4, RegisterType.COIL, 1)
    assert not a.is_consecutive_of(b)


@pytest.mark.parametrize(
    "first, second",
    [((1, 3), (2, 5)), ((10, 1), (2, 2)), ((5, 10), (6, 2))],
)
def test_merge_covers_both_ranges(first, second):
    a = ModbusAddressRange(first[0], RegisterType.HOLDING, first[1])
    b = ModbusAddressRange(second[0], RegisterType.HOLDING, second[1])
    low = min(a.first_register(), b.first_register())
    high = max(a.last_register(), b.last_register())
    a.merge(b)
    assert a.first_register() == low
    assert a.last_register() == high


def test_is_same_as():
    a = ModbusAddressRange(3, RegisterType.BIT, 2)
    assert a.is_same_as(ModbusAddressRange(3, RegisterType.BIT, 2))
    assert not a.is_same_as(ModbusAddressRange(3, RegisterType.BIT, 3))


def test_slave_range_keeps_slave_and_range():
    r = ModbusSlaveAddressRange(7, 20, RegisterType.INPUT, 4)
    assert r.slave_id == 7
    assert r.register == 20
    assert r.register_type is RegisterType.INPUT
    assert r.count == 4