import pytest

from modmqttd.default_command_converter import (
    ConversionError,
    DefaultCommandConverter,
    parse_as_json,
)


@pytest.fixture
def conv():
    return DefaultCommandConverter()


@pytest.mark.parametrize(
    ("payload", "expected"),
    [("10", [10]), ("0x10", [16]), ("010", [8])],
)
def test_single_register_payload_formats(conv, payload, expected):
    assert conv.to_modbus(payload, 1) == expected


def test_single_register_upper_bound(conv):
    assert conv.to_modbus("65535", 1) == [65535]
    assert conv.to_modbus(7, 1) == [7]


@pytest.mark.parametrize("payload", ["65536", "-1"])
def test_single_register_out_of_range(conv, payload):
    with pytest.raises(ConversionError, match="out of range"):
        conv.to_modbus(payload, 1)


def test_single_register_not_a_number(conv):
    with pytest.raises(ConversionError, match="Failed to convert"):
        conv.to_modbus("abc", 1)


def test_single_register_int32_overflow(conv):
    with pytest.raises(ConversionError, match="mqtt value is out of range"):
        conv.to_modbus("99999999999", 1)


def test_multiple_registers(conv):
    assert conv.to_modbus("[1, 2]", 2) == [1, 2]


def test_multiple_registers_wrong_size(conv):
    with pytest.raises(ConversionError, match="Wrong json array size"):
        conv.to_modbus("[1]", 2)


def test_multiple_registers_not_array(conv):
    with pytest.raises(ConversionError, match="Only json array"):
        conv.to_modbus('{"a": 1}', 2)
    with pytest.raises(ConversionError, match="Only json array"):
        conv.to_modbus("not json", 2)


def test_multiple_registers_value_out_of_range(conv):
    with pytest.raises(ConversionError, match="out of range"):
        conv.to_modbus("[70000, 1]", 2)


def test_parse_as_json_bounds():
    assert parse_as_json("[0, 65535]", 2) == [0, 65535]


def test_parse_as_json_rejects_non_integers():
    with pytest.raises(ConversionError):
        parse_as_json('[1.5, "x"]', 2)