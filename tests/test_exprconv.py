import struct

import pytest

from modmqttd.default_command_converter import ConversionError
from modmqttd.exprconv import (
    ExprConverter,
    flt32,
    flt32be,
    format_double,
    get_converter,
    int16,
    int32,
    uint32,
)

EXPECTED_FLOAT = struct.unpack(">f", struct.pack(">f", -123.456))[0]


def make(*args):
    conv = get_converter("evaluate")
    conv.set_args(list(args))
    return conv


def test_unknown_converter_name():
    assert get_converter("nothing") is None


def test_precision_not_set():
    assert make("R0 * 2").to_mqtt([10]) == "20"


def test_precision_set():
    assert make("R0 / 3", "3").to_mqtt([10]) == "3.333"


def test_signed_32bit():
    output = make("int32(R0, R1)").to_mqtt([0xDCFE, 0x98BA])
    assert output == "-19088744"
    assert float(output) == -19088744


def test_unsigned_32bit():
    output = make("uint32(R0, R1)").to_mqtt([0xDCFE, 0x98BA])
    assert output == "4275878552"
    assert float(output) == 0xFEDCBA98


@pytest.mark.parametrize(
    ("expression", "registers"),
    [
        ("flt32be(R0, R1)", [0xC2F6, 0xE979]),
        ("flt32be(R1, R0)", [0xE979, 0xC2F6]),
        ("flt32(R0, R1)", [0xF6C2, 0x79E9]),
        ("flt32(R1, R0)", [0x79E9, 0xF6C2]),
    ],
)
def test_float_byte_orders(expression, registers):
    assert make(expression).to_mqtt(registers) == "-123.456001"


def test_float_functions_exact():
    assert flt32be(0xC2F6, 0xE979) == EXPECTED_FLOAT
    assert flt32(0xF6C2, 0x79E9) == EXPECTED_FLOAT


def test_float_with_precision():
    assert make("flt32be(R0, R1)", "3").to_mqtt([0xC2F6, 0xE979]) == "-123.456"


def test_int16_register():
    assert make("int16(R0)").to_mqtt([0xFFFF]) == "-1"
    assert int16(0xFFFF) == -1


def test_integer_helpers():
    assert int32(0xDCFE, 0x98BA) == -19088744
    assert uint32(0xDCFE, 0x98BA) == 0xFEDCBA98


def test_negative_value_from_unsigned_register():
    assert make("R0 - 65536").to_mqtt([65516]) == "-20"


def test_too_many_registers():
    with pytest.raises(ConversionError, match="Maximum 10 registers"):
        make("R0").to_mqtt([1] * 11)


def test_invalid_expression():
    with pytest.raises(ConversionError, match="Exprtk"):
        make("R0 +")
    with pytest.raises(ConversionError, match="Exprtk"):
        make("unknown_var * 2")


def test_wrong_function_arity():
    with pytest.raises(ConversionError, match="Exprtk"):
        make("int32(R0)")


def test_zero_precision_truncates():
    assert make("R0 / 4", "0").to_mqtt([10]) == "2"


def test_converter_is_reusable():
    conv = ExprConverter()
    conv.set_args(["R0 + R1"])
    assert conv.to_mqtt([1, 2]) == "3"
    assert conv.to_mqtt([5, 5]) == "10"


@pytest.mark.parametrize(
    ("value", "precision", "expected"),
    [
        (1.0, -1, "1"),
        (1.0, 2, "1.00"),
        (1.1234, -1, "1.123400"),
        (1.1234, 2, "1.12"),
        (1.1299, 2, "1.13"),
    ],
)
def test_format_double(value, precision, expected):
    assert format_double(value, precision) == expected


def test_format_double_default_precision():
    assert format_double(1.0) == "1"