import pytest

from modmqttd.conv_name_parser import (
    ConvNameParserError,
    ConverterSpecification,
    parse_args,
    parse_converter_spec,
)


@pytest.mark.parametrize(
    "spec, args",
    [
        ("std.something()", []),
        ("std.something( )", []),
        ("std.something(1)", ["1"]),
        ('std.something("foo")', ["foo"]),
        ('std.something("foo ")', ["foo "]),
        ("std.something( 1 )", ["1"]),
        ("std.something(1,2)", ["1", "2"]),
        ('std.something(1,"2")', ["1", "2"]),
        ("std.something('1')", ["1"]),
        ("std.something('\"')", ['"']),
        ("std.something(\"'\")", ["'"]),
    ],
)
def test_source_cases(spec, args):
    parsed = parse_converter_spec(spec)
    assert parsed.plugin == "std"
    assert parsed.converter == "something"
    assert parsed.args == args


def test_result_is_specification():
    assert parse_converter_spec("expr.evaluate(\"R0\")") == ConverterSpecification(
        "expr", "evaluate", ["R0"]
    )


def test_invalid_form_rejected():
    with pytest.raises(ConvNameParserError, match="plugin.converter"):
        parse_converter_spec("something")


def test_empty_argument_rejected():
    with pytest.raises(ConvNameParserError, match="Argument 2 is empty"):
        parse_converter_spec("std.something(1,,2)")


def test_unterminated_string_rejected():
    with pytest.raises(ConvNameParserError, match="unterminated string"):
        parse_args('"abc')


def test_trailing_escape_rejected():
    with pytest.raises(ConvNameParserError, match="invalid escape sequence"):
        parse_args("abc\\")


def test_escaped_comma_kept_in_argument():
    assert parse_args("a\\,b,c") == ["a,b", "c"]