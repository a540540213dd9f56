"""Parsing of converter specifications such as ``std.divide(10, 2)``."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum, auto

_RE_CONV = re.compile(r"([a-z0-9]+)\.([a-z0-9]+)\s?\((.*)\)")


class ConvNameParserError(ValueError):
    """Raised for a malformed converter specification."""


@dataclass
class ConverterSpecification:
    plugin: str
    converter: str
    args: list[str] = field(default_factory=list)


class _State(Enum):
    SCAN = auto()
    STRING = auto()
    ESCAPE = auto()


def parse_converter_spec(spec: str) -> ConverterSpecification:
    """Split ``plugin.converter(args)`` into its parts."""
    match = _RE_CONV.fullmatch(spec)
    if match is None:
        raise ConvNameParserError(
            "Supply converter spec in form: plugin.converter(arg1, arg2, …)"
        )
    plugin, converter, args = match.groups()
    result = ConverterSpecification(plugin, converter)
    if args != "()":
        result.args = parse_args(args)
    return result


def parse_args(arg_spec: str) -> list[str]:
    """Split a comma separated argument list, honouring quotes and escapes."""
    result: list[str] = []
    state = _State.SCAN
    arg = ""
    delimiter = ""

    for c in arg_spec:
        if state is _State.ESCAPE:
            arg += c
            state = _State.SCAN
        elif state is _State.STRING:
            if c == delimiter:
                state = _State.SCAN
            else:
                arg += c
        elif c == "\\":
            state = _State.ESCAPE
        elif c == ",":
            if not arg:
                raise ConvNameParserError(f"Argument {len(result) + 1} is empty")
            result.append(arg)
            arg = ""
        elif c in "\"'":
            state = _State.STRING
            delimiter = c
        elif c != " ":
            arg += c

    if state is _State.STRING:
        raise ConvNameParserError(
            f"Argument {len(result) + 1} is an unterminated string"
        )
    if state is _State.ESCAPE:
        raise ConvNameParserError(
            f"Argument {len(result) + 1} has an invalid escape sequence"
        )
    if arg:
        result.append(arg)
    return result