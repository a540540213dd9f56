"""Arithmetic expression converter for register values."""

from __future__ import annotations

import ast
import math
import struct
import sys
from collections.abc import Callable, Sequence

from .default_command_converter import ConversionError

PLUGIN_NAME = "expr"
MAX_REGISTERS = 10

_Evaluator = Callable[[Sequence[float]], float]


def format_double(value: float, precision: int = -1) -> str:
    """Format a value; without precision whole numbers lose their fraction."""
    if precision < 0:
        if float(value).is_integer():
            return str(int(value))
        return f"{value:f}"
    return f"{value:.{precision}f}"


def _reg(value: float) -> int:
    if not math.isfinite(value):
        return 0
    return int(value) & 0xFFFF


def _swap(value: int) -> int:
    return ((value & 0xFF) << 8) | (value >> 8)


def _combine(high: float, low: float, keep_byte_order: bool) -> int:
    hi, lo = _reg(high), _reg(low)
    if not keep_byte_order:
        hi, lo = _swap(hi), _swap(lo)
    return (hi << 16) | lo


def int32(high: float, low: float) -> float:
    raw = _combine(high, low, False)
    return float(raw - (1 << 32) if raw & 0x80000000 else raw)


def uint32(high: float, low: float) -> float:
    return float(_combine(high, low, False))


def flt32(high: float, low: float) -> float:
    return struct.unpack(">f", _combine(high, low, False).to_bytes(4, "big"))[0]


def flt32be(high: float, low: float) -> float:
    return struct.unpack(">f", _combine(high, low, True).to_bytes(4, "big"))[0]


def int16(value: float) -> float:
    raw = _reg(value)
    return float(raw - 0x10000 if raw & 0x8000 else raw)


def _div(a: float, b: float) -> float:
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def _mod(a: float, b: float) -> float:
    if b == 0:
        return math.nan
    try:
        return math.fmod(a, b)
    except ValueError:
        return math.nan


def _pow(a: float, b: float) -> float:
    try:
        return math.pow(a, b)
    except OverflowError:
        return math.inf
    except ValueError:
        return math.nan


def _finite_only(fn: Callable[[float], float]) -> Callable[[float], float]:
    def wrapper(x: float) -> float:
        return float(fn(x)) if math.isfinite(x) else x
    return wrapper


def _round(x: float) -> float:
    if not math.isfinite(x):
        return x
    return math.copysign(math.floor(abs(x) + 0.5), x)


def _sqrt(x: float) -> float:
    return math.sqrt(x) if x >= 0 else math.nan


def _log_with(fn: Callable[[float], float]) -> Callable[[float], float]:
    def wrapper(x: float) -> float:
        if x > 0:
            return fn(x)
        return -math.inf if x == 0 else math.nan
    return wrapper


def _exp(x: float) -> float:
    try:
        return math.exp(x)
    except OverflowError:
        return math.inf


def _avg(*values: float) -> float:
    return sum(values) / len(values)


# name -> (function, argument count or None for one or more)
_FUNCTIONS: dict[str, tuple[Callable[..., float], int | None]] = {
    "int32": (int32, 2),
    "uint32": (uint32, 2),
    "flt32": (flt32, 2),
    "flt32be": (flt32be, 2),
    "int16": (int16, 1),
    "abs": (abs, 1),
    "ceil": (_finite_only(math.ceil), 1),
    "floor": (_finite_only(math.floor), 1),
    "trunc": (_finite_only(math.trunc), 1),
    "round": (_round, 1),
    "sqrt": (_sqrt, 1),
    "exp": (_exp, 1),
    "log": (_log_with(math.log), 1),
    "log10": (_log_with(math.log10), 1),
    "pow": (_pow, 2),
    "min": (min, None),
    "max": (max, None),
    "avg": (_avg, None),
    "sum": (lambda *values: float(sum(values)), None),
}

_CONSTANTS = {"pi": math.pi, "epsilon": sys.float_info.epsilon, "inf": math.inf}
_VARIABLES = {f"r{i}": i for i in range(MAX_REGISTERS)}

_BINARY = {
    ast.Add: lambda a, b: a + b,
    ast.Sub: lambda a, b: a - b,
    ast.Mult: lambda a, b: a * b,
    ast.Div: _div,
    ast.Mod: _mod,
    ast.Pow: _pow,
}

_COMPARE = {
    ast.Lt: lambda a, b: a < b,
    ast.LtE: lambda a, b: a <= b,
    ast.Gt: lambda a, b: a > b,
    ast.GtE: lambda a, b: a >= b,
    ast.Eq: lambda a, b: a == b,
    ast.NotEq: lambda a, b: a != b,
}


class _ExpressionError(Exception):
    pass


def _compile_node(node: ast.AST) -> _Evaluator:
    if isinstance(node, ast.Expression):
        return _compile_node(node.body)

    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise _ExpressionError(f"Invalid literal {node.value!r}")
        number = float(node.value)
        return lambda values: number

    if isinstance(node, ast.Name):
        name = node.id.lower()
        if name in _VARIABLES:
            index = _VARIABLES[name]
            return lambda values: values[index]
        if name in _CONSTANTS:
            constant = _CONSTANTS[name]
            return lambda values: constant
        if name in _FUNCTIONS:
            raise _ExpressionError(f"Function '{node.id}' used as a variable")
        raise _ExpressionError(f"Undefined symbol: '{node.id}'")

    if isinstance(node, ast.UnaryOp):
        operand = _compile_node(node.operand)
        if isinstance(node.op, ast.USub):
            return lambda values: -operand(values)
        if isinstance(node.op, ast.UAdd):
            return operand
        if isinstance(node.op, ast.Not):
            return lambda values: 0.0 if operand(values) else 1.0
        raise _ExpressionError("Unsupported unary operator")

    if isinstance(node, ast.BinOp):
        operation = _BINARY.get(type(node.op))
        if operation is None:
            raise _ExpressionError("Unsupported operator")
        left, right = _compile_node(node.left), _compile_node(node.right)
        return lambda values: operation(left(values), right(values))

    if isinstance(node, ast.Compare):
        operands = [_compile_node(node.left)] + [_compile_node(c) for c in node.comparators]
        operations = []
        for op in node.ops:
            operation = _COMPARE.get(type(op))
            if operation is None:
                raise _ExpressionError("Unsupported comparison")
            operations.append(operation)

        def compare(values: Sequence[float]) -> float:
            results = [operand(values) for operand in operands]
            return 1.0 if all(
                operation(a, b)
                for operation, a, b in zip(operations, results, results[1:])
            ) else 0.0
        return compare

    if isinstance(node, ast.BoolOp):
        parts = [_compile_node(v) for v in node.values]
        combine = all if isinstance(node.op, ast.And) else any
        return lambda values: 1.0 if combine(p(values) != 0 for p in parts) else 0.0

    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.keywords:
            raise _ExpressionError("Invalid function call")
        name = node.func.id.lower()
        if name not in _FUNCTIONS:
            raise _ExpressionError(f"Undefined function: '{node.func.id}'")
        function, arity = _FUNCTIONS[name]
        if any(isinstance(arg, ast.Starred) for arg in node.args):
            raise _ExpressionError("Invalid function call")
        if (arity is None and not node.args) or (arity is not None and len(node.args) != arity):
            raise _ExpressionError(f"Invalid number of arguments for '{node.func.id}'")
        arguments = [_compile_node(arg) for arg in node.args]
        return lambda values: float(function(*(arg(values) for arg in arguments)))

    raise _ExpressionError(f"Unsupported expression element {type(node).__name__}")


def _compile_expression(text: str) -> _Evaluator:
    try:
        tree = ast.parse(text.strip().replace("^", "**"), mode="eval")
    except SyntaxError as ex:
        raise _ExpressionError(f"syntax error: {ex.msg}") from None
    return _compile_node(tree)


class ExprConverter:
    """Evaluates an expression over registers R0..R9."""

    def __init__(self) -> None:
        self._values = [0.0] * MAX_REGISTERS
        self._expression: _Evaluator | None = None
        self._precision = -1

    def set_args(self, args: Sequence[str]) -> None:
        """Compile the expression and read the optional precision."""
        if not args:
            raise ConversionError("Missing argument 1")
        try:
            self._expression = _compile_expression(args[0])
        except _ExpressionError as ex:
            raise ConversionError(f"Exprtk {ex}") from None
        if len(args) == 2:
            try:
                self._precision = int(str(args[1]).strip())
            except ValueError:
                raise ConversionError(f"Argument 2 must be an integer, got '{args[1]}'") from None

    def to_mqtt(self, registers: Sequence[int]) -> str:
        """Evaluate the expression for the given register values."""
        if len(registers) > MAX_REGISTERS:
            raise ConversionError(f"Maximum {MAX_REGISTERS} registers allowed")
        if self._expression is None:
            raise ConversionError("Expression is not set")
        for index, value in enumerate(registers):
            self._values[index] = float(value)
        result = self._expression(self._values)
        if self._precision == 0:
            if not math.isfinite(result):
                raise ConversionError(f"Cannot convert {result} to an integer")
            return str(int(result))
        return format_double(result, self._precision)


def get_converter(name: str) -> ExprConverter | None:
    """Return a new converter for ``name`` or None if there is none."""
    if name == "evaluate":
        return ExprConverter()
    return None