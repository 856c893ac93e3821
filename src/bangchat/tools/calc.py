"""
bangchat/tools/calc.py - calc Arithmetic Tool

Small deterministic tool: add, sub, mul, div over decimal numbers. Results
are written without a trailing newline; integral values print as integers.

    !add 1 2        -> 3
    !div 7 2        -> 3.5
    !calc::mul 2 3  -> 6
"""

from __future__ import annotations

import math
from functools import reduce
from typing import Callable, Optional

from bangchat.plugins.params import param_str, parse_params, warn_unknown
from bangchat.tools.base import BaseTool, ToolIO, command


def _format(value: float) -> str:
    if math.isfinite(value) and value == int(value):
        return str(int(value))
    return repr(value)


class CalcTool(BaseTool):
    name = "calc"
    description = "Arithmetic over decimal numbers"

    def _apply(self, argv: list[str], io: ToolIO, op: Callable[[float, float], float]) -> int:
        if len(argv) < 3:
            io.error(f"{argv[0]}: expected at least two numbers\n")
            return 2
        try:
            numbers = [float(a) for a in argv[1:]]
        except ValueError as e:
            io.error(f"{argv[0]}: {e}\n")
            return 2
        try:
            result = reduce(op, numbers)
        except ZeroDivisionError:
            io.error(f"{argv[0]}: division by zero\n")
            return 1
        io.write(_format(result))
        return 0

    @command(description="add [a] [b] ... - print the sum of the numbers")
    def add(self, argv: list[str], io: ToolIO) -> int:
        return self._apply(argv, io, lambda a, b: a + b)

    @command(description="sub [a] [b] ... - subtract the following numbers from the first")
    def sub(self, argv: list[str], io: ToolIO) -> int:
        return self._apply(argv, io, lambda a, b: a - b)

    @command(description="mul [a] [b] ... - print the product of the numbers")
    def mul(self, argv: list[str], io: ToolIO) -> int:
        return self._apply(argv, io, lambda a, b: a * b)

    @command(description="div [a] [b] ... - divide the first number by the following ones")
    def div(self, argv: list[str], io: ToolIO) -> int:
        return self._apply(argv, io, lambda a, b: a / b)


def create_tool(params: str = "") -> CalcTool:
    opts = parse_params(params)
    warn_unknown(opts, {"name"}, plugin="calc")
    name: Optional[str] = param_str(opts, "name")
    return CalcTool(name=name)
