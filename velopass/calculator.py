"""Restricted arithmetic evaluator for cost totals.

Expressions may only contain digits, `+ - * / ( ) .` and whitespace. Anything
else is rejected before parsing; the parsed tree is then walked with an
allow-list of node types, so no names, calls or attribute access can run.
"""

from __future__ import annotations

import ast
import operator
import re
from decimal import Decimal
from typing import Union

from velopass.errors import CalculationError

SAFE_EXPRESSION = re.compile(r"^[0-9+\-*/().\s]+$")

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}
_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

Number = Union[int, float]


def format_operand(value: Number) -> str:
    """Render a number in plain positional notation (never `1e-05`)."""
    text = format(Decimal(repr(float(value))), "f")
    return f"({text})" if text.startswith("-") else text


def _eval_node(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _eval_node(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return float(node.value)
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        return _BINARY_OPS[type(node.op)](_eval_node(node.left), _eval_node(node.right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval_node(node.operand))
    raise CalculationError(f"Unsupported expression element: {type(node).__name__}")


def evaluate_expression(expression: str) -> float:
    """Evaluate a restricted arithmetic expression."""
    if not expression or not isinstance(expression, str):
        raise CalculationError("Expression must be provided.")
    if not SAFE_EXPRESSION.match(expression):
        raise CalculationError("Expression contains unsupported characters.")
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise CalculationError(f"Failed to parse expression: {e.msg}") from e
    try:
        return _eval_node(tree)
    except ZeroDivisionError as e:
        raise CalculationError("Division by zero in expression.") from e


def sum_expression(*terms: Number) -> str:
    """Build an addition expression over already-computed terms."""
    return "+".join(format_operand(t) for t in terms)
