import pytest

from velopass.calculator import evaluate_expression, format_operand, sum_expression
from velopass.errors import CalculationError


@pytest.mark.parametrize(
    "expression, expected",
    [
        ("1+2", 3.0),
        ("330+36+210+0", 576.0),
        ("(17 + 9) * 2 - 1", 51.0),
        ("-4 + 10 / 4", -1.5),
        (" 0.1 + 0.2 ", 0.3),
    ],
)
def test_evaluates_plain_arithmetic(expression, expected):
    assert evaluate_expression(expression) == pytest.approx(expected)


@pytest.mark.parametrize(
    "expression",
    [
        "",
        "__import__('os')",
        "2 ** 8",
        "1 +",
        "1 / 0",
        "abs(-1)",
        "1e5",
        "1; 2",
    ],
)
def test_rejects_anything_else(expression):
    with pytest.raises(CalculationError):
        evaluate_expression(expression)


def test_format_operand_never_uses_exponent_notation():
    assert format_operand(0.00001) == "0.00001"
    assert format_operand(1e21) == "1000000000000000000000"
    assert format_operand(-2.5) == "(-2.5)"


def test_sum_expression_round_trips_through_evaluator():
    expression = sum_expression(9.2, 7.2, 4.2, 4.0)
    assert expression == "9.2+7.2+4.2+4.0"
    assert evaluate_expression(expression) == pytest.approx(24.6)


def test_sum_with_negative_and_tiny_terms_is_accepted():
    assert evaluate_expression(sum_expression(-1.5, 0.000001, 3)) == pytest.approx(1.500001)
