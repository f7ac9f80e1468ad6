# tests/test_eqset/test_expressions.py
"""
Tests for equation text parsing: operator trees, special and derivative names,
conditions, constant folding and rejection of unsupported syntax.
"""
import numpy as np
import pytest

from simgen_core.eqset import EdgeKind, ExpressionSyntaxError, parse_equation, parse_expression
from simgen_core.eqset.operators import (
    AND, LT, NOT, AccessVariable, Add, Constant, Event, Function, Multiply, Negate, Power, Split,
    contains, is_zero,
)

# --- Structure ---

def test_precedence_builds_expected_tree():
    op = parse_expression("a + b * c")
    assert isinstance(op, Add)
    assert isinstance(op.left, AccessVariable) and op.left.name == "a"
    assert isinstance(op.right, Multiply)
    assert [n.name for n in op.right.operands] == ["b", "c"]


def test_caret_is_power():
    op = parse_expression("x ^ 2")
    assert isinstance(op, Power)
    assert op.right.fold() == 2.0


@pytest.mark.parametrize("text, name", [
    ("x'", "x'"),
    ("x''", "x''"),
    ("$t", "$t"),
    ("$t'", "$t'"),
    ("A.B.x", "A.B.x"),
    ("$up.$live", "$up.$live"),
    ("post.V'", "post.V'"),
])
def test_variable_names_survive_escaping(text, name):
    op = parse_expression(text)
    assert isinstance(op, AccessVariable)
    assert op.name == name


def test_c_style_logic_operators():
    op = parse_expression("a < 1 && !b")
    assert isinstance(op, AND)
    assert isinstance(op.left, LT)
    assert isinstance(op.right, NOT)


def test_negative_literal_folds_to_constant():
    op = parse_expression("-3")
    assert isinstance(op, Constant)
    assert op.value == -3.0


def test_negated_variable_is_negate_node():
    op = parse_expression("-x")
    assert isinstance(op, Negate)
    assert op.operand.name == "x"


def test_matrix_literal():
    op = parse_expression("[[1, 2], [3, 4]]")
    assert isinstance(op, Constant) and op.is_matrix
    np.testing.assert_array_equal(op.value, np.array([[1.0, 2.0], [3.0, 4.0]]))


def test_split_names_parts():
    op = parse_expression("split(B, C)")
    assert isinstance(op, Split)
    assert op.names == ["B", "C"]


# --- Events ---

def test_event_defaults_to_rising_edge():
    op = parse_expression("event(V > 0)")
    assert isinstance(op, Event)
    assert op.edge is EdgeKind.RISE
    assert op.delay is None


def test_event_with_delay_and_edge():
    op = parse_expression('event(V > 0, 0.002, "fall")')
    assert op.edge is EdgeKind.FALL
    assert op.delay.fold() == 0.002
    assert contains(op, AccessVariable)


def test_event_rejects_unknown_edge():
    with pytest.raises(ExpressionSyntaxError, match="Unknown event edge"):
        parse_expression('event(V > 0, 0, "sideways")')


# --- Equations with conditions ---

def test_condition_is_canonicalized():
    expression, condition, if_string = parse_equation("1 @   $init")
    assert expression.fold() == 1.0
    assert isinstance(condition, AccessVariable) and condition.name == "$init"
    assert if_string == "$init"


def test_numeric_equation_has_no_condition():
    expression, condition, if_string = parse_equation(5)
    assert expression.fold() == 5.0
    assert condition is None
    assert if_string == ""


def test_empty_condition_is_rejected():
    with pytest.raises(ExpressionSyntaxError, match="must be followed by a condition"):
        parse_equation("1 @ ")


# --- Constant folding ---

@pytest.mark.parametrize("text, value", [
    ("2 * 3 + 1", 7.0),
    ("1 < 2", 1.0),
    ("4 == 5", 0.0),
    ("max(2, 7)", 7.0),
    ("sqrt(16)", 4.0),
])
def test_folding(text, value):
    assert parse_expression(text).fold() == value


def test_unresolved_names_do_not_fold():
    assert parse_expression("x + 1").fold() is None
    assert not parse_expression("x + 1").is_constant()


def test_random_functions_never_fold():
    op = parse_expression("uniform()")
    assert isinstance(op, Function)
    assert op.fold() is None


def test_is_zero():
    assert is_zero(parse_expression("0"))
    assert not is_zero(parse_expression("0.5"))


# --- Rejections ---

@pytest.mark.parametrize("text, message", [
    ("a +", "Invalid syntax"),
    ("frobnicate(1)", "Unknown function"),
    ("1 < a < 3", "Chained comparisons"),
    ("", "empty"),
    ("f(x=1)", "Keyword arguments"),
])
def test_unsupported_syntax_is_rejected(text, message):
    with pytest.raises(ExpressionSyntaxError, match=message):
        parse_expression(text)
