# tests/test_analysis/test_exponents.py
"""Tests for fixed-point exponent arithmetic and the exponent resolution pass."""
import pytest

from simgen_core.analysis import ExponentConvergenceError, ExponentResolver
from simgen_core.config import CompileConfig
from simgen_core.constants import MSB, NumericType
from simgen_core.eqset import Attribute
from simgen_core.eqset.operators import AccessVariable, Add, Constant, Divide, Multiply
from simgen_core.analysis.exponents import exponent_for_magnitude

INT_CONFIG = CompileConfig(numeric_type=NumericType.INT)


def operand(exponent, center=MSB // 2):
    """A leaf with a fixed scale. Unresolved reads keep whatever scale they are given."""
    op = AccessVariable("v")
    op.exponent = exponent
    op.center = center
    return op


# --- Operator arithmetic ---

def test_constant_scale_follows_magnitude():
    op = Constant(8.0)
    op.determine_exponent()
    assert op.exponent == 3
    assert op.center == MSB


def test_zero_constant_uses_default_scale():
    op = Constant(0)
    op.determine_exponent()
    assert (op.exponent, op.center) == (MSB - MSB // 2, MSB // 2)


def test_multiply_shift_lands_on_result_exponent():
    op = Multiply(operand(4), operand(-2))
    op.determine_exponent()
    assert op.exponent == (4 - MSB + MSB // 2) + (-2 - MSB + MSB // 2) + MSB - MSB // 2
    op.exponent_next = op.exponent
    # Raw product sits at left + right - MSB; shifting right by shift() reaches the target.
    assert op.left.exponent + op.right.exponent - MSB + op.shift() == op.exponent


@pytest.mark.parametrize("left, right", [(10, 4), (0, 0), (-5, 7), (20, -3)])
def test_divide_shift_round_trip(left, right):
    op = Divide(operand(left), operand(right))
    op.determine_exponent()
    power = (left - MSB + MSB // 2) - (right - MSB + MSB // 2)
    assert op.exponent == power + MSB - MSB // 2
    assert op.center == MSB // 2
    op.exponent_next = op.exponent
    s = op.shift()
    # (a << s) / b is raw at left - right - s + MSB.
    assert left - right - s + MSB == op.exponent


def test_divide_shift_targets_exponent_next():
    op = Divide(operand(10), operand(4))
    op.determine_exponent()
    op.exponent_next = op.exponent - 3
    assert op.shift() == 10 - 4 - (op.exponent - 3) + MSB


def test_add_aligns_to_wider_operand():
    op = Add(operand(2), operand(6))
    op.determine_exponent()
    assert op.exponent == 6


def test_unknown_operand_leaves_exponent_unknown():
    op = Multiply(operand(3), AccessVariable("w"))
    op.determine_exponent()
    assert op.exponent is None


def test_exponent_for_magnitude():
    assert exponent_for_magnitude(1.0) == MSB - MSB // 2
    assert exponent_for_magnitude(1000.0) == 9 + MSB - MSB // 2


# --- Resolution pass ---

def test_euler_model_resolves_every_exponent(analyze, euler_document):
    root, table = analyze(euler_document, INT_CONFIG)
    for v in root.all_variables():
        if not v.has(Attribute.PREEXISTENT):
            assert v.exponent is not None, v.fqn
    a = root.find_part("A")
    assert a.find("x").exponent == 0
    assert a.find("$n").exponent == MSB
    assert a.find("$n").center == 0
    assert root.find("$t'").exponent == -14


def test_time_exponent_covers_duration(analyze, euler_document):
    config = CompileConfig(numeric_type=NumericType.INT, duration=10.0)
    root, table = analyze(euler_document, config)
    assert root.find("$t").exponent == 4


def test_magnitude_hint_fixes_scale(analyze):
    document = {
        "name": "Model",
        "parts": [{"name": "A", "variables": {"v": {"equations": ["v * 2"], "magnitude": 100}}}],
    }
    root, table = analyze(document, INT_CONFIG)
    assert root.find_part("A").find("v").exponent == exponent_for_magnitude(100)


def test_sweep_cap_raises(build_model, euler_document):
    from simgen_core.analysis import ReferenceResolver, StructureAnalyzer

    root = build_model(euler_document)
    ReferenceResolver().resolve(root)
    StructureAnalyzer().analyze(root)
    with pytest.raises(ExponentConvergenceError) as excinfo:
        ExponentResolver(duration=1.0, max_iterations=1).resolve(root)
    assert excinfo.value.iterations == 1


# --- Self-referencing state ---

def decaying_part(equations, extra=None):
    variables = {"$n": 5, "x": equations}
    variables.update(extra or {})
    return {"name": "Model", "parts": [{"name": "A", "variables": variables}]}


@pytest.mark.parametrize("recurrence", ["x * 0.9", "x / 2", "x + 0.5"])
def test_recurrence_keeps_initial_scale(analyze, recurrence):
    root, table = analyze(decaying_part(["1 @ $init", recurrence]), INT_CONFIG)
    x = root.find_part("A").find("x")
    assert (x.exponent, x.center) == (0, MSB)
    update = x.equations[1].expression
    assert update.exponent_next == x.exponent


def test_recurrence_without_initial_value_uses_default_scale(analyze):
    root, table = analyze(decaying_part(["x * 0.9"]), INT_CONFIG)
    x = root.find_part("A").find("x")
    assert (x.exponent, x.center) == (MSB - MSB // 2, MSB // 2)


def test_recurrence_through_temporary(analyze):
    document = decaying_part(
        ["1 @ $init", "leak"],
        {"leak": {"equations": ["x * 0.9"], "temporary": True}},
    )
    root, table = analyze(document, INT_CONFIG)
    x = root.find_part("A").find("x")
    assert (x.exponent, x.center) == (0, MSB)


def test_leaky_integrator_generates_fixed_point_source(generate):
    source = generate(decaying_part(["1 @ $init", "x * 0.9"]), INT_CONFIG)
    assert "void Model_A::update ()" in source
