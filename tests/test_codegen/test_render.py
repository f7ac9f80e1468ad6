# tests/test_codegen/test_render.py
"""Unit tests for identifiers, numeric literals, accumulator resets and the C++ printer."""
import math

import pytest

from simgen_core.codegen import CxxPrinter, TranslationUnit, UnknownStorageTypeError
from simgen_core.codegen.cxx_ast import ClassDecl, Field, Function, If, Line, Switch
from simgen_core.codegen.naming import (
    class_name,
    mangle,
    member,
    next_member,
    population_class,
    population_member,
)
from simgen_core.codegen.render import clear_accumulator, fixed_literal, format_number, shift_suffix
from simgen_core.config import CompileConfig
from simgen_core.constants import MSB, NumericType
from simgen_core.eqset import Assignment, EquationSet, StorageKind, ValueType, Variable

FLOAT = CompileConfig()
INT = CompileConfig(numeric_type=NumericType.INT)


# --- Identifiers ---

@pytest.mark.parametrize("name, mangled", [
    ("x", "_x"),
    ("x'", "_x_27"),
    ("$index", "__24index"),
    ("$p", "__24p"),
    ("A.$k", "_A_2e_24k"),
])
def test_mangle(name, mangled):
    assert mangle(name) == mangled


def test_member_names():
    x = Variable("x")
    dx = Variable("x", 1)
    assert member(dx) == "_x_27"
    assert next_member(x) == "next__x"


def test_class_names_follow_nesting():
    root = EquationSet("Model")
    a = root.add_part(EquationSet("A"))
    b = a.add_part(EquationSet("B"))
    assert class_name(root) == "Model"
    assert class_name(b) == "Model_A_B"
    assert population_class(a) == "Model_A_Population"
    assert population_member(a) == "_A"
    assert class_name(None) == "Wrapper"


# --- Literals ---

@pytest.mark.parametrize("value, text", [
    (5.0, "5"),
    (-2.0, "-2"),
    (0.0001, "0.0001"),
    (math.inf, "INFINITY"),
    (-math.inf, "-INFINITY"),
])
def test_format_number(value, text):
    assert format_number(value) == text


def test_fixed_literal():
    assert fixed_literal(1.0, 0) == str(2 ** MSB)
    assert fixed_literal(0.5, MSB) == "0"
    assert fixed_literal(3.0, MSB) == "3"
    assert fixed_literal(math.inf, 4) == "INT_MAX"


def test_shift_suffix():
    assert shift_suffix(3) == " << 3"
    assert shift_suffix(-44) == " >> 44"
    assert shift_suffix(0) == ""


# --- Accumulator reset ---

def accumulator(assignment, exponent=0, kind=StorageKind.SCALAR):
    v = Variable("I", assignment=assignment, value_type=ValueType(kind, 2, 2))
    v.exponent = exponent
    return v


@pytest.mark.parametrize("assignment, statement", [
    (Assignment.REPLACE, "next__I = 0;"),
    (Assignment.ADD, "next__I = 0;"),
    (Assignment.MULTIPLY, "next__I = 1;"),
    (Assignment.DIVIDE, "next__I = 1;"),
    (Assignment.MIN, "next__I = INFINITY;"),
    (Assignment.MAX, "next__I = -INFINITY;"),
])
def test_clear_accumulator_float(assignment, statement):
    v = accumulator(assignment)
    assert clear_accumulator(v, next_member(v), FLOAT) == statement


@pytest.mark.parametrize("assignment, statement", [
    (Assignment.ADD, "next__I = 0;"),
    (Assignment.MULTIPLY, f"next__I = {2 ** (MSB - 5)};"),
    (Assignment.MIN, "next__I = INT_MAX;"),
    (Assignment.MAX, "next__I = INT_MIN;"),
])
def test_clear_accumulator_fixed_point(assignment, statement):
    v = accumulator(assignment, exponent=5)
    assert clear_accumulator(v, next_member(v), INT) == statement


def test_clear_accumulator_matrix():
    v = accumulator(Assignment.MULTIPLY, kind=StorageKind.MATRIX)
    assert clear_accumulator(v, "next__I", FLOAT) == "::clear (next__I, 1);"
    v = accumulator(Assignment.ADD, kind=StorageKind.MATRIX)
    assert clear_accumulator(v, "next__I", FLOAT) == "::clear (next__I);"


@pytest.mark.parametrize("assignment", [Assignment.MULTIPLY, Assignment.MAX])
def test_text_has_no_numeric_identity(assignment):
    v = accumulator(assignment, kind=StorageKind.TEXT)
    with pytest.raises(UnknownStorageTypeError) as excinfo:
        clear_accumulator(v, "next__I", FLOAT)
    assert excinfo.value.kind == "text"
    assert clear_accumulator(accumulator(Assignment.ADD, kind=StorageKind.TEXT), "next__I", FLOAT) == "next__I.clear ();"


def test_reset_is_idempotent_over_cycles():
    """Every cycle resets to the same identity, whatever the writers accumulated."""
    combine = {
        Assignment.ADD: lambda a, b: a + b,
        Assignment.MULTIPLY: lambda a, b: a * b,
        Assignment.MIN: min,
        Assignment.MAX: max,
    }
    for assignment, op in combine.items():
        v = accumulator(assignment)
        statement = clear_accumulator(v, "next__I", FLOAT)
        slot = assignment.identity
        for cycle in range(5):
            for written in (3.0, -1.5, 7.25):
                slot = op(slot, written)
            assert clear_accumulator(v, "next__I", FLOAT) == statement
            slot = assignment.identity
            assert op(slot, 2.0) == 2.0


# --- Printer ---

def test_printer_layout():
    method = Function("init", "Model_A", body=[
        Line("_x = 1;"),
        If(branches=[("preserve", [Line("a ();")])], otherwise=[Line("b ();")]),
    ])
    ctor = Function("Model_A", "Model_A", return_type="", body=[Line("clear ();")])
    cls = ClassDecl(name="Model_A", base="Part<float>", fields=[Field("float", "_x"), Field("Part<float> *", "p")],
                    methods=[ctor, method])
    text = CxxPrinter().print(TranslationUnit([cls, method]))
    assert text == (
        "class Model_A : public Part<float>\n"
        "{\n"
        "public:\n"
        "  float _x;\n"
        "  Part<float> *p;\n"
        "\n"
        "  Model_A ();\n"
        "  virtual void init ();\n"
        "};\n"
        "void Model_A::init ()\n"
        "{\n"
        "  _x = 1;\n"
        "  if (preserve)\n"
        "  {\n"
        "    a ();\n"
        "  }\n"
        "  else\n"
        "  {\n"
        "    b ();\n"
        "  }\n"
        "}\n"
        "\n"
    )


def test_printer_switch_groups_labels():
    switch = Switch("i", [(["0", "1"], [Line("break;")]), ("default", [Line("return;")])])
    text = CxxPrinter().print(switch)
    assert text == (
        "switch (i)\n"
        "{\n"
        "  case 0:\n"
        "  case 1:\n"
        "  {\n"
        "    break;\n"
        "  }\n"
        "  default:\n"
        "  {\n"
        "    return;\n"
        "  }\n"
        "}\n"
    )
