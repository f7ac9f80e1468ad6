# src/simgen_core/eqset/operators.py
"""
Expression tree nodes for equation right-hand sides and conditions.

Each node knows three things about itself:

1.  Structure: `operands` and the recursive-descent `walk`, whose callback returns
    a `Descent` value to stop or continue below the visited node.
2.  Constant folding: `fold()` returns a Python value (float, numpy array or str)
    when the node is a compile-time constant, otherwise None.
3.  Fixed-point scale: `determine_exponent()` (bottom-up) and
    `determine_exponent_next()` (top-down). A raw integer r at exponent e stands
    for r * 2**(e - MSB). `center` is the bit where typical magnitudes sit.

Rendering to C++ lives in `codegen.render`; these classes stay free of any
target-language text.
"""
import logging
import math
from enum import Enum, auto
from typing import Callable, List, Optional, Sequence, Tuple, TYPE_CHECKING

import numpy as np

from ..constants import MSB, UNKNOWN
from .attributes import Attribute

if TYPE_CHECKING:
    from .variable import Variable, VariableReference
    from .equation_set import EquationSet

logger = logging.getLogger(__name__)


class Descent(Enum):
    CONTINUE = auto()
    STOP = auto()


# Binding strength used for parenthesization. Higher binds tighter.
PREC_OR = 3
PREC_AND = 4
PREC_EQUALITY = 8
PREC_RELATIONAL = 9
PREC_ADDITIVE = 11
PREC_MULTIPLICATIVE = 12
PREC_UNARY = 13
PREC_ATOM = 20


class Operator:
    precedence = PREC_ATOM

    def __init__(self):
        self.exponent: Optional[int] = UNKNOWN
        self.center: int = MSB // 2
        self.exponent_next: Optional[int] = UNKNOWN

    @property
    def operands(self) -> Sequence["Operator"]:
        return ()

    def walk(self, visit: Callable[["Operator"], Descent]) -> None:
        if visit(self) is Descent.STOP:
            return
        for op in self.operands:
            op.walk(visit)

    def nodes(self) -> List["Operator"]:
        """All nodes in pre-order."""
        found: List[Operator] = []

        def collect(op):
            found.append(op)
            return Descent.CONTINUE

        self.walk(collect)
        return found

    def fold(self):
        return None

    def is_constant(self) -> bool:
        return self.fold() is not None

    # --- Fixed-point exponents ---

    def center_power(self) -> int:
        return self.exponent - MSB + self.center

    def update_exponent(self, exponent: int, center: int) -> bool:
        center = max(0, min(MSB, center))
        changed = exponent != self.exponent or center != self.center
        self.exponent = exponent
        self.center = center
        return changed

    def set_boolean_exponent(self) -> bool:
        return self.update_exponent(MSB, 0)

    def determine_exponent(self) -> bool:
        changed = False
        for op in self.operands:
            changed |= op.determine_exponent()
        return changed

    def determine_exponent_next(self) -> None:
        for op in self.operands:
            op.exponent_next = op.exponent
            op.determine_exponent_next()

    def _operands_known(self) -> bool:
        return all(op.exponent is not UNKNOWN for op in self.operands)


# --- Leaves ---

class Constant(Operator):
    def __init__(self, value):
        super().__init__()
        if isinstance(value, (list, tuple)):
            value = np.array(value, dtype=float)
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            value = float(value)
        self.value = value

    def fold(self):
        return self.value

    @property
    def is_scalar(self) -> bool:
        return isinstance(self.value, float)

    @property
    def is_text(self) -> bool:
        return isinstance(self.value, str)

    @property
    def is_matrix(self) -> bool:
        return isinstance(self.value, np.ndarray)

    def determine_exponent(self) -> bool:
        if self.is_text:
            return False
        magnitude = float(np.max(np.abs(self.value))) if self.is_matrix else abs(self.value)
        if magnitude == 0 or not math.isfinite(magnitude):
            return self.update_exponent(MSB - MSB // 2, MSB // 2)
        return self.update_exponent(math.floor(math.log2(magnitude)), MSB)

    def __repr__(self):
        return f"Constant({self.value!r})"


class AccessVariable(Operator):
    """A read of a variable by name. `reference` is filled in by the resolver."""

    def __init__(self, name: str):
        super().__init__()
        self.name = name
        self.reference: Optional["VariableReference"] = None

    @property
    def variable(self) -> Optional["Variable"]:
        return self.reference.variable if self.reference else None

    def fold(self):
        v = self.variable
        if v is None or not v.attributes.has(Attribute.CONSTANT) or not v.equations:
            return None
        return v.equations[0].expression.fold()

    def determine_exponent(self) -> bool:
        v = self.variable
        if v is None or v.exponent is UNKNOWN:
            return False
        return self.update_exponent(v.exponent, v.center)

    def __repr__(self):
        return f"AccessVariable({self.name!r})"


# --- Operators with operands ---

class BinaryOperator(Operator):
    symbol = "?"

    def __init__(self, left: Operator, right: Operator):
        super().__init__()
        self.left = left
        self.right = right

    @property
    def operands(self) -> Tuple[Operator, Operator]:
        return (self.left, self.right)

    def combine(self, a, b):
        raise NotImplementedError

    def fold(self):
        a = self.left.fold()
        b = self.right.fold()
        if a is None or b is None or isinstance(a, str) or isinstance(b, str):
            return None
        try:
            result = self.combine(a, b)
        except (ArithmeticError, ValueError):
            return None
        if isinstance(result, (bool, np.bool_)):
            return 1.0 if result else 0.0
        if isinstance(result, (int, float, np.floating)):
            return float(result)
        return result

    def __repr__(self):
        return f"{type(self).__name__}({self.left!r}, {self.right!r})"


class _AlignedOperator(BinaryOperator):
    """Operands are brought to a common scale before combining (+, -, %)."""

    def determine_exponent(self) -> bool:
        changed = super().determine_exponent()
        known = [op for op in self.operands if op.exponent is not UNKNOWN and not is_zero(op)]
        if len(known) < len(self.operands):
            zeros = [op for op in self.operands if is_zero(op)]
            if not known or len(known) + len(zeros) < len(self.operands):
                return changed
        widest = max(known, key=lambda op: op.center_power())
        exponent = max(op.exponent for op in known)
        center = widest.center_power() - exponent + MSB
        return self.update_exponent(exponent, center) or changed

    def determine_exponent_next(self) -> None:
        for op in self.operands:
            op.exponent_next = self.exponent_next if self.exponent_next is not UNKNOWN else self.exponent
            op.determine_exponent_next()


class Add(_AlignedOperator):
    symbol = "+"
    precedence = PREC_ADDITIVE

    def combine(self, a, b):
        return a + b


class Subtract(_AlignedOperator):
    symbol = "-"
    precedence = PREC_ADDITIVE

    def combine(self, a, b):
        return a - b


class Modulo(_AlignedOperator):
    symbol = "%"
    precedence = PREC_MULTIPLICATIVE

    def combine(self, a, b):
        return math.fmod(a, b)


class Multiply(BinaryOperator):
    symbol = "*"
    precedence = PREC_MULTIPLICATIVE

    def combine(self, a, b):
        if isinstance(a, np.ndarray) and isinstance(b, np.ndarray):
            return a @ b
        return a * b

    def determine_exponent(self) -> bool:
        changed = super().determine_exponent()
        if not self._operands_known():
            return changed
        power = self.left.center_power() + self.right.center_power()
        center = MSB // 2
        return self.update_exponent(power + MSB - center, center) or changed

    def shift(self) -> int:
        """Right-shift applied to the raw 64-bit product to land on exponent_next."""
        target = self.exponent_next if self.exponent_next is not UNKNOWN else self.exponent
        return target + MSB - self.left.exponent - self.right.exponent


class Divide(BinaryOperator):
    symbol = "/"
    precedence = PREC_MULTIPLICATIVE

    def combine(self, a, b):
        return a / b

    def determine_exponent(self) -> bool:
        changed = super().determine_exponent()
        if not self._operands_known():
            return changed
        center = MSB // 2
        power = self.left.center_power() - self.right.center_power()
        return self.update_exponent(power + MSB - center, center) or changed

    def shift(self) -> int:
        """Left-shift applied to the numerator before dividing, to land on exponent_next."""
        target = self.exponent_next if self.exponent_next is not UNKNOWN else self.exponent
        return self.left.exponent - self.right.exponent - target + MSB


class Power(BinaryOperator):
    symbol = "^"
    precedence = PREC_ATOM

    def combine(self, a, b):
        return a ** b

    def determine_exponent(self) -> bool:
        changed = super().determine_exponent()
        if not self._operands_known():
            return changed
        b = self.right.fold()
        if b is not None and not isinstance(b, (str, np.ndarray)):
            power = round(self.left.center_power() * b)
        else:
            power = self.left.center_power()
        center = MSB // 2
        return self.update_exponent(power + MSB - center, center) or changed


class _Comparison(BinaryOperator):

    def determine_exponent(self) -> bool:
        changed = super().determine_exponent()
        return self.set_boolean_exponent() or changed

    def determine_exponent_next(self) -> None:
        exponents = [op.exponent for op in self.operands if op.exponent is not UNKNOWN]
        common = max(exponents) if exponents else UNKNOWN
        for op in self.operands:
            op.exponent_next = common
            op.determine_exponent_next()


class EQ(_Comparison):
    symbol = "=="
    precedence = PREC_EQUALITY

    def combine(self, a, b):
        return a == b


class NE(_Comparison):
    symbol = "!="
    precedence = PREC_EQUALITY

    def combine(self, a, b):
        return a != b


class LT(_Comparison):
    symbol = "<"
    precedence = PREC_RELATIONAL

    def combine(self, a, b):
        return a < b


class LE(_Comparison):
    symbol = "<="
    precedence = PREC_RELATIONAL

    def combine(self, a, b):
        return a <= b


class GT(_Comparison):
    symbol = ">"
    precedence = PREC_RELATIONAL

    def combine(self, a, b):
        return a > b


class GE(_Comparison):
    symbol = ">="
    precedence = PREC_RELATIONAL

    def combine(self, a, b):
        return a >= b


class _Logical(BinaryOperator):

    def determine_exponent(self) -> bool:
        changed = super().determine_exponent()
        return self.set_boolean_exponent() or changed


class AND(_Logical):
    symbol = "&&"
    precedence = PREC_AND

    def combine(self, a, b):
        return bool(a) and bool(b)


class OR(_Logical):
    symbol = "||"
    precedence = PREC_OR

    def combine(self, a, b):
        return bool(a) or bool(b)


class UnaryOperator(Operator):
    symbol = "?"
    precedence = PREC_UNARY

    def __init__(self, operand: Operator):
        super().__init__()
        self.operand = operand

    @property
    def operands(self) -> Tuple[Operator]:
        return (self.operand,)

    def __repr__(self):
        return f"{type(self).__name__}({self.operand!r})"


class Negate(UnaryOperator):
    symbol = "-"

    def fold(self):
        a = self.operand.fold()
        if a is None or isinstance(a, str):
            return None
        return -a

    def determine_exponent(self) -> bool:
        changed = super().determine_exponent()
        if self.operand.exponent is UNKNOWN:
            return changed
        return self.update_exponent(self.operand.exponent, self.operand.center) or changed

    def determine_exponent_next(self) -> None:
        self.operand.exponent_next = self.exponent_next if self.exponent_next is not UNKNOWN else self.exponent
        self.operand.determine_exponent_next()


class NOT(UnaryOperator):
    symbol = "!"

    def fold(self):
        a = self.operand.fold()
        if a is None or isinstance(a, (str, np.ndarray)):
            return None
        return 0.0 if a else 1.0

    def determine_exponent(self) -> bool:
        changed = super().determine_exponent()
        return self.set_boolean_exponent() or changed


# --- Function calls ---

_FOLDABLE = {
    "exp": math.exp, "log": math.log, "sqrt": math.sqrt,
    "sin": math.sin, "cos": math.cos, "tan": math.tan,
    "abs": abs, "floor": math.floor, "ceil": math.ceil,
    "round": lambda x: math.floor(x + 0.5),
    "pow": math.pow, "min": min, "max": max,
}

#: Functions whose result lies on the same scale as their operands.
SCALE_PRESERVING = frozenset({"abs", "floor", "ceil", "round", "min", "max"})

#: Functions implemented as random draws. Never constant.
RANDOM = frozenset({"uniform", "gaussian"})

KNOWN_FUNCTIONS = frozenset(_FOLDABLE) | RANDOM


class Function(Operator):
    def __init__(self, name: str, args: Sequence[Operator] = ()):
        super().__init__()
        self.name = name
        self.args: List[Operator] = list(args)

    @property
    def operands(self) -> Sequence[Operator]:
        return self.args

    def fold(self):
        if self.name not in _FOLDABLE:
            return None
        values = [a.fold() for a in self.args]
        if any(v is None or isinstance(v, (str, np.ndarray)) for v in values):
            return None
        try:
            return float(_FOLDABLE[self.name](*values))
        except (ArithmeticError, ValueError, TypeError):
            return None

    def determine_exponent(self) -> bool:
        changed = super().determine_exponent()
        if self.name == "uniform":
            return self.update_exponent(0, MSB) or changed
        if self.name == "gaussian":
            return self.update_exponent(3, MSB) or changed
        if not self.args or not self._operands_known():
            return changed
        if self.name in ("min", "max"):
            exponent = max(a.exponent for a in self.args)
            center = max(a.center for a in self.args)
            return self.update_exponent(exponent, center) or changed
        # Average the operand scales.
        exponent = sum(a.exponent for a in self.args) // len(self.args)
        center = sum(a.center for a in self.args) // len(self.args)
        return self.update_exponent(exponent, center) or changed

    def determine_exponent_next(self) -> None:
        target = self.exponent_next if self.exponent_next is not UNKNOWN else self.exponent
        for a in self.args:
            a.exponent_next = target if self.name in SCALE_PRESERVING else a.exponent
            a.determine_exponent_next()

    def __repr__(self):
        return f"Function({self.name!r}, {self.args!r})"


class EdgeKind(Enum):
    RISE = "rise"
    FALL = "fall"
    CHANGE = "change"
    NONZERO = "nonzero"


class Event(Operator):
    """
    event(condition[, delay[, edge]]). Evaluates to the latched trigger flag of
    its EventTarget, which the event analysis attaches as `target`.
    """

    def __init__(self, condition: Operator, delay: Optional[Operator] = None, edge: EdgeKind = EdgeKind.RISE):
        super().__init__()
        self.condition = condition
        self.delay = delay
        self.edge = edge
        self.target = None

    @property
    def operands(self) -> Sequence[Operator]:
        if self.delay is None:
            return (self.condition,)
        return (self.condition, self.delay)

    def determine_exponent(self) -> bool:
        changed = super().determine_exponent()
        return self.set_boolean_exponent() or changed

    def __repr__(self):
        return f"Event({self.condition!r}, {self.delay!r}, {self.edge.value})"


class Split(Operator):
    """split(A, B, ...): target part types for a $type change."""

    def __init__(self, names: Sequence[str]):
        super().__init__()
        self.names: List[str] = list(names)
        self.parts: List["EquationSet"] = []
        self.index: int = -1

    def determine_exponent(self) -> bool:
        return self.update_exponent(MSB, 0)

    def __repr__(self):
        return f"Split({self.names!r})"


class Output(Operator):
    """output(file, value[, column]). Writes a trace and evaluates to value."""

    def __init__(self, file: Operator, value: Operator, column: Optional[Operator] = None):
        super().__init__()
        self.file = file
        self.value = value
        self.column = column

    @property
    def operands(self) -> Sequence[Operator]:
        ops = [self.file, self.value]
        if self.column is not None:
            ops.append(self.column)
        return ops

    def determine_exponent(self) -> bool:
        changed = super().determine_exponent()
        if self.value.exponent is UNKNOWN:
            return changed
        return self.update_exponent(self.value.exponent, self.value.center) or changed

    def determine_exponent_next(self) -> None:
        self.value.exponent_next = self.exponent_next if self.exponent_next is not UNKNOWN else self.exponent
        self.value.determine_exponent_next()


class Input(Operator):
    """input(file, row, column). Reads a value from a tabular input file."""

    def __init__(self, file: Operator, row: Operator, column: Operator):
        super().__init__()
        self.file = file
        self.row = row
        self.column = column

    @property
    def operands(self) -> Sequence[Operator]:
        return (self.file, self.row, self.column)

    def determine_exponent(self) -> bool:
        changed = super().determine_exponent()
        return self.update_exponent(MSB - MSB // 2, MSB // 2) or changed


class ReadMatrix(Operator):
    """matrix(file, row, column). Reads an element of a matrix file."""

    def __init__(self, file: Operator, row: Operator, column: Operator):
        super().__init__()
        self.file = file
        self.row = row
        self.column = column

    @property
    def operands(self) -> Sequence[Operator]:
        return (self.file, self.row, self.column)

    def determine_exponent(self) -> bool:
        changed = super().determine_exponent()
        return self.update_exponent(MSB - MSB // 2, MSB // 2) or changed


def contains(expression: Operator, kind: type) -> bool:
    """True if any node under expression (inclusive) is an instance of kind."""
    found = False

    def look(op):
        nonlocal found
        if isinstance(op, kind):
            found = True
            return Descent.STOP
        return Descent.CONTINUE

    expression.walk(look)
    return found


def is_zero(op: Operator) -> bool:
    value = op.fold()
    return isinstance(value, float) and value == 0
