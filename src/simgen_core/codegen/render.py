# src/simgen_core/codegen/render.py
"""
Expression rendering: operator trees to C++ expression text.

`ExpressionRenderer` visits the tree with one `render_<NodeType>` method per
operator class. In fixed-point mode every value is a raw `int` at the exponent
chosen by the exponent pass, and the renderer inserts the shifts that move a
value from the exponent it is produced at to the exponent its consumer expects.

Variable reads are resolved against a `RenderContext`: the equation set being
emitted, whether the code lives in the population class (global) or the
instance class (local), and the phase the code runs in.
"""
import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from ..analysis.planner import BackendData, PlanTable, is_buffered
from ..config import CompileConfig
from ..constants import MSB, UNKNOWN
from ..eqset import Assignment, Attribute, EquationSet, StepKind, StorageKind, Variable, VariableReference
from ..eqset.operators import (
    PREC_UNARY, SCALE_PRESERVING, AccessVariable, Add, Constant, Divide, Event, Function, Input, Modulo, Multiply,
    Negate, Operator, Output, Power, ReadMatrix, Split, Subtract,
)
from . import naming
from .exceptions import UnknownStorageTypeError, UnrenderableExpressionError

if TYPE_CHECKING:
    from .statics import StaticObjects

logger = logging.getLogger(__name__)


class Phase(Enum):
    """Which generated method the code runs in. Decides the value of `$init` and `$connect`."""
    INIT = "init"
    CONNECT = "connect"
    UPDATE = "update"


# Nodes whose rendered value already sits at their exponent_next.
_AT_NEXT = (Constant, Multiply, Divide, Add, Subtract, Modulo, Negate, Output)

# Right operands that need parentheses at equal precedence.
_NON_ASSOCIATIVE = (Subtract, Divide, Modulo)


@dataclass(frozen=True)
class RenderContext:
    s: EquationSet
    table: PlanTable
    config: CompileConfig
    statics: "StaticObjects"
    global_: bool = False
    phase: Phase = Phase.UPDATE
    buffered: bool = True

    @property
    def bed(self) -> BackendData:
        return self.table[self.s]

    @property
    def T(self) -> str:
        return self.config.T

    def derive(self, **changes) -> "RenderContext":
        return replace(self, **changes)


# --- Numbers and storage ---

def format_number(value: float) -> str:
    if math.isinf(value):
        return "INFINITY" if value > 0 else "-INFINITY"
    if value == int(value) and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def fixed_literal(value: float, exponent: Optional[int]) -> str:
    """Raw integer standing for `value` at `exponent`."""
    if math.isinf(value):
        return "INT_MAX" if value > 0 else "INT_MIN"
    if exponent is UNKNOWN:
        exponent = MSB
    return str(int(round(value * 2.0 ** (MSB - exponent))))


def shift(text: str, amount: int) -> str:
    """Moves a raw value left by `amount` bits (right for negative amounts)."""
    if amount == 0:
        return text
    return f"({text}{shift_suffix(amount)})"


def shift_suffix(amount: int) -> str:
    if amount > 0:
        return f" << {amount}"
    if amount < 0:
        return f" >> {-amount}"
    return ""


def storage_type(v: Variable, config: CompileConfig) -> str:
    if v.name == "$type":
        return "int"
    kind = v.value_type.kind
    if kind is StorageKind.SCALAR:
        return config.T
    if kind is StorageKind.MATRIX:
        return f"MatrixFixed<{config.T},{v.value_type.rows},{v.value_type.cols}>"
    if kind is StorageKind.TEXT:
        return "String"
    raise UnknownStorageTypeError(fqn=v.fqn, kind=kind.value)


def zero(v: Variable, name: str) -> str:
    """Statement that clears storage of v's kind."""
    kind = v.value_type.kind
    if kind is StorageKind.SCALAR:
        return f"{name} = 0;"
    if kind is StorageKind.MATRIX:
        return f"::clear ({name});"
    if kind is StorageKind.TEXT:
        return f"{name}.clear ();"
    raise UnknownStorageTypeError(fqn=v.fqn, kind=kind.value)


def clear_accumulator(v: Variable, name: str, config: CompileConfig) -> str:
    """Statement that resets a buffered slot to the identity of v's assignment."""
    assignment = v.assignment
    if assignment in (Assignment.REPLACE, Assignment.ADD):
        return zero(v, name)
    identity = assignment.identity
    if config.fixed_point:
        value = fixed_literal(identity, v.exponent)
    else:
        value = format_number(identity)
    if v.value_type.kind is StorageKind.MATRIX:
        return f"::clear ({name}, {value});"
    if v.value_type.kind is StorageKind.SCALAR:
        return f"{name} = {value};"
    raise UnknownStorageTypeError(fqn=v.fqn, kind=v.value_type.kind.value)


def flag_test(flag_type: str, bit: int, flags: str = "flags") -> str:
    return f"(({flags} & ({flag_type}) 0x1 << {bit}) ? 1 : 0)"


class ExpressionRenderer:
    """Renders operator trees in one RenderContext."""

    def __init__(self, ctx: RenderContext):
        self.ctx = ctx
        self.fixed = ctx.config.fixed_point

    # --- Dispatch ---

    def render(self, op: Operator) -> str:
        method = getattr(self, "render_" + type(op).__name__, None)
        if method is None:
            raise UnrenderableExpressionError(
                fqn=self.ctx.s.fqn, details=f"No C++ rendering for '{type(op).__name__}'."
            )
        return method(op)

    def render_operand(self, op: Operator) -> str:
        """Renders op at the exponent its consumer expects (fixed point), else plainly."""
        text = self.render(op)
        if not self.fixed or op.exponent is UNKNOWN or op.exponent_next is UNKNOWN:
            return text
        if isinstance(op, _AT_NEXT) or (isinstance(op, Function) and op.name in SCALE_PRESERVING):
            return text
        return shift(text, op.exponent - op.exponent_next)

    def _child(self, op: Operator, parent: Operator, right: bool = False, precedence: Optional[int] = None) -> str:
        text = self.render_operand(op)
        limit = parent.precedence if precedence is None else precedence
        if op.precedence < limit or (right and op.precedence == limit and isinstance(parent, _NON_ASSOCIATIVE)):
            return f"({text})"
        return text

    # --- Leaves ---

    def render_Constant(self, op: Constant) -> str:
        if op.is_text:
            escaped = op.value.replace("\\", "\\\\").replace('"', '\\"')
            return f'"{escaped}"'
        if op.is_matrix:
            return self.ctx.statics.name_of(op)
        if self.fixed:
            exponent = op.exponent_next if op.exponent_next is not UNKNOWN else op.exponent
            return fixed_literal(op.value, exponent)
        return format_number(op.value)

    def render_AccessVariable(self, op: AccessVariable) -> str:
        if op.reference is None:
            raise UnrenderableExpressionError(fqn=self.ctx.s.fqn, details=f"'{op.name}' was never resolved.")
        return self.resolve(op.reference)

    # --- Arithmetic ---

    def _binary(self, op) -> str:
        left = self._child(op.left, op)
        right = self._child(op.right, op, right=True)
        return f"{left} {op.symbol} {right}"

    render_Add = _binary
    render_Subtract = _binary
    render_EQ = _binary
    render_NE = _binary
    render_LT = _binary
    render_LE = _binary
    render_GT = _binary
    render_GE = _binary
    render_AND = _binary
    render_OR = _binary

    def render_Modulo(self, op: Modulo) -> str:
        if self.fixed:
            return self._binary(op)
        return f"fmod ({self.render_operand(op.left)}, {self.render_operand(op.right)})"

    def render_Multiply(self, op: Multiply) -> str:
        if not self.fixed:
            return self._binary(op)
        left = self._child(op.left, op, precedence=PREC_UNARY)
        right = self._child(op.right, op, right=True)
        return f"(int) ((int64_t) {left} * {right}{shift_suffix(-op.shift())})"

    def render_Divide(self, op: Divide) -> str:
        if not self.fixed:
            return self._binary(op)
        left = self._child(op.left, op, precedence=PREC_UNARY)
        right = self._child(op.right, op, right=True)
        numerator = shift(f"(int64_t) {left}", op.shift())
        return f"(int) ({numerator} / {right})"

    def render_Power(self, op: Power) -> str:
        if self.fixed:
            return (
                f"pow ({self.render_operand(op.left)}, {self.render_operand(op.right)}, "
                f"{op.left.exponent}, {op.right.exponent}, {op.exponent})"
            )
        return f"pow ({self.render_operand(op.left)}, {self.render_operand(op.right)})"

    def render_Negate(self, op: Negate) -> str:
        return f"-{self._child(op.operand, op)}"

    def render_NOT(self, op) -> str:
        return f"! {self._child(op.operand, op)}"

    # --- Functions ---

    def render_Function(self, op: Function) -> str:
        args = [self.render_operand(a) for a in op.args]
        if op.name in ("uniform", "gaussian"):
            if self.fixed:
                return f"{op.name} ({op.exponent})"
            return f"{op.name}<{self.ctx.T}> ()"
        if op.name in ("min", "max") and not self.fixed:
            args = [f"({self.ctx.T}) {text}" if isinstance(a, Constant) else text for a, text in zip(op.args, args)]
        if self.fixed and op.name not in ("min", "max", "abs"):
            exponents = [str(a.exponent) for a in op.args]
            if op.name not in SCALE_PRESERVING:
                exponents.append(str(op.exponent))
            args.extend(exponents)
        return f"{op.name} ({', '.join(args)})"

    # --- Events and type changes ---

    def render_Event(self, op: Event) -> str:
        if self.ctx.global_ or op.target is None:
            raise UnrenderableExpressionError(
                fqn=self.ctx.s.fqn, details="event() can only be used in per-instance equations."
            )
        return flag_test(self.ctx.bed.local.flag_type, op.target.value_index)

    def render_Split(self, op: Split) -> str:
        return str(op.index)

    # --- I/O ---

    def _handle(self, op, kind: str, helper: str) -> str:
        name = self.ctx.statics.handle_for(op.file, kind)
        if name is not None:
            return name
        return f"{helper}<{self.ctx.T}> ({self.render(op.file)})"

    def render_Output(self, op: Output) -> str:
        handle = self._handle(op, "output", "outputHelper")
        if op.column is not None:
            column = self.render(op.column)
        else:
            column = self.ctx.statics.column_of(op)
        value = self.render_operand(op.value)
        t = f"Simulator<{self.ctx.T}>::instance.currentEvent->t"
        if self.fixed:
            return f"{handle}->trace ({t}, {column}, {value}, {op.value.exponent})"
        return f"{handle}->trace ({t}, {column}, {value})"

    def render_Input(self, op: Input) -> str:
        handle = self._handle(op, "input", "inputHelper")
        args = f"{self.render_operand(op.row)}, {self.render_operand(op.column)}"
        if self.fixed:
            args += f", {op.exponent}"
        return f"{handle}->get ({args})"

    def render_ReadMatrix(self, op: ReadMatrix) -> str:
        handle = self._handle(op, "matrix", "matrixHelper")
        args = f"{self.render_operand(op.row)}, {self.render_operand(op.column)}"
        if self.fixed:
            args += f", {op.exponent}"
        return f"{handle}->get ({args})"

    # --- Variable resolution ---

    def resolve(self, ref: VariableReference, lvalue: bool = False) -> str:
        """C++ expression for the storage (lvalue) or current value of a resolved reference."""
        v = ref.variable
        ctx = self.ctx
        if v.container is not None and v not in v.container.variables:
            return v.name
        if v.name == "$t" and v.order == 0:
            return f"Simulator<{ctx.T}>::instance.currentEvent->t"
        if v.name == "$t" and v.order == 1 and not lvalue and not v.has(Attribute.CONSTANT):
            return "getEvent ()->dt"
        if v.name == "$init":
            return "1" if ctx.phase is Phase.INIT else "0"
        if v.name == "$connect":
            return "1" if ctx.phase is Phase.CONNECT else "0"
        if not lvalue and v.has(Attribute.CONSTANT):
            return self.render(v.equations[0].expression)
        if v.name == "$live":
            if ref.resolution:
                return self.container_path(ref.resolution, v) + "getLive ()"
            if ctx.global_:
                raise UnrenderableExpressionError(fqn=ctx.s.fqn, details="$live read from a population variable.")
            return flag_test(ctx.bed.local.flag_type, ctx.bed.live_bit)
        if v.name == "$index":
            if ctx.table[v.container].singleton:
                return "0"
            return self.container_path(ref.resolution, v) + "__24index"
        if v.has(Attribute.TEMPORARY) and ref.is_local:
            return naming.member(v)
        path = self.container_path(ref.resolution, v)
        if lvalue and self.ctx.buffered and is_buffered(v):
            return path + naming.next_member(v)
        return path + naming.member(v)

    def lvalue(self, v: Variable) -> str:
        """Where an equation of v stores its result. REFERENCE variables store into their remote target."""
        return self.resolve(v.reference, lvalue=True)

    def container_path(self, steps, v: Optional[Variable] = None) -> str:
        """
        Pointer/member chain from the current context to the object holding v.
        Population objects are reached through the instance of their container.
        """
        table = self.ctx.table
        in_population = self.ctx.global_
        current = self.ctx.s
        parts: List[str] = []
        for step in steps:
            if step.kind is StepKind.ASCEND:
                parts.append("container->")
                in_population = False
            elif step.kind is StepKind.DESCEND:
                if in_population:
                    parts.append(self._instance_of(current))
                parts.append(naming.population_member(step.target) + ".")
                in_population = True
            else:
                if in_population:
                    parts.append(self._instance_of(current))
                parts.append(naming.binding_member(step.binding.alias) + "->")
                in_population = False
            current = step.target
        if v is not None and v.has(Attribute.GLOBAL):
            if not in_population:
                parts.append("container->" + naming.population_member(current) + ".")
        elif in_population:
            parts.append(self._instance_of(current))
        return "".join(parts)

    def _instance_of(self, s: EquationSet) -> str:
        if not self.ctx.table[s].singleton:
            raise UnrenderableExpressionError(
                fqn=self.ctx.s.fqn,
                details=f"'{s.fqn}' holds many instances; a population-level value cannot pick one.",
            )
        return "instance."
