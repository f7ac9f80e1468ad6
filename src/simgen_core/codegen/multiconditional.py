# src/simgen_core/codegen/multiconditional.py
"""
Emits the statements that evaluate one variable in one phase.

A variable carries an ordered list of conditional equations. The emitted code
tests the conditions in declaration order and falls back to the default
equation, which depends on the phase: the `$init` equation in init(), the
`$connect` equation when probing a connection, otherwise the last equation
without a condition.
"""
import logging
from typing import List, Optional

from ..constants import MSB
from ..eqset import Assignment, Attribute, EquationEntry, Variable
from .cxx_ast import If, Line, Node
from .render import ExpressionRenderer, Phase, RenderContext, fixed_literal, shift_suffix, storage_type
from . import naming

logger = logging.getLogger(__name__)


def default_equation(v: Variable, phase: Phase) -> Optional[EquationEntry]:
    found = None
    for e in v.equations:
        if phase is Phase.INIT and e.is_init:
            return e
        if phase is Phase.CONNECT and e.is_connect:
            return e
        if e.unconditional:
            found = e
    return found


def can_fire(e: EquationEntry, phase: Phase) -> bool:
    """False for equations whose condition is a phase flag of another phase."""
    if e.unconditional:
        return False
    if phase is Phase.INIT:
        return not e.is_connect
    if phase is Phase.CONNECT:
        return not e.is_init
    return not (e.is_init or e.is_connect)


def temporaries_for(v: Variable) -> List[Variable]:
    """Local temporaries v reads, directly or through other temporaries, in evaluation order."""
    s = v.container
    needed = set()
    pending = list(v.depends)
    while pending:
        d = pending.pop()
        if d in needed or d.container is not s or not d.has(Attribute.TEMPORARY):
            continue
        needed.add(d)
        pending.extend(d.depends)
    return [t for t in s.ordered if t in needed]


def assignment_of(v: Variable, ctx: RenderContext) -> Assignment:
    if ctx.phase is Phase.INIT and not v.has(Attribute.REFERENCE):
        return Assignment.REPLACE
    return v.assignment


def render_equation(e: EquationEntry, renderer: ExpressionRenderer) -> str:
    v = e.variable
    if v.has(Attribute.DUMMY):
        return renderer.render(e.expression) + ";"
    ctx = renderer.ctx
    lhs = renderer.lvalue(v)
    rhs = renderer.render_operand(e.expression)
    assignment = assignment_of(v, ctx)
    fixed = ctx.config.fixed_point
    if assignment is Assignment.ADD:
        return f"{lhs} += {rhs};"
    if assignment is Assignment.MULTIPLY:
        amount = e.expression.exponent_next - MSB
        if fixed and amount != 0:
            return f"{lhs} = (int) ((int64_t) {lhs} * {rhs}{shift_suffix(amount)});"
        return f"{lhs} *= {rhs};"
    if assignment is Assignment.DIVIDE:
        amount = MSB - e.expression.exponent_next
        if fixed and amount != 0:
            return f"{lhs} = (int) (((int64_t) {lhs}{shift_suffix(amount)}) / {rhs});"
        return f"{lhs} /= {rhs};"
    if assignment is Assignment.MIN:
        return f"{lhs} = min ({lhs}, {rhs});"
    if assignment is Assignment.MAX:
        return f"{lhs} = max ({lhs}, {rhs});"
    return f"{lhs} = {rhs};"


def _fallback(v: Variable, renderer: ExpressionRenderer) -> Optional[str]:
    """Statement for a variable none of whose equations fire."""
    ctx = renderer.ctx
    lhs = renderer.lvalue(v)
    if v.name == "$type":
        return f"{lhs} = 0;"
    if v.name == "$p" and ctx.phase is Phase.CONNECT:
        one = fixed_literal(1, v.exponent) if ctx.config.fixed_point else "1"
        return f"{lhs} = {one};"
    if (
        v.assignment is Assignment.REPLACE
        and v.reference.variable is v
        and v.equations
        and v.has_any(Attribute.CYCLE, Attribute.EXTERNAL_READ)
        and not v.has(Attribute.INIT_ONLY)
    ):
        current = renderer.resolve(v.reference)
        if current != lhs:
            return f"{lhs} = {current};"
    return None


def multiconditional(v: Variable, ctx: RenderContext) -> List[Node]:
    """Statements that evaluate v in ctx.phase."""
    renderer = ExpressionRenderer(ctx)
    result: List[Node] = []
    if v.has(Attribute.TEMPORARY):
        result.append(Line(f"{storage_type(v, ctx.config)} {naming.member(v)};"))

    default = default_equation(v, ctx.phase)
    branches = []
    for e in v.equations:
        if e is default or not can_fire(e, ctx.phase):
            continue
        branches.append((renderer.render(e.condition), [Line(render_equation(e, renderer))]))

    if default is not None:
        otherwise = render_equation(default, renderer)
    else:
        otherwise = _fallback(v, renderer)

    if not branches:
        if otherwise is not None:
            result.append(Line(otherwise))
        return result
    result.append(If(branches=branches, otherwise=[Line(otherwise)] if otherwise is not None else None))
    return result


def evaluate_with_temporaries(v: Variable, ctx: RenderContext) -> List[Node]:
    """Evaluates v together with the temporaries it needs. Used by accessors that run outside the cycle."""
    result: List[Node] = []
    for t in temporaries_for(v):
        result.extend(multiconditional(t, ctx))
    if not v.has(Attribute.CONSTANT):
        result.extend(multiconditional(v, ctx))
    return result
