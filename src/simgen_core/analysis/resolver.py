# src/simgen_core/analysis/resolver.py
"""
First analysis pass: special variables, name resolution and dependency edges.

Every AccessVariable in the tree leaves this pass with a VariableReference that
names the variable holding storage and the hops needed to reach it from the
reading equation set. Reads that cross equation sets mark the target
EXTERNAL_READ; writes through a dotted name ('post.I') turn the writer into a
REFERENCE variable and mark the target EXTERNAL_WRITE.
"""
import logging
from typing import Dict, List, Optional, Tuple

from ..constants import DEFAULT_DT, DEFAULT_DURATION, MSB
from ..eqset import (
    AccountableConnection, Attribute, Descent, EquationEntry, EquationSet, ResolutionStep,
    StepKind, Variable, VariableReference, split_order,
)
from ..eqset.operators import LT, AccessVariable, Constant, Split
from .exceptions import UnresolvedReferenceError, UnsupportedFeatureError

logger = logging.getLogger(__name__)

#: Specials declared on a connection as '<alias>.$k' etc. They are plain local
#: variables of the connection, not remote writes.
CONNECTION_SPECIALS = frozenset({"$k", "$radius", "$min", "$max", "$project"})

#: Phase flags. Rendered as literals depending on the method being emitted.
PHASE_FLAGS = ("$init", "$connect")


def is_connection_special(s: EquationSet, name: str) -> bool:
    head, _, tail = name.partition(".")
    return bool(tail) and tail in CONNECTION_SPECIALS and s.find_binding(head) is not None


class ReferenceResolver:
    """
    Resolves every variable reference in an equation-set tree, in place.
    """

    def __init__(self, duration: float = DEFAULT_DURATION):
        self.duration = duration

    def resolve(self, root: EquationSet) -> EquationSet:
        logger.info(f"Resolving references in model '{root.name}'.")
        for s in root.walk_top_down():
            self._add_specials(s)
        for s in root.walk_top_down():
            self._link_derivatives(s)
        for s in root.walk_top_down():
            self._resolve_bindings(s)
        for s in root.walk_top_down():
            self._resolve_lhs(s)
        for s in root.walk_top_down():
            for v in list(s.variables):
                self._resolve_expressions(s, v)
            self._resolve_matrix(s)
        logger.debug("Reference resolution complete.")
        return root

    # --- Special variables ---

    def _add_specials(self, s: EquationSet) -> None:
        if s.is_root:
            t = self._ensure(s, "$t")
            t.add_attribute(Attribute.GLOBAL, Attribute.PREEXISTENT)
            dt = self._ensure(s, "$t'")
            if not dt.equations:
                dt.add_equation(EquationEntry(Constant(DEFAULT_DT)))
            if s.find("$p") is None:
                p = self._ensure(s, "$p")
                p.add_equation(EquationEntry(LT(AccessVariable("$t"), Constant(self.duration))))
        else:
            if s.find("$t'") is not None:
                raise UnsupportedFeatureError(
                    fqn=s.fqn,
                    details="Only the top-level model may set $t'. Nested time steps are not generated.",
                )
            index = self._ensure(s, "$index")
            index.add_attribute(Attribute.READ_ONLY)
            if not s.is_connection:
                n = self._ensure(s, "$n")
                n.add_attribute(Attribute.GLOBAL)
                if not n.equations:
                    n.add_equation(EquationEntry(Constant(1)))
        self._ensure(s, "$live")
        for name in PHASE_FLAGS:
            self._ensure(s, name).add_attribute(Attribute.PREEXISTENT)
        for v in s.variables:
            if is_connection_special(s, v.name):
                if not v.name.endswith("$project"):
                    v.add_attribute(Attribute.GLOBAL)
                if v.name.endswith(("$min", "$max")):
                    alias = v.name.partition(".")[0]
                    endpoint = s.find_binding(alias).endpoint
                    if not any(a.connection is s and a.alias == alias for a in endpoint.accountable_connections):
                        endpoint.accountable_connections.append(AccountableConnection(s, alias))

    @staticmethod
    def _ensure(s: EquationSet, name: str) -> Variable:
        v = s.find(name)
        if v is None:
            base, order = split_order(name)
            v = s.add_variable(Variable(base, order))
        return v

    @staticmethod
    def _link_derivatives(s: EquationSet) -> None:
        pending = sorted((v for v in s.variables if v.order > 0), key=lambda v: -v.order)
        for v in pending:
            while v.order > 0:
                lower = s.find(v.name + "'" * (v.order - 1))
                if lower is None:
                    lower = s.add_variable(Variable(v.name, v.order - 1, v.assignment, v.value_type))
                    logger.debug(f"Created '{lower.fqn}' as the integral of '{v.fqn}'.")
                lower.derivative = v
                v = lower

    # --- Connections ---

    @staticmethod
    def _resolve_bindings(s: EquationSet) -> None:
        for binding in s.connection_bindings or ():
            binding.endpoint.connected = True
            endpoint_line = [binding.endpoint] + list(binding.endpoint.ancestors())
            steps: List[ResolutionStep] = []
            current = s
            while current not in endpoint_line:
                current = current.container
                steps.append(ResolutionStep(StepKind.ASCEND, current))
            for target in reversed(endpoint_line[:endpoint_line.index(current)]):
                steps.append(ResolutionStep(StepKind.DESCEND, target))
            binding.resolution = steps

    # --- Left-hand sides ---

    def _resolve_lhs(self, s: EquationSet) -> None:
        for v in list(s.variables):
            if "." not in v.name or is_connection_special(s, v.name):
                continue
            found = self._follow(s, v.name.split("."), [], create=v)
            if found is None:
                raise UnresolvedReferenceError(fqn=s.fqn, variable=v.full_name, name=v.full_name)
            target, steps = found
            v.add_attribute(Attribute.REFERENCE)
            v.reference = VariableReference(target, steps)
            target.add_attribute(Attribute.EXTERNAL_WRITE)
            if v.assignment.accumulates and not target.assignment.accumulates:
                target.assignment = v.assignment
            logger.debug(f"'{v.fqn}' writes into '{target.fqn}'.")

    # --- Right-hand sides ---

    def _resolve_expressions(self, s: EquationSet, v: Variable) -> None:
        for entry in v.equations:
            self._resolve_tree(s, v, entry.expression)
            if entry.condition is not None:
                self._resolve_tree(s, v, entry.condition)

    def _resolve_matrix(self, s: EquationSet) -> None:
        if s.connection_matrix is None:
            return
        # Mappings are evaluated inside mapIndex(), where "rc" is the matrix row or column.
        rc = Variable("rc")
        rc.container = s
        rc.add_attribute(Attribute.PREEXISTENT)
        rc.exponent, rc.center = MSB, 0
        for mapping in (s.connection_matrix.row_mapping, s.connection_matrix.col_mapping):
            if mapping is not None:
                self._resolve_tree(s, None, mapping, {"rc": rc})

    def _resolve_tree(self, s: EquationSet, reader: Optional[Variable], expression,
                      parameters: Optional[Dict[str, Variable]] = None) -> None:
        def visit(op):
            if isinstance(op, AccessVariable) and parameters and op.name in parameters:
                op.reference = VariableReference(parameters[op.name])
            elif isinstance(op, AccessVariable):
                self._bind(s, reader, op)
            elif isinstance(op, Split):
                self._bind_split(s, op)
            return Descent.CONTINUE

        expression.walk(visit)

    def _bind(self, s: EquationSet, reader: Optional[Variable], op: AccessVariable) -> None:
        found = self.resolve_name(s, op.name)
        if found is None:
            raise UnresolvedReferenceError(
                fqn=s.fqn,
                variable=reader.full_name if reader else "<connection matrix>",
                name=op.name,
            )
        target, steps = found
        op.reference = VariableReference(target, steps)
        if reader is not None:
            reader.add_dependency(target)
        if steps and not target.has(Attribute.PREEXISTENT):
            if target.name == "$live":
                target.add_attribute(Attribute.ACCESSOR)
            else:
                target.add_attribute(Attribute.EXTERNAL_READ)

    def _bind_split(self, s: EquationSet, op: Split) -> None:
        parts = []
        for name in op.names:
            found = None
            for scope in s.ancestors():
                found = scope.find_part(name)
                if found is not None:
                    break
            if found is None:
                raise UnresolvedReferenceError(fqn=s.fqn, variable="$type", name=name)
            parts.append(found)
        op.parts = parts
        key = tuple(parts)
        if key not in s.splits:
            s.splits.append(key)
        op.index = s.splits.index(key) + 1

    def resolve_name(self, start: EquationSet, name: str) -> Optional[Tuple[Variable, List[ResolutionStep]]]:
        """
        Finds the variable a name refers to, searching the reading set and then
        each enclosing set. Returns (variable, resolution steps) or None.
        """
        steps: List[ResolutionStep] = []
        current = start
        segments = name.split(".")
        while current is not None:
            found = self._follow(current, segments, list(steps))
            if found is not None:
                return found
            if current.container is None:
                return None
            current = current.container
            steps.append(ResolutionStep(StepKind.ASCEND, current))
        return None

    def _follow(self, s: EquationSet, segments: List[str], steps: List[ResolutionStep],
                create: Optional[Variable] = None):
        if len(segments) == 1:
            v = s.find(segments[0])
            if v is None and create is not None and steps:
                base, order = split_order(segments[0])
                v = s.add_variable(Variable(base, order, create.assignment, create.value_type))
                logger.debug(f"Created '{v.fqn}' as the target of '{create.fqn}'.")
            return (v, steps) if v is not None else None

        whole = s.find(".".join(segments))
        if whole is not None and whole is not create:
            return whole, steps

        head, rest = segments[0], segments[1:]
        if head == "$up":
            if s.container is None:
                return None
            step = ResolutionStep(StepKind.ASCEND, s.container)
        elif (binding := s.find_binding(head)) is not None:
            step = ResolutionStep(StepKind.TRAVERSE, binding.endpoint, binding)
        elif (part := s.find_part(head)) is not None:
            step = ResolutionStep(StepKind.DESCEND, part)
        else:
            return None
        return self._follow(step.target, rest, steps + [step], create)
