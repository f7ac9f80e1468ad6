# src/simgen_core/analysis/exponents.py
"""
Fifth analysis pass (fixed point only): binary exponents for every value.

A raw 32-bit integer r at exponent e stands for r * 2**(e - MSB). The pass
runs in three stages:

1.  Seed the values whose scale is known up front: the integer specials, `$t`
    and `$t'`, magnitude hints and variables with no equations.
2.  Sweep every expression bottom-up (`determine_exponent`) and move each
    variable to the widest exponent among the expressions that write it, until
    a sweep changes nothing. The sweep count is capped.
3.  Push each consumer's exponent down into its operands
    (`determine_exponent_next`) so the renderer knows which shift to emit.
"""
import logging
import math
from typing import Dict, Iterator, List, Optional, Set

from ..constants import MAX_EXPONENT_ITERATIONS, MSB, UNKNOWN
from ..eqset import Attribute, EquationSet, StorageKind, Variable
from ..eqset.operators import AccessVariable, Operator
from .exceptions import ExponentConvergenceError

logger = logging.getLogger(__name__)

#: Specials that always hold small integers.
INTEGER_SPECIALS = frozenset({"$index", "$n", "$type", "$init", "$connect", "$live"})


def exponent_for_magnitude(magnitude: float) -> int:
    """Exponent that puts `magnitude` at the default center bit."""
    return math.floor(math.log2(abs(magnitude))) + MSB - MSB // 2


class ExponentResolver:
    """
    Assigns `exponent` and `center` to every variable and operator in the tree.
    """

    def __init__(self, duration: float, max_iterations: int = MAX_EXPONENT_ITERATIONS):
        self.duration = duration
        self.max_iterations = max_iterations
        self._fixed: set = set()

    def resolve(self, root: EquationSet) -> EquationSet:
        logger.info(f"Resolving fixed-point exponents for model '{root.name}'.")
        writers = self._find_writers(root)
        self._seed(root)
        self._iterate(root, writers)
        self._check_known(root)
        self._push_down(root)
        dt = root.find("$t'")
        logger.debug(f"Time step exponent: {dt.exponent if dt else UNKNOWN}")
        return root

    # --- Seeding ---

    @staticmethod
    def _set(v: Variable, exponent: int, center: int) -> bool:
        center = max(0, min(MSB, center))
        changed = v.exponent != exponent or v.center != center
        v.exponent = exponent
        v.center = center
        return changed

    def _seed(self, root: EquationSet) -> None:
        for v in root.all_variables():
            if v.value_type.kind is StorageKind.TEXT:
                self._fixed.add(v)
            elif v.name in INTEGER_SPECIALS:
                self._set(v, MSB, 0)
                self._fixed.add(v)
            elif v.name == "$t" and v.order == 0:
                self._set(v, math.floor(math.log2(self.duration)) + 1, MSB)
                self._fixed.add(v)
            elif v.magnitude is not None:
                self._set(v, exponent_for_magnitude(v.magnitude), MSB // 2)
                self._fixed.add(v)
            elif not v.equations:
                self._set(v, MSB - MSB // 2, MSB // 2)

    @staticmethod
    def _find_writers(root: EquationSet) -> Dict[Variable, List[Variable]]:
        writers: Dict[Variable, List[Variable]] = {}
        for v in root.all_variables():
            if v.has(Attribute.REFERENCE):
                writers.setdefault(v.reference.variable, []).append(v)
        return writers

    # --- Bottom-up sweep ---

    @staticmethod
    def _expressions(v: Variable) -> Iterator[Operator]:
        for entry in v.equations:
            yield entry.expression
            if entry.condition is not None:
                yield entry.condition

    @staticmethod
    def _matrix_mappings(s: EquationSet) -> Iterator[Operator]:
        matrix = s.connection_matrix
        if matrix is None:
            return
        for mapping in (matrix.row_mapping, matrix.col_mapping):
            if mapping is not None:
                yield mapping

    def _iterate(self, root: EquationSet, writers: Dict[Variable, List[Variable]]) -> None:
        changed_variables: List[Variable] = []
        for iteration in range(1, self.max_iterations + 1):
            changed_variables = []
            for s in root.walk_top_down():
                for mapping in self._matrix_mappings(s):
                    mapping.determine_exponent()
                for v in s.variables:
                    for expression in self._expressions(v):
                        expression.determine_exponent()
            for v in root.all_variables():
                if v in self._fixed:
                    continue
                candidates = [e.expression for e in v.equations]
                for writer in writers.get(v, ()):
                    candidates.extend(e.expression for e in writer.equations)
                if self._absorb(v, candidates):
                    changed_variables.append(v)
            if not changed_variables:
                logger.debug(f"Exponents settled after {iteration} sweep(s).")
                return
        raise ExponentConvergenceError(
            variables=tuple(v.fqn for v in changed_variables),
            iterations=self.max_iterations,
        )

    def _absorb(self, v: Variable, candidates: List[Operator]) -> bool:
        # A read of v's own storage follows v's scale, so it must not set it.
        grounded = [op for op in candidates if not self._reads(op, v, set())]
        if not grounded:
            if v.exponent is UNKNOWN:
                return self._set(v, MSB - MSB // 2, MSB // 2)
            return False
        known = [op for op in grounded if op.exponent is not UNKNOWN]
        if not known:
            return False
        widest = max(known, key=lambda op: (op.exponent, op.center))
        return self._set(v, widest.exponent, widest.center)

    @staticmethod
    def _reads(expression: Operator, v: Variable, seen: Set[Variable]) -> bool:
        """True if expression reads v, directly or through temporaries."""
        for op in expression.nodes():
            if not isinstance(op, AccessVariable) or op.variable is None:
                continue
            read = op.variable
            if read is v:
                return True
            if read.has(Attribute.TEMPORARY) and read not in seen:
                seen.add(read)
                if any(ExponentResolver._reads(e.expression, v, seen) for e in read.equations):
                    return True
        return False

    def _check_known(self, root: EquationSet) -> None:
        unknown = tuple(
            v.fqn for v in root.all_variables()
            if v.exponent is UNKNOWN and not v.has(Attribute.PREEXISTENT)
        )
        if unknown:
            raise ExponentConvergenceError(variables=unknown, iterations=self.max_iterations)

    # --- Top-down pass ---

    @staticmethod
    def _push_down(root: EquationSet) -> None:
        for s in root.walk_top_down():
            for mapping in ExponentResolver._matrix_mappings(s):
                mapping.exponent_next = MSB
                mapping.determine_exponent_next()
            for v in s.variables:
                storage: Optional[Variable] = v.reference.variable if v.has(Attribute.REFERENCE) else v
                for entry in v.equations:
                    entry.expression.exponent_next = storage.exponent
                    entry.expression.determine_exponent_next()
                    if entry.condition is not None:
                        entry.condition.exponent_next = entry.condition.exponent
                        entry.condition.determine_exponent_next()
