# src/simgen_core/analysis/lifetime.py
"""
Sixth analysis pass: who keeps whom alive, and the last structural checks.

A part whose survival depends on another part (a connection on its endpoints,
a child on its container) reads that part's `$live` every cycle. The other
part's instance therefore must not be recycled while it is still referenced:
it gets a `refcount` field, and the referencing part increments it in
`enterSimulation()` and decrements it in `leaveSimulation()`.
"""
import logging
from typing import List

from ..eqset import Attribute, EquationSet, StepKind
from ..eqset.operators import AccessVariable
from .exceptions import AmbiguousReferenceError
from .planner import PlanTable

logger = logging.getLogger(__name__)


class LifetimeAnalyzer:
    """Fills the live-reference lists, then freezes the plan table."""

    def __init__(self, table: PlanTable):
        self.table = table

    def analyze(self, root: EquationSet) -> EquationSet:
        logger.info(f"Analyzing part lifetimes for model '{root.name}'.")
        for s in root.walk_top_down():
            if s.lethal_connection or s.lethal_container:
                self._track(s)
        self.check_down_references(root)
        for bed in self.table:
            bed.need_local_enter = bool(bed.local.reference)
        self.table.freeze()
        return root

    # --- Live references ---

    @staticmethod
    def _watched(s: EquationSet) -> List[EquationSet]:
        watched = [b.endpoint for b in s.connection_bindings or ()]
        if s.container is not None and not s.container.is_root:
            watched.append(s.container)
        return watched

    def _track(self, s: EquationSet) -> None:
        # Every $live is either CONSTANT or INIT_ONLY after lethality analysis, so
        # a watched part that can die holds the stored flag itself.
        references = self.table[s].local.reference
        for target in self._watched(s):
            if target is s or target in references:
                continue
            if not target.find("$live").has(Attribute.INIT_ONLY):
                continue
            references.append(target)
            self.table[target].refcount = True
            logger.debug(f"'{s.fqn}' holds a live reference on '{target.fqn}'.")

    # --- Structural checks ---

    def check_down_references(self, root: EquationSet) -> None:
        """A read that descends into a population of many instances has no single target."""
        for s in root.walk_top_down():
            for v in s.variables:
                paths = []
                if v.has(Attribute.REFERENCE):
                    paths.append(v.reference.resolution)
                for entry in v.equations:
                    for expression in (entry.expression, entry.condition):
                        if expression is None:
                            continue
                        paths.extend(
                            op.reference.resolution for op in expression.nodes()
                            if isinstance(op, AccessVariable) and op.reference is not None
                        )
                for steps in paths:
                    for step in steps:
                        if step.kind is StepKind.DESCEND and not self.table[step.target].singleton:
                            raise AmbiguousReferenceError(
                                fqn=s.fqn, variable=v.full_name, population=step.target.fqn
                            )
