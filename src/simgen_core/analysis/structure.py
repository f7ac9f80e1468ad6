# src/simgen_core/analysis/structure.py
"""
Second analysis pass: attributes that follow from the resolved structure.

The pass runs in a fixed order because each step reads what the previous one
discovered:

1.  Constants, iterated until no more variables fold.
2.  Global propagation between a variable and its derivatives.
3.  Init-only detection, iterated the same way.
4.  Lethality of every equation set and the storage class of `$live`.
5.  Derivative dependencies and the UPDATES attribute.
6.  Evaluation order per equation set, including cycle breaking.
"""
import logging
from typing import Dict, List

import networkx as nx

from ..eqset import Attribute, EquationEntry, EquationSet, Variable
from ..eqset.operators import (
    RANDOM, AccessVariable, Constant, Descent, Event, Function, Input, Output, Split,
)
from .exceptions import CyclicDependencyError

logger = logging.getLogger(__name__)

#: Attributes that exclude a variable from folding into a compile-time constant.
_NOT_FOLDABLE = (
    Attribute.CONSTANT, Attribute.REFERENCE, Attribute.EXTERNAL_WRITE,
    Attribute.DUMMY, Attribute.PREEXISTENT,
)

#: Attributes that exclude a variable from being computed only at init.
_NOT_INIT_ONLY = (
    Attribute.CONSTANT, Attribute.TEMPORARY, Attribute.DUMMY, Attribute.REFERENCE,
    Attribute.PREEXISTENT, Attribute.EXTERNAL_WRITE, Attribute.INIT_ONLY,
)


def constant_value(v: Variable):
    """Folded value of a CONSTANT variable, or None."""
    if not v.has(Attribute.CONSTANT) or not v.equations:
        return None
    return v.equations[0].expression.fold()


def can_die(s: EquationSet) -> bool:
    return s.lethal_p or s.lethal_type or s.lethal_connection or s.lethal_container or population_shrinks(s)


def population_shrinks(s: EquationSet) -> bool:
    n = s.find("$n")
    return n is not None and not n.has_any(Attribute.CONSTANT, Attribute.INIT_ONLY)


class StructureAnalyzer:
    """
    Derives constants, init-only values, lethality and evaluation order.
    """

    def analyze(self, root: EquationSet) -> EquationSet:
        logger.info(f"Analyzing structure of model '{root.name}'.")
        self.find_constants(root)
        self.propagate_global(root)
        self.find_init_only(root)
        self.find_lethality(root)
        self.find_derivative_dependencies(root)
        self.find_updates(root)
        for s in root.walk_top_down():
            self.order(s)
        return root

    # --- Constants ---

    def find_constants(self, root: EquationSet) -> None:
        changed = True
        while changed:
            changed = False
            for v in root.all_variables():
                if self._foldable(v):
                    v.add_attribute(Attribute.CONSTANT)
                    logger.debug(f"'{v.fqn}' is constant: {v.equations[0].expression.fold()!r}")
                    changed = True

    @staticmethod
    def _foldable(v: Variable) -> bool:
        if len(v.equations) != 1 or not v.equations[0].unconditional:
            return False
        if v.derivative is not None or v.has_any(*_NOT_FOLDABLE):
            return False
        if v.name in ("$live", "$index", "$type"):
            return False
        return v.equations[0].expression.fold() is not None

    @staticmethod
    def propagate_global(root: EquationSet) -> None:
        for v in root.all_variables():
            if v.order > 0 or v.derivative is None:
                continue
            chain = [v]
            while chain[-1].derivative is not None:
                chain.append(chain[-1].derivative)
            if any(link.has(Attribute.GLOBAL) for link in chain):
                for link in chain:
                    link.add_attribute(Attribute.GLOBAL)

    # --- Init-only ---

    def find_init_only(self, root: EquationSet) -> None:
        changed = True
        while changed:
            changed = False
            for v in root.all_variables():
                if self._init_only(v):
                    v.add_attribute(Attribute.INIT_ONLY)
                    changed = True

    def _init_only(self, v: Variable) -> bool:
        if not v.equations or v.has_any(*_NOT_INIT_ONLY):
            return False
        if v.order > 0 or v.derivative is not None or v.name in ("$live", "$index", "$type"):
            return False
        return all(e.is_init or (e.unconditional and self.is_static(e.expression)) for e in v.equations)

    @staticmethod
    def is_static(expression) -> bool:
        """True if the expression can only change when its inputs change at init."""
        static = True

        def look(op):
            nonlocal static
            if isinstance(op, (Event, Input, Output, Split)):
                static = False
            elif isinstance(op, Function) and op.name in RANDOM:
                static = False
            elif isinstance(op, AccessVariable):
                target = op.variable
                if target is None or not (
                    target.has_any(Attribute.CONSTANT, Attribute.INIT_ONLY) or target.name == "$index"
                ):
                    static = False
            return Descent.STOP if not static else Descent.CONTINUE

        expression.walk(look)
        return static

    # --- Lethality ---

    def find_lethality(self, root: EquationSet) -> None:
        for s in root.walk_top_down():
            s.lethal_p = self._lethal_p(s)
            s.lethal_type = bool(s.splits)

        changed = True
        while changed:
            changed = False
            for s in root.walk_top_down():
                if s.is_root:
                    continue
                container = s.container
                lethal_container = not container.is_root and can_die(container)
                lethal_connection = any(
                    b.endpoint is not s and can_die(b.endpoint) for b in s.connection_bindings or ()
                )
                if lethal_container and not s.lethal_container:
                    s.lethal_container = True
                    changed = True
                if lethal_connection and not s.lethal_connection:
                    s.lethal_connection = True
                    changed = True

        for s in root.walk_top_down():
            live = s.find("$live")
            if can_die(s):
                live.add_attribute(Attribute.INIT_ONLY)
                logger.debug(
                    f"'{s.fqn}' can die (p={s.lethal_p}, type={s.lethal_type}, "
                    f"connection={s.lethal_connection}, container={s.lethal_container})."
                )
            else:
                if not live.equations:
                    live.add_equation(EquationEntry(Constant(1)))
                live.add_attribute(Attribute.CONSTANT)

    @staticmethod
    def _lethal_p(s: EquationSet) -> bool:
        p = s.find("$p")
        if p is None:
            return False
        if p.has(Attribute.CONSTANT):
            return constant_value(p) != 1
        if s.is_connection:
            return any(not e.is_connect for e in p.equations)
        return True

    # --- Derivatives and update membership ---

    @staticmethod
    def find_derivative_dependencies(root: EquationSet) -> None:
        for s in root.walk_top_down():
            pending = [
                v for v in s.variables
                if v.order > 0 and v.name != "$t" and not v.has(Attribute.CONSTANT)
            ]
            seen = set()
            while pending:
                v = pending.pop()
                if v in seen:
                    continue
                seen.add(v)
                v.add_attribute(Attribute.DERIVATIVE_OR_DEPENDENCY)
                for d in v.depends:
                    if d.container is s and not d.has_any(Attribute.CONSTANT, Attribute.PREEXISTENT):
                        pending.append(d)

    @staticmethod
    def find_updates(root: EquationSet) -> None:
        for v in root.all_variables():
            if v.has_any(Attribute.CONSTANT, Attribute.INIT_ONLY, Attribute.PREEXISTENT):
                continue
            if any(not (e.is_init or e.is_connect) for e in v.equations):
                v.add_attribute(Attribute.UPDATES)

    # --- Ordering ---

    def order(self, s: EquationSet) -> List[Variable]:
        """
        Sorts the variables of one equation set into evaluation order.

        A temporary is evaluated before the variables that read it. A member is
        evaluated after the variables that read it, so readers see the value of
        the previous cycle. When members form a cycle, one of them is marked
        CYCLE; the planner buffers it and its incoming ordering constraints no
        longer apply. A cycle made only of temporaries is fatal.
        """
        position: Dict[Variable, int] = {v: i for i, v in enumerate(s.variables)}
        graph = nx.DiGraph()
        graph.add_nodes_from(s.variables)
        for reader in s.variables:
            for d in reader.depends:
                if d.container is not s or d is reader:
                    continue
                if d.has_any(Attribute.CONSTANT, Attribute.PREEXISTENT):
                    continue
                if d.has(Attribute.TEMPORARY):
                    graph.add_edge(d, reader, member=False)
                elif d.has(Attribute.UPDATES):
                    graph.add_edge(reader, d, member=True)

        while True:
            try:
                cycle = nx.find_cycle(graph)
            except nx.NetworkXNoCycle:
                break
            member_edges = [(u, v) for u, v in cycle if graph.edges[u, v]["member"]]
            if not member_edges:
                names = tuple(u.full_name for u, _ in cycle)
                raise CyclicDependencyError(fqn=s.fqn, cycle=names)
            broken = min((v for _, v in member_edges), key=position.get)
            broken.add_attribute(Attribute.CYCLE)
            logger.info(f"'{broken.fqn}' is read before it is written in a cycle; it will be buffered.")
            for u in list(graph.predecessors(broken)):
                if graph.edges[u, broken]["member"]:
                    graph.remove_edge(u, broken)

        s.ordered = list(nx.lexicographical_topological_sort(graph, key=position.get))
        return s.ordered
