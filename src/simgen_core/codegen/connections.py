# src/simgen_core/codegen/connections.py
"""
Code that lets the runtime enumerate candidate endpoint tuples for a
connection type and probe each tuple with `$p`.

The population side builds one `ConnectPopulation` iterator per binding
(`getIterator`) and combines them (`getIterators`). The instance side exposes
its endpoint pointers (`setPart`, `getPart`), the counts used by `$min` and
`$max`, the projected positions used by `$k` and `$radius`, and the row and
column mapping of a connection matrix.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..eqset import Attribute, ConnectionBinding, EquationSet, ResolutionStep, StepKind, VariableReference
from ..eqset.operators import Constant, Operator
from .cxx_ast import For, Function, If, Line, Node, Switch
from .multiconditional import evaluate_with_temporaries
from .render import ExpressionRenderer, Phase, RenderContext
from . import naming

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class _IteratorGroup:
    """Bindings that share one iterator recipe and differ only in their index."""
    binding: ConnectionBinding
    k: Optional[Operator] = None
    min: Optional[Operator] = None
    max: Optional[Operator] = None
    radius: Optional[Operator] = None
    has_project: bool = False
    indices: List[int] = field(default_factory=list)

    def key(self, renderer: ExpressionRenderer):
        rendered = tuple(
            None if op is None else renderer.render(op) for op in (self.k, self.min, self.max, self.radius)
        )
        return rendered + (self.has_project, id(self.binding.endpoint))

    @property
    def nearest_neighbor(self) -> bool:
        return self.k is not None or self.radius is not None


def _nonzero_constant(op: Optional[Operator]) -> bool:
    return isinstance(op, Constant) and op.is_scalar and op.value != 0


def _first_expression(variables, alias: str) -> Optional[Operator]:
    v = variables.get(alias)
    if v is None or not v.equations:
        return None
    return v.equations[0].expression


class ConnectionCodeGenerator:
    """Connection support for one connection type."""

    def __init__(self, ctx: RenderContext):
        self.s: EquationSet = ctx.s
        self.bed = ctx.bed
        self.T = ctx.T
        self.population_ctx = ctx.derive(global_=True, phase=Phase.CONNECT, buffered=False)
        self.instance_ctx = ctx.derive(global_=False, phase=Phase.CONNECT, buffered=False)

    def _groups(self) -> List[_IteratorGroup]:
        renderer = ExpressionRenderer(self.population_ctx)
        groups: List[_IteratorGroup] = []
        keys = []
        bed = self.bed
        for b in self.s.connection_bindings:
            g = _IteratorGroup(
                binding=b,
                k=_first_expression(bed.k, b.alias),
                min=_first_expression(bed.min, b.alias),
                max=_first_expression(bed.max, b.alias),
                radius=_first_expression(bed.radius, b.alias),
                has_project=b.alias in bed.project,
            )
            key = g.key(renderer)
            if key in keys:
                g = groups[keys.index(key)]
            else:
                keys.append(key)
                groups.append(g)
            g.indices.append(b.index)
        return groups

    # --- Population side ---

    def population_methods(self) -> List[Function]:
        owner = naming.population_class(self.s)
        groups = self._groups()
        return [self.get_iterators(owner, groups), self.get_iterator(owner, groups)]

    def get_iterators(self, owner: str, groups: List[_IteratorGroup]) -> Function:
        T = self.T
        cm = self.s.connection_matrix
        if cm is None:
            if any(g.nearest_neighbor for g in groups):
                body: List[Node] = [Line("return getIteratorsNN ();")]
            else:
                body = [Line("return getIteratorsSimple ();")]
        else:
            statics = self.population_ctx.statics
            body = [
                Line(f"ConnectPopulation<{T}> * rows = getIterator ({cm.rows.index});"),
                Line(f"ConnectPopulation<{T}> * cols = getIterator ({cm.cols.index});"),
                Line(f"IteratorNonzero<{T}> * it = {statics.matrix_handle(cm.file)}->getIterator ();"),
                Line(f"Part<{T}> * dummy = create ();"),
                Line(f"return new ConnectMatrix<{T}> (rows, cols, it, dummy);"),
            ]
        return Function("getIterators", owner, return_type=f"ConnectIterator<{T}> *", body=body)

    def get_iterator(self, owner: str, groups: List[_IteratorGroup]) -> Function:
        T = self.T
        renderer = ExpressionRenderer(self.population_ctx)
        cases = []
        for g in groups:
            kind = "ConnectPopulationNN" if g.nearest_neighbor else "ConnectPopulation"
            body: List[Node] = [Line(f"result = new {kind}<{T}> (i);")]
            if g.k is not None:
                body.append(Line(f"result->k = {renderer.render(g.k)};"))
            if g.max is not None:
                body.append(Line(f"result->Max = {renderer.render(g.max)};"))
            if g.min is not None:
                body.append(Line(f"result->Min = {renderer.render(g.min)};"))
            if g.radius is not None:
                body.append(Line(f"result->radius = {renderer.render(g.radius)};"))
            if g.has_project:
                body.append(Line("result->rank += 1;"))
            if _nonzero_constant(g.k) or _nonzero_constant(g.radius):
                body.append(Line("result->rank -= 2;"))
            else:
                tests = []
                if g.k is not None:
                    tests.append("result->k > 0")
                if g.radius is not None:
                    tests.append("result->radius > 0")
                if tests:
                    body.append(Line(f"if ({'  ||  '.join(tests)}) result->rank -= 2;"))
            body.extend(self.assemble_instances(g.binding.resolution))
            body.append(Line("result->size = result->instances->size ();"))
            body.append(Line("break;"))
            cases.append(([str(index) for index in g.indices], body))
        return Function(
            "getIterator", owner, return_type=f"ConnectPopulation<{T}> *", params="int i",
            body=[Line(f"ConnectPopulation<{T}> * result = 0;"), Switch("i", cases), Line("return result;")],
        )

    def assemble_instances(self, steps: List[ResolutionStep], depth: int = 0, pointer: str = "") -> List[Node]:
        """
        Collects the endpoint instances reached by `steps` into `result->instances`.

        Populations crossed on the way down are enumerated with nested loops, in
        which case a fresh vector is allocated. A path with no enumeration
        borrows the endpoint population's own instance list.
        """
        T = self.T
        table = self.population_ctx.table
        result: List[Node] = []
        current = self.s
        last = len(steps) - 1
        for i in range(depth, len(steps)):
            step = steps[i]
            if step.kind is StepKind.ASCEND:
                pointer += "container->"
            elif step.kind is StepKind.TRAVERSE:
                pointer += naming.binding_member(step.binding.alias) + "->"
            else:
                pointer += naming.population_member(step.target) + "."
                if i < last:
                    if table[step.target].singleton:
                        pointer += "instance."
                    else:
                        if depth == 0:
                            result.append(Line(f"result->instances = new vector<Part<{T}> *>;"))
                            result.append(Line("result->deleteInstances = true;"))
                        it = f"it{i}"
                        inner = self.assemble_instances(steps, i + 1, it + "->")
                        result.append(For(f"auto {it} : {pointer}instances", inner))
                        return result
            current = step.target

        bed = table[current]
        if bed.singleton:
            newborn = f"{pointer}instance.flags & ({bed.local.flag_type}) 0x1 << {bed.new_born_bit}"
            result.append(Line(f"bool newborn = {newborn};"))
            if depth == 0:
                result.append(Line(f"result->instances = new vector<Part<{T}> *>;"))
                result.append(Line("result->deleteInstances = true;"))
            result.append(Line(
                "if (result->firstborn == INT_MAX  &&  newborn) result->firstborn = result->instances->size ();"
            ))
            result.append(Line(f"result->instances->push_back (& {pointer}instance);"))
        elif depth == 0:
            result.append(Line(f"result->firstborn = {pointer}firstborn;"))
            result.append(Line(f"result->instances = (vector<Part<{T}> *> *) & {pointer}instances;"))
        else:
            result.append(Line(
                f"if (result->firstborn == INT_MAX  &&  {pointer}firstborn < {pointer}instances.size ()) "
                f"result->firstborn = result->instances->size () + {pointer}firstborn;"
            ))
            result.append(Line(
                f"result->instances->insert (result->instances->end (), "
                f"{pointer}instances.begin (), {pointer}instances.end ());"
            ))

        bit = f"({bed.global_.flag_type}) 0x1 << {bed.clear_new_bit}"
        population = pointer[:-1] if pointer.endswith(".") else pointer
        result.append(If(branches=[(f"! ({pointer}flags & {bit})", [
            Line(f"{pointer}flags |= {bit};"),
            Line(f"Simulator<{T}>::instance.clearNew (& {population});"),
        ])]))
        return result

    # --- Instance side ---

    def instance_methods(self) -> List[Function]:
        owner = naming.class_name(self.s)
        T = self.T
        bindings = self.s.connection_bindings
        result = [
            Function("setPart", owner, params=f"int i, Part<{T}> * part", body=[Switch("i", [
                (str(b.index), [Line(f"{naming.binding_member(b.alias)} = ({naming.class_name(b.endpoint)} *) part;"),
                                Line("return;")])
                for b in bindings
            ])]),
            Function("getPart", owner, return_type=f"Part<{T}> *", params="int i", body=[
                Switch("i", [(str(b.index), [Line(f"return {naming.binding_member(b.alias)};")]) for b in bindings]),
                Line("return 0;"),
            ]),
        ]
        if self.bed.accountable_endpoints:
            result.append(self.get_count(owner))
        if self.bed.has_project:
            result.append(self.get_project(owner))
        if self.s.connection_matrix is not None:
            result.append(self.map_index(owner))
        p = self.bed.p
        if p is not None and p.equations:
            result.append(self.get_p(owner))
        return result

    def get_count(self, owner: str) -> Function:
        cases = []
        for b in self.s.connection_bindings:
            if b.alias in self.bed.accountable_endpoints:
                counter = naming.count_member(self.s, b.alias)
                cases.append((str(b.index), [Line(f"return {naming.binding_member(b.alias)}->{counter};")]))
        return Function(
            "getCount", owner, return_type="int", params="int i",
            body=[Switch("i", cases), Line("return 0;")],
        )

    def get_project(self, owner: str) -> Function:
        """Position of each endpoint as seen by the connection, for nearest-neighbor search."""
        renderer = ExpressionRenderer(self.instance_ctx)
        cases = []
        need_default = False
        for b in self.s.connection_bindings:
            project = self.bed.project.get(b.alias)
            if project is not None:
                body = evaluate_with_temporaries(project, self.instance_ctx)
                body.append(Line(f"xyz = {renderer.resolve(project.reference)};"))
                body.append(Line("break;"))
                cases.append((str(b.index), body))
                continue
            xyz = b.endpoint.find("$xyz")
            if xyz is None:
                need_default = True
                continue
            alias = naming.binding_member(b.alias)
            if xyz.has(Attribute.TEMPORARY):
                body = [Line(f"{alias}->getXYZ (xyz);")]
            else:
                reference = VariableReference(xyz, [ResolutionStep(StepKind.TRAVERSE, b.endpoint, b)])
                body = [Line(f"xyz = {renderer.resolve(reference)};")]
            body.append(Line("break;"))
            cases.append((str(b.index), body))
        if need_default:
            cases.append(("default", [Line("xyz[0] = 0;"), Line("xyz[1] = 0;"), Line("xyz[2] = 0;")]))
        return Function(
            "getProject", owner, params=f"int i, MatrixFixed<{self.T},3,1> & xyz", body=[Switch("i", cases)],
        )

    def map_index(self, owner: str) -> Function:
        renderer = ExpressionRenderer(self.instance_ctx)
        cm = self.s.connection_matrix
        row = "rc" if cm.row_mapping is None else renderer.render(cm.row_mapping)
        col = "rc" if cm.col_mapping is None else renderer.render(cm.col_mapping)
        return Function(
            "mapIndex", owner, return_type="int", params="int i, int rc",
            body=[Line(f"if (i == 0) return {row};"), Line(f"return {col};")],
        )

    def get_p(self, owner: str) -> Function:
        """Probability of this candidate connection, evaluated in the connect phase without storing it."""
        p = self.bed.p
        renderer = ExpressionRenderer(self.instance_ctx)
        body = evaluate_with_temporaries(p, self.instance_ctx)
        body.append(Line(f"return {renderer.resolve(p.reference)};"))
        return Function("getP", owner, return_type=self.T, body=body)
