# src/simgen_core/codegen/definitions.py
"""
Member functions of the instance class and the population class of one
equation set.

Which functions exist, and what each one touches, follows from the plan. An
instance forwards the per-cycle calls (integrate, update, finalize and the
derivative family) to the populations it contains, but only to those that
define the method in question.
"""
import logging
from collections import deque
from typing import List, Optional

from ..analysis.planner import BackendData, ScopePlan
from ..analysis.structure import constant_value
from ..constants import MSB
from ..eqset import Attribute, EquationSet
from .connections import ConnectionCodeGenerator
from .cxx_ast import Block, For, Function, If, Line, Node, Switch
from .events import EventCodeGenerator
from .exceptions import UnrenderableExpressionError
from .multiconditional import evaluate_with_temporaries, multiconditional
from .render import (
    ExpressionRenderer, Phase, RenderContext, clear_accumulator, fixed_literal, flag_test, shift_suffix,
    storage_type, zero,
)
from . import naming

logger = logging.getLogger(__name__)

_DIE: List[Node] = [Line("die ();"), Line("return false;")]


def root_of(s: EquationSet) -> EquationSet:
    while s.container is not None:
        s = s.container
    return s


def population_defines(bed: BackendData, method: str) -> bool:
    """True if the population class generated for bed overrides `method`."""
    plan = bed.global_
    return {
        "init": True,
        "integrate": plan.need_integrate,
        "update": plan.need_update,
        "finalize": plan.need_finalize,
        "updateDerivative": bool(plan.derivative_update),
        "finalizeDerivative": bool(plan.buffered_external_derivative),
        "snapshot": plan.need_preserve,
        "restore": plan.need_preserve,
        "pushDerivative": plan.need_derivative,
        "multiplyAddToStack": plan.need_derivative,
        "multiply": plan.need_derivative,
        "addToMembers": plan.need_derivative,
    }[method]


def pointer_path(s: EquationSet, target: EquationSet) -> str:
    """Pointer chain from an instance of s to the instance of target it depends on."""
    queue = deque([(s, "")])
    seen = {s}
    while queue:
        current, path = queue.popleft()
        if current is target:
            return path
        edges = [(b.endpoint, naming.binding_member(b.alias) + "->") for b in current.connection_bindings or ()]
        if current.container is not None:
            edges.append((current.container, "container->"))
        for other, hop in edges:
            if other not in seen:
                seen.add(other)
                queue.append((other, path + hop))
    raise UnrenderableExpressionError(fqn=s.fqn, details=f"No pointer path leads to '{target.fqn}'.")


class _Members:
    """Shared code for the two classes of an equation set. Subclasses bind the scope."""

    global_ = False

    def __init__(self, ctx: RenderContext):
        self.ctx = ctx.derive(global_=self.global_)
        self.s: EquationSet = ctx.s
        self.bed: BackendData = ctx.bed
        self.plan: ScopePlan = self.bed.scope(self.global_)
        self.T = ctx.T
        self.fixed = ctx.config.fixed_point
        self.config = ctx.config

    @property
    def owner(self) -> str:
        raise NotImplementedError

    def phase(self, phase: Phase, buffered: bool = True) -> RenderContext:
        return self.ctx.derive(phase=phase, buffered=buffered)

    def evaluate(self, variables, phase: Phase, buffered: bool = True) -> List[Node]:
        ctx = self.phase(phase, buffered)
        result: List[Node] = []
        for v in variables:
            result.extend(multiconditional(v, ctx))
        return result

    def child_calls(self, method: str, args: str = "") -> List[Node]:
        return []

    # --- Lifecycle ---

    def destructor(self) -> Function:
        body: List[Node] = []
        if self.plan.need_derivative:
            body.append(Line("while (stackDerivative)"))
            body.append(Block([
                Line("Derivative * temp = stackDerivative;"),
                Line("stackDerivative = stackDerivative->next;"),
                Line("delete temp;"),
            ]))
        if self.plan.need_preserve:
            body.append(Line("if (preserve) delete preserve;"))
        return Function("~" + self.owner, self.owner, return_type="", body=body)

    def commit_external(self, variables) -> List[Node]:
        return [Line(f"{naming.member(v)} = {naming.next_member(v)};") for v in variables]

    def clear_written(self, variables) -> List[Node]:
        return [Line(clear_accumulator(v, naming.next_member(v), self.config)) for v in variables]

    # --- Integration ---

    def integrate_statements(self) -> List[Node]:
        """Euler step from the current derivative, or from the preserved state during a multi-stage step."""
        renderer = ExpressionRenderer(self.ctx)
        dt_exponent = root_of(self.s).find("$t'").exponent
        preserved: List[Node] = []
        direct: List[Node] = []
        for v in self.plan.integrated:
            lhs = renderer.resolve(v.reference)
            derivative = renderer.resolve(v.derivative.reference)
            amount = v.derivative.exponent + dt_exponent - MSB - v.exponent if self.fixed else 0
            if amount != 0:
                term = f"(int) ((int64_t) {derivative} * dt{shift_suffix(amount)})"
            else:
                term = f"{derivative} * dt"
            preserved.append(Line(f"{lhs} = preserve->{naming.member(v)} + {term};"))
            direct.append(Line(f"{lhs} += {term};"))
        return [
            Line(f"EventStep<{self.T}> * event = getEvent ();"),
            Line(f"{self.T} dt = event->dt;"),
            If(branches=[("preserve", preserved)], otherwise=direct),
        ]

    def update_statements(self, variables, internal) -> List[Node]:
        body: List[Node] = [Line(f"{storage_type(v, self.config)} {naming.next_member(v)};") for v in internal]
        body.extend(self.evaluate(variables, Phase.UPDATE))
        body.extend(self.commit_external(internal))
        return body

    # --- Derivative family ---

    def derivative_family(self) -> List[Function]:
        plan, owner, T = self.plan, self.owner, self.T
        result: List[Function] = []

        calls = self.child_calls("updateDerivative")
        if plan.derivative_update or calls:
            body = self.update_statements(plan.derivative_update, plan.buffered_internal_derivative) + calls
            result.append(Function("updateDerivative", owner, body=body))

        calls = self.child_calls("finalizeDerivative")
        if plan.buffered_external_derivative or calls:
            body = self.commit_external(plan.buffered_external_derivative)
            body += self.clear_written(plan.buffered_external_write_derivative)
            result.append(Function("finalizeDerivative", owner, body=body + calls))

        snapshot_calls = self.child_calls("snapshot")
        if plan.need_preserve or snapshot_calls:
            snapshot: List[Node] = []
            restore: List[Node] = []
            if plan.need_preserve:
                snapshot.append(Line("preserve = new Preserve;"))
                for v in list(plan.integrated) + list(plan.derivative_preserve):
                    snapshot.append(Line(f"preserve->{naming.member(v)} = {naming.member(v)};"))
                for v in plan.buffered_external_write_derivative:
                    snapshot.append(Line(f"preserve->{naming.next_member(v)} = {naming.next_member(v)};"))
                    snapshot.append(Line(clear_accumulator(v, naming.next_member(v), self.config)))
                for v in plan.derivative_preserve:
                    restore.append(Line(f"{naming.member(v)} = preserve->{naming.member(v)};"))
                for v in plan.buffered_external_write_derivative:
                    restore.append(Line(f"{naming.next_member(v)} = preserve->{naming.next_member(v)};"))
                restore += [Line("delete preserve;"), Line("preserve = 0;")]
            result.append(Function("snapshot", owner, body=snapshot + snapshot_calls))
            result.append(Function("restore", owner, body=restore + self.child_calls("restore")))

        push_calls = self.child_calls("pushDerivative")
        if plan.need_derivative or push_calls:
            push: List[Node] = []
            add_to_stack: List[Node] = []
            multiply: List[Node] = []
            add_to_members: List[Node] = []
            if plan.need_derivative:
                push += [
                    Line("Derivative * temp = new Derivative;"),
                    Line("temp->next = stackDerivative;"),
                    Line("stackDerivative = temp;"),
                ]
                for v in plan.derivative:
                    name = naming.member(v)
                    push.append(Line(f"temp->{name} = {name};"))
                    if self.fixed:
                        add_to_stack.append(
                            Line(f"stackDerivative->{name} += (int) ((int64_t) {name} * scalar >> {MSB - 1});")
                        )
                        multiply.append(Line(f"{name} = (int64_t) {name} * scalar >> {MSB - 1};"))
                    else:
                        add_to_stack.append(Line(f"stackDerivative->{name} += {name} * scalar;"))
                        multiply.append(Line(f"{name} *= scalar;"))
                    add_to_members.append(Line(f"{name} += stackDerivative->{name};"))
                add_to_members += [
                    Line("Derivative * temp = stackDerivative;"),
                    Line("stackDerivative = stackDerivative->next;"),
                    Line("delete temp;"),
                ]
            result.append(Function("pushDerivative", owner, body=push + push_calls))
            result.append(Function(
                "multiplyAddToStack", owner, params=f"{T} scalar",
                body=add_to_stack + self.child_calls("multiplyAddToStack", "scalar"),
            ))
            result.append(Function(
                "multiply", owner, params=f"{T} scalar", body=multiply + self.child_calls("multiply", "scalar"),
            ))
            result.append(Function("addToMembers", owner, body=add_to_members + self.child_calls("addToMembers")))
        return result

    # --- Output ---

    def path_prefix(self, name: str) -> List[Node]:
        """Statements that put the path of the container, then `name`, into `result`."""
        container = self.s.container
        if container is not None and self.ctx.table[container].local.need_path:
            return [Line("container->path (result);"), Line(f'result += ".{name}";')]
        return [Line(f'result = "{name}";')]

    def column_names(self) -> List[Node]:
        return [Line(f"path ({name});") for _, name in self.plan.columns]


class InstanceDefinitions(_Members):
    """Member functions of the instance class `<Prefix>`."""

    global_ = False

    @property
    def owner(self) -> str:
        return naming.class_name(self.s)

    def child_calls(self, method: str, args: str = "") -> List[Node]:
        table = self.ctx.table
        return [
            Line(f"{naming.population_member(p)}.{method} ({args});")
            for p in self.s.parts if population_defines(table[p], method)
        ]

    def generate(self) -> List[Function]:
        s, bed, plan, owner = self.s, self.bed, self.plan, self.owner
        events = EventCodeGenerator(self.ctx)
        result: List[Function] = []

        if plan.need_ctor or s.parts:
            result.append(self.constructor())
        if plan.need_dtor:
            result.append(self.destructor())
        if plan.members:
            body = [Line(zero(v, naming.member(v))) for v in plan.members]
            result.append(Function("clear", owner, body=body))
        if s.is_root:
            result.append(Function("setPeriod", owner, params=f"{self.T} dt", body=[
                Line(f"PartTime<{self.T}>::setPeriod (dt);"),
                Line("if (container->visitor->event != visitor->event) container->setPeriod (dt);"),
            ]))
        if bed.need_local_die:
            result.append(self.die(events))
        result.extend(self.simulation_membership())
        if bed.refcount:
            result.append(Function("isFree", owner, return_type="bool", body=[Line("return refcount == 0;")]))

        result.append(self.init(events))

        calls = self.child_calls("integrate")
        if plan.integrated or calls:
            body = self.integrate_statements() if plan.integrated else []
            result.append(Function("integrate", owner, body=body + calls))

        calls = self.child_calls("update")
        if plan.update or calls:
            body = self.update_statements(plan.update, plan.buffered_internal_update)
            result.append(Function("update", owner, body=body + calls))

        finalize = self.finalize(events)
        if finalize is not None:
            result.append(finalize)

        result.extend(self.derivative_family())

        if bed.live is not None and not bed.live.has(Attribute.CONSTANT):
            result.append(self.get_live())
        if bed.xyz is not None and not s.is_connection:
            result.append(self.get_xyz())
        if bed.newborn:
            result.append(Function("getNewborn", owner, return_type="bool", body=[
                Line(f"return flags & ({plan.flag_type}) 0x1 << {bed.new_born_bit};"),
            ]))
        if s.is_connection:
            result.extend(ConnectionCodeGenerator(self.ctx).instance_methods())
        result.extend(events.methods())
        if plan.need_path:
            result.append(self.path())
        for source, destination in bed.conversions:
            result.append(self.conversion(source, destination))
        return result

    # --- Lifecycle ---

    def constructor(self) -> Function:
        s, bed, plan = self.s, self.bed, self.plan
        body: List[Node] = []
        if plan.need_derivative:
            body.append(Line("stackDerivative = 0;"))
        if plan.need_preserve:
            body.append(Line("preserve = 0;"))
        for p in s.parts:
            member = naming.population_member(p)
            body.append(Line(f"{member}.container = this;"))
            if self.ctx.table[p].singleton:
                body.append(Line(f"{member}.instance.container = this;"))
        for ac in s.accountable_connections:
            body.append(Line(f"{naming.count_member(ac.connection, ac.alias)} = 0;"))
        if bed.refcount:
            body.append(Line("refcount = 0;"))
        if bed.index is not None:
            body.append(Line("__24index = -1;"))
        if plan.members:
            body.append(Line("clear ();"))
        return Function(self.owner, self.owner, return_type="", body=body)

    def population_counter(self) -> Optional[str]:
        """The `n` field of our population, if instances are counted."""
        bed = self.bed
        if bed.n is None or bed.singleton:
            return None
        return f"container->{naming.population_member(self.s)}.n"

    def die(self, events: EventCodeGenerator) -> Function:
        bed = self.bed
        body: List[Node] = []
        if bed.live_stored:
            body.append(Line(f"flags &= ~(({self.plan.flag_type}) 0x1 << {bed.live_bit});"))
        counter = self.population_counter()
        if counter:
            body.append(Line(f"{counter}--;"))
        for alias in bed.accountable_endpoints:
            body.append(Line(f"{naming.binding_member(alias)}->{naming.count_member(self.s, alias)}--;"))
        body.extend(events.release())
        return Function("die", self.owner, body=body)

    def simulation_membership(self) -> List[Function]:
        paths: List[str] = []
        for target in self.plan.reference:
            path = pointer_path(self.s, target)
            if path not in paths:
                paths.append(path)
        result = []
        if paths:
            result.append(Function(
                "enterSimulation", self.owner, body=[Line(f"{path}refcount++;") for path in paths],
            ))
        leave: List[Node] = []
        if not self.bed.singleton:
            leave.append(Line(f"container->{naming.population_member(self.s)}.remove (this);"))
        leave += [Line(f"{path}refcount--;") for path in paths]
        if leave:
            result.append(Function("leaveSimulation", self.owner, body=leave))
        return result

    def init(self, events: EventCodeGenerator) -> Function:
        s, bed, plan = self.s, self.bed, self.plan
        body: List[Node] = self.clear_written(plan.buffered_external)
        body.extend(events.init_statements())
        if plan.flag_type:
            if bed.live_stored:
                operator = "|=" if bed.newborn else "="
                body.append(Line(f"flags {operator} ({plan.flag_type}) 0x1 << {bed.live_bit};"))
            elif not bed.newborn:
                body.append(Line("flags = 0;"))
        body.extend(self.column_names())
        body.extend(self.evaluate(plan.init, Phase.INIT, buffered=False))
        if s.is_root:
            dt = bed.dt
            renderer = ExpressionRenderer(self.phase(Phase.INIT, buffered=False))
            if dt.has(Attribute.CONSTANT):
                period = renderer.render(dt.equations[0].expression)
            else:
                period = naming.member(dt)
            body.append(Line(f"setPeriod ({period});"))
        counter = self.population_counter()
        if counter:
            body.append(Line(f"{counter}++;"))
        for alias in bed.accountable_endpoints:
            body.append(Line(f"{naming.binding_member(alias)}->{naming.count_member(s, alias)}++;"))
        body.extend(events.register())
        body.extend(self.child_calls("init"))
        return Function("init", self.owner, body=body)

    # --- Finalize ---

    def finalize(self, events: EventCodeGenerator) -> Optional[Function]:
        s, bed, plan = self.s, self.bed, self.plan
        calls = self.child_calls("finalize")
        dt = bed.dt if s.is_root and not bed.dt.has(Attribute.CONSTANT) else None
        dt_updates = dt is not None and dt.has(Attribute.UPDATES)
        if not (plan.need_finalize or calls or dt_updates):
            return None

        body: List[Node] = list(calls)
        if bed.live_stored:
            body.append(Line(f"if (! (flags & ({plan.flag_type}) 0x1 << {bed.live_bit})) return false;"))
        if bed.event_sources or s.lethal_p or dt_updates:
            body.append(Line(f"EventStep<{self.T}> * event = getEvent ();"))
        body.extend(events.monitor_loops())
        if bed.event_targets:
            body.append(Line(f"flags &= ~({plan.flag_type}) 0 << {len(bed.event_targets)};"))

        for v in plan.buffered_external:
            if v is dt:
                continue
            body.append(Line(f"{naming.member(v)} = {naming.next_member(v)};"))
        if dt_updates:
            period = naming.next_member(dt) if dt in plan.buffered_external else naming.member(dt)
            body.append(Line(f"if ({period} != event->dt) setPeriod ({period});"))
        body.extend(self.clear_written(plan.buffered_external_write))

        if bed.type is not None and s.splits:
            body.extend(self.type_change())
        if s.lethal_p:
            body.extend(self.lethal_p())
        if s.lethal_connection:
            for b in s.connection_bindings:
                if not b.endpoint.find("$live").has(Attribute.CONSTANT):
                    body.append(If(branches=[(f"{naming.binding_member(b.alias)}->getLive () == 0", list(_DIE))]))
        if s.lethal_container and not s.container.find("$live").has(Attribute.CONSTANT):
            body.append(If(branches=[("container->getLive () == 0", list(_DIE))]))
        body.append(Line("return true;"))
        return Function("finalize", self.owner, return_type="bool", body=body)

    def type_change(self) -> List[Node]:
        """Moves this instance into the parts named by the split `$type` selects."""
        s = self.s
        cases = []
        for i, split in enumerate(s.splits):
            if split == (s,):
                continue
            body: List[Node] = []
            used = False
            for j, to in enumerate(split):
                if to is s and not used:
                    used = True
                    body.append(Line(f"__24type = {j + 1};"))
                else:
                    body.append(Line(f"container->{naming.conversion_function(s, to)} (this, {j + 1});"))
            body.extend([Line("break;")] if used else list(_DIE))
            cases.append((str(i + 1), body))
        if not cases:
            return []
        return [Switch("__24type", cases)]

    def lethal_p(self) -> List[Node]:
        """Survival test: an instance lives through one second with probability $p."""
        p = self.bed.p
        T = self.T
        dt = "event->dt"
        renderer = ExpressionRenderer(self.ctx)
        if self.fixed:
            dt_exponent = root_of(self.s).find("$t'").exponent
            dt += shift_suffix(dt_exponent - 15)
            tail = f", {p.exponent}, {p.exponent}) < uniform<{T}> (){shift_suffix(-1 - p.exponent)}"
        else:
            tail = f") < uniform<{T}> ()"

        if p.has(Attribute.CONSTANT):
            value = constant_value(p)
            if value == 0:
                return [Block(list(_DIE))]
            constant = renderer.render(p.equations[0].expression)
            return [If(branches=[(f"pow ({constant}, {dt}{tail}", list(_DIE))])]

        result: List[Node] = []
        if p.has(Attribute.TEMPORARY):
            result.extend(evaluate_with_temporaries(p, self.phase(Phase.UPDATE)))
        value = renderer.resolve(p.reference)
        one = fixed_literal(1, p.exponent) if self.fixed else "1"
        condition = f"{value} <= 0  ||  {value} < {one}  &&  pow ({value}, {dt}{tail}"
        result.append(If(branches=[(condition, list(_DIE))]))
        return result

    # --- Accessors ---

    def get_live(self) -> Function:
        s, bed = self.s, self.bed
        body: List[Node] = []
        if bed.live_stored:
            body.append(Line(f"if ({flag_test(self.plan.flag_type, bed.live_bit)} == 0) return 0;"))
        if s.lethal_connection:
            for b in s.connection_bindings:
                if not b.endpoint.find("$live").has(Attribute.CONSTANT):
                    body.append(Line(f"if ({naming.binding_member(b.alias)}->getLive () == 0) return 0;"))
        if s.lethal_container and not s.container.find("$live").has(Attribute.CONSTANT):
            body.append(Line("if (container->getLive () == 0) return 0;"))
        body.append(Line("return 1;"))
        return Function("getLive", self.owner, return_type=self.T, body=body)

    def get_xyz(self) -> Function:
        xyz = self.bed.xyz
        ctx = self.phase(Phase.UPDATE, buffered=False)
        body: List[Node] = []
        if xyz.has(Attribute.TEMPORARY):
            body.extend(evaluate_with_temporaries(xyz, ctx))
        body.append(Line(f"xyz = {ExpressionRenderer(ctx).resolve(xyz.reference)};"))
        return Function("getXYZ", self.owner, params=f"MatrixFixed<{self.T},3,1> & xyz", body=body)

    def path(self) -> Function:
        s = self.s
        body: List[Node] = []
        if not s.is_connection:
            if not s.is_root:
                body.extend(self.path_prefix(s.name))
            if self.bed.index is not None:
                body.append(Line("result += __24index;"))
        else:
            for i, b in enumerate(s.connection_bindings):
                alias = naming.binding_member(b.alias)
                if i == 0:
                    body.append(Line(f"{alias}->path (result);"))
                    continue
                if i == 1:
                    body.append(Line("String temp;"))
                body += [Line(f"{alias}->path (temp);"), Line('result += "-";'), Line("result += temp;")]
        return Function("path", self.owner, params="String & result", body=body)

    def conversion(self, source: EquationSet, destination: EquationSet) -> Function:
        """Creates an instance of `destination` that carries over the state of `from`."""
        to_class = naming.class_name(destination)
        body: List[Node] = [Line(f"{to_class} * to = {naming.population_member(destination)}.allocate ();")]
        for b in destination.connection_bindings or ():
            alias = naming.binding_member(b.alias)
            body.append(Line(f"to->{alias} = from->{alias};"))
        body += [
            Line("to->enterSimulation ();"),
            Line("getEvent ()->enqueue (to);"),
            Line("to->init ();"),
        ]
        skipped = (
            Attribute.GLOBAL, Attribute.CONSTANT, Attribute.ACCESSOR, Attribute.REFERENCE,
            Attribute.TEMPORARY, Attribute.DUMMY, Attribute.PREEXISTENT,
        )
        for v in destination.variables:
            if v.name == "$type":
                body.append(Line("to->__24type = __24type;"))
                continue
            if v.has_any(*skipped) or v.name in ("$live", "$index") or v.full_name == "$t'":
                continue
            match = source.find(v.full_name)
            if match is None or match.has_any(*skipped):
                continue
            body.append(Line(f"to->{naming.member(v)} = from->{naming.member(match)};"))
        return Function(
            naming.conversion_function(source, destination), self.owner,
            params=f"{naming.class_name(source)} * from, int __24type", virtual=False, body=body,
        )


class PopulationDefinitions(_Members):
    """Member functions of the population class `<Prefix>_Population`."""

    global_ = True

    @property
    def owner(self) -> str:
        return naming.population_class(self.s)

    def generate(self) -> List[Function]:
        s, bed, plan, owner = self.s, self.bed, self.plan, self.owner
        instance = naming.class_name(s)
        T = self.T
        result: List[Function] = []

        if plan.need_ctor:
            result.append(self.constructor())
        if plan.need_dtor:
            result.append(self.destructor())
        if not bed.singleton:
            result.append(Function("create", owner, return_type=f"Part<{T}> *", body=[
                Line(f"{instance} * p = new {instance};"),
                Line("p->container = container;"),
                Line("return p;"),
            ]))
            if bed.index is not None:
                result.extend(self.add_remove(instance))

        result.append(self.init())
        if plan.integrated:
            result.append(Function("integrate", owner, body=self.integrate_statements()))
        if plan.update:
            result.append(Function("update", owner, body=self.update_statements(plan.update, plan.buffered_internal_update)))
        if plan.need_finalize:
            result.append(self.finalize())
        if bed.can_resize:
            result.append(self.resize())
        if bed.n is not None and not bed.singleton:
            result.append(Function("getN", owner, return_type="int", body=[Line("return n;")]))
        result.extend(self.derivative_family())
        if bed.newborn:
            result.append(self.clear_new(instance))
        if s.is_connection:
            result.extend(ConnectionCodeGenerator(self.ctx).population_methods())
        if plan.need_path:
            result.append(Function("path", owner, params="String & result", body=self.path_prefix(s.name)))
        return result

    def constructor(self) -> Function:
        bed, plan = self.bed, self.plan
        body: List[Node] = []
        if not bed.singleton:
            if bed.n is not None:
                body.append(Line("n = 0;"))
            if not bed.track_instances and bed.index is not None:
                body.append(Line("nextIndex = 0;"))
            if bed.newborn:
                body.append(Line("firstborn = 0;"))
        if plan.need_derivative:
            body.append(Line("stackDerivative = 0;"))
        if plan.need_preserve:
            body.append(Line("preserve = 0;"))
        return Function(self.owner, self.owner, return_type="", body=body)

    def add_remove(self, instance: str) -> List[Function]:
        bed, T = self.bed, self.T
        body: List[Node] = [Line(f"{instance} * p = ({instance} *) part;")]
        if bed.track_instances:
            body.append(If(
                branches=[("p->__24index < 0", [
                    Line("p->__24index = instances.size ();"),
                    Line("instances.push_back (p);"),
                ])],
                otherwise=[Line("instances[p->__24index] = p;")],
            ))
            if bed.newborn:
                body.append(Line(f"p->flags = ({bed.local.flag_type}) 0x1 << {bed.new_born_bit};"))
                body.append(Line("firstborn = min (firstborn, p->__24index);"))
        else:
            body.append(Line("if (p->__24index < 0) p->__24index = nextIndex++;"))
        result = [Function("add", self.owner, params=f"Part<{T}> * part", body=body)]
        if bed.track_instances:
            result.append(Function("remove", self.owner, params=f"Part<{T}> * part", body=[
                Line(f"{instance} * p = ({instance} *) part;"),
                Line("instances[p->__24index] = 0;"),
                Line(f"Population<{T}>::remove (part);"),
            ]))
        return result

    def init(self) -> Function:
        s, bed, plan = self.s, self.bed, self.plan
        body: List[Node] = [Line(zero(v, naming.member(v))) for v in plan.members]
        body.extend(self.clear_written(plan.buffered_external))
        if plan.flag_type:
            body.append(Line("flags = 0;"))
        body.extend(self.column_names())
        body.extend(self.evaluate(plan.init, Phase.INIT, buffered=False))
        if bed.singleton:
            body += [
                Line("instance.enterSimulation ();"),
                Line("container->getEvent ()->enqueue (&instance);"),
                Line("instance.init ();"),
            ]
        elif bed.n is not None:
            renderer = ExpressionRenderer(self.phase(Phase.INIT, buffered=False))
            n = renderer.resolve(bed.n.reference)
            amount = bed.n.exponent - MSB if self.fixed else 0
            body.append(Line(f"resize ({n}{shift_suffix(amount)});"))
        if s.is_connection:
            body.append(Line(f"Simulator<{self.T}>::instance.connect (this);"))
        return Function("init", self.owner, body=body)

    def finalize(self) -> Function:
        bed, plan = self.bed, self.plan
        body: List[Node] = self.commit_external(plan.buffered_external)
        body.extend(self.clear_written(plan.buffered_external_write))
        if bed.can_resize:
            n = naming.member(bed.n)
            if self.fixed:
                body.append(Line(f"int floorN = {n}{shift_suffix(bed.n.exponent - MSB)};"))
            else:
                body.append(Line(f"int floorN = (int) {n};"))
            body.append(Line(f"if (n != floorN) Simulator<{self.T}>::instance.resize (this, floorN);"))
        body.append(Line("return true;"))
        return Function("finalize", self.owner, return_type="bool", body=body)

    def resize(self) -> Function:
        """Grows or shrinks to `n` live instances. Shrinking kills instances from the end."""
        bed, T = self.bed, self.T
        body: List[Node] = []
        if bed.can_grow_or_die:
            n = naming.member(bed.n)
            amount = MSB - bed.n.exponent if self.fixed else 0
            body.append(If(branches=[("n < 0", [Line(f"{n} = this->n{shift_suffix(amount)};"), Line("return;")])]))
        body.append(Line(f"Population<{T}>::resize (n);"))
        body.append(For("int i = instances.size () - 1; this->n > n  &&  i >= 0; i--", [
            Line(f"Part<{T}> * p = instances[i];"),
            Line("if (p  &&  p->getLive ()) p->die ();"),
        ]))
        return Function("resize", self.owner, params="int n", body=body)

    def clear_new(self, instance: str) -> Function:
        bed = self.bed
        local_bit = f"({bed.local.flag_type}) 0x1 << {bed.new_born_bit}"
        body: List[Node] = [Line(f"flags &= ~(({self.plan.flag_type}) 0x1 << {bed.clear_new_bit});")]
        if bed.singleton:
            body.append(Line(f"instance.flags &= ~({local_bit});"))
        else:
            body += [
                Line("int count = instances.size ();"),
                For("int i = firstborn; i < count; i++", [
                    Line(f"{instance} * p = instances[i];"),
                    Line(f"if (p) p->flags &= ~({local_bit});"),
                ]),
                Line("firstborn = count;"),
            ]
        return Function("clearNew", self.owner, body=body)
