# src/simgen_core/codegen/declarations.py
"""
Class layout for one equation set: the nested Derivative and Preserve buffers
and the data members of the instance and population classes. Member functions
are attached by the program generator from `definitions`.
"""
import logging
from typing import List

from ..analysis.planner import ScopePlan
from ..eqset import EquationSet
from .cxx_ast import ClassDecl, Field
from .events import event_fields
from .render import RenderContext, storage_type
from . import naming

logger = logging.getLogger(__name__)


def buffer_classes(plan: ScopePlan, ctx: RenderContext) -> List[ClassDecl]:
    """Derivative stack entry and Preserve snapshot for integrators that take several stages."""
    config = ctx.config
    result = []
    if plan.need_derivative:
        fields = [Field(storage_type(v, config), naming.member(v)) for v in plan.derivative]
        fields.append(Field("Derivative *", "next"))
        result.append(ClassDecl("Derivative", fields=fields))
    if plan.need_preserve:
        fields = [Field(storage_type(v, config), naming.member(v)) for v in plan.integrated]
        fields += [Field(storage_type(v, config), naming.member(v)) for v in plan.derivative_preserve]
        fields += [
            Field(storage_type(v, config), naming.next_member(v))
            for v in plan.buffered_external_write_derivative
        ]
        result.append(ClassDecl("Preserve", fields=fields))
    return result


def _buffer_pointers(plan: ScopePlan) -> List[Field]:
    result = []
    if plan.need_derivative:
        result.append(Field("Derivative *", "stackDerivative"))
    if plan.need_preserve:
        result.append(Field("Preserve *", "preserve"))
    return result


def _values(plan: ScopePlan, ctx: RenderContext) -> List[Field]:
    config = ctx.config
    result = [Field(storage_type(v, config), naming.member(v)) for v in plan.members]
    result += [Field(storage_type(v, config), naming.next_member(v)) for v in plan.buffered_external]
    result += [Field("String", name) for _, name in plan.columns]
    return result


def container_type(s: EquationSet) -> str:
    return naming.class_name(s.container) + " *"


def instance_fields(ctx: RenderContext) -> List[Field]:
    s, bed = ctx.s, ctx.bed
    plan = bed.local
    fields = _buffer_pointers(plan)
    fields.append(Field(container_type(s), "container"))
    for b in s.connection_bindings or ():
        fields.append(Field(naming.class_name(b.endpoint) + " *", naming.binding_member(b.alias)))
    for ac in s.accountable_connections:
        fields.append(Field("int", naming.count_member(ac.connection, ac.alias)))
    if bed.refcount:
        fields.append(Field("int", "refcount"))
    if bed.index is not None:
        fields.append(Field("int", "__24index"))
    fields += _values(plan, ctx)
    for p in s.parts:
        fields.append(Field(naming.population_class(p), naming.population_member(p)))
    fields += [Field(t, name) for t, name in event_fields(ctx)]
    if plan.flag_type:
        fields.append(Field(plan.flag_type, "flags"))
    return fields


def population_fields(ctx: RenderContext) -> List[Field]:
    s, bed = ctx.s, ctx.bed
    plan = bed.global_
    fields = [Field(container_type(s), "container")]
    if bed.singleton:
        fields.append(Field(naming.class_name(s), "instance"))
    else:
        if bed.n is not None:
            fields.append(Field("int", "n"))
        if bed.track_instances:
            fields.append(Field(f"vector<{naming.class_name(s)} *>", "instances"))
        elif bed.index is not None:
            fields.append(Field("int", "nextIndex"))
        if bed.newborn:
            fields.append(Field("int", "firstborn"))
    fields += _buffer_pointers(plan)
    fields += _values(plan, ctx)
    if plan.flag_type:
        fields.append(Field(plan.flag_type, "flags"))
    return fields


def instance_base(s: EquationSet, ctx: RenderContext) -> str:
    if s.is_root:
        return f"PartTime<{ctx.T}>"
    return f"Part<{ctx.T}>"
