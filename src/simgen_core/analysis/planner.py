# src/simgen_core/analysis/planner.py
"""
Fourth analysis pass: storage layout for every equation set.

The planner turns attributes into concrete decisions: which variables are
members of the instance or population class, which of them need a `next_`
buffer, which lists each generated method iterates over, how the flag word is
laid out, and whether a population collapses into a singleton.

Plans live in a side table keyed by `fqn`. The equation-set nodes are never
annotated with backend data. Once the lifetime pass has filled in the
live-reference lists the whole table is frozen.
"""
import logging
from dataclasses import dataclass, field, fields
from typing import Dict, Iterator, List, Optional, Set, Tuple, Union

from ..eqset import Attribute, ConnectionMatrix, EquationSet, StepKind, Variable
from ..eqset.operators import Output
from .events import EventSource, EventTarget, event_references
from .exceptions import (
    FlagOverflowError, PlanFrozenError, TypeConversionError, UnfulfilledBindingError,
    UnsupportedFeatureError,
)
from .resolver import is_connection_special
from .structure import can_die, constant_value, population_shrinks

logger = logging.getLogger(__name__)

#: Attributes that keep a variable out of class storage.
_NOT_STORED = (
    Attribute.CONSTANT, Attribute.TEMPORARY, Attribute.DUMMY,
    Attribute.PREEXISTENT, Attribute.REFERENCE,
)

#: Specials with dedicated storage (the index field and the flag word).
_DEDICATED = ("$index", "$live")

_FLAG_TYPES = ((8, "uint8_t"), (16, "uint16_t"), (32, "uint32_t"), (64, "uint64_t"))


def is_member(v: Variable) -> bool:
    """True if v occupies a field of its instance or population class."""
    if v.has_any(*_NOT_STORED) or v.name in _DEDICATED:
        return False
    return not is_connection_special(v.container, v.full_name)


def is_buffered(v: Variable) -> bool:
    """True if writes to v go to a `next_` slot and are committed later."""
    if not is_member(v) or v.has(Attribute.INIT_ONLY):
        return False
    if v.has_any(Attribute.EXTERNAL_WRITE, Attribute.CYCLE):
        return True
    return v.has_all(Attribute.EXTERNAL_READ, Attribute.UPDATES)


def _evaluated(v: Variable) -> bool:
    return not (
        v.has_any(Attribute.CONSTANT, Attribute.PREEXISTENT)
        or v.name in _DEDICATED
        or is_connection_special(v.container, v.full_name)
    )


def flag_type(fqn: str, bits: int) -> Optional[str]:
    """Smallest unsigned type holding `bits` flags, or None for no flag word."""
    if bits == 0:
        return None
    for width, name in _FLAG_TYPES:
        if bits <= width:
            return name
    raise FlagOverflowError(fqn=fqn, bits=bits)


class _Freezable:
    """Dataclass mixin: `freeze()` turns lists into tuples and blocks assignment."""

    def freeze(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, list):
                object.__setattr__(self, f.name, tuple(value))
            elif isinstance(value, _Freezable):
                value.freeze()
        object.__setattr__(self, "_frozen", True)

    @property
    def frozen(self) -> bool:
        return getattr(self, "_frozen", False)

    def __setattr__(self, name, value):
        if getattr(self, "_frozen", False):
            raise PlanFrozenError(fqn=self.fqn, field_name=name)
        object.__setattr__(self, name, value)


@dataclass(eq=False)
class ScopePlan(_Freezable):
    """
    Variable lists and method switches for one side of an equation set: the
    instance class (local) or the population class (global).
    """
    fqn: str
    members: List[Variable] = field(default_factory=list)
    init: List[Variable] = field(default_factory=list)
    update: List[Variable] = field(default_factory=list)
    derivative: List[Variable] = field(default_factory=list)
    derivative_update: List[Variable] = field(default_factory=list)
    derivative_preserve: List[Variable] = field(default_factory=list)
    integrated: List[Variable] = field(default_factory=list)
    buffered: List[Variable] = field(default_factory=list)
    buffered_internal: List[Variable] = field(default_factory=list)
    buffered_internal_update: List[Variable] = field(default_factory=list)
    buffered_internal_derivative: List[Variable] = field(default_factory=list)
    buffered_external: List[Variable] = field(default_factory=list)
    buffered_external_write: List[Variable] = field(default_factory=list)
    buffered_external_derivative: List[Variable] = field(default_factory=list)
    buffered_external_write_derivative: List[Variable] = field(default_factory=list)
    reference: List[EquationSet] = field(default_factory=list)
    columns: List[Tuple[Output, str]] = field(default_factory=list)
    flag_type: Optional[str] = None
    need_ctor: bool = False
    need_dtor: bool = False
    need_init: bool = False
    need_integrate: bool = False
    need_update: bool = False
    need_finalize: bool = False
    need_derivative: bool = False
    need_preserve: bool = False
    need_path: bool = False


@dataclass(eq=False)
class BackendData(_Freezable):
    """Everything code generation needs to know about one equation set."""
    fqn: str
    local: ScopePlan = None
    global_: ScopePlan = None

    # Special variables
    t: Optional[Variable] = None
    dt: Optional[Variable] = None
    n: Optional[Variable] = None
    index: Optional[Variable] = None
    live: Optional[Variable] = None
    p: Optional[Variable] = None
    type: Optional[Variable] = None
    xyz: Optional[Variable] = None
    k: Dict[str, Variable] = field(default_factory=dict)
    min: Dict[str, Variable] = field(default_factory=dict)
    max: Dict[str, Variable] = field(default_factory=dict)
    radius: Dict[str, Variable] = field(default_factory=dict)
    project: Dict[str, Variable] = field(default_factory=dict)

    # Population shape
    singleton: bool = False
    can_resize: bool = False
    can_grow_or_die: bool = False
    track_instances: bool = False
    newborn: bool = False
    refcount: bool = False
    need_local_die: bool = False
    need_local_enter: bool = False
    need_local_event_delay: bool = False

    # Events
    event_targets: List[EventTarget] = field(default_factory=list)
    event_sources: List[EventSource] = field(default_factory=list)
    event_references: List[Variable] = field(default_factory=list)
    time_slots: int = 0

    # Connections
    accountable_endpoints: List[str] = field(default_factory=list)
    has_project: bool = False
    connection_matrix: Optional[ConnectionMatrix] = None
    conversions: List[Tuple[EquationSet, EquationSet]] = field(default_factory=list)

    # Flag layout. -1 means the bit is not allocated.
    live_bit: int = -1
    new_born_bit: int = -1
    clear_new_bit: int = -1

    def __post_init__(self):
        if self.local is None:
            object.__setattr__(self, "local", ScopePlan(self.fqn))
        if self.global_ is None:
            object.__setattr__(self, "global_", ScopePlan(self.fqn))

    def scope(self, global_: bool) -> ScopePlan:
        return self.global_ if global_ else self.local

    @property
    def live_stored(self) -> bool:
        return self.live_bit >= 0


class PlanTable:
    """Side table of BackendData keyed by equation-set fqn."""

    def __init__(self):
        self._plans: Dict[str, BackendData] = {}
        self._frozen = False

    def add(self, bed: BackendData) -> BackendData:
        if self._frozen:
            raise PlanFrozenError(fqn=bed.fqn, field_name="<table>")
        self._plans[bed.fqn] = bed
        return bed

    def __getitem__(self, key: Union[str, EquationSet]) -> BackendData:
        if isinstance(key, EquationSet):
            key = key.fqn
        return self._plans[key]

    def __contains__(self, key) -> bool:
        if isinstance(key, EquationSet):
            key = key.fqn
        return key in self._plans

    def __iter__(self) -> Iterator[BackendData]:
        return iter(self._plans.values())

    def __len__(self) -> int:
        return len(self._plans)

    def freeze(self) -> None:
        for bed in self._plans.values():
            bed.freeze()
        self._frozen = True
        logger.debug(f"Plan table frozen with {len(self._plans)} plan(s).")

    @property
    def frozen(self) -> bool:
        return self._frozen


class BackendPlanner:
    """
    Builds one BackendData per equation set, children before containers.
    """

    def plan(self, root: EquationSet) -> PlanTable:
        logger.info(f"Planning storage for model '{root.name}'.")
        table = PlanTable()
        self._split_targets = self._find_split_targets(root)
        self._column_count = 0
        for s in root.walk_bottom_up():
            table.add(self._plan_set(s))
        self._track_binding_paths(root, table)
        self._link_sources(root, table)
        self._propagate_paths(root, table)
        for s in root.walk_bottom_up():
            self._plan_conversions(s, table)
        return table

    @staticmethod
    def _find_split_targets(root: EquationSet) -> Set[EquationSet]:
        targets: Set[EquationSet] = set()
        for s in root.walk_top_down():
            for split in s.splits:
                targets.update(split)
        return targets

    # --- Per-set plan ---

    def _plan_set(self, s: EquationSet) -> BackendData:
        bed = BackendData(fqn=s.fqn)
        self._find_specials(s, bed)

        bed.singleton = self.is_singleton(s)
        bed.can_grow_or_die = s.lethal_p or s.lethal_type or s in self._split_targets
        bed.track_instances = not bed.singleton and (s.connected or population_shrinks(s))
        bed.newborn = s.connected
        if bed.singleton:
            bed.index = None
        n = bed.n
        bed.can_resize = (
            not bed.singleton and n is not None and not n.has_any(Attribute.CONSTANT, Attribute.INIT_ONLY)
        )

        for global_ in (False, True):
            self._plan_scope(s, bed.scope(global_), global_)

        bed.event_targets = list(s.event_targets)
        bed.time_slots = sum(1 for et in s.event_targets if et.time_index >= 0)
        bed.event_references = event_references(s)
        bed.need_local_event_delay = any(et.needs_delay_method for et in s.event_targets)
        bed.need_local_die = can_die(s)

        if s.is_connection:
            bed.accountable_endpoints = sorted(set(bed.min) | set(bed.max))
            bed.has_project = bool(bed.project)
            bed.connection_matrix = s.connection_matrix

        self._layout_flags(s, bed)
        self._find_columns(s, bed)
        self._set_switches(s, bed)
        logger.debug(
            f"Plan for '{s.fqn}': singleton={bed.singleton}, local members="
            f"{[v.full_name for v in bed.local.members]}, global members="
            f"{[v.full_name for v in bed.global_.members]}"
        )
        return bed

    @staticmethod
    def _find_specials(s: EquationSet, bed: BackendData) -> None:
        bed.t = s.find("$t")
        bed.dt = s.find("$t'")
        bed.n = s.find("$n")
        bed.index = s.find("$index")
        bed.live = s.find("$live")
        bed.p = s.find("$p")
        bed.type = s.find("$type")
        bed.xyz = s.find("$xyz")
        for v in s.variables:
            if not is_connection_special(s, v.full_name):
                continue
            alias, _, name = v.full_name.partition(".")
            slot = {"$k": bed.k, "$min": bed.min, "$max": bed.max,
                    "$radius": bed.radius, "$project": bed.project}[name]
            slot[alias] = v

    def is_singleton(self, s: EquationSet) -> bool:
        """A population that always holds exactly one instance."""
        if s.is_connection or s.lethal_type or s in self._split_targets:
            return False
        n = s.find("$n")
        if n is None:
            return True
        return n.has(Attribute.CONSTANT) and constant_value(n) == 1

    @staticmethod
    def _plan_scope(s: EquationSet, plan: ScopePlan, global_: bool) -> None:
        scoped = [v for v in s.ordered if v.has(Attribute.GLOBAL) == global_]
        for v in scoped:
            member = is_member(v)
            if member:
                plan.members.append(v)
                if v.order > 0 and v.name != "$t":
                    plan.derivative.append(v)
                if v.derivative is not None:
                    plan.integrated.append(v)
            if _evaluated(v) and v.equations:
                if member or v.has(Attribute.TEMPORARY) or any(e.is_init for e in v.equations):
                    plan.init.append(v)
                if v.has(Attribute.UPDATES):
                    plan.update.append(v)
                    if v.has(Attribute.DERIVATIVE_OR_DEPENDENCY):
                        plan.derivative_update.append(v)
                        if member and v.order == 0 and v.derivative is None:
                            plan.derivative_preserve.append(v)
            if not is_buffered(v):
                continue
            plan.buffered.append(v)
            in_derivative = v.has(Attribute.DERIVATIVE_OR_DEPENDENCY)
            if v.has_any(Attribute.EXTERNAL_READ, Attribute.EXTERNAL_WRITE):
                plan.buffered_external.append(v)
                if in_derivative:
                    plan.buffered_external_derivative.append(v)
                if v.has(Attribute.EXTERNAL_WRITE):
                    plan.buffered_external_write.append(v)
                    if in_derivative:
                        plan.buffered_external_write_derivative.append(v)
            else:
                plan.buffered_internal.append(v)
                if v.has(Attribute.UPDATES):
                    plan.buffered_internal_update.append(v)
                    if in_derivative:
                        plan.buffered_internal_derivative.append(v)

    @staticmethod
    def _layout_flags(s: EquationSet, bed: BackendData) -> None:
        bits = len(s.event_targets)
        if bed.live is not None and bed.live.has(Attribute.INIT_ONLY):
            bed.live_bit = bits
            bits += 1
        if bed.newborn:
            bed.new_born_bit = bits
            bits += 1
        bed.local.flag_type = flag_type(s.fqn, bits)
        if bed.newborn:
            bed.clear_new_bit = 0
            bed.global_.flag_type = flag_type(s.fqn, 1)

    def _find_columns(self, s: EquationSet, bed: BackendData) -> None:
        for v in s.ordered:
            for entry in v.equations:
                for op in entry.expression.nodes():
                    if isinstance(op, Output) and op.column is None:
                        name = f"columnName{self._column_count}"
                        self._column_count += 1
                        bed.scope(v.has(Attribute.GLOBAL)).columns.append((op, name))

    @staticmethod
    def _set_switches(s: EquationSet, bed: BackendData) -> None:
        local, glob = bed.local, bed.global_
        for plan in (local, glob):
            plan.need_integrate = bool(plan.integrated)
            plan.need_update = bool(plan.update)
            plan.need_derivative = bool(plan.derivative)
            plan.need_preserve = bool(
                plan.integrated or plan.derivative_preserve or plan.buffered_external_write_derivative
            )
            plan.need_dtor = plan.need_derivative or plan.need_preserve
            plan.need_path = bool(plan.columns)

        remote_sources = any(not src.is_self for et in s.event_targets for src in et.sources)
        count_n = not bed.singleton and bed.n is not None
        local.need_ctor = bool(
            local.need_dtor or s.parts or s.accountable_connections or local.members
            or bed.index is not None or local.buffered_external
        )
        local.need_init = bool(
            local.init or local.members or local.buffered_external_write or local.flag_type
            or s.event_targets or s.parts or count_n or s.accountable_connections or bed.accountable_endpoints
        )
        local.need_finalize = bool(
            local.buffered_external or s.event_targets or bed.type is not None or s.parts
            or s.lethal_p or s.lethal_connection or s.lethal_container or bed.live_stored
        )
        bed.need_local_die = bed.need_local_die or remote_sources

        glob.need_ctor = bool(glob.need_dtor or not bed.singleton or glob.members)
        glob.need_init = True
        glob.need_finalize = bool(glob.buffered_external or bed.can_resize or glob.update)

    # --- Cross-set facts ---

    @staticmethod
    def _track_binding_paths(root: EquationSet, table: PlanTable) -> None:
        """Populations crossed on the way down to an endpoint are enumerated, so they keep their instances."""
        for s in root.walk_top_down():
            for b in s.connection_bindings or ():
                for step in b.resolution[:-1]:
                    bed = table[step.target]
                    if step.kind is StepKind.DESCEND and not bed.singleton:
                        bed.track_instances = True

    @staticmethod
    def _link_sources(root: EquationSet, table: PlanTable) -> None:
        """Attach each remote EventSource to the plan of the set it monitors."""
        for s in root.walk_top_down():
            for et in s.event_targets:
                for src in et.sources:
                    sources = table[src.container].event_sources
                    src.monitor_index = len(sources)
                    sources.append(src)
                    table[src.container].local.need_finalize = True

    @staticmethod
    def _propagate_paths(root: EquationSet, table: PlanTable) -> None:
        """path() recurses into the container, and a connection's path into its endpoints."""
        changed = True
        while changed:
            changed = False
            for s in root.walk_top_down():
                bed = table[s]
                if not (bed.local.need_path or bed.global_.need_path):
                    continue
                needed = []
                if not s.is_root and not s.container.is_root:
                    needed.append(s.container)
                for b in s.connection_bindings or ():
                    needed.append(b.endpoint)
                for other in needed:
                    if not table[other].local.need_path:
                        table[other].local.need_path = True
                        changed = True

    @staticmethod
    def _plan_conversions(s: EquationSet, table: PlanTable) -> None:
        for split in s.splits:
            for target in split:
                if target is s:
                    continue
                if target.is_connection != s.is_connection:
                    raise TypeConversionError(fqn=s.fqn, target=target.fqn)
                for b in target.connection_bindings or ():
                    source = s.find_binding(b.alias)
                    if source is None or source.endpoint is not b.endpoint:
                        raise UnfulfilledBindingError(fqn=s.fqn, target=target.fqn, alias=b.alias)
                if target.container is not s.container:
                    raise UnsupportedFeatureError(
                        fqn=s.fqn,
                        details=f"$type may only convert into a sibling part; '{target.fqn}' is not one.",
                    )
                conversions = table[s.container].conversions
                if (s, target) not in conversions:
                    conversions.append((s, target))
                    logger.debug(f"Conversion '{s.fqn}' -> '{target.fqn}' planned.")
