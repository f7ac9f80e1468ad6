# src/simgen_core/analysis/events.py
"""
Third analysis pass: discrete events.

Every `event(...)` operator in a part becomes an EventTarget with its own latch
bit. The equation sets whose variables the condition reads become its
EventSources: at the end of each of their cycles they test the condition on
behalf of every target instance monitoring them.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..eqset import Attribute, EdgeKind, EquationSet, ResolutionStep, Variable
from ..eqset.operators import AccessVariable, Descent, Event, contains

logger = logging.getLogger(__name__)

#: Delay markers. Non-negative values are constant delays in seconds.
DELAY_NO_CARE = -1
DELAY_COMPUTED = -2


@dataclass(eq=False)
class EventSource:
    """A monitored equation set that tests `target` for its instances."""
    target: "EventTarget"
    container: EquationSet
    reference: Optional[List[ResolutionStep]] = None
    monitor_index: int = 0
    test_each: bool = True
    delay_each: bool = False

    @property
    def is_self(self) -> bool:
        return self.reference is None


@dataclass(eq=False)
class EventTarget:
    """One event() expression, owned by the part whose equations it guards."""
    event: Event
    container: EquationSet
    value_index: int
    edge: EdgeKind = EdgeKind.RISE
    delay: float = DELAY_NO_CARE
    track: Optional[str] = None
    time_index: int = -1
    sources: List[EventSource] = field(default_factory=list)
    dependencies: List[Variable] = field(default_factory=list)

    @property
    def needs_delay_method(self) -> bool:
        return self.delay == DELAY_COMPUTED


class EventAnalyzer:
    """Builds EventTargets and EventSources for every equation set."""

    def analyze(self, root: EquationSet) -> EquationSet:
        logger.info(f"Analyzing events in model '{root.name}'.")
        for s in root.walk_top_down():
            self._find_targets(s)
        return root

    def _find_targets(self, s: EquationSet) -> None:
        targets: List[EventTarget] = []
        time_slots = 0
        for v in s.ordered:
            for entry in v.equations:
                for expression in (entry.condition, entry.expression):
                    if expression is None:
                        continue
                    for op in expression.nodes():
                        if not isinstance(op, Event) or op.target is not None:
                            continue
                        et = EventTarget(event=op, container=s, value_index=len(targets), edge=op.edge)
                        op.target = et
                        if et.edge is EdgeKind.NONZERO:
                            et.time_index = time_slots
                            time_slots += 1
                        else:
                            et.track = f"eventAux{et.value_index}"
                        et.delay = self._delay(op)
                        et.dependencies = self._dependencies(s, op)
                        self._find_sources(et)
                        targets.append(et)
                        logger.debug(
                            f"Event target {et.value_index} in '{s.fqn}': edge={et.edge.value}, delay={et.delay}, "
                            f"sources={[src.container.fqn for src in et.sources]}"
                        )
        s.event_targets = targets

    @staticmethod
    def _delay(op: Event) -> float:
        if op.delay is None:
            return DELAY_NO_CARE
        value = op.delay.fold()
        if value is None or isinstance(value, str):
            return DELAY_COMPUTED
        value = float(value)
        return value if value >= 0 else DELAY_NO_CARE

    @staticmethod
    def _dependencies(s: EquationSet, op: Event) -> List[Variable]:
        """Local temporaries the condition (and delay) read, in evaluation order."""
        needed = set()
        pending = []

        def look(node):
            if isinstance(node, AccessVariable) and node.reference and node.reference.is_local:
                if node.variable.has(Attribute.TEMPORARY):
                    pending.append(node.variable)
            return Descent.CONTINUE

        op.walk(look)
        while pending:
            v = pending.pop()
            if v in needed:
                continue
            needed.add(v)
            for d in v.depends:
                if d.container is s and d.has(Attribute.TEMPORARY):
                    pending.append(d)
        return [v for v in s.ordered if v in needed]

    @staticmethod
    def _find_sources(et: EventTarget) -> None:
        remote = {}

        def look(node):
            if isinstance(node, AccessVariable) and node.reference and not node.reference.is_local:
                v = node.variable
                if not v.has_any(Attribute.CONSTANT, Attribute.PREEXISTENT):
                    key = tuple(id(step.target) for step in node.reference.resolution)
                    remote.setdefault(key, (v.container, list(node.reference.resolution)))
            return Descent.CONTINUE

        et.event.condition.walk(look)
        delay_each = et.needs_delay_method
        if not remote:
            et.sources.append(EventSource(target=et, container=et.container, delay_each=delay_each))
            return
        for container, steps in remote.values():
            et.sources.append(EventSource(target=et, container=container, reference=steps, delay_each=delay_each))


def event_references(s: EquationSet) -> List[Variable]:
    """REFERENCE variables written only when an event fires. Finalized after the event."""
    return [
        v for v in s.ordered
        if v.has(Attribute.REFERENCE)
        and any(e.condition is not None and contains(e.condition, Event) for e in v.equations)
    ]
