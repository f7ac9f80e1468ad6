# src/simgen_core/codegen/events.py
"""
Code for discrete events: the monitor loops in a source's finalize(), and the
eventTest / eventDelay / setLatch / finalizeEvent methods of a target.

A monitored source tests each registered target instance at the end of its own
cycle. When a test passes, a spike is queued for that instance. The spike kind
and time depend on the delay:

    delay < 0   latch spike at the current time; the latch is read next cycle
    delay == 0  immediate spike at the current time
    delay > 0   quantized against dt; aligned delays land just before or after
                the step boundary according to the event mode
"""
import logging
from typing import Dict, List, Tuple

from ..analysis.events import EventSource, EventTarget
from ..constants import DELAY_ALIGNMENT_TOLERANCE, DELAY_NUDGE, MSB, EventMode
from ..eqset import Assignment, EdgeKind
from .cxx_ast import For, Function, If, Line, Node, Switch
from .multiconditional import multiconditional
from .render import ExpressionRenderer, RenderContext, clear_accumulator, fixed_literal, shift_suffix, zero
from . import naming

logger = logging.getLogger(__name__)


def monitor_owners(ctx: RenderContext) -> List[Tuple[str, str]]:
    """(path prefix, vector name) of every monitor list this instance registers with, without repeats."""
    renderer = ExpressionRenderer(ctx)
    owners: List[Tuple[str, str]] = []
    for et in ctx.bed.event_targets:
        for src in et.sources:
            prefix = "" if src.is_self else renderer.container_path(src.reference)
            entry = (prefix, naming.monitor_member(et.container))
            if entry not in owners:
                owners.append(entry)
    return owners


class EventCodeGenerator:
    """Event code for one equation set, in its instance-class context."""

    def __init__(self, ctx: RenderContext):
        self.ctx = ctx
        self.T = ctx.T
        self.fixed = ctx.config.fixed_point
        self.mode = ctx.config.event_mode

    # --- Source side ---

    def monitor_loops(self) -> List[Node]:
        """Loops run in finalize() of a monitored equation set. Assumes `event` is in scope."""
        result: List[Node] = []
        tested: Dict[Tuple[int, str], bool] = {}
        for src in self.ctx.bed.event_sources:
            et = src.target
            key = (et.value_index, naming.monitor_member(et.container))
            if key in tested:
                continue
            tested[key] = True
            body: List[Node] = [Line(f"if (! p  ||  ! p->eventTest ({et.value_index})) continue;")]
            body.extend(self.spike(et, src))
            result.append(For(f"Part<{self.T}> * p : {key[1]}", body))
        return result

    def spike(self, et: EventTarget, src: EventSource) -> List[Node]:
        single = f"EventSpikeSingle<{self.T}>"
        latch = f"EventSpikeSingleLatch<{self.T}>"
        result: List[Node] = []
        if et.needs_delay_method:
            result.append(Line(f"{self.T} delay = p->eventDelay ({et.value_index});"))
            result.append(Line(f"{single} * spike;"))
            result.append(If(
                branches=[
                    ("delay < 0", [Line(f"spike = new {latch};"), Line("spike->t = event->t;")]),
                    ("delay == 0", [Line(f"spike = new {single};"), Line("spike->t = event->t;")]),
                ],
                otherwise=self.quantize(single, latch),
            ))
        elif et.delay < 0:
            result.append(Line(f"{single} * spike = new {latch};"))
            result.append(Line("spike->t = event->t;"))
        elif et.delay == 0:
            result.append(Line(f"{single} * spike = new {single};"))
            result.append(Line("spike->t = event->t;"))
        else:
            result.append(Line(f"{self.T} delay = {self.time_literal(et.delay)};"))
            result.append(Line(f"{single} * spike;"))
            result.extend(self.quantize(single, latch))
        result.append(Line(f"spike->latch = {et.value_index};"))
        result.append(Line("spike->target = p;"))
        result.append(Line(f"Simulator<{self.T}>::instance.queueEvent.push (spike);"))
        return result

    def time_literal(self, seconds: float) -> str:
        if self.fixed:
            return fixed_literal(seconds, self.time_exponent())
        return repr(float(seconds))

    def time_exponent(self) -> int:
        root = self.ctx.s
        while root.container is not None:
            root = root.container
        return root.find("$t").exponent

    def quantize(self, single: str, latch: str) -> List[Node]:
        """Chooses the spike kind for a positive delay held in the local `delay`."""
        aligned: List[Node] = []
        aligned.append(Line(f"spike = new {latch};" if self.mode is EventMode.DURING else f"spike = new {single};"))
        after = self.mode is EventMode.AFTER
        if self.fixed:
            head = [
                Line("int step = (delay + event->dt / 2) / event->dt;"),
                Line("int quantizedTime = step * event->dt;"),
            ]
            condition = "quantizedTime == delay"
            aligned.append(Line(f"delay = quantizedTime {'+' if after else '-'} 1;"))
        else:
            head = [
                Line(f"{self.T} ratio = delay / event->dt;"),
                Line("int step = (int) round (ratio);"),
            ]
            condition = f"abs (ratio - step) < {DELAY_ALIGNMENT_TOLERANCE!r}"
            sign = "+" if after else "-"
            aligned.append(Line(f"delay = (step {sign} ({self.T}) {DELAY_NUDGE!r}) * event->dt;"))
        return head + [
            If(branches=[(condition, aligned)], otherwise=[Line(f"spike = new {single};")]),
            Line("spike->t = event->t + delay;"),
        ]

    # --- Target side ---

    def methods(self) -> List[Function]:
        bed = self.ctx.bed
        if not bed.event_targets:
            return []
        owner = naming.class_name(self.ctx.s)
        result = [self.event_test(owner)]
        if bed.need_local_event_delay:
            result.append(self.event_delay(owner))
        result.append(Function(
            "setLatch", owner, params="int i",
            body=[Line(f"flags |= ({bed.local.flag_type}) 0x1 << i;")],
        ))
        if bed.event_references:
            result.append(self.finalize_event(owner))
        return result

    def event_test(self, owner: str) -> Function:
        renderer = ExpressionRenderer(self.ctx)
        cases = []
        for et in self.ctx.bed.event_targets:
            body: List[Node] = []
            for v in et.dependencies:
                body.extend(multiconditional(v, self.ctx))
            after = renderer.render(et.event.condition)
            if et.edge is EdgeKind.NONZERO:
                body.append(Line(f"{self.T} after = {after};"))
                body.append(Line("if (after == 0) return false;"))
                t = f"Simulator<{self.T}>::instance.currentEvent->t"
                if self.fixed:
                    body.append(Line(f"{self.T} moduloTime = {t};"))
                else:
                    body.append(Line(f"{self.T} moduloTime = ({self.T}) fmod ({t}, 1);"))
                body.append(Line(f"if (eventTime{et.time_index} == moduloTime) return false;"))
                body.append(Line(f"eventTime{et.time_index} = moduloTime;"))
                body.append(Line("return true;"))
            else:
                body.append(Line(f"{self.T} before = {et.track};"))
                body.append(Line(f"{self.T} after = {after};"))
                body.append(Line(f"{et.track} = after;"))
                test = {
                    EdgeKind.CHANGE: "before != after",
                    EdgeKind.FALL: "before != 0  &&  after == 0",
                    EdgeKind.RISE: "before == 0  &&  after != 0",
                }[et.edge]
                body.append(Line(f"return {test};"))
            cases.append((str(et.value_index), body))
        return Function(
            "eventTest", owner, return_type="bool", params="int i",
            body=[Switch("i", cases), Line("return false;")],
        )

    def event_delay(self, owner: str) -> Function:
        renderer = ExpressionRenderer(self.ctx)
        cases = []
        for et in self.ctx.bed.event_targets:
            if not et.needs_delay_method:
                continue
            body: List[Node] = []
            for v in et.dependencies:
                body.extend(multiconditional(v, self.ctx))
            body.append(Line(f"{self.T} result = {renderer.render(et.event.delay)};"))
            body.append(Line("if (result < 0) return -1;"))
            body.append(Line("return result;"))
            cases.append((str(et.value_index), body))
        return Function(
            "eventDelay", owner, return_type=self.T, params="int i",
            body=[Switch("i", cases), Line("return -1;")],
        )

    def finalize_event(self, owner: str) -> Function:
        """Folds values written under an event condition into their remote targets."""
        renderer = ExpressionRenderer(self.ctx)
        body: List[Node] = []
        for v in self.ctx.bed.event_references:
            target = v.reference.variable
            current = renderer.resolve(v.reference)
            buffered = renderer.resolve(v.reference, lvalue=True)
            if current == buffered:
                continue
            assignment = target.assignment
            if assignment is Assignment.ADD:
                body.append(Line(f"{current} += {buffered};"))
                body.append(Line(zero(target, buffered)))
            elif assignment in (Assignment.MULTIPLY, Assignment.DIVIDE):
                amount = target.exponent - MSB
                if self.fixed and amount != 0:
                    body.append(Line(f"{current} = (int64_t) {current} * {buffered}{shift_suffix(amount)};"))
                else:
                    body.append(Line(f"{current} *= {buffered};"))
                body.append(Line(clear_accumulator(target, buffered, self.ctx.config)))
            elif assignment in (Assignment.MIN, Assignment.MAX):
                body.append(Line(f"{current} = {assignment.value} ({current}, {buffered});"))
                body.append(Line(clear_accumulator(target, buffered, self.ctx.config)))
            else:
                body.append(Line(f"{current} = {buffered};"))
        return Function("finalizeEvent", owner, body=body)

    # --- Instance bookkeeping ---

    def init_statements(self) -> List[Node]:
        result: List[Node] = []
        for et in self.ctx.bed.event_targets:
            if et.track is not None:
                result.append(Line(f"{et.track} = 0;"))
            if et.time_index >= 0:
                result.append(Line(f"eventTime{et.time_index} = 10;"))
        return result

    def register(self) -> List[Node]:
        return [Line(f"{prefix}{name}.push_back (this);") for prefix, name in monitor_owners(self.ctx)]

    def release(self) -> List[Node]:
        return [Line(f"removeMonitor ({prefix}{name}, this);") for prefix, name in monitor_owners(self.ctx)]


def event_fields(ctx: RenderContext) -> List[Tuple[str, str]]:
    """(type, name) of the per-instance event state: monitor lists, edge trackers and time guards."""
    T = ctx.T
    result: List[Tuple[str, str]] = []
    seen = set()
    for src in ctx.bed.event_sources:
        name = naming.monitor_member(src.target.container)
        if name not in seen:
            seen.add(name)
            result.append((f"std::vector<Part<{T}> *>", name))
    for et in ctx.bed.event_targets:
        if et.track is not None:
            result.append((T, et.track))
        if et.time_index >= 0:
            result.append((T, f"eventTime{et.time_index}"))
    return result
