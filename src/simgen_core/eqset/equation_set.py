# src/simgen_core/eqset/equation_set.py
"""
The equation-set tree: parts, populations, connections and the root model.

An EquationSet is constructed once from a resolved model document and then
annotated in place by the analysis passes (attributes on variables, lethality
flags, evaluation order). Planner output is NOT stored on the node; it lives in
the side table `analysis.planner.PlanTable`, keyed by `fqn`.
"""
import logging
import re
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Iterator, List, Optional, Tuple

from .exceptions import DuplicateDefinitionError
from .operators import Operator
from .variable import Variable

if TYPE_CHECKING:
    from ..analysis.events import EventTarget

logger = logging.getLogger(__name__)

_PRIMES = re.compile(r"^(.*?)('*)$")


def split_order(name: str) -> Tuple[str, int]:
    """Splits "x''" into ("x", 2)."""
    match = _PRIMES.match(name)
    return match.group(1), len(match.group(2))


class StepKind(Enum):
    ASCEND = auto()
    DESCEND = auto()
    TRAVERSE = auto()


@dataclass(frozen=True, eq=False)
class ResolutionStep:
    """One hop of a resolution path. `target` is the equation set reached by the hop."""
    kind: StepKind
    target: "EquationSet"
    binding: Optional["ConnectionBinding"] = None

    def __str__(self):
        if self.kind is StepKind.TRAVERSE:
            return f"->{self.binding.alias}"
        if self.kind is StepKind.ASCEND:
            return f"^{self.target.name}"
        return f"v{self.target.name}"


@dataclass(eq=False)
class ConnectionBinding:
    """A named endpoint of a connection type, e.g. 'A' or 'B'."""
    alias: str
    endpoint: "EquationSet"
    index: int
    resolution: List[ResolutionStep] = field(default_factory=list)


@dataclass(eq=False)
class ConnectionMatrix:
    """Explicit sparse adjacency: matrix nonzeros define which endpoint pairs connect."""
    file: str
    rows: ConnectionBinding
    cols: ConnectionBinding
    row_mapping: Optional[Operator] = None
    col_mapping: Optional[Operator] = None


@dataclass(frozen=True, eq=False)
class AccountableConnection:
    """Endpoint-side record: instances of `endpoint` count how many `connection` instances bind to them as `alias`."""
    connection: "EquationSet"
    alias: str


class EquationSet:
    def __init__(self, name: str, container: Optional["EquationSet"] = None):
        self.name = name
        self.container = container
        self.parts: List[EquationSet] = []
        self.variables: List[Variable] = []
        self.connection_bindings: Optional[List[ConnectionBinding]] = None
        self.connection_matrix: Optional[ConnectionMatrix] = None
        self.splits: List[Tuple["EquationSet", ...]] = []
        self.accountable_connections: List[AccountableConnection] = []
        self.connected = False
        self.lethal_p = False
        self.lethal_connection = False
        self.lethal_container = False
        self.lethal_type = False
        self.ordered: List[Variable] = []
        self.event_targets: List["EventTarget"] = []

    # --- Construction ---

    def add_part(self, part: "EquationSet") -> "EquationSet":
        if self.find_part(part.name) is not None:
            raise DuplicateDefinitionError(fqn=self.fqn, name=part.name)
        part.container = self
        self.parts.append(part)
        return part

    def add_variable(self, variable: Variable) -> Variable:
        if self.find(variable.full_name) is not None:
            raise DuplicateDefinitionError(fqn=self.fqn, name=variable.full_name)
        variable.container = self
        self.variables.append(variable)
        return variable

    def add_binding(self, alias: str, endpoint: "EquationSet") -> ConnectionBinding:
        if self.connection_bindings is None:
            self.connection_bindings = []
        binding = ConnectionBinding(alias=alias, endpoint=endpoint, index=len(self.connection_bindings))
        self.connection_bindings.append(binding)
        return binding

    # --- Lookup ---

    def find(self, name: str) -> Optional[Variable]:
        base, order = split_order(name)
        for v in self.variables:
            if v.name == base and v.order == order:
                return v
        return None

    def find_part(self, name: str) -> Optional["EquationSet"]:
        for p in self.parts:
            if p.name == name:
                return p
        return None

    def find_binding(self, alias: str) -> Optional[ConnectionBinding]:
        for b in self.connection_bindings or ():
            if b.alias == alias:
                return b
        return None

    # --- Structure ---

    @property
    def is_connection(self) -> bool:
        return bool(self.connection_bindings)

    @property
    def is_root(self) -> bool:
        return self.container is None

    @property
    def fqn(self) -> str:
        if self.container is None:
            return self.name
        return f"{self.container.fqn}.{self.name}"

    @property
    def depth(self) -> int:
        return 0 if self.container is None else self.container.depth + 1

    def ancestors(self) -> Iterator["EquationSet"]:
        s = self.container
        while s is not None:
            yield s
            s = s.container

    def walk_bottom_up(self) -> Iterator["EquationSet"]:
        """Children before their container, in declaration order."""
        for p in self.parts:
            yield from p.walk_bottom_up()
        yield self

    def walk_top_down(self) -> Iterator["EquationSet"]:
        yield self
        for p in self.parts:
            yield from p.walk_top_down()

    def all_variables(self) -> Iterator[Variable]:
        for s in self.walk_top_down():
            yield from s.variables

    def __repr__(self):
        return f"EquationSet({self.fqn!r})"
