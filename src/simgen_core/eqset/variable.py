# src/simgen_core/eqset/variable.py
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional

from ..constants import MSB, UNKNOWN
from .attributes import Attribute, AttributeSet
from .operators import Operator

if TYPE_CHECKING:
    from .equation_set import EquationSet, ResolutionStep

logger = logging.getLogger(__name__)


class Assignment(Enum):
    """How simultaneous writers to one variable combine."""
    REPLACE = "replace"
    ADD = "add"
    MULTIPLY = "multiply"
    DIVIDE = "divide"
    MIN = "min"
    MAX = "max"

    @property
    def identity(self) -> float:
        """The value an accumulator is reset to before writers combine into it."""
        if self in (Assignment.MULTIPLY, Assignment.DIVIDE):
            return 1.0
        if self is Assignment.MIN:
            return math.inf
        if self is Assignment.MAX:
            return -math.inf
        return 0.0

    @property
    def accumulates(self) -> bool:
        return self is not Assignment.REPLACE


class StorageKind(Enum):
    SCALAR = "scalar"
    MATRIX = "matrix"
    TEXT = "text"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ValueType:
    kind: StorageKind = StorageKind.SCALAR
    rows: int = 1
    cols: int = 1


SCALAR = ValueType()
TEXT = ValueType(StorageKind.TEXT)


@dataclass(eq=False)
class EquationEntry:
    """One conditional right-hand side of a variable."""
    expression: Operator
    condition: Optional[Operator] = None
    if_string: str = ""
    variable: Optional["Variable"] = field(default=None, repr=False)

    @property
    def is_init(self) -> bool:
        return self.if_string == "$init"

    @property
    def is_connect(self) -> bool:
        return self.if_string == "$connect"

    @property
    def unconditional(self) -> bool:
        return self.if_string == ""


class Variable:
    """A named quantity in an equation set, possibly a derivative (order > 0)."""

    def __init__(self, name: str, order: int = 0, assignment: Assignment = Assignment.REPLACE,
                 value_type: ValueType = SCALAR):
        self.name = name
        self.order = order
        self.assignment = assignment
        self.value_type = value_type
        self.equations: List[EquationEntry] = []
        self.container: Optional["EquationSet"] = None
        self.attributes = AttributeSet(owner=self.full_name)
        self.derivative: Optional[Variable] = None
        self.reference: VariableReference = VariableReference(self)
        self.uses: Dict[Variable, int] = {}
        self.depends: List[Variable] = []
        self.exponent: Optional[int] = UNKNOWN
        self.center: int = MSB // 2
        self.magnitude: Optional[float] = None

    @property
    def full_name(self) -> str:
        return self.name + "'" * self.order

    def add_equation(self, entry: EquationEntry) -> EquationEntry:
        entry.variable = self
        self.equations.append(entry)
        return entry

    def add_attribute(self, *attributes: Attribute) -> None:
        self.attributes.add(*attributes)

    def has(self, attribute: Attribute) -> bool:
        return self.attributes.has(attribute)

    def has_any(self, *attributes: Attribute) -> bool:
        return self.attributes.has_any(*attributes)

    def has_all(self, *attributes: Attribute) -> bool:
        return self.attributes.has_all(*attributes)

    def add_dependency(self, other: "Variable") -> None:
        """Records that this variable reads other."""
        if other is self:
            return
        if other not in self.depends:
            self.depends.append(other)
        other.uses[self] = other.uses.get(self, 0) + 1

    def has_users(self) -> bool:
        return bool(self.uses)

    @property
    def fqn(self) -> str:
        if self.container is None:
            return self.full_name
        return f"{self.container.fqn}.{self.full_name}"

    def default_equation(self) -> Optional[EquationEntry]:
        for e in reversed(self.equations):
            if e.unconditional:
                return e
        return None

    def __repr__(self):
        return f"Variable({self.fqn!r})"


@dataclass(eq=False)
class VariableReference:
    """A resolved path from the reading equation set to the variable that holds storage."""
    variable: Variable
    resolution: List["ResolutionStep"] = field(default_factory=list)

    @property
    def is_local(self) -> bool:
        return not self.resolution

    def __repr__(self):
        steps = " ".join(str(s) for s in self.resolution)
        return f"VariableReference({self.variable.fqn!r}{', ' + steps if steps else ''})"
