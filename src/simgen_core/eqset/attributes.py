# src/simgen_core/eqset/attributes.py
"""
The closed set of variable attributes and a monotonic bitset holding them.

Attributes are discovered pass by pass during analysis and are never removed.
AttributeSet offers no removal operation, so monotonicity holds by construction,
and `snapshot()` returns a plain Flag value that tests can compare with `>=`-style
superset checks. Before synthesis the job freezes every set; a later `add` is an
internal contract violation.
"""
from enum import Flag, auto
from typing import Iterator

from .exceptions import FrozenAttributesError


class Attribute(Flag):
    NONE = 0
    CONSTANT = auto()
    TEMPORARY = auto()
    GLOBAL = auto()
    PREEXISTENT = auto()
    REFERENCE = auto()
    DUMMY = auto()
    ACCESSOR = auto()
    INIT_ONLY = auto()
    EXTERNAL_READ = auto()
    EXTERNAL_WRITE = auto()
    CYCLE = auto()
    DERIVATIVE_OR_DEPENDENCY = auto()
    UPDATES = auto()
    READ_ONLY = auto()


_SINGLE_ATTRIBUTES = [a for a in Attribute if a is not Attribute.NONE]


class AttributeSet:
    __slots__ = ("_bits", "_frozen", "_owner")

    def __init__(self, owner: str = ""):
        self._bits = Attribute.NONE
        self._frozen = False
        self._owner = owner

    def add(self, *attributes: Attribute) -> None:
        combined = Attribute.NONE
        for a in attributes:
            combined |= a
        if (self._bits | combined) == self._bits:
            return
        if self._frozen:
            raise FrozenAttributesError(variable=self._owner, attribute=str(combined))
        self._bits |= combined

    def has(self, attribute: Attribute) -> bool:
        return bool(self._bits & attribute)

    def has_any(self, *attributes: Attribute) -> bool:
        return any(self._bits & a for a in attributes)

    def has_all(self, *attributes: Attribute) -> bool:
        return all(self._bits & a for a in attributes)

    def snapshot(self) -> Attribute:
        return self._bits

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __iter__(self) -> Iterator[Attribute]:
        return (a for a in _SINGLE_ATTRIBUTES if self._bits & a)

    def __contains__(self, attribute: Attribute) -> bool:
        return self.has(attribute)

    def __repr__(self):
        names = ", ".join(a.name.lower() for a in self)
        return f"AttributeSet({names})"
