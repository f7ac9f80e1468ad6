# src/simgen_core/codegen/naming.py
"""
C++ identifiers for equation sets and variables.

Model names may contain any character (`x'`, `$index`, `A.$k`). `mangle` keeps
letters and digits and escapes everything else as `_<hex>`, so distinct model
names always give distinct identifiers.
"""
from typing import Optional

from ..eqset import EquationSet, Variable

WRAPPER = "Wrapper"


def mangle(name: str, prefix: str = "_") -> str:
    """mangle("x'") == "_x_27", mangle("$index") == "__24index"."""
    result = [prefix]
    for c in name:
        if c.isascii() and c.isalnum():
            result.append(c)
        else:
            result.append(f"_{ord(c):02x}")
    return "".join(result)


def member(v: Variable) -> str:
    """Field (or local) name holding the value of v."""
    return mangle(v.full_name)


def next_member(v: Variable) -> str:
    """Field holding the buffered value of v until it is committed."""
    return "next_" + mangle(v.full_name)


def class_name(s: Optional[EquationSet]) -> str:
    """Instance class of s. Nested parts join their container names with '_'."""
    if s is None:
        return WRAPPER
    own = mangle(s.name, prefix="")
    if s.container is None:
        return own
    return class_name(s.container) + "_" + own


def population_class(s: EquationSet) -> str:
    return class_name(s) + "_Population"


def population_member(s: EquationSet) -> str:
    """Field of the container instance (or of Wrapper, for the root) holding the population of s."""
    return mangle(s.name)


def binding_member(alias: str) -> str:
    """Pointer from a connection instance to its endpoint instance."""
    return mangle(alias)


def count_member(connection: EquationSet, alias: str) -> str:
    """Counter kept by an endpoint of how many `connection` instances bind to it as `alias`."""
    return f"{class_name(connection)}_{mangle(alias, prefix='')}_count"


def monitor_member(target: EquationSet) -> str:
    """Vector of target instances whose events this source tests."""
    return "eventMonitor_" + class_name(target)


def conversion_function(source: EquationSet, destination: EquationSet) -> str:
    return f"{class_name(source)}_2_{class_name(destination)}"
