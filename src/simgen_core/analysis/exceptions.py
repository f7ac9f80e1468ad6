# src/simgen_core/analysis/exceptions.py
"""
Fatal conditions discovered while analysing or planning an equation-set tree.
Every one of them aborts the whole compile job.
"""
from dataclasses import dataclass
from typing import Tuple

from ..errors import DiagnosableError, format_diagnostic_report


class AnalysisError(DiagnosableError):
    """Local base class for analysis and planning errors."""
    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Model Analysis Error",
            details=str(self),
            suggestion="Review the model structure named in the details.",
            context={}
        )


@dataclass(frozen=True)
class UnresolvedReferenceError(AnalysisError):
    """A name in an equation does not lead to any variable."""
    fqn: str
    variable: str
    name: str

    def __str__(self):
        return f"Variable '{self.variable}' in '{self.fqn}' refers to '{self.name}', which cannot be resolved."

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Unresolved Reference",
            details=str(self),
            suggestion=(
                "Names are searched in the local part first, then in each enclosing part. "
                "Use '$up.' to reach the container, a connection alias ('A.x') to cross a connection, "
                "or a child part name ('child.x') to read from a sub-part."
            ),
            context={'fqn': self.fqn, 'variable': self.variable, 'user_input': self.name}
        )


@dataclass(frozen=True)
class AmbiguousReferenceError(AnalysisError):
    """A reference descends into a population that may hold more than one instance."""
    fqn: str
    variable: str
    population: str

    def __str__(self):
        return (
            f"Down-reference to population with more than one instance is ambiguous: "
            f"'{self.variable}' in '{self.fqn}' reads through '{self.population}'."
        )

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Ambiguous Down-Reference",
            details=str(self),
            suggestion=(
                f"Make '{self.population}' a singleton (no $n, or $n = 1) or reach the instances "
                "through a connection instead of a direct down-reference."
            ),
            context={'fqn': self.fqn, 'variable': self.variable}
        )


@dataclass(frozen=True)
class CyclicDependencyError(AnalysisError):
    """Temporaries that depend on each other with no stored value to break the loop."""
    fqn: str
    cycle: Tuple[str, ...]

    def __str__(self):
        path = " -> ".join(self.cycle + self.cycle[:1])
        return f"Temporary variables in '{self.fqn}' form a dependency cycle: {path}"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Cyclic Dependency",
            details=str(self),
            suggestion="Remove the 'temporary' flag from one variable in the cycle so its previous value can be stored.",
            context={'fqn': self.fqn}
        )


@dataclass(frozen=True)
class TypeConversionError(AnalysisError):
    """A $type split targets a part whose connection-ness differs from the source."""
    fqn: str
    target: str

    def __str__(self):
        return f"Can't change $type between connection and non-connection. ('{self.fqn}' -> '{self.target}')"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Invalid $type Conversion",
            details=str(self),
            suggestion="A split may only convert parts into parts, or connections into connections.",
            context={'fqn': self.fqn, 'variable': '$type'}
        )


@dataclass(frozen=True)
class UnfulfilledBindingError(AnalysisError):
    """A connection split target has an endpoint the source cannot supply."""
    fqn: str
    target: str
    alias: str

    def __str__(self):
        return (
            f"Unfulfilled connection binding during $type change. "
            f"'{self.target}' needs endpoint '{self.alias}', which '{self.fqn}' does not provide."
        )

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Unfulfilled Connection Binding",
            details=str(self),
            suggestion="Give the source connection an endpoint with the same alias and endpoint type.",
            context={'fqn': self.fqn, 'variable': '$type'}
        )


@dataclass(frozen=True)
class ExponentConvergenceError(AnalysisError):
    """Fixed-point exponent inference did not settle."""
    variables: Tuple[str, ...]
    iterations: int

    def __str__(self):
        names = ", ".join(self.variables)
        return f"Fixed-point exponents did not converge after {self.iterations} iteration(s): {names}"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Exponent Resolution Failed",
            details=str(self),
            suggestion=(
                "Give the listed variables a 'magnitude' hint, an initial value, or switch the "
                "numeric type to 'float'."
            ),
            context={}
        )


@dataclass(frozen=True)
class FlagOverflowError(AnalysisError):
    """More boolean state than fits in a 64-bit flag word."""
    fqn: str
    bits: int

    def __str__(self):
        return f"'{self.fqn}' needs {self.bits} flag bits; at most 64 are supported."

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Flag Overflow",
            details=str(self),
            suggestion="Reduce the number of distinct event() conditions in this part.",
            context={'fqn': self.fqn}
        )


@dataclass(frozen=True)
class PlanFrozenError(AnalysisError):
    """A frozen BackendData was modified. Internal contract violation."""
    fqn: str
    field_name: str

    def __str__(self):
        return f"Attempted to modify '{self.field_name}' of the frozen plan for '{self.fqn}'."

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Internal Error: Frozen Plan",
            details=str(self),
            suggestion="Plans are read-only once the lifetime pass completes. Please report this as a bug.",
            context={'fqn': self.fqn}
        )


@dataclass(frozen=True)
class UnsupportedFeatureError(AnalysisError):
    """The model uses a construct this compiler does not generate code for."""
    fqn: str
    details: str

    def __str__(self):
        return f"Unsupported construct in '{self.fqn}': {self.details}"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Unsupported Model Construct",
            details=self.details,
            suggestion="Restructure the model to avoid this construct.",
            context={'fqn': self.fqn}
        )
