# src/simgen_core/eqset/exceptions.py
"""
Diagnosable exceptions raised while assembling or mutating the equation-set tree.
"""
from dataclasses import dataclass

from ..errors import DiagnosableError, format_diagnostic_report


class EquationSetError(DiagnosableError):
    """Local base class for errors in the equation-set data model."""
    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Equation Set Error",
            details=str(self),
            suggestion="Review the structure of the model.",
            context={}
        )


@dataclass(frozen=True)
class ExpressionSyntaxError(EquationSetError):
    """An equation's text could not be turned into an expression tree."""
    text: str
    details: str

    def __str__(self):
        return f"Cannot parse expression '{self.text}': {self.details}"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Expression Syntax Error",
            details=self.details,
            suggestion=(
                "Expressions use infix arithmetic, comparisons, 'and'/'or'/'not' (or '&&', '||', '!'), "
                "function calls such as exp(x), and '@' to separate a condition: 'value @ condition'."
            ),
            context={'user_input': self.text}
        )


@dataclass(frozen=True)
class DuplicateDefinitionError(EquationSetError):
    """A part or variable name appears twice in the same equation set."""
    fqn: str
    name: str

    def __str__(self):
        return f"'{self.name}' is defined more than once in '{self.fqn}'."

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Duplicate Definition",
            details=str(self),
            suggestion="Rename one of the definitions or merge their equations.",
            context={'fqn': self.fqn, 'variable': self.name}
        )


@dataclass(frozen=True)
class FrozenAttributesError(EquationSetError):
    """An attribute was added after analysis finished. Internal contract violation."""
    variable: str
    attribute: str

    def __str__(self):
        return f"Attempted to add {self.attribute} to frozen variable '{self.variable}'."

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Internal Error: Frozen Attributes",
            details=str(self),
            suggestion="Attribute discovery must finish before code synthesis. Please report this as a bug.",
            context={'variable': self.variable}
        )


@dataclass(frozen=True)
class UnknownEndpointError(EquationSetError):
    """A connection names an endpoint path that does not lead to a part."""
    fqn: str
    alias: str
    path: str

    def __str__(self):
        return f"Connection '{self.fqn}' binds '{self.alias}' to '{self.path}', which is not a part."

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Unknown Connection Endpoint",
            details=str(self),
            suggestion="Endpoint paths are resolved from the connection's container outward. Check the spelling of each part name.",
            context={'fqn': self.fqn, 'user_input': self.path}
        )
