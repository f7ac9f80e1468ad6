# src/simgen_core/codegen/exceptions.py
"""
Fatal conditions discovered while writing C++ from a finished plan.
"""
from dataclasses import dataclass

from ..errors import DiagnosableError, format_diagnostic_report


class CodegenError(DiagnosableError):
    """Local base class for code synthesis errors."""
    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Code Generation Error",
            details=str(self),
            suggestion="Review the model construct named in the details.",
            context={}
        )


@dataclass(frozen=True)
class UnknownStorageTypeError(CodegenError):
    """A variable's storage kind has no zero value in the target language."""
    fqn: str
    kind: str

    def __str__(self):
        return f"Unknown Type: cannot zero-initialize '{self.fqn}' of kind '{self.kind}'."

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Unknown Type",
            details=str(self),
            suggestion="Declare the variable as 'scalar', 'matrix' or 'text'.",
            context={'variable': self.fqn}
        )


@dataclass(frozen=True)
class UnrenderableExpressionError(CodegenError):
    """An expression node, or a reference path, has no C++ rendering in its context."""
    fqn: str
    details: str

    def __str__(self):
        return f"Cannot render expression in '{self.fqn}': {self.details}"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Unrenderable Expression",
            details=self.details,
            suggestion="Move the read into a per-instance variable, or reach the value through a connection.",
            context={'fqn': self.fqn}
        )
