# src/simgen_core/toolchain/exceptions.py
"""
Failures of the native build that follows code generation.
"""
from dataclasses import dataclass
from typing import Tuple

from ..errors import DiagnosableError, format_diagnostic_report


class ToolchainInternalError(DiagnosableError):
    """Local base class for build errors."""
    pass


@dataclass(frozen=True)
class BuildFailureError(ToolchainInternalError):
    """The compiler exited with a nonzero status. Carries its captured stderr."""
    command: Tuple[str, ...]
    stderr: str

    def __str__(self):
        return f"Failed to compile: {' '.join(self.command)}\n{self.stderr}"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Native Build Failure",
            details=f"Command: {' '.join(self.command)}\n\n{self.stderr or '(no compiler output)'}",
            suggestion="Check that the compiler and runtime directory are configured correctly. "
                       "Errors inside the generated source indicate a code generation defect.",
            context={}
        )


@dataclass(frozen=True)
class MissingRuntimeError(ToolchainInternalError):
    """The runtime directory is unset or lacks a source file needed for the build."""
    path: str
    details: str

    def __str__(self):
        return f"Runtime not available at '{self.path}': {self.details}"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Missing Runtime",
            details=self.details,
            suggestion="Set 'runtime_dir' in the compile configuration to the directory holding runtime.h and runtime.cc.",
            context={'user_input': self.path}
        )
