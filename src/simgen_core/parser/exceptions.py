# src/simgen_core/parser/exceptions.py
"""
Diagnosable exceptions for loading model documents.

`ParsingError` covers file-level and YAML syntax problems. `SchemaValidationError`
covers documents that load but do not match the model schema.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from ..errors import DiagnosableError, format_diagnostic_report


class BaseParsingError(DiagnosableError):
    """Local base class for all model-document loading errors."""
    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="Generic Parsing Error",
            details=str(self),
            suggestion="Please check the format and content of the model document.",
            context={}
        )


@dataclass(frozen=True)
class ParsingError(BaseParsingError):
    """The file is missing, unreadable, or not valid YAML."""
    details: str
    file_path: Path

    def __str__(self):
        return f"Parsing error in file '{self.file_path}': {self.details}"

    def get_diagnostic_report(self) -> str:
        return format_diagnostic_report(
            error_type="YAML Parsing or File Error",
            details=self.details,
            suggestion="Ensure the file exists, has the correct read permissions, and contains valid YAML syntax.",
            context={'source_file': self.file_path}
        )


@dataclass(frozen=True)
class SchemaValidationError(BaseParsingError):
    """The YAML is well formed but does not describe a model."""
    errors: Dict[str, Any]
    file_path: Path

    def __str__(self):
        return f"Model schema validation failed for file '{self.file_path}':\n{self._error_lines()}"

    def _error_lines(self) -> str:
        return "\n".join(f"  - Field '{k}': {v}" for k, v in sorted(self.errors.items(), key=lambda kv: str(kv[0])))

    def get_diagnostic_report(self) -> str:
        details = (
            "The structure of the model document does not conform to the required schema.\n"
            f"See details for {len(self.errors)} issue(s) below:\n\n{self._error_lines()}"
        )
        return format_diagnostic_report(
            error_type="Model Schema Validation Error",
            details=details,
            suggestion="Correct the listed fields. Part names must be identifiers; equations must be a list of strings or numbers.",
            context={'source_file': self.file_path}
        )
