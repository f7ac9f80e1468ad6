# src/simgen_core/codegen/__init__.py
"""
Exposes the public interface of the C++ code synthesizer.
"""
from .cxx_ast import CxxPrinter, TranslationUnit
from .exceptions import CodegenError, UnknownStorageTypeError, UnrenderableExpressionError
from .program import ProgramGenerator
from .render import Phase, RenderContext

__all__ = [
    "ProgramGenerator",
    "CxxPrinter",
    "TranslationUnit",
    "RenderContext",
    "Phase",
    "CodegenError",
    "UnknownStorageTypeError",
    "UnrenderableExpressionError",
]
