# src/simgen_core/toolchain/__init__.py
"""
Exposes the public interface of the native build package.
"""
from .build import BuildInvoker
from .exceptions import BuildFailureError, MissingRuntimeError, ToolchainInternalError
from .runtime_cache import RuntimeCache

__all__ = [
    "BuildInvoker",
    "RuntimeCache",
    "BuildFailureError",
    "MissingRuntimeError",
    "ToolchainInternalError",
]
