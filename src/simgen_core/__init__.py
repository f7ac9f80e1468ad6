# src/simgen_core/__init__.py
import logging
from .log_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)
logger.info("SimGen Core package initialized.")

from .units import ureg, pint, Quantity
from .config import CompileConfig, parse_compile_config
from .eqset import EquationSet, ModelBuilder, Variable
from .parser import ModelParser
from .job import CompileJob, CompileResult, compile_model, load_model
from .toolchain import BuildInvoker, RuntimeCache
from .errors import SimGenError, ModelBuildError, CompileAbortError, ToolchainError

__all__ = [
    # Units
    "ureg", "pint", "Quantity",
    # Configuration
    "CompileConfig", "parse_compile_config",
    # Model
    "EquationSet", "Variable", "ModelParser", "ModelBuilder",
    # Compile
    "CompileJob", "CompileResult", "compile_model", "load_model",
    # Toolchain
    "BuildInvoker", "RuntimeCache",
    # Top-Level Errors (Actionable Diagnostics)
    "SimGenError", "ModelBuildError", "CompileAbortError", "ToolchainError",
]
