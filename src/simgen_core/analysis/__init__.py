# src/simgen_core/analysis/__init__.py
"""
Defines the public interface for the analysis passes.

The passes run strictly in sequence over the whole equation-set tree: references,
structure, events, storage planning, fixed-point exponents and lifetimes. Each one
annotates the tree in place, except the planner, whose output is the PlanTable.
"""
from .events import DELAY_COMPUTED, DELAY_NO_CARE, EventAnalyzer, EventSource, EventTarget
from .exceptions import (
    AmbiguousReferenceError,
    AnalysisError,
    CyclicDependencyError,
    ExponentConvergenceError,
    FlagOverflowError,
    PlanFrozenError,
    TypeConversionError,
    UnfulfilledBindingError,
    UnresolvedReferenceError,
    UnsupportedFeatureError,
)
from .exponents import ExponentResolver
from .lifetime import LifetimeAnalyzer
from .planner import BackendData, BackendPlanner, PlanTable, ScopePlan, is_buffered, is_member
from .resolver import ReferenceResolver
from .structure import StructureAnalyzer

__all__ = [
    # Passes
    "ReferenceResolver",
    "StructureAnalyzer",
    "EventAnalyzer",
    "BackendPlanner",
    "ExponentResolver",
    "LifetimeAnalyzer",
    # Results
    "BackendData",
    "PlanTable",
    "ScopePlan",
    "EventSource",
    "EventTarget",
    "DELAY_COMPUTED",
    "DELAY_NO_CARE",
    "is_buffered",
    "is_member",
    # Exceptions
    "AnalysisError",
    "AmbiguousReferenceError",
    "CyclicDependencyError",
    "ExponentConvergenceError",
    "FlagOverflowError",
    "PlanFrozenError",
    "TypeConversionError",
    "UnfulfilledBindingError",
    "UnresolvedReferenceError",
    "UnsupportedFeatureError",
]
