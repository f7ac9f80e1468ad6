# src/simgen_core/parser/raw_data.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

# Intermediate Representation produced by ModelParser and consumed by
# ModelBuilder. Frozen dataclasses keep raw dictionaries out of the builder.


@dataclass(frozen=True)
class ParsedVariableData:
    """IR for one variable: its name as written (primes included) and raw equation texts."""
    name: str
    equations: List[Any]
    assignment: str = "replace"
    temporary: bool = False
    global_: bool = False
    dummy: bool = False
    value_type: str = "scalar"
    rows: int = 1
    cols: int = 1
    magnitude: Optional[float] = None


@dataclass(frozen=True)
class ParsedMatrixData:
    """IR for an explicit connection matrix."""
    file: str
    rows: str
    cols: str
    row_mapping: Optional[str] = None
    col_mapping: Optional[str] = None


@dataclass(frozen=True)
class ParsedPartNode:
    """
    One equation set of the model document. Forms a tree through `parts`.
    `connect` maps endpoint aliases to dotted part paths.
    """
    name: str
    source_yaml_path: Path
    variables: List[ParsedVariableData] = field(default_factory=list)
    parts: List[ParsedPartNode] = field(default_factory=list)
    connect: Dict[str, str] = field(default_factory=dict)
    matrix: Optional[ParsedMatrixData] = None
    raw_config: Optional[Dict[str, Any]] = None
