# src/simgen_core/codegen/statics.py
"""
File-scope objects of the generated program: constant matrices and the
handles of input, output and matrix files.

Handles are shared by file name, so every `output("v.out", ...)` in the model
writes through the same `OutputHolder`. Discovery walks the tree in the same
order as class emission, which keeps the numbering stable from run to run.
"""
import logging
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..analysis.planner import PlanTable
from ..config import CompileConfig
from ..constants import UNKNOWN
from ..eqset import EquationSet
from ..eqset.operators import Constant, Input, Operator, Output, ReadMatrix
from .cxx_ast import Line
from .render import fixed_literal, format_number

logger = logging.getLogger(__name__)

_HELPERS = {
    "matrix": ("MatrixInput", "matrixHelper", "Matrix"),
    "input": ("InputHolder", "inputHelper", "Input"),
    "output": ("OutputHolder", "outputHelper", "Output"),
}


class StaticObjects:
    """Names and definitions of every file-scope object in one program."""

    def __init__(self, config: CompileConfig):
        self.config = config
        self.definitions: List[Line] = []
        self._names: Dict[int, str] = {}
        self._handles: Dict[Tuple[str, str], str] = {}
        self._columns: Dict[int, str] = {}
        self._counts = {"Matrix": 0, "Input": 0, "Output": 0}

    def discover(self, root: EquationSet, table: PlanTable) -> "StaticObjects":
        for s in root.walk_bottom_up():
            bed = table[s]
            for op, name in list(bed.local.columns) + list(bed.global_.columns):
                self._columns[id(op)] = name
            for v in s.ordered:
                for entry in v.equations:
                    for expression in (entry.expression, entry.condition):
                        if expression is not None:
                            for op in expression.nodes():
                                self._visit(op)
            if s.connection_matrix is not None:
                self._add_handle("matrix", s.connection_matrix.file)
        logger.debug(f"Static objects: {len(self.definitions)} definition(s).")
        return self

    def _next_name(self, stem: str) -> str:
        name = f"{stem}{self._counts[stem]}"
        self._counts[stem] += 1
        return name

    def _visit(self, op: Operator) -> None:
        if isinstance(op, Constant) and op.is_matrix and id(op) not in self._names:
            self._names[id(op)] = self._matrix_constant(op)
        elif isinstance(op, (Input, Output, ReadMatrix)):
            file = op.file.fold()
            if isinstance(file, str):
                kind = {Input: "input", Output: "output", ReadMatrix: "matrix"}[type(op)]
                self._add_handle(kind, file)

    def _matrix_constant(self, op: Constant) -> str:
        values = np.atleast_2d(op.value)
        if np.ndim(op.value) == 1:
            values = values.T
        rows, cols = values.shape
        exponent = op.exponent_next if op.exponent_next is not UNKNOWN else op.exponent
        if self.config.fixed_point:
            elements = [fixed_literal(float(x), exponent) for x in values.flatten(order="F")]
        else:
            elements = [format_number(float(x)) for x in values.flatten(order="F")]
        name = self._next_name("Matrix")
        self.definitions.append(
            Line(f"MatrixFixed<{self.config.T},{rows},{cols}> {name} = {{{', '.join(elements)}}};")
        )
        return name

    def _add_handle(self, kind: str, file: str) -> str:
        key = (kind, file)
        if key not in self._handles:
            holder, helper, stem = _HELPERS[kind]
            name = self._next_name(stem)
            T = self.config.T
            self._handles[key] = name
            self.definitions.append(Line(f'{holder}<{T}> * {name} = {helper}<{T}> ("{file}");'))
        return self._handles[key]

    # --- Lookup ---

    def name_of(self, op: Constant) -> str:
        return self._names[id(op)]

    def handle_for(self, file: Operator, kind: str) -> Optional[str]:
        value = file.fold()
        if not isinstance(value, str):
            return None
        return self._handles.get((kind, value))

    def matrix_handle(self, file: str) -> str:
        return self._handles[("matrix", file)]

    def column_of(self, op: Output) -> str:
        return self._columns[id(op)]
