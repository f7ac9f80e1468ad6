# src/simgen_core/eqset/builder.py
"""
Assembles the EquationSet tree from the parser's IR.

The builder only wires structure: parts, variables with their parsed equations,
connection endpoints and connection matrices. Name resolution inside
expressions, special variables and every attribute beyond the ones the user
declared are left to the analysis passes.
"""
import logging
from typing import Any, Optional

from ..parser.raw_data import ParsedPartNode, ParsedVariableData
from .attributes import Attribute
from .equation_set import ConnectionMatrix, EquationSet, split_order
from .exceptions import UnknownEndpointError
from .expression_parser import parse_equation, parse_expression
from .variable import SCALAR, TEXT, Assignment, EquationEntry, StorageKind, ValueType, Variable

logger = logging.getLogger(__name__)


def equation(text: Any) -> EquationEntry:
    """Builds an EquationEntry from 'value' or 'value @ condition' text."""
    expression, condition, if_string = parse_equation(text)
    return EquationEntry(expression=expression, condition=condition, if_string=if_string)


def _value_type(data: ParsedVariableData) -> ValueType:
    if data.value_type == "text":
        return TEXT
    if data.value_type == "matrix":
        return ValueType(StorageKind.MATRIX, data.rows, data.cols)
    return SCALAR


class ModelBuilder:
    """
    Converts a ParsedPartNode tree into an EquationSet tree.
    """

    def build(self, node: ParsedPartNode) -> EquationSet:
        logger.info(f"Building equation-set tree for model '{node.name}'.")
        root = self._build_part(node, container=None)
        self._wire_connections(node, root)
        logger.debug(f"Model '{root.name}' built with {sum(1 for _ in root.walk_top_down())} equation set(s).")
        return root

    def _build_part(self, node: ParsedPartNode, container: Optional[EquationSet]) -> EquationSet:
        part = EquationSet(node.name)
        if container is not None:
            container.add_part(part)
        for data in node.variables:
            part.add_variable(self._build_variable(data))
        for child in node.parts:
            self._build_part(child, part)
        return part

    @staticmethod
    def _build_variable(data: ParsedVariableData) -> Variable:
        base, order = split_order(data.name)
        v = Variable(base, order, Assignment(data.assignment), _value_type(data))
        for text in data.equations:
            v.add_equation(equation(text))
        if data.temporary:
            v.add_attribute(Attribute.TEMPORARY)
        if data.global_:
            v.add_attribute(Attribute.GLOBAL)
        if data.dummy:
            v.add_attribute(Attribute.DUMMY)
        v.magnitude = data.magnitude
        return v

    def _wire_connections(self, node: ParsedPartNode, part: EquationSet) -> None:
        for alias, path in node.connect.items():
            endpoint = self.find_endpoint(part, path)
            if endpoint is None:
                raise UnknownEndpointError(fqn=part.fqn, alias=alias, path=path)
            part.add_binding(alias, endpoint)
        if node.matrix is not None:
            rows = part.find_binding(node.matrix.rows)
            cols = part.find_binding(node.matrix.cols)
            if rows is None or cols is None:
                missing = node.matrix.rows if rows is None else node.matrix.cols
                raise UnknownEndpointError(fqn=part.fqn, alias=missing, path="<matrix>")
            part.connection_matrix = ConnectionMatrix(
                file=node.matrix.file,
                rows=rows,
                cols=cols,
                row_mapping=parse_expression(node.matrix.row_mapping) if node.matrix.row_mapping else None,
                col_mapping=parse_expression(node.matrix.col_mapping) if node.matrix.col_mapping else None,
            )
        for child_node, child in zip(node.parts, part.parts):
            self._wire_connections(child_node, child)

    @staticmethod
    def find_endpoint(connection: EquationSet, path: str) -> Optional[EquationSet]:
        """
        Resolves a dotted part path for a connection. The first name is searched
        among the parts of the connection's container, then of each enclosing
        container in turn; the remaining names descend.
        """
        names = path.split(".")
        scope = connection.container
        while scope is not None:
            found = scope.find_part(names[0])
            if found is not None and found is not connection:
                for name in names[1:]:
                    found = found.find_part(name)
                    if found is None:
                        return None
                return found
            scope = scope.container
        return None
