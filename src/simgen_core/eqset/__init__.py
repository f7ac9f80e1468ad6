from .attributes import Attribute, AttributeSet
from .equation_set import (
    AccountableConnection,
    ConnectionBinding,
    ConnectionMatrix,
    EquationSet,
    ResolutionStep,
    StepKind,
    split_order,
)
from .exceptions import (
    DuplicateDefinitionError,
    EquationSetError,
    ExpressionSyntaxError,
    FrozenAttributesError,
)
from .expression_parser import parse_equation, parse_expression
from .operators import Descent, EdgeKind, Operator
from .variable import (
    SCALAR,
    TEXT,
    Assignment,
    EquationEntry,
    StorageKind,
    ValueType,
    Variable,
    VariableReference,
)
from .builder import ModelBuilder, equation

__all__ = [
    "Attribute", "AttributeSet",
    "AccountableConnection", "ConnectionBinding", "ConnectionMatrix", "EquationSet",
    "ResolutionStep", "StepKind", "split_order",
    "DuplicateDefinitionError", "EquationSetError", "ExpressionSyntaxError", "FrozenAttributesError",
    "parse_equation", "parse_expression",
    "Descent", "EdgeKind", "Operator",
    "SCALAR", "TEXT", "Assignment", "EquationEntry", "StorageKind", "ValueType", "Variable",
    "VariableReference",
    "ModelBuilder", "equation",
]
