# src/simgen_core/eqset/expression_parser.py
"""
Turns equation text into Operator trees.

Model expressions are close enough to Python that the standard `ast` module can
parse them once two lexical differences are escaped: `$` may start a special
name (`$t`, `$up.$live`) and trailing apostrophes mark derivative order (`x'`).
Both are rewritten into plain identifiers before `ast.parse(mode="eval")` and
restored while the Python AST is converted node by node.
"""
import ast
import logging
import re
from typing import Optional, Tuple

import numpy as np

from .exceptions import ExpressionSyntaxError
from .operators import (
    KNOWN_FUNCTIONS, AND, EQ, GE, GT, LE, LT, NE, NOT, OR, AccessVariable, Add, Constant,
    Divide, EdgeKind, Event, Function, Input, Modulo, Multiply, Negate, Operator, Output,
    Power, ReadMatrix, Split, Subtract,
)

logger = logging.getLogger(__name__)

_DOLLAR = "_dollar_"
_PRIME = re.compile(r"([A-Za-z0-9_$])('+)")
_PRIME_MARK = re.compile(r"__p(\d+)$")

_BINARY = {
    ast.Add: Add, ast.Sub: Subtract, ast.Mult: Multiply,
    ast.Div: Divide, ast.Mod: Modulo, ast.Pow: Power,
}
_COMPARE = {
    ast.Eq: EQ, ast.NotEq: NE, ast.Lt: LT, ast.LtE: LE, ast.Gt: GT, ast.GtE: GE,
}


def _escape(text: str) -> str:
    text = text.replace("&&", " and ").replace("||", " or ")
    text = re.sub(r"!(?!=)", " not ", text)
    text = text.replace("^", "**")
    text = _PRIME.sub(lambda m: f"{m.group(1)}__p{len(m.group(2))}", text)
    return text.replace("$", _DOLLAR)


def _unescape(name: str) -> str:
    name = name.replace(_DOLLAR, "$")
    match = _PRIME_MARK.search(name)
    if match:
        name = name[:match.start()] + "'" * int(match.group(1))
    return name


def _dotted(node: ast.AST) -> Optional[str]:
    if isinstance(node, ast.Name):
        return _unescape(node.id)
    if isinstance(node, ast.Attribute):
        base = _dotted(node.value)
        if base is None:
            return None
        return f"{base}.{_unescape(node.attr)}"
    return None


class _Converter:
    def __init__(self, text: str):
        self.text = text

    def fail(self, details: str):
        raise ExpressionSyntaxError(text=self.text, details=details)

    def convert(self, node: ast.AST) -> Operator:
        if isinstance(node, ast.Expression):
            return self.convert(node.body)

        if isinstance(node, ast.Constant):
            if isinstance(node.value, bool):
                return Constant(1.0 if node.value else 0.0)
            if isinstance(node.value, (int, float, str)):
                return Constant(node.value)
            self.fail(f"Unsupported literal {node.value!r}.")

        if isinstance(node, (ast.Name, ast.Attribute)):
            name = _dotted(node)
            if name is None:
                self.fail("Only dotted names may be used to reference variables.")
            return AccessVariable(name)

        if isinstance(node, ast.BinOp):
            kind = _BINARY.get(type(node.op))
            if kind is None:
                self.fail(f"Unsupported operator '{type(node.op).__name__}'.")
            return kind(self.convert(node.left), self.convert(node.right))

        if isinstance(node, ast.UnaryOp):
            operand = self.convert(node.operand)
            if isinstance(node.op, ast.USub):
                if isinstance(operand, Constant) and operand.is_scalar:
                    return Constant(-operand.value)
                return Negate(operand)
            if isinstance(node.op, ast.UAdd):
                return operand
            if isinstance(node.op, ast.Not):
                return NOT(operand)
            self.fail(f"Unsupported unary operator '{type(node.op).__name__}'.")

        if isinstance(node, ast.BoolOp):
            kind = AND if isinstance(node.op, ast.And) else OR
            result = self.convert(node.values[0])
            for value in node.values[1:]:
                result = kind(result, self.convert(value))
            return result

        if isinstance(node, ast.Compare):
            if len(node.ops) != 1:
                self.fail("Chained comparisons are not supported. Combine them with 'and'.")
            kind = _COMPARE.get(type(node.ops[0]))
            if kind is None:
                self.fail(f"Unsupported comparison '{type(node.ops[0]).__name__}'.")
            return kind(self.convert(node.left), self.convert(node.comparators[0]))

        if isinstance(node, ast.List):
            try:
                rows = ast.literal_eval(node)
                return Constant(np.array(rows, dtype=float))
            except (ValueError, TypeError) as e:
                self.fail(f"Matrix literals must contain only numbers: {e}")

        if isinstance(node, ast.Call):
            return self.convert_call(node)

        self.fail(f"Unsupported syntax '{type(node).__name__}'.")

    def convert_call(self, node: ast.Call) -> Operator:
        if not isinstance(node.func, ast.Name):
            self.fail("Only plain function names can be called.")
        name = node.func.id
        if node.keywords:
            self.fail(f"Keyword arguments are not supported in call to '{name}'.")
        args = node.args

        if name == "split":
            names = [_dotted(a) for a in args]
            if not names or any(n is None for n in names):
                self.fail("split() takes one or more part names.")
            return Split(names)

        if name == "event":
            if not 1 <= len(args) <= 3:
                self.fail("event() takes a condition, an optional delay and an optional edge.")
            condition = self.convert(args[0])
            delay = self.convert(args[1]) if len(args) > 1 else None
            edge = EdgeKind.RISE
            if len(args) > 2:
                if not (isinstance(args[2], ast.Constant) and isinstance(args[2].value, str)):
                    self.fail("The edge argument of event() must be a string.")
                try:
                    edge = EdgeKind(args[2].value.lower())
                except ValueError:
                    self.fail(f"Unknown event edge '{args[2].value}'. Use rise, fall, change or nonzero.")
            return Event(condition, delay, edge)

        converted = [self.convert(a) for a in args]
        if name == "output":
            if len(converted) not in (2, 3):
                self.fail("output() takes a file name, a value and an optional column name.")
            return Output(*converted)
        if name == "input":
            if len(converted) != 3:
                self.fail("input() takes a file name, a row and a column.")
            return Input(*converted)
        if name == "matrix":
            if len(converted) != 3:
                self.fail("matrix() takes a file name, a row and a column.")
            return ReadMatrix(*converted)
        if name not in KNOWN_FUNCTIONS:
            self.fail(f"Unknown function '{name}'.")
        return Function(name, converted)


def parse_expression(text: str) -> Operator:
    """
    Parses one expression.

    Raises:
        ExpressionSyntaxError: If the text is empty, not valid syntax, or uses an
            unsupported construct.
    """
    if text is None or not str(text).strip():
        raise ExpressionSyntaxError(text=str(text), details="Expression is empty.")
    text = str(text).strip()
    try:
        tree = ast.parse(_escape(text), mode="eval")
    except SyntaxError as e:
        raise ExpressionSyntaxError(text=text, details=f"Invalid syntax: {e.msg}") from e
    return _Converter(text).convert(tree)


def parse_equation(text) -> Tuple[Operator, Optional[Operator], str]:
    """
    Parses 'value' or 'value @ condition'.

    Returns:
        (expression, condition or None, canonical condition string or "")
    """
    if isinstance(text, (int, float)) and not isinstance(text, bool):
        return Constant(text), None, ""
    value, sep, condition = str(text).partition("@")
    expression = parse_expression(value)
    if not sep:
        return expression, None, ""
    if_string = " ".join(condition.split())
    if not if_string:
        raise ExpressionSyntaxError(text=str(text), details="'@' must be followed by a condition.")
    return expression, parse_expression(if_string), if_string
