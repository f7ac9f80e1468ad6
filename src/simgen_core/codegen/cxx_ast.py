# src/simgen_core/codegen/cxx_ast.py
"""
A small typed syntax tree for the generated C++ and its pretty-printer.

Generators build nodes; only `CxxPrinter` produces text. Expressions and
single statements are carried as strings inside `Line` nodes, while every
construct that opens a brace (classes, functions, if/else, loops, switches) is
a node of its own, so indentation and brace placement are decided in one place.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

INDENT = "  "


@dataclass
class Line:
    """One statement or preprocessor line, printed verbatim at the current indent."""
    text: str


@dataclass
class Blank:
    pass


@dataclass
class Block:
    """A bare brace-delimited scope."""
    body: List["Node"] = field(default_factory=list)


@dataclass
class If:
    branches: List[Tuple[str, List["Node"]]] = field(default_factory=list)
    otherwise: Optional[List["Node"]] = None


@dataclass
class For:
    header: str
    body: List["Node"] = field(default_factory=list)


@dataclass
class Switch:
    """Each case is (label, body). A label may be a list of labels sharing one body; "default" is the default label."""
    expression: str
    cases: List[Tuple[Union[str, List[str]], List["Node"]]] = field(default_factory=list)


@dataclass
class Try:
    body: List["Node"] = field(default_factory=list)
    handlers: List[Tuple[str, List["Node"]]] = field(default_factory=list)


@dataclass
class Function:
    """
    A member function (owner set) or free function (owner None).

    Constructors have `return_type == ""` and `name == owner`; destructors are
    named "~Owner".
    """
    name: str
    owner: Optional[str] = None
    return_type: str = "void"
    params: str = ""
    body: List["Node"] = field(default_factory=list)
    virtual: bool = True

    @property
    def is_constructor(self) -> bool:
        return self.return_type == "" and not self.name.startswith("~")

    def signature(self, qualified: bool) -> str:
        name = f"{self.owner}::{self.name}" if qualified and self.owner else self.name
        head = f"{self.return_type} {name}" if self.return_type else name
        return f"{head} ({self.params})"


@dataclass
class Field:
    type: str
    name: str

    def declaration(self) -> str:
        separator = "" if self.type.endswith("*") else " "
        return f"{self.type}{separator}{self.name};"


@dataclass
class ClassDecl:
    name: str
    base: Optional[str] = None
    nested: List["ClassDecl"] = field(default_factory=list)
    fields: List[Field] = field(default_factory=list)
    methods: List[Function] = field(default_factory=list)


@dataclass
class TranslationUnit:
    items: List["Node"] = field(default_factory=list)


Node = Union[Line, Blank, Block, If, For, Switch, Try, Function, Field, ClassDecl, TranslationUnit]


class CxxPrinter:
    """
    Renders a syntax tree to text with two-space indentation.

    Class declarations list member functions by signature only; their bodies are
    printed where the Function node itself appears in the translation unit.
    """

    def __init__(self, indent: str = INDENT):
        self.indent = indent

    def print(self, node: Node) -> str:
        lines: List[str] = []
        self._emit(node, 0, lines)
        return "\n".join(lines) + "\n"

    def _emit(self, node: Node, depth: int, out: List[str]) -> None:
        method = getattr(self, "_emit_" + type(node).__name__.lower())
        method(node, depth, out)

    def _pad(self, depth: int) -> str:
        return self.indent * depth

    def _emit_body(self, body: List[Node], depth: int, out: List[str]) -> None:
        out.append(self._pad(depth) + "{")
        for child in body:
            self._emit(child, depth + 1, out)
        out.append(self._pad(depth) + "}")

    def _emit_line(self, node: Line, depth: int, out: List[str]) -> None:
        out.append(self._pad(depth) + node.text if node.text else "")

    def _emit_blank(self, node: Blank, depth: int, out: List[str]) -> None:
        out.append("")

    def _emit_block(self, node: Block, depth: int, out: List[str]) -> None:
        self._emit_body(node.body, depth, out)

    def _emit_if(self, node: If, depth: int, out: List[str]) -> None:
        for i, (condition, body) in enumerate(node.branches):
            keyword = "if" if i == 0 else "else if"
            out.append(f"{self._pad(depth)}{keyword} ({condition})")
            self._emit_body(body, depth, out)
        if node.otherwise is not None:
            out.append(self._pad(depth) + "else")
            self._emit_body(node.otherwise, depth, out)

    def _emit_for(self, node: For, depth: int, out: List[str]) -> None:
        out.append(f"{self._pad(depth)}for ({node.header})")
        self._emit_body(node.body, depth, out)

    def _emit_switch(self, node: Switch, depth: int, out: List[str]) -> None:
        out.append(f"{self._pad(depth)}switch ({node.expression})")
        out.append(self._pad(depth) + "{")
        for label, body in node.cases:
            for one in (label if isinstance(label, list) else [label]):
                head = "default:" if one == "default" else f"case {one}:"
                out.append(self._pad(depth + 1) + head)
            self._emit_body(body, depth + 1, out)
        out.append(self._pad(depth) + "}")

    def _emit_try(self, node: Try, depth: int, out: List[str]) -> None:
        out.append(self._pad(depth) + "try")
        self._emit_body(node.body, depth, out)
        for declaration, body in node.handlers:
            out.append(f"{self._pad(depth)}catch ({declaration})")
            self._emit_body(body, depth, out)

    def _emit_function(self, node: Function, depth: int, out: List[str]) -> None:
        out.append(self._pad(depth) + node.signature(qualified=True))
        self._emit_body(node.body, depth, out)
        out.append("")

    def _emit_field(self, node: Field, depth: int, out: List[str]) -> None:
        out.append(self._pad(depth) + node.declaration())

    def _emit_classdecl(self, node: ClassDecl, depth: int, out: List[str]) -> None:
        head = f"class {node.name}"
        if node.base:
            head += f" : public {node.base}"
        out.append(self._pad(depth) + head)
        out.append(self._pad(depth) + "{")
        out.append(self._pad(depth) + "public:")
        for nested in node.nested:
            self._emit_classdecl(nested, depth + 1, out)
            out.append("")
        for f in node.fields:
            self._emit_field(f, depth + 1, out)
        if node.fields and node.methods:
            out.append("")
        for m in node.methods:
            virtual = "virtual " if m.virtual and not m.is_constructor else ""
            out.append(f"{self._pad(depth + 1)}{virtual}{m.signature(qualified=False)};")
        out.append(self._pad(depth) + "};")

    def _emit_translationunit(self, node: TranslationUnit, depth: int, out: List[str]) -> None:
        for item in node.items:
            self._emit(item, depth, out)
