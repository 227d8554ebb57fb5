"""
Abstract syntax tree for requirement expressions.

Nodes are immutable and hold structure only. Evaluation belongs to
the evaluator, rendering to the printer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Set, Tuple, Union

from ..version import Version, VersionSet, compare


class LogicalOp(Enum):
    """Logical combinators; equal precedence, left-associative."""
    AND = "&&"
    OR = "||"
    XOR = "^^"


class CompareOp(Enum):
    """Relational and equality operators."""
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    EQ = "=="
    NE = "!="

    @property
    def is_equality(self) -> bool:
        return self in (CompareOp.EQ, CompareOp.NE)

    def mirrored(self) -> "CompareOp":
        """The operator with its operands swapped (`a < b` is `b > a`)."""
        return _MIRRORED.get(self, self)

    def holds(self, ordering: int) -> bool:
        """Whether the operator accepts a -1/0/1 comparison result."""
        if self is CompareOp.LT:
            return ordering < 0
        if self is CompareOp.LE:
            return ordering <= 0
        if self is CompareOp.GT:
            return ordering > 0
        if self is CompareOp.GE:
            return ordering >= 0
        if self is CompareOp.EQ:
            return ordering == 0
        return ordering != 0


_MIRRORED = {
    CompareOp.LT: CompareOp.GT,
    CompareOp.LE: CompareOp.GE,
    CompareOp.GT: CompareOp.LT,
    CompareOp.GE: CompareOp.LE,
}

BUILTIN_MACROS = ("OSNAME", "ITHREADS")
BUILTIN_FUNCTIONS = ("HAS_INCLUDE", "HAS_LIB", "HAS_PROGRAM")


class Node:
    """Base class for all AST nodes."""


@dataclass(frozen=True)
class Literal(Node):
    """A boolean or quoted string constant."""
    value: Union[bool, str]


@dataclass(frozen=True)
class VersionLiteral(Node):
    """A bare version such as `0.80`."""
    version: Version


@dataclass(frozen=True)
class VersionConstraint:
    """A version comparison folded into a package reference."""
    op: CompareOp
    version: Version

    def accepts(self, version: Version) -> bool:
        return self.op.holds(compare(version, self.version))


Constraint = Union[VersionConstraint, VersionSet]


@dataclass(frozen=True)
class PackageRef(Node):
    """
    A reference to an installed package.

    Examples:
        File::Spec
        File::Spec > 0.80
        Module::Build#(yaml_support && c_support)
        DBD::Pg in [1.0- !1.5]
    """
    name: str
    constraint: Optional[Constraint] = None
    features: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BuiltinMacroRef(Node):
    """`{OSNAME}` or `{ITHREADS}`."""
    name: str


@dataclass(frozen=True)
class MacroRef(Node):
    """`{name}` referring to a `define` or `choice`."""
    name: str


@dataclass(frozen=True)
class BuiltinCall(Node):
    """`HAS_INCLUDE('x.h', ...)`, `HAS_LIB(...)` or `HAS_PROGRAM(...)`."""
    name: str
    args: Tuple[str, ...]


@dataclass(frozen=True)
class Relational(Node):
    op: CompareOp
    lhs: Node
    rhs: Node


@dataclass(frozen=True)
class Equality(Node):
    op: CompareOp
    lhs: Node
    rhs: Node


@dataclass(frozen=True)
class SetMembership(Node):
    expr: Node
    versions: VersionSet


@dataclass(frozen=True)
class Logical(Node):
    op: LogicalOp
    lhs: Node
    rhs: Node


@dataclass(frozen=True)
class Tagged(Node):
    """An alternative inside a choice body, selectable by its tag."""
    expr: Node
    tag: str


@dataclass(frozen=True)
class MacroDefinition:
    """`define name = body;`"""
    name: str
    body: Node
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class ChoiceDefinition:
    """
    `choice name = A as :a || B as :b;`

    Attributes:
        name: Choice name, shared namespace with macros.
        body: Body expression containing Tagged alternatives.
        tags: Tags declared in the body, in source order.
        line: Source line of the statement.
    """
    name: str
    body: Node
    tags: Tuple[str, ...] = ()
    line: int = field(default=0, compare=False)

    @property
    def combinator(self) -> Optional[LogicalOp]:
        """The logical operator joining the top-level alternatives, if uniform."""
        ops = {n.op for n in _logical_spine(self.body)}
        return ops.pop() if len(ops) == 1 else None

    @property
    def alternatives(self) -> List[Tuple[Optional[str], Node]]:
        """Top-level `(tag, expr)` pairs; an untagged alternative has tag None."""
        if self.combinator is None and isinstance(self.body, Logical):
            return [(None, self.body)]
        result = []
        for operand in _flatten(self.body, self.combinator):
            if isinstance(operand, Tagged):
                result.append((operand.tag, operand.expr))
            else:
                result.append((None, operand))
        return result


Statement = Union[MacroDefinition, ChoiceDefinition]


def _logical_spine(node: Node) -> Iterator[Logical]:
    while isinstance(node, Logical):
        yield node
        node = node.lhs


def _flatten(node: Node, op: Optional[LogicalOp]) -> List[Node]:
    flat = []
    stack = [node]
    while stack:
        node = stack.pop()
        if op is not None and isinstance(node, Logical) and node.op is op:
            stack.append(node.rhs)
            stack.append(node.lhs)
        else:
            flat.append(node)
    return flat


def children(node: Node) -> Tuple[Node, ...]:
    """Direct child nodes."""
    if isinstance(node, (Relational, Equality, Logical)):
        return (node.lhs, node.rhs)
    if isinstance(node, (SetMembership, Tagged)):
        return (node.expr,)
    return ()


def walk(node: Node) -> Iterator[Node]:
    """Pre-order traversal."""
    stack = [node]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(children(node)))


def references(node: Node) -> Set[str]:
    """Names of macros and choices referenced by an expression."""
    return {n.name for n in walk(node) if isinstance(n, MacroRef)}


def tags_of(node: Node) -> List[str]:
    """Tags declared in an expression, in source order."""
    return [n.tag for n in walk(node) if isinstance(n, Tagged)]
