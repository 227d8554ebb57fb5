"""
Pretty printer for requirement programs.

Renders an AST back to source text with the fewest parentheses that
keep its structure when parsed again.
"""

from __future__ import annotations

from typing import List

from ..version import VersionSet
from .nodes import (
    BuiltinCall,
    BuiltinMacroRef,
    ChoiceDefinition,
    Equality,
    Literal,
    Logical,
    MacroRef,
    Node,
    PackageRef,
    Relational,
    SetMembership,
    Tagged,
    VersionLiteral,
)


# Binding strength, lowest first.
LOGICAL, TAGGED, SET, EQUALITY, RELATIONAL, PRIMARY = range(6)


def _precedence(node: Node) -> int:
    if isinstance(node, Logical):
        return LOGICAL
    if isinstance(node, Tagged):
        return TAGGED
    if isinstance(node, SetMembership):
        return SET
    if isinstance(node, PackageRef) and node.constraint is not None:
        return SET if isinstance(node.constraint, VersionSet) else (
            EQUALITY if node.constraint.op.is_equality else RELATIONAL
        )
    if isinstance(node, Equality):
        return EQUALITY
    if isinstance(node, Relational):
        return RELATIONAL
    return PRIMARY


def _operand(node: Node, minimum: int) -> str:
    text = format_node(node)
    if _precedence(node) < minimum:
        return f"({text})"
    return text


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'").replace("\n", "\\n").replace("\t", "\\t")
    return f"'{escaped}'"


def format_node(node: Node) -> str:
    """Render an expression as source text."""
    if isinstance(node, Logical):
        # Left-associative: a logical right operand needs parentheses.
        tail = []
        while isinstance(node, Logical):
            tail.append(f" {node.op.value} {_operand(node.rhs, TAGGED)}")
            node = node.lhs
        return _operand(node, LOGICAL) + "".join(reversed(tail))

    if isinstance(node, Tagged):
        return f"{_operand(node.expr, SET)} as :{node.tag}"

    if isinstance(node, SetMembership):
        return f"{_operand(node.expr, EQUALITY)} in {node.versions}"

    if isinstance(node, Equality):
        return f"{_operand(node.lhs, RELATIONAL)} {node.op.value} {_operand(node.rhs, RELATIONAL)}"

    if isinstance(node, Relational):
        return f"{_operand(node.lhs, PRIMARY)} {node.op.value} {_operand(node.rhs, PRIMARY)}"

    if isinstance(node, PackageRef):
        text = node.name
        if node.features:
            text += "#(" + " && ".join(node.features) + ")"
        if isinstance(node.constraint, VersionSet):
            text += f" in {node.constraint}"
        elif node.constraint is not None:
            text += f" {node.constraint.op.value} {node.constraint.version}"
        return text

    if isinstance(node, (MacroRef, BuiltinMacroRef)):
        return "{" + node.name + "}"

    if isinstance(node, BuiltinCall):
        return f"{node.name}(" + ", ".join(_quote(a) for a in node.args) + ")"

    if isinstance(node, VersionLiteral):
        return str(node.version)

    if isinstance(node, Literal):
        if isinstance(node.value, bool):
            return "true" if node.value else "false"
        return _quote(node.value)

    raise TypeError(f"Cannot format {type(node).__name__}")


def format_program(program) -> str:
    """
    Render a compiled program: definitions first, then the master.

    Accepts a CompiledProgram or a ParsedProgram.
    """
    lines: List[str] = []
    statements = getattr(program, "statements", None)
    if statements is None:
        statements = sorted(
            list(program.macros.values()) + list(program.choices.values()),
            key=lambda d: d.line,
        )
    for statement in statements:
        keyword = "choice" if isinstance(statement, ChoiceDefinition) else "define"
        lines.append(f"{keyword} {statement.name} = {format_node(statement.body)};")
    if program.master is not None:
        lines.append(format_node(program.master))
    return "\n".join(lines)
