"""
Macro and Choice Resolver.

Binds `{name}` references to their definitions, rejects duplicates,
undefined names and reference cycles, and prunes choice alternatives
against the caller's option set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from difflib import get_close_matches
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Union

from ..errors import SemanticError
from .nodes import (
    BUILTIN_MACROS,
    ChoiceDefinition,
    Equality,
    Literal,
    Logical,
    MacroDefinition,
    Node,
    Relational,
    SetMembership,
    Tagged,
    references,
)
from .parser import ParsedProgram


logger = logging.getLogger(__name__)

Definition = Union[MacroDefinition, ChoiceDefinition]


@dataclass(frozen=True)
class CompiledProgram:
    """
    A resolved, immutable program.

    `{name}` references in the master expression and in definition
    bodies stay as MacroRef nodes and are looked up lazily through
    `definitions` at evaluation time.
    """

    master: Node
    macros: Mapping[str, MacroDefinition] = field(default_factory=dict)
    choices: Mapping[str, ChoiceDefinition] = field(default_factory=dict)
    source: str = ""

    @property
    def tags(self) -> FrozenSet[str]:
        """Every tag declared by any choice; the option vocabulary."""
        return frozenset(tag for choice in self.choices.values() for tag in choice.tags)

    def definition(self, name: str) -> Definition:
        if name in self.macros:
            return self.macros[name]
        return self.choices[name]

    def select(self, options: Iterable[str] = ()) -> "SelectedProgram":
        """Prune choice alternatives against an option set."""
        return select_options(self, options)


@dataclass(frozen=True)
class SelectedProgram:
    """
    A compiled program with choices pruned for one option set.

    Attributes:
        program: The compiled program.
        options: The selected tags.
        choices: Pruned choice bodies; None where no alternative survived.
    """

    program: CompiledProgram
    options: FrozenSet[str]
    choices: Mapping[str, Optional[Node]]

    @property
    def master(self) -> Node:
        return self.program.master

    def body(self, name: str) -> Optional[Node]:
        """The expression a `{name}` reference evaluates."""
        if name in self.choices:
            return self.choices[name]
        return self.program.macros[name].body

    def is_choice(self, name: str) -> bool:
        return name in self.choices


class ProgramResolver:
    """
    Resolves a parsed program.

    Provides:
    - Name table construction with duplicate detection
    - Undefined reference detection
    - Reference cycle detection
    """

    def resolve(self, parsed: ParsedProgram) -> CompiledProgram:
        """
        Resolve a parsed program.

        Args:
            parsed: Output of the parser.

        Returns:
            CompiledProgram; its master is `true` when the source had none.

        Raises:
            SemanticError: On duplicate, reserved or undefined names, or cycles.
        """
        macros: Dict[str, MacroDefinition] = {}
        choices: Dict[str, ChoiceDefinition] = {}
        table: Dict[str, Definition] = {}

        for statement in parsed.statements:
            name = statement.name
            if name in BUILTIN_MACROS:
                raise SemanticError(f"'{name}' is a builtin macro and cannot be redefined", line=statement.line)
            if name in table:
                raise SemanticError(
                    f"Duplicate definition of '{name}' (first defined on line {table[name].line})",
                    line=statement.line,
                )
            table[name] = statement
            if isinstance(statement, ChoiceDefinition):
                choices[name] = statement
            else:
                macros[name] = statement

        master = parsed.master if parsed.master is not None else Literal(True)

        for statement in parsed.statements:
            self._check_references(statement.body, table, f"definition of '{statement.name}'")
        self._check_references(master, table, "master expression")

        self._detect_cycles(table)

        logger.debug(
            "Resolved program: %d macro(s), %d choice(s)", len(macros), len(choices)
        )
        return CompiledProgram(
            master=master,
            macros=MappingProxyType(macros),
            choices=MappingProxyType(choices),
            source=parsed.source,
        )

    def _check_references(self, node: Node, table: Dict[str, Definition], where: str) -> None:
        for name in sorted(references(node)):
            if name not in table:
                message = f"Undefined macro or choice '{{{name}}}' in {where}"
                suggestion = get_close_matches(name, list(table), n=1)
                if suggestion:
                    message += f"; did you mean '{{{suggestion[0]}}}'?"
                raise SemanticError(message)

    def _detect_cycles(self, table: Dict[str, Definition]) -> None:
        """Depth-first search over the reference graph."""
        graph = {name: sorted(references(d.body)) for name, d in table.items()}
        done = set()

        for root in graph:
            if root in done:
                continue
            stack = [root]
            pending = [iter(graph[root])]
            while pending:
                target = next(pending[-1], None)
                if target is None:
                    done.add(stack.pop())
                    pending.pop()
                    continue
                if target in stack:
                    cycle = stack[stack.index(target):] + [target]
                    raise SemanticError(
                        "Reference cycle: " + " -> ".join(cycle),
                        line=table[target].line,
                    )
                if target not in done:
                    stack.append(target)
                    pending.append(iter(graph[target]))


def prune(node: Node, options: FrozenSet[str]) -> Optional[Node]:
    """
    Remove tagged alternatives whose tag is not selected.

    Returns None when nothing of the expression survives. A pruned
    logical operand leaves its sibling standing alone; a pruned
    comparison operand removes the comparison.
    """
    if isinstance(node, Tagged):
        if node.tag not in options:
            return None
        inner = prune(node.expr, options)
        if inner is None:
            return None
        return node if inner is node.expr else Tagged(inner, node.tag)

    if isinstance(node, Logical):
        spine = []
        while isinstance(node, Logical):
            spine.append(node)
            node = node.lhs
        lhs = prune(node, options)
        for parent in reversed(spine):
            rhs = prune(parent.rhs, options)
            if lhs is None:
                lhs = rhs
            elif rhs is None:
                continue
            elif lhs is parent.lhs and rhs is parent.rhs:
                lhs = parent
            else:
                lhs = Logical(parent.op, lhs, rhs)
        return lhs

    if isinstance(node, (Relational, Equality)):
        lhs = prune(node.lhs, options)
        rhs = prune(node.rhs, options)
        if lhs is None or rhs is None:
            return None
        if lhs is node.lhs and rhs is node.rhs:
            return node
        return type(node)(node.op, lhs, rhs)

    if isinstance(node, SetMembership):
        expr = prune(node.expr, options)
        if expr is None:
            return None
        return node if expr is node.expr else SetMembership(expr, node.versions)

    return node


def normalize_options(options: Iterable[str]) -> FrozenSet[str]:
    """Accept tags with or without their leading ':'."""
    if isinstance(options, str):
        options = [options]
    return frozenset(str(tag).lstrip(":") for tag in options)


def select_options(program: CompiledProgram, options: Iterable[str] = ()) -> SelectedProgram:
    """
    Prune every choice of a program against an option set.

    Raises:
        SemanticError: If an option matches no tag in the program.
    """
    selected = normalize_options(options)
    known = program.tags

    for tag in sorted(selected - known):
        message = f"Unknown option tag ':{tag}'"
        suggestion = get_close_matches(tag, sorted(known), n=1)
        if suggestion:
            message += f"; did you mean ':{suggestion[0]}'?"
        raise SemanticError(message)

    choices: Dict[str, Optional[Node]] = {}
    for name, choice in program.choices.items():
        choices[name] = prune(choice.body, selected)
        if choices[name] is None:
            logger.debug("Choice '%s': no alternative selected", name)

    return SelectedProgram(program=program, options=selected, choices=MappingProxyType(choices))


def resolve(parsed: ParsedProgram) -> CompiledProgram:
    """Resolve a parsed program."""
    return ProgramResolver().resolve(parsed)
