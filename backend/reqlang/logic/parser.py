"""
Parser for requirement programs.

Builds an AST from the token stream with recursive descent, one method
per precedence level, lowest first:

    logical (&& || ^^)  <  as  <  in  <  (== !=)  <  (< <= > >=)

A program is zero or more `define`/`choice` statements followed by at
most one master expression.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..errors import CompileError, LexError, ParseError, TagCollisionError
from ..version import Range, Version, VersionSet
from .lexer import Token, tokenize
from .nodes import (
    BUILTIN_FUNCTIONS,
    BUILTIN_MACROS,
    BuiltinCall,
    BuiltinMacroRef,
    ChoiceDefinition,
    CompareOp,
    Equality,
    Literal,
    Logical,
    LogicalOp,
    MacroDefinition,
    MacroRef,
    Node,
    PackageRef,
    Relational,
    SetMembership,
    Statement,
    Tagged,
    VersionConstraint,
    VersionLiteral,
    tags_of,
)


LOGICAL_TOKENS = {"AND": LogicalOp.AND, "OR": LogicalOp.OR, "XOR": LogicalOp.XOR}
EQUALITY_TOKENS = {"EQ": CompareOp.EQ, "NE": CompareOp.NE}
RELATIONAL_TOKENS = {
    "LT": CompareOp.LT,
    "LE": CompareOp.LE,
    "GT": CompareOp.GT,
    "GE": CompareOp.GE,
}
EXPRESSION_START = {"IDENT", "LBRACE", "STRING", "VERSION", "LPAREN", "TRUE", "FALSE"}

# Deepest parenthesized nesting accepted.
MAX_NESTING = 64


@dataclass(frozen=True)
class ParsedProgram:
    """Statements and master expression as written, before resolution."""
    statements: Tuple[Statement, ...]
    master: Optional[Node]
    source: str = ""


class ExpressionParser:
    """
    Parser for requirement programs.

    Converts programs like:
        "define yaml = YAML >= 0.60; {yaml} || YAML::Tiny"

    Into a ParsedProgram holding MacroDefinition/ChoiceDefinition
    statements and the master expression AST.
    """

    def parse(self, source: str) -> ParsedProgram:
        """
        Parse a complete program.

        Args:
            source: Program text.

        Returns:
            The parsed program.

        Raises:
            LexError: On malformed tokens.
            ParseError: On grammar violations.
        """
        self._tokens = tokenize(source)
        self._pos = 0
        self._in_choice = False
        self._depth = 0
        self._tags: Dict[str, Token] = {}

        statements: List[Statement] = []
        master: Optional[Node] = None

        while self._peek().type != "EOF":
            token = self._peek()
            if token.type in ("DEFINE", "CHOICE"):
                if master is not None:
                    raise self._error("Statement after the master expression", token)
                statements.append(self._statement())
                continue
            if master is not None:
                if token.type in EXPRESSION_START:
                    raise self._error("More than one master expression", token)
                raise self._error(f"Unexpected token {token.value!r}", token)
            master = self._expression()
            self._accept("SEMI")

        return ParsedProgram(statements=tuple(statements), master=master, source=source)

    def parse_expression(self, source: str) -> Node:
        """Parse a single expression with no statements."""
        program = self.parse(source)
        if program.statements:
            raise ParseError("Expected a bare expression, found statements")
        if program.master is None:
            raise ParseError("Empty expression")
        return program.master

    def validate(self, source: str) -> Tuple[bool, Optional[str]]:
        """
        Check a program for lexical and syntax errors.

        Returns:
            Tuple of (is_valid, error_message).
        """
        try:
            self.parse(source)
            return True, None
        except CompileError as e:
            return False, str(e)

    # Token helpers

    def _peek(self) -> Token:
        return self._tokens[self._pos]

    def _advance(self) -> Token:
        token = self._tokens[self._pos]
        if token.type != "EOF":
            self._pos += 1
        return token

    def _accept(self, type_: str) -> Optional[Token]:
        if self._peek().type == type_:
            return self._advance()
        return None

    def _expect(self, type_: str, what: str) -> Token:
        token = self._peek()
        if token.type != type_:
            found = token.value if token.type != "EOF" else "end of input"
            raise self._error(f"Expected {what}, found {found!r}", token)
        return self._advance()

    def _error(self, message: str, token: Token) -> ParseError:
        return ParseError(message, line=token.line, column=token.column, offset=token.offset)

    # Grammar

    def _statement(self) -> Statement:
        keyword = self._advance()
        name = self._expect("IDENT", "a name").value
        self._expect("ASSIGN", "'='")

        self._in_choice = keyword.type == "CHOICE"
        try:
            body = self._expression()
        finally:
            self._in_choice = False
        self._expect("SEMI", "';'")

        if keyword.type == "CHOICE":
            return ChoiceDefinition(name=name, body=body, tags=tuple(tags_of(body)), line=keyword.line)
        return MacroDefinition(name=name, body=body, line=keyword.line)

    def _expression(self) -> Node:
        node = self._tagged()
        while self._peek().type in LOGICAL_TOKENS:
            op = LOGICAL_TOKENS[self._advance().type]
            node = Logical(op, node, self._tagged())
        return node

    def _tagged(self) -> Node:
        node = self._set()
        token = self._accept("AS")
        if token is None:
            return node
        if not self._in_choice:
            raise self._error("'as' is only allowed inside a choice body", token)
        self._expect("COLON", "':' before tag")
        tag_token = self._expect("IDENT", "a tag name")
        tag = tag_token.value
        if tag in self._tags:
            first = self._tags[tag]
            raise TagCollisionError(
                f"Tag ':{tag}' already used on line {first.line}",
                line=tag_token.line,
                column=tag_token.column,
                offset=tag_token.offset,
            )
        self._tags[tag] = tag_token
        return Tagged(node, tag)

    def _set(self) -> Node:
        node = self._equality()
        if self._accept("IN") is None:
            return node

        open_token = self._expect("LBRACKET", "'[' after 'in'")
        ranges: List[Range] = []
        while self._peek().type == "RANGE":
            token = self._advance()
            item = Range.parse(token.value)
            if item.low is not None and item.high is not None and item.low > item.high:
                raise self._error(f"Empty version range {token.value!r}", token)
            ranges.append(item)
        self._expect("RBRACKET", "']'")
        if not ranges:
            raise self._error("Version set needs at least one range", open_token)

        versions = VersionSet(tuple(ranges))
        if isinstance(node, PackageRef) and node.constraint is None:
            return PackageRef(node.name, versions, node.features)
        return SetMembership(node, versions)

    def _equality(self) -> Node:
        lhs = self._relational()
        token = self._peek()
        if token.type not in EQUALITY_TOKENS:
            return lhs
        self._advance()
        return self._compare(Equality, EQUALITY_TOKENS[token.type], lhs, self._relational())

    def _relational(self) -> Node:
        lhs = self._primary()
        token = self._peek()
        if token.type not in RELATIONAL_TOKENS:
            return lhs
        self._advance()
        return self._compare(Relational, RELATIONAL_TOKENS[token.type], lhs, self._primary())

    def _compare(self, node_type, op: CompareOp, lhs: Node, rhs: Node) -> Node:
        """Build a comparison, folding `Package op VERSION` into the package."""
        if isinstance(lhs, PackageRef) and lhs.constraint is None and isinstance(rhs, VersionLiteral):
            return PackageRef(lhs.name, VersionConstraint(op, rhs.version), lhs.features)
        if isinstance(rhs, PackageRef) and rhs.constraint is None and isinstance(lhs, VersionLiteral):
            return PackageRef(rhs.name, VersionConstraint(op.mirrored(), lhs.version), rhs.features)
        return node_type(op, lhs, rhs)

    def _primary(self) -> Node:
        token = self._peek()

        if token.type == "IDENT":
            self._advance()
            if token.value in BUILTIN_FUNCTIONS:
                return self._builtin_call(token)
            if self._peek().type == "LPAREN":
                raise self._error(f"Unknown function {token.value!r}", token)
            features = self._features() if self._peek().type == "FEATURES" else ()
            return PackageRef(token.value, None, features)

        if token.type == "LBRACE":
            self._advance()
            name = self._expect("IDENT", "a macro name").value
            self._expect("RBRACE", "'}'")
            if name in BUILTIN_MACROS:
                return BuiltinMacroRef(name)
            return MacroRef(name)

        if token.type == "STRING":
            self._advance()
            return Literal(token.value)

        if token.type == "VERSION":
            self._advance()
            try:
                return VersionLiteral(Version.parse(token.value))
            except LexError as e:
                raise self._error(e.message, token) from None

        if token.type in ("TRUE", "FALSE"):
            self._advance()
            return Literal(token.type == "TRUE")

        if token.type == "LPAREN":
            if self._depth >= MAX_NESTING:
                raise self._error("Expression nested too deeply", token)
            self._advance()
            self._depth += 1
            node = self._expression()
            self._depth -= 1
            self._expect("RPAREN", "')'")
            return node

        found = token.value if token.type != "EOF" else "end of input"
        raise self._error(f"Unexpected {found!r}", token)

    def _builtin_call(self, name: Token) -> BuiltinCall:
        self._expect("LPAREN", f"'(' after {name.value}")
        args = [self._expect("STRING", "a quoted argument").value]
        while self._accept("COMMA"):
            args.append(self._expect("STRING", "a quoted argument").value)
        self._expect("RPAREN", "')'")
        return BuiltinCall(name.value, tuple(args))

    def _features(self) -> Tuple[str, ...]:
        """Parse `#( ident && ident ... )`; only `&&` is accepted."""
        self._advance()
        features = [self._expect("IDENT", "a feature name").value]
        while self._peek().type != "RPAREN":
            token = self._peek()
            if token.type != "AND":
                raise self._error(f"Only '&&' is allowed in a feature list, found {token.value!r}", token)
            self._advance()
            features.append(self._expect("IDENT", "a feature name").value)
        self._advance()
        return tuple(features)


def parse(source: str) -> ParsedProgram:
    """Parse program text into statements and a master expression."""
    return ExpressionParser().parse(source)
