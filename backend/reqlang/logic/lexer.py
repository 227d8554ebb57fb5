"""
Lexer for requirement expressions.

Turns source text into a token stream. A `#` directly after a package
name opens a feature list (`Module::Build#(yaml_support)`); anywhere
else it starts a comment running to the end of the line.
"""

from __future__ import annotations

import bisect
import re
from dataclasses import dataclass
from typing import List, Tuple

from ..errors import LexError
from ..version import VERSION_PATTERN, Range


@dataclass(frozen=True)
class Token:
    """A lexical token with its source position."""
    type: str
    value: str
    line: int
    column: int
    offset: int
    end: int


KEYWORDS = {
    "define": "DEFINE",
    "choice": "CHOICE",
    "as": "AS",
    "in": "IN",
    "true": "TRUE",
    "false": "FALSE",
}

# Two-character operators are matched before single characters.
OPERATORS = {
    "<=": "LE",
    ">=": "GE",
    "==": "EQ",
    "!=": "NE",
    "&&": "AND",
    "||": "OR",
    "^^": "XOR",
    "<": "LT",
    ">": "GT",
    "=": "ASSIGN",
}

SYMBOLS = {
    "(": "LPAREN",
    ")": "RPAREN",
    "{": "LBRACE",
    "}": "RBRACE",
    ",": "COMMA",
    ":": "COLON",
    ";": "SEMI",
}

ESCAPES = {"n": "\n", "t": "\t", "\\": "\\", "'": "'", '"': '"'}

_IDENT_RE = re.compile(r"[A-Za-z_]\w*(?:::\w+)*")
_VERSION_RE = re.compile(VERSION_PATTERN)
_RANGE_SPLIT_RE = re.compile(r"[^\s,]+")
DIGITS = frozenset("0123456789")


class Lexer:
    """
    Tokenizer for requirement programs.

    Usage:
        tokens = Lexer("File::Spec > 0.80").tokenize()
    """

    def __init__(self, text: str):
        self.text = text
        self.index = 0
        self._line_starts = [0] + [m.end() for m in re.finditer("\n", text)]

    def position(self, offset: int) -> Tuple[int, int]:
        """Return the 1-based (line, column) of an offset."""
        line = bisect.bisect_right(self._line_starts, offset)
        return line, offset - self._line_starts[line - 1] + 1

    def error(self, message: str, offset: int) -> LexError:
        line, column = self.position(offset)
        return LexError(message, line=line, column=column, offset=offset)

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        text = self.text
        n = len(text)
        feature_depth = 0

        while self.index < n:
            ch = text[self.index]
            start = self.index

            if ch.isspace():
                self.index += 1
                continue

            if ch == "#":
                previous = tokens[-1] if tokens else None
                adjacent = (
                    previous is not None
                    and previous.type == "IDENT"
                    and previous.end == start
                )
                if adjacent and feature_depth == 0:
                    if text[start + 1:start + 2] != "(":
                        raise self.error("Expected '(' after '#' in feature list", start)
                    tokens.append(self._token("FEATURES", "#(", start, start + 2))
                    self.index = start + 2
                    feature_depth = 1
                    continue
                if feature_depth:
                    raise self.error("Comment inside feature list", start)
                self._consume_comment()
                continue

            if ch == "[":
                tokens.extend(self._consume_set())
                continue

            if ch in ("'", '"'):
                tokens.append(self._consume_string())
                continue

            pair = text[start:start + 2]
            if pair in OPERATORS:
                tokens.append(self._token(OPERATORS[pair], pair, start, start + 2))
                self.index = start + 2
                continue
            if ch in OPERATORS:
                tokens.append(self._token(OPERATORS[ch], ch, start, start + 1))
                self.index = start + 1
                continue

            if ch in SYMBOLS:
                if feature_depth and ch == "(":
                    feature_depth += 1
                elif feature_depth and ch == ")":
                    feature_depth -= 1
                tokens.append(self._token(SYMBOLS[ch], ch, start, start + 1))
                self.index = start + 1
                continue

            if ch in DIGITS:
                match = _VERSION_RE.match(text, start)
                tokens.append(self._token("VERSION", match.group(0), start, match.end()))
                self.index = match.end()
                continue

            match = _IDENT_RE.match(text, start)
            if match:
                word = match.group(0)
                tokens.append(self._token(KEYWORDS.get(word, "IDENT"), word, start, match.end()))
                self.index = match.end()
                continue

            raise self.error(f"Unexpected character {ch!r}", start)

        if feature_depth:
            raise self.error("Unterminated feature list", n)

        tokens.append(self._token("EOF", "", n, n))
        return tokens

    def _token(self, type_: str, value: str, start: int, end: int) -> Token:
        line, column = self.position(start)
        return Token(type_, value, line, column, start, end)

    def _consume_comment(self) -> None:
        newline = self.text.find("\n", self.index)
        self.index = len(self.text) if newline < 0 else newline

    def _consume_string(self) -> Token:
        text = self.text
        start = self.index
        quote = text[start]
        chars: List[str] = []
        i = start + 1
        while i < len(text):
            ch = text[i]
            if ch == "\\" and i + 1 < len(text):
                nxt = text[i + 1]
                chars.append(ESCAPES.get(nxt, "\\" + nxt))
                i += 2
                continue
            if ch == quote:
                self.index = i + 1
                return self._token("STRING", "".join(chars), start, i + 1)
            chars.append(ch)
            i += 1
        raise self.error("Unterminated string literal", start)

    def _consume_set(self) -> List[Token]:
        """Lex `[ range ... ]` into LBRACKET, RANGE* and RBRACKET tokens."""
        start = self.index
        close = self.text.find("]", start)
        if close < 0:
            raise self.error("Unterminated version set", start)

        tokens = [self._token("LBRACKET", "[", start, start + 1)]
        body_start = start + 1
        for match in _RANGE_SPLIT_RE.finditer(self.text, body_start, close):
            chunk = match.group(0)
            try:
                Range.parse(chunk)
            except LexError:
                raise self.error(f"Malformed version range {chunk!r}", match.start()) from None
            tokens.append(self._token("RANGE", chunk, match.start(), match.end()))
        tokens.append(self._token("RBRACKET", "]", close, close + 1))
        self.index = close + 1
        return tokens


def tokenize(text: str) -> List[Token]:
    """Tokenize source text."""
    return Lexer(text).tokenize()
