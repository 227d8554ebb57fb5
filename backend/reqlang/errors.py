"""
Error types for reqlang.

Compile-time errors abort before any evaluation; evaluation errors are
raised per call and leave the compiled program untouched.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ReqLangError(Exception):
    """Base class for all reqlang errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "error": type(self).__name__,
            "message": self.message,
        }


class CompileError(ReqLangError):
    """Raised when source text cannot be compiled."""

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
        offset: Optional[int] = None,
    ):
        super().__init__(message)
        self.line = line
        self.column = column
        self.offset = offset

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        return f"{self.message} (line {self.line}, column {self.column})"

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.line is not None:
            result["line"] = self.line
            result["column"] = self.column
            result["offset"] = self.offset
        return result


class LexError(CompileError):
    """Raised on unterminated strings, sets or unrecognized characters."""


class ParseError(CompileError):
    """Raised when the token stream does not form a valid program."""


class SemanticError(CompileError):
    """Raised on undefined or duplicate names, cycles and unknown option tags."""


class TagCollisionError(ParseError, SemanticError):
    """Raised when an `as` tag is used more than once in a program."""


class EvaluationError(ReqLangError):
    """
    Raised when evaluation cannot produce an answer.

    Covers collaborator failures, collaborator deadlines and malformed
    versions met at runtime. The outcome is unknown, not false.
    """

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        if self.operation:
            result["operation"] = self.operation
        return result
