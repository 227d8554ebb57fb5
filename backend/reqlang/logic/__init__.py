"""
Logic engine for reqlang.

Provides lexing, parsing, resolution, evaluation and printing of
requirement programs.
"""

from .parser import ExpressionParser, ParsedProgram
from .resolver import CompiledProgram, ProgramResolver, SelectedProgram
from .evaluator import ExpressionEvaluator, TraceNode, Value
from .printer import format_node, format_program

__all__ = [
    "ExpressionParser",
    "ParsedProgram",
    "CompiledProgram",
    "ProgramResolver",
    "SelectedProgram",
    "ExpressionEvaluator",
    "TraceNode",
    "Value",
    "format_node",
    "format_program",
]
