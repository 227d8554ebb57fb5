"""
Compile and evaluate entry points.

Runs the whole pipeline: text -> tokens -> AST -> resolved program,
then (options, environment) -> (result, report).
"""

from __future__ import annotations

import logging
from typing import Iterable, NamedTuple, Optional

from .config import EvaluatorConfig
from .environment import Environment
from .logic.evaluator import ExpressionEvaluator
from .logic.parser import ExpressionParser
from .logic.resolver import CompiledProgram, ProgramResolver
from .report import Report, build_report


logger = logging.getLogger(__name__)


class EvaluationOutcome(NamedTuple):
    """`(result, report)` of one evaluation."""
    result: bool
    report: Report


def compile(source: str) -> CompiledProgram:
    """
    Compile program text.

    Args:
        source: Program text; an empty program means `true`.

    Returns:
        An immutable CompiledProgram, reusable across evaluations.

    Raises:
        LexError, ParseError, SemanticError: On invalid programs.
    """
    parsed = ExpressionParser().parse(source)
    program = ProgramResolver().resolve(parsed)
    logger.debug("Compiled program (%d characters)", len(source))
    return program


def evaluate(
    program: CompiledProgram,
    options: Iterable[str] = (),
    env: Optional[Environment] = None,
    config: Optional[EvaluatorConfig] = None,
) -> EvaluationOutcome:
    """
    Evaluate a compiled program against an environment.

    Args:
        program: Output of `compile`.
        options: Tags selecting choice alternatives.
        env: Collaborators and platform facts.
        config: Evaluator settings; defaults when omitted.

    Returns:
        EvaluationOutcome of the boolean result and its Report.

    Raises:
        SemanticError: If an option matches no tag in the program.
        EvaluationError: If a collaborator fails or times out.
    """
    if env is None:
        raise TypeError("evaluate() needs an Environment")

    selected = program.select(options)
    if selected.options:
        logger.debug("Selected options: %s", ", ".join(sorted(selected.options)))

    trace = ExpressionEvaluator(selected, env, config).run()
    report = build_report(trace, tuple(selected.options))
    return EvaluationOutcome(report.result, report)


def check(
    source: str,
    options: Iterable[str] = (),
    env: Optional[Environment] = None,
    config: Optional[EvaluatorConfig] = None,
) -> EvaluationOutcome:
    """Compile and evaluate in one step."""
    return evaluate(compile(source), options, env, config)
