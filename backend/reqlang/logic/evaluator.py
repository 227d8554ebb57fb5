"""
Expression Evaluator for requirement programs.

Walks a selected program against the environment collaborators,
short-circuiting `&&` and `||`, and records a trace node for every AST
node actually visited.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import DEFAULT_CONFIG, EvaluatorConfig
from ..environment import Environment
from ..errors import EvaluationError, LexError, ReqLangError
from ..version import Version, compare
from .nodes import (
    BuiltinCall,
    BuiltinMacroRef,
    CompareOp,
    Equality,
    Literal,
    Logical,
    LogicalOp,
    MacroRef,
    Node,
    PackageRef,
    Relational,
    SetMembership,
    Tagged,
    VersionLiteral,
    VersionConstraint,
)
from .resolver import SelectedProgram


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Value:
    """
    Result of evaluating a node.

    A package reference is true when installed and also carries its
    version, so sibling comparisons can use it. `{OSNAME}` and quoted
    strings carry text.
    """

    truthy: bool
    version: Optional[Version] = None
    text: Optional[str] = None


TRUE = Value(True)
FALSE = Value(False)


@dataclass
class TraceNode:
    """
    One visited AST node and its outcome.

    Attributes:
        node: The AST node.
        value: Its value.
        children: Traces of the children actually evaluated, in order.
        raw: Collaborator answers for leaves; lookup details for macros.
    """

    node: Node
    value: Value
    children: List["TraceNode"] = field(default_factory=list)
    raw: Any = None

    @property
    def is_leaf(self) -> bool:
        return not self.children


class ExpressionEvaluator:
    """
    Evaluates one selected program for one call.

    Holds the per-call caches (macro results and collaborator answers);
    create a fresh instance for every evaluation.
    """

    PROBES = {
        "HAS_INCLUDE": "has_include",
        "HAS_LIB": "has_lib",
        "HAS_PROGRAM": "has_program",
    }

    def __init__(
        self,
        program: SelectedProgram,
        env: Environment,
        config: Optional[EvaluatorConfig] = None,
    ):
        self.program = program
        self.env = env
        self.config = config or DEFAULT_CONFIG
        self._macros: Dict[str, TraceNode] = {}
        self._answers: Dict[Tuple, Any] = {}
        self._executor: Optional[ThreadPoolExecutor] = None

    def run(self) -> TraceNode:
        """
        Evaluate the master expression.

        Returns:
            The root trace node; `value.truthy` is the program result.

        Raises:
            EvaluationError: If a collaborator fails or times out, or a
                version cannot be parsed.
        """
        if self.config.collaborator_timeout is not None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="reqlang")
        try:
            trace = self.evaluate(self.program.master)
        finally:
            if self._executor is not None:
                self._executor.shutdown(wait=False)
                self._executor = None
        logger.debug("Evaluation result: %s", trace.value.truthy)
        return trace

    def evaluate(self, node: Node) -> TraceNode:
        if isinstance(node, Logical):
            return self._eval_logical(node)
        if isinstance(node, PackageRef):
            return self._eval_package(node)
        if isinstance(node, (Relational, Equality)):
            return self._eval_comparison(node)
        if isinstance(node, SetMembership):
            return self._eval_set(node)
        if isinstance(node, MacroRef):
            return self._eval_macro(node)
        if isinstance(node, Tagged):
            inner = self.evaluate(node.expr)
            return TraceNode(node, inner.value, [inner])
        if isinstance(node, BuiltinCall):
            return self._eval_builtin_call(node)
        if isinstance(node, BuiltinMacroRef):
            return self._eval_builtin_macro(node)
        if isinstance(node, VersionLiteral):
            return TraceNode(node, Value(True, version=node.version))
        if isinstance(node, Literal):
            if isinstance(node.value, bool):
                return TraceNode(node, TRUE if node.value else FALSE)
            return TraceNode(node, Value(bool(node.value), text=node.value))
        raise EvaluationError(f"Cannot evaluate node {type(node).__name__}")

    # Collaborators

    def _call(self, operation: str, fn: Callable[..., Any], *args: str) -> Any:
        """Invoke a collaborator, memoized per call and under the configured deadline."""
        key = (operation,) + args
        if self.config.memoize_lookups and key in self._answers:
            logger.debug("Reusing %s%r", operation, args)
            return self._answers[key]

        logger.debug("Calling %s%r", operation, args)
        timeout = self.config.collaborator_timeout
        try:
            if self._executor is not None:
                answer = self._executor.submit(fn, *args).result(timeout=timeout)
            else:
                answer = fn(*args)
        except ReqLangError:
            raise
        except (FuturesTimeoutError, TimeoutError) as e:
            logger.warning("%s%r timed out", operation, args)
            raise EvaluationError(
                f"{operation}({', '.join(args)}) timed out"
                + (f" after {timeout}s" if timeout else ""),
                operation=operation,
            ) from e
        except Exception as e:
            logger.warning("%s%r failed: %s", operation, args, e)
            raise EvaluationError(
                f"{operation}({', '.join(args)}) failed: {e}", operation=operation
            ) from e

        if self.config.memoize_lookups:
            self._answers[key] = answer
        return answer

    # Node kinds

    def _eval_logical(self, node: Logical) -> TraceNode:
        # Iterate the left spine of a chain.
        spine = []
        while isinstance(node, Logical):
            spine.append(node)
            node = node.lhs

        left = self.evaluate(node)
        for node in reversed(spine):
            if node.op is LogicalOp.AND and not left.value.truthy:
                left = TraceNode(node, FALSE, [left])
                continue
            if node.op is LogicalOp.OR and left.value.truthy:
                left = TraceNode(node, TRUE, [left])
                continue

            right = self.evaluate(node.rhs)
            if node.op is LogicalOp.XOR:
                truthy = left.value.truthy != right.value.truthy
            else:
                truthy = right.value.truthy
            left = TraceNode(node, Value(truthy), [left, right])
        return left

    def _eval_package(self, node: PackageRef) -> TraceNode:
        record = self._call("lookup", self.env.registry.lookup, node.name)
        if record is None:
            return TraceNode(node, FALSE, raw={"installed": False})

        raw: Dict[str, Any] = {"installed": True, "version": record.version}
        version = None
        if record.version is not None:
            version = self._parse_version(record.version, f"version of {node.name}")

        truthy = True
        if node.constraint is not None:
            if version is None:
                truthy = False
            elif isinstance(node.constraint, VersionConstraint):
                truthy = node.constraint.accepts(version)
            else:
                truthy = node.constraint.matches(version)
            raw["constraint"] = truthy

        if truthy and node.features:
            features = {
                feature: bool(self._call("has_feature", self.env.registry.has_feature, node.name, feature))
                for feature in node.features
            }
            raw["features"] = features
            truthy = all(features.values())

        return TraceNode(node, Value(truthy, version=version), raw=raw)

    def _eval_builtin_call(self, node: BuiltinCall) -> TraceNode:
        probe = getattr(self.env.probes, self.PROBES[node.name])
        found = {arg: bool(self._call(node.name, probe, arg)) for arg in node.args}
        return TraceNode(node, Value(all(found.values())), raw=found)

    def _eval_builtin_macro(self, node: BuiltinMacroRef) -> TraceNode:
        if node.name == "OSNAME":
            osname = self.env.osname
            return TraceNode(node, Value(bool(osname), text=osname), raw=osname)
        ithreads = bool(self.env.ithreads)
        return TraceNode(node, Value(ithreads), raw=ithreads)

    def _eval_macro(self, node: MacroRef) -> TraceNode:
        is_choice = self.program.is_choice(node.name)
        cached = self._macros.get(node.name)
        if cached is not None:
            logger.debug("Reusing result of {%s}", node.name)
            return TraceNode(node, cached.value, [cached], raw={"choice": is_choice, "cached": True})

        body = self.program.body(node.name)
        if body is None:
            return TraceNode(node, FALSE, raw={"choice": True, "selected": False})

        result = self.evaluate(body)
        self._macros[node.name] = result
        return TraceNode(node, result.value, [result], raw={"choice": is_choice, "cached": False})

    def _eval_comparison(self, node) -> TraceNode:
        left = self.evaluate(node.lhs)
        right = self.evaluate(node.rhs)
        children = [left, right]
        if operand_failed(left) or operand_failed(right):
            return TraceNode(node, FALSE, children)
        if unversioned(left) or unversioned(right):
            return TraceNode(node, FALSE, children)

        ordering = self._order(node.op, left.value, right.value)
        return TraceNode(node, Value(node.op.holds(ordering)), children)

    def _eval_set(self, node: SetMembership) -> TraceNode:
        inner = self.evaluate(node.expr)
        if operand_failed(inner) or unversioned(inner):
            return TraceNode(node, FALSE, [inner])

        version = inner.value.version
        if version is None and inner.value.text is not None:
            version = self._parse_version(inner.value.text, "set operand")
        if version is None:
            raise EvaluationError("Set membership needs a version operand")
        return TraceNode(node, Value(node.versions.matches(version)), [inner], raw={"version": str(version)})

    # Helpers

    def _parse_version(self, text: str, what: str) -> Version:
        try:
            return Version.parse(text)
        except LexError as e:
            raise EvaluationError(f"Malformed {what}: {text!r}") from e

    def _order(self, op: CompareOp, left: Value, right: Value) -> int:
        """Compare two values, returning -1, 0 or 1."""
        if left.text is not None and right.text is not None:
            return (left.text > right.text) - (left.text < right.text)

        if left.text is not None or right.text is not None:
            if op.is_equality:
                a, b = _as_text(left), _as_text(right)
                return (a > b) - (a < b)
            a = left.version or self._parse_version(left.text or "", "comparison operand")
            b = right.version or self._parse_version(right.text or "", "comparison operand")
            return compare(a, b)

        if left.version is not None and right.version is not None:
            return compare(left.version, right.version)

        if op.is_equality and left.version is None and right.version is None:
            return int(left.truthy) - int(right.truthy)

        raise EvaluationError(f"Cannot apply '{op.value}' to these operands")


def operand_failed(trace: TraceNode) -> bool:
    """
    Whether a comparison operand is a reference that produced no value.

    That is a package that is absent or fails its own constraint, or a
    macro or choice standing for one. Comparisons over such operands are
    false rather than errors.
    """
    node = trace.node
    if isinstance(node, PackageRef):
        return not trace.value.truthy
    if isinstance(node, MacroRef):
        return not trace.children or operand_failed(trace.children[0])
    if isinstance(node, Tagged):
        return operand_failed(trace.children[0])
    return False


def unversioned(trace: TraceNode) -> bool:
    """Whether an operand is an installed package that declares no version."""
    node = trace.node
    if isinstance(node, PackageRef):
        return trace.value.truthy and trace.value.version is None
    if isinstance(node, (MacroRef, Tagged)):
        return bool(trace.children) and unversioned(trace.children[0])
    return False


def _as_text(value: Value) -> str:
    if value.text is not None:
        return value.text
    if value.version is not None:
        return str(value.version)
    return "1" if value.truthy else ""
