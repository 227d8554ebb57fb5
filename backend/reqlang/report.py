"""
Diagnostic Report Builder.

Reduces an evaluation trace to the list of failing leaves, each
classified by kind and marked actionable or not. The report is always
complete: deciding which failures to hide is left to the presentation
layer.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .logic.evaluator import TraceNode, operand_failed, unversioned
from .logic.nodes import (
    BuiltinCall,
    BuiltinMacroRef,
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
    walk,
)
from .logic.printer import format_node


REPORT_VERSION = "reqlang-report/1.0"


class FailureKind(Enum):
    """Why a leaf evaluated to false."""
    MISSING_MODULE = "missing_module"
    VERSION_MISMATCH = "version_mismatch"
    MISSING_FEATURE = "missing_feature"
    PLATFORM_MISMATCH = "platform_mismatch"
    MISSING_INCLUDE = "missing_include"
    MISSING_LIB = "missing_lib"
    MISSING_PROGRAM = "missing_program"
    NO_ALTERNATIVE = "no_alternative"
    CONSTANT = "constant"
    EXCLUSIVE_CONFLICT = "exclusive_conflict"


# Environment facts the caller cannot change at install time.
NON_ACTIONABLE = {FailureKind.PLATFORM_MISMATCH, FailureKind.CONSTANT}

BUILTIN_KINDS = {
    "HAS_INCLUDE": FailureKind.MISSING_INCLUDE,
    "HAS_LIB": FailureKind.MISSING_LIB,
    "HAS_PROGRAM": FailureKind.MISSING_PROGRAM,
}


@dataclass(frozen=True)
class ReportEntry:
    """
    One failing leaf.

    Attributes:
        path: Labels from the root to the leaf.
        kind: Failure classification.
        actionable: Whether installing or enabling something could fix it.
        detail: Human-readable explanation.
        shadowed: Whether some ancestor still evaluated true.
    """

    path: Tuple[str, ...]
    kind: FailureKind
    actionable: bool
    detail: str
    shadowed: bool = False

    @property
    def location(self) -> str:
        return " / ".join(self.path)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "path": list(self.path),
            "kind": self.kind.value,
            "actionable": self.actionable,
            "detail": self.detail,
            "shadowed": self.shadowed,
        }


@dataclass
class Report:
    """Outcome of one evaluation with its classified failures."""

    result: bool
    entries: List[ReportEntry] = field(default_factory=list)
    trace: Optional[TraceNode] = None
    options: Tuple[str, ...] = ()

    def failures(
        self,
        actionable: Optional[bool] = None,
        include_shadowed: bool = True,
    ) -> List[ReportEntry]:
        """
        Select entries.

        Args:
            actionable: Keep only actionable (True) or non-actionable
                (False) entries; None keeps both.
            include_shadowed: Keep entries under an ancestor that held.
        """
        selected = []
        for entry in self.entries:
            if actionable is not None and entry.actionable != actionable:
                continue
            if not include_shadowed and entry.shadowed:
                continue
            selected.append(entry)
        return selected

    def summary(self) -> str:
        """Generate a summary of the evaluation."""
        status = "SATISFIED" if self.result else "NOT SATISFIED"
        lines = [f"Requirements {status}"]
        lines.append(f"  Failures: {len(self.entries)}")
        lines.append(f"  Actionable: {len(self.failures(actionable=True))}")
        if self.options:
            lines.append(f"  Options: {', '.join(':' + o for o in self.options)}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "report_version": REPORT_VERSION,
            "result": self.result,
            "options": list(self.options),
            "entries": [e.to_dict() for e in self.entries],
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    def to_markdown(self) -> str:
        """Convert to Markdown format report."""
        status = "SATISFIED" if self.result else "NOT SATISFIED"
        lines = ["# Requirements Report", "", f"**Status:** {status}", ""]

        if not self.entries:
            lines.append("No failing requirements.")
            return "\n".join(lines)

        lines.append("| Requirement | Kind | Actionable | Detail |")
        lines.append("|---|---|---|---|")
        for entry in self.entries:
            actionable = "yes" if entry.actionable else "no"
            requirement = entry.path[-1] if entry.path else ""
            if entry.shadowed:
                requirement += " (alternative held)"
            lines.append(
                f"| `{requirement}` | {entry.kind.value} | {actionable} | {entry.detail} |"
            )
        return "\n".join(lines)


def node_label(node: Node) -> str:
    """Short label for a node in a report path."""
    if isinstance(node, Logical):
        return node.op.value
    if isinstance(node, Tagged):
        return f"as :{node.tag}"
    if isinstance(node, MacroRef):
        return "{" + node.name + "}"
    return format_node(node)


class ReportBuilder:
    """
    Builds a Report from an evaluation trace.

    A leaf is reported when it evaluated false and nothing below it
    explains the failure: childless nodes, comparisons whose package
    operands were all present, `^^` with both operands true, and
    choices with no selected alternative.
    """

    def build(self, trace: TraceNode, options: Tuple[str, ...] = ()) -> Report:
        report = Report(result=trace.value.truthy, trace=trace, options=tuple(sorted(options)))
        self._visit(trace, report.entries)
        return report

    def _visit(self, root: TraceNode, entries: List[ReportEntry]) -> None:
        """Pre-order walk over the trace; each item is (trace, path, shadowed, operand)."""
        pending = [(root, (), False, False)]
        while pending:
            trace, path, shadowed, operand = pending.pop()
            node = trace.node
            path = path + (node_label(node),)

            # Constants and platform values compared by a parent are reported there.
            entry = None
            if not (operand and isinstance(node, (Literal, BuiltinMacroRef))):
                entry = self._classify(trace)
            if entry is not None:
                kind, detail = entry
                entries.append(ReportEntry(
                    path=path,
                    kind=kind,
                    actionable=kind not in NON_ACTIONABLE,
                    detail=detail,
                    shadowed=shadowed,
                ))

            # A reused macro result was already reported under its first reference.
            if isinstance(node, MacroRef) and (trace.raw or {}).get("cached"):
                continue

            below = shadowed or trace.value.truthy
            comparison = isinstance(node, (Relational, Equality, SetMembership))
            for index in reversed(range(len(trace.children))):
                child_path = path
                if isinstance(node, Logical):
                    child_path = path[:-1] + (f"{path[-1]}[{index}]",)
                pending.append((trace.children[index], child_path, below, comparison))

    def _classify(self, trace: TraceNode) -> Optional[Tuple[FailureKind, str]]:
        node = trace.node
        if trace.value.truthy:
            return None

        if isinstance(node, PackageRef):
            return self._classify_package(node, trace.raw or {})

        if isinstance(node, BuiltinCall):
            missing = [arg for arg, found in (trace.raw or {}).items() if not found]
            return BUILTIN_KINDS[node.name], f"Not found: {', '.join(missing)}"

        if isinstance(node, BuiltinMacroRef):
            return FailureKind.PLATFORM_MISMATCH, f"{{{node.name}}} is {trace.raw!r}"

        if isinstance(node, MacroRef):
            raw = trace.raw or {}
            if raw.get("selected") is False:
                return FailureKind.NO_ALTERNATIVE, f"No alternative of choice '{node.name}' selected"
            return None

        if isinstance(node, Literal):
            return FailureKind.CONSTANT, f"Constant {format_node(node)}"

        if isinstance(node, Logical):
            if node.op is LogicalOp.XOR and all(c.value.truthy for c in trace.children):
                return FailureKind.EXCLUSIVE_CONFLICT, "Both sides of '^^' hold"
            return None

        if isinstance(node, (Relational, Equality, SetMembership)):
            if any(operand_failed(c) for c in trace.children):
                return None
            return self._classify_comparison(trace)

        return None

    def _classify_package(self, node: PackageRef, raw: Dict[str, Any]) -> Tuple[FailureKind, str]:
        if not raw.get("installed"):
            return FailureKind.MISSING_MODULE, f"Module {node.name} is not installed"

        if raw.get("constraint") is False:
            version = raw.get("version")
            if version is None:
                return FailureKind.VERSION_MISMATCH, f"{node.name} declares no version"
            return FailureKind.VERSION_MISMATCH, (
                f"{node.name} {version} does not satisfy {format_node(node)}"
            )

        missing = [f for f, found in raw.get("features", {}).items() if not found]
        return FailureKind.MISSING_FEATURE, f"{node.name} lacks feature(s): {', '.join(missing)}"

    def _classify_comparison(self, trace: TraceNode) -> Tuple[FailureKind, str]:
        node = trace.node
        operands = [n for child in trace.children for n in walk(child.node)]
        text = format_node(node)

        bare = [
            c.node.name
            for child in trace.children if unversioned(child)
            for c in _descendants(child)
            if isinstance(c.node, PackageRef)
        ]
        if bare:
            return FailureKind.VERSION_MISMATCH, f"{text} is false ({bare[0]} declares no version)"

        if any(isinstance(n, BuiltinMacroRef) for n in operands):
            values = ", ".join(
                f"{{{c.node.name}}} is {c.raw!r}"
                for child in trace.children
                for c in _descendants(child)
                if isinstance(c.node, BuiltinMacroRef)
            )
            return FailureKind.PLATFORM_MISMATCH, f"{text} is false ({values})"

        if any(isinstance(n, (PackageRef, MacroRef)) for n in operands):
            versions = ", ".join(
                f"{c.node.name} {c.value.version}"
                for child in trace.children
                for c in _descendants(child)
                if isinstance(c.node, PackageRef) and c.value.version is not None
            )
            detail = f"{text} is false"
            if versions:
                detail += f" ({versions})"
            return FailureKind.VERSION_MISMATCH, detail

        return FailureKind.CONSTANT, f"{text} is false"


def _descendants(trace: TraceNode):
    pending = [trace]
    while pending:
        trace = pending.pop()
        yield trace
        pending.extend(reversed(trace.children))


def build_report(trace: TraceNode, options: Tuple[str, ...] = ()) -> Report:
    """Build a Report from an evaluation trace."""
    return ReportBuilder().build(trace, options)
