"""
reqlang: module and feature requirement expressions.

This package compiles small declarative requirement programs and
evaluates them against a live environment, producing a boolean result
and a diagnostic report of what failed and whether it can be fixed.
"""

from .errors import (
    ReqLangError,
    CompileError,
    LexError,
    ParseError,
    SemanticError,
    TagCollisionError,
    EvaluationError,
)
from .version import Version, Range, VersionSet, compare, parse_version
from .environment import (
    Environment,
    ModuleRecord,
    ModuleRegistry,
    ProbeService,
    StaticModuleRegistry,
    StaticProbes,
    HostProbes,
    load_environment,
)
from .config import EvaluatorConfig, load_config
from .report import FailureKind, Report, ReportEntry
from .engine import EvaluationOutcome, check, compile, evaluate

__version__ = "1.0.0"
__all__ = [
    # Errors
    "ReqLangError",
    "CompileError",
    "LexError",
    "ParseError",
    "SemanticError",
    "TagCollisionError",
    "EvaluationError",
    # Versions
    "Version",
    "Range",
    "VersionSet",
    "compare",
    "parse_version",
    # Environment
    "Environment",
    "ModuleRecord",
    "ModuleRegistry",
    "ProbeService",
    "StaticModuleRegistry",
    "StaticProbes",
    "HostProbes",
    "load_environment",
    # Config
    "EvaluatorConfig",
    "load_config",
    # Report
    "FailureKind",
    "Report",
    "ReportEntry",
    # Entry points
    "EvaluationOutcome",
    "check",
    "compile",
    "evaluate",
]
