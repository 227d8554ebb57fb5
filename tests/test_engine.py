"""
Tests for the compile and evaluate entry points.
"""

import pytest

import backend.reqlang as reqlang
from backend.reqlang.engine import EvaluationOutcome, check, compile, evaluate
from backend.reqlang.errors import (
    CompileError,
    EvaluationError,
    LexError,
    ParseError,
    ReqLangError,
    SemanticError,
)


class TestCompile:
    """Tests for compile."""

    def test_empty_program(self, make_env):
        """Test the empty program is true with an empty report."""
        result, report = evaluate(compile(""), env=make_env())
        assert result is True
        assert report.entries == []

    @pytest.mark.parametrize("source,error", [
        ("'unterminated", LexError),
        ("Foo &&", ParseError),
        ("{nope}", SemanticError),
    ])
    def test_errors_abort(self, source, error):
        """Test each stage raises its own error type."""
        with pytest.raises(error):
            compile(source)

    def test_error_hierarchy(self):
        """Test every error shares the package base class."""
        assert issubclass(LexError, CompileError)
        assert issubclass(SemanticError, ReqLangError)
        assert issubclass(EvaluationError, ReqLangError)
        assert not issubclass(EvaluationError, CompileError)

    def test_error_to_dict(self):
        """Test compile errors serialize with their position."""
        with pytest.raises(ParseError) as exc:
            compile("Foo &&\n)")
        data = exc.value.to_dict()
        assert data["error"] == "ParseError"
        assert data["line"] == 2
        assert data["column"] == 1

    def test_evaluation_error_to_dict(self):
        """Test evaluation errors name the failing operation."""
        error = EvaluationError("lookup(DBI) failed", operation="lookup")
        assert error.to_dict() == {
            "error": "EvaluationError",
            "message": "lookup(DBI) failed",
            "operation": "lookup",
        }


class TestEvaluate:
    """Tests for evaluate and check."""

    def test_outcome_tuple(self, make_env):
        """Test the outcome unpacks as (result, report)."""
        outcome = check("Foo", env=make_env(modules={"Foo": "1"}))
        assert isinstance(outcome, EvaluationOutcome)
        result, report = outcome
        assert result is True and report.result is True

    def test_program_reused_across_environments(self, make_env):
        """Test one compiled program evaluates against many environments."""
        program = compile("File::Spec > 0.80")
        assert evaluate(program, env=make_env(modules={"File::Spec": "0.90"})).result is True
        assert evaluate(program, env=make_env(modules={"File::Spec": "0.70"})).result is False
        assert evaluate(program, env=make_env()).result is False

    def test_unknown_option(self, make_env):
        """Test an unknown option tag is a SemanticError at evaluation."""
        program = compile("choice db = A as :a || B as :b;\n{db}")
        with pytest.raises(SemanticError):
            evaluate(program, ["c"], make_env())

    def test_options_selected(self, make_env):
        """Test options reach the report."""
        program = compile("choice db = A as :a || B as :b;\n{db}")
        outcome = evaluate(program, [":b", "a"], make_env(modules={"B": "1"}))
        assert outcome.result is True
        assert outcome.report.options == ("a", "b")

    def test_package_exports(self, make_env):
        """Test the package surface."""
        assert reqlang.__version__ == "1.0.0"
        env = reqlang.Environment(registry=reqlang.StaticModuleRegistry({"Foo": "2"}))
        assert reqlang.check("Foo >= 1.5", env=env).result is True
