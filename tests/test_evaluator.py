"""
Tests for the Expression Evaluator.
"""

import time

import pytest

from backend.reqlang.config import EvaluatorConfig
from backend.reqlang.engine import compile, evaluate
from backend.reqlang.environment import Environment, ModuleRecord, ModuleRegistry
from backend.reqlang.errors import EvaluationError
from backend.reqlang.logic.evaluator import ExpressionEvaluator, Value
from backend.reqlang.logic.nodes import Logical, MacroRef, PackageRef


def run(source, env, options=(), config=None):
    return evaluate(compile(source), options, env, config).result


class SlowRegistry(ModuleRegistry):
    """Registry whose lookups take longer than any sane deadline."""

    def lookup(self, name):
        time.sleep(0.5)
        return ModuleRecord(name, "1.0")

    def has_feature(self, name, feature):
        return True


class TestShortCircuit:
    """Tests for lazy evaluation of && and ||."""

    def test_false_and_never_queries(self, make_env):
        """Test `false && Q` leaves Q's collaborator untouched."""
        env = make_env(modules={"Q": "1.0"})
        assert run("false && Q", env) is False
        assert env.registry.calls == []

    def test_true_or_never_probes(self, make_env):
        """Test `true || HAS_LIB(...)` leaves the probe untouched."""
        env = make_env()
        assert run("true || HAS_LIB('expat')", env) is True
        assert env.probes.calls == []

    def test_missing_module_stops_and(self, make_env):
        """Test an absent package short-circuits its siblings."""
        env = make_env(modules={"DBD::Pg": "2.0"})
        assert run("DBI && DBD::Pg", env) is False
        assert env.registry.lookups("DBD::Pg") == 0

    def test_left_to_right_chain(self, make_env):
        """Test `A || B && C` evaluates as `(A || B) && C`."""
        env = make_env(modules={"A": "1", "C": "1"})
        assert run("A || B && C", env) is True
        assert env.registry.lookups("B") == 0


class TestXor:
    """Tests for exclusive or."""

    @pytest.mark.parametrize("lhs,rhs,expected", [
        ("true", "true", False),
        ("true", "false", True),
        ("false", "true", True),
        ("false", "false", False),
    ])
    def test_truth_table(self, make_env, lhs, rhs, expected):
        """Test ^^ over constants."""
        assert run(f"{lhs} ^^ {rhs}", make_env()) is expected

    def test_both_operands_evaluated(self, make_env):
        """Test ^^ never short-circuits."""
        env = make_env(modules={"A": "1"})
        assert run("A ^^ B", env) is True
        assert env.registry.lookups("B") == 1


class TestPackages:
    """Tests for package references."""

    def test_installed(self, make_env):
        """Test presence alone is true."""
        assert run("File::Spec", make_env(modules={"File::Spec": "0.90"})) is True

    def test_absent_is_false_not_error(self, make_env):
        """Test absence is an ordinary false."""
        assert run("File::Spec", make_env()) is False

    @pytest.mark.parametrize("source,expected", [
        ("File::Spec > 0.80", True),
        ("File::Spec >= 0.90", True),
        ("File::Spec > 0.90", False),
        ("File::Spec == 0.90.0", True),
        ("File::Spec == 0.9", False),
        ("File::Spec != 0.90", False),
        ("0.95 > File::Spec", True),
        ("File::Spec in [0.80- !0.90]", False),
        ("File::Spec in [0.80- !0.85]", True),
    ])
    def test_constraints(self, make_env, source, expected):
        """Test folded version constraints."""
        assert run(source, make_env(modules={"File::Spec": "0.90"})) is expected

    def test_no_version_fails_constraint(self, make_env):
        """Test a package without a version fails any version test."""
        env = make_env(modules={"Foo": None})
        assert run("Foo", env) is True
        assert run("Foo >= 0", env) is False

    def test_features(self, make_env):
        """Test every listed feature must be present."""
        env = make_env(
            modules={"Module::Build": "0.42"},
            features={"Module::Build": ["yaml_support"]},
        )
        assert run("Module::Build#(yaml_support)", env) is True
        assert run("Module::Build#(yaml_support && c_support)", env) is False

    def test_features_skipped_when_constraint_fails(self, make_env):
        """Test feature queries wait for the version check."""
        env = make_env(modules={"Module::Build": "0.20"}, features={"Module::Build": ["x"]})
        assert run("Module::Build#(x) >= 0.26", env) is False
        assert not [c for c in env.registry.calls if c[0] == "has_feature"]

    def test_malformed_registry_version(self, make_env):
        """Test an unparsable installed version is an EvaluationError."""
        env = make_env(modules={"Foo": "not-a-version"})
        with pytest.raises(EvaluationError) as exc:
            run("Foo", env)
        assert "Malformed version of Foo" in exc.value.message

    def test_registry_style_version(self, make_env):
        """Test a `v`-prefixed installed version."""
        assert run("Foo >= 5.10", make_env(modules={"Foo": "v5.10.1"})) is True


class TestComparisons:
    """Tests for relational and equality operators."""

    def test_osname_string_equality(self, make_env):
        """Test `{OSNAME}` compares as text."""
        env = make_env(osname="linux")
        assert run("{OSNAME} == 'linux'", env) is True
        assert run("{OSNAME} != 'MSWin32'", env) is True
        assert run("{OSNAME} == 'MSWin32'", env) is False

    def test_ithreads(self, make_env):
        """Test `{ITHREADS}` is a boolean."""
        assert run("{ITHREADS}", make_env(ithreads=True)) is True
        assert run("{ITHREADS}", make_env(ithreads=False)) is False
        assert run("{ITHREADS} == false", make_env(ithreads=False)) is True

    def test_package_versus_package(self, make_env):
        """Test two packages compare by version."""
        env = make_env(modules={"Foo": "1.5", "Bar": "1.2"})
        assert run("Foo > Bar", env) is True
        assert run("Foo == Bar", env) is False

    def test_missing_operand_is_false(self, make_env):
        """Test a comparison with an absent package is false, not an error."""
        env = make_env(modules={"Foo": "1.5"})
        assert run("Foo > Bar", env) is False

    def test_macro_carries_version(self, make_env):
        """Test a macro over a package keeps its version for comparisons."""
        env = make_env(modules={"Foo": "1.5"})
        assert run("define f = Foo;\n{f} in [1.0-2.0]", env) is True
        assert run("define f = Foo;\n{f} > 2.0", env) is False

    def test_macro_over_missing_package(self, make_env):
        """Test a macro standing for an absent package makes the comparison false."""
        assert run("define f = Foo;\n{f} in [1.0-]", make_env()) is False

    def test_unversioned_package_operand(self, make_env):
        """Test a present package without a version fails relational and equality tests."""
        env = make_env(modules={"Foo": "1.0", "Bar": None})
        assert run("Foo > Bar", env) is False
        assert run("Bar < Foo", env) is False
        assert run("Foo == Bar", env) is False
        assert run("Foo != Bar", env) is False
        assert run("Bar", env) is True

    def test_unversioned_macro_in_set(self, make_env):
        """Test a macro standing for an unversioned package is not in any set."""
        env = make_env(modules={"Bar": None})
        assert run("define m = Bar;\n{m} in [1.0-]", env) is False
        assert run("define m = Bar;\n{m} > 0 || {m}", env) is True

    def test_string_versus_version(self, make_env):
        """Test a quoted version compares as a version under relational operators."""
        assert run("'1.10' > 1.9", make_env()) is True

    def test_incomparable_operands(self, make_env):
        """Test ordering booleans is an EvaluationError."""
        with pytest.raises(EvaluationError):
            run("true < false", make_env())


class TestBuiltins:
    """Tests for probe functions."""

    def test_all_arguments_required(self, make_env):
        """Test every argument must be found."""
        env = make_env(includes=["expat.h", "zlib.h"], libs=["expat"], programs=["make"])
        assert run("HAS_INCLUDE('expat.h', 'zlib.h')", env) is True
        assert run("HAS_INCLUDE('expat.h', 'bz2.h')", env) is False
        assert run("HAS_LIB('expat') && HAS_PROGRAM('make')", env) is True

    def test_each_argument_queried(self, make_env):
        """Test the probe sees every argument."""
        env = make_env()
        run("HAS_LIB('a', 'b')", env)
        assert env.probes.calls == [("lib", "a"), ("lib", "b")]


class TestChoicesAndMacros:
    """Tests for choice pruning and macro memoization."""

    CHOICE = "choice dbd = DBD::pg as :pg || DBD::mysql as :mysql;  {dbd}"

    def test_pruned_alternative_never_queried(self, make_env):
        """Test an unselected alternative never reaches the registry."""
        env = make_env(modules={"DBD::pg": "2.0", "DBD::mysql": "4.0"})
        assert run(self.CHOICE, env, options=["pg"]) is True
        assert env.registry.lookups("DBD::mysql") == 0
        assert env.registry.lookups("DBD::pg") == 1

    def test_selected_alternative_decides(self, make_env):
        """Test the selected alternative alone decides."""
        env = make_env(modules={"DBD::mysql": "4.0"})
        assert run(self.CHOICE, env, options=[":pg"]) is False
        assert run(self.CHOICE, env, options=[":mysql"]) is True

    def test_no_alternative_is_false(self, make_env):
        """Test a choice with nothing selected evaluates false."""
        env = make_env(modules={"DBD::pg": "2.0", "DBD::mysql": "4.0"})
        assert run(self.CHOICE, env) is False
        assert env.registry.calls == []

    def test_macro_queried_once(self, make_env):
        """Test a macro used twice evaluates its body once."""
        env = make_env(modules={"YAML": "0.70", "Foo": "1"})
        source = "define yaml = YAML >= 0.60;\n{yaml} && Foo && {yaml}"
        assert run(source, env) is True
        assert env.registry.lookups("YAML") == 1

    def test_macro_never_referenced_never_evaluated(self, make_env):
        """Test macros are lazy."""
        env = make_env(modules={"Foo": "1"})
        assert run("define unused = Bar;\nFoo", env) is True
        assert env.registry.lookups("Bar") == 0

    def test_macro_cache_is_per_call(self, make_env):
        """Test a compiled program does not carry results between calls."""
        program = compile("define f = Foo;\n{f}")
        env = make_env(modules={"Foo": "1"})
        evaluate(program, env=env)
        evaluate(program, env=env)
        assert env.registry.lookups("Foo") == 2

    def test_memoized_lookups(self, make_env):
        """Test identical collaborator queries are answered once."""
        env = make_env(modules={"Foo": "1.5"})
        assert run("Foo > 1.0 && Foo < 2.0", env) is True
        assert env.registry.lookups("Foo") == 1

    def test_memoization_can_be_disabled(self, make_env):
        """Test memoize_lookups=False repeats queries."""
        env = make_env(modules={"Foo": "1.5"})
        config = EvaluatorConfig(memoize_lookups=False)
        assert run("Foo > 1.0 && Foo < 2.0", env, config=config) is True
        assert env.registry.lookups("Foo") == 2


class TestEvaluationErrors:
    """Tests for collaborator failures."""

    def test_collaborator_failure(self, make_env):
        """Test an infrastructure failure is an EvaluationError, not false."""
        env = make_env(failing=["DBI"])
        with pytest.raises(EvaluationError) as exc:
            run("DBI", env)
        assert exc.value.operation == "lookup"
        assert "registry unreachable" in exc.value.message
        assert isinstance(exc.value.__cause__, ConnectionError)

    def test_program_survives_failure(self, make_env):
        """Test the compiled program can be retried with a healthy environment."""
        program = compile("DBI")
        with pytest.raises(EvaluationError):
            evaluate(program, env=make_env(failing=["DBI"]))
        assert evaluate(program, env=make_env(modules={"DBI": "1.6"})).result is True

    def test_timeout(self):
        """Test a collaborator past its deadline raises EvaluationError."""
        env = Environment(registry=SlowRegistry())
        config = EvaluatorConfig(collaborator_timeout=0.05)
        with pytest.raises(EvaluationError) as exc:
            run("Foo", env, config=config)
        assert "timed out" in exc.value.message

    def test_deadline_allows_fast_calls(self, make_env):
        """Test a generous deadline changes nothing."""
        env = make_env(modules={"Foo": "1"})
        config = EvaluatorConfig(collaborator_timeout=5)
        assert run("Foo", env, config=config) is True

    def test_evaluate_requires_environment(self):
        """Test evaluate refuses to guess an environment."""
        with pytest.raises(TypeError):
            evaluate(compile("Foo"))


class TestTrace:
    """Tests for the evaluation trace."""

    def test_trace_mirrors_visited_nodes(self, make_env):
        """Test only evaluated nodes appear in the trace."""
        program = compile("Foo && Bar")
        evaluator = ExpressionEvaluator(program.select(), make_env(modules={"Bar": "1"}))
        trace = evaluator.run()
        assert isinstance(trace.node, Logical)
        assert len(trace.children) == 1
        assert trace.children[0].node == PackageRef("Foo")
        assert trace.children[0].raw == {"installed": False}

    def test_package_value_carries_version(self, make_env):
        """Test a present package exposes its version."""
        program = compile("Foo")
        trace = ExpressionEvaluator(program.select(), make_env(modules={"Foo": "1.5"})).run()
        assert trace.value.truthy is True
        assert str(trace.value.version) == "1.5"
        assert trace.raw == {"installed": True, "version": "1.5"}

    def test_cached_macro_marked(self, make_env):
        """Test the second reference to a macro reuses the first trace."""
        program = compile("define f = Foo;\n{f} && {f}")
        trace = ExpressionEvaluator(program.select(), make_env(modules={"Foo": "1"})).run()
        first, second = trace.children
        assert first.node == MacroRef("f")
        assert first.raw == {"choice": False, "cached": False}
        assert second.raw == {"choice": False, "cached": True}
        assert second.children[0] is first.children[0]

    def test_value_defaults(self):
        """Test Value payloads default to None."""
        value = Value(True)
        assert value.version is None
        assert value.text is None


class TestEndToEnd:
    """The full pipeline on a realistic requirement."""

    def test_module_build_example(self, make_env):
        """Test features, platform and version checks together."""
        env = make_env(
            modules={"Module::Build": "0.42", "File::Spec": "0.90"},
            features={"Module::Build": ["yaml_support", "c_support"]},
            osname="Linux",
        )
        source = (
            "Module::Build#(yaml_support && c_support) && "
            "({OSNAME} == 'MSWin32' || File::Spec > 0.80)"
        )
        assert run(source, env) is True


class TestLongChains:
    """Tests for long `&&`/`||` chains."""

    def test_thousand_term_chain(self, make_env):
        """Test a long chain evaluates with one lookup per package."""
        env = make_env(modules={"Foo": "1.0"})
        assert run(" && ".join(["Foo"] * 1000), env) is True
        assert env.registry.lookups("Foo") == 1

    def test_chain_short_circuits(self, make_env):
        """Test a false head stops a long `&&` chain."""
        env = make_env(modules={"Foo": "1.0"})
        assert run(" && ".join(["Missing"] + ["Foo"] * 999), env) is False
        assert env.registry.lookups("Foo") == 0

    def test_mixed_chain(self, make_env):
        """Test operators keep left-to-right grouping along a long spine."""
        env = make_env(modules={"Foo": "1.0"})
        source = " || ".join(["Missing"] * 500) + " && Foo ^^ Foo"
        assert run(source, env) is True
        assert env.registry.lookups("Foo") == 1

    def test_trace_shape(self, make_env):
        """Test each level of the chain keeps its own trace node."""
        program = compile("A && B && C")
        trace = ExpressionEvaluator(program.select(), make_env(modules={"A": "1", "B": "1"})).run()
        assert trace.value.truthy is False
        inner, last = trace.children
        assert last.node == PackageRef("C")
        assert [c.node for c in inner.children] == [PackageRef("A"), PackageRef("B")]
