import pytest

from cpstan import stanlang as sl
from cpstan.deparse import deparse_expr
from cpstan.parser import parse, parse_expr, parse_formula, TildeSpec, TruncatedSpec


class TestParser:
    def test_expression(self):
        code_str = "int_1 + x_1 * fmin(x, cp_1)"
        expr = parse_expr(code_str)
        assert deparse_expr(expr) == code_str

    def test_operator_precedence(self):
        expr = parse_expr("a + b * c^2")
        match expr:
            case sl.AddOp(sl.Var(_, "a"), sl.MulOp(sl.Var(_, "b"), sl.PowOp(_, _))):
                pass
            case _:
                pytest.fail(f"unexpected parse tree {expr}")

    def test_negative_literal(self):
        expr = parse_expr("-2.5")
        assert expr == sl.Negate(sl.LiteralReal(2.5))

    def test_index(self):
        expr = parse_expr("cp_1_id[id[i]]")
        assert deparse_expr(expr) == "cp_1_id[id[i]]"

    def test_formula(self):
        spec = parse_formula("y ~ 1 + x")
        assert isinstance(spec, TildeSpec)
        assert spec.lhs == sl.Var(sl.Real(), "y")
        assert deparse_expr(spec.rhs) == "1 + x"

    def test_formula_without_lhs(self):
        spec = parse_formula("~ 0 + x")
        assert spec.lhs is None
        assert deparse_expr(spec.rhs) == "0 + x"

    def test_varying_cp_formula(self):
        spec = parse_formula("1 + (1|id) ~ rel(1)")
        assert deparse_expr(spec.lhs) == "1 + (1 || id)"

    def test_formula_required(self):
        with pytest.raises(SyntaxError):
            parse_formula("1 + x")

    def test_truncation(self):
        spec = parse("normal(0, SDY) T(0, )")
        assert isinstance(spec, TruncatedSpec)
        assert deparse_expr(spec.expr) == "normal(0, SDY)"
        assert spec.lower == sl.LiteralInt(0)
        assert spec.upper is None

        spec = parse("dt(0, 1, 3) T[, MAXX]")
        assert isinstance(spec, TruncatedSpec)
        assert spec.lower is None
        assert deparse_expr(spec.upper) == "MAXX"

    def test_hypothesis(self):
        expr = parse_expr("cp_1 > 30 & x_2 < x_1")
        assert isinstance(expr, sl.LogicAndOp)
        assert deparse_expr(expr) == "cp_1 > 30 && x_2 < x_1"

        # a single = is a point hypothesis
        expr = parse_expr("int_1 = 0")
        assert isinstance(expr, sl.EqOp)

    def test_backticks_are_ignored(self):
        expr = parse_expr("`cp_1` > 3")
        assert deparse_expr(expr) == "cp_1 > 3"

    def test_syntax_errors(self):
        with pytest.raises(SyntaxError):
            parse("normal(0, ")
        with pytest.raises(SyntaxError):
            parse("x $ y")
        with pytest.raises(SyntaxError):
            parse("   ")
