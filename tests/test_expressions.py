import numpy as np
import pytest

import cpstan.stanlang as sl
from cpstan.deparse import deparse_expr
from cpstan.optimize import optimize_expr
from cpstan.evaluate import evaluate, find_names, substitute
from cpstan.parser import parse_expr


class TestExpression:
    def test_binary(self):
        x = sl.Var(sl.Real(), "x")
        y = sl.Var(sl.Real(), "y")

        expr = x + y
        assert deparse_expr(expr) == "x + y"

        expr = x * y
        assert deparse_expr(expr) == "x * y"

        expr = x / y
        assert deparse_expr(expr) == "x / y"

        expr = x - y
        assert deparse_expr(expr) == "x - y"

        expr = sl.LeOp(x, y)
        assert deparse_expr(expr) == "x < y"

        expr = sl.LeEqOp(x, y)
        assert deparse_expr(expr) == "x <= y"

        expr = sl.GrOp(x, y)
        assert deparse_expr(expr) == "x > y"

        expr = sl.GrEqOp(x, y)
        assert deparse_expr(expr) == "x >= y"

        expr = sl.EqOp(x, y)
        assert deparse_expr(expr) == "x == y"

        expr = sl.NeqOp(x, y)
        assert deparse_expr(expr) == "x != y"

    def test_unary(self):
        x = sl.Var(sl.Real(), "x")

        expr = sl.Negate(x)
        assert deparse_expr(expr) == "-x"

    def test_function_call(self):
        x = sl.Var(sl.Real(), "x")
        cp = sl.Var(sl.Real(), "cp_1")

        expr = sl.Call("fmin", [x, cp])
        assert deparse_expr(expr) == "fmin(x, cp_1)"

        expr = sl.Call("step", [x - cp])
        assert deparse_expr(expr) == "step(x - cp_1)"

    def test_pcall(self):
        y = sl.Var(sl.Vector(sl.intVar("N")), "y")
        i = sl.intVar("i")
        expr = sl.PCall("normal", y.idx(i), [sl.realVar("mu").idx(i), sl.realVar("sigma")], "lpdf")
        assert deparse_expr(expr) == "normal_lpdf(y[i] | mu[i], sigma)"

    def test_literal_vector(self):
        expr = sl.LiteralVector([sl.LiteralInt(1), sl.LiteralInt(2)])
        assert deparse_expr(expr) == "[1, 2]'"


class TestOptimize:
    def test_literal_arithmetic(self):
        expr = optimize_expr(parse_expr("2 * 3 + 1"))
        assert expr == sl.LiteralInt(7)

        expr = optimize_expr(parse_expr("1.5 + 1"))
        assert expr == sl.LiteralReal(2.5)

        expr = optimize_expr(parse_expr("1 / 4"))
        assert expr == sl.LiteralReal(0.25)

    def test_neutral_elements(self):
        assert deparse_expr(optimize_expr(parse_expr("1 * x + 0"))) == "x"
        assert deparse_expr(optimize_expr(parse_expr("x^1 - 0"))) == "x"
        assert deparse_expr(optimize_expr(parse_expr("x / 1"))) == "x"

    def test_parentheses(self):
        assert deparse_expr(optimize_expr(parse_expr("(x) + (y * z)"))) == "x + (y * z)"
        assert deparse_expr(optimize_expr(parse_expr("((x))"))) == "x"
        # negative literals keep their parentheses
        assert deparse_expr(optimize_expr(parse_expr("x * (-2)"))) == "x * (-2)"

    def test_negate(self):
        assert optimize_expr(parse_expr("--x")) == sl.realVar("x")
        assert optimize_expr(sl.Negate(sl.LiteralInt(3))) == sl.LiteralInt(-3)


class TestEvaluate:
    def test_arithmetic(self):
        env = {"a": 2.0, "b": np.array([1.0, 2.0, 3.0])}
        val = evaluate(parse_expr("a * b^2 - 1"), env)
        assert np.allclose(val, [1.0, 7.0, 17.0])

    def test_functions(self):
        env = {"x": np.array([0.0, 5.0, 10.0]), "cp": 4.0}
        assert np.allclose(evaluate(parse_expr("fmin(x, cp)"), env), [0.0, 4.0, 4.0])
        assert np.allclose(evaluate(parse_expr("step(x - cp)"), env), [0.0, 1.0, 1.0])
        # step(0) is 1, as in Stan
        assert evaluate(parse_expr("step(cp - 4)"), env) == 1.0
        assert np.isclose(evaluate(parse_expr("inv_logit(0)"), env), 0.5)

    def test_broadcasting(self):
        # draws have shape (S, 1), data shape (N,)
        env = {"x": np.arange(4.0), "b": np.array([[1.0], [2.0]])}
        val = evaluate(parse_expr("b * x"), env)
        assert val.shape == (2, 4)
        assert np.allclose(val[1], [0.0, 2.0, 4.0, 6.0])

    def test_one_based_index(self):
        env = {
            "eff": np.array([[-1.0, 1.0]]),
            "g": np.array([2, 1, 2]),
            "i": np.arange(1, 4),
        }
        val = evaluate(parse_expr("eff[g[i]]"), env)
        assert np.allclose(val, [[1.0, -1.0, 1.0]])

    def test_comparisons(self):
        env = {"a": np.array([1.0, 3.0])}
        assert list(evaluate(parse_expr("a > 2 & a < 4"), env)) == [False, True]
        assert list(evaluate(parse_expr("a < 2 | a > 2.5"), env)) == [True, True]

    def test_errors(self):
        with pytest.raises(KeyError):
            evaluate(parse_expr("a + 1"), {})
        with pytest.raises(ValueError, match="can not be evaluated"):
            evaluate(parse_expr("foo(1)"), {})

    def test_find_names(self):
        names = find_names(parse_expr("x_1 + fmin(x, cp_1) * x_1 - MAXX"))
        assert names == ["x_1", "x", "cp_1", "MAXX"]

    def test_substitute(self):
        expr = substitute(parse_expr("2 * a + b"), {"a": parse_expr("c + 1")})
        assert deparse_expr(expr) == "2 * (c + 1) + b"
