import pytest

from cpstan.deparse import deparse_expr
from cpstan.optimize import optimize_expr
from cpstan.formula import SegmentedFormula


def predictor_code(formula: SegmentedFormula, dpar: str = "ct") -> str:
    return deparse_expr(optimize_expr(formula.linear_predictor(dpar)))


class TestSegmentedFormula:
    def test_parameters(self):
        formula = SegmentedFormula(["y ~ 1 + x", "~ 0 + x", "~ 1"])

        assert formula.response == "y"
        assert formula.par_x == "x"
        assert formula.n_segments == 3
        assert formula.n_cp == 2
        assert formula.parameter_names == [
            "cp_1", "cp_2", "int_1", "x_1", "sigma_1", "x_2", "int_3",
        ]

    def test_implicit_intercept(self):
        formula = SegmentedFormula(["y ~ x", "~ x"])
        assert formula.parameter_names == ["cp_1", "int_1", "x_1", "sigma_1", "int_2", "x_2"]

    def test_predictor(self):
        formula = SegmentedFormula(["y ~ 1 + x", "~ 0 + x"])
        expected = "int_1 + x_1 * fmin(x[i], cp_1) + step(x[i] - cp_1) * x_2 * (x[i] - cp_1)"
        assert predictor_code(formula) == expected
        assert predictor_code(formula, "sigma") == "sigma_1"

    def test_intercept_gates_earlier_segments(self):
        formula = SegmentedFormula(["y ~ 1", "~ 1"], par_x="x")
        expected = "(x[i] < cp_1) * int_1 + step(x[i] - cp_1) * int_2"
        assert predictor_code(formula) == expected

    def test_middle_segment(self):
        formula = SegmentedFormula(["y ~ 1", "~ 0 + x", "~ 0"])
        assert formula.parameter_names == ["cp_1", "cp_2", "int_1", "sigma_1", "x_2"]
        expected = "int_1 + step(x[i] - cp_1) * x_2 * (fmin(x[i], cp_2) - cp_1)"
        assert predictor_code(formula) == expected

    def test_relative_terms(self):
        formula = SegmentedFormula(["y ~ 1 + x", "~ rel(1) + rel(x)"])
        param = next(p for p in formula.parameters if p.name == "int_2")
        assert param.rel
        expected = (
            "int_1 + x_1 * fmin(x[i], cp_1) + step(x[i] - cp_1) * "
            "(int_2 + (x_2 + x_1) * (x[i] - cp_1))"
        )
        assert predictor_code(formula) == expected

    def test_polynomial(self):
        formula = SegmentedFormula(["y ~ 1", "~ 0 + x + I(x^2)"])
        assert "x_2_E2" in formula.parameter_names
        assert "x_2_E2 * (x[i] - cp_1)^2" in predictor_code(formula)

    def test_varying_change_point(self):
        formula = SegmentedFormula(["y ~ 1", "1 + (1|id) ~ 0 + x"])
        assert formula.groups == ["id"]
        assert [v.name for v in formula.varying] == ["cp_1_id"]
        assert formula.parameter_names[-1] == "cp_1_sd"
        assert "step(x[i] - (cp_1 + cp_1_id[id[i]]))" in predictor_code(formula)

        formula = SegmentedFormula(["y ~ 1", "(1|id) ~ 0 + x"])
        assert formula.groups == ["id"]

    def test_sigma_and_ar(self):
        formula = SegmentedFormula(["y ~ 1 + ar(2)", "~ 1 + sigma(1 + x)"])
        assert formula.dpar_names == ["ct", "sigma", "ar1", "ar2"]
        assert formula.ar_order == 2
        names = formula.parameter_names
        assert all(n in names for n in ["ar1_1", "ar2_1", "sigma_1", "sigma_2", "sigma_x_2"])

    def test_weights_and_trials(self):
        formula = SegmentedFormula(["y | weights(w) ~ 1", "~ 1"], par_x="x")
        assert formula.weights == "w"

        formula = SegmentedFormula(["y | trials(n) ~ 1", "~ 1"], family="binomial", par_x="x")
        assert formula.trials == "n"
        # no sigma for the binomial family
        assert formula.dpar_names == ["ct"]

    def test_invalid_formulas(self):
        with pytest.raises(ValueError, match="must name the response"):
            SegmentedFormula(["~ 1 + x"])
        with pytest.raises(ValueError, match="single predictor"):
            SegmentedFormula(["y ~ 1 + x", "~ 0 + z"])
        with pytest.raises(ValueError, match="unable to infer the predictor"):
            SegmentedFormula(["y ~ 1", "~ 1"])
        with pytest.raises(ValueError, match="rel\\(\\) can not be used in the first segment"):
            SegmentedFormula(["y ~ rel(1) + x"])
        with pytest.raises(ValueError, match="multiple intercept terms"):
            SegmentedFormula(["y ~ 1 + 0 + x"])
        with pytest.raises(ValueError, match="gaussian family"):
            SegmentedFormula(["y ~ 1 + sigma(x)"], family="poisson")
        with pytest.raises(ValueError, match="invalid change point specification"):
            SegmentedFormula(["y ~ 1 + x", "2 ~ 1"])
        with pytest.raises(NotImplementedError):
            SegmentedFormula(["y ~ 1 + x", "~ 1 + (1|id)"])
        with pytest.raises(ValueError, match="non-empty list"):
            SegmentedFormula("y ~ 1 + x")
