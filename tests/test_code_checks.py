import logging

from cpstan import code_checks
from cpstan.formula import SegmentedFormula
from cpstan.prior import parse_prior, resolve_priors


def check(segments: list[str], prior: dict, **kwargs) -> bool:
    formula = SegmentedFormula(segments, **kwargs)
    priors = resolve_priors(formula.parameters, formula.varying, prior, "gaussian")
    return code_checks.check_priors(formula, priors, prior)


class TestCodeChecks:
    def test_default_priors(self, caplog):
        with caplog.at_level(logging.WARNING, logger="CPSTAN"):
            assert check(["y ~ 1 + x", "~ 0 + x"], {})
        assert len(caplog.records) == 0

    def test_sigma_prior(self, caplog):
        assert code_checks.verify_sigma_prior("sigma_1", parse_prior("normal(0, 1) T(0, )"))
        assert code_checks.verify_sigma_prior("sigma_1", parse_prior("gamma(2, 1)"))
        assert code_checks.verify_sigma_prior("sigma_1", parse_prior(1.5))
        with caplog.at_level(logging.WARNING, logger="CPSTAN"):
            assert not check(["y ~ 1 + x"], {"sigma_1": "normal(0, 1)"})
        assert "allows negative values" in caplog.text

    def test_ar_prior(self, caplog):
        assert code_checks.verify_ar_prior("ar1_1", parse_prior("uniform(-1, 1)"))
        assert code_checks.verify_ar_prior("ar1_1", parse_prior("normal(0, 0.5) T(-1, 1)"))
        with caplog.at_level(logging.WARNING, logger="CPSTAN"):
            assert not check(["y ~ 1 + ar(1)"], {"ar1_1": "normal(0, 1)"}, par_x="x")
        assert "non-stationary" in caplog.text

    def test_fixed_change_points(self, caplog):
        with caplog.at_level(logging.WARNING, logger="CPSTAN"):
            assert not check(["y ~ 1", "~ 1", "~ 1"], {"cp_1": 20, "cp_2": 10}, par_x="x")
        assert "not ordered: cp_1 = 20.0 > cp_2 = 10.0" in caplog.text
        assert check(["y ~ 1", "~ 1", "~ 1"], {"cp_1": 10, "cp_2": 20}, par_x="x")

    def test_truncated_change_point_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="CPSTAN"):
            assert check(["y ~ 1", "~ 1"], {"cp_1": "normal(10, 2)"}, par_x="x")
        assert "is truncated" in caplog.text

    def test_lower_bound_value(self):
        assert code_checks.lower_bound_value(parse_prior("normal(0, 1) T(-2, )")) == -2.0
        assert code_checks.lower_bound_value(parse_prior("normal(0, 1) T(MINX, )")) is None
        assert code_checks.lower_bound_value(parse_prior("normal(0, 1)")) is None
