import numpy as np
import pytest
import scipy.stats as sts

from cpstan.hypothesis import evaluate_hypothesis, evaluate_hypotheses, resolve_varying


class TestDirectionalHypotheses:
    post_draws = {
        "cp_1": np.arange(100.0),
        "x_1": np.full(100, 1.0),
        "x_2": np.linspace(-1.0, 3.0, 100),
    }

    def test_posterior_probability(self):
        result = evaluate_hypothesis("cp_1 > 74.5", self.post_draws, None, {})
        assert np.isclose(result["p"], 0.25)
        assert np.isclose(result["BF"], 1.0 / 3.0)
        assert np.isclose(result["mean"], 49.5 - 74.5)

    def test_certain_hypothesis(self):
        result = evaluate_hypothesis("cp_1 >= 0", self.post_draws, None, {})
        assert result["p"] == 1.0
        assert result["BF"] == np.inf

    def test_comparing_parameters(self):
        result = evaluate_hypothesis("x_2 < x_1", self.post_draws, None, {})
        assert np.isclose(result["p"], 0.5)
        assert result["lower"] < 0.0 < result["upper"]

    def test_combined_hypotheses(self):
        result = evaluate_hypothesis("cp_1 < 50 & x_2 > 0", self.post_draws, None, {})
        expected = np.mean((self.post_draws["cp_1"] < 50) & (self.post_draws["x_2"] > 0))
        assert np.isclose(result["p"], expected)
        assert np.isnan(result["mean"])

        result = evaluate_hypothesis("cp_1 < 10 || cp_1 > 89", self.post_draws, None, {})
        assert np.isclose(result["p"], 0.2)

    def test_multiple_hypotheses(self):
        df = evaluate_hypotheses(["cp_1 > 74.5", "x_2 < x_1"], self.post_draws)
        assert list(df.columns) == ["hypothesis", "mean", "lower", "upper", "p", "BF"]
        assert list(df["hypothesis"]) == ["cp_1 > 74.5", "x_2 < x_1"]

        df = evaluate_hypotheses("cp_1 > 74.5", self.post_draws)
        assert len(df) == 1


class TestPointHypotheses:
    rng = np.random.default_rng(1234)
    post_draws = {"int_1": sts.norm.rvs(0.0, 0.5, size=20000, random_state=rng)}
    prior_draws = {"int_1": sts.norm.rvs(0.0, 5.0, size=20000, random_state=rng)}

    def test_savage_dickey(self):
        result = evaluate_hypothesis("int_1 = 0", self.post_draws, self.prior_draws, {})
        # the ratio of the densities at 0 is 5.0 / 0.5
        assert np.isclose(result["BF"], 10.0, rtol=0.1)
        assert np.isclose(result["p"], result["BF"] / (1.0 + result["BF"]))

    def test_requires_prior_draws(self):
        with pytest.raises(ValueError, match="requires prior samples"):
            evaluate_hypothesis("int_1 = 0", self.post_draws, None, {})

    def test_constant_draws(self):
        draws = {"int_1": np.zeros(100)}
        with pytest.raises(ValueError, match="draws are constant"):
            evaluate_hypothesis("int_1 = 0", draws, self.prior_draws, {})


class TestVaryingEffects:
    post_draws = {
        "cp_1": np.full(10, 5.0),
        "cp_1_id": np.column_stack([np.full(10, -1.0), np.arange(10.0)]),
    }
    levels = {"cp_1_id": ["a", "b"]}

    def test_resolve_varying(self):
        text, placeholders = resolve_varying("`cp_1_id[b]` > cp_1_id[a]", self.levels)
        assert text == "varying0__ > varying1__"
        assert placeholders == {"varying0__": ("cp_1_id", 1), "varying1__": ("cp_1_id", 0)}

    def test_varying_hypothesis(self):
        result = evaluate_hypothesis("cp_1_id[b] > 4.5", self.post_draws, None, self.levels)
        assert np.isclose(result["p"], 0.5)

        result = evaluate_hypothesis("cp_1 + `cp_1_id[a]` < 5", self.post_draws, None, self.levels)
        assert result["p"] == 1.0

    def test_unknown_level(self):
        with pytest.raises(ValueError, match="unknown level 'c' of cp_1_id"):
            evaluate_hypothesis("cp_1_id[c] > 0", self.post_draws, None, self.levels)


class TestInvalidHypotheses:
    post_draws = {"cp_1": np.arange(10.0), "int_1": np.arange(10.0)}

    def test_no_comparison(self):
        with pytest.raises(ValueError, match="does not contain a comparison"):
            evaluate_hypothesis("cp_1 + 1", self.post_draws, None, {})

    def test_combined_point_hypothesis(self):
        with pytest.raises(ValueError, match="can not be combined"):
            evaluate_hypothesis("int_1 = 0 & cp_1 > 0", self.post_draws, self.post_draws, {})

    def test_unknown_name(self):
        with pytest.raises(ValueError, match="unknown name"):
            evaluate_hypothesis("z > 0", self.post_draws, None, {})

    def test_syntax_error(self):
        with pytest.raises(SyntaxError):
            evaluate_hypothesis("cp_1 >", self.post_draws, None, {})
