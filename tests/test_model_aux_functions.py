"""
test auxiliary functions for the model class. Such as preparing data sets,
preparing initial values etc.
"""

import logging

import numpy as np
import pandas as pd
import pytest

from cpstan import CpModel
from cpstan import stanlang as sl
from cpstan.model import (
    clean_data,
    data_constants,
    prepare_data,
    prepare_init,
    eval_bound,
    move_inside,
    complete_options,
    fit_stan_model,
)


def make_model(segments, **kwargs) -> CpModel:
    return CpModel(segments, compile_model=False, **kwargs)


class TestCleanData:
    model = make_model(["y ~ 1 + x", "1 + (1|id) ~ 0 + x"])

    def test_select_columns(self):
        data = {"x": [1.0, 2.0], "y": [0.5, 0.7], "id": ["a", "b"], "z": [0, 0]}
        df = clean_data(data, self.model.formula)
        assert list(df.columns) == ["x", "y", "id"]

    def test_missing_values(self, caplog):
        data = pd.DataFrame(
            {"x": [1.0, 2.0, np.nan, 4.0], "y": [0.5, None, 0.3, 0.1], "id": ["a"] * 4}
        )
        with caplog.at_level(logging.WARNING, logger="CPSTAN"):
            df = clean_data(data, self.model.formula)
        assert list(df["x"]) == [1.0, 4.0]
        assert list(df.index) == [0, 1]
        assert "removed 2 rows with missing values" in caplog.text

    def test_errors(self):
        with pytest.raises(ValueError, match="does not contain the columns: id"):
            clean_data({"x": [1.0], "y": [1.0]}, self.model.formula)
        with pytest.raises(ValueError, match="no complete observations"):
            clean_data({"x": [np.nan], "y": [1.0], "id": ["a"]}, self.model.formula)


class TestPrepareData:
    def test_prepare_data(self):
        model = make_model(["y ~ 1 + x", "1 + (1|id) ~ 0 + x"])
        data = {
            "x": [0.0, 5.0, 10.0, 15.0],
            "y": [1.0, 2.0, 3.0, 6.0],
            "id": ["b", "a", "b", "c"],
        }
        df = clean_data(data, model.formula)
        stan_data, levels = prepare_data(df, model.formula, model.family)

        # test that all keys are present

        expected_keys = [
            "N", "x", "y", "id", "N_id", "MINX", "MAXX", "MEANX", "SDX",
            "MINY", "MAXY", "MEANY", "SDY", "N_CP",
        ]
        assert all([k in stan_data for k in expected_keys])

        assert stan_data["N"] == 4
        assert stan_data["N_CP"] == 1
        assert stan_data["N_id"] == 3
        assert list(stan_data["id"]) == [2, 1, 2, 3]
        assert levels == {"id": ["a", "b", "c"]}
        assert stan_data["MAXX"] == 15.0
        assert stan_data["MEANY"] == 3.0
        assert np.isclose(stan_data["SDY"], np.std([1.0, 2.0, 3.0, 6.0], ddof=1))

    def test_discrete_data(self):
        model = make_model(["y | trials(n) ~ 1 + x"], family="binomial")
        data = {"x": [0.0, 1.0], "y": [1.0, 3.0], "n": [5.0, 5.0]}
        stan_data, _ = prepare_data(clean_data(data, model.formula), model.formula, model.family)
        assert stan_data["y"].dtype.kind == "i"
        assert stan_data["n"].dtype.kind == "i"

        data = {"x": [0.0, 1.0], "y": [1.0, 6.0], "n": [5.0, 5.0]}
        with pytest.raises(ValueError, match="number of trials"):
            prepare_data(clean_data(data, model.formula), model.formula, model.family)

    def test_weights(self):
        model = make_model(["y | weights(w) ~ 1 + x"])
        data = {"x": [0.0, 1.0], "y": [1.0, 3.0], "w": [1.0, 0.0]}
        with pytest.raises(ValueError, match="weights must be positive"):
            prepare_data(clean_data(data, model.formula), model.formula, model.family)

    def test_data_constants(self):
        constants = data_constants(np.array([1.0, 3.0]), None, 2)
        expected = {"MINX": 1.0, "MAXX": 3.0, "MEANX": 2.0, "SDX": np.sqrt(2.0), "N": 2, "N_CP": 2}
        assert constants == pytest.approx(expected)


class TestPrepareInit:
    x = np.linspace(0.0, 30.0, 31)
    data = {"x": x, "y": np.sin(x)}

    def init_values(self, model: CpModel) -> dict:
        _, init_dict = model.stan_data_and_init(self.data)
        return init_dict

    def test_spread_change_points(self):
        init_dict = self.init_values(make_model(["y ~ 1", "~ 1", "~ 1"], par_x="x"))
        assert np.isclose(init_dict["cp_1"], 10.0)
        assert np.isclose(init_dict["cp_2"], 20.0)
        assert np.isclose(init_dict["int_1"], np.mean(np.sin(self.x)))
        assert np.isclose(init_dict["sigma_1"], np.std(np.sin(self.x), ddof=1))

    def test_fixed_change_point(self):
        model = make_model(["y ~ 1", "~ 1", "~ 1"], prior={"cp_2": 20}, par_x="x")
        init_dict = self.init_values(model)
        assert np.isclose(init_dict["cp_1"], 10.0)
        assert "cp_2" not in init_dict

    def test_dirichlet(self):
        prior = {"cp_1": "dirichlet(1)", "cp_2": "dirichlet(1)"}
        init_dict = self.init_values(make_model(["y ~ 1", "~ 1", "~ 1"], prior=prior, par_x="x"))
        assert np.allclose(init_dict["cp_simplex"], 1.0 / 3.0)

    def test_bounded_parameters(self):
        model = make_model(["y ~ 1 + ar(1)"], prior={"sigma_1": "uniform(2, 5)"}, par_x="x")
        init_dict = self.init_values(model)
        assert init_dict["sigma_1"] == 3.5
        assert init_dict["ar1_1"] == 0.0

    def test_varying_effects(self):
        model = make_model(["y ~ 1", "1 + (1|id) ~ 1"], par_x="x")
        data = dict(self.data, id=np.arange(31) % 3)
        _, init_dict = model.stan_data_and_init(data)
        assert np.allclose(init_dict["cp_1_id_raw"], np.zeros(3))
        assert np.isclose(init_dict["cp_1_sd"], 3.0)

    def test_prepare_init(self):
        model = make_model(["y ~ 1 + x", "~ 0 + x"])
        stan_data, _ = prepare_data(
            clean_data(self.data, model.formula), model.formula, model.family
        )
        init_dict = prepare_init(model.formula, model.family, model.resolved_priors, stan_data)
        assert sorted(init_dict.keys()) == sorted(["cp_1", "int_1", "x_1", "sigma_1", "x_2"])
        assert np.isclose(init_dict["cp_1"], 15.0)


class TestInitHelpers:
    def test_eval_bound(self):
        env = {"MAXX": 30.0}
        assert eval_bound(None, env) is None
        assert eval_bound(sl.Call("fmin", [sl.realVar("MAXX"), sl.LiteralReal(20.0)]), env) == 20.0
        assert eval_bound(sl.realVar("cp_1"), env) is None

    def test_move_inside(self):
        assert move_inside(0.0, None, None) == 0.0
        assert move_inside(0.0, 2.0, 5.0) == 3.5
        assert move_inside(0.0, 1.0, None) == 2.0
        assert move_inside(0.0, None, -1.0) == -2.0
        assert move_inside(0.5, 0.0, 1.0) == 0.5


class TestOptions:
    def test_complete_options(self):
        options = complete_options({"log_lik": False})
        assert options == {"sum_to_zero": True, "log_lik": False, "y_rep": True}
        assert complete_options(None)["log_lik"]
        with pytest.raises(ValueError, match="invalid option"):
            complete_options({"loglik": False})


class TestFitStanModel:
    class ModelStub:
        def sample(self, data, **kwargs):
            return kwargs

    def test_inits(self):
        kwargs = fit_stan_model(self.ModelStub(), {}, {"cp_1": 1.0}, chains=2)
        assert kwargs == {"inits": {"cp_1": 1.0}, "chains": 2}

        kwargs = fit_stan_model(self.ModelStub(), {}, {"cp_1": 1.0}, inits={"cp_1": 2.0})
        assert kwargs["inits"] == {"cp_1": 2.0}

    def test_sample_errors(self):
        model = make_model(["y ~ 1 + x", "~ 0 + x"])
        data = {"x": [0.0, 1.0, 2.0], "y": [0.0, 1.0, 0.0]}
        with pytest.raises(ValueError, match="invalid value 'posterior'"):
            model.sample(data, sample="posterior")
        with pytest.raises(Exception, match="compile_model=False"):
            model.sample(data)
        with pytest.raises(Exception, match="compile_model=False"):
            model.sample(data, sample="prior")
