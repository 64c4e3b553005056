"""
Test a number of simple models. Do they compile? Do they run?
Do we get reasonable output?
"""

import os

import cmdstanpy
import numpy as np
import pytest

from cpstan import CpModel, loo_compare


def cmdstan_available() -> bool:
    try:
        cmdstanpy.cmdstan_path()
    except (ValueError, RuntimeError):
        return False
    return True


pytestmark = pytest.mark.skipif(
    not cmdstan_available(), reason="CmdStan is not installed"
)


class TestModel:
    model_dir = os.path.join("tests", "stan-cache")
    sample_kwargs = dict(
        chains=2,
        show_progress=False,
        iter_warmup=500,
        iter_sampling=500,
        seed=45643,
    )

    def test_slope_change(self):
        """a slope that changes sign at x = 30"""
        model = CpModel(
            ["y ~ 1 + x", "~ 0 + x"], name="slope_change", model_dir=self.model_dir
        )

        # simulate a dataset

        x = np.linspace(0.0, 60.0, 121)
        params = {"cp_1": 30.0, "int_1": 5.0, "x_1": 0.5, "x_2": -0.5, "sigma_1": 1.0}
        y = model.simulate(x, params, seed=2132)
        data = {"x": x, "y": y}

        # fit the model to the simulated data set

        fit = model.sample(data, **self.sample_kwargs)

        summary = fit.summary(prob=0.99, true_values=params)
        assert summary.loc["cp_1", "match"]
        assert np.allclose(summary.loc[["x_1", "x_2"], "mean"], [0.5, -0.5], atol=0.1)
        assert np.isclose(summary.loc["cp_1", "mean"], 30.0, atol=3.0)
        assert (summary["rhat"] < 1.1).all()

        hyp = fit.hypothesis("x_2 < x_1")
        assert hyp.loc[0, "p"] > 0.99

        # compare with a model without change point

        flat = CpModel(["y ~ 1 + x"], name="no_change", model_dir=self.model_dir)
        flat_fit = flat.sample(data, **self.sample_kwargs)
        ranking = loo_compare([fit, flat_fit])
        assert ranking.index[0] == "slope_change"

    def test_varying_change_point(self):
        """intercept change with a change point that varies between groups"""
        model = CpModel(
            ["y ~ 1", "1 + (1|id) ~ 1"],
            par_x="x",
            name="varying_cp",
            model_dir=self.model_dir,
        )
        x = np.tile(np.linspace(0.0, 20.0, 41), 3)
        group = np.repeat(["a", "b", "c"], 41)
        params = {
            "cp_1": 10.0,
            "int_1": 0.0,
            "int_2": 5.0,
            "sigma_1": 0.5,
            "cp_1_id": [-2.0, 0.0, 2.0],
        }
        y = model.simulate(x, params, group=group, seed=8745)
        fit = model.sample({"x": x, "y": y, "id": group}, sample="both", **self.sample_kwargs)

        ranef = fit.ranef()
        assert np.allclose(ranef["mean"], [-2.0, 0.0, 2.0], atol=1.0)

        # prior samples allow for Savage-Dickey tests
        hyp = fit.hypothesis("int_2 = 0")
        assert hyp.loc[0, "BF"] < 0.1

    def test_poisson(self):
        model = CpModel(
            ["y ~ 1", "~ 1"],
            family="poisson",
            par_x="x",
            name="poisson_cp",
            model_dir=self.model_dir,
        )
        x = np.linspace(0.0, 100.0, 101)
        y = model.simulate(x, {"cp_1": 40.0, "int_1": 1.0, "int_2": 2.5}, seed=451)
        fit = model.sample({"x": x, "y": y}, **self.sample_kwargs)
        df = fit.fixef()
        assert df.loc["cp_1", "lower"] < 40.0 < df.loc["cp_1", "upper"]
        assert fit.loo() is not None
