"""
The result of fitting a change point model: posterior and/or prior draws,
together with the model and the data. Provides summaries, fitted values,
predictions, plots, hypothesis tests and information criteria.
"""
from typing import Any, Literal, Optional, TYPE_CHECKING

import arviz as az  # type: ignore
import matplotlib.pyplot as plt  # type: ignore
import numpy as np
import pandas as pd
from cmdstanpy import CmdStanMCMC  # type: ignore

from . import plots
from . import utilities as util
from .hypothesis import evaluate_hypotheses
from .prior import FixedPrior
from .predictive import (
    make_env,
    eval_dpars,
    apply_ar,
    ar_coefficients,
    draw_observations,
)

if TYPE_CHECKING:
    from .model import CpModel

DrawsKind = Literal["posterior", "prior"]


def summarize_draws(samples: np.ndarray, prob: float) -> dict[str, np.ndarray]:
    """mean and equal-tailed credible interval along the first axis"""
    lower, upper = util.credible_interval(samples, prob, axis=0)
    return {"mean": np.mean(samples, axis=0), "lower": lower, "upper": upper}


class CpFit:
    """
    A fitted change point model. Created by `CpModel.sample`.
    """

    def __init__(
        self,
        model: "CpModel",
        data: pd.DataFrame,
        stan_data: dict,
        levels: dict[str, list],
        fit: Optional[CmdStanMCMC],
        prior_fit: Optional[CmdStanMCMC] = None,
    ) -> None:
        self._model = model
        self._data = data
        self._stan_data = stan_data
        self._levels = levels
        self._fit = fit
        self._prior_fit = prior_fit

    @property
    def model(self) -> "CpModel":
        return self._model

    @property
    def data(self) -> pd.DataFrame:
        """the data used for fitting, without rows with missing values"""
        return self._data

    @property
    def levels(self) -> dict[str, list]:
        """levels of the grouping variables"""
        return self._levels

    @property
    def fit(self) -> CmdStanMCMC:
        """
        Get access to the posterior samples.

        Returns
        -------
        CmdStanMCMC
            The fitted Stan model.

        """
        if self._fit is None:
            raise Exception(
                f"model {self._model.name} was not fit to the data. "
                "Use CpModel.sample() with sample='post' or sample='both'."
            )
        return self._fit

    @property
    def prior_fit(self) -> CmdStanMCMC:
        """
        Get access to the samples from the prior.

        Returns
        -------
        CmdStanMCMC
            The prior samples.

        """
        if self._prior_fit is None:
            raise Exception(
                f"model {self._model.name} was not sampled from the prior. "
                "Use CpModel.sample() with sample='prior' or sample='both'."
            )
        return self._prior_fit

    def _source(self, kind: DrawsKind) -> CmdStanMCMC:
        match kind:
            case "posterior":
                return self.fit
            case "prior":
                return self.prior_fit
            case _:
                raise ValueError(f"invalid kind '{kind}'. Choose 'posterior' or 'prior'")

    def _default_kind(self) -> DrawsKind:
        return "posterior" if self._fit is not None else "prior"

    def draws(
        self, kind: Optional[DrawsKind] = None, pars: Optional[list[str]] = None
    ) -> dict[str, np.ndarray]:
        """
        Draws of the parameters. Population-level parameters have shape (S,),
        varying effects shape (S, G). By default, all parameters are returned.
        """
        src = self._source(kind or self._default_kind())
        if pars is None:
            pars = self._model.parameters + self._model.varying
        return {name: src.stan_variable(name) for name in pars}

    def _chains(self, kind: DrawsKind, pars: list[str]) -> dict[str, np.ndarray]:
        """draws of scalar parameters with shape (chains, draws)"""
        src = self._source(kind)
        return {n: src.stan_variable(n).reshape(src.chains, -1) for n in pars}

    def summary(
        self,
        prob: float = 0.95,
        true_values: Optional[dict[str, float]] = None,
        kind: Optional[DrawsKind] = None,
    ) -> pd.DataFrame:
        """
        Summary of the population-level parameters: mean, credible interval,
        the potential scale reduction factor rhat and the effective sample size.

        Parameters
        ----------
        prob : float, optional
            mass of the credible interval. The default is 0.95
        true_values : Optional[dict[str, float]], optional
            values used to simulate the data. Adds a column `sim` with these
            values, and a column `match` indicating that the value is inside
            the credible interval.
        kind : "posterior" | "prior", optional
            summarize posterior or prior draws. By default, posterior
            draws are used if available.
        """
        kind = kind or self._default_kind()
        names = self._model.parameters
        chains = self._chains(kind, names)
        dataset = az.convert_to_dataset(chains)
        rhat = az.rhat(dataset)
        ess = az.ess(dataset)
        rows = []
        for name in names:
            samples = chains[name].flatten()
            lower, upper = util.credible_interval(samples, prob)
            rows.append(
                {
                    "name": name,
                    "mean": np.mean(samples),
                    "lower": lower,
                    "upper": upper,
                    "rhat": float(rhat[name].values),
                    "ess": float(ess[name].values),
                }
            )
        df = pd.DataFrame(rows).set_index("name")
        if true_values is not None:
            df["sim"] = [float(true_values.get(n, np.nan)) for n in names]
            df["match"] = (df["lower"] <= df["sim"]) & (df["sim"] <= df["upper"])
        return df

    def fixef(self, prob: float = 0.95, kind: Optional[DrawsKind] = None) -> pd.DataFrame:
        """mean and credible interval of the population-level parameters"""
        draws = self.draws(kind, self._model.parameters)
        rows = {name: summarize_draws(d, prob) for name, d in draws.items()}
        return pd.DataFrame.from_dict(rows, orient="index")

    def ranef(self, prob: float = 0.95, kind: Optional[DrawsKind] = None) -> pd.DataFrame:
        """mean and credible interval of the varying effects per level"""
        rows = []
        for v in self._model.formula.varying:
            samples = self.draws(kind, [v.name])[v.name]
            stats = summarize_draws(samples, prob)
            for g, level in enumerate(self._levels[v.group]):
                rows.append(
                    {
                        "name": f"{v.name}[{level}]",
                        "mean": stats["mean"][g],
                        "lower": stats["lower"][g],
                        "upper": stats["upper"][g],
                    }
                )
        return pd.DataFrame(rows, columns=["name", "mean", "lower", "upper"]).set_index("name")

    def _level_index(self, group: str, values: Any) -> np.ndarray:
        mapping = {lev: g + 1 for g, lev in enumerate(self._levels[group])}
        unknown = util.unique_keep_order([v for v in values if v not in mapping])
        if unknown:
            raise ValueError(
                f"unknown levels of {group} in newdata: " + ", ".join(map(str, unknown))
            )
        return np.array([mapping[v] for v in values], dtype=int)

    def _prediction_inputs(
        self, newdata: Any, kind: Optional[DrawsKind], ndraws: Optional[int]
    ) -> tuple[dict, Optional[np.ndarray], Optional[np.ndarray], Optional[np.ndarray]]:
        """
        The environment for evaluating the linear predictors, and the
        observations, trials and weights (None if not available).
        """
        formula = self._model.formula
        family = self._model.family
        if newdata is None:
            x = self._stan_data[formula.par_x]
            group_idx = {g: self._stan_data[g] for g in formula.groups}
            y = np.asarray(self._stan_data[formula.response], dtype=float)
            trials = self._stan_data.get(formula.trials) if formula.trials else None
            weights = self._stan_data.get(formula.weights) if formula.weights else None
        else:
            df = pd.DataFrame(newdata)
            missing = [c for c in [formula.par_x] + formula.groups if c not in df.columns]
            if missing:
                raise ValueError("newdata does not contain the columns: " + ", ".join(missing))
            x = df[formula.par_x].to_numpy(dtype=float)
            group_idx = {g: self._level_index(g, df[g]) for g in formula.groups}
            y = None
            trials = None
            if formula.trials is not None and formula.trials in df.columns:
                trials = df[formula.trials].to_numpy(dtype=int)
            weights = None
            if formula.weights is not None and formula.weights in df.columns:
                weights = df[formula.weights].to_numpy(dtype=float)
        if family.name == "binomial" and trials is None:
            raise ValueError(f"newdata requires the number of trials '{formula.trials}'")

        draws = self.draws(kind)
        num_draws = len(next(iter(draws.values())))
        sel = np.arange(num_draws)
        if ndraws is not None and ndraws < num_draws:
            sel = np.linspace(0, num_draws - 1, ndraws).astype(int)
        varying = self._model.varying
        draws = {
            n: d[sel] if n in varying else d[sel].reshape(-1, 1) for n, d in draws.items()
        }
        env = make_env(formula, x, group_idx, draws)
        return env, y, trials, weights

    def _summarize_predictions(
        self, samples: np.ndarray, env: dict, prob: float
    ) -> pd.DataFrame:
        formula = self._model.formula
        df = pd.DataFrame({formula.par_x: env[formula.par_x]})
        for g in formula.groups:
            df[g] = [self._levels[g][j - 1] for j in env[g]]
        for key, val in summarize_draws(samples, prob).items():
            df[key] = val
        return df

    def fitted(
        self,
        newdata: Any = None,
        prob: float = 0.95,
        summary: bool = True,
        kind: Optional[DrawsKind] = None,
        ndraws: Optional[int] = None,
    ) -> pd.DataFrame | np.ndarray:
        """
        Fitted values: the central tendency on the response scale. For the
        binomial family this is the probability of success, not the expected
        count. Without newdata, autoregressive terms use the residuals of
        the observations.

        Returns
        -------
        pd.DataFrame | np.ndarray
            with summary=True, a DataFrame with x, grouping variables and the
            mean and credible interval per observation. Otherwise an array of
            shape (draws, observations).
        """
        model = self._model
        env, y, _, _ = self._prediction_inputs(newdata, kind, ndraws)
        dpars = eval_dpars(model.formula, model.family, env)
        mu = dpars["ct"]
        if y is not None and model.formula.ar_order > 0:
            mu = apply_ar(mu, ar_coefficients(model.formula, dpars), y)
        if not summary:
            return mu
        return self._summarize_predictions(mu, env, prob)

    def predict(
        self,
        newdata: Any = None,
        prob: float = 0.95,
        summary: bool = True,
        kind: Optional[DrawsKind] = None,
        ndraws: Optional[int] = None,
        seed: Optional[int] = None,
    ) -> pd.DataFrame | np.ndarray:
        """
        Posterior (or prior) predictive draws: like `fitted`, but including
        observation noise.
        """
        model = self._model
        rng = np.random.default_rng(seed)
        env, y, trials, weights = self._prediction_inputs(newdata, kind, ndraws)
        dpars = eval_dpars(model.formula, model.family, env)
        if y is not None and model.formula.ar_order > 0:
            mu = apply_ar(dpars["ct"], ar_coefficients(model.formula, dpars), y)
            y_pred = model.family.rvs(mu, dpars.get("sigma"), trials, weights, rng=rng)
        else:
            y_pred = draw_observations(
                model.formula, model.family, dpars, trials, weights, rng=rng
            )
        if not summary:
            return y_pred
        return self._summarize_predictions(y_pred, env, prob)

    def residuals(
        self, prob: float = 0.95, summary: bool = True, kind: Optional[DrawsKind] = None
    ) -> pd.DataFrame | np.ndarray:
        """
        Observed minus expected values of the response. For the binomial
        family, the fitted probabilities are multiplied by the number of trials.
        """
        env, y, trials, _ = self._prediction_inputs(None, kind, None)
        mu = self.fitted(summary=False, kind=kind)
        resid = y - self._model.family.expected(mu, trials)
        if not summary:
            return resid
        return self._summarize_predictions(resid, env, prob)

    def hypothesis(self, hypotheses: str | list[str], prob: float = 0.95) -> pd.DataFrame:
        """
        Test hypotheses about the parameters. Directional hypotheses, e.g.
        `"cp_1 > 30"`, use posterior probabilities. Point hypotheses, e.g.
        `"int_1 = 0"`, use the Savage-Dickey density ratio and require
        prior samples.
        """
        levels = {v.name: self._levels[v.group] for v in self._model.formula.varying}
        prior_draws = self.draws("prior") if self._prior_fit is not None else None
        return evaluate_hypotheses(
            hypotheses, self.draws("posterior"), prior_draws, levels, prob
        )

    def to_inference_data(self) -> az.InferenceData:
        """convert the samples to an arviz InferenceData object"""
        options = self._model.options
        response = self._model.formula.response
        kwargs: dict[str, Any] = {
            "observed_data": {response: self._stan_data[response]},
        }
        if self._fit is not None:
            kwargs["posterior"] = self._fit
            if options["log_lik"]:
                kwargs["log_likelihood"] = "log_lik"
            if options["y_rep"]:
                kwargs["posterior_predictive"] = "y_rep"
        if self._prior_fit is not None:
            kwargs["prior"] = self._prior_fit
            if options["y_rep"]:
                kwargs["prior_predictive"] = "y_rep"
        return az.from_cmdstanpy(**kwargs)

    def _check_log_lik(self) -> None:
        _ = self.fit  # raises an exception if there are no posterior samples
        if not self._model.options["log_lik"]:
            raise ValueError(
                "the model does not compute the pointwise log-likelihood. "
                "Create the model with options={'log_lik': True}"
            )

    def loo(self, pointwise: bool = False):
        """PSIS-LOO cross-validation, computed by arviz"""
        self._check_log_lik()
        return az.loo(self.to_inference_data(), pointwise=pointwise)

    def waic(self, pointwise: bool = False):
        """widely applicable information criterion, computed by arviz"""
        self._check_log_lik()
        return az.waic(self.to_inference_data(), pointwise=pointwise)

    def plot(
        self,
        kind: Optional[DrawsKind] = None,
        lines: int = 25,
        q_fit: bool = False,
        q_predict: bool = False,
        prob: float = 0.95,
        facet_by: Optional[str] = None,
        cp_dens: bool = True,
        seed: Optional[int] = None,
    ) -> plt.Figure:
        """
        Plot the data with fitted lines for a random selection of draws.

        Parameters
        ----------
        kind : "posterior" | "prior", optional
            use posterior or prior draws.
        lines : int, optional
            number of fitted lines. The default is 25.
        q_fit : bool, optional
            add the credible interval of the fitted values.
        q_predict : bool, optional
            add the credible interval of the predictions.
        prob : float, optional
            mass of the credible intervals.
        facet_by : Optional[str], optional
            grouping variable used for a panel per level. By default, the
            first grouping variable is used for models with varying change points.
        cp_dens : bool, optional
            show the densities of the change points.
        seed : Optional[int], optional
            seed for selecting draws.

        Returns
        -------
        plt.Figure
        """
        model = self._model
        formula = model.formula
        family = model.family
        kind = kind or self._default_kind()
        rng = np.random.default_rng(seed)
        if facet_by is None and len(formula.groups) > 0:
            facet_by = formula.groups[0]
        if facet_by is not None and facet_by not in formula.groups:
            raise ValueError(f"'{facet_by}' is not a grouping variable of the model")

        all_draws = self.draws(kind)
        num_draws = len(next(iter(all_draws.values())))
        line_idx = rng.choice(num_draws, size=min(lines, num_draws), replace=False)

        x_obs = self._stan_data[formula.par_x]
        y_obs = np.asarray(self._stan_data[formula.response], dtype=float)
        trials = None
        if formula.trials is not None:
            trials = self._stan_data[formula.trials]
            y_obs = y_obs / trials
        grid = np.linspace(np.min(x_obs), np.max(x_obs), 200)

        levels = [None] if facet_by is None else self._levels[facet_by]
        fig, axs = plots.panel_grid(len(levels))
        for g, (ax, level) in enumerate(zip(axs, levels)):
            draws = {
                n: d if n in model.varying else d.reshape(-1, 1)
                for n, d in all_draws.items()
            }
            group_idx = {}
            in_panel = np.full(len(x_obs), True)
            for v in formula.varying:
                if v.group != facet_by:
                    # other grouping variables: population-level change points
                    draws[v.name] = np.zeros_like(draws[v.name])
            for group in formula.groups:
                group_idx[group] = np.full(len(grid), g + 1 if group == facet_by else 1)
            if facet_by is not None:
                in_panel = self._stan_data[facet_by] == g + 1

            env = make_env(formula, grid, group_idx, draws)
            dpars = eval_dpars(formula, family, env)
            fitted = dpars["ct"]
            fit_band = util.credible_interval(fitted, prob) if q_fit else None
            pred_band = None
            if q_predict:
                grid_trials = None
                if trials is not None:
                    grid_trials = np.full(len(grid), int(np.max(trials)))
                y_pred = draw_observations(formula, family, dpars, grid_trials, rng=rng)
                if grid_trials is not None:
                    y_pred = y_pred / grid_trials
                pred_band = util.credible_interval(y_pred, prob)

            cp_draws = []
            if cp_dens:
                for k in range(1, formula.n_cp + 1):
                    cp = all_draws[f"cp_{k}"]
                    for v in formula.varying:
                        if v.cp == k and v.group == facet_by:
                            cp = cp + all_draws[v.name][:, g]
                    cp_draws.append(cp)

            title = None if level is None else f"{facet_by} = {level}"
            plots.plot_panel(
                ax,
                x_obs[in_panel],
                y_obs[in_panel],
                grid,
                fitted,
                line_idx,
                cp_draws,
                fit_band=fit_band,
                pred_band=pred_band,
                title=title,
            )
            ax.set_xlabel(formula.par_x)
            ax.set_ylabel(formula.response)
        return fig

    def plot_pars(
        self,
        pars: Optional[list[str]] = None,
        kind: Literal["trace", "dens"] = "trace",
        draws: Optional[DrawsKind] = None,
    ) -> plt.Figure:
        """
        Trace plots or density plots of the parameters, one color per chain.
        By default, all population-level parameters that are not fixed are shown.
        """
        if pars is None:
            pars = [
                p.name for p in self._model.formula.parameters
                if not isinstance(p.prior, FixedPrior)
            ]
        chains = self._chains(draws or self._default_kind(), pars)
        return plots.plot_pars(chains, kind)
