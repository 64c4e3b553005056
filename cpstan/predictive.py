"""
Evaluate the linear predictors of a segmented model with numpy.
Used for simulating data, and for fitted values and predictions
based on posterior or prior draws.

Parameter draws have shape (S, 1) for population-level parameters
and (S, G) for varying effects, where S is the number of draws and G
the number of levels. Results have shape (S, N).
"""
from typing import Optional

import numpy as np

from .evaluate import evaluate
from .family import Family
from .formula import SegmentedFormula


def as_draws(value, num_levels: Optional[int] = None) -> np.ndarray:
    """
    Reshape parameter values to (S, 1) for scalars, and (S, G) for
    varying effects. A single value is treated as a single draw.
    """
    arr = np.asarray(value, dtype=float)
    if num_levels is None:
        return arr.reshape(-1, 1)
    if arr.ndim == 1:
        arr = arr.reshape(1, -1)
    if arr.shape[-1] != num_levels:
        raise ValueError(f"expected {num_levels} values for varying effects, found {arr.shape[-1]}")
    return arr


def make_env(
    formula: SegmentedFormula,
    x: np.ndarray,
    group_idx: dict[str, np.ndarray],
    draws: dict[str, np.ndarray],
) -> dict:
    """
    Create the environment for evaluating linear predictors. Group
    indices are 1-based, as in the Stan model.
    """
    N = len(x)
    env = {formula.par_x: np.asarray(x, dtype=float), "i": np.arange(1, N + 1)}
    env.update(group_idx)
    env.update(draws)
    return env


def eval_dpars(formula: SegmentedFormula, family: Family, env: dict) -> dict[str, np.ndarray]:
    """
    Evaluate all dpars. The central tendency "ct" is returned on the
    response scale (the inverse link is applied).
    """
    N = len(env[formula.par_x])
    S = max([np.shape(v)[0] for v in env.values() if np.ndim(v) == 2], default=1)
    result = {}
    for dpar in formula.dpar_names:
        val = evaluate(formula.linear_predictor(dpar), env)
        val = np.broadcast_to(np.asarray(val, dtype=float), (S, N))
        if dpar == "ct":
            val = family.inv_link(val)
        result[dpar] = np.array(val)
    return result


def ar_coefficients(formula: SegmentedFormula, dpars: dict[str, np.ndarray]) -> list[np.ndarray]:
    return [dpars[f"ar{j}"] for j in range(1, formula.ar_order + 1)]


def apply_ar(mu: np.ndarray, ars: list[np.ndarray], y: np.ndarray) -> np.ndarray:
    """
    Add autoregressive terms based on the residuals of the observations y.
    Observations are in data order.
    """
    resid = y - mu
    mu_ar = np.array(mu)
    for j, ar in enumerate(ars, start=1):
        mu_ar[:, j:] += ar[:, j:] * resid[:, :-j]
    return mu_ar


def draw_observations(
    formula: SegmentedFormula,
    family: Family,
    dpars: dict[str, np.ndarray],
    trials: Optional[np.ndarray] = None,
    weights: Optional[np.ndarray] = None,
    add_noise: bool = True,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Draw observations from the family. Without noise, the expected value
    of the response is returned. With autoregressive terms, the
    observations are generated sequentially, using the residuals of
    earlier draws.
    """
    mu = dpars["ct"]
    sigma = dpars.get("sigma")
    ars = ar_coefficients(formula, dpars)
    if len(ars) == 0:
        if not add_noise:
            return family.expected(mu, trials)
        return family.rvs(mu, sigma, trials, weights, rng=rng)

    S, N = mu.shape
    w = np.ones(N) if weights is None else np.asarray(weights, dtype=float)
    y = np.zeros((S, N))
    resid = np.zeros((S, N))
    for n in range(N):
        mu_n = np.array(mu[:, n])
        for j, ar in enumerate(ars, start=1):
            if n >= j:
                mu_n += ar[:, n] * resid[:, n - j]
        if add_noise:
            y[:, n] = family.rvs(mu_n, sigma[:, n], None, w[n], rng=rng)
        else:
            y[:, n] = mu_n
        resid[:, n] = y[:, n] - mu[:, n]
    return y
