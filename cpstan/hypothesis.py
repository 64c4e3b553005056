"""
Hypothesis tests based on posterior and prior draws.

Directional hypotheses (`"cp_1 > 30"`, `"x_2 < x_1 & cp_1 > 20"`) give the
posterior probability p of the hypothesis, and the Bayes factor p / (1 - p)
against the complement.

Point hypotheses (`"int_1 = 0"`, `"x_1 - x_2 = 0"`) give the Savage-Dickey
density ratio: the posterior density of the difference between the left- and
right-hand side at zero, divided by the prior density. The densities are
estimated with a Gaussian KDE. This requires prior draws.

Varying effects are addressed as `cp_1_id[level]`, optionally in backticks.
"""
import re
from typing import Any, Optional

import numpy as np
import pandas as pd
import scipy.stats as sts

from . import stanlang as sl
from . import utilities as util
from .evaluate import evaluate
from .parser import parse


def resolve_varying(
    hypothesis: str, levels: dict[str, list]
) -> tuple[str, dict[str, tuple[str, int]]]:
    """
    Replace references to varying effects `name[level]` by placeholder
    names. Returns the new hypothesis, and a mapping from placeholders to
    the varying effect and the (0-based) index of the level.
    """
    placeholders: dict[str, tuple[str, int]] = {}
    for name, levs in levels.items():
        pattern = re.compile(r"`?\b" + re.escape(name) + r"\[([^\]]+)\]`?")

        def replace(match: re.Match) -> str:
            level = match.group(1).strip().strip("'\"")
            str_levels = [str(lev) for lev in levs]
            if level not in str_levels:
                raise ValueError(
                    f"unknown level '{level}' of {name}. "
                    "Valid levels are: " + ", ".join(str_levels)
                )
            key = f"varying{len(placeholders)}__"
            placeholders[key] = (name, str_levels.index(level))
            return key

        hypothesis = pattern.sub(replace, hypothesis)
    return hypothesis, placeholders


def contains_point_test(expr: sl.Expr) -> bool:
    match expr:
        case sl.EqOp():
            return True
        case sl.LogicAndOp(a, b) | sl.LogicOrOp(a, b):
            return contains_point_test(a) or contains_point_test(b)
        case sl.Par(content):
            return contains_point_test(content)
        case _:
            return False


def hypothesis_env(
    draws: dict[str, np.ndarray], placeholders: dict[str, tuple[str, int]]
) -> dict[str, np.ndarray]:
    env = dict(draws)
    for key, (name, idx) in placeholders.items():
        env[key] = draws[name][:, idx]
    return env


def kde_density_at(samples: np.ndarray, value: float, what: str) -> float:
    samples = np.asarray(samples, dtype=float)
    if np.std(samples) == 0.0:
        raise ValueError(f"unable to estimate the {what} density: the draws are constant")
    return float(sts.gaussian_kde(samples)(value)[0])


def evaluate_hypothesis(
    hypothesis: str,
    post_draws: dict[str, np.ndarray],
    prior_draws: Optional[dict[str, np.ndarray]],
    levels: dict[str, list],
    prob: float = 0.95,
) -> dict[str, Any]:
    """
    Test a single hypothesis. Population-level draws have shape (S,),
    varying effects shape (S, G), with levels given by `levels`.

    Raises
    ------
    ValueError
        for hypotheses without a comparison, combined point hypotheses,
        unknown names or if a point hypothesis is tested without prior draws.
    SyntaxError
        if the hypothesis can not be parsed
    """
    text, placeholders = resolve_varying(hypothesis, levels)
    expr = parse(text)
    if not isinstance(expr, sl.Expr):
        raise ValueError(f"invalid hypothesis '{hypothesis}'")
    post_env = hypothesis_env(post_draws, placeholders)

    def eval_in(env: dict, e: sl.Expr) -> np.ndarray:
        try:
            return np.asarray(evaluate(e, env))
        except KeyError as err:
            raise ValueError(f"hypothesis '{hypothesis}' uses an unknown name: {err}") from err

    match expr:
        case sl.EqOp(left, right):
            if prior_draws is None:
                raise ValueError(
                    f"the point hypothesis '{hypothesis}' requires prior samples. "
                    "Use sample='both' when fitting the model"
                )
            prior_env = hypothesis_env(prior_draws, placeholders)
            diff = sl.SubOp(left, sl.Par(right))
            post_diff = eval_in(post_env, diff)
            prior_diff = eval_in(prior_env, diff)
            post_dens = kde_density_at(post_diff, 0.0, "posterior")
            prior_dens = kde_density_at(prior_diff, 0.0, "prior")
            if prior_dens == 0.0:
                raise ValueError(f"the prior density of '{hypothesis}' is zero")
            BF = post_dens / prior_dens
            p = BF / (1.0 + BF)
            lower, upper = util.credible_interval(post_diff, prob)
            mean = float(np.mean(post_diff))
        case (
            sl.LeOp(left, right) | sl.GrOp(left, right)
            | sl.LeEqOp(left, right) | sl.GrEqOp(left, right)
            | sl.NeqOp(left, right)
        ):
            diff = eval_in(post_env, sl.SubOp(left, sl.Par(right)))
            p = float(np.mean(eval_in(post_env, expr)))
            BF = p / (1.0 - p) if p < 1.0 else np.inf
            lower, upper = util.credible_interval(diff, prob)
            mean = float(np.mean(diff))
        case sl.LogicAndOp() | sl.LogicOrOp():
            if contains_point_test(expr):
                raise ValueError(
                    f"point hypotheses can not be combined with & or |: '{hypothesis}'"
                )
            p = float(np.mean(eval_in(post_env, expr)))
            BF = p / (1.0 - p) if p < 1.0 else np.inf
            mean, lower, upper = np.nan, np.nan, np.nan
        case _:
            raise ValueError(
                f"hypothesis '{hypothesis}' does not contain a comparison (<, >, =)"
            )
    return {
        "hypothesis": hypothesis,
        "mean": mean,
        "lower": float(lower),
        "upper": float(upper),
        "p": p,
        "BF": BF,
    }


def evaluate_hypotheses(
    hypotheses: str | list[str],
    post_draws: dict[str, np.ndarray],
    prior_draws: Optional[dict[str, np.ndarray]] = None,
    levels: Optional[dict[str, list]] = None,
    prob: float = 0.95,
) -> pd.DataFrame:
    """test one or more hypotheses and collect the results in a DataFrame"""
    if isinstance(hypotheses, str):
        hypotheses = [hypotheses]
    levels = {} if levels is None else levels
    rows = [evaluate_hypothesis(h, post_draws, prior_draws, levels, prob) for h in hypotheses]
    return pd.DataFrame(rows, columns=["hypothesis", "mean", "lower", "upper", "p", "BF"])
