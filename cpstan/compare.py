"""
Compare fitted models with PSIS-LOO or WAIC. The computations are
done by arviz.
"""
from typing import Any, Mapping, Sequence

import arviz as az  # type: ignore
import pandas as pd

from .fit import CpFit


def named_fits(fits: Mapping[str, Any] | Sequence[Any]) -> dict[str, Any]:
    """
    Name the fits by their model name if they are not given as a dict.
    Duplicate names get a suffix.
    """
    if isinstance(fits, Mapping):
        return dict(fits)
    named: dict[str, Any] = {}
    for k, fit in enumerate(fits, start=1):
        name = fit.model.name if isinstance(fit, CpFit) else f"model_{k}"
        if name in named:
            name = f"{name}_{k}"
        named[name] = fit
    return named


def compare_fits(
    fits: Mapping[str, Any] | Sequence[Any], ic: str, **kwargs
) -> pd.DataFrame:
    """
    Rank the fits with arviz.compare. Fits can be CpFit objects, arviz
    InferenceData objects or precomputed ELPD objects (results of `loo`
    or `waic`).
    """
    compare_dict = {}
    for name, fit in named_fits(fits).items():
        if isinstance(fit, CpFit):
            fit._check_log_lik()
            compare_dict[name] = fit.to_inference_data()
        else:
            compare_dict[name] = fit
    if len(compare_dict) < 2:
        raise ValueError("at least two fits are required for a comparison")
    return az.compare(compare_dict, ic=ic, **kwargs)


def loo_compare(fits: Mapping[str, Any] | Sequence[Any], **kwargs) -> pd.DataFrame:
    """rank models by their expected log predictive density (PSIS-LOO)"""
    return compare_fits(fits, "loo", **kwargs)


def waic_compare(fits: Mapping[str, Any] | Sequence[Any], **kwargs) -> pd.DataFrame:
    """rank models by WAIC"""
    return compare_fits(fits, "waic", **kwargs)
