"""
check priors for common mistakes. Problems are reported as warnings.
"""
from typing import Optional

from .formula import SegmentedFormula
from .logger import logger
from .prior import Prior, DistPrior, FixedPrior, literal_value

# distributions with positive support
positive_distributions = ["gamma", "inv_gamma", "exponential", "lognormal", "weibull"]


def lower_bound_value(prior: DistPrior) -> Optional[float]:
    lower, _ = prior.bounds()
    return None if lower is None else literal_value(lower)


def verify_sigma_prior(name: str, prior: Prior) -> bool:
    """the prior of the residual scale in the first segment should be positive"""
    if not isinstance(prior, DistPrior) or prior.dist in positive_distributions:
        return True
    lower = lower_bound_value(prior)
    if lower is None or lower < 0.0:
        message = f"The prior of {name} ({prior}) allows negative values. "
        message += "Consider truncating the prior, e.g. 'normal(0, SDY) T(0, )'."
        logger.warning(message)
        return False
    return True


def verify_ar_prior(name: str, prior: Prior) -> bool:
    """AR(1) coefficients outside (-1, 1) give a non-stationary process"""
    if not isinstance(prior, DistPrior):
        return True
    lower, upper = (None if b is None else literal_value(b) for b in prior.bounds())
    if lower is None or upper is None or lower < -1.0 or upper > 1.0:
        message = f"The prior of {name} ({prior}) allows values outside (-1, 1). "
        message += "This can result in a non-stationary autoregressive process."
        logger.warning(message)
        return False
    return True


def verify_fixed_cps(formula: SegmentedFormula, priors: dict[str, Prior]) -> bool:
    """fixed change points have to be ordered"""
    values = [
        (p.name, priors[p.name].value)
        for p in formula.parameters
        if p.kind == "cp" and isinstance(priors[p.name], FixedPrior)
    ]
    for (n1, v1), (n2, v2) in zip(values, values[1:]):
        if v2 < v1:
            logger.warning(f"Fixed change points are not ordered: {n1} = {v1} > {n2} = {v2}")
            return False
    return True


def check_priors(
    formula: SegmentedFormula,
    priors: dict[str, Prior],
    user_priors: dict,
) -> bool:
    """
    Show warnings for priors that are likely to cause problems.
    Returns True if no problems were found.
    """
    ok = True
    for p in formula.parameters:
        prior = priors[p.name]
        match p.kind:
            case "sigma" if p.segment == 1:
                ok &= verify_sigma_prior(p.name, prior)
            case "ar" if p.segment == 1 and p.name in user_priors:
                ok &= verify_ar_prior(p.name, prior)
            case "cp" if p.name in user_priors and isinstance(prior, DistPrior):
                logger.info(
                    f"The prior of {p.name} is truncated to the interval "
                    "between the previous change point and MAXX."
                )
            case _:
                pass
    ok &= verify_fixed_cps(formula, priors)
    return ok
