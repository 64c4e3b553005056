"""
Response families. Each family generates the log-likelihood and
random number generator expressions for the Stan model, and knows how
to draw observations and evaluate the log-likelihood with scipy.
"""
from typing import Optional

import numpy as np
import scipy.special
import scipy.stats as sts

from . import stanlang as sl
from . import definitions as defn


def genexpr_loglik(
    stan_name: str, obs: sl.Expr, *pars: sl.Expr, discrete: bool = False
) -> sl.Expr:
    suffix: sl.DistSuffix = "lpmf" if discrete else "lpdf"
    return sl.PCall(stan_name, obs, list(pars), suffix)


def genexpr_rng(stan_name: str, *pars: sl.Expr) -> sl.Expr:
    return sl.Call(stan_name + "_rng", list(pars))


class Family:
    """
    Base class for response families.

    Parameters
    ----------
    link : Optional[str]
        name of the link function. If None, the default
        link of the family is used.

    Raises
    ------
    NotImplementedError
        if the link function is not supported for this family
    """

    name = "family"
    stan_name = "family"
    discrete = False

    def __init__(self, link: Optional[str] = None) -> None:
        links = defn.supported_links[self.name]
        if link is None:
            link = links[0]
        if link not in links:
            raise NotImplementedError(
                f"link function '{link}' is not supported for family '{self.name}'. "
                f"Choose from: " + ", ".join(links)
            )
        self.link = link

    def inv_link_expr(self, eta: sl.Expr) -> sl.Expr:
        """apply the inverse link function to a Stan expression"""
        match self.link:
            case "identity":
                return eta
            case "log":
                return sl.Call("exp", [eta])
            case "logit":
                return sl.Call("inv_logit", [eta])
            case "probit":
                return sl.Call("Phi", [eta])
            case _:
                raise NotImplementedError(f"unknown link function '{self.link}'")

    def inv_link(self, eta: np.ndarray) -> np.ndarray:
        """apply the inverse link function to numpy values"""
        match self.link:
            case "identity":
                return eta
            case "log":
                return np.exp(eta)
            case "logit":
                return scipy.special.expit(eta)
            case "probit":
                return sts.norm.cdf(eta)
            case _:
                raise NotImplementedError(f"unknown link function '{self.link}'")

    def stan_params(
        self,
        mu: sl.Expr,
        sigma: Optional[sl.Expr] = None,
        trials: Optional[sl.Expr] = None,
        weights: Optional[sl.Expr] = None,
    ) -> list[sl.Expr]:
        return [mu]

    def genexpr_loglik(self, obs: sl.Expr, params: list[sl.Expr]) -> sl.Expr:
        return genexpr_loglik(self.stan_name, obs, *params, discrete=self.discrete)

    def genexpr_rng(self, params: list[sl.Expr]) -> sl.Expr:
        return genexpr_rng(self.stan_name, *params)

    def frozen(self, mu, sigma=None, trials=None, weights=None):
        """a frozen scipy.stats distribution for the given parameters"""
        raise NotImplementedError

    def rvs(self, mu, sigma=None, trials=None, weights=None, rng=None) -> np.ndarray:
        return self.frozen(mu, sigma, trials, weights).rvs(random_state=rng)

    def logpdf(self, y, mu, sigma=None, trials=None, weights=None) -> np.ndarray:
        dist = self.frozen(mu, sigma, trials, weights)
        if self.discrete:
            return dist.logpmf(y)
        return dist.logpdf(y)

    def expected(self, mu: np.ndarray, trials: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Expected value of the response, given the central tendency `mu`
        on the response scale
        """
        return mu

    def check_data(self, y: np.ndarray, trials: Optional[np.ndarray] = None) -> None:
        """Raise a ValueError if the response is not valid for this family"""
        pass

    def init_intercept(self, mean_y: float) -> float:
        """
        Initial value for absolute intercepts on the linear predictor scale,
        such that the initial central tendency is a valid parameter value.
        """
        if self.link == "log":
            return float(np.log(mean_y)) if mean_y > 0 else 0.0
        return mean_y


class GaussianFamily(Family):
    name = "gaussian"
    stan_name = "normal"

    def stan_params(self, mu, sigma=None, trials=None, weights=None):
        if sigma is None:
            raise ValueError("the gaussian family requires sigma")
        if weights is not None:
            sigma = sigma / sl.Call("sqrt", [weights])
        return [mu, sigma]

    def frozen(self, mu, sigma=None, trials=None, weights=None):
        scale = sigma if weights is None else sigma / np.sqrt(weights)
        return sts.norm(loc=mu, scale=scale)


class BinomialFamily(Family):
    name = "binomial"
    stan_name = "binomial"
    discrete = True

    def stan_params(self, mu, sigma=None, trials=None, weights=None):
        if trials is None:
            raise ValueError("the binomial family requires trials, e.g. 'y | trials(n) ~ 1'")
        return [trials, mu]

    def frozen(self, mu, sigma=None, trials=None, weights=None):
        return sts.binom(trials, mu)

    def expected(self, mu, trials=None):
        # mu is the probability of success
        if trials is None:
            raise ValueError("the binomial family requires trials, e.g. 'y | trials(n) ~ 1'")
        return np.asarray(trials) * mu

    def init_intercept(self, mean_y):
        return 0.5 if self.link == "identity" else 0.0

    def check_data(self, y, trials=None):
        if trials is None:
            raise ValueError("the binomial family requires trials, e.g. 'y | trials(n) ~ 1'")
        if np.any(y != np.round(y)) or np.any(trials != np.round(trials)):
            raise ValueError("binomial data and trials must be integers")
        if np.any(y < 0) or np.any(y > trials):
            raise ValueError("binomial data must be between 0 and the number of trials")


class BernoulliFamily(Family):
    name = "bernoulli"
    stan_name = "bernoulli"
    discrete = True

    def frozen(self, mu, sigma=None, trials=None, weights=None):
        return sts.bernoulli(mu)

    def init_intercept(self, mean_y):
        return 0.5 if self.link == "identity" else 0.0

    def check_data(self, y, trials=None):
        if not np.all(np.isin(y, [0, 1])):
            raise ValueError("bernoulli data must be 0 or 1")


class PoissonFamily(Family):
    name = "poisson"
    stan_name = "poisson"
    discrete = True

    def frozen(self, mu, sigma=None, trials=None, weights=None):
        return sts.poisson(mu)

    def check_data(self, y, trials=None):
        if np.any(y < 0) or np.any(y != np.round(y)):
            raise ValueError("poisson data must be non-negative integers")


class ExponentialFamily(Family):
    """the linear predictor models the rate"""

    name = "exponential"
    stan_name = "exponential"

    def frozen(self, mu, sigma=None, trials=None, weights=None):
        return sts.expon(scale=1.0 / np.asarray(mu))

    def check_data(self, y, trials=None):
        if np.any(y < 0):
            raise ValueError("exponential data must be non-negative")

    def init_intercept(self, mean_y):
        if mean_y <= 0:
            return 0.0
        rate = 1.0 / mean_y
        return float(np.log(rate)) if self.link == "log" else rate


family_classes = {
    "gaussian": GaussianFamily,
    "binomial": BinomialFamily,
    "bernoulli": BernoulliFamily,
    "poisson": PoissonFamily,
    "exponential": ExponentialFamily,
}


def family_dispatch(name: str, link: Optional[str] = None) -> Family:
    if name not in family_classes:
        raise NotImplementedError(
            f"family '{name}' is not supported. Choose from: "
            + ", ".join(defn.supported_families)
        )
    return family_classes[name](link)
