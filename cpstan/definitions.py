"""
Constants shared by the model generator, the prior machinery and the checks.
"""

# data constants that are available in prior specifications
data_constants = [
    "MINX",
    "MAXX",
    "MEANX",
    "SDX",
    "MINY",
    "MAXY",
    "MEANY",
    "SDY",
    "N",
    "N_CP",
]

# integer data constants (declared as int in Stan)
int_data_constants = ["N", "N_CP"]


# link functions per family. The first link is the default link.
supported_links = {
    "gaussian": ["identity", "log"],
    "binomial": ["logit", "probit", "identity"],
    "bernoulli": ["logit", "probit", "identity"],
    "poisson": ["log", "identity"],
    "exponential": ["log", "identity"],
}

supported_families = list(supported_links.keys())


# Stan distributions that can be used in priors, with the number of arguments
stan_distributions = {
    "normal": 2,
    "student_t": 3,
    "cauchy": 2,
    "uniform": 2,
    "gamma": 2,
    "inv_gamma": 2,
    "exponential": 1,
    "beta": 2,
    "lognormal": 2,
    "logistic": 2,
    "double_exponential": 2,
    "weibull": 2,
}


# aliases for the d-prefixed distribution names. Each alias maps to the Stan
# name and the order in which the arguments are passed to the Stan distribution
distribution_aliases = {
    "dnorm": ("normal", [0, 1]),  # dnorm(mu, sd)
    "dt": ("student_t", [2, 0, 1]),  # dt(mu, sd, nu)
    "dunif": ("uniform", [0, 1]),
    "dgamma": ("gamma", [0, 1]),  # dgamma(shape, rate)
    "dexp": ("exponential", [0]),
    "dbeta": ("beta", [0, 1]),
    "dlnorm": ("lognormal", [0, 1]),  # dlnorm(mu, sd)
    "dcauchy": ("cauchy", [0, 1]),
    "dlogis": ("logistic", [0, 1]),
}


# default priors per family and parameter kind. Change point priors depend
# on the number of change points and are constructed in prior.py
default_priors = {
    "gaussian": {
        "int": "student_t(3, 0, 3 * SDY)",
        "slope": "student_t(3, 0, SDY / (MAXX - MINX))",
        "sigma": "normal(0, SDY) T(0, )",
        "sigma_slope": "normal(0, SDY / (MAXX - MINX))",
        "sigma_rel": "normal(0, SDY)",
        "ar": "uniform(-1, 1)",
        "ar_slope": "normal(0, 1 / (MAXX - MINX))",
    },
    "binomial": {
        "int": "normal(0, 3)",
        "slope": "normal(0, 3 / (MAXX - MINX))",
    },
    "bernoulli": {
        "int": "normal(0, 3)",
        "slope": "normal(0, 3 / (MAXX - MINX))",
    },
    "poisson": {
        "int": "normal(0, 10)",
        "slope": "normal(0, 10 / (MAXX - MINX))",
    },
    "exponential": {
        "int": "normal(0, 3)",
        "slope": "normal(0, 3 / (MAXX - MINX))",
    },
}

default_cp_sd_prior = "normal(0, (MAXX - MINX) / 2) T(0, )"


# names used by the generated Stan code
reserved_names = {
    "N",
    "N_CP",
    "mu",
    "eta",
    "sigma_",
    "resid",
    "log_lik",
    "y_rep",
    "cp_simplex",
    "i",
} | set(data_constants)

# words that can not be used as variable names in Stan programs
stan_keywords = {
    "for", "in", "while", "repeat", "until", "if", "then", "else", "true",
    "false", "target", "functions", "model", "data", "parameters", "quantities",
    "transformed", "generated", "int", "real", "vector", "matrix", "array",
    "simplex", "lower", "upper", "offset", "multiplier", "return", "void",
    "break", "continue", "print", "reject", "fatal_error", "profile", "tuple",
}


DEFAULT_OPTIONS = {
    "sum_to_zero": True,
    "log_lik": True,
    "y_rep": True,
}
