from . import genmodel
from . import utilities as util
from . import definitions as defn
from . import stanlang as sl
from . import deparse
from . import optimize
from . import code_checks
from . import name_checks
from .evaluate import evaluate
from .family import Family, family_dispatch
from .fit import CpFit
from .formula import SegmentedFormula
from .logger import logger
from .predictive import as_draws, make_env, eval_dpars, draw_observations
from .prior import (
    Prior,
    PriorSpec,
    FixedPrior,
    EquationPrior,
    resolve_priors,
    equation_order,
    cp_bounds,
    param_bounds,
)

from cmdstanpy import CmdStanModel, CmdStanMCMC  # type: ignore
import numpy as np
import pandas as pd
import os
from typing import Optional, Literal, Any


def compile_stan_model(
    stan_model: str, model_name: str, model_dir: str
) -> CmdStanModel:
    """
    Convert the source code of a Stan model into a CmdStanModel
    object. First write the string to a file. Then use
    cmdstanpy to compile the model. The file is only rewritten
    (and the model recompiled) if the code has changed.

    Parameters
    ----------
    stan_model : str
        String containing the source code of the Stan model.
    model_name : str
        The name of the Stan model. Used for filenames.
    model_dir : str
        Directory where to store the Stan source code and binary.

    Returns
    -------
    CmdStanModel
        The compiled Stan model in a cmdstanpy wrapper.

    """
    os.makedirs(model_dir, exist_ok=True)
    stan_file = os.path.join(model_dir, f"{model_name}.stan")
    renew_file = True
    if os.path.isfile(stan_file):
        with open(stan_file, "r") as f:
            old_stan_model = f.read()
        if old_stan_model == stan_model:
            renew_file = False
    if renew_file:
        with open(stan_file, "w") as f:
            f.write(stan_model)
    sm = CmdStanModel(stan_file=stan_file, cpp_options={"STAN_THREADS": True})
    return sm


def data_columns(formula: SegmentedFormula) -> list[str]:
    """names of the columns in the data that are used by the model"""
    cols = [formula.par_x, formula.response]
    cols += [c for c in (formula.weights, formula.trials) if c is not None]
    cols += formula.groups
    return cols


def clean_data(data: Any, formula: SegmentedFormula) -> pd.DataFrame:
    """
    Select the columns used by the model, and remove rows with
    missing values. The data can be a DataFrame or a dictionary
    of equal-length columns.

    Raises
    ------
    ValueError
        if columns are missing, or if no complete rows remain.
    """
    df = pd.DataFrame(data)
    cols = data_columns(formula)
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise ValueError("data does not contain the columns: " + ", ".join(missing))
    df = df[cols]
    na_rows = df.isna().any(axis=1)
    num_na = int(na_rows.sum())
    if num_na > 0:
        logger.warning(f"removed {num_na} rows with missing values from the data")
        df = df[~na_rows]
    df = df.reset_index(drop=True)
    if len(df) == 0:
        raise ValueError("the data contain no complete observations")
    return df


def sample_sd(values: np.ndarray) -> float:
    return float(np.std(values, ddof=1)) if len(values) > 1 else 0.0


def data_constants(x: np.ndarray, y: Optional[np.ndarray], n_cp: int) -> dict:
    """
    Constants that can be used in priors. Without a response,
    only constants based on the predictor are available.
    """
    constants: dict[str, float | int] = {
        "MINX": float(np.min(x)),
        "MAXX": float(np.max(x)),
        "MEANX": float(np.mean(x)),
        "SDX": sample_sd(x),
        "N": len(x),
        "N_CP": n_cp,
    }
    if y is not None:
        constants.update(
            {
                "MINY": float(np.min(y)),
                "MAXY": float(np.max(y)),
                "MEANY": float(np.mean(y)),
                "SDY": sample_sd(y),
            }
        )
    return constants


def prepare_data(
    df: pd.DataFrame, formula: SegmentedFormula, family: Family
) -> tuple[dict, dict[str, list]]:
    """
    Auxiliary function to create the data dictionary accepted by cmdstanpy.
    Returns the data dictionary and the levels of the grouping variables.
    Group indices in the data dictionary refer to these levels (1-based).
    """
    x = df[formula.par_x].to_numpy(dtype=float)
    y = df[formula.response].to_numpy(dtype=float)
    trials = None
    if formula.trials is not None:
        trials = df[formula.trials].to_numpy(dtype=float)
    family.check_data(y, trials)

    stan_data: dict[str, Any] = {
        "N": len(x),
        formula.par_x: x,
        formula.response: y.astype(int) if family.discrete else y,
    }
    if formula.weights is not None:
        weights = df[formula.weights].to_numpy(dtype=float)
        if np.any(weights <= 0):
            raise ValueError("weights must be positive")
        stan_data[formula.weights] = weights
    if trials is not None:
        stan_data[formula.trials] = trials.astype(int)

    levels = {}
    for group in formula.groups:
        idx, levs = util.map_levels(df[group])
        stan_data[group] = idx
        stan_data[genmodel.group_count_name(group)] = len(levs)
        levels[group] = levs

    stan_data.update(data_constants(x, y, formula.n_cp))
    return stan_data, levels


def eval_bound(bound: Optional[sl.Expr], env: dict) -> Optional[float]:
    """
    Numerical value of a bound. Returns None if there is no bound,
    or if the bound depends on parameters without a value.
    """
    if bound is None:
        return None
    try:
        value = float(np.squeeze(evaluate(bound, env)))
    except KeyError:
        return None
    return value if np.isfinite(value) else None


def move_inside(value: float, lower: Optional[float], upper: Optional[float]) -> float:
    """move an initial value strictly inside its bounds"""
    if lower is not None and upper is not None and not lower < value < upper:
        return 0.5 * (lower + upper)
    if lower is not None and value <= lower:
        return lower + 1.0
    if upper is not None and value >= upper:
        return upper - 1.0
    return value


def default_init(par, family: Family, constants: dict) -> float:
    match par.kind:
        case "int" if not par.rel:
            return family.init_intercept(constants["MEANY"])
        case "sigma" if not par.rel:
            return constants["SDY"] if constants["SDY"] > 0 else 1.0
        case "cp_sd":
            width = constants["MAXX"] - constants["MINX"]
            return width / 10 if width > 0 else 1.0
        case _:
            return 0.0


def prepare_init(
    formula: SegmentedFormula,
    family: Family,
    priors: dict[str, Prior],
    stan_data: dict,
) -> dict[str, float | np.ndarray]:
    """
    Initial parameter values. Change points are spread evenly between
    their bounds, such that they are ordered. Intercepts start at the
    mean of the response, and sigma at its standard deviation.
    All other parameters start at zero, or inside their bounds.
    """
    constants = {k: stan_data[k] for k in defn.data_constants}
    env: dict[str, Any] = dict(constants)
    init_dict: dict[str, float | np.ndarray] = {}

    cps = [p for p in formula.parameters if p.kind == "cp"]
    if genmodel.uses_dirichlet(priors):
        init_dict["cp_simplex"] = np.full(formula.n_cp + 1, 1.0 / (formula.n_cp + 1))
    else:
        for p in cps:
            if not p.is_sampled():
                continue
            lower, upper = (eval_bound(b, env) for b in cp_bounds(p.segment, priors))
            lower = constants["MINX"] if lower is None else lower
            upper = constants["MAXX"] if upper is None else upper
            # number of sampled change points up to the next fixed one
            n_left = 0
            for q in cps[p.segment - 1 :]:
                if isinstance(q.prior, FixedPrior):
                    break
                if q.is_sampled():
                    n_left += 1
            value = lower + (upper - lower) / (n_left + 1)
            init_dict[p.name] = value
            env[p.name] = value

    for p in formula.parameters:
        if p.kind == "cp" or not p.is_sampled():
            continue
        lower, upper = (eval_bound(b, env) for b in param_bounds(p, priors))
        if p.kind == "cp_sd" and lower is None:
            lower = 0.0
        value = move_inside(default_init(p, family, constants), lower, upper)
        init_dict[p.name] = value
        env[p.name] = value

    for v in formula.varying:
        num_levels = stan_data[genmodel.group_count_name(v.group)]
        init_dict[v.raw_name] = np.zeros(num_levels)

    return init_dict


def fit_stan_model(
    sm: CmdStanModel, data: dict, init_dict: dict, **kwargs
) -> CmdStanMCMC:
    """
    Interface function to cmdstanpy. User-supplied `inits`
    replace the generated initial values.
    """
    kwargs.setdefault("inits", init_dict)
    return sm.sample(data=data, **kwargs)


def complete_options(options: dict | None) -> dict:
    """
    Take user-defined options and check if they are valid.
    Add default values for any missing fields.

    Parameters
    ----------
    options : dict
        User-defined options.

    Returns
    -------
    dict
        The complemented options dictionary.

    """
    if options is None:
        return dict(defn.DEFAULT_OPTIONS)
    for k in options.keys():
        if k not in defn.DEFAULT_OPTIONS:
            raise ValueError(
                f"invalid option {k} given. Valid options are: "
                + ", ".join(defn.DEFAULT_OPTIONS)
            )
    compl_options = dict(defn.DEFAULT_OPTIONS)
    compl_options.update(options)
    return compl_options


SampleType = Literal["post", "prior", "both"]


class CpModel:
    """
    Object that represents a segmented (change point) regression model.

    This serves as an interface to the actual Stan model
    """

    def __init__(
        self,
        segments: list[str],
        prior: Optional[dict[str, PriorSpec]] = None,
        family: str = "gaussian",
        link: Optional[str] = None,
        par_x: Optional[str] = None,
        name: str = "cp_model",
        options: Optional[dict] = None,
        compile_model: bool = True,
        optimize_code: bool = True,
        model_dir: Optional[str] = None,
    ) -> None:
        """
        Build a change point model. This means parsing the segment formulas,
        resolving the priors, generating the Stan source code and
        compiling the Stan model.

        Parameters
        ----------
        segments : list[str]
            A list of segment formulas. The first segment names the response,
            e.g. `"y ~ 1 + x"`. The left-hand side of later segments
            specifies the change point: `"~ 0 + x"` for a population-level
            change point, or `"1 + (1|id) ~ 0 + x"` for a change point that
            varies between the levels of `id`.
        prior : Optional[dict[str, PriorSpec]], optional
            Priors for the parameters. Values can be distributions
            (`"normal(0, 10)"`), fixed values (`3.5`) or equations
            in terms of other parameters (`"x_1"`). Parameters without a
            user-defined prior get a default prior. The default is None.
        family : str, optional
            The response family. The default is "gaussian".
        link : Optional[str], optional
            The link function. If None, the default link of the family is used.
        par_x : Optional[str], optional
            Name of the predictor. Only required if it can not be inferred
            from the segment formulas. The default is None.
        name : str, optional
            The name of the model. Used for filenames. The default is "cp_model".
        options : Optional[dict], optional
            A dictionary with additional options. The default is None.
        compile_model : bool, optional
            If this is set to `False`, the Stan model is not compiled.
            This is for debugging purposes. The default is True.
        optimize_code : bool, optional
            If this is set to `False`, the Stan code is not optimized.
            This is for debugging purposes. The default is True.
        model_dir : Optional[str], optional
            Directory for storing the Stan model files. If `None`, the current
            working directory is used. The default is None.

        """
        self._model_name = name
        self._family = family_dispatch(family, link)
        self._formula = SegmentedFormula(segments, family, par_x)
        self._options = complete_options(options)

        name_checks.check_names(
            self._formula.parameter_names,
            [v.name for v in self._formula.varying],
            data_columns(self._formula),
        )
        self._user_prior = {} if prior is None else dict(prior)
        self._priors = resolve_priors(
            self._formula.parameters, self._formula.varying, self._user_prior, family
        )
        # show warnings for unusual priors
        code_checks.check_priors(self._formula, self._priors, self._user_prior)

        AST = genmodel.gen_stan_model(
            self._formula, self._family, self._priors, self._options
        )
        prior_AST = genmodel.gen_stan_model(
            self._formula,
            self._family,
            self._priors,
            self._options,
            include_likelihood=False,
        )
        # optionally optimize the AST
        self._optimize_code = optimize_code
        if optimize_code:
            AST = optimize.optimize_stmt(AST)
            prior_AST = optimize.optimize_stmt(prior_AST)
        self._AST = AST
        self._model_code = deparse.deparse_stmt(AST)
        self._prior_sampler_code = deparse.deparse_stmt(prior_AST)

        self._model_dir = os.getcwd() if model_dir is None else model_dir
        self._compile_model = compile_model
        self._stan_model: CmdStanModel | None = None
        if compile_model:
            self._stan_model = compile_stan_model(
                self._model_code, self._model_name, self._model_dir
            )
        # the prior sampler is compiled when it is needed
        self._stan_prior_sampler: CmdStanModel | None = None

    @property
    def name(self) -> str:
        return self._model_name

    @property
    def model_code(self) -> str:
        """return the stan model code as a string"""
        return self._model_code

    @property
    def prior_sampler_code(self) -> str:
        """return the code of the stan model without the likelihood"""
        return self._prior_sampler_code

    @property
    def formula(self) -> SegmentedFormula:
        return self._formula

    @property
    def family(self) -> Family:
        return self._family

    @property
    def options(self) -> dict:
        return dict(self._options)

    @property
    def parameters(self) -> list[str]:
        """names of the population-level parameters"""
        return self._formula.parameter_names

    @property
    def varying(self) -> list[str]:
        """names of the varying effects"""
        return [v.name for v in self._formula.varying]

    @property
    def prior(self) -> dict[str, str]:
        """the resolved prior of each parameter"""
        return {name: str(prior) for name, prior in self._priors.items()}

    @property
    def resolved_priors(self) -> dict[str, Prior]:
        return dict(self._priors)

    def show_code(self, **kwargs) -> None:
        """show the Stan code with syntax highlighting in a notebook"""
        util.show_stan_model(self._model_code, **kwargs)

    def __str__(self) -> str:
        lines = [f"Family: {self._family.name}(link = '{self._family.link}')"]
        lines.append("Segments:")
        lines += [f"  {k}: {f}" for k, f in enumerate(self._formula.formulas, start=1)]
        lines.append("Priors:")
        lines += [f"  {name} ~ {prior}" for name, prior in self.prior.items()]
        return "\n".join(lines)

    def stan_data_and_init(self, data: Any) -> tuple[dict, dict]:
        """
        Make the dictionaries required to fit the model. The input is the data
        required for the model: a DataFrame or a dictionary with columns for
        the predictor, the response and (optionally) weights, trials and
        grouping variables. Rows with missing values are removed.

        Returns
        -------
        tuple[dict, dict]
            A tuple with two dictionaries. The first dictionary contains the
            data required for the Stan model. The second dictionary contains
            the initial parameter values for the Stan model.
        """
        df = clean_data(data, self._formula)
        stan_data, _ = prepare_data(df, self._formula, self._family)
        init_dict = prepare_init(self._formula, self._family, self._priors, stan_data)
        return stan_data, init_dict

    def _get_prior_sampler(self) -> CmdStanModel:
        if self._stan_prior_sampler is None:
            if not self._compile_model:
                raise Exception(
                    f"CpModel {self._model_name} was created with compile_model=False. "
                    "Unable to sample from the prior."
                )
            self._stan_prior_sampler = compile_stan_model(
                self._prior_sampler_code,
                self._model_name + "_prior_sampler",
                self._model_dir,
            )
        return self._stan_prior_sampler

    def sample(self, data: Any, sample: SampleType = "post", **kwargs) -> CpFit:
        """
        Sample from the posterior, the prior, or both using HMC.

        Parameters
        ----------
        data : DataFrame | dict
            the data, with columns for the predictor, the response and
            other variables used in the segment formulas.
        sample : "post" | "prior" | "both", optional
            Prior samples are required for Savage-Dickey hypothesis tests.
            The default is "post".
        **kwargs
            Additional arguments passed to cmdstanpy's `sample` method,
            e.g. `chains`, `iter_sampling` or `seed`.

        Returns
        -------
        CpFit
            the fitted model
        """
        if sample not in ("post", "prior", "both"):
            raise ValueError(
                f"invalid value '{sample}' for argument sample. "
                "Choose between 'post', 'prior' and 'both'"
            )
        df = clean_data(data, self._formula)
        stan_data, levels = prepare_data(df, self._formula, self._family)
        init_dict = prepare_init(self._formula, self._family, self._priors, stan_data)

        post_fit = None
        if sample in ("post", "both"):
            if self._stan_model is None:
                raise Exception(
                    f"CpModel {self._model_name} was created with compile_model=False. "
                    "Unable to sample from the posterior."
                )
            logger.info(f"sampling from the posterior of model {self._model_name}")
            post_fit = fit_stan_model(self._stan_model, stan_data, init_dict, **kwargs)
        prior_fit = None
        if sample in ("prior", "both"):
            prior_sampler = self._get_prior_sampler()
            logger.info(f"sampling from the prior of model {self._model_name}")
            prior_fit = fit_stan_model(prior_sampler, stan_data, init_dict, **kwargs)

        return CpFit(self, df, stan_data, levels, post_fit, prior_fit)

    def simulate(
        self,
        x: Any,
        params: dict[str, Any],
        group: Any = None,
        trials: Any = None,
        weights: Any = None,
        add_noise: bool = True,
        seed: Optional[int] = None,
    ) -> np.ndarray:
        """
        Simulate data from the model for given parameter values.

        Parameters
        ----------
        x : array-like
            values of the predictor.
        params : dict[str, Any]
            values of the parameters. Fixed parameters and parameters defined
            by equations can be omitted. Varying change points `cp_k_{group}`
            are drawn from a normal distribution with sd `cp_k_sd` if they are
            not given.
        group : array-like or dict, optional
            levels of the grouping variable for each observation. Use a dict
            with a key per grouping variable if there are multiple.
        trials : array-like, optional
            number of trials (binomial family only).
        weights : array-like, optional
            precision weights (gaussian family only).
        add_noise : bool, optional
            if False, return the expected value of the response. For the
            binomial family this is the number of trials times the
            probability of success.
        seed : Optional[int], optional
            seed for the random number generator.

        Returns
        -------
        np.ndarray
            simulated values of the response for each value of x.

        Raises
        ------
        ValueError
            if parameter values, groups or trials are missing.
        """
        rng = np.random.default_rng(seed)
        x = np.asarray(x, dtype=float)
        formula = self._formula
        params = dict(params)

        known = set(self.parameters) | set(self.varying)
        unknown = [n for n in params if n not in known]
        if unknown:
            raise ValueError("values given for unknown parameters: " + ", ".join(unknown))

        given_varying = [v for v in formula.varying if v.name in params]
        needed_sds = {v.sd_name for v in formula.varying if v.name not in params}
        values: dict[str, Any] = {}
        missing = []
        for p in formula.parameters:
            prior = self._priors[p.name]
            if p.name in params:
                values[p.name] = params[p.name]
            elif isinstance(prior, FixedPrior):
                values[p.name] = prior.value
            elif isinstance(prior, EquationPrior):
                continue
            elif p.kind == "cp_sd" and p.name not in needed_sds:
                continue
            else:
                missing.append(p.name)
        if missing:
            raise ValueError("missing values for parameters: " + ", ".join(missing))

        # parameters defined by equations
        env: dict[str, Any] = data_constants(x, None, formula.n_cp)
        env.update(values)
        for n in equation_order(self._priors, formula.parameter_names):
            if n in values:
                continue
            try:
                values[n] = evaluate(self._priors[n].expr(), env)
            except KeyError as e:
                raise ValueError(f"unable to compute parameter '{n}': {e}") from e
            env[n] = values[n]

        draws = {n: as_draws(v) for n, v in values.items()}

        group_idx = {}
        if len(formula.groups) > 0:
            if group is None:
                raise ValueError("the model has varying change points. Specify the group argument")
            if not isinstance(group, dict):
                if len(formula.groups) > 1:
                    raise ValueError(
                        "the model has multiple grouping variables. "
                        "Use a dict for the group argument"
                    )
                group = {formula.groups[0]: group}
            num_levels = {}
            for g in formula.groups:
                if g not in group:
                    raise ValueError(f"missing levels for grouping variable '{g}'")
                group_idx[g], levels = util.map_levels(group[g])
                num_levels[g] = len(levels)
            for v in formula.varying:
                G = num_levels[v.group]
                if v in given_varying:
                    draws[v.name] = as_draws(params[v.name], G)
                else:
                    raw = rng.normal(size=G)
                    if self._options["sum_to_zero"]:
                        raw -= raw.mean()
                    draws[v.name] = draws[v.sd_name] * raw.reshape(1, G)

        if self._family.name == "binomial" and trials is None:
            raise ValueError("the binomial family requires the trials argument")
        if trials is not None:
            trials = np.asarray(trials, dtype=int)
        if weights is not None:
            if self._family.name != "gaussian":
                raise ValueError("weights are only supported for the gaussian family")
            weights = np.asarray(weights, dtype=float)

        env = make_env(formula, x, group_idx, draws)
        dpars = eval_dpars(formula, self._family, env)
        y = draw_observations(
            formula, self._family, dpars, trials, weights, add_noise=add_noise, rng=rng
        )
        return y[0]
