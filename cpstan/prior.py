"""
Priors for the parameters of a segmented model.

A prior is specified by the user as a string or a number:
 - a distribution, optionally truncated: "normal(0, 10)", "dt(0, 1, 3) T(0, )"
 - a fixed value: 3.5 or "3.5"
 - an equation in terms of other parameters: "int_1", "x_1 + 2"
 - a Dirichlet prior on all change points: "dirichlet(1)"
"""
from abc import ABC, abstractmethod
import numbers
from typing import Optional

import networkx as nx

from . import stanlang as sl
from . import definitions as defn
from . import utilities as util
from .deparse import deparse_expr, deparse_truncation
from .evaluate import find_names, numpy_functions, substitute
from .parameter import Parameter, VaryingCp
from .parser import parse, TruncatedSpec

PriorSpec = str | int | float


class Prior(ABC):
    @abstractmethod
    def is_sampled(self) -> bool:
        pass

    def dependencies(self) -> list[str]:
        """names of parameters and data constants used by the prior"""
        return []

    def bounds(self) -> tuple[Optional[sl.Expr], Optional[sl.Expr]]:
        return None, None

    @abstractmethod
    def __str__(self) -> str:
        pass


class DistPrior(Prior):
    """
    A prior distribution with (optional) truncation. `dist` is the
    name of the Stan distribution.
    """

    def __init__(
        self,
        dist: str,
        args: list[sl.Expr],
        lower: Optional[sl.Expr] = None,
        upper: Optional[sl.Expr] = None,
    ) -> None:
        self._dist = dist
        self._args = args
        self._lower = lower
        self._upper = upper

    @property
    def dist(self) -> str:
        return self._dist

    @property
    def args(self) -> list[sl.Expr]:
        return self._args

    @property
    def truncated(self) -> bool:
        return self._lower is not None or self._upper is not None

    def is_sampled(self) -> bool:
        return True

    def dependencies(self) -> list[str]:
        exprs = self._args + [b for b in (self._lower, self._upper) if b is not None]
        return util.unique_keep_order(util.flatten([find_names(e) for e in exprs]))

    def bounds(self) -> tuple[Optional[sl.Expr], Optional[sl.Expr]]:
        """
        Bounds for the declaration of the parameter. A uniform
        distribution is bounded by its own arguments.
        """
        if not self.truncated and self._dist == "uniform":
            return self._args[0], self._args[1]
        return self._lower, self._upper

    def dist_expr(self) -> sl.Call:
        return sl.Call(self._dist, self._args)

    def gen_sampling_stmt(
        self,
        par: sl.Expr,
        lower: Optional[sl.Expr] = None,
        upper: Optional[sl.Expr] = None,
    ) -> list[sl.Stmt]:
        """
        Generate the sampling statement for the given parameter.
        The distribution is truncated to the given bounds, unless the
        bounds are the arguments of a uniform distribution.
        """
        truncation: Optional[sl.Truncation] = None
        if lower is not None or upper is not None:
            truncation = (lower, upper)
            if self._dist == "uniform" and same_expr(lower, self._args[0]) and same_expr(upper, self._args[1]):
                truncation = None
        return [sl.Sample(par, self.dist_expr(), truncation)]

    def __str__(self) -> str:
        code = deparse_expr(self.dist_expr())
        if self.truncated:
            code += " " + deparse_truncation((self._lower, self._upper))
        return code


class FixedPrior(Prior):
    """the parameter is fixed to a value and is not sampled"""

    def __init__(self, value: float) -> None:
        self._value = float(value)

    @property
    def value(self) -> float:
        return self._value

    def is_sampled(self) -> bool:
        return False

    def expr(self) -> sl.Expr:
        return sl.LiteralReal(self._value)

    def __str__(self) -> str:
        return str(self._value)


class EquationPrior(Prior):
    """the parameter is a function of other parameters"""

    def __init__(self, expr: sl.Expr) -> None:
        self._expr = expr

    def is_sampled(self) -> bool:
        return False

    def expr(self) -> sl.Expr:
        return self._expr

    def dependencies(self) -> list[str]:
        return find_names(self._expr)

    def __str__(self) -> str:
        return deparse_expr(self._expr)


class DirichletPrior(Prior):
    """
    A Dirichlet prior on the normalized change point locations.
    All change points must have a Dirichlet prior.
    """

    def __init__(self, alpha: sl.Expr) -> None:
        self._alpha = alpha

    @property
    def alpha(self) -> sl.Expr:
        return self._alpha

    def is_sampled(self) -> bool:
        return False

    def __str__(self) -> str:
        return f"dirichlet({deparse_expr(self._alpha)})"


def same_expr(a: Optional[sl.Expr], b: Optional[sl.Expr]) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return deparse_expr(a) == deparse_expr(b)


def literal_value(expr: sl.Expr) -> Optional[float]:
    """return the value of a (negated) literal, and None otherwise"""
    match expr:
        case sl.LiteralInt(val) | sl.LiteralReal(val):
            return float(val)
        case sl.Negate(sl.LiteralInt(val) | sl.LiteralReal(val)):
            return -float(val)
        case _:
            return None


def translate_distribution(name: str, args: list[sl.Expr], spec: str) -> DistPrior:
    """translate d-prefixed aliases and check the number of arguments"""
    if name in defn.distribution_aliases:
        stan_name, order = defn.distribution_aliases[name]
        if len(args) != len(order):
            raise ValueError(
                f"distribution '{name}' takes {len(order)} arguments, "
                f"found {len(args)} in prior '{spec}'"
            )
        name, args = stan_name, [args[i] for i in order]
    num_args = defn.stan_distributions[name]
    if len(args) != num_args:
        raise ValueError(
            f"distribution '{name}' takes {num_args} arguments, "
            f"found {len(args)} in prior '{spec}'"
        )
    return DistPrior(name, args)


def is_distribution(name: str) -> bool:
    return name in defn.stan_distributions or name in defn.distribution_aliases


def parse_prior(spec: PriorSpec) -> Prior:
    """
    Turn a user-specified prior into a Prior object.

    Raises
    ------
    ValueError
        for unknown distributions or functions, or the wrong number of arguments
    SyntaxError
        if the prior can not be parsed
    """
    if isinstance(spec, numbers.Real) and not isinstance(spec, bool):
        return FixedPrior(spec)
    if not isinstance(spec, str):
        raise ValueError(f"invalid prior {spec!r}. Use a string or a number")
    parsed = parse(spec)
    match parsed:
        case TruncatedSpec(sl.Call(name, args), lower, upper) if is_distribution(name):
            prior = translate_distribution(name, args, spec)
            return DistPrior(prior.dist, prior.args, lower, upper)
        case TruncatedSpec():
            raise ValueError(f"truncation T(lower, upper) requires a distribution, found '{spec}'")
        case sl.Call("dirichlet", [alpha]):
            return DirichletPrior(alpha)
        case sl.Call(name, args) if is_distribution(name):
            return translate_distribution(name, args, spec)
        case sl.Expr():
            value = literal_value(parsed)
            if value is not None:
                return FixedPrior(value)
            check_functions(parsed, spec)
            return EquationPrior(parsed)
        case _:
            raise ValueError(f"invalid prior '{spec}'")


def check_functions(expr: sl.Expr, spec: str) -> None:
    """make sure that all functions in an equation can be evaluated"""
    match expr:
        case sl.Call(name, args):
            if name not in numpy_functions:
                raise ValueError(f"unknown distribution or function '{name}' in prior '{spec}'")
            for arg in args:
                check_functions(arg, spec)
        case sl.Par(content) | sl.Negate(content):
            check_functions(content, spec)
        case sl.IndexOp(var, index):
            check_functions(var, spec)
            check_functions(index, spec)
        case sl.LiteralInt() | sl.LiteralReal() | sl.Var():
            pass
        case sl.MulOp(a, b) | sl.AddOp(a, b) | sl.SubOp(a, b) | sl.DivOp(a, b) | sl.PowOp(a, b):
            check_functions(a, spec)
            check_functions(b, spec)
        case _:
            raise ValueError(f"invalid equation in prior '{spec}'")


def default_cp_prior(k: int, n_cp: int) -> str:
    """
    A single change point is uniform on the range of x. Otherwise, use
    a t distribution centered at the previous change point and truncated
    to the interval between the previous change point and MAXX.
    """
    if n_cp == 1:
        return "uniform(MINX, MAXX)"
    prev = "MINX" if k == 1 else f"cp_{k - 1}"
    return f"student_t(N_CP - 1, {prev}, (MAXX - MINX) / N_CP) T({prev}, MAXX)"


def default_prior(par: Parameter, family: str, n_cp: int) -> str:
    match par.kind:
        case "cp":
            return default_cp_prior(par.segment, n_cp)
        case "cp_sd":
            return defn.default_cp_sd_prior
        case "sigma" if par.rel:
            return defn.default_priors[family]["sigma_rel"]
        case kind:
            return defn.default_priors[family][kind]


def resolve_priors(
    params: list[Parameter],
    varying: list[VaryingCp],
    user_priors: Optional[dict[str, PriorSpec]],
    family: str,
) -> dict[str, Prior]:
    """
    Combine user-specified priors with the default priors, and attach
    the priors to the parameters.

    Raises
    ------
    ValueError
        if a prior is given for an unknown parameter, if a Dirichlet prior
        is not given for all change points, if an equation uses unknown names,
        or if equations depend on each other in a cycle.
    """
    user_priors = {} if user_priors is None else dict(user_priors)
    parnames = [p.name for p in params]
    sd_names = {v.name: v.sd_name for v in varying}
    for name in user_priors:
        if name in sd_names:
            raise ValueError(
                f"varying effects '{name}' have a normal prior with sd "
                f"'{sd_names[name]}'. Specify a prior for the sd instead"
            )
        if name not in parnames:
            raise ValueError(
                f"prior given for unknown parameter '{name}'. "
                "Valid names are: " + ", ".join(parnames)
            )

    n_cp = len([p for p in params if p.kind == "cp"])
    priors: dict[str, Prior] = {}
    for p in params:
        spec = user_priors.get(p.name, default_prior(p, family, n_cp))
        prior = parse_prior(spec)
        if isinstance(prior, DirichletPrior) and p.kind != "cp":
            raise ValueError(f"a dirichlet prior can only be used for change points, found '{p.name}'")
        priors[p.name] = prior
        p.prior = prior

    # a Dirichlet prior is all or nothing
    cp_priors = [priors[p.name] for p in params if p.kind == "cp"]
    num_dirichlet = len([x for x in cp_priors if isinstance(x, DirichletPrior)])
    if 0 < num_dirichlet < len(cp_priors):
        raise ValueError("a dirichlet prior must be specified for all change points")

    # names in priors must refer to parameters or data constants
    allowed = set(parnames) | set(defn.data_constants)
    for name, prior in priors.items():
        unknown = [x for x in prior.dependencies() if x not in allowed]
        if unknown:
            raise ValueError(
                f"prior '{prior}' for parameter '{name}' uses unknown names: "
                + ", ".join(unknown)
            )
    # raises an error for cycles
    equation_order(priors, parnames)
    return priors


def equation_order(priors: dict[str, Prior], parnames: list[str]) -> list[str]:
    """
    Find the order in which equation priors have to be computed.
    If there are no dependencies, keep the order of the parameters.
    """
    eq_names = [n for n in parnames if isinstance(priors.get(n), EquationPrior)]
    dept_graph = nx.DiGraph()
    dept_graph.add_nodes_from(eq_names)
    for n in eq_names:
        for d in priors[n].dependencies():
            if d in parnames:
                dept_graph.add_edge(d, n)
    # check that there are no loops in the dependency graph
    if not nx.is_directed_acyclic_graph(dept_graph):
        cycle = nx.find_cycle(dept_graph)
        cycle_nodes = [e[0] for e in cycle] + [cycle[0][0]]
        cycle_str = " -> ".join(cycle_nodes)
        raise ValueError(f"equations in priors contain a cycle ({cycle_str})")
    top_sort = nx.lexicographical_topological_sort(
        dept_graph, key=lambda x: parnames.index(x)
    )
    return [n for n in top_sort if n in eq_names]


def inline_constants(expr: sl.Expr, priors: dict[str, Prior]) -> sl.Expr:
    """
    Replace fixed parameters by their value, and equation parameters
    by their (inlined) equation. This is required for bounds in the
    parameters block, where transformed parameters are not available.
    """
    mapping: dict[str, sl.Expr] = {}
    for name in find_names(expr):
        match priors.get(name):
            case FixedPrior() as prior:
                mapping[name] = prior.expr()
            case EquationPrior() as prior:
                mapping[name] = inline_constants(prior.expr(), priors)
            case _:
                pass
    if len(mapping) == 0:
        return expr
    return substitute(expr, mapping)


def previous_cp(k: int, priors: dict[str, Prior]) -> sl.Expr:
    """
    The lower limit of change point k. This is the previous change point,
    or MINX for the first change point. Equations that use later change
    points can not be used as a limit, and are skipped.
    """
    if k == 1:
        return sl.realVar("MINX")
    name = f"cp_{k - 1}"
    if priors[name].is_sampled():
        return sl.realVar(name)
    expr = inline_constants(sl.realVar(name), priors)
    if uses_earlier_names(expr, k - 1):
        return expr
    return previous_cp(k - 1, priors)


def uses_earlier_names(expr: sl.Expr, k: int) -> bool:
    """check that an expression only uses data constants and cp_1, ..., cp_{k-1}"""
    earlier = [f"cp_{j}" for j in range(1, k)]
    return all(n in earlier or n in defn.data_constants for n in find_names(expr))


def cp_bounds(k: int, priors: dict[str, Prior]) -> tuple[sl.Expr, sl.Expr]:
    """
    Bounds of change point k. Change points are ordered and limited to
    the observed range of x, and stay below later fixed change points.
    User-specified bounds can only narrow these limits, and are ignored
    if they depend on parameters other than earlier change points.
    """
    prev = previous_cp(k, priors)
    user_lower, user_upper = priors[f"cp_{k}"].bounds()
    if user_lower is not None:
        user_lower = inline_constants(user_lower, priors)
        if not uses_earlier_names(user_lower, k):
            user_lower = None
    if user_lower is None or same_expr(user_lower, prev):
        lower = prev
    else:
        lower = sl.Call("fmax", [user_lower, prev])
    limit = next_fixed_cp(k, priors)
    if user_upper is not None:
        user_upper = inline_constants(user_upper, priors)
        if not uses_earlier_names(user_upper, k):
            user_upper = None
    if user_upper is None or same_expr(user_upper, limit):
        upper = limit
    else:
        upper = sl.Call("fmin", [user_upper, limit])
    return lower, upper


def next_fixed_cp(k: int, priors: dict[str, Prior]) -> sl.Expr:
    """the value of the first fixed change point after cp_k, or MAXX"""
    j = k + 1
    while f"cp_{j}" in priors:
        prior = priors[f"cp_{j}"]
        if isinstance(prior, FixedPrior):
            return prior.expr()
        j += 1
    return sl.realVar("MAXX")


def param_bounds(par: Parameter, priors: dict[str, Prior]) -> tuple[Optional[sl.Expr], Optional[sl.Expr]]:
    """declared bounds of a sampled parameter"""
    if par.kind == "cp":
        return cp_bounds(par.segment, priors)
    lower, upper = priors[par.name].bounds()
    if lower is not None:
        lower = inline_constants(lower, priors)
    if upper is not None:
        upper = inline_constants(upper, priors)
    return lower, upper
