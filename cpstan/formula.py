"""
Segment formulas. A model is an ordered list of formulas like

    ["y ~ 1 + x", "~ 0 + x", "1 + (1|id) ~ rel(1)"]

Each formula is parsed into a `Segment`, and the list of segments
determines the parameters of the model and the linear predictor
of each distributional parameter ("dpar").
"""
from dataclasses import dataclass, field
from typing import Literal, Optional

from . import stanlang as sl
from . import utilities as util
from .parameter import Parameter, VaryingCp
from .parser import parse_formula

InterceptType = Optional[Literal["abs", "rel"]]


@dataclass
class SlopeTerm:
    power: int = 1
    rel: bool = False


@dataclass
class DparSegment:
    """
    The terms of a single distributional parameter in a single segment.
    """

    intercept: InterceptType = None
    slopes: list[SlopeTerm] = field(default_factory=list)

    def is_empty(self) -> bool:
        return self.intercept is None and len(self.slopes) == 0


@dataclass
class Segment:
    index: int
    formula: str
    dpars: dict[str, DparSegment]
    response: Optional[str] = None
    weights: Optional[str] = None
    trials: Optional[str] = None
    cp_group: Optional[str] = None


def split_terms(expr: sl.Expr) -> list[sl.Expr]:
    """turn `a + b + c` into [a, b, c]"""
    match expr:
        case sl.AddOp(left, right):
            return split_terms(left) + split_terms(right)
        case _:
            return [expr]


def parse_response(lhs: Optional[sl.Expr], formula: str) -> tuple[str, Optional[str], Optional[str]]:
    """
    Parse the left-hand side of the first segment.
    Returns the response name, and the (optional) weights and trials columns.
    """
    match lhs:
        case sl.Var(_, name):
            return name, None, None
        case sl.LogicOrOp(sl.Var(_, name), sl.Call("weights", [sl.Var(_, w)])):
            return name, w, None
        case sl.LogicOrOp(sl.Var(_, name), sl.Call("trials", [sl.Var(_, n)])):
            return name, None, n
        case None:
            raise ValueError(
                f"the first segment must name the response variable, e.g. 'y ~ 1'. Found '{formula}'"
            )
        case _:
            raise ValueError(f"invalid response specification in segment formula '{formula}'")


def parse_cp_spec(lhs: Optional[sl.Expr], formula: str) -> Optional[str]:
    """
    Parse the change point specification of a segment (other than the first).
    Returns the name of the grouping variable for varying change points,
    or None for a population-level change point.
    """
    match lhs:
        case None | sl.LiteralInt(1):
            return None
        case sl.Par(sl.LogicOrOp(sl.LiteralInt(1), sl.Var(_, group))):
            return group
        case sl.AddOp(sl.LiteralInt(1), sl.Par(sl.LogicOrOp(sl.LiteralInt(1), sl.Var(_, group)))):
            return group
        case _:
            raise ValueError(
                f"invalid change point specification in segment formula '{formula}'. "
                "Use '1', '(1|group)' or '1 + (1|group)'"
            )


class TermCollector:
    """
    Collects the terms on the right-hand side of a segment formula (or
    the formula inside `sigma(...)` and `ar(...)`) into a `DparSegment`.
    The name of the predictor is recorded in `xs`.
    """

    def __init__(self, formula: str, allow_special: bool) -> None:
        self.formula = formula
        self.allow_special = allow_special
        self.xs: list[str] = []
        self.sigma: Optional[sl.Expr] = None
        self.ar: Optional[tuple[int, Optional[sl.Expr]]] = None
        self._intercept: InterceptType = None
        self._no_intercept = False
        self._slopes: list[SlopeTerm] = []

    def _error(self, message: str) -> ValueError:
        return ValueError(f"{message} in segment formula '{self.formula}'")

    def _set_intercept(self, value: InterceptType) -> None:
        if self._intercept is not None or self._no_intercept:
            raise self._error("multiple intercept terms ('0', '1', 'rel(1)')")
        self._intercept = value

    def _add_slope(self, name: str, power: int, rel: bool) -> None:
        if any(s.power == power for s in self._slopes):
            raise self._error(f"duplicate term for '{name}' with power {power}")
        self.xs.append(name)
        self._slopes.append(SlopeTerm(power, rel))

    def add(self, term: sl.Expr) -> None:
        match term:
            case sl.LiteralInt(0):
                if self._intercept is not None or self._no_intercept:
                    raise self._error("multiple intercept terms ('0', '1', 'rel(1)')")
                self._no_intercept = True
            case sl.LiteralInt(1):
                self._set_intercept("abs")
            case sl.Call("rel", [sl.LiteralInt(1)]):
                self._set_intercept("rel")
            case sl.Var(_, name):
                self._add_slope(name, 1, False)
            case sl.Call("rel", [sl.Var(_, name)]):
                self._add_slope(name, 1, True)
            case sl.Call("I", [sl.PowOp(sl.Var(_, name), sl.LiteralInt(power))]) if power >= 1:
                self._add_slope(name, power, False)
            case sl.Call("rel", [sl.Call("I", _)]):
                raise NotImplementedError(
                    f"rel() is only supported for intercepts and linear slopes "
                    f"(segment formula '{self.formula}')"
                )
            case sl.Call("sigma", [arg]) if self.allow_special:
                if self.sigma is not None:
                    raise self._error("multiple sigma() terms")
                self.sigma = arg
            case sl.Call("ar", [sl.LiteralInt(order)]) if self.allow_special:
                self._set_ar(order, None)
            case sl.Call("ar", [sl.LiteralInt(order), arg]) if self.allow_special:
                self._set_ar(order, arg)
            case sl.Call("sigma" | "ar"):
                raise self._error("invalid use of sigma() or ar()")
            case sl.Par(sl.LogicOrOp()):
                raise NotImplementedError(
                    "varying effects are only supported for change points, "
                    f"found '{self.formula}'"
                )
            case _:
                raise self._error("unsupported term")

    def _set_ar(self, order: int, arg: Optional[sl.Expr]) -> None:
        if self.ar is not None:
            raise self._error("multiple ar() terms")
        if order < 1:
            raise self._error("the order of ar() must be a positive integer")
        self.ar = (order, arg)

    def result(self) -> DparSegment:
        intercept = self._intercept
        # R formula semantics: implicit intercept unless 0 is given
        if intercept is None and not self._no_intercept:
            intercept = "abs"
        return DparSegment(intercept, sorted(self._slopes, key=lambda s: s.power))


def collect_terms(expr: sl.Expr, formula: str, allow_special: bool) -> TermCollector:
    collector = TermCollector(formula, allow_special)
    for term in split_terms(expr):
        collector.add(term)
    return collector


def parse_segment(formula: str, index: int, family: str) -> tuple[Segment, list[str]]:
    """
    Parse a single segment formula. Returns the segment and the
    names of the variables used in slope terms.
    """
    spec = parse_formula(formula)
    response, weights, trials, cp_group = None, None, None, None
    if index == 1:
        response, weights, trials = parse_response(spec.lhs, formula)
    else:
        cp_group = parse_cp_spec(spec.lhs, formula)

    main = collect_terms(spec.rhs, formula, allow_special=True)
    dpars = {"ct": main.result()}
    xs = list(main.xs)

    if main.sigma is not None or main.ar is not None:
        if family != "gaussian":
            raise ValueError(
                f"sigma() and ar() terms can only be used with the gaussian family, "
                f"found '{formula}' with family '{family}'"
            )
    if main.sigma is not None:
        sig = collect_terms(main.sigma, formula, allow_special=False)
        dpars["sigma"] = sig.result()
        xs += sig.xs
    elif index == 1 and family == "gaussian":
        dpars["sigma"] = DparSegment("abs")

    if main.ar is not None:
        order, arg = main.ar
        ar_rhs = sl.LiteralInt(1) if arg is None else arg
        for j in range(1, order + 1):
            ar = collect_terms(ar_rhs, formula, allow_special=False)
            dpars[f"ar{j}"] = ar.result()
            xs += ar.xs

    seg = Segment(index, formula, dpars, response, weights, trials, cp_group)
    return seg, xs


def intercept_name(dpar: str, k: int) -> str:
    return f"int_{k}" if dpar == "ct" else f"{dpar}_{k}"


def slope_name(dpar: str, x: str, k: int, power: int = 1) -> str:
    base = x if dpar == "ct" else f"{dpar}_{x}"
    name = f"{base}_{k}"
    if power > 1:
        name += f"_E{power}"
    return name


def param_kind(dpar: str, term: Literal["int", "slope"]) -> str:
    if dpar == "ct":
        return term
    base = "ar" if dpar.startswith("ar") else dpar
    return base if term == "int" else f"{base}_slope"


class SegmentedFormula:
    """
    The parsed list of segment formulas.

    Parameters
    ----------
    segments : list[str]
        segment formulas. The first formula names the response.
    family : str
        name of the response family. Determines if `sigma` is modelled.
    par_x : Optional[str]
        name of the predictor. If None, it is inferred from the slope terms.

    Raises
    ------
    ValueError
        for invalid formulas, or if the predictor can not be determined.
    """

    def __init__(
        self, segments: list[str], family: str = "gaussian", par_x: Optional[str] = None
    ) -> None:
        if isinstance(segments, str) or len(segments) == 0:
            raise ValueError("segments must be a non-empty list of formula strings")
        self.formulas = list(segments)
        parsed = [parse_segment(f, k + 1, family) for k, f in enumerate(segments)]
        self.segments: list[Segment] = [seg for seg, _ in parsed]
        xs = util.unique_keep_order(util.flatten([x for _, x in parsed]))

        first = self.segments[0]
        self.response: str = first.response
        self.weights: Optional[str] = first.weights
        self.trials: Optional[str] = first.trials
        if self.weights is not None and family != "gaussian":
            raise ValueError("weights are only supported for the gaussian family")

        if len(xs) > 1:
            raise ValueError(
                "segment formulas can only use a single predictor variable, found "
                + ", ".join(xs)
            )
        if par_x is None:
            if len(xs) == 0:
                raise ValueError(
                    "unable to infer the predictor from the segment formulas. "
                    "Use the argument par_x to specify it"
                )
            par_x = xs[0]
        elif len(xs) == 1 and xs[0] != par_x:
            raise ValueError(
                f"par_x is '{par_x}', but segment formulas use '{xs[0]}' as predictor"
            )
        self.par_x: str = par_x

        if self.response == self.par_x:
            raise ValueError("the response and the predictor must be different variables")

        # validate relative terms
        for seg in self.segments:
            for dpar, ds in seg.dpars.items():
                uses_rel = ds.intercept == "rel" or any(s.rel for s in ds.slopes)
                if uses_rel and seg.index == 1:
                    raise ValueError(
                        f"rel() can not be used in the first segment ('{seg.formula}')"
                    )

        self.varying: list[VaryingCp] = [
            VaryingCp(seg.index - 1, seg.cp_group)
            for seg in self.segments
            if seg.cp_group is not None
        ]
        self.parameters: list[Parameter] = self._make_parameters()

    @property
    def n_segments(self) -> int:
        return len(self.segments)

    @property
    def n_cp(self) -> int:
        return len(self.segments) - 1

    @property
    def groups(self) -> list[str]:
        return util.unique_keep_order([v.group for v in self.varying])

    @property
    def ar_order(self) -> int:
        orders = [
            int(d[2:]) for seg in self.segments for d in seg.dpars if d.startswith("ar")
        ]
        return max(orders, default=0)

    @property
    def dpar_names(self) -> list[str]:
        names = util.unique_keep_order(
            util.flatten([list(seg.dpars.keys()) for seg in self.segments])
        )
        ars = sorted([n for n in names if n.startswith("ar")], key=lambda n: int(n[2:]))
        return [n for n in ["ct", "sigma"] if n in names] + ars

    def _make_parameters(self) -> list[Parameter]:
        """
        Create the population-level parameters. Change points come first,
        then the parameters of each segment in order of the dpars.
        """
        params = [Parameter(f"cp_{k}", "cp", k) for k in range(1, self.n_cp + 1)]
        for seg in self.segments:
            for dpar, ds in seg.dpars.items():
                if ds.intercept is not None:
                    params.append(
                        Parameter(
                            intercept_name(dpar, seg.index),
                            param_kind(dpar, "int"),
                            seg.index,
                            dpar,
                            rel=(ds.intercept == "rel"),
                        )
                    )
                for s in ds.slopes:
                    params.append(
                        Parameter(
                            slope_name(dpar, self.par_x, seg.index, s.power),
                            param_kind(dpar, "slope"),
                            seg.index,
                            dpar,
                            power=s.power,
                            rel=s.rel,
                        )
                    )
        params += [Parameter(v.sd_name, "cp_sd", v.cp + 1) for v in self.varying]
        return params

    @property
    def parameter_names(self) -> list[str]:
        return [p.name for p in self.parameters]

    # linear predictors

    def _x(self) -> sl.Expr:
        return sl.Var(sl.Vector(sl.intVar("N"), data=True), self.par_x).idx(sl.intVar("i"))

    def cp_expr(self, k: int) -> sl.Expr:
        """
        The change point `cp_k` for observation i, including the varying
        effect when the change point varies between groups.
        """
        cp = sl.realVar(f"cp_{k}")
        for v in self.varying:
            if v.cp == k:
                grp = sl.Var(sl.Array(sl.Int(), sl.intVar("N"), data=True), v.group)
                eff = sl.realVar(v.name).idx(grp.idx(sl.intVar("i")))
                return sl.Par(cp + eff)
        return cp

    def local_x(self, k: int) -> sl.Expr:
        """
        The predictor in the local coordinates of segment k. The first segment
        starts at x = 0. Other segments start at their change point and
        end at the next change point.
        """
        x = self._x()
        K = self.n_segments
        if K == 1:
            return x
        if k == 1:
            return sl.Call("fmin", [x, self.cp_expr(1)])
        if k == K:
            return sl.Par(x - self.cp_expr(K - 1))
        return sl.Par(sl.Call("fmin", [x, self.cp_expr(k)]) - self.cp_expr(k - 1))

    def _dpar_segment(self, dpar: str, k: int) -> Optional[DparSegment]:
        return self.segments[k - 1].dpars.get(dpar)

    def effective_slope(self, dpar: str, k: int) -> Optional[sl.Expr]:
        """
        The linear slope of segment k. A relative slope is added to the
        effective slope of the previous segment.
        """
        if k < 1:
            return None
        ds = self._dpar_segment(dpar, k)
        linear = [s for s in ds.slopes if s.power == 1] if ds is not None else []
        if len(linear) == 0:
            return None
        slope = sl.realVar(slope_name(dpar, self.par_x, k))
        if not linear[0].rel:
            return slope
        prev = self.effective_slope(dpar, k - 1)
        return slope if prev is None else sl.Par(slope + prev)

    def _next_abs_intercept(self, dpar: str, k: int) -> Optional[int]:
        for j in range(k + 1, self.n_segments + 1):
            ds = self._dpar_segment(dpar, j)
            if ds is not None and ds.intercept == "abs":
                return j
        return None

    def linear_predictor(self, dpar: str) -> sl.Expr:
        """
        Expression for the dpar of observation i. Each segment contributes
        from its change point onwards, until a later segment
        starts a new (absolute) intercept.
        """
        contributions: list[sl.Expr] = []
        for k in range(1, self.n_segments + 1):
            ds = self._dpar_segment(dpar, k)
            if ds is None or ds.is_empty():
                continue
            X = self.local_x(k)
            terms: list[sl.Expr] = []
            if ds.intercept is not None:
                terms.append(sl.realVar(intercept_name(dpar, k)))
            for s in ds.slopes:
                if s.power == 1:
                    terms.append(self.effective_slope(dpar, k) * X)
                else:
                    coef = sl.realVar(slope_name(dpar, self.par_x, k, s.power))
                    terms.append(coef * sl.PowOp(X, sl.LiteralInt(s.power)))
            total = terms[0]
            for term in terms[1:]:
                total = total + term
            factors: list[sl.Expr] = []
            if k > 1:
                factors.append(sl.Call("step", [self._x() - self.cp_expr(k - 1)]))
            j = self._next_abs_intercept(dpar, k)
            if j is not None:
                factors.append(sl.Par(sl.LeOp(self._x(), self.cp_expr(j - 1))))
            if len(factors) == 0:
                contributions.append(total)
                continue
            contrib = factors[0]
            for f in factors[1:]:
                contrib = contrib * f
            contributions.append(contrib * (sl.Par(total) if len(terms) > 1 else total))
        if len(contributions) == 0:
            return sl.rzero()
        eta = contributions[0]
        for c in contributions[1:]:
            eta = eta + c
        return eta
