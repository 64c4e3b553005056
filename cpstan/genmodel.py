"""
Generate the AST of the Stan model for a segmented regression model.
"""
from typing import Optional

from . import stanlang as sl
from . import definitions as defn
from .family import Family
from .formula import SegmentedFormula
from .prior import (
    Prior,
    DistPrior,
    FixedPrior,
    DirichletPrior,
    equation_order,
    param_bounds,
)

N = sl.intVar("N")
i = sl.intVar("i")


def dpar_var_name(dpar: str) -> str:
    """name of the per-observation vector of a dpar"""
    match dpar:
        case "ct":
            return "mu"
        case _:
            return f"{dpar}_"


def group_count_name(group: str) -> str:
    return f"N_{group}"


def uses_dirichlet(priors: dict[str, Prior]) -> bool:
    return any(isinstance(p, DirichletPrior) for p in priors.values())


def obs_var(formula: SegmentedFormula, family: Family) -> sl.Var:
    if family.discrete:
        return sl.Var(sl.Array(sl.Int(lower=sl.izero()), N, data=True), formula.response)
    return sl.Var(sl.Vector(N, data=True), formula.response)


def likelihood_params(formula: SegmentedFormula, family: Family) -> list[sl.Expr]:
    """the parameters of the family for observation i"""
    mu = sl.realVar("mu").idx(i)
    sigma = sl.realVar("sigma_").idx(i) if "sigma" in formula.dpar_names else None
    trials = None
    if formula.trials is not None:
        trials = sl.intVar(formula.trials).idx(i)
    weights = None
    if formula.weights is not None:
        weights = sl.realVar(formula.weights).idx(i)
    return family.stan_params(mu, sigma, trials, weights)


def gen_data_block(formula: SegmentedFormula, family: Family) -> list[sl.Stmt]:
    declarations: list[sl.Stmt] = []

    declarations.append(
        sl.Decl(sl.Var(sl.Int(lower=sl.one()), "N"), comment="number of observations")
    )
    declarations.append(
        sl.Decl(sl.Var(sl.Vector(N), formula.par_x), comment="predictor")
    )
    y = obs_var(formula, family)
    match family.name:
        case "bernoulli":
            y = sl.Var(sl.Array(sl.Int(lower=sl.izero(), upper=sl.one()), N), formula.response)
        case _:
            pass
    declarations.append(sl.Decl(y, comment="response"))

    if formula.weights is not None:
        declarations.append(
            sl.Decl(sl.Var(sl.Vector(N, lower=sl.rzero()), formula.weights), comment="weights")
        )
    if formula.trials is not None:
        declarations.append(
            sl.Decl(
                sl.Var(sl.Array(sl.Int(lower=sl.izero()), N), formula.trials),
                comment="number of trials",
            )
        )

    # grouping variables for varying change points
    for group in formula.groups:
        num_levels = sl.Var(sl.Int(lower=sl.one()), group_count_name(group))
        declarations.append(sl.Decl(num_levels, comment=f"number of levels of {group}"))
        declarations.append(
            sl.Decl(sl.Var(sl.Array(sl.Int(lower=sl.one(), upper=num_levels), N), group))
        )

    declarations.append(sl.comment("data constants"))
    for name in defn.data_constants:
        if name == "N":
            continue
        if name in defn.int_data_constants:
            declarations.append(sl.Decl(sl.Var(sl.Int(lower=sl.izero()), name)))
        else:
            declarations.append(sl.Decl(sl.Var(sl.Real(), name)))

    return declarations


def gen_parameters_block(formula: SegmentedFormula, priors: dict[str, Prior]) -> list[sl.Stmt]:
    param_block: list[sl.Stmt] = []

    cps = [p for p in formula.parameters if p.kind == "cp"]
    if uses_dirichlet(priors):
        n = sl.intVar("N_CP") + sl.one()
        param_block.append(
            sl.Decl(
                sl.Var(sl.Simplex(n), "cp_simplex"),
                comment="normalized distances between change points",
            )
        )
    else:
        cp_decls: list[sl.Stmt] = []
        for p in cps:
            if not p.is_sampled():
                continue
            lower, upper = param_bounds(p, priors)
            cp_decls.append(sl.Decl(sl.Var(sl.Real(lower=lower, upper=upper), p.name)))
        if len(cp_decls) > 0:
            param_block.append(sl.comment("change points"))
        param_block += cp_decls

    seg_decls: list[sl.Stmt] = []
    for p in formula.parameters:
        if p.kind in ["cp", "cp_sd"] or not p.is_sampled():
            continue
        lower, upper = param_bounds(p, priors)
        seg_decls.append(sl.Decl(sl.Var(sl.Real(lower=lower, upper=upper), p.name)))
    if len(seg_decls) > 0:
        param_block.append(sl.comment("segment parameters"))
    param_block += seg_decls

    if len(formula.varying) > 0:
        param_block.append(sl.comment("varying change points"))
    for v in formula.varying:
        n = sl.intVar(group_count_name(v.group))
        param_block.append(sl.Decl(sl.Var(sl.Vector(n), v.raw_name)))
        sd_par = next(p for p in formula.parameters if p.name == v.sd_name)
        if sd_par.is_sampled():
            lower, upper = param_bounds(sd_par, priors)
            lower = sl.rzero() if lower is None else lower
            param_block.append(sl.Decl(sl.Var(sl.Real(lower=lower, upper=upper), v.sd_name)))

    return param_block


def gen_trans_param_block(
    formula: SegmentedFormula,
    family: Family,
    priors: dict[str, Prior],
    options: dict,
) -> list[sl.Stmt]:
    statements: list[sl.Stmt] = []
    parnames = formula.parameter_names

    # change points from the Dirichlet simplex
    if uses_dirichlet(priors):
        statements.append(sl.comment("change points"))
        minx, maxx = sl.realVar("MINX"), sl.realVar("MAXX")
        simplex = sl.Var(sl.Simplex(sl.intVar("N_CP") + sl.one()), "cp_simplex")
        for k in range(1, formula.n_cp + 1):
            partial_sum = sl.Call("sum", [simplex.idx(sl.Range(sl.one(), sl.LiteralInt(k)))])
            rhs = minx + sl.Par(maxx - minx) * partial_sum
            statements.append(sl.DeclAssign(sl.realVar(f"cp_{k}"), rhs))

    fixed = [n for n in parnames if isinstance(priors[n], FixedPrior)]
    if len(fixed) > 0:
        statements.append(sl.comment("fixed parameters"))
    for n in fixed:
        statements.append(sl.DeclAssign(sl.realVar(n), priors[n].expr()))

    equations = equation_order(priors, parnames)
    if len(equations) > 0:
        statements.append(sl.comment("parameters defined by equations"))
    for n in equations:
        statements.append(sl.DeclAssign(sl.realVar(n), priors[n].expr()))

    # varying change points
    for v in formula.varying:
        n = sl.intVar(group_count_name(v.group))
        raw = sl.Var(sl.Vector(n), v.raw_name)
        if options["sum_to_zero"]:
            centered: sl.Expr = sl.Par(raw - sl.Call("mean", [raw]))
            comment = f"zero-centered varying effects of {v.group} on {v.cp_name}"
        else:
            centered = raw
            comment = f"varying effects of {v.group} on {v.cp_name}"
        statements.append(
            sl.DeclAssign(
                sl.Var(sl.Vector(n), v.name),
                sl.realVar(v.sd_name) * centered,
                comment=comment,
            )
        )

    # linear predictors
    dpars = formula.dpar_names
    statements.append(sl.comment("linear predictors"))
    for dpar in dpars:
        statements.append(sl.Decl(sl.Var(sl.Vector(N), dpar_var_name(dpar))))
    if formula.ar_order > 0:
        statements.append(sl.Decl(sl.Var(sl.Vector(N), "resid")))

    loop_content: list[sl.Stmt] = []
    for dpar in dpars:
        eta = formula.linear_predictor(dpar)
        if dpar == "ct":
            eta = family.inv_link_expr(eta)
        loop_content.append(sl.Assign(sl.realVar(dpar_var_name(dpar)).idx(i), eta))
    statements.append(sl.ForLoop(i, sl.Range(sl.one(), N), sl.Scope(loop_content)))

    # autoregressive terms use the residuals of earlier observations
    if formula.ar_order > 0:
        mu = sl.Var(sl.Vector(N), "mu")
        resid = sl.Var(sl.Vector(N), "resid")
        y = sl.Var(sl.Vector(N), formula.response)
        statements.append(sl.Assign(resid, y - mu, comment="autoregressive terms"))
        ar_content: list[sl.Stmt] = []
        for j in range(1, formula.ar_order + 1):
            lag = sl.LiteralInt(j)
            ar_content.append(
                sl.IfStatement(
                    sl.GrOp(i, lag),
                    sl.AddAssign(
                        mu.idx(i),
                        sl.realVar(dpar_var_name(f"ar{j}")).idx(i) * resid.idx(i - lag),
                    ),
                )
            )
        statements.append(sl.ForLoop(i, sl.Range(sl.one(), N), sl.Scope(ar_content)))

    return statements


def gen_prior(formula: SegmentedFormula, priors: dict[str, Prior]) -> list[sl.Stmt]:
    prior_stmts: list[sl.Stmt] = []
    if uses_dirichlet(priors):
        alphas = [priors[f"cp_{k}"].alpha for k in range(1, formula.n_cp + 1)]
        alphas.append(sl.one())
        simplex = sl.Var(sl.Simplex(sl.intVar("N_CP") + sl.one()), "cp_simplex")
        prior_stmts.append(sl.Sample(simplex, sl.Call("dirichlet", [sl.LiteralVector(alphas)])))
    for p in formula.parameters:
        prior = priors[p.name]
        if not isinstance(prior, DistPrior):
            continue
        lower, upper = param_bounds(p, priors)
        if p.kind == "cp_sd" and lower is None:
            lower = sl.rzero()
        prior_stmts += prior.gen_sampling_stmt(sl.realVar(p.name), lower, upper)
    for v in formula.varying:
        prior_stmts.append(sl.Sample(sl.realVar(v.raw_name), sl.Call("std_normal", [])))
    return prior_stmts


def gen_model_block(
    formula: SegmentedFormula,
    family: Family,
    priors: dict[str, Prior],
    include_likelihood: bool = True,
) -> list[sl.Stmt]:
    statements: list[sl.Stmt] = [sl.comment("priors")]
    statements += gen_prior(formula, priors)
    if include_likelihood:
        y = obs_var(formula, family)
        loglik = family.genexpr_loglik(y.idx(i), likelihood_params(formula, family))
        statements.append(
            sl.ForLoop(
                i,
                sl.Range(sl.one(), N),
                sl.AddAssign(sl.realVar("target"), loglik),
                comment=f"{family.name} likelihood",
            )
        )
    return statements


def gen_gq_block(
    formula: SegmentedFormula,
    family: Family,
    options: dict,
    include_likelihood: bool = True,
) -> Optional[list[sl.Stmt]]:
    statements: list[sl.Stmt] = []
    loop_content: list[sl.Stmt] = []
    params = likelihood_params(formula, family)
    if options["log_lik"] and include_likelihood:
        log_lik = sl.Var(sl.Vector(N), "log_lik")
        statements.append(sl.Decl(log_lik, comment="pointwise log-likelihood"))
        y = obs_var(formula, family)
        loop_content.append(
            sl.Assign(log_lik.idx(i), family.genexpr_loglik(y.idx(i), params))
        )
    if options["y_rep"]:
        base_type = sl.Int() if family.discrete else sl.Real()
        y_rep = sl.Var(sl.Array(base_type, N), "y_rep")
        statements.append(sl.Decl(y_rep, comment="replicated data"))
        loop_content.append(sl.Assign(y_rep.idx(i), family.genexpr_rng(params)))
    if len(loop_content) == 0:
        return None
    statements.append(sl.ForLoop(i, sl.Range(sl.one(), N), sl.Scope(loop_content)))
    return statements


def gen_stan_model(
    formula: SegmentedFormula,
    family: Family,
    priors: dict[str, Prior],
    options: dict,
    include_likelihood: bool = True,
) -> sl.StanModel:
    """
    Generate the Stan model. If `include_likelihood` is False, the model
    samples from the prior, and the generated quantities contain prior
    predictive samples.
    """
    model = sl.StanModel(
        None,
        gen_data_block(formula, family),
        None,
        gen_parameters_block(formula, priors),
        gen_trans_param_block(formula, family, priors, options),
        gen_model_block(formula, family, priors, include_likelihood=include_likelihood),
        gen_gq_block(formula, family, options, include_likelihood=include_likelihood),
    )
    return model
