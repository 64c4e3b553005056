"""
Evaluate Stan-language expressions with numpy, find the variables
used in an expression, and substitute variables by expressions.

The numpy evaluation follows the Stan semantics of the functions that are
used in segmented models, but works on arrays: parameters have shape
(num_draws, 1) and data vectors shape (N,), such that the result of
an expression evaluated for all observations has shape (num_draws, N).
"""
import numpy as np
import scipy.special
import scipy.stats as sts
from typing import Any, Callable, Mapping

from . import stanlang as sl
from . import utilities as util


def _step(x):
    return np.where(np.asarray(x) < 0, 0.0, 1.0)


numpy_functions: dict[str, Callable] = {
    "step": _step,
    "fmin": np.minimum,
    "fmax": np.maximum,
    "exp": np.exp,
    "log": np.log,
    "log1p": np.log1p,
    "sqrt": np.sqrt,
    "square": np.square,
    "abs": np.abs,
    "fabs": np.abs,
    "pow": np.power,
    "inv": lambda x: 1.0 / np.asarray(x),
    "inv_logit": scipy.special.expit,
    "logit": scipy.special.logit,
    "Phi": sts.norm.cdf,
    "sin": np.sin,
    "cos": np.cos,
    "mean": lambda x: np.mean(x, axis=-1, keepdims=True),
}

numpy_bool_ops: dict[type, Callable] = {
    sl.LeOp: np.less,
    sl.GrOp: np.greater,
    sl.LeEqOp: np.less_equal,
    sl.GrEqOp: np.greater_equal,
    sl.EqOp: np.equal,
    sl.NeqOp: np.not_equal,
    sl.LogicAndOp: np.logical_and,
    sl.LogicOrOp: np.logical_or,
}


def evaluate(expr: sl.Expr, env: Mapping[str, Any]) -> Any:
    """
    Evaluate an expression in an environment that maps
    variable names to (numpy) values.

    Indexing is 1-based (as in Stan) and acts on the last axis, such that
    `cp_1_id[id[i]]` gives the group effect for each observation when `i`
    is bound to the array `1, ..., N`.

    Raises
    ------
    KeyError
        if a variable is not defined in `env`
    ValueError
        if the expression contains unsupported functions or operators
    """
    match expr:
        case sl.LiteralInt(val) | sl.LiteralReal(val):
            return val
        case sl.LiteralVector(elts):
            return np.array([evaluate(elt, env) for elt in elts])
        case sl.Var(_, name):
            if name not in env:
                raise KeyError(f"variable '{name}' is not defined")
            return env[name]
        case sl.IndexOp(var, index):
            base = np.asarray(evaluate(var, env))
            idx = np.asarray(evaluate(index, env)).astype(int)
            return base[..., idx - 1]
        case sl.Negate(val):
            return -evaluate(val, env)
        case sl.MulOp(left, right):
            return evaluate(left, env) * evaluate(right, env)
        case sl.AddOp(left, right):
            return evaluate(left, env) + evaluate(right, env)
        case sl.SubOp(left, right):
            return evaluate(left, env) - evaluate(right, env)
        case sl.DivOp(num, den):
            return np.divide(evaluate(num, env), evaluate(den, env))
        case sl.PowOp(base, exponent):
            return np.power(evaluate(base, env), evaluate(exponent, env))
        case sl.BoolOp(left, right):
            ufunc = numpy_bool_ops[type(expr)]
            return ufunc(evaluate(left, env), evaluate(right, env))
        case sl.Par(content):
            return evaluate(content, env)
        case sl.Call(func_name, arguments):
            if func_name not in numpy_functions:
                raise ValueError(f"function '{func_name}' can not be evaluated")
            args = [evaluate(arg, env) for arg in arguments]
            return numpy_functions[func_name](*args)
        case _:
            raise ValueError("unable to evaluate expression " + str(expr))


def find_names(expr: sl.Expr) -> list[str]:
    """
    Find the names of all variables in an expression.
    Function names are not included. The names are returned in
    order of first appearance.
    """
    match expr:
        case sl.LiteralInt() | sl.LiteralReal():
            names = []
        case sl.LiteralVector(elts):
            names = util.flatten([find_names(elt) for elt in elts])
        case sl.Var(_, name):
            names = [name]
        case sl.Range(start, stop):
            names = util.flatten(
                [find_names(x) for x in (start, stop) if x is not None]
            )
        case sl.IndexOp(var, index):
            names = find_names(var) + find_names(index)
        case sl.Negate(val) | sl.Par(val):
            names = find_names(val)
        case (
            sl.MulOp(a, b) | sl.AddOp(a, b) | sl.SubOp(a, b) | sl.DivOp(a, b)
            | sl.PowOp(a, b) | sl.BoolOp(a, b)
        ):
            names = find_names(a) + find_names(b)
        case sl.Call(_, arguments):
            names = util.flatten([find_names(arg) for arg in arguments])
        case sl.PCall(_, obs, parameters, _):
            names = find_names(obs) + util.flatten([find_names(p) for p in parameters])
        case _:
            raise ValueError("unable to find names in expression " + str(expr))
    return util.unique_keep_order(names)


def substitute(expr: sl.Expr, mapping: Mapping[str, sl.Expr]) -> sl.Expr:
    """
    Replace variables in an expression by other expressions.
    Replacements are wrapped in parentheses to preserve the order
    of operations.
    """

    def sub(e: sl.Expr) -> sl.Expr:
        return substitute(e, mapping)

    match expr:
        case sl.Var(_, name) if name in mapping:
            return sl.Par(mapping[name])
        case sl.LiteralInt() | sl.LiteralReal() | sl.Var():
            return expr
        case sl.LiteralVector(elts):
            return sl.LiteralVector([sub(elt) for elt in elts])
        case sl.IndexOp(var, index):
            return sl.IndexOp(sub(var), sub(index))
        case sl.Negate(val):
            return sl.Negate(sub(val))
        case sl.Par(val):
            return sl.Par(sub(val))
        case sl.Call(func_name, arguments):
            return sl.Call(func_name, [sub(arg) for arg in arguments])
        case (
            sl.MulOp(a, b) | sl.AddOp(a, b) | sl.SubOp(a, b) | sl.DivOp(a, b)
            | sl.PowOp(a, b) | sl.BoolOp(a, b)
        ):
            return type(expr)(sub(a), sub(b))
        case _:
            raise ValueError("unable to substitute in expression " + str(expr))
