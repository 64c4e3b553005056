"""
Simplify the generated Stan code: evaluate arithmetic with literals,
remove neutral elements and drop parentheses that are not needed.
"""
import dataclasses
import operator
from typing import Optional

from . import stanlang as sl


def optimize_stmt(stmt: sl.Stmt) -> sl.Stmt:
    """
    Simplify Stan statements, and the expressions within those statements
    """
    match stmt:
        case sl.EmptyStmt():
            return stmt
        case sl.Decl(var):
            return dataclasses.replace(stmt, var=optimize_var(var))
        case sl.DeclAssign(var, rhs):
            return dataclasses.replace(stmt, var=optimize_var(var), rhs=optimize_expr(rhs))
        case sl.Assign(lhs, rhs) | sl.AddAssign(lhs, rhs):
            return dataclasses.replace(stmt, lhs=optimize_expr(lhs), rhs=optimize_expr(rhs))
        case sl.Sample(lhs, rhs, truncation):
            opt_trunc = None
            if truncation is not None:
                opt_trunc = tuple(optimize_optional_expr(b) for b in truncation)
            return dataclasses.replace(
                stmt, lhs=optimize_expr(lhs), rhs=optimize_expr(rhs), truncation=opt_trunc
            )
        case sl.Scope(content):
            return dataclasses.replace(stmt, content=optimize_stmt_list(content))
        case sl.ForLoop(_, sequence, content):
            return dataclasses.replace(
                stmt, sequence=optimize_expr(sequence), content=optimize_stmt(content)
            )
        case sl.IfStatement(condition, content):
            return dataclasses.replace(
                stmt, condition=optimize_expr(condition), content=optimize_stmt(content)
            )
        case sl.StanModel():
            blocks = {
                f.name: optimize_stmt_list(getattr(stmt, f.name))
                for f in dataclasses.fields(stmt)
                if f.name != "comment" and getattr(stmt, f.name) is not None
            }
            return dataclasses.replace(stmt, **blocks)
        case _:
            raise Exception("could not optimize stmt " + str(stmt))


def optimize_stmt_list(statements: list[sl.Stmt]) -> list[sl.Stmt]:
    return [optimize_stmt(stmt) for stmt in statements]


def optimize_var(var: sl.Var) -> sl.Var:
    return sl.Var(optimize_type(var.var_type), var.name)


def optimize_type(typ: sl.Type) -> sl.Type:
    """
    Simplify the expressions in the bounds and dimensions of Stan types
    """
    match typ:
        case sl.Vector(n, lower=lower, upper=upper):
            return dataclasses.replace(
                typ,
                n=optimize_expr(n),
                lower=optimize_optional_expr(lower),
                upper=optimize_optional_expr(upper),
            )
        case sl.BoundedType(lower=lower, upper=upper):
            return dataclasses.replace(
                typ, lower=optimize_optional_expr(lower), upper=optimize_optional_expr(upper)
            )
        case sl.Simplex(n):
            return dataclasses.replace(typ, n=optimize_expr(n))
        case sl.Array(base, shape):
            opt_shape = tuple(optimize_expr(n) for n in shape)
            return dataclasses.replace(typ, base=optimize_type(base), shape=opt_shape)
        case _:
            raise Exception("could not optimize type " + str(typ))


def optimize_optional_expr(expr: Optional[sl.Expr]) -> Optional[sl.Expr]:
    return None if expr is None else optimize_expr(expr)


def optimize_expr(expr: sl.Expr) -> sl.Expr:
    """
    Simplify the expression tree. Arithmetic with literal ints and reals
    is evaluated, neutral elements (`x + 0`, `1 * x`) are removed,
    and redundant parentheses are dropped.
    """
    match expr:
        case sl.LiteralInt(val):
            return sl.LiteralInt(val)
        case sl.LiteralReal(val):
            return sl.LiteralReal(val)
        case sl.LiteralVector(elts):
            return sl.LiteralVector([optimize_expr(elt) for elt in elts])
        case sl.Var(var_type, name):
            return sl.Var(var_type, name)
        case sl.Range(start, stop):
            return sl.Range(optimize_optional_expr(start), optimize_optional_expr(stop))
        case sl.Negate(val):
            return optimize_negate(val)
        case sl.MulOp(left, right) | sl.AddOp(left, right) | sl.SubOp(left, right):
            return optimize_bin_op(type(expr), left, right)
        case sl.DivOp(left, right):
            return optimize_div_op(left, right)
        case sl.PowOp(base, exponent):
            return optimize_pow_op(base, exponent)
        case sl.IndexOp(var, index):
            return sl.IndexOp(optimize_expr(var), optimize_expr(index))
        case sl.BoolOp(left, right):
            return type(expr)(optimize_expr(left), optimize_expr(right))
        case sl.Par(content):
            opt_content = optimize_expr(content)
            return opt_content if is_atomic_expr(opt_content) else sl.Par(opt_content)
        case sl.Call(func_name, arguments):
            return sl.Call(func_name, optimize_expr_list(arguments))
        case sl.PCall(dist_name, obs, parameters, suffix):
            opt_params = optimize_expr_list(parameters)
            return sl.PCall(dist_name, optimize_expr(obs), opt_params, suffix)
        case _:
            raise Exception("expresion can not be optimized " + str(expr))


def optimize_expr_list(expressions: list[sl.Expr]) -> list[sl.Expr]:
    return [optimize_expr(expr) for expr in expressions]


def is_zero(expr: sl.Expr) -> bool:
    return sl.is_literal(expr) and expr.val == 0


def is_one(expr: sl.Expr) -> bool:
    return sl.is_literal(expr) and expr.val == 1


python_operators = {sl.MulOp: operator.mul, sl.AddOp: operator.add, sl.SubOp: operator.sub}


def optimize_bin_op(
    op: type[sl.MulOp] | type[sl.AddOp] | type[sl.SubOp],
    left: sl.Expr,
    right: sl.Expr,
) -> sl.Expr:
    """
    Literal operands are combined into a single literal,
    which is an integer if both operands are integers.
    """
    pyop = python_operators[op]
    match (optimize_expr(left), optimize_expr(right)):
        case (sl.LiteralInt(val=a), sl.LiteralInt(val=b)):
            return sl.LiteralInt(pyop(a, b))
        case (
            sl.LiteralInt(val=a) | sl.LiteralReal(val=a),
            sl.LiteralInt(val=b) | sl.LiteralReal(val=b),
        ):
            return sl.LiteralReal(pyop(a, b))
        case (other_left, other_right):
            # neutral elements
            if op is sl.MulOp and is_one(other_left):
                return other_right
            if op is sl.MulOp and is_one(other_right):
                return other_left
            if op is sl.AddOp and is_zero(other_left):
                return other_right
            if op is not sl.MulOp and is_zero(other_right):
                return other_left
            return op(other_left, other_right)


def optimize_div_op(left: sl.Expr, right: sl.Expr) -> sl.Expr:
    match (optimize_expr(left), optimize_expr(right)):
        case (
            sl.LiteralInt(val=a) | sl.LiteralReal(val=a),
            sl.LiteralInt(val=b) | sl.LiteralReal(val=b),
        ) if b != 0:
            return sl.LiteralReal(a / b)
        case (other_left, other_right):
            if is_one(other_right):
                return other_left
            return sl.DivOp(other_left, other_right)


def optimize_pow_op(base: sl.Expr, exponent: sl.Expr) -> sl.Expr:
    match (optimize_expr(base), optimize_expr(exponent)):
        case (other_base, other_exponent) if is_one(other_exponent):
            return other_base
        case (other_base, other_exponent):
            return sl.PowOp(other_base, other_exponent)


def optimize_negate(val: sl.Expr) -> sl.Expr:
    """
    negate is its own inverse, and literals are negated directly
    """
    match optimize_expr(val):
        case sl.Negate(ival):
            return ival
        case sl.LiteralInt(ival):
            return sl.LiteralInt(-ival)
        case sl.LiteralReal(ival):
            return sl.LiteralReal(-ival)
        case other:
            return sl.Negate(other)


def is_atomic_expr(expr: sl.Expr) -> bool:
    """
    test if an expression is "atomic", i.e. it never needs parentheses.
    Atomic expressions are non-negative literals, variables, indexed
    variables, function calls and grouped expressions.
    """
    match expr:
        case sl.LiteralInt(val) | sl.LiteralReal(val):
            return val >= 0
        case sl.LiteralVector() | sl.Var() | sl.Par():
            return True
        case sl.IndexOp() | sl.Call() | sl.PCall():
            return True
        case _:
            return False
