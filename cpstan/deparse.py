from . import utilities as util
from . import stanlang as sl

from typing import Optional


def deparse_chevrons(lower: Optional[sl.Expr], upper: Optional[sl.Expr]) -> str:
    """
    the chevrons function constructs a string for the declaration of a bounded variable.

    Example: `<lower=MINX, upper=fmin(MAXX, 20.0)>`
    """
    bounds_strs = []
    if lower is not None:
        bounds_strs.append(f"lower={deparse_expr(lower)}")
    if upper is not None:
        bounds_strs.append(f"upper={deparse_expr(upper)}")
    if len(bounds_strs) == 0:
        return ""
    return "<" + ", ".join(bounds_strs) + ">"


def deparse_decl(typ: sl.Type) -> str:
    match typ:
        case sl.Real(lower=lower, upper=upper):
            return "real" + deparse_chevrons(lower, upper)
        case sl.Int(lower=lower, upper=upper):
            return "int" + deparse_chevrons(lower, upper)
        case sl.Vector(n, lower=lower, upper=upper):
            return f"vector{deparse_chevrons(lower, upper)}[{deparse_expr(n)}]"
        case sl.Simplex(n):
            return f"simplex[{deparse_expr(n)}]"
        case sl.Array(base_type, shape):
            shape_str = ", ".join([deparse_expr(x) for x in shape])
            return f"array[{shape_str}] {deparse_decl(base_type)}"
        case _:
            raise Exception("unable to deparse type " + str(typ))


# infix symbols of the arithmetic operators
arithmetic_symbols: dict[type, str] = {
    sl.AddOp: " + ",
    sl.SubOp: " - ",
    sl.MulOp: " * ",
    sl.DivOp: " / ",
    sl.PowOp: "^",
}


def deparse_expr(expr: sl.Expr) -> str:
    """
    transform a Expr into Stan code
    """
    match expr:
        case sl.LiteralInt(val):
            return str(val)
        case sl.LiteralReal(val):
            return str(float(val))
        case sl.LiteralVector(elts):
            # a row vector, transposed to a column vector
            return "[" + ", ".join([deparse_expr(x) for x in elts]) + "]'"
        case sl.Var(_, name):
            return name
        case sl.Range(start, stop):
            dep_start = deparse_expr(start) if start is not None else ""
            dep_stop = deparse_expr(stop) if stop is not None else ""
            return f"{dep_start}:{dep_stop}"
        case sl.IndexOp(var, index):
            return f"{deparse_expr(var)}[{deparse_expr(index)}]"
        case sl.Negate(val):
            return f"-{deparse_expr(val)}"
        case (
            sl.AddOp(a, b) | sl.SubOp(a, b) | sl.MulOp(a, b)
            | sl.DivOp(a, b) | sl.PowOp(a, b)
        ):
            return deparse_expr(a) + arithmetic_symbols[type(expr)] + deparse_expr(b)
        case sl.BoolOp(left, right):
            return f"{deparse_expr(left)} {expr.symbol} {deparse_expr(right)}"
        case sl.Par(content):
            return f"({deparse_expr(content)})"
        case sl.Call(func_name, arguments):
            arg_list = ", ".join([deparse_expr(arg) for arg in arguments])
            return f"{func_name}({arg_list})"
        case sl.PCall(dist_name, obs, params, suffix):
            par_list = ", ".join([deparse_expr(par) for par in params])
            return f"{dist_name}_{suffix}({deparse_expr(obs)} | {par_list})"
        case _:
            raise Exception("unable to deparse expression " + str(expr))


def deparse_truncation(truncation: sl.Truncation) -> str:
    """
    Example: `T[0, ]`, `T[cp_1, MAXX]`
    """
    lower, upper = truncation
    lstr = deparse_expr(lower) if lower is not None else ""
    ustr = deparse_expr(upper) if upper is not None else ""
    return f"T[{lstr}, {ustr}]"


def deparse_model(model: sl.StanModel) -> str:
    """
    The blocks of a Stan model, in the order required by Stan.
    Optional blocks that are None are left out.
    """
    blocks = [
        model.functions,
        model.data,
        model.transformed_data,
        model.parameters,
        model.transformed_parameters,
        model.model,
        model.generated_quantities,
    ]
    block_strs = [
        f"{name} {deparse_stmt(sl.Scope(content))}"
        for name, content in zip(sl.model_block_names, blocks)
        if content is not None
    ]
    return "\n\n".join(block_strs)


def deparse_stmt(stmt: sl.Stmt) -> str:
    """
    transform a Stmt into Stan code. Comments are appended
    to the statement as `/* ... */`
    """
    match stmt:
        case sl.StanModel():
            return deparse_model(stmt)
        case sl.EmptyStmt():
            code_str = ""
        case sl.Decl(sl.Var(var_type, name)):
            code_str = f"{deparse_decl(var_type)} {name};"
        case sl.DeclAssign(sl.Var(var_type, name), rhs):
            code_str = f"{deparse_decl(var_type)} {name} = {deparse_expr(rhs)};"
        case sl.Assign(lhs, rhs):
            code_str = f"{deparse_expr(lhs)} = {deparse_expr(rhs)};"
        case sl.AddAssign(lhs, rhs):
            code_str = f"{deparse_expr(lhs)} += {deparse_expr(rhs)};"
        case sl.Sample(lhs, rhs, truncation):
            code_str = f"{deparse_expr(lhs)} ~ {deparse_expr(rhs)}"
            if truncation is not None:
                code_str += " " + deparse_truncation(truncation)
            code_str += ";"
        case sl.Scope(content, indentation):
            content_str = "\n".join([deparse_stmt(s) for s in content])
            code_str = f"{{\n{util.indent(content_str, indentation)}\n}}"
        case sl.ForLoop(index, sequence, content):
            code_str = (
                f"for ( {deparse_expr(index)} in {deparse_expr(sequence)} ) "
                + deparse_stmt(content)
            )
        case sl.IfStatement(condition, content):
            code_str = f"if ( {deparse_expr(condition)} ) {deparse_stmt(content)}"
        case _:
            raise Exception("unable to deparse statement " + str(stmt))

    spacing = " " if len(code_str) > 0 else ""
    for comment in stmt.comment:
        code_str += spacing + f"/* {comment} */"
        spacing = "\n"
    return code_str
