"""
Parser for the formula, prior and hypothesis mini-language.
Expressions are parsed into Stan-language AST nodes (see stanlang.py),
such that they can be deparsed to Stan code or evaluated with numpy.
"""
from dataclasses import dataclass
from typing import Optional

import ply.yacc as yacc

from . import stanlang as sl
from .lexer import tokens, lexer  # noqa: F401  (ply needs tokens in this module)


@dataclass
class TildeSpec:
    """
    A segment formula `lhs ~ rhs`. The left-hand side is optional.
    """

    lhs: Optional[sl.Expr]
    rhs: sl.Expr


@dataclass
class TruncatedSpec:
    """
    A (distribution) expression followed by a truncation `T(lower, upper)`.
    Either bound can be left empty.
    """

    expr: sl.Expr
    lower: Optional[sl.Expr]
    upper: Optional[sl.Expr]


start = "spec"


def p_spec(p):
    """
    spec : formula
         | truncated
         | expression
    """
    p[0] = p[1]


def p_formula(p):
    """
    formula : expression TILDE expression
            | TILDE expression
    """
    if len(p) == 4:
        p[0] = TildeSpec(p[1], p[3])
    else:
        p[0] = TildeSpec(None, p[2])


def p_truncated(p):
    """
    truncated : expression ID LPAREN bound COMMA bound RPAREN
              | expression ID LBRACKET bound COMMA bound RBRACKET
    """
    if p[2] != "T":
        raise SyntaxError(f"expected truncation 'T(lower, upper)', found '{p[2]}'")
    p[0] = TruncatedSpec(p[1], p[4], p[6])


def p_bound(p):
    """
    bound : expression
          | empty
    """
    p[0] = p[1]


def p_empty(p):
    "empty :"
    p[0] = None


# expressions

"""
We currently have the following hierarchy of expressions:
    expression
    disjunction
    conjunction
    comparison
    arithmetic
    term
    unary
    power
    primary
"""


def p_expression(p):
    "expression : disjunction"
    p[0] = p[1]


def p_disjunction(p):
    """
    disjunction : disjunction PIPE conjunction
                | conjunction
    """
    if len(p) == 4:
        p[0] = sl.LogicOrOp(p[1], p[3])
    else:
        p[0] = p[1]


def p_conjunction(p):
    """
    conjunction : conjunction AMP comparison
                | comparison
    """
    if len(p) == 4:
        p[0] = sl.LogicAndOp(p[1], p[3])
    else:
        p[0] = p[1]


def p_comparison(p):
    """
    comparison : arithmetic LESS arithmetic
               | arithmetic GREATER arithmetic
               | arithmetic LESSEQUALS arithmetic
               | arithmetic GREATEREQUALS arithmetic
               | arithmetic EQUALS arithmetic
               | arithmetic ASSIGN arithmetic
               | arithmetic NOTEQUALS arithmetic
    """
    op_dispatch = {
        "<": sl.LeOp,
        ">": sl.GrOp,
        "<=": sl.LeEqOp,
        ">=": sl.GrEqOp,
        "==": sl.EqOp,
        "=": sl.EqOp,
        "!=": sl.NeqOp,
    }
    p[0] = op_dispatch[p[2]](p[1], p[3])


def p_comparison_arithmetic(p):
    "comparison : arithmetic"
    p[0] = p[1]


def p_arithmetic(p):
    """
    arithmetic : arithmetic PLUS term
               | arithmetic MINUS term
               | term
    """
    if len(p) == 2:
        p[0] = p[1]
    elif p[2] == "+":
        p[0] = sl.AddOp(p[1], p[3])
    else:
        p[0] = sl.SubOp(p[1], p[3])


def p_term(p):
    """
    term : term TIMES unary
         | term DIVIDE unary
         | unary
    """
    if len(p) == 2:
        p[0] = p[1]
    elif p[2] == "*":
        p[0] = sl.MulOp(p[1], p[3])
    else:
        p[0] = sl.DivOp(p[1], p[3])


def p_unary(p):
    """
    unary : MINUS unary
          | power
    """
    if len(p) == 3:
        p[0] = sl.Negate(p[2])
    else:
        p[0] = p[1]


def p_power(p):
    """
    power : primary POWER unary
          | primary
    """
    if len(p) == 4:
        p[0] = sl.PowOp(p[1], p[3])
    else:
        p[0] = p[1]


def p_primary_int(p):
    "primary : INT"
    p[0] = sl.LiteralInt(p[1])


def p_primary_real(p):
    "primary : REAL"
    p[0] = sl.LiteralReal(p[1])


def p_primary_id(p):
    "primary : ID"
    p[0] = sl.Var(sl.Real(), p[1])


def p_primary_call(p):
    """
    primary : ID LPAREN argument_list RPAREN
            | ID LPAREN RPAREN
    """
    args = p[3] if len(p) == 5 else []
    p[0] = sl.Call(p[1], args)


def p_primary_par(p):
    "primary : LPAREN expression RPAREN"
    p[0] = sl.Par(p[2])


def p_primary_index(p):
    "primary : primary LBRACKET expression RBRACKET"
    p[0] = sl.IndexOp(p[1], p[3])


def p_argument_list(p):
    """
    argument_list : expression
                  | expression COMMA argument_list
    """
    if len(p) == 2:
        p[0] = [p[1]]
    else:
        p[0] = [p[1]] + p[3]


# Error rule for syntax errors
def p_error(p):
    if p is None:
        raise SyntaxError("Syntax error at end of input")
    raise SyntaxError(f"Syntax error at '{p.value}' in '{p.lexer.lexdata}'")


# Build the parser
parser = yacc.yacc(debug=False, write_tables=False)


def parse(code: str) -> sl.Expr | TildeSpec | TruncatedSpec:
    """
    Parse a formula, prior or hypothesis string.

    Raises
    ------
    SyntaxError
        if the string can not be parsed.
    """
    if not code.strip():
        raise SyntaxError("can not parse an empty string")
    return parser.parse(code, lexer=lexer)


def parse_expr(code: str) -> sl.Expr:
    """Parse a string that must be a plain expression"""
    result = parse(code)
    if not isinstance(result, sl.Expr):
        raise SyntaxError(f"expected an expression, found '{code}'")
    return result


def parse_formula(code: str) -> TildeSpec:
    """Parse a segment formula like `y ~ 1 + x` or `~ 0 + x`"""
    result = parse(code)
    if not isinstance(result, TildeSpec):
        raise SyntaxError(f"a segment formula must contain '~', found '{code}'")
    return result
