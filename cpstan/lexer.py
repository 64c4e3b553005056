"""
Lexer for the mini-language used in segment formulas (`y ~ 1 + x`),
prior specifications (`normal(0, SDY) T(0, )`) and hypotheses
(`cp_1 > 30 & x_2 < x_1`).
"""
import ply.lex as lex

# List of token names.
tokens = [
    "REAL",
    "INT",
    "ID",
    "COMMA",
    "PLUS",
    "MINUS",
    "TIMES",
    "DIVIDE",
    "POWER",
    "TILDE",
    "PIPE",
    "AMP",
    "EQUALS",
    "NOTEQUALS",
    "LESSEQUALS",
    "GREATEREQUALS",
    "LESS",
    "GREATER",
    "ASSIGN",
    "LPAREN",
    "RPAREN",
    "LBRACKET",
    "RBRACKET",
]


# Regular expression rules for simple tokens
t_COMMA = r","
t_PLUS = r"\+"
t_MINUS = r"-"
t_TIMES = r"\*"
t_DIVIDE = r"/"
t_POWER = r"\^"
t_TILDE = r"~"
t_PIPE = r"\|\|?"
t_AMP = r"\&\&?"
t_EQUALS = r"=="
t_NOTEQUALS = r"!="
t_LESSEQUALS = r"<="
t_GREATEREQUALS = r">="
t_LESS = r"<"
t_GREATER = r">"
t_ASSIGN = r"="
t_LPAREN = r"\("
t_RPAREN = r"\)"
t_LBRACKET = r"\["
t_RBRACKET = r"\]"


def t_INT(t):
    r"\d+(?![\.eE\d])"
    t.value = int(t.value)
    return t


def t_REAL(t):
    r"(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?"
    t.value = float(t.value)
    return t


def t_ID(t):
    r"[a-zA-Z_][a-zA-Z_0-9]*"
    return t


# Define a rule so we can track line numbers
def t_newline(t):
    r"\n+"
    t.lexer.lineno += len(t.value)


# A string containing ignored characters (spaces, tabs and backticks)
t_ignore = " \t`"


# Error handling rule
def t_error(t):
    raise SyntaxError(f"Illegal character '{t.value[0]}' in '{t.lexer.lexdata}'")


# Build the lexer
lexer = lex.lex()
