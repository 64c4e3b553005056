"""
a model of the subset of the Stan programming language
that is needed to write segmented regression models
"""
from dataclasses import dataclass, field
from typing import Optional, ClassVar, Sequence, Literal
from abc import ABC


@dataclass
class Expr(ABC):
    """abstract base class for Stan expressions"""

    def __mul__(self, other):
        return MulOp(self, other)

    def __add__(self, other):
        return AddOp(self, other)

    def __sub__(self, other):
        return SubOp(self, other)

    def __truediv__(self, other):
        return DivOp(self, other)

    def __xor__(self, other):
        return PowOp(self, other)

    def idx(self, other):
        """
        Implementing __getitem__ is too confusing.
        """
        return IndexOp(self, other)


@dataclass  # type: ignore[misc]
class Type(ABC):
    """
    abstract base class for a Stan type.
    """

    data: bool = field(kw_only=True, default=False)

    def is_discrete(self) -> bool:
        return False


@dataclass  # type: ignore[misc]
class Stmt(ABC):
    comment: Optional[str | list[str]] = field(kw_only=True, default=None)

    def __post_init__(self):
        match self.comment:
            case None:
                self.comment = []
            case str():
                self.comment = [self.comment]
            case _:
                pass


@dataclass  # type: ignore[misc]
class BoundedType(Type):
    lower: Optional[Expr] = field(kw_only=True, default=None)
    upper: Optional[Expr] = field(kw_only=True, default=None)


"""
derived Stan types
"""


@dataclass
class Real(BoundedType):
    pass


@dataclass
class Int(BoundedType):
    def is_discrete(self) -> bool:
        return True


@dataclass
class Vector(BoundedType):
    n: Expr


@dataclass
class Simplex(Type):
    n: Expr


@dataclass
class Array(Type):
    base: Type
    shape: Expr | tuple[Expr, ...]

    def __post_init__(self) -> None:
        if isinstance(self.shape, Expr):
            self.shape = (self.shape,)

    def is_discrete(self) -> bool:
        return self.base.is_discrete()


"""
Stan expressions
"""


@dataclass
class LiteralInt(Expr):
    val: int
    literal_type: ClassVar[Type] = Int()


@dataclass
class LiteralReal(Expr):
    val: float
    literal_type: ClassVar[Type] = Real()


@dataclass
class LiteralVector(Expr):
    elts: Sequence[Expr]


@dataclass
class Var(Expr):
    """
    a Stan variable

    Example: `real x`
    """

    var_type: Type
    name: str


@dataclass
class Range(Expr):
    """
    a range defined with the : operator

    Example: `1:10`
    """

    start: Optional[Expr]
    stop: Optional[Expr]


@dataclass
class IndexOp(Expr):
    """
    indexing of a Stan variable

    Example: `x[1]`
    """

    var: Expr
    index: Expr


@dataclass
class Negate(Expr):
    """
    Unary minus operator

    Example: `-x`
    """

    val: Expr


@dataclass
class MulOp(Expr):
    """
    multiplication operator

    Example: `2 * 3`
    """

    left: Expr
    right: Expr


@dataclass
class AddOp(Expr):
    """
    addition operator

    Example: `2 + 3`
    """

    left: Expr
    right: Expr


@dataclass
class SubOp(Expr):
    """
    subtraction operator

    Example: `2 - 3`
    """

    left: Expr
    right: Expr


@dataclass
class DivOp(Expr):
    """
    division operator

    Example `1 / 2`
    """

    num: Expr
    den: Expr


@dataclass
class PowOp(Expr):
    """
    Raise an expression to a power

    Example: `x^y`
    """

    base: Expr
    exponent: Expr


@dataclass
class BoolOp(Expr):
    """
    base class of the comparison and logical operators. In models these
    only appear in gates like `(x[i] < cp_1)`, in hypotheses they
    define the tested statement.
    """

    left: Expr
    right: Expr
    symbol: ClassVar[str]


@dataclass
class EqOp(BoolOp):
    """
    equality operator. Hypotheses use this node for the
    point hypothesis `a = b`
    """

    symbol = "=="


@dataclass
class NeqOp(BoolOp):
    symbol = "!="


@dataclass
class LeOp(BoolOp):
    """
    less than operator

    Example: `x[i] < cp_1`
    """

    symbol = "<"


@dataclass
class LeEqOp(BoolOp):
    symbol = "<="


@dataclass
class GrOp(BoolOp):
    symbol = ">"


@dataclass
class GrEqOp(BoolOp):
    symbol = ">="


@dataclass
class LogicOrOp(BoolOp):
    """
    logical or. The formula parser also uses this node for the
    `|` in `y | weights(w)` and `(1 | id)`
    """

    symbol = "||"


@dataclass
class LogicAndOp(BoolOp):
    symbol = "&&"


@dataclass
class Par(Expr):
    """
    parentheses

    Example: `(1 + 2) * 3`
    """

    content: Expr


@dataclass
class Call(Expr):
    """
    object representing a function call

    Example `fmin(x, cp_1)`
    """

    func_name: str
    arguments: Expr | list[Expr]

    def __post_init__(self) -> None:
        if isinstance(self.arguments, Expr):
            self.arguments = [self.arguments]


DistSuffix = Literal["lpdf", "lpmf", "lcdf", "lccdf"]


@dataclass
class PCall(Expr):
    """
    object representing a call of a probability function

    Example `normal_lpdf(y[i] | mu, sigma)`
    """

    dist_name: str
    obs: Expr
    parameters: Expr | list[Expr]
    suffix: DistSuffix

    def __post_init__(self) -> None:
        if isinstance(self.parameters, Expr):
            self.parameters = [self.parameters]


"""
Statements in the Stan language
"""


@dataclass
class EmptyStmt(Stmt):
    """
    Empty Stan statement
    """

    pass


@dataclass
class Decl(Stmt):
    """
    object representing an uninitialized declaration

    Example: `real x;`, `vector[N] mu;`
    """

    var: Var


@dataclass
class DeclAssign(Stmt):
    """
    object representing a declaration-assignment

    Example: `real x_2 = x_1;`
    """

    var: Var
    rhs: Expr


@dataclass
class Assign(Stmt):
    """
    object representing an assignment

    Example: `mu[i] = int_1;`
    """

    lhs: Expr
    rhs: Expr


@dataclass
class AddAssign(Stmt):
    """
    addition-assignment

    Example `target += w[i] * normal_lpdf(y[i] | mu[i], sigma[i]);`
    """

    lhs: Expr
    rhs: Expr


Truncation = tuple[Optional[Expr], Optional[Expr]]


@dataclass
class Sample(Stmt):
    """
    object representing a sampling statement with optional truncation

    Example: `x ~ normal(0, 1);`, `sigma_1 ~ normal(0, SDY) T[0, ];`
    """

    lhs: Expr
    rhs: Call
    truncation: Optional[Truncation] = None


@dataclass
class Scope(Stmt):
    """
    scoped statements
    """

    content: list[Stmt]
    indentation: int = 4


@dataclass
class ForLoop(Stmt):
    """
    a for loop in Stan.

    Example: `for ( i in 1:N ) { mu[i] = int_1; }`
    """

    index: Var
    sequence: Expr
    content: Stmt


@dataclass
class IfStatement(Stmt):
    """
    Stan if statement

    Example: `if ( i > 1 ) { ... }`
    """

    condition: Expr
    content: Stmt


## Definition of a general Stan model

model_block_names = [
    "functions",
    "data",
    "transformed data",
    "parameters",
    "transformed parameters",
    "model",
    "generated quantities",
]


@dataclass
class StanModel(Stmt):
    """
    object representing a Stan model.
    """

    functions: list[Stmt] | None
    data: list[Stmt]
    transformed_data: list[Stmt] | None
    parameters: list[Stmt]
    transformed_parameters: list[Stmt] | None
    model: list[Stmt]
    generated_quantities: list[Stmt] | None


# some convenience functions for generating often-used values/patterns


def one():
    return LiteralInt(1)


def izero():
    return LiteralInt(0)


def rzero():
    return LiteralReal(0.0)


def intVar(name: str):
    return Var(Int(), name)


def realVar(name: str):
    return Var(Real(), name)


def comment(line: str) -> Stmt:
    """
    short-hand for an empty statement with a comment.
    Used to add comment lines to code blocks.
    """
    return EmptyStmt(comment=line)


def is_literal(expr: Expr) -> bool:
    return isinstance(expr, (LiteralInt, LiteralReal))
