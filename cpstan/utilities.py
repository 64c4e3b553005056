from pygments import highlight  # type: ignore
from pygments.lexers import StanLexer  # type: ignore
from pygments.formatters import HtmlFormatter  # type: ignore
from IPython.display import HTML, display  # type: ignore
from typing import Optional, Tuple, TypeVar, Any
import numpy as np


def indent(text: str, n: int) -> str:
    """indent a piece of text with spaces"""
    lines = text.split("\n")
    ind = " " * n
    ind_lines = [ind + line for line in lines]
    return "\n".join(ind_lines)


def show_stan_model(
    code: str, lines: Optional[Tuple[int, int]] = None, line_numbers: bool = False
) -> None:
    """
    Show stan model code with syntax highlighting in Jupyter notebooks
    """
    lns = "inline" if line_numbers else False
    f = 1  ## fist line number
    if lines is not None:
        f, l = lines
        code = "\n".join(code.split("\n")[f - 1 : l])
    formatter = HtmlFormatter(full=True, linenos=lns, linenostart=f)
    display(HTML(highlight(code, StanLexer(), formatter)))


GenericType = TypeVar("GenericType")


def flatten(xss: list[list[GenericType]]) -> list[GenericType]:
    return [x for xs in xss for x in xs]


def unique(xs: list[GenericType]) -> list[GenericType]:
    return sorted(list(set(xs)))


def unique_keep_order(xs: list[GenericType]) -> list[GenericType]:
    """remove duplicates, but keep the order of first occurrence"""
    seen = []
    for x in xs:
        if x not in seen:
            seen.append(x)
    return seen


def map_levels(values: Any) -> tuple[np.ndarray, list]:
    """
    Map the values of a grouping variable to integer indices 1, ..., G.
    The levels are sorted, and the returned list gives the level
    for each index (shifted by one).

    Example
    -------
    >>> map_levels(["b", "a", "b"])
    (array([2, 1, 2]), ['a', 'b'])
    """
    levels = unique(list(values))
    mapping = {x: i + 1 for i, x in enumerate(levels)}
    idx = np.array([mapping[x] for x in values], dtype=int)
    return idx, levels


def credible_interval(
    draws: np.ndarray, prob: float = 0.95, axis: int = 0
) -> tuple[np.ndarray, np.ndarray]:
    """
    equal-tailed credible interval with mass `prob`
    """
    if not 0.0 < prob < 1.0:
        raise ValueError(f"prob must be between 0 and 1, got {prob}")
    alpha = (1.0 - prob) / 2.0
    lower, upper = np.quantile(draws, [alpha, 1.0 - alpha], axis=axis)
    return lower, upper
