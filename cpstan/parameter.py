"""
Parameters of a segmented model. The formula module creates the
parameters, and the prior module attaches a prior to each of them.
"""
from dataclasses import dataclass
from typing import Literal, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .prior import Prior


ParameterKind = Literal[
    "cp", "int", "slope", "sigma", "sigma_slope", "ar", "ar_slope", "cp_sd"
]


@dataclass
class Parameter:
    """
    A population-level parameter.

    `dpar` is the distributional parameter the parameter contributes to:
    "ct" for the central tendency, "sigma" for the residual scale and
    "ar1", "ar2", ... for autoregressive coefficients. Change points
    and the sd of varying change points have `dpar` set to None. For change
    points, `segment` is the index k of `cp_k`.
    """

    name: str
    kind: ParameterKind
    segment: int
    dpar: Optional[str] = None
    power: int = 1
    rel: bool = False
    prior: Optional["Prior"] = None

    def is_sampled(self) -> bool:
        """
        Sampled parameters are declared in the Stan parameters block.
        Fixed and equation parameters become transformed parameters.
        """
        return self.prior is None or self.prior.is_sampled()


@dataclass
class VaryingCp:
    """
    Varying (group-level) effects on change point `cp_{cp}`.
    The group-level deviations are `cp_{cp}_{group}` with
    population sd `cp_{cp}_sd`.
    """

    cp: int
    group: str

    @property
    def name(self) -> str:
        return f"cp_{self.cp}_{self.group}"

    @property
    def raw_name(self) -> str:
        return f"{self.name}_raw"

    @property
    def sd_name(self) -> str:
        return f"cp_{self.cp}_sd"

    @property
    def cp_name(self) -> str:
        return f"cp_{self.cp}"
