# build a change point model, generate and compile the Stan model

from .model import CpModel

# results of fitting a model to data

from .fit import CpFit

# compare fitted models with PSIS-LOO or WAIC

from .compare import loo_compare, waic_compare
