"""
ivlate -- instrument propensity-score weighting estimators of the LATE.

Each sub-module implements one piece of the estimator using only
numpy / scipy, with no black-box econometrics packages.
"""

from .errors import (
    IVLateError,
    DataError,
    FitError,
    EstimationError,
    ReplicateFailure,
)
from .propensity import fit_logit, fit_propensity, fit_propensity_model
from .ipsw import (
    weighted_sums,
    ipsw_components,
    ipsw_estimate,
    estimate_ipsw,
    wald_estimator,
)
from .kappa import kappalate, kappa_estimator
from .bootstrap import (
    B_DEFAULT,
    DEFAULT_SEED,
    BootstrapResult,
    bootstrap_statistic,
    bootstrap_se,
)
from . import propensity
from . import ipsw
from . import kappa
from . import bootstrap

__version__ = "0.1.0"
