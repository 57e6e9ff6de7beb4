"""
Kappa weighting estimators of the LATE

Abadie (2003) kappa weights and the weighting estimators compared by
Sloczynski, Uysal & Wooldridge, as reported by Stata's ``kappalate``.
For a binary treatment D, binary instrument Z and score q = P(Z=1|X):

    kappa   = 1 - D(1-Z)/(1-q) - (1-D)Z/q
    kappa_1 = D (Z - q) / (q(1-q))
    kappa_0 = (1-D)(q - Z) / (q(1-q))

Each has expectation equal to the complier share. The estimators
differ in which one normalizes the complier mean contrast:

    tau_a   = [E(kappa_1 Y) - E(kappa_0 Y)] / E(kappa)
    tau_a1  = [E(kappa_1 Y) - E(kappa_0 Y)] / E(kappa_1)
    tau_a0  = [E(kappa_1 Y) - E(kappa_0 Y)] / E(kappa_0)
    tau_a10 = E(kappa_1 Y) / E(kappa_1) - E(kappa_0 Y) / E(kappa_0)

tau_u is the normalized (IPSW) estimator of ipsw.py.
"""

import numpy as np

from .errors import DataError, EstimationError
from .ipsw import ipsw_estimate
from .propensity import fit_propensity
from .utils import as_float, check_binary, is_negligible, require_columns

ESTIMATORS = ("tau_a", "tau_a1", "tau_a0", "tau_a10", "tau_u")


def kappa_weights(d, z, p_hat):
    """
    Abadie kappa weights.

    Parameters
    ----------
    d : ndarray, shape (n,)
        Binary treatment.
    z : ndarray, shape (n,)
        Binary instrument.
    p_hat : ndarray, shape (n,)
        Instrument propensity scores.

    Returns
    -------
    kappa, kappa_1, kappa_0 : ndarrays, shape (n,)
    """
    q = p_hat
    kappa = 1 - d * (1 - z) / (1 - q) - (1 - d) * z / q
    kappa_1 = d * (z - q) / (q * (1 - q))
    kappa_0 = (1 - d) * (q - z) / (q * (1 - q))
    return kappa, kappa_1, kappa_0


def _ratio(num, weights, name):
    den = np.mean(weights)
    if is_negligible(den, np.mean(np.abs(weights))):
        raise EstimationError(f"normalizing mean for {name} is {den!r}")
    return num / den


def kappa_estimates(y, d, z, p_hat):
    """
    All four kappa weighting estimates from arrays.

    Returns
    -------
    dict with keys tau_a, tau_a1, tau_a0, tau_a10
    """
    kappa, k1, k0 = kappa_weights(d, z, p_hat)
    m1y, m0y = np.mean(k1 * y), np.mean(k0 * y)

    return dict(
        tau_a=_ratio(m1y - m0y, kappa, "tau_a"),
        tau_a1=_ratio(m1y - m0y, k1, "tau_a1"),
        tau_a0=_ratio(m1y - m0y, k0, "tau_a0"),
        tau_a10=_ratio(m1y, k1, "tau_a10") - _ratio(m0y, k0, "tau_a10"),
    )


def kappalate(data, formula, outcome="Y", treatment="D", **fit_kw):
    """
    Kappa weighting and normalized IPSW estimates of the LATE.

    Parameters
    ----------
    data : DataFrame
    formula : str
        ``"Z ~ covariates"`` for the instrument propensity score.
    outcome, treatment : str
        Field names; the treatment must be binary.
    **fit_kw
        Passed to fit_propensity.

    Returns
    -------
    dict with keys:
        tau_a, tau_a1, tau_a0, tau_a10 : kappa weighting estimates
        tau_u                          : normalized estimate (equals IPSW)
        p_hat                          : fitted propensity scores
    """
    p_hat = fit_propensity(data, formula, **fit_kw)
    instrument = formula.split("~", 1)[0].strip()

    require_columns(data, [outcome, treatment])
    y = as_float(data, outcome)
    d = as_float(data, treatment)
    z = as_float(data, instrument)
    try:
        check_binary(d, treatment)
    except DataError as exc:
        raise DataError(
            f"kappa weighting requires a binary treatment ({exc}); use "
            f"ipsw_estimate for an ordered treatment"
        ) from exc

    out = kappa_estimates(y, d, z, p_hat)
    out["tau_u"] = ipsw_estimate(data, p_hat, outcome, treatment, instrument)
    out["p_hat"] = p_hat
    return out


def kappa_estimator(name, formula, outcome="Y", treatment="D", **fit_kw):
    """
    Data -> float callable for one estimator, e.g. to pass to bootstrap_se.

    Parameters
    ----------
    name : str
        One of ESTIMATORS.
    """
    if name not in ESTIMATORS:
        raise ValueError(f"unknown estimator {name!r}; choose from {ESTIMATORS}")

    def _estimate(data):
        return float(kappalate(data, formula, outcome, treatment, **fit_kw)[name])

    return _estimate
