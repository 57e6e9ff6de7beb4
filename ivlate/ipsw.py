"""
Instrument propensity-score weighting (IPSW)

Unconditional LATE (binary treatment) or average causal response
(ordered treatment) as the ratio of two normalized inverse-propensity
weighted contrasts:

    LATE = [ E_w(Y | Z=1) - E_w(Y | Z=0) ] / [ E_w(D | Z=1) - E_w(D | Z=0) ]

with weights Z/Q for the instrumented group and (1-Z)/(1-Q) for the
rest, Q = P(Z = 1 | X). The numerator is the reduced form, the
denominator the first stage. Also provides the unconditional Wald
estimator, to which IPSW reduces when Q is constant.
"""

import numpy as np

from .errors import DataError, EstimationError, FitError
from .propensity import fit_propensity
from .utils import (
    add_const,
    as_float,
    check_binary,
    is_negligible,
    ols_fit,
    require_columns,
)


def weighted_sums(y, d, z, p_hat):
    """
    The six inverse-propensity weighted sums.

    Parameters
    ----------
    y : ndarray, shape (n,)
        Outcome.
    d : ndarray, shape (n,)
        Treatment (binary or ordered).
    z : ndarray, shape (n,)
        Binary instrument.
    p_hat : ndarray, shape (n,)
        Instrument propensity scores in (0, 1).

    Returns
    -------
    dict with keys W0, W1, num0, num1, den0, den1
    """
    w1 = z / p_hat
    w0 = (1 - z) / (1 - p_hat)
    return dict(
        W0=np.sum(w0),
        W1=np.sum(w1),
        num0=np.sum(y * w0),
        num1=np.sum(y * w1),
        den0=np.sum(d * w0),
        den1=np.sum(d * w1),
    )


def _arrays(data, p_hat, outcome, treatment, instrument):
    require_columns(data, [outcome, treatment, instrument])
    y = as_float(data, outcome)
    d = as_float(data, treatment)
    z = as_float(data, instrument)
    check_binary(z, instrument)

    p_hat = np.asarray(p_hat, dtype=np.float64)
    if p_hat.shape != z.shape:
        raise DataError(
            f"propensity scores have shape {p_hat.shape}, dataset has "
            f"{len(z)} rows"
        )
    outside = np.flatnonzero(~((p_hat > 0) & (p_hat < 1)))
    if outside.size:
        i = int(outside[0])
        raise FitError(
            f"propensity score at row {i} is {p_hat[i]!r}, outside (0, 1)"
        )
    return y, d, z, p_hat


def ipsw_components(data, p_hat, outcome="Y", treatment="D", instrument="Z"):
    """
    IPSW estimate together with its reduced form and first stage.

    Parameters
    ----------
    data : DataFrame
        Dataset with outcome, treatment and instrument fields.
    p_hat : ndarray, shape (n,)
        Fitted instrument propensity scores aligned with `data`.
    outcome, treatment, instrument : str
        Field names.

    Returns
    -------
    dict with keys:
        estimate     : reduced_form / first_stage
        reduced_form : weighted effect of Z on Y
        first_stage  : weighted effect of Z on D
        sums         : the weighted sums (see weighted_sums)

    Raises
    ------
    EstimationError
        All rows share one instrument value, or the first stage is zero
        up to rounding (e.g. a constant treatment).
    """
    y, d, z, p_hat = _arrays(data, p_hat, outcome, treatment, instrument)
    s = weighted_sums(y, d, z, p_hat)

    if s["W1"] == 0 or s["W0"] == 0:
        value = 0 if s["W1"] == 0 else 1
        raise EstimationError(
            f"no rows with {instrument} == {value}; the weighted contrast "
            f"is undefined"
        )

    num = s["num1"] / s["W1"] - s["num0"] / s["W0"]
    d1, d0 = s["den1"] / s["W1"], s["den0"] / s["W0"]
    den = d1 - d0
    if is_negligible(den, max(abs(d1), abs(d0))):
        raise EstimationError(
            f"first stage of {treatment} on {instrument} is {den!r}; "
            f"the LATE ratio is undefined"
        )

    return dict(estimate=num / den, reduced_form=num, first_stage=den, sums=s)


def ipsw_estimate(data, p_hat, outcome="Y", treatment="D", instrument="Z"):
    """
    IPSW estimate of the unconditional LATE / ACR.

    Pure function of its inputs: the same data and scores always give the
    same float.

    Parameters
    ----------
    data : DataFrame
    p_hat : ndarray, shape (n,)
        Fitted instrument propensity scores.
    outcome, treatment, instrument : str
        Field names.

    Returns
    -------
    float
    """
    return float(
        ipsw_components(data, p_hat, outcome, treatment, instrument)["estimate"]
    )


def estimate_ipsw(data, formula, outcome="Y", treatment="D", **fit_kw):
    """
    Fit the propensity model and compute the IPSW estimate.

    Parameters
    ----------
    data : DataFrame
    formula : str
        ``"Z ~ covariates"``; the left-hand side names the instrument.
    outcome, treatment : str
        Field names.
    **fit_kw
        Passed to fit_propensity (max_iter, tol).

    Returns
    -------
    float
    """
    p_hat = fit_propensity(data, formula, **fit_kw)
    instrument = formula.split("~", 1)[0].strip()
    return ipsw_estimate(data, p_hat, outcome, treatment, instrument)


def wald_estimator(y, d, z):
    """
    Wald (ratio) IV estimator without covariates.

    beta_IV = Cov(y, Z) / Cov(D, Z)  =  Reduced Form / First Stage

    Parameters
    ----------
    y : ndarray, shape (n,)
    d : ndarray, shape (n,)
    z : ndarray, shape (n,)
        The instrument.

    Returns
    -------
    dict with keys:
        beta_iv       : IV estimate
        reduced_form  : slope of y on Z
        first_stage   : slope of D on Z
    """
    z = np.asarray(z, dtype=float)
    if np.all(z == z[0]):
        raise EstimationError("instrument is constant; the Wald ratio is undefined")
    Z = add_const(z)
    b_rf = ols_fit(Z, np.asarray(y, dtype=float))[0]
    b_fs = ols_fit(Z, np.asarray(d, dtype=float))[0]
    # group means of D are b_fs[0] and b_fs[0] + b_fs[1]
    if is_negligible(b_fs[1], max(abs(b_fs[0]), abs(b_fs[0] + b_fs[1]))):
        raise EstimationError("first stage is zero; the Wald ratio is undefined")
    return dict(
        beta_iv=b_rf[1] / b_fs[1],
        reduced_form=b_rf[1],
        first_stage=b_fs[1],
    )
