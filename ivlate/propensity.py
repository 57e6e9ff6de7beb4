"""
Instrument propensity scores -- logit MLE

Fits P(Z = 1 | X) by maximum likelihood (binomial GLM, logit link) using
Newton-Raphson / IRLS, the same algorithm behind R's glm() and Stata's
logit. Collinear covariates are dropped before fitting, so a
rank-deficient design still yields fitted probabilities.
"""

import logging

import numpy as np
from scipy import linalg

from .errors import FitError
from .utils import check_binary, model_matrix

logger = logging.getLogger(__name__)

MAX_ITER = 100
TOL = 1e-10
PROB_EPS = 1e-12
RANK_TOL = 1e-7


def logistic(z):
    """Logistic (sigmoid) CDF: 1 / (1 + exp(-z))."""
    return 1 / (1 + np.exp(-np.clip(z, -500, 500)))


def _deviance(y, p):
    p = np.clip(p, PROB_EPS, 1 - PROB_EPS)
    return -2 * np.sum(y * np.log(p) + (1 - y) * np.log(1 - p))


def independent_columns(X, tol=RANK_TOL):
    """
    Indices of a maximal linearly independent subset of the columns of X.

    Uses a column-pivoted QR decomposition; a column is kept when its
    pivot exceeds `tol` times the largest pivot. Fitted values do not
    depend on which member of a collinear set is dropped.

    Parameters
    ----------
    X : ndarray, shape (n, k)
    tol : float

    Returns
    -------
    keep : ndarray of int
        Sorted column indices.
    """
    if X.shape[1] == 0:
        return np.arange(0)
    _, R, piv = linalg.qr(X, mode="economic", pivoting=True)
    diag = np.abs(np.diag(R))
    if diag.size == 0 or diag[0] == 0:
        return np.arange(0)
    rank = int(np.sum(diag > tol * diag[0]))
    return np.sort(piv[:rank])


def fit_logit(X, y, start=None, max_iter=MAX_ITER, tol=TOL):
    """
    Logit MLE via Newton-Raphson (iteratively reweighted least squares).

    Parameters
    ----------
    X : ndarray, shape (n, k)
        Design matrix (with constant).
    y : ndarray, shape (n,)
        Binary outcome (0/1).
    start : ndarray or None
        Starting values for the full coefficient vector. Defaults to zeros.
    max_iter : int
        Maximum number of Newton steps.
    tol : float
        Convergence tolerance on the relative change in deviance.

    Returns
    -------
    dict with keys:
        beta      : MLE coefficient vector (NaN for dropped collinear columns)
        p_hat     : predicted probabilities
        nll       : negative log-likelihood at optimum
        converged : bool
        n_iter    : number of Newton steps taken
        rank      : rank of the design matrix
        dropped   : indices of columns dropped as collinear
    """
    X = np.asarray(X, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    k = X.shape[1]

    keep = independent_columns(X)
    dropped = np.setdiff1d(np.arange(k), keep)
    if dropped.size:
        logger.debug("dropping collinear design columns %s", dropped.tolist())
    Xk = X[:, keep]

    b = np.zeros(len(keep)) if start is None else np.asarray(start, float)[keep]
    p = logistic(Xk @ b)
    dev = _deviance(y, p)
    converged = False
    it = 0

    for it in range(1, max_iter + 1):
        w = p * (1 - p)
        # Newton step: (X' W X)^{-1} X'(y - p)
        hess = Xk.T @ (Xk * w[:, None])
        grad = Xk.T @ (y - p)
        try:
            step = linalg.solve(hess, grad, assume_a="pos")
        except (linalg.LinAlgError, ValueError):
            step = np.linalg.lstsq(hess, grad, rcond=None)[0]
        b = b + step
        p = logistic(Xk @ b)
        dev_new = _deviance(y, p)
        if abs(dev_new - dev) / (abs(dev_new) + 0.1) < tol:
            dev = dev_new
            converged = True
            break
        dev = dev_new

    beta = np.full(k, np.nan)
    beta[keep] = b
    logger.debug("logit fit: converged=%s after %d iterations, deviance=%.6f",
                 converged, it, dev)

    return dict(
        beta=beta,
        p_hat=p,
        nll=dev / 2,
        converged=converged,
        n_iter=it,
        rank=len(keep),
        dropped=dropped,
    )


def check_interior(p_hat, eps=PROB_EPS):
    """
    Raise FitError if any propensity score is numerically 0 or 1.

    Such a score makes an inverse-propensity weight infinite.
    """
    p_hat = np.asarray(p_hat, dtype=np.float64)
    bad = np.flatnonzero(~((p_hat > eps) & (p_hat < 1 - eps)))
    if bad.size:
        i = int(bad[0])
        raise FitError(
            f"propensity score at row {i} is {p_hat[i]!r}; weights require "
            f"scores strictly inside (0, 1) ({bad.size} row(s) affected)"
        )


def fit_propensity_model(data, formula, max_iter=MAX_ITER, tol=TOL):
    """
    Fit the instrument propensity model described by `formula`.

    Parameters
    ----------
    data : DataFrame
        Dataset containing the instrument and covariates.
    formula : str
        ``"Z ~ x1 + x2 + ..."`` -- instrument on the left, covariates on
        the right.
    max_iter, tol
        Passed to fit_logit.

    Returns
    -------
    dict
        The fit_logit result plus ``response`` (instrument name) and
        ``columns`` (design column names).

    Raises
    ------
    DataError
        Instrument not coded 0/1, or a field is missing.
    FitError
        Instrument is constant, the solver did not converge, or a fitted
        score lies on the boundary.
    """
    response, z, X, columns = model_matrix(data, formula)
    check_binary(z, response)
    if np.all(z == z[0]):
        raise FitError(
            f"instrument {response!r} is constant ({z[0]:g} in all "
            f"{len(z)} rows); the propensity model is not identified"
        )

    fit = fit_logit(X, z, max_iter=max_iter, tol=tol)
    if not fit["converged"]:
        raise FitError(
            f"logit for {response!r} did not converge in {max_iter} iterations"
        )
    check_interior(fit["p_hat"])

    fit["response"] = response
    fit["columns"] = columns
    return fit


def fit_propensity(data, formula, max_iter=MAX_ITER, tol=TOL):
    """
    Instrument propensity scores Q_i = P(Z_i = 1 | X_i).

    Parameters
    ----------
    data : DataFrame
    formula : str
        ``"Z ~ covariates"``.

    Returns
    -------
    p_hat : ndarray, shape (n,)
        In-sample fitted probabilities, aligned with the rows of `data`.
    """
    return fit_propensity_model(data, formula, max_iter=max_iter, tol=tol)["p_hat"]
