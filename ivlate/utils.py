"""
Shared utility functions used across the estimator modules.
"""

import numpy as np
import pandas as pd
import formulaic

from .errors import DataError

ZERO_TOL = 1e-10


def ols_fit(X, y):
    """
    OLS estimation by least squares.

    Parameters
    ----------
    X : ndarray, shape (n, k)
        Design matrix (should include a constant column if an intercept is desired).
    y : ndarray, shape (n,)
        Outcome vector.

    Returns
    -------
    b : ndarray, shape (k,)
        Coefficient estimates  beta_hat = (X'X)^{-1} X'y.
    e : ndarray, shape (n,)
        Residuals  y - X @ b.
    """
    b = np.linalg.lstsq(X, y, rcond=None)[0]
    e = y - X @ b
    return b, e


def add_const(x):
    """
    Prepend a column of ones (intercept) to the design matrix.

    Parameters
    ----------
    x : ndarray
        1-d array or 2-d matrix of regressors.

    Returns
    -------
    X : ndarray, shape (n, k+1)
        Design matrix with leading ones column.
    """
    x = np.asarray(x, dtype=float)
    x = np.atleast_2d(x).T if x.ndim == 1 else x
    return np.column_stack([np.ones(x.shape[0]), x])


def is_negligible(value, scale, tol=ZERO_TOL):
    """
    True when `value` is zero up to rounding error.

    A difference of weighted means carries rounding error proportional to
    the means themselves, so `value` is compared with `tol * scale`, where
    `scale` is the magnitude of the terms that produced it. Non-finite
    values also count as negligible: they cannot serve as a denominator.
    """
    if not np.isfinite(value):
        return True
    return abs(value) <= tol * abs(scale)


def require_columns(data, columns):
    """Raise DataError unless every name in `columns` is a column of `data`."""
    if not isinstance(data, pd.DataFrame):
        raise DataError(
            f"dataset must be a pandas DataFrame, got {type(data).__name__}"
        )
    missing = [c for c in columns if c not in data.columns]
    if missing:
        raise DataError(f"dataset is missing required field(s): {missing}")
    if len(data) == 0:
        raise DataError("dataset is empty")


def as_float(data, column):
    """
    Column of `data` as a float64 array.

    Raises DataError if the column has missing or non-numeric values.
    """
    try:
        values = np.asarray(data[column], dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise DataError(f"field {column!r} is not numeric") from exc
    bad = np.flatnonzero(~np.isfinite(values))
    if bad.size:
        raise DataError(
            f"field {column!r} has non-finite value at row {int(bad[0])}"
        )
    return values


def check_binary(values, name):
    """Raise DataError unless `values` only takes the values 0 and 1."""
    bad = np.flatnonzero((values != 0) & (values != 1))
    if bad.size:
        raise DataError(
            f"field {name!r} must be coded 0/1; row {int(bad[0])} "
            f"has value {values[bad[0]]!r}"
        )


def model_matrix(data, formula):
    """
    Build response and design matrix from an R-style formula.

    The left-hand side is the binary response (the instrument), the
    right-hand side the covariates. Categorical terms such as
    ``C(region)`` are expanded into indicator columns.

    Parameters
    ----------
    data : DataFrame
        Dataset.
    formula : str
        Formula such as ``"Z ~ x1 + x2 + C(region)"``.

    Returns
    -------
    response : str
        Name of the left-hand-side field.
    y : ndarray, shape (n,)
        Response vector.
    X : ndarray, shape (n, k)
        Design matrix, including an intercept unless the formula drops it.
    columns : list of str
        Column names of X.
    """
    if not isinstance(formula, str):
        raise DataError(f"formula must be a string, got {type(formula).__name__}")
    if "~" not in formula:
        raise DataError(f"formula {formula!r} has no response (missing '~')")
    response = formula.split("~", 1)[0].strip()
    if not response:
        raise DataError(f"formula {formula!r} has an empty left-hand side")

    require_columns(data, [response])
    y = as_float(data, response)

    rhs = formula.split("~", 1)[1]
    try:
        mm = formulaic.model_matrix(rhs, data, na_action="raise")
    except Exception as exc:
        raise DataError(f"cannot build design matrix for {formula!r}: {exc}") from exc

    X = np.asarray(mm, dtype=np.float64)
    if X.shape[0] != len(data):
        raise DataError(
            f"design matrix has {X.shape[0]} rows, dataset has {len(data)}"
        )
    return response, y, X, list(mm.columns)
