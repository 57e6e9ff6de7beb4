"""Tests for the instrument propensity score (logit MLE)."""

import numpy as np
import pandas as pd
import pytest
from scipy.optimize import minimize

from ivlate.errors import DataError, FitError
from ivlate.propensity import (
    fit_logit,
    fit_propensity,
    fit_propensity_model,
    independent_columns,
    logistic,
)
from ivlate.utils import add_const


def _nll_logit(b, X, y):
    p = np.clip(logistic(X @ b), 1e-15, 1 - 1e-15)
    return -np.sum(y * np.log(p) + (1 - y) * np.log(1 - p))


def _grad_logit(b, X, y):
    return -X.T @ (y - logistic(X @ b))


class TestFitLogit:
    """Newton / IRLS logit against an independent optimizer."""

    def test_matches_bfgs_optimum(self, iv_data):
        X = add_const(iv_data[["x1", "x2"]].to_numpy())
        z = iv_data["Z"].to_numpy(dtype=float)

        fit = fit_logit(X, z)
        ref = minimize(_nll_logit, np.zeros(3), args=(X, z), jac=_grad_logit,
                       method="BFGS", options={"gtol": 1e-9})

        assert fit["converged"]
        np.testing.assert_allclose(fit["beta"], ref.x, atol=1e-4)
        np.testing.assert_allclose(fit["p_hat"], logistic(X @ ref.x), atol=1e-5)
        assert fit["nll"] == pytest.approx(ref.fun, rel=1e-8)

    def test_score_equations_hold(self, iv_data):
        X = add_const(iv_data[["x1", "x2"]].to_numpy())
        z = iv_data["Z"].to_numpy(dtype=float)

        fit = fit_logit(X, z)
        np.testing.assert_allclose(X.T @ (z - fit["p_hat"]), 0, atol=1e-6)

    def test_intercept_only_gives_sample_share(self, iv_data):
        z = iv_data["Z"].to_numpy(dtype=float)
        fit = fit_logit(np.ones((len(z), 1)), z)
        np.testing.assert_allclose(fit["p_hat"], z.mean(), rtol=1e-8)

    def test_recovers_true_coefficients(self, large_iv_data):
        X = add_const(large_iv_data[["x1", "x2"]].to_numpy())
        z = large_iv_data["Z"].to_numpy(dtype=float)
        fit = fit_logit(X, z)
        np.testing.assert_allclose(fit["beta"], [0.2, 0.5, -0.4], atol=0.1)

    def test_deterministic(self, iv_data):
        X = add_const(iv_data[["x1", "x2"]].to_numpy())
        z = iv_data["Z"].to_numpy(dtype=float)
        a = fit_logit(X, z)
        b = fit_logit(X, z)
        assert np.array_equal(a["p_hat"], b["p_hat"])


class TestRankDeficiency:
    """Collinear covariates are dropped instead of aborting the fit."""

    def test_duplicate_column_same_fit(self, iv_data):
        X = add_const(iv_data[["x1", "x2"]].to_numpy())
        X_dup = np.column_stack([X, 2 * X[:, 1]])
        z = iv_data["Z"].to_numpy(dtype=float)

        full = fit_logit(X, z)
        dup = fit_logit(X_dup, z)

        assert dup["converged"]
        assert dup["rank"] == 3
        assert len(dup["dropped"]) == 1
        assert np.isnan(dup["beta"]).sum() == 1
        np.testing.assert_allclose(dup["p_hat"], full["p_hat"], atol=1e-7)

    def test_dummy_trap_in_formula(self, iv_data):
        df = iv_data.copy()
        df["x2_other"] = 1 - df["x2"]
        p = fit_propensity(df, "Z ~ x1 + x2 + x2_other")
        np.testing.assert_allclose(p, fit_propensity(df, "Z ~ x1 + x2"), atol=1e-7)

    def test_independent_columns(self):
        X = np.column_stack([np.ones(5), np.arange(5.0), 3 * np.arange(5.0)])
        assert len(independent_columns(X)) == 2


class TestFitPropensity:
    """Formula interface and failure modes."""

    def test_returns_aligned_scores(self, iv_data, formula):
        p = fit_propensity(iv_data, formula)
        assert p.shape == (len(iv_data),)
        assert np.all((p > 0) & (p < 1))

    def test_close_to_true_scores(self, large_iv_data, formula):
        p = fit_propensity(large_iv_data, formula)
        assert np.mean(np.abs(p - large_iv_data["q_true"])) < 0.02

    def test_model_reports_names(self, iv_data, formula):
        fit = fit_propensity_model(iv_data, formula)
        assert fit["response"] == "Z"
        assert fit["columns"] == ["Intercept", "x1", "x2"]

    def test_categorical_expansion(self, iv_data):
        df = iv_data.assign(region=np.tile(["a", "b", "c", "d"], len(iv_data) // 4))
        fit = fit_propensity_model(df, "Z ~ x1 + C(region)")
        assert len(fit["columns"]) == 5

    def test_non_binary_instrument(self, iv_data, formula):
        df = iv_data.copy()
        df.loc[7, "Z"] = 2
        with pytest.raises(DataError, match="row 7"):
            fit_propensity(df, formula)

    def test_constant_instrument(self, iv_data, formula):
        df = iv_data.assign(Z=1)
        with pytest.raises(FitError, match="constant"):
            fit_propensity(df, formula)

    def test_missing_instrument(self, iv_data):
        with pytest.raises(DataError, match="W"):
            fit_propensity(iv_data, "W ~ x1")

    def test_missing_covariate(self, iv_data):
        with pytest.raises(DataError):
            fit_propensity(iv_data, "Z ~ x1 + nonexistent")

    def test_formula_without_response(self, iv_data):
        with pytest.raises(DataError, match="~"):
            fit_propensity(iv_data, "x1 + x2")

    def test_empty_dataset(self, iv_data, formula):
        with pytest.raises(DataError, match="empty"):
            fit_propensity(iv_data.iloc[:0], formula)

    def test_perfect_separation(self):
        x = np.linspace(-3, 3, 60)
        df = pd.DataFrame(dict(Z=(x > 0).astype(int), x=x))
        with pytest.raises(FitError):
            fit_propensity(df, "Z ~ x")
