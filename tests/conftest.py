"""Pytest configuration and fixtures for ivlate tests."""

import numpy as np
import pandas as pd
import pytest


def simulate_iv(n, seed, late=2.0):
    """Binary-instrument DGP with a covariate-dependent instrument.

    Z = Bernoulli(logistic(0.2 + 0.5 x1 - 0.4 x2))
    D = 1[-0.3 + 1.2 Z + 0.4 x1 + v > 0]
    Y = 1 + late * D + 0.8 x1 + 0.5 x2 + 0.7 v + e

    The effect is constant, so the LATE equals `late`.
    """
    rng = np.random.default_rng(seed)
    x1 = rng.normal(0, 1, n)
    x2 = rng.binomial(1, 0.4, n)
    q = 1 / (1 + np.exp(-(0.2 + 0.5 * x1 - 0.4 * x2)))
    z = rng.binomial(1, q)
    v = rng.normal(0, 1, n)
    d = (-0.3 + 1.2 * z + 0.4 * x1 + v > 0).astype(int)
    y = 1 + late * d + 0.8 * x1 + 0.5 * x2 + 0.7 * v + rng.normal(0, 0.5, n)
    return pd.DataFrame(dict(Y=y, D=d, Z=z, x1=x1, x2=x2, q_true=q))


@pytest.fixture
def seed():
    """Random seed for reproducibility."""
    return 42


@pytest.fixture
def iv_data(seed):
    """Moderate sample (n = 400) for fast bootstrap tests."""
    return simulate_iv(400, seed)


@pytest.fixture
def large_iv_data(seed):
    """Large sample (n = 20000) for consistency checks; true LATE = 2."""
    return simulate_iv(20000, seed)


@pytest.fixture
def formula():
    return "Z ~ x1 + x2"


@pytest.fixture
def ordered_data(seed):
    """Ordered treatment (years of schooling) with a binary instrument."""
    rng = np.random.default_rng(seed)
    n = 2000
    x = rng.normal(0, 1, n)
    z = rng.binomial(1, 1 / (1 + np.exp(-0.5 * x)))
    educ = np.clip(np.round(12 + 1.0 * z + 0.5 * x + rng.normal(0, 2, n)), 6, 20)
    lwage = 1.5 + 0.08 * educ + 0.2 * x + rng.normal(0, 0.3, n)
    return pd.DataFrame(dict(lwage=lwage, educ=educ, nearc4=z, x=x))
