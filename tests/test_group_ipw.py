import numpy as np
import pandas as pd
import pytest
from scipy.integrate import quad
from scipy.special import expit
from scipy.stats import norm

from ipw_interference.exceptions import ConfigurationError
from ipw_interference.model.common import PropensityFit
from ipw_interference.model.ipw import (
    alpha_to_random_effect,
    allocation_probabilities,
    log_denominator,
    denominator,
    group_ipw,
)


COV_COLS = ["x1", "x2"]
COEFS = np.array([-0.2, 0.5, -0.4])


def _bernoulli_product(A, probs):
    return np.prod(np.where(A == 1, probs, 1 - probs))


def _brute_force_group(df, coefs, gamma, alpha):
    """Direct evaluation of the group estimates without a random effect"""
    out = np.full((df["neigh"].max(), 2), np.nan)
    for nn, grp in df.groupby("neigh"):
        X = np.column_stack([np.ones(len(grp)), grp["x1"], grp["x2"]])
        A = grp["A"].to_numpy()
        Y = grp["Y"].to_numpy()
        den = _bernoulli_product(A, expit(X @ coefs))

        lp = X @ gamma
        xi = alpha_to_random_effect(alpha, lp)
        probs = expit(lp + xi)
        for it in (0, 1):
            total = 0.0
            for i in np.flatnonzero(A == it):
                others = np.arange(len(A)) != i
                total += Y[i] * _bernoulli_product(A[others], probs[others])
            out[nn - 1, it] = total / den / len(A)
    return out


# ---------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------

@pytest.mark.parametrize("alpha", [0.1, 0.3, 0.5, 0.9])
def test_alpha_to_random_effect_hits_target(alpha):
    lp = np.array([-1.5, 0.2, 0.7, 2.0])
    xi = alpha_to_random_effect(alpha, lp)
    assert np.mean(expit(lp + xi)) == pytest.approx(alpha, abs=1e-9)


def test_alpha_to_random_effect_constant_predictor():
    # With identical units the intercept is logit(alpha) - lp
    xi = alpha_to_random_effect(0.25, np.full(5, 0.4))
    assert xi == pytest.approx(np.log(0.25 / 0.75) - 0.4, abs=1e-9)


@pytest.mark.parametrize("alpha", [0.0, 1.0, -0.2, 1.5])
def test_alpha_to_random_effect_rejects_out_of_range(alpha):
    with pytest.raises(ValueError):
        alpha_to_random_effect(alpha, np.zeros(3))


def test_allocation_probabilities():
    lp = np.array([0.0, 1.0, -1.0])
    probs, xi = allocation_probabilities(0.4, lp)
    np.testing.assert_allclose(probs, expit(lp + xi))
    assert probs.mean() == pytest.approx(0.4, abs=1e-9)


# ---------------------------------------------------------------------
# Denominator
# ---------------------------------------------------------------------

def test_log_denominator_without_random_effect_is_product():
    A = np.array([1, 0, 1, 1])
    lp = np.array([0.3, -0.5, 1.2, -0.1])
    expected = _bernoulli_product(A, expit(lp))
    assert denominator(A, lp, 0.0) == pytest.approx(expected, rel=1e-12)
    assert log_denominator(A, lp, 0.0) == pytest.approx(np.log(expected), rel=1e-12)


def test_denominator_integrates_random_effect():
    A = np.array([1, 0, 1, 0, 0])
    lp = np.array([0.3, -0.5, 1.2, -0.1, 0.4])
    re_var = 0.5
    sd = np.sqrt(re_var)

    expected, _ = quad(
        lambda b: _bernoulli_product(A, expit(lp + b)) * norm.pdf(b, scale=sd),
        -np.inf,
        np.inf,
    )
    assert denominator(A, lp, re_var) == pytest.approx(expected, rel=1e-6)


def test_denominator_small_variance_approaches_product():
    A = np.array([1, 0, 1])
    lp = np.array([0.2, -0.3, 0.9])
    product = _bernoulli_product(A, expit(lp))
    assert denominator(A, lp, 1e-8) == pytest.approx(product, rel=1e-4)


def test_log_denominator_large_cluster_is_finite():
    rng = np.random.default_rng(0)
    A = rng.integers(0, 2, size=2000)
    lp = rng.normal(size=2000)
    value = log_denominator(A, lp, 1.0)
    assert np.isfinite(value)
    assert value < 0


# ---------------------------------------------------------------------
# Group IPW
# ---------------------------------------------------------------------

def test_group_ipw_shape(small_data):
    res = group_ipw(small_data, COV_COLS, PropensityFit(coefs=COEFS, re_var=0.5), [0.3, 0.5, 0.7])
    assert res.yhat_group.shape == (4, 2, 3)
    assert np.all(np.isfinite(res.yhat_group))
    assert res.re_alpha is None


def test_group_ipw_matches_direct_computation(small_data):
    gamma = np.array([0.1, 0.3, -0.2])
    res = group_ipw(
        small_data,
        COV_COLS,
        PropensityFit(coefs=COEFS, re_var=0.0),
        [0.4],
        gamma_numer=gamma,
    )
    expected = _brute_force_group(small_data, COEFS, gamma, 0.4)
    np.testing.assert_allclose(res.yhat_group[:, :, 0], expected, rtol=1e-10)


def test_group_ipw_default_allocation_uses_propensity_coefficients(small_data):
    phi_hat = PropensityFit(coefs=COEFS, re_var=0.3)
    default = group_ipw(small_data, COV_COLS, phi_hat, [0.5])
    explicit = group_ipw(small_data, COV_COLS, phi_hat, [0.5], gamma_numer=COEFS)
    np.testing.assert_array_equal(default.yhat_group, explicit.yhat_group)


def test_group_ipw_keep_re_alpha(small_data):
    alpha = [0.2, 0.6]
    res = group_ipw(
        small_data,
        COV_COLS,
        PropensityFit(coefs=COEFS, re_var=0.5),
        alpha,
        keep_re_alpha=True,
    )
    assert res.re_alpha.shape == (4, 2)

    X = np.column_stack([np.ones(len(small_data)), small_data[COV_COLS].to_numpy()])
    lp = X @ COEFS
    first = small_data["neigh"].to_numpy() == 1
    assert np.mean(expit(lp[first] + res.re_alpha[0, 1])) == pytest.approx(0.6, abs=1e-9)


def test_group_ipw_column_overrides(small_data):
    phi_hat = PropensityFit(coefs=COEFS, re_var=0.5)
    renamed = small_data.rename(columns={"A": "treat", "Y": "outcome"})
    base = group_ipw(small_data, COV_COLS, phi_hat, [0.5])
    other = group_ipw(renamed, COV_COLS, phi_hat, [0.5], trt_col="treat", out_col="outcome")
    np.testing.assert_array_equal(base.yhat_group, other.yhat_group)


def test_group_ipw_single_arm_cluster_is_zero_for_missing_arm():
    df = pd.DataFrame(
        {
            "neigh": [1, 1, 2, 2],
            "A": [1, 1, 0, 1],
            "Y": [1.0, 2.0, 0.5, 1.5],
            "x1": [0.1, -0.2, 0.3, 0.0],
            "x2": [0, 1, 1, 0],
        }
    )
    res = group_ipw(df, COV_COLS, PropensityFit(coefs=COEFS, re_var=0.0), [0.5])
    assert res.yhat_group[0, 0, 0] == 0.0
    assert res.yhat_group[0, 1, 0] > 0


def test_group_ipw_rejects_unsupported_estimand(small_data):
    with pytest.raises(ConfigurationError, match="estimand"):
        group_ipw(
            small_data, COV_COLS, PropensityFit(coefs=COEFS, re_var=0.0), [0.5], estimand="2"
        )


def test_group_ipw_rejects_wrong_coefficient_length(small_data):
    with pytest.raises(ConfigurationError, match="coefficients"):
        group_ipw(small_data, COV_COLS, PropensityFit(coefs=[0.1, 0.2], re_var=0.0), [0.5])


def test_group_ipw_rejects_non_binary_treatment(small_data):
    df = small_data.copy()
    df.loc[0, "A"] = 2
    with pytest.raises(ConfigurationError, match="binary"):
        group_ipw(df, COV_COLS, PropensityFit(coefs=COEFS, re_var=0.0), [0.5])


@pytest.mark.parametrize("alpha", [[], [0.0], [0.5, 1.0]])
def test_group_ipw_rejects_invalid_alpha(small_data, alpha):
    with pytest.raises(ConfigurationError, match="alpha"):
        group_ipw(small_data, COV_COLS, PropensityFit(coefs=COEFS, re_var=0.0), alpha)


def test_group_ipw_drops_incomplete_rows(small_data):
    df = small_data.copy()
    df.loc[1, "x1"] = np.nan
    with pytest.warns(UserWarning, match="Dropping 1 rows"):
        res = group_ipw(df, COV_COLS, PropensityFit(coefs=COEFS, re_var=0.0), [0.5])

    expected = _brute_force_group(df.dropna().reset_index(drop=True), COEFS, COEFS, 0.5)
    np.testing.assert_allclose(res.yhat_group[:, :, 0], expected, rtol=1e-10)
