import numpy as np
import pytest
import statsmodels.api as sm

from ipw_interference.exceptions import ConfigurationError, PropensityFitError
from ipw_interference.model.common import KnownPropensity, EstimatedPropensity
from ipw_interference.settings import get_config, generate_data
from ipw_interference.model.propensity import (
    PSStrategy,
    resolve_strategy,
    check_design_columns,
    check_propensity_formula,
    fit_propensity,
    fit_known_propensity,
    fit_fixed_propensity,
    fit_mixed_propensity,
    coerce_known_propensity,
    coerce_estimated_propensity,
)


@pytest.fixture
def known():
    return KnownPropensity(trt_coef=[-0.2, 0.5, -0.4], re_var=0.5)


@pytest.fixture
def est_fixed():
    return EstimatedPropensity(
        glm_form="A ~ x1 + x2", ps_with_re=False, gamma_numer=[-0.2, 0.5, -0.4]
    )


@pytest.fixture
def est_mixed():
    return EstimatedPropensity(
        glm_form="A ~ x1 + x2 + (1 | neigh)", ps_with_re=True, gamma_numer=[-0.2, 0.5, -0.4]
    )


# ---------------------------------------------------------------------
# Strategy selection
# ---------------------------------------------------------------------

@pytest.mark.parametrize("ps", ["true", "known", "TRUE"])
def test_resolve_known(ps, known):
    assert resolve_strategy(ps, phi_hat_true=known) is PSStrategy.KNOWN


def test_resolve_estimated(est_fixed, est_mixed):
    assert resolve_strategy("est", ps_info_est=est_fixed) is PSStrategy.ESTIMATED_FIXED
    assert resolve_strategy("estimated", ps_info_est=est_mixed) is PSStrategy.ESTIMATED_MIXED


def test_resolve_unknown_mode(known):
    with pytest.raises(ConfigurationError, match="Invalid ps"):
        resolve_strategy("bayes", phi_hat_true=known)


def test_resolve_missing_inputs(known, est_fixed):
    with pytest.raises(ConfigurationError, match="phi_hat_true"):
        resolve_strategy("true", ps_info_est=est_fixed)
    with pytest.raises(ConfigurationError, match="ps_info_est"):
        resolve_strategy("est", phi_hat_true=known)


# ---------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------

def test_coerce_known_from_pair_and_dict(known):
    from_pair = coerce_known_propensity(([-0.2, 0.5, -0.4], 0.5))
    from_dict = coerce_known_propensity({"trt_coef": [-0.2, 0.5, -0.4], "re_var": 0.5})
    np.testing.assert_array_equal(from_pair.trt_coef, known.trt_coef)
    assert from_dict.re_var == 0.5
    assert coerce_known_propensity(known) is known
    assert coerce_known_propensity(None) is None


def test_coerce_known_rejects_negative_variance():
    with pytest.raises(ConfigurationError, match="phi_hat_true"):
        coerce_known_propensity(([0.1, 0.2, 0.3], -1.0))


def test_coerce_estimated_defaults_use_control():
    info = coerce_estimated_propensity(
        {"glm_form": "A ~ x1", "ps_with_re": False, "gamma_numer": [0.0, 1.0], "use_control": None}
    )
    assert info.use_control is False
    assert info.gamma_numer.dtype == float


def test_coerce_estimated_rejects_missing_field():
    with pytest.raises(ConfigurationError, match="ps_info_est"):
        coerce_estimated_propensity({"glm_form": "A ~ x1", "ps_with_re": False})


# ---------------------------------------------------------------------
# Fitting
# ---------------------------------------------------------------------

def test_fit_known_returns_given_parameters(known, sim_data, sim_config):
    fit = fit_propensity(PSStrategy.KNOWN, sim_data, sim_config, phi_hat_true=known)
    np.testing.assert_array_equal(fit.coefs, known.trt_coef)
    assert fit.re_var == 0.5
    assert fit_known_propensity(known).re_var == known.re_var


def test_fit_fixed_matches_maximum_likelihood(sim_data, sim_config, est_fixed):
    fit = fit_fixed_propensity(sim_data, est_fixed, sim_config)
    assert fit.re_var == 0.0
    assert fit.coefs.shape == (3,)

    X = sm.add_constant(sim_data[["x1", "x2"]].to_numpy())
    mle = sm.Logit(sim_data["A"].to_numpy(), X).fit(disp=0)
    np.testing.assert_allclose(fit.coefs, mle.params, atol=1e-2)


def test_fit_fixed_rejects_random_intercept_formula(sim_data, sim_config):
    info = EstimatedPropensity(
        glm_form="A ~ x1 + x2 + (1 | neigh)", ps_with_re=False, gamma_numer=[0, 0, 0]
    )
    with pytest.raises(ConfigurationError, match="random intercept"):
        fit_fixed_propensity(sim_data, info, sim_config)


def test_fit_fixed_unknown_column(sim_data, sim_config):
    info = EstimatedPropensity(glm_form="A ~ x1 + x9", ps_with_re=False, gamma_numer=[0, 0, 0])
    with pytest.raises(ConfigurationError, match="Invalid formula"):
        fit_fixed_propensity(sim_data, info, sim_config)


def test_fit_fixed_single_class_fails(sim_data, sim_config, est_fixed):
    df = sim_data.assign(A=1)
    with pytest.raises(PropensityFitError):
        fit_fixed_propensity(df, est_fixed, sim_config)


def test_fit_mixed_positive_variance(sim_data, sim_config, est_mixed):
    fit = fit_propensity(
        PSStrategy.ESTIMATED_MIXED, sim_data, sim_config, ps_info_est=est_mixed
    )
    assert fit.coefs.shape == (3,)
    assert np.all(np.isfinite(fit.coefs))
    assert fit.re_var > 0


def test_fit_mixed_with_control(sim_data, sim_config):
    info = EstimatedPropensity(
        glm_form="A ~ x1 + x2 + (1 | neigh)",
        ps_with_re=True,
        gamma_numer=[-0.2, 0.5, -0.4],
        use_control=True,
    )
    fit = fit_mixed_propensity(sim_data, info, sim_config)
    assert fit.coefs.shape == (3,)
    assert fit.re_var > 0


def test_fit_mixed_defaults_group_to_cluster_column(sim_data, sim_config):
    info = EstimatedPropensity(glm_form="A ~ x1 + x2", ps_with_re=True, gamma_numer=[0, 0, 0])
    fit = fit_mixed_propensity(sim_data, info, sim_config)
    assert fit.re_var > 0


def test_fit_mixed_unknown_group(sim_data, sim_config):
    info = EstimatedPropensity(
        glm_form="A ~ x1 + (1 | village)", ps_with_re=True, gamma_numer=[0, 0]
    )
    with pytest.raises(ConfigurationError, match="village"):
        fit_mixed_propensity(sim_data, info, sim_config)


def test_fit_mixed_recovers_random_intercept_variance():
    config = get_config("default", {"n_clusters": 40, "re_var": 4.0, "random_seed": 1})
    df = generate_data(config)
    info = EstimatedPropensity(
        glm_form="A ~ x1 + x2 + (1 | neigh)", ps_with_re=True, gamma_numer=config.trt_coef
    )
    fit = fit_mixed_propensity(df, info, config, cov_cols=["x1", "x2"])
    assert config.glmm_require_convergence
    assert 1.0 < fit.re_var < 16.0
    np.testing.assert_allclose(fit.coefs, config.trt_coef, atol=1.5)


def test_fit_mixed_is_reproducible(sim_data, sim_config, est_mixed):
    first = fit_mixed_propensity(sim_data, est_mixed, sim_config)
    second = fit_mixed_propensity(sim_data, est_mixed, sim_config)
    np.testing.assert_array_equal(first.coefs, second.coefs)
    assert first.re_var == second.re_var


# ---------------------------------------------------------------------
# Design columns must line up with cov_cols
# ---------------------------------------------------------------------

def test_fit_fixed_rejects_reordered_covariates(sim_data, sim_config):
    info = EstimatedPropensity(glm_form="A ~ x2 + x1", ps_with_re=False, gamma_numer=[0, 0, 0])
    with pytest.raises(ConfigurationError, match="design columns"):
        fit_fixed_propensity(sim_data, info, sim_config, cov_cols=["x1", "x2"])
    # Without cov_cols the fit itself is well defined
    assert fit_fixed_propensity(sim_data, info, sim_config).coefs.shape == (3,)


def test_fit_mixed_rejects_reordered_covariates(sim_data, sim_config):
    info = EstimatedPropensity(
        glm_form="A ~ x2 + x1 + (1 | neigh)", ps_with_re=True, gamma_numer=[0, 0, 0]
    )
    with pytest.raises(ConfigurationError, match="design columns"):
        fit_propensity(
            PSStrategy.ESTIMATED_MIXED, sim_data, sim_config, ps_info_est=info, cov_cols=["x1", "x2"]
        )


def test_check_design_columns():
    check_design_columns("A ~ x1 + x2", ["Intercept", "x1", "x2"], ["x1", "x2"])
    with pytest.raises(ConfigurationError, match="design columns"):
        check_design_columns("A ~ x1 + x2 - 1", ["x1", "x2"], ["x1", "x2"])


@pytest.mark.parametrize(
    "formula, with_re, match",
    [
        ("A ~ x2 + x1", False, "design columns"),
        ("A ~ x1 + x2 + (1 | neigh)", False, "random intercept"),
        ("A ~ x1 + x2 + (1 | village)", True, "village"),
        ("A ~ x1 + x9", False, "Invalid formula"),
    ],
)
def test_check_propensity_formula(sim_data, formula, with_re, match):
    info = EstimatedPropensity(glm_form=formula, ps_with_re=with_re, gamma_numer=[0, 0, 0])
    with pytest.raises(ConfigurationError, match=match):
        check_propensity_formula(info, sim_data, ["x1", "x2"])
