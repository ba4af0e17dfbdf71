"""
Propensity Score Fitting

Fits the propensity score model on a (bootstrap) dataset. The model is
either known, a fixed effects logistic regression, or a logistic regression
with a cluster-specific random intercept. Each case has its own fit
function; fit_propensity dispatches on PSStrategy.
"""

import threading
import warnings
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from patsy import dmatrices, PatsyError
from sklearn.exceptions import ConvergenceWarning
from statsmodels.genmod.bayes_mixed_glm import BinomialBayesMixedGLM

from ...exceptions import ConfigurationError, PropensityFitError
from ...settings import Config
from ...utils import split_random_intercept, get_ml_model
from ..common.models import KnownPropensity, EstimatedPropensity, PropensityFit


class PSStrategy(Enum):
    """How the propensity score is obtained on every bootstrap sample"""

    KNOWN = "known"
    ESTIMATED_FIXED = "estimated_fixed"
    ESTIMATED_MIXED = "estimated_mixed"


# Accepted spellings of the propensity score mode
_PS_MODES = {
    "true": "known",
    "known": "known",
    "est": "estimated",
    "estimated": "estimated",
}

# warnings.catch_warnings swaps process-wide state; captures must never overlap
_WARNINGS_LOCK = threading.Lock()


def resolve_strategy(
    ps: str,
    phi_hat_true: Optional[KnownPropensity] = None,
    ps_info_est: Optional[EstimatedPropensity] = None,
) -> PSStrategy:
    """Select the fitting strategy and check its required inputs

    Args:
        ps: Propensity score mode ("true"/"known" or "est"/"estimated")
        phi_hat_true: Known propensity score parameters
        ps_info_est: Estimation settings

    Returns:
        Fitting strategy

    Raises:
        ConfigurationError: If the mode is unknown or its inputs are missing
    """
    mode = _PS_MODES.get(str(ps).lower())
    if mode is None:
        raise ConfigurationError(
            f"Invalid ps: '{ps}'. Options are {sorted(_PS_MODES)}"
        )

    if mode == "known":
        if phi_hat_true is None:
            raise ConfigurationError("phi_hat_true is required when the propensity score is known")
        return PSStrategy.KNOWN

    if ps_info_est is None:
        raise ConfigurationError("ps_info_est is required when the propensity score is estimated")
    if ps_info_est.ps_with_re:
        return PSStrategy.ESTIMATED_MIXED
    return PSStrategy.ESTIMATED_FIXED


# =============================================================================
# Formula handling
# =============================================================================


def _design_matrices(formula: str, df: pd.DataFrame) -> Tuple[pd.Series, pd.DataFrame]:
    """Treatment vector and fixed effects design matrix of a formula"""
    try:
        y, X = dmatrices(formula, df, return_type="dataframe")
    except PatsyError as e:
        raise ConfigurationError(f"Invalid formula '{formula}': {e}") from e

    if y.shape[1] != 1:
        raise ConfigurationError(
            f"Treatment in '{formula}' must be a single numeric 0/1 column"
        )
    return y.iloc[:, 0], X


def check_design_columns(
    formula: str, columns: Sequence[str], cov_cols: Sequence[str]
) -> None:
    """Fitted coefficients are applied to [1, cov_cols]; the formula must produce that layout

    Raises:
        ConfigurationError: If the design columns differ in names or order
    """
    expected = ["Intercept"] + list(cov_cols)
    if list(columns) != expected:
        raise ConfigurationError(
            f"Formula '{formula}' gives design columns {list(columns)}, "
            f"expected {expected} to match cov_cols"
        )


def check_propensity_formula(
    ps_info_est: EstimatedPropensity,
    df: pd.DataFrame,
    cov_cols: Sequence[str],
    cluster_col: str = "neigh",
) -> None:
    """Validate an estimation formula against the data before any fitting

    Raises:
        ConfigurationError: If the formula cannot be used with cov_cols
    """
    fixed_formula, group_col = split_random_intercept(ps_info_est.glm_form)
    if group_col is not None and not ps_info_est.ps_with_re:
        raise ConfigurationError(
            f"Formula '{ps_info_est.glm_form}' has a random intercept but ps_with_re is False"
        )
    if ps_info_est.ps_with_re:
        group_col = cluster_col if group_col is None else group_col
        if group_col not in df.columns:
            raise ConfigurationError(f"Random intercept group '{group_col}' not found in data")

    _, X = _design_matrices(fixed_formula, df)
    check_design_columns(fixed_formula, X.columns, cov_cols)


def _call_recording_warnings(func: Callable, *args, **kwargs) -> Tuple[object, List]:
    """Call func with its warnings recorded instead of shown

    Returns:
        Tuple of (return value, recorded warnings)
    """
    with _WARNINGS_LOCK:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            value = func(*args, **kwargs)
    return value, caught


def _reemit(caught: List, keep: Callable) -> None:
    """Show recorded warnings selected by keep"""
    for w in caught:
        if keep(w):
            warnings.warn_explicit(w.message, w.category, w.filename, w.lineno)


# =============================================================================
# Fit functions
# =============================================================================


def fit_known_propensity(phi_hat_true: KnownPropensity) -> PropensityFit:
    """Use the known propensity score parameters as they are"""
    return PropensityFit(coefs=phi_hat_true.trt_coef, re_var=phi_hat_true.re_var)


def fit_fixed_propensity(
    df: pd.DataFrame,
    ps_info_est: EstimatedPropensity,
    config: Config,
    cov_cols: Optional[Sequence[str]] = None,
) -> PropensityFit:
    """Fixed effects logistic regression of treatment on covariates

    The random effect variance is exactly 0. Non-convergence is read from
    the solver's iteration count.

    Raises:
        ConfigurationError: If the formula contains a random intercept term
            or its design columns do not match cov_cols
        PropensityFitError: If the model cannot be fitted or does not converge
    """
    fixed_formula, group_col = split_random_intercept(ps_info_est.glm_form)
    if group_col is not None:
        raise ConfigurationError(
            f"Formula '{ps_info_est.glm_form}' has a random intercept but ps_with_re is False"
        )

    y, X = _design_matrices(fixed_formula, df)
    if cov_cols is not None:
        check_design_columns(fixed_formula, X.columns, cov_cols)

    ps_model = get_ml_model("logistic", config)
    try:
        _, caught = _call_recording_warnings(ps_model.fit, X.to_numpy(), y.to_numpy())
    except ValueError as e:
        raise PropensityFitError(f"Logistic regression failed: {e}") from e
    _reemit(caught, lambda w: not issubclass(w.category, ConvergenceWarning))

    if ps_model.n_iter_.max() >= config.logistic_max_iter:
        raise PropensityFitError(
            f"Logistic regression did not converge in {config.logistic_max_iter} iterations"
        )

    return PropensityFit(coefs=ps_model.coef_.ravel(), re_var=0.0)


def fit_mixed_propensity(
    df: pd.DataFrame,
    ps_info_est: EstimatedPropensity,
    config: Config,
    cov_cols: Optional[Sequence[str]] = None,
) -> PropensityFit:
    """Logistic regression with a random intercept per cluster

    The model is statsmodels' BinomialBayesMixedGLM with one variance
    component over the cluster indicators, fitted by variational Bayes over
    the fixed effects, the random intercepts and their log standard
    deviation. The optimizer starts from fixed values. If use_control is
    set, the configured optimizer and iteration budget are applied.

    Raises:
        ConfigurationError: If the formula or grouping column is unusable
        PropensityFitError: If the model cannot be fitted or does not converge
    """
    fixed_formula, group_col = split_random_intercept(ps_info_est.glm_form)
    if group_col is None:
        group_col = config.cluster_col
    if group_col not in df.columns:
        raise ConfigurationError(f"Random intercept group '{group_col}' not found in data")

    y, X = _design_matrices(fixed_formula, df)
    if cov_cols is not None:
        check_design_columns(fixed_formula, X.columns, cov_cols)

    # Cluster indicator matrix aligned with the rows patsy kept
    codes, uniques = pd.factorize(df.loc[X.index, group_col])
    if (codes < 0).any():
        raise ConfigurationError(f"Random intercept group '{group_col}' has missing values")
    n_groups = len(uniques)
    exog_vc = np.zeros((len(codes), n_groups))
    exog_vc[np.arange(len(codes)), codes] = 1.0

    glmod = BinomialBayesMixedGLM(
        y.to_numpy(),
        X.to_numpy(),
        exog_vc,
        np.zeros(n_groups, dtype=int),
        vcp_p=config.glmm_vcp_prior_sd,
        fe_p=config.glmm_fe_prior_sd,
    )

    # Fixed effects, log SD and random intercepts
    n_params = X.shape[1] + 1 + n_groups
    fit_kwargs = {
        "mean": np.zeros(n_params),
        "sd": np.full(n_params, np.exp(-0.5)),
        "fit_method": config.glmm_fit_method,
    }
    if ps_info_est.use_control:
        fit_kwargs["fit_method"] = config.glmm_control_method
        fit_kwargs["minim_opts"] = {"maxiter": config.glmm_control_max_iter}

    try:
        result, caught = _call_recording_warnings(glmod.fit_vb, **fit_kwargs)
    except (ValueError, np.linalg.LinAlgError) as e:
        raise PropensityFitError(f"Mixed logistic regression failed: {e}") from e

    def is_convergence(w):
        return "converge" in str(w.message).lower()

    not_converged = [w for w in caught if is_convergence(w)]
    if not_converged and config.glmm_require_convergence:
        raise PropensityFitError(f"Mixed logistic regression: {not_converged[0].message}")
    _reemit(caught, lambda w: not is_convergence(w))
    for w in not_converged:
        warnings.warn(f"Mixed logistic regression: {w.message}", RuntimeWarning)

    # vcp_mean holds the posterior mean of the random intercept's log SD
    re_var = float(np.exp(2 * result.vcp_mean[0]))
    if not np.all(np.isfinite(result.fe_mean)) or not np.isfinite(re_var):
        raise PropensityFitError("Mixed logistic regression returned non-finite estimates")

    return PropensityFit(coefs=np.asarray(result.fe_mean), re_var=re_var)


def fit_propensity(
    strategy: PSStrategy,
    df: pd.DataFrame,
    config: Config,
    phi_hat_true: Optional[KnownPropensity] = None,
    ps_info_est: Optional[EstimatedPropensity] = None,
    cov_cols: Optional[Sequence[str]] = None,
) -> PropensityFit:
    """Obtain the propensity score model for one dataset

    Args:
        strategy: Fitting strategy (see resolve_strategy)
        df: Dataset to fit on
        config: Configuration object
        phi_hat_true: Known parameters (KNOWN strategy)
        ps_info_est: Estimation settings (ESTIMATED_* strategies)
        cov_cols: Covariates the coefficients are applied to; estimated
            design columns are checked against them when given

    Returns:
        Coefficients and random intercept variance
    """
    if strategy is PSStrategy.KNOWN:
        return fit_known_propensity(phi_hat_true)
    if strategy is PSStrategy.ESTIMATED_FIXED:
        return fit_fixed_propensity(df, ps_info_est, config, cov_cols)
    if strategy is PSStrategy.ESTIMATED_MIXED:
        return fit_mixed_propensity(df, ps_info_est, config, cov_cols)
    raise ValueError(f"Invalid strategy: {strategy}")


def coerce_known_propensity(
    phi_hat_true: Union[KnownPropensity, dict, Sequence, None]
) -> Optional[KnownPropensity]:
    """Accept known parameters as a model, a mapping or a (coefs, re_var) pair"""
    if phi_hat_true is None or isinstance(phi_hat_true, KnownPropensity):
        return phi_hat_true
    try:
        if isinstance(phi_hat_true, dict):
            return KnownPropensity(**phi_hat_true)
        trt_coef, re_var = phi_hat_true
        return KnownPropensity(trt_coef=trt_coef, re_var=re_var)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid phi_hat_true: {e}") from e


def coerce_estimated_propensity(
    ps_info_est: Union[EstimatedPropensity, dict, None]
) -> Optional[EstimatedPropensity]:
    """Accept estimation settings as a model or a mapping"""
    if ps_info_est is None or isinstance(ps_info_est, EstimatedPropensity):
        return ps_info_est
    try:
        return EstimatedPropensity(**ps_info_est)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid ps_info_est: {e}") from e
