"""
Group-level IPW Estimator

Estimates the average potential outcome of every cluster under treatment
allocation strategies alpha (estimand "1": cluster-specific allocation
whose average treatment probability equals alpha).

For cluster j with units i = 1..n_j:

    ŷ_j(a, α) = 1/n_j Σ_{i: A_i = a} Y_i Π_{k≠i} π_k^{A_k} (1 - π_k)^{1 - A_k} / f(A_j | X_j)

where π_k are the counterfactual allocation probabilities and f the
propensity score of the observed treatment vector.

References:
    Papadogeorgou, G., Mealli, F., Zigler, C. M. (2019). "Causal inference
    with interfering units for cluster and population level treatment
    allocation programs", Biometrics, 75(3).
"""

import warnings
import numpy as np
import pandas as pd
from typing import List, Optional, Sequence
from tqdm import tqdm

from ...exceptions import ConfigurationError
from ...utils import cluster_index_partition, design_matrix, check_coefficients
from ..common.models import PropensityFit, GroupIPWResult
from .allocation import alpha_to_random_effect
from .denominator import log_denominator, log_bernoulli


SUPPORTED_ESTIMANDS = ("1",)


def group_ipw(
    dta: pd.DataFrame,
    cov_cols: Sequence[str],
    phi_hat: PropensityFit,
    alpha: Sequence[float],
    gamma_numer: Optional[np.ndarray] = None,
    neigh_ind: Optional[List[np.ndarray]] = None,
    keep_re_alpha: bool = False,
    estimand: str = "1",
    verbose: bool = False,
    integral_bound: float = 10.0,
    trt_col: Optional[str] = None,
    out_col: Optional[str] = None,
    cluster_col: str = "neigh",
) -> GroupIPWResult:
    """Calculate group-level IPW estimates of the average potential outcomes

    Args:
        dta: Dataframe with cluster, treatment, outcome and covariate columns
        cov_cols: Covariate column names, in the order of the coefficients
        phi_hat: Propensity score model (coefficients, random intercept variance)
        alpha: Allocation strategies, each in (0, 1)
        gamma_numer: Coefficients of the counterfactual allocation model
            (phi_hat.coefs if None)
        neigh_ind: Row positions of every cluster (computed if None)
        keep_re_alpha: Whether to return the allocation intercepts
        estimand: Estimand variant ("1")
        verbose: Whether to display progress over alpha
        integral_bound: Random intercept integration limits in SD units
        trt_col: Treatment column name if not "A"
        out_col: Outcome column name if not "Y"
        cluster_col: Cluster column name

    Returns:
        Estimates indexed [cluster, potential outcome (y0, y1), alpha]

    Raises:
        ConfigurationError: If inputs are inconsistent
    """
    estimand = str(estimand)
    if estimand not in SUPPORTED_ESTIMANDS:
        raise ConfigurationError(
            f"Invalid estimand: '{estimand}'. Options are {list(SUPPORTED_ESTIMANDS)}"
        )

    alpha = np.atleast_1d(np.asarray(alpha, dtype=float))
    if alpha.size == 0:
        raise ConfigurationError("alpha must contain at least one value")
    if np.any((alpha <= 0) | (alpha >= 1)):
        raise ConfigurationError(f"alpha values must be in (0, 1), got {alpha.tolist()}")

    trt_col = "A" if trt_col is None else trt_col
    out_col = "Y" if out_col is None else out_col
    cov_cols = list(cov_cols)

    missing_cols = [
        c for c in [cluster_col, trt_col, out_col] + cov_cols if c not in dta.columns
    ]
    if missing_cols:
        raise ConfigurationError(f"Columns not found in data: {missing_cols}")

    coefs = phi_hat.coefs
    check_coefficients(coefs, cov_cols, "phi_hat.coefs")
    gamma = coefs if gamma_numer is None else np.asarray(gamma_numer, dtype=float).ravel()
    check_coefficients(gamma, cov_cols, "gamma_numer")

    # Use complete cases only
    data = dta[[cluster_col, trt_col, out_col] + cov_cols]
    complete = data.notna().all(axis=1).to_numpy()
    if not complete.all():
        warnings.warn(f"Dropping {int((~complete).sum())} rows with missing values")
        data = data.loc[complete].reset_index(drop=True)
        neigh_ind = None

    A = data[trt_col].to_numpy(dtype=float)
    if not np.all((A == 0) | (A == 1)):
        raise ConfigurationError(f"Treatment column '{trt_col}' must be binary (0/1)")
    Y = data[out_col].to_numpy(dtype=float)

    if neigh_ind is None:
        neigh_ind = cluster_index_partition(data, cluster_col)
    n_neigh = len(neigh_ind)

    X = design_matrix(data, cov_cols)
    lin_pred_ps = X @ coefs
    lin_pred_alloc = X @ gamma

    # Denominators do not depend on alpha
    log_dens = np.full(n_neigh, np.nan)
    for nn, idx in enumerate(neigh_ind):
        if len(idx) > 0:
            log_dens[nn] = log_denominator(
                A[idx], lin_pred_ps[idx], phi_hat.re_var, integral_bound
            )

    yhat_group = np.full((n_neigh, 2, len(alpha)), np.nan)
    re_alpha = np.full((n_neigh, len(alpha)), np.nan) if keep_re_alpha else None

    for aa, curr_alpha in enumerate(
        tqdm(alpha, desc="Group IPW", unit="alpha", ncols=80, disable=not verbose)
    ):
        for nn, idx in enumerate(neigh_ind):
            if len(idx) == 0:
                continue

            xi = alpha_to_random_effect(curr_alpha, lin_pred_alloc[idx])
            if keep_re_alpha:
                re_alpha[nn, aa] = xi

            A_nn = A[idx]
            log_alloc = log_bernoulli(A_nn, lin_pred_alloc[idx] + xi)
            # Leave-one-out product of the allocation probabilities over the denominator
            weights = np.exp(log_alloc.sum() - log_alloc - log_dens[nn])

            for curr_it in (0, 1):
                is_arm = A_nn == curr_it
                yhat_group[nn, curr_it, aa] = (
                    np.sum(weights[is_arm] * Y[idx][is_arm]) / len(idx)
                )

    return GroupIPWResult(yhat_group=yhat_group, re_alpha=re_alpha)
