"""
IPW Denominator

Probability of a cluster's observed treatment vector under the propensity
score model, with the cluster random intercept integrated out:

    f(A | X) = ∫ Π_i p_i(b)^{A_i} (1 - p_i(b))^{1 - A_i} φ(b; 0, σ²) db,
    p_i(b) = expit(X_i β + b)

Computed on the log scale, since the product underflows for large clusters.
"""

import numpy as np
from scipy.integrate import quad
from scipy.optimize import minimize_scalar
from scipy.special import log_expit
from scipy.stats import norm


def log_bernoulli(A: np.ndarray, lin_pred: np.ndarray) -> np.ndarray:
    """Per-unit log P(A_i | linear predictor)"""
    return A * log_expit(lin_pred) + (1 - A) * log_expit(-lin_pred)


def log_denominator(
    A: np.ndarray,
    lin_pred: np.ndarray,
    re_var: float,
    integral_bound: float = 10.0,
) -> float:
    """Log probability of the treatment vector given covariates

    Args:
        A: Binary treatment vector of the cluster
        lin_pred: Linear predictor X β of the cluster's units
        re_var: Random intercept variance (0 for a fixed effects model)
        integral_bound: Integration limits in units of the random intercept SD

    Returns:
        log f(A | X)

    Raises:
        FloatingPointError: If numerical integration returns a non-positive value
    """
    A = np.asarray(A, dtype=float).ravel()
    lin_pred = np.asarray(lin_pred, dtype=float).ravel()

    if re_var <= 0:
        return float(np.sum(log_bernoulli(A, lin_pred)))

    re_sd = np.sqrt(re_var)
    bound = abs(integral_bound) * re_sd

    def log_integrand(b):
        return np.sum(log_bernoulli(A, lin_pred + b)) + norm.logpdf(b, scale=re_sd)

    # The integrand is log-concave in b; rescale by its maximum before integrating
    mode = minimize_scalar(
        lambda b: -log_integrand(b), bounds=(-bound, bound), method="bounded"
    )
    shift = -mode.fun

    points = [mode.x] if -bound < mode.x < bound else None
    value, _ = quad(
        lambda b: np.exp(log_integrand(b) - shift),
        -bound,
        bound,
        points=points,
        limit=200,
    )
    if not np.isfinite(value) or value <= 0:
        raise FloatingPointError(f"Denominator integration failed (value={value})")

    return float(shift + np.log(value))


def denominator(
    A: np.ndarray,
    lin_pred: np.ndarray,
    re_var: float,
    integral_bound: float = 10.0,
) -> float:
    """Probability of the treatment vector given covariates (see log_denominator)"""
    return float(np.exp(log_denominator(A, lin_pred, re_var, integral_bound)))
