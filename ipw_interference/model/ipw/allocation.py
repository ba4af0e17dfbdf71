"""
Counterfactual Treatment Allocation

Under allocation strategy alpha, units of a cluster receive treatment with
probability expit(xi + X gamma), where the cluster intercept xi is chosen so
that the average treatment probability in the cluster equals alpha.
"""

import numpy as np
from scipy.optimize import brentq
from scipy.special import expit, logit


def alpha_to_random_effect(alpha: float, lin_pred: np.ndarray) -> float:
    """Cluster intercept giving an average treatment probability of alpha

    Solves mean(expit(lin_pred + xi)) = alpha for xi. The left side is
    increasing in xi, and the bracket below contains the root exactly.

    Args:
        alpha: Target average treatment probability in (0, 1)
        lin_pred: Linear predictor X gamma of the cluster's units

    Returns:
        Intercept xi

    Raises:
        ValueError: If alpha is not in (0, 1) or lin_pred is empty
    """
    if not 0 < alpha < 1:
        raise ValueError(f"alpha must be in (0, 1), got {alpha}")
    lin_pred = np.asarray(lin_pred, dtype=float).ravel()
    if lin_pred.size == 0:
        raise ValueError("lin_pred must not be empty")

    target = logit(alpha)
    # Every unit is below (above) alpha at the lower (upper) end
    lower = target - lin_pred.max() - 1.0
    upper = target - lin_pred.min() + 1.0

    def excess(xi):
        return np.mean(expit(lin_pred + xi)) - alpha

    return brentq(excess, lower, upper, xtol=1e-12)


def allocation_probabilities(
    alpha: float, lin_pred: np.ndarray
) -> tuple:
    """Unit treatment probabilities under allocation alpha

    Returns:
        Tuple of (probabilities, cluster intercept)
    """
    xi = alpha_to_random_effect(alpha, lin_pred)
    return expit(np.asarray(lin_pred, dtype=float).ravel() + xi), xi
